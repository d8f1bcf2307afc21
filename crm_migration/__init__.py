"""
CRM Migration Engine

Migrates customer data exported from third-party CRMs into the canonical
companies / contacts / visits / products schema.

Supports:
- CSV and JSON exports from Salesforce, HubSpot, Pipedrive, Zoho, Dynamics
  and arbitrary CRMs
- Schema inference and data-quality scoring
- AI-assisted field mapping suggestions
- Record-by-record loading with partial-failure isolation
- Pause, resume, cancel and rollback of migrations
"""

__version__ = "0.1.0"
