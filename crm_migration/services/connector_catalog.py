"""Catalog of known source CRMs."""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from ..models.schema import Connector
from ..storage.base import ConnectorRepo

logger = logging.getLogger(__name__)

UNIVERSAL_KEY = "universal"


def _fields(**defs: tuple) -> Dict[str, Dict[str, Any]]:
    """Build field definitions from ``name=(type, target, aliases)`` tuples."""
    return {
        name: {"type": spec[0], "target": spec[1], "aliases": list(spec[2]) if len(spec) > 2 else []}
        for name, spec in defs.items()
    }


DEFAULT_CONNECTORS: List[Connector] = [
    Connector(
        key="salesforce",
        name="Salesforce",
        vendor="Salesforce, Inc.",
        description="Accounts, contacts and opportunities exported from Salesforce",
        field_definitions=_fields(
            Name=("string", "companies.name", ["Account Name"]),
            BillingStreet=("string", "companies.address"),
            BillingCity=("string", "companies.city"),
            BillingState=("string", "companies.province"),
            BillingPostalCode=("string", "companies.postal_code"),
            BillingCountry=("string", "companies.country"),
            Phone=("string", "companies.phone"),
            Website=("string", "companies.website"),
            Industry=("string", "companies.sector"),
            Description=("string", "companies.notes"),
        ),
        detection_keywords=["sfdc", "salesforce", "__c", "billingcity", "accountid"],
        typical_fields=["AccountId", "BillingCity", "BillingStreet", "OwnerId"],
        popularity_rank=1,
        tier="enterprise",
    ),
    Connector(
        key="hubspot",
        name="HubSpot",
        vendor="HubSpot, Inc.",
        description="Companies and contacts exported from HubSpot CRM",
        field_definitions=_fields(
            name=("string", "companies.name"),
            domain=("string", "companies.website"),
            phone=("string", "companies.phone"),
            address=("string", "companies.address"),
            city=("string", "companies.city"),
            state=("string", "companies.province"),
            zip=("string", "companies.postal_code"),
            country=("string", "companies.country"),
            industry=("string", "companies.sector"),
            lifecyclestage=("string", "companies.status"),
        ),
        detection_keywords=["hubspot", "hs_", "lifecyclestage", "hubspot_owner_id"],
        typical_fields=["hs_object_id", "lifecyclestage", "hubspot_owner_id"],
        popularity_rank=2,
    ),
    Connector(
        key="pipedrive",
        name="Pipedrive",
        vendor="Pipedrive OÜ",
        description="Organizations, persons and deals exported from Pipedrive",
        field_definitions=_fields(
            name=("string", "companies.name"),
            address=("string", "companies.address"),
            address_locality=("string", "companies.city"),
            address_postal_code=("string", "companies.postal_code"),
            address_country=("string", "companies.country"),
            phone=("string", "company_contacts.phone"),
            email=("string", "company_contacts.email"),
        ),
        detection_keywords=["pipedrive", "org_id", "org_name", "person_id", "deal_id"],
        typical_fields=["org_id", "org_name", "owner_id", "person_id", "deal_id", "stage_id"],
        popularity_rank=3,
    ),
    Connector(
        key="zoho",
        name="Zoho CRM",
        vendor="Zoho Corporation",
        description="Accounts and contacts exported from Zoho CRM",
        field_definitions=_fields(
            Account_Name=("string", "companies.name"),
            Billing_Street=("string", "companies.address"),
            Billing_City=("string", "companies.city"),
            Billing_Code=("string", "companies.postal_code"),
            Billing_Country=("string", "companies.country"),
            Phone=("string", "companies.phone"),
            Website=("string", "companies.website"),
            Industry=("string", "companies.sector"),
        ),
        detection_keywords=["zoho", "account_name", "billing_code", "zcrm"],
        typical_fields=["Account_Name", "Billing_City", "Billing_Code", "Account_Owner"],
        popularity_rank=4,
    ),
    Connector(
        key="dynamics",
        name="Microsoft Dynamics 365",
        vendor="Microsoft",
        description="Accounts and contacts exported from Dynamics 365 Sales",
        field_definitions=_fields(
            name=("string", "companies.name"),
            address1_line1=("string", "companies.address"),
            address1_city=("string", "companies.city"),
            address1_postalcode=("string", "companies.postal_code"),
            address1_country=("string", "companies.country"),
            telephone1=("string", "companies.phone"),
            emailaddress1=("string", "companies.email"),
            websiteurl=("string", "companies.website"),
        ),
        detection_keywords=["dynamics", "address1_", "telephone1", "emailaddress1", "accountid"],
        typical_fields=["address1_city", "telephone1", "emailaddress1"],
        popularity_rank=5,
        tier="enterprise",
    ),
    Connector(
        key=UNIVERSAL_KEY,
        name="Universal (CSV / JSON)",
        vendor="Generic",
        description="Any CRM export in CSV or JSON format",
        popularity_rank=99,
    ),
]


def _norm(value: str) -> str:
    return re.sub(r"[^a-z0-9_]", "", value.lower())


class ConnectorCatalog(ConnectorRepo):
    """
    Read-only registry of source CRM connectors.

    Supports:
    - Listing active connectors by popularity
    - Looking up a connector's field definitions
    - Detecting the source CRM of an export from its field names
    """

    def __init__(self, connectors: Optional[Iterable[Connector]] = None):
        """
        Initialize the catalog.

        Args:
            connectors: Connectors to register (defaults to the built-in set)
        """
        self._connectors: Dict[str, Connector] = {}
        for connector in (DEFAULT_CONNECTORS if connectors is None else connectors):
            self.register(connector)

    def register(self, connector: Connector) -> None:
        """Register a connector, replacing any with the same key."""
        self._connectors[connector.key] = connector
        logger.debug(f"Registered connector: {connector.key}")

    def list(self) -> List[Connector]:
        """Active connectors ordered by popularity rank."""
        return sorted(
            (c for c in self._connectors.values() if c.is_active),
            key=lambda c: c.popularity_rank,
        )

    def get(self, key: str) -> Optional[Connector]:
        """Get a connector by key."""
        return self._connectors.get(key)

    def field_definitions(self, key: Optional[str]) -> Dict[str, Dict[str, Any]]:
        """Field definitions of a connector, empty if unknown."""
        connector = self._connectors.get(key) if key else None
        return dict(connector.field_definitions) if connector else {}

    def detect(self, field_names: Iterable[str]) -> str:
        """
        Detect the source CRM from field names.

        Each connector scores one point per detection keyword contained in a
        field name and two per exact typical-field match. The best positive
        score wins; otherwise the universal connector is returned.
        """
        names = [_norm(n) for n in field_names if n]
        best_key, best_score = UNIVERSAL_KEY, 0

        for connector in self.list():
            if connector.key == UNIVERSAL_KEY:
                continue
            keywords = [_norm(k) for k in connector.detection_keywords]
            typical = {_norm(f) for f in connector.typical_fields}
            score = 0
            for name in names:
                score += sum(1 for k in keywords if k and k in name)
                if name in typical:
                    score += 2
            if score > best_score:
                best_key, best_score = connector.key, score

        logger.debug(f"Detected source CRM '{best_key}' (score {best_score})")
        return best_key
