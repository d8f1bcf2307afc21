"""Shared fixtures for the migration engine tests."""

import os

import pytest

from crm_migration.config import ENV_PREFIX, EngineConfig
from crm_migration.loaders.memory_store import InMemoryDestinationStore
from crm_migration.orchestrator import MigrationController

# Five companies; the third has no name
COMPANIES_CSV = (
    "name,email,phone,city\n"
    "Acme Corp,info@acme.com,+34 600 123 123,Madrid\n"
    "Globex,sales@globex.com,+34 611 222 333,Barcelona\n"
    ",nobody@example.com,+34 622 333 444,Valencia\n"
    "Initech,contact@initech.com,+34 633 444 555,Sevilla\n"
    "Umbrella,hello@umbrella.com,+34 644 555 666,Bilbao\n"
)


@pytest.fixture(autouse=True)
def _clean_engine_env(monkeypatch: pytest.MonkeyPatch):
    """Keep developer environment variables out of the tests."""
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


@pytest.fixture
def companies_csv():
    return COMPANIES_CSV


@pytest.fixture
def company_mappings():
    """Mapping set for COMPANIES_CSV."""
    return [
        {"source_field": "name", "target_table": "companies", "target_field": "name", "is_required": True},
        {"source_field": "email", "target_table": "companies", "target_field": "email", "transform": "lowercase"},
        {"source_field": "phone", "target_table": "companies", "target_field": "phone"},
        {"source_field": "city", "target_table": "companies", "target_field": "city", "transform": "trim"},
    ]


@pytest.fixture
def destination():
    return InMemoryDestinationStore()


@pytest.fixture
def controller(destination):
    return MigrationController(config=EngineConfig(), destination=destination)
