"""Tests for mapping suggestion providers and the suggester."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from crm_migration.config import EngineConfig
from crm_migration.exceptions import UpstreamSuggestionError
from crm_migration.models.schema import FieldType, ParsedField, TransformKind
from crm_migration.services.connector_catalog import ConnectorCatalog
from crm_migration.services.llm_inference import (
    CompletionSuggestionProvider,
    HeuristicSuggestionProvider,
    MappingSuggester,
    NullSuggestionProvider,
    StaticSuggestionProvider,
    build_provider,
)


@pytest.fixture
def fields():
    return [
        ParsedField(name="Company Name", sample_values=["Acme"]),
        ParsedField(name="Email Address", sample_values=["info@acme.com"]),
        ParsedField(name="Founded", type=FieldType.DATE, sample_values=["2020-01-01"]),
    ]


REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def completion_client(content):
    """Client double whose chat completion returns ``content``."""
    client = MagicMock()
    message = SimpleNamespace(role="assistant", content=content)
    client.chat.completions.create.return_value = SimpleNamespace(choices=[SimpleNamespace(message=message)])
    return client


class TestMappingSuggester:
    """Test suite for suggestion normalization."""

    def test_confidence_is_clamped(self, fields):
        provider = StaticSuggestionProvider([
            {"source_field": "Company Name", "target_field": "name", "confidence": 1.7},
            {"source_field": "Email Address", "target_field": "email", "confidence": -0.2},
        ])
        mappings = MappingSuggester(provider).suggest(fields)

        assert [m.confidence for m in mappings] == [1.0, 0.0]
        assert all(m.is_auto_mapped for m in mappings)

    def test_unknown_transform_becomes_none(self, fields):
        provider = StaticSuggestionProvider([
            {"source_field": "Founded", "target_field": "notes", "transform": "reverse"},
        ])
        mapping = MappingSuggester(provider).suggest(fields)[0]

        assert mapping.transform == TransformKind.NONE
        assert mapping.confidence == 0.5

    def test_unusable_entries_are_dropped(self, fields):
        provider = StaticSuggestionProvider([
            {"source_field": "Company Name"},
            {"target_field": "name"},
            {"source_field": "Unknown", "target_field": "name"},
            {"source_field": "Company Name", "target_table": "invoices", "target_field": "name"},
            {"source_field": "Company Name", "target_field": "revenue"},
            "not a dict",
            {"source_field": "Company Name", "target_table": "companies", "target_field": "name"},
        ])
        mappings = MappingSuggester(provider).suggest(fields)

        assert len(mappings) == 1
        assert (mappings[0].target_table, mappings[0].target_field) == ("companies", "name")

    def test_provider_failure_yields_no_suggestions(self, fields):
        provider = StaticSuggestionProvider(error=UpstreamSuggestionError("service down"))

        assert MappingSuggester(provider).suggest(fields) == []
        assert provider.calls == 1

    def test_no_fields_skips_provider(self):
        provider = StaticSuggestionProvider([{"source_field": "a", "target_field": "name"}])

        assert MappingSuggester(provider).suggest([]) == []
        assert provider.calls == 0

    def test_non_string_fields_are_dropped(self, fields):
        provider = StaticSuggestionProvider([
            {"source_field": ["Company Name"], "target_field": "name"},
            {"source_field": "Company Name", "target_field": None},
            {"source_field": "Email Address", "target_table": ["companies"], "target_field": "email"},
            {"source_field": "Email Address", "target_field": "email"},
        ])
        mappings = MappingSuggester(provider).suggest(fields)

        assert [m.source_field for m in mappings] == ["Email Address"]

    def test_unexpected_provider_error_yields_no_suggestions(self, fields):
        provider = StaticSuggestionProvider(error=KeyError("choices"))

        assert MappingSuggester(provider).suggest(fields) == []

    def test_non_list_output_yields_no_suggestions(self, fields):
        provider = StaticSuggestionProvider()
        provider.suggest = lambda *args: {"source_field": "Company Name"}

        assert MappingSuggester(provider).suggest(fields) == []

    def test_fallback_used_when_provider_yields_nothing(self, fields):
        provider = StaticSuggestionProvider(error=UpstreamSuggestionError("service down"))
        mappings = MappingSuggester(provider, fallback=HeuristicSuggestionProvider()).suggest(fields)

        assert [m.target_field for m in mappings] == ["name", "email", "notes"]

    def test_fallback_skipped_when_provider_answers(self, fields):
        provider = StaticSuggestionProvider([{"source_field": "Founded", "target_field": "notes"}])
        fallback = StaticSuggestionProvider([{"source_field": "Company Name", "target_field": "name"}])

        mappings = MappingSuggester(provider, fallback=fallback).suggest(fields)

        assert [m.source_field for m in mappings] == ["Founded"]
        assert fallback.calls == 0

    def test_returned_suggestions_are_copies(self, fields):
        provider = StaticSuggestionProvider([{"source_field": "Company Name", "target_field": "name"}])

        provider.suggest(fields)[0]["target_field"] = "email"

        assert provider.suggest(fields)[0]["target_field"] == "name"


class TestCompletionSuggestionProvider:
    """Test suite for the chat-completions provider."""

    def test_parses_array_from_model_output(self, fields):
        client = completion_client(
            'Here are the mappings:\n[{"source_field": "Company Name", "target_table": "companies", '
            '"target_field": "name", "confidence": 0.92}]'
        )
        provider = CompletionSuggestionProvider(api_key="sk-test", model="test-model", client=client)

        suggestions = provider.suggest(fields, source_crm="hubspot")

        assert suggestions[0]["target_field"] == "name"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["messages"][0]["role"] == "system"
        assert "Company Name" in kwargs["messages"][1]["content"]
        assert "hubspot" in kwargs["messages"][1]["content"]

    def test_accepts_wrapped_mappings(self, fields):
        client = completion_client(json.dumps({"mappings": [{"source_field": "Email Address", "target_field": "email"}]}))
        provider = CompletionSuggestionProvider(api_key="k", client=client)

        assert provider.suggest(fields) == [{"source_field": "Email Address", "target_field": "email"}]

    def test_joins_content_parts(self, fields):
        client = completion_client([
            {"type": "text", "text": '[{"source_field": "Email Address", '},
            SimpleNamespace(type="text", text='"target_field": "email"}]'),
        ])
        provider = CompletionSuggestionProvider(api_key="k", client=client)

        assert provider.suggest(fields) == [{"source_field": "Email Address", "target_field": "email"}]

    def test_connection_error_raises_upstream_error(self, fields):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.APIConnectionError(request=REQUEST)
        provider = CompletionSuggestionProvider(api_key="k", client=client)

        with pytest.raises(UpstreamSuggestionError):
            provider.suggest(fields)

    def test_status_error_raises_upstream_error(self, fields):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.APIStatusError(
            "Server error", response=httpx.Response(500, request=REQUEST), body=None
        )
        provider = CompletionSuggestionProvider(api_key="k", client=client)

        with pytest.raises(UpstreamSuggestionError):
            provider.suggest(fields)

    def test_response_without_choices_raises_upstream_error(self, fields):
        client = MagicMock()
        client.chat.completions.create.return_value = SimpleNamespace(choices=[])
        provider = CompletionSuggestionProvider(api_key="k", client=client)

        with pytest.raises(UpstreamSuggestionError):
            provider.suggest(fields)

    def test_output_without_json_raises_upstream_error(self, fields):
        client = completion_client("Sorry, I cannot help with that.")
        provider = CompletionSuggestionProvider(api_key="k", client=client)

        with pytest.raises(UpstreamSuggestionError):
            provider.suggest(fields)

    def test_suggester_recovers_from_timeout(self, fields):
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.APITimeoutError(request=REQUEST)
        provider = CompletionSuggestionProvider(api_key="k", client=client)

        assert MappingSuggester(provider).suggest(fields) == []

    def test_builds_client_from_settings(self):
        provider = CompletionSuggestionProvider(
            api_key="sk-test", base_url="http://llm.internal/v1", timeout=5.0, max_retries=4
        )

        assert provider._client.api_key == "sk-test"
        assert str(provider._client.base_url).startswith("http://llm.internal/v1")
        assert provider._client.max_retries == 4


class TestHeuristicSuggestionProvider:
    """Test suite for keyword heuristics."""

    def test_keyword_matches(self, fields):
        mappings = MappingSuggester(HeuristicSuggestionProvider()).suggest(fields)
        by_source = {m.source_field: m for m in mappings}

        assert by_source["Company Name"].target_field == "name"
        assert by_source["Email Address"].target_field == "email"
        assert by_source["Email Address"].confidence == 0.9
        assert by_source["Founded"].target_field == "notes"
        assert by_source["Founded"].confidence == 0.3
        assert by_source["Founded"].transform == TransformKind.DATE

    def test_connector_fields_win(self):
        catalog = ConnectorCatalog()
        fields = [ParsedField(name="BillingCity"), ParsedField(name="Account Name")]
        suggestions = HeuristicSuggestionProvider().suggest(
            fields, catalog.field_definitions("salesforce"), "salesforce"
        )

        assert suggestions[0]["target_field"] == "city"
        assert suggestions[0]["confidence"] == 0.95
        assert suggestions[1]["target_field"] == "name"


def test_build_provider_without_key_is_null():
    assert isinstance(build_provider(EngineConfig()), NullSuggestionProvider)


def test_build_provider_with_key():
    provider = build_provider(EngineConfig(suggestion_api_key="sk-test", suggestion_model="m"))

    assert isinstance(provider, CompletionSuggestionProvider)
    assert provider.model == "m"
    assert provider.base_url is None
