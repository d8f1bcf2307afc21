"""LLM-powered field mapping suggestions."""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import openai

from ..exceptions import UpstreamSuggestionError
from ..config import EngineConfig
from ..models.schema import (
    CANONICAL_SCHEMA,
    FieldMapping,
    ParsedField,
    schema_summary,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a CRM data migration expert. Suggest how fields exported from a
source CRM map onto the destination tables below (* marks required fields).

Destination tables:
{schema}

Respond ONLY with a JSON array. Each element must look like:
{{
  "source_field": "source field name",
  "target_table": "destination table",
  "target_field": "destination field",
  "confidence": 0.0-1.0,
  "transform": "none|lowercase|uppercase|trim|date|number|null",
  "reasoning": "short explanation"
}}"""


class SuggestionProvider(ABC):
    """Source of raw mapping suggestions for a set of parsed fields."""

    @abstractmethod
    def suggest(
        self,
        fields: List[ParsedField],
        connector_fields: Optional[Dict[str, Dict[str, Any]]] = None,
        source_crm: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Produce raw suggestion dicts.

        Raises:
            UpstreamSuggestionError: If the provider cannot produce suggestions
        """
        pass


class NullSuggestionProvider(SuggestionProvider):
    """Provider used when no suggestion service is configured."""

    def suggest(self, fields, connector_fields=None, source_crm=None):
        return []


class StaticSuggestionProvider(SuggestionProvider):
    """Returns a fixed list of suggestions (or raises a fixed error)."""

    def __init__(self, suggestions: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.suggestions = suggestions or []
        self.error = error
        self.calls = 0

    def suggest(self, fields, connector_fields=None, source_crm=None):
        self.calls += 1
        if self.error:
            raise self.error
        return [dict(s) if isinstance(s, dict) else s for s in self.suggestions]


class HeuristicSuggestionProvider(SuggestionProvider):
    """
    Keyword-based suggestions.

    Exact matches against the connector's field definitions win; otherwise
    each field is matched by keywords in its name, falling back to
    ``companies.notes`` with low confidence.
    """

    # (keywords, target field, confidence), first hit wins
    KEYWORD_RULES = [
        (("name", "nombre"), "name", 0.85),
        (("email", "correo"), "email", 0.9),
        (("phone", "telefono", "tel"), "phone", 0.85),
        (("address", "direccion"), "address", 0.8),
        (("city", "ciudad"), "city", 0.85),
        (("country", "pais"), "country", 0.85),
        (("cif", "nif", "tax"), "tax_id", 0.8),
        (("sector", "industry"), "sector", 0.75),
    ]

    def suggest(self, fields, connector_fields=None, source_crm=None):
        by_name = self._index_connector_fields(connector_fields or {})
        suggestions = []

        for f in fields:
            known = by_name.get(f.name.lower())
            if known:
                table, _, target = known.partition(".")
                suggestions.append({
                    "source_field": f.name,
                    "target_table": table,
                    "target_field": target,
                    "confidence": 0.95,
                    "reasoning": f"Known {source_crm or 'connector'} field",
                })
                continue

            name = f.name.lower()
            target, confidence = "notes", 0.3
            for keywords, rule_target, rule_confidence in self.KEYWORD_RULES:
                if any(k in name for k in keywords):
                    target, confidence = rule_target, rule_confidence
                    break

            suggestions.append({
                "source_field": f.name,
                "target_table": "companies",
                "target_field": target,
                "confidence": confidence,
                "transform": "date" if f.type.value == "date" else "none",
                "reasoning": "Keyword match" if confidence > 0.3 else "No match; kept as notes",
            })

        return suggestions

    def _index_connector_fields(self, connector_fields: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
        index = {}
        for name, definition in connector_fields.items():
            target = definition.get("target")
            if not target or "." not in target:
                continue
            index[name.lower()] = target
            for alias in definition.get("aliases", []):
                index[alias.lower()] = target
        return index


class CompletionSuggestionProvider(SuggestionProvider):
    """
    Suggestions from an OpenAI-compatible chat completions endpoint.

    Supports:
    - OpenAI or any endpoint speaking its API (via ``base_url``)
    - Retries on rate limits and server errors (handled by the client)
    - JSON extraction from free-form model output
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        max_retries: int = 2,
        client: Optional[openai.OpenAI] = None
    ):
        """
        Initialize the completion provider.

        Args:
            api_key: API key for the endpoint
            base_url: API base URL; None uses the OpenAI default
            model: Model to request
            timeout: Per-request timeout in seconds
            max_retries: Retries on connection errors, 429 and 5xx
            client: Optional pre-configured client
        """
        self.api_key = api_key
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self._client = client or openai.OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    def suggest(self, fields, connector_fields=None, source_crm=None):
        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT.format(schema=schema_summary())},
                {"role": "user", "content": self._build_prompt(fields, connector_fields, source_crm)},
            ],
            "temperature": 0.3,
            "max_tokens": 2000,
        }

        try:
            response = self._client.chat.completions.create(**kwargs)
            content = response.choices[0].message.content
        except openai.OpenAIError as e:
            raise UpstreamSuggestionError(f"Suggestion service request failed: {e}") from e
        except (AttributeError, IndexError, TypeError) as e:
            raise UpstreamSuggestionError(f"Unexpected suggestion service response: {e}") from e

        return self._extract_json(content)

    def _build_prompt(
        self,
        fields: List[ParsedField],
        connector_fields: Optional[Dict[str, Dict[str, Any]]],
        source_crm: Optional[str]
    ) -> str:
        """Build the user prompt listing the detected fields."""
        lines = [f"Source CRM: {source_crm or 'unknown'}", "", "Detected fields:"]
        for f in fields:
            samples = ", ".join(str(v) for v in f.sample_values[:3])
            lines.append(f"- {f.name} ({f.type.value}): examples: {samples}")

        if connector_fields:
            lines.extend(["", "Known fields for this CRM:", json.dumps(connector_fields, indent=2)])

        lines.extend(["", "Suggest the best mappings for these fields."])
        return "\n".join(lines)

    @staticmethod
    def _content_text(content: Any) -> str:
        """Message content as text; content-part lists are joined."""
        if content is None:
            return ""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts = []
            for part in content:
                if isinstance(part, str):
                    parts.append(part)
                elif isinstance(part, dict) and isinstance(part.get("text"), str):
                    parts.append(part["text"])
                elif isinstance(getattr(part, "text", None), str):
                    parts.append(part.text)
            return "".join(parts)
        raise UpstreamSuggestionError(f"Unexpected message content type: {type(content).__name__}")

    def _extract_json(self, content: Any) -> List[Dict[str, Any]]:
        """Pull the JSON array (or {"mappings": [...]}) out of model output."""
        json_match = re.search(r'[\[{][\s\S]*[\]}]', self._content_text(content))
        if not json_match:
            raise UpstreamSuggestionError("No JSON found in suggestion service response")

        try:
            data = json.loads(json_match.group())
        except json.JSONDecodeError as e:
            raise UpstreamSuggestionError(f"Malformed JSON in suggestion service response: {e}") from e

        if isinstance(data, dict):
            data = data.get("mappings", [])
        if not isinstance(data, list):
            raise UpstreamSuggestionError("Suggestion service response is not a list")
        return data


class MappingSuggester:
    """
    Turns provider output into validated field mappings.

    Provider failures are logged and yield no suggestions; they never fail
    the calling request. When a fallback provider is set it is asked
    whenever the main provider yields nothing usable.
    """

    def __init__(
        self,
        provider: Optional[SuggestionProvider] = None,
        fallback: Optional[SuggestionProvider] = None
    ):
        self.provider = provider or NullSuggestionProvider()
        self.fallback = fallback

    def suggest(
        self,
        fields: List[ParsedField],
        connector_fields: Optional[Dict[str, Dict[str, Any]]] = None,
        source_crm: Optional[str] = None
    ) -> List[FieldMapping]:
        """
        Suggest mappings for parsed fields.

        Args:
            fields: Fields from file analysis
            connector_fields: Field definitions of the source connector
            source_crm: Source connector key

        Returns:
            Valid mappings; empty when every provider fails
        """
        if not fields:
            return []

        mappings = self._ask(self.provider, fields, connector_fields, source_crm)
        if not mappings and self.fallback is not None:
            logger.info("No provider suggestions; using fallback suggestions")
            mappings = self._ask(self.fallback, fields, connector_fields, source_crm)
        return mappings

    def _ask(self, provider, fields, connector_fields, source_crm) -> List[FieldMapping]:
        try:
            raw = provider.suggest(fields, connector_fields, source_crm)
            return self.normalize(raw, {f.name for f in fields})
        except UpstreamSuggestionError as e:
            logger.warning(f"Mapping suggestion failed: {e}")
        except Exception as e:
            logger.error(f"Mapping suggestion crashed: {e}", exc_info=True)
        return []

    def normalize(self, raw: List[Any], source_fields: Optional[set] = None) -> List[FieldMapping]:
        """Validate raw suggestion dicts, dropping unusable entries."""
        if not isinstance(raw, list):
            raise UpstreamSuggestionError("Suggestions must be a list")

        mappings = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            source = item.get("source_field")
            target = item.get("target_field")
            table = item.get("target_table") or "companies"
            if not isinstance(source, str) or not isinstance(target, str) or not isinstance(table, str):
                continue
            if not source or not target:
                continue
            if source_fields is not None and source not in source_fields:
                logger.debug(f"Dropping suggestion for unknown source field: {source}")
                continue
            spec = CANONICAL_SCHEMA.get(table)
            if spec is None or target not in spec.fields:
                logger.debug(f"Dropping suggestion for unknown destination: {table}.{target}")
                continue

            mapping = FieldMapping.from_dict(item)
            if "confidence" not in item and "ai_confidence" not in item:
                mapping.confidence = 0.5
            mapping.is_auto_mapped = True
            mappings.append(mapping)

        return mappings


def build_provider(config: EngineConfig) -> SuggestionProvider:
    """Completion provider when an API key is configured, otherwise none."""
    if config.suggestion_api_key:
        return CompletionSuggestionProvider(
            api_key=config.suggestion_api_key,
            base_url=config.suggestion_base_url,
            model=config.suggestion_model,
            timeout=config.suggestion_timeout,
            max_retries=config.suggestion_max_retries,
        )
    logger.info("No suggestion API key configured; AI mapping suggestions disabled")
    return NullSuggestionProvider()
