"""Structured-record (JSON) extractor."""

import json
import logging
from typing import Any, Dict, List

from .base import BaseExtractor, ExtractionResult
from ..exceptions import ParseError

logger = logging.getLogger(__name__)

WRAPPER_KEYS = ("data", "records", "items", "results")


class JSONExtractor(BaseExtractor):
    """
    Extractor for JSON exports.

    Accepts a list of objects, a single object, or an object wrapping the
    list under one of the common keys (data, records, items, results).
    Nested objects are flattened with dot notation.
    """

    file_type = "json"

    def extract(self, content: str) -> ExtractionResult:
        """Parse JSON content into records."""
        result = ExtractionResult(file_type=self.file_type)

        try:
            data = json.loads(content)
        except (TypeError, json.JSONDecodeError) as e:
            raise ParseError(f"Invalid JSON: {e}") from e

        if isinstance(data, dict):
            for key in WRAPPER_KEYS:
                if isinstance(data.get(key), list):
                    items = data[key]
                    break
            else:
                items = [data]
        elif isinstance(data, list):
            items = data
        else:
            raise ParseError("JSON content must be an object or a list of objects")

        for idx, item in enumerate(items):
            if isinstance(item, dict):
                result.records.append(self._flatten(item))
            else:
                result.warnings.append(f"Item {idx} is not an object; stored under 'value'")
                result.records.append({"value": item})

        result.fields = self.collect_fields(result.records)
        logger.info(f"Parsed {result.total_extracted} JSON records with {len(result.fields)} fields")
        return result

    def _flatten(self, item: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
        """Flatten nested objects into dot-notation keys."""
        flat: Dict[str, Any] = {}
        for key, value in item.items():
            path = f"{prefix}{key}"
            if isinstance(value, dict) and value:
                flat.update(self._flatten(value, f"{path}."))
            else:
                flat[path] = value
        return flat
