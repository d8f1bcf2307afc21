"""Transformation engine for turning source records into destination rows."""

import re
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional
from dateutil import parser as date_parser

from ..exceptions import RecordError, ValidationError
from ..models.schema import CANONICAL_SCHEMA, FieldMapping, TransformKind

logger = logging.getLogger(__name__)

_OMIT = object()


def is_empty(value: Any) -> bool:
    """None, or a string holding only whitespace."""
    return value is None or (isinstance(value, str) and not value.strip())


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a calendar date or timestamp string, None if it is not one."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date_parser.parse(value.strip())
    except (ValueError, OverflowError):
        return None


def format_date(parsed: datetime) -> str:
    """ISO 8601 text; midnight without a timezone is written as a plain date."""
    if parsed.time() == datetime.min.time() and parsed.tzinfo is None:
        return parsed.date().isoformat()
    return parsed.isoformat()


def parse_number(value: Any) -> Optional[float]:
    """Parse a numeric value, None if it is not one. Booleans are not numbers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not re.fullmatch(r"[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?", text):
        return None
    number = float(text)
    if number.is_integer() and re.fullmatch(r"[-+]?\d+", text):
        return int(text)
    return number


class TransformEngine:
    """
    Engine for transforming source records to destination rows.

    Supports:
    - The mapping transforms (none, lowercase, uppercase, trim, date, number, null)
    - Default values and required-field checks
    - Grouping mapped values into one row per destination table
    - Advanced transformations for previews (replace, extract, concat, ...)
    """

    def __init__(self):
        """Initialize the transform engine."""
        self._custom_transforms: Dict[str, Callable] = {}
        self._advanced_transforms = self._register_advanced_transforms()

    def _register_advanced_transforms(self) -> Dict[str, Callable]:
        """Register all built-in advanced transformation functions."""
        return {
            "trim": self._transform_trim,
            "lowercase": self._transform_lowercase,
            "uppercase": self._transform_uppercase,
            "capitalize": self._transform_capitalize,
            "replace": self._transform_replace,
            "extract": self._transform_extract,
            "concat": self._transform_concat,
            "split": self._transform_split,
            "date_format": self._transform_date_format,
            "number": self._transform_number,
            "default": self._transform_default,
            "map": self._transform_map,
            "normalize_phone": self._transform_normalize_phone,
            "normalize_tax_id": self._transform_normalize_tax_id,
            "normalize_cif": self._transform_normalize_tax_id,
        }

    def register_transform(self, name: str, func: Callable) -> None:
        """Register a custom advanced transformation function."""
        self._custom_transforms[name] = func

    @property
    def advanced_transform_names(self) -> List[str]:
        return sorted(set(self._advanced_transforms) | set(self._custom_transforms))

    def apply_transform(self, value: Any, transform: TransformKind, field: Optional[str] = None) -> Any:
        """
        Apply a mapping transform to one value.

        String transforms leave non-string values untouched.

        Raises:
            RecordError: If a date or number conversion fails
        """
        transform = TransformKind.parse(transform)

        if transform == TransformKind.NULL:
            return _OMIT
        if transform == TransformKind.LOWERCASE:
            return value.lower() if isinstance(value, str) else value
        if transform == TransformKind.UPPERCASE:
            return value.upper() if isinstance(value, str) else value
        if transform == TransformKind.TRIM:
            return value.strip() if isinstance(value, str) else value
        if transform == TransformKind.DATE:
            parsed = parse_date(value)
            if parsed is None:
                raise RecordError(f"Cannot convert {value!r} to a date", field=field)
            return format_date(parsed)
        if transform == TransformKind.NUMBER:
            number = parse_number(value)
            if number is None:
                raise RecordError(f"Cannot convert {value!r} to a number", field=field)
            return number

        return value

    def build_rows(
        self,
        source_data: Dict[str, Any],
        mappings: List[FieldMapping]
    ) -> Dict[str, Dict[str, Any]]:
        """
        Apply mappings to a source record.

        Args:
            source_data: The source record
            mappings: Field mappings of the migration

        Returns:
            Destination rows keyed by table, parent tables first

        Raises:
            RecordError: If a required value is missing or a conversion fails
        """
        rows: Dict[str, Dict[str, Any]] = {}

        for mapping in mappings:
            value = source_data.get(mapping.source_field)

            if is_empty(value):
                value = mapping.default_value
                if is_empty(value):
                    if mapping.is_required:
                        raise RecordError(
                            f"Required field '{mapping.source_field}' is empty",
                            field=mapping.source_field,
                        )
                    continue
            else:
                value = self.apply_transform(value, mapping.transform, field=mapping.source_field)
                if value is _OMIT:
                    continue

            rows.setdefault(mapping.target_table, {})[mapping.target_field] = value

        order = list(CANONICAL_SCHEMA)
        return {
            table: rows[table]
            for table in sorted(rows, key=lambda t: order.index(t) if t in order else len(order))
        }

    def preview(self, source_data: Dict[str, Any], transformations: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Apply advanced transformations to a copy of a record.

        Each transformation is ``{"type", "field", "target_field"?, "params"?}``;
        the result is written to ``target_field`` (or back to ``field``).
        """
        result = dict(source_data)

        for transformation in transformations:
            kind = transformation.get("type")
            field = transformation.get("field")
            if not kind or not field:
                raise ValidationError("Each transformation needs a type and a field")

            func = self._custom_transforms.get(kind) or self._advanced_transforms.get(kind)
            if not func:
                raise ValidationError(f"Unknown transformation: {kind}")

            target_field = transformation.get("target_field") or field
            params = transformation.get("params") or {}
            value = func(result.get(field), params, result)
            if value is not _OMIT:
                result[target_field] = value

        return result

    # Advanced transform functions; returning _OMIT leaves the record unchanged

    def _transform_trim(self, value: Any, params: Dict, data: Dict) -> Any:
        """Strip surrounding whitespace."""
        return value.strip() if isinstance(value, str) else _OMIT

    def _transform_lowercase(self, value: Any, params: Dict, data: Dict) -> Any:
        """Convert to lowercase."""
        return value.lower() if isinstance(value, str) else _OMIT

    def _transform_uppercase(self, value: Any, params: Dict, data: Dict) -> Any:
        """Convert to uppercase."""
        return value.upper() if isinstance(value, str) else _OMIT

    def _transform_capitalize(self, value: Any, params: Dict, data: Dict) -> Any:
        """Capitalize each space-separated word."""
        if not isinstance(value, str):
            return _OMIT
        return " ".join(word[:1].upper() + word[1:] for word in value.lower().split(" "))

    def _transform_replace(self, value: Any, params: Dict, data: Dict) -> Any:
        """Regex replace of params.search with params.replace."""
        if not isinstance(value, str) or "search" not in params:
            return _OMIT
        try:
            return re.sub(params["search"], str(params.get("replace", "")), value)
        except re.error as e:
            raise ValidationError(f"Invalid replace pattern: {e}") from e

    def _transform_extract(self, value: Any, params: Dict, data: Dict) -> Any:
        """First capture group (or whole match) of params.pattern."""
        if not isinstance(value, str) or not params.get("pattern"):
            return _OMIT
        try:
            match = re.search(params["pattern"], value)
        except re.error as e:
            raise ValidationError(f"Invalid extract pattern: {e}") from e
        if not match:
            return value
        return match.group(1) if match.groups() and match.group(1) is not None else match.group(0)

    def _transform_concat(self, value: Any, params: Dict, data: Dict) -> Any:
        """Join params.fields with params.separator, skipping missing values."""
        fields = params.get("fields")
        if not fields:
            return _OMIT
        separator = params.get("separator") or " "
        return separator.join(str(data[f]) for f in fields if data.get(f) is not None)

    def _transform_split(self, value: Any, params: Dict, data: Dict) -> Any:
        """Part params.index of the value split on params.separator."""
        if not isinstance(value, str):
            return _OMIT
        separator = params.get("separator") or ","
        index = int(params.get("index") or 0)
        parts = value.split(separator)
        part = parts[index].strip() if -len(parts) <= index < len(parts) else ""
        return part or value

    def _transform_date_format(self, value: Any, params: Dict, data: Dict) -> Any:
        """Reformat a date with params.format (strftime), ISO 8601 by default."""
        if is_empty(value):
            return _OMIT
        parsed = parse_date(value)
        if parsed is None:
            return value
        fmt = params.get("format")
        return parsed.strftime(fmt) if fmt and "%" in fmt else parsed.isoformat()

    def _transform_number(self, value: Any, params: Dict, data: Dict) -> Any:
        """Strip non-numeric characters and parse; 0 when nothing is left."""
        if value is None:
            return _OMIT
        number = parse_number(re.sub(r"[^0-9.\-]", "", str(value)))
        return 0 if number is None else number

    def _transform_default(self, value: Any, params: Dict, data: Dict) -> Any:
        """Use params.value when the value is empty."""
        return params.get("value") if is_empty(value) else _OMIT

    def _transform_map(self, value: Any, params: Dict, data: Dict) -> Any:
        """Look up the lowercased value in params.mapping."""
        mapping = params.get("mapping")
        if not isinstance(mapping, dict):
            return _OMIT
        return mapping.get(str(value).lower(), value)

    def _transform_normalize_phone(self, value: Any, params: Dict, data: Dict) -> Any:
        """Keep digits and '+', adding params.country_prefix to long local numbers."""
        if not isinstance(value, str):
            return _OMIT
        cleaned = re.sub(r"[^0-9+]", "", value)
        prefix = params.get("country_prefix", "+34")
        if len(cleaned) >= 9 and not cleaned.startswith("+"):
            return f"{prefix}{cleaned}"
        return cleaned

    def _transform_normalize_tax_id(self, value: Any, params: Dict, data: Dict) -> Any:
        """Uppercase and keep only letters and digits."""
        if not isinstance(value, str):
            return _OMIT
        return re.sub(r"[^A-Z0-9]", "", value.upper())
