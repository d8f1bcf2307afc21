"""Pre-flight validation and duplicate detection for migration records."""

import re
import logging
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.record import DuplicateMatch, MigrationRecord, ValidationIssue
from ..models.schema import FieldMapping
from .transformer import is_empty, parse_number

logger = logging.getLogger(__name__)

DEFAULT_DUPLICATE_FIELDS = ["email", "name", "phone", "cif"]
DEFAULT_SIMILARITY_THRESHOLD = 0.85

# Source field names (lowercased) recognized as company fields for external checks
EXTERNAL_FIELD_ALIASES = {
    "name": "name",
    "nombre": "name",
    "email": "email",
    "phone": "phone",
    "telefono": "phone",
    "cif": "tax_id",
    "nif": "tax_id",
    "tax_id": "tax_id",
}


@dataclass
class ValidationRule:
    """A check applied to values mapped onto a destination field."""
    name: str
    target_field: str
    type: str  # regex, length, range
    message: str
    severity: str = "error"
    pattern: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None
    applies_to_all: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "target_field": self.target_field,
            "type": self.type,
            "pattern": self.pattern,
            "min": self.min,
            "max": self.max,
            "severity": self.severity,
            "message": self.message,
            "applies_to_all": self.applies_to_all,
        }


DEFAULT_RULES = [
    ValidationRule(
        name="email_format",
        target_field="email",
        type="regex",
        pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$",
        severity="error",
        message="Invalid email format",
    ),
    ValidationRule(
        name="phone_format",
        target_field="phone",
        type="regex",
        pattern=r"^[+]?[0-9\s\-().]{6,20}$",
        severity="warning",
        message="Phone number may be invalid",
    ),
    ValidationRule(
        name="tax_id_format",
        target_field="tax_id",
        type="regex",
        pattern=r"^[A-Za-z][0-9]{7,8}[A-Za-z0-9]?$",
        severity="warning",
        message="Tax id (CIF/NIF) may be invalid",
    ),
    ValidationRule(
        name="name_length",
        target_field="name",
        type="length",
        min=2,
        max=200,
        severity="error",
        message="Name must be between 2 and 200 characters",
    ),
    ValidationRule(
        name="postal_code",
        target_field="postal_code",
        type="regex",
        pattern=r"^[0-9]{4,10}$",
        severity="warning",
        message="Postal code may be invalid",
    ),
    ValidationRule(
        name="website_format",
        target_field="website",
        type="regex",
        pattern=r"^(https?://)?([\da-z.-]+)\.([a-z.]{2,6})([/\w .-]*)*/?$",
        severity="warning",
        message="Website URL may be invalid",
    ),
]


@dataclass
class ValidationSummary:
    """Totals of a validation pass over a migration's pending records."""
    total_validated: int = 0
    passed: int = 0
    failed: int = 0
    warnings_count: int = 0
    duplicates: int = 0

    @property
    def has_blocking_errors(self) -> bool:
        return self.failed > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total_validated": self.total_validated,
            "passed": self.passed,
            "failed": self.failed,
            "warnings_count": self.warnings_count,
            "duplicates": self.duplicates,
            "has_blocking_errors": self.has_blocking_errors,
            "can_proceed": not self.has_blocking_errors,
        }


class RecordValidator:
    """
    Validator for source records before loading.

    Supports:
    - Required field checks from the mapping set
    - Regex, length and range rules keyed by destination field
    - Custom validation rules
    """

    def __init__(self, rules: Optional[List[ValidationRule]] = None):
        """Initialize the validator."""
        self.rules = list(DEFAULT_RULES if rules is None else rules)
        self._custom_validators: Dict[str, Callable] = {}

    def register_validator(self, name: str, func: Callable) -> None:
        """Register a custom rule type: ``func(value, rule) -> Optional[str]``."""
        self._custom_validators[name] = func

    def validate_record(
        self,
        source_data: Dict[str, Any],
        mappings: List[FieldMapping]
    ) -> Tuple[List[ValidationIssue], List[ValidationIssue]]:
        """
        Validate one source record against the mappings.

        Returns:
            Tuple of (errors, warnings)
        """
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        for mapping in mappings:
            value = source_data.get(mapping.source_field)

            if mapping.is_required and is_empty(value) and is_empty(mapping.default_value):
                errors.append(ValidationIssue(
                    field=mapping.source_field,
                    message=f"Required field '{mapping.source_field}' is empty",
                    rule="required",
                ))

            for rule in self.rules:
                if not (rule.applies_to_all or rule.target_field == mapping.target_field):
                    continue
                message = self._check(value, rule)
                if message:
                    issue = ValidationIssue(
                        field=mapping.source_field,
                        message=message,
                        rule=rule.name,
                        severity=rule.severity,
                        value=value,
                    )
                    (errors if rule.severity == "error" else warnings).append(issue)

        return errors, warnings

    def validate_records(
        self,
        records: List[MigrationRecord],
        mappings: List[FieldMapping]
    ) -> ValidationSummary:
        """Validate records in place, storing their errors and warnings."""
        summary = ValidationSummary(total_validated=len(records))

        for record in records:
            errors, warnings = self.validate_record(record.source_data, mappings)
            record.validation_errors = errors
            record.validation_warnings = warnings
            if errors:
                summary.failed += 1
            else:
                summary.passed += 1
            summary.warnings_count += len(warnings)

        logger.info(
            f"Validated {summary.total_validated} records: {summary.passed} passed, "
            f"{summary.failed} failed, {summary.warnings_count} warnings"
        )
        return summary

    def _check(self, value: Any, rule: ValidationRule) -> Optional[str]:
        """Return the rule's message if the value breaks it."""
        if is_empty(value):
            return None  # Handled by the required check

        custom = self._custom_validators.get(rule.type)
        if custom:
            return custom(value, rule)

        text = str(value).strip()

        if rule.type == "regex" and rule.pattern:
            if not re.search(rule.pattern, text, re.IGNORECASE):
                return rule.message
        elif rule.type == "length":
            if rule.min is not None and len(text) < rule.min:
                return rule.message
            if rule.max is not None and len(text) > rule.max:
                return rule.message
        elif rule.type == "range":
            number = parse_number(text)
            if number is None:
                return "Invalid numeric value"
            if rule.min is not None and number < rule.min:
                return rule.message
            if rule.max is not None and number > rule.max:
                return rule.message

        return None


def normalize_value(value: Any) -> str:
    """Lowercase, strip accents and keep only letters and digits."""
    text = unicodedata.normalize("NFD", str(value).strip().lower())
    text = "".join(c for c in text if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9]", "", text)


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - edit distance / length of the longer string."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    longer = max(len(a), len(b))
    return (longer - levenshtein_distance(a, b)) / longer


class DuplicateDetector:
    """
    Finds likely duplicates inside an import and against existing companies.

    Values are compared after normalize_value. Company names also match when
    their similarity reaches the threshold.
    """

    def __init__(self, threshold: float = DEFAULT_SIMILARITY_THRESHOLD):
        self.threshold = threshold

    def find_internal(self, records: List[MigrationRecord], fields: List[str]) -> List[DuplicateMatch]:
        """Records repeating an earlier record's value in any checked field."""
        matches = []
        seen: Dict[Tuple[str, str], MigrationRecord] = {}

        for record in records:
            for field in fields:
                value = record.source_data.get(field)
                if is_empty(value):
                    continue
                key = (field, normalize_value(value))
                if not key[1]:
                    continue
                if key in seen:
                    original = seen[key]
                    matches.append(DuplicateMatch(
                        record_index=record.record_index,
                        field=field,
                        value=value,
                        match_type="internal",
                        matched_record_index=original.record_index,
                        matched_id=original.id,
                    ))
                else:
                    seen[key] = record

        return matches

    def find_external(
        self,
        records: List[MigrationRecord],
        fields: List[str],
        existing: List[Dict[str, Any]],
        field_targets: Optional[Dict[str, str]] = None
    ) -> List[DuplicateMatch]:
        """
        Records matching an existing company row.

        Args:
            records: Records to check
            fields: Source fields to compare
            existing: Existing company rows (with ``id``)
            field_targets: Source field -> company field, from the mapping set

        Returns:
            At most one match per record and field
        """
        if not existing:
            return []

        field_targets = field_targets or {}
        matches = []

        for record in records:
            for field in fields:
                value = record.source_data.get(field)
                if is_empty(value):
                    continue
                target = field_targets.get(field) or EXTERNAL_FIELD_ALIASES.get(field.lower())
                if not target:
                    continue

                normalized = normalize_value(value)
                if not normalized:
                    continue
                for row in existing:
                    existing_value = row.get(target)
                    if is_empty(existing_value):
                        continue
                    other = normalize_value(existing_value)
                    score = 1.0 if normalized == other else (
                        similarity(normalized, other)
                        if target == "name" and self.threshold < 1.0 else 0.0
                    )
                    if score >= self.threshold:
                        matches.append(DuplicateMatch(
                            record_index=record.record_index,
                            field=field,
                            value=value,
                            match_type="external",
                            similarity=score,
                            matched_id=row.get("id"),
                        ))
                        break

        return matches
