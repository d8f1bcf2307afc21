"""Schema models for source fields, field mappings and the destination schema."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid


class FieldType(str, Enum):
    """Types inferred for source fields."""
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class TransformKind(str, Enum):
    """Transforms applied to a source value before it is written."""
    NONE = "none"
    LOWERCASE = "lowercase"
    UPPERCASE = "uppercase"
    TRIM = "trim"
    DATE = "date"
    NUMBER = "number"
    NULL = "null"  # Drop the field

    @classmethod
    def parse(cls, value: Any) -> "TransformKind":
        """Coerce an arbitrary value to a transform, unknown values become NONE."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NONE


@dataclass
class ParsedField:
    """A field discovered while analyzing an uploaded file."""
    name: str
    type: FieldType = FieldType.STRING
    sample_values: List[Any] = field(default_factory=list)
    null_count: int = 0
    null_rate: float = 0.0
    mixed_types: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "type": self.type.value,
            "sample_values": self.sample_values,
            "null_count": self.null_count,
            "null_rate": self.null_rate,
            "mixed_types": self.mixed_types,
        }


def _clamp(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:  # NaN
        return 0.0
    return max(0.0, min(1.0, number))


@dataclass
class FieldMapping:
    """Mapping from a source field to a destination table field."""
    source_field: str
    target_field: str
    target_table: str = "companies"
    confidence: float = 1.0
    transform: TransformKind = TransformKind.NONE
    default_value: Optional[Any] = None
    is_required: bool = False
    is_auto_mapped: bool = False
    reasoning: str = ""

    def __post_init__(self):
        self.confidence = _clamp(self.confidence)
        self.transform = TransformKind.parse(self.transform)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_field": self.source_field,
            "target_table": self.target_table,
            "target_field": self.target_field,
            "confidence": self.confidence,
            "transform": self.transform.value,
            "default_value": self.default_value,
            "is_required": self.is_required,
            "is_auto_mapped": self.is_auto_mapped,
            "reasoning": self.reasoning,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMapping":
        """Create from dictionary representation.

        Accepts the ``ai_confidence`` and ``transform_function`` aliases used by
        exported mapping templates.
        """
        confidence = data.get("confidence", data.get("ai_confidence", 1.0))
        transform = data.get("transform", data.get("transform_function")) or "none"
        return cls(
            source_field=data.get("source_field", ""),
            target_table=data.get("target_table") or "companies",
            target_field=data.get("target_field", ""),
            confidence=1.0 if confidence is None else confidence,
            transform=transform,
            default_value=data.get("default_value"),
            is_required=bool(data.get("is_required", False)),
            is_auto_mapped=bool(data.get("is_auto_mapped", False)),
            reasoning=data.get("reasoning") or "",
        )


def duplicate_target_warnings(mappings: List[FieldMapping]) -> List[str]:
    """Warn about destination fields targeted by more than one mapping."""
    seen: Dict[tuple, str] = {}
    warnings = []
    for mapping in mappings:
        key = (mapping.target_table, mapping.target_field)
        if key in seen:
            warnings.append(
                f"{mapping.target_table}.{mapping.target_field} is mapped from both "
                f"'{seen[key]}' and '{mapping.source_field}'; the last value wins"
            )
        else:
            seen[key] = mapping.source_field
    return warnings


@dataclass
class Connector:
    """A known source CRM with its typical export layout."""
    key: str
    name: str
    vendor: str
    field_definitions: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    detection_keywords: List[str] = field(default_factory=list)
    typical_fields: List[str] = field(default_factory=list)
    supported_formats: List[str] = field(default_factory=lambda: ["csv", "json"])
    popularity_rank: int = 100
    is_active: bool = True
    tier: str = "standard"
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "key": self.key,
            "name": self.name,
            "vendor": self.vendor,
            "description": self.description,
            "field_definitions": self.field_definitions,
            "detection_keywords": self.detection_keywords,
            "typical_fields": self.typical_fields,
            "supported_formats": self.supported_formats,
            "popularity_rank": self.popularity_rank,
            "is_active": self.is_active,
            "tier": self.tier,
        }


@dataclass
class MappingTemplate:
    """A reusable, named set of field mappings for a source CRM."""
    name: str
    source_crm: str
    field_mappings: List[FieldMapping] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    description: str = ""
    is_public: bool = False
    usage_count: int = 0
    success_rate: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "source_crm": self.source_crm,
            "description": self.description,
            "field_mappings": [m.to_dict() for m in self.field_mappings],
            "is_public": self.is_public,
            "usage_count": self.usage_count,
            "success_rate": self.success_rate,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TableSpec:
    """A destination table: its fields, required fields and parent link."""
    name: str
    fields: Dict[str, FieldType]
    required: List[str] = field(default_factory=list)
    parent: Optional[str] = None  # Parent table name
    parent_field: Optional[str] = None  # Field holding the parent's id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "fields": {k: v.value for k, v in self.fields.items()},
            "required": self.required,
            "parent": self.parent,
            "parent_field": self.parent_field,
        }


S = FieldType.STRING

# Ordered parent-first; writes follow this order.
CANONICAL_SCHEMA: Dict[str, TableSpec] = {
    "companies": TableSpec(
        name="companies",
        fields={
            "name": S, "tax_id": S, "address": S, "city": S, "province": S,
            "postal_code": S, "country": S, "phone": S, "email": S,
            "website": S, "sector": S, "status": S, "notes": S,
        },
        required=["name"],
    ),
    "company_contacts": TableSpec(
        name="company_contacts",
        fields={
            "company_id": S, "name": S, "position": S, "phone": S, "email": S,
            "is_primary": FieldType.BOOLEAN,
        },
        required=["name"],
        parent="companies",
        parent_field="company_id",
    ),
    "visits": TableSpec(
        name="visits",
        fields={
            "company_id": S, "date": FieldType.DATE, "type": S, "result": S, "notes": S,
        },
        required=["date"],
        parent="companies",
        parent_field="company_id",
    ),
    "company_products": TableSpec(
        name="company_products",
        fields={
            "company_id": S, "product_id": S, "contracted_at": FieldType.DATE,
            "amount": FieldType.NUMBER,
        },
        required=["product_id"],
        parent="companies",
        parent_field="company_id",
    ),
}

del S


def schema_summary() -> str:
    """Render the destination schema as prompt-friendly text."""
    lines = []
    for spec in CANONICAL_SCHEMA.values():
        cols = ", ".join(
            f"{name}{'*' if name in spec.required else ''}" for name in spec.fields
        )
        lines.append(f"- {spec.name}: {cols}")
    return "\n".join(lines)
