"""File analysis: parsing, schema inference, quality scoring and mapping suggestions."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..extractors import BaseExtractor, ExtractionResult, get_extractor
from ..models.schema import FieldMapping, FieldType, ParsedField
from .connector_catalog import ConnectorCatalog
from .llm_inference import MappingSuggester
from .quality import QualityScorer
from .transformer import is_empty, parse_date, parse_number

logger = logging.getLogger(__name__)

BOOLEAN_LITERALS = {"true", "false", "yes", "no"}

DATE_PATTERN = re.compile(
    r"^(\d{4}-\d{1,2}-\d{1,2}([T ][\d:.]+(Z|[+-]\d{2}:?\d{2})?)?"
    r"|\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}"
    r"|\d{4}/\d{1,2}/\d{1,2}"
    r"|\d{1,2} [A-Za-z]{3,9},? \d{4}"
    r"|[A-Za-z]{3,9} \d{1,2},? \d{4})$"
)


def infer_value_type(value: Any) -> FieldType:
    """Infer the type of one non-null value."""
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, (int, float)):
        return FieldType.NUMBER
    if isinstance(value, str):
        text = value.strip()
        if text.lower() in BOOLEAN_LITERALS:
            return FieldType.BOOLEAN
        if DATE_PATTERN.match(text) and parse_date(text) is not None:
            return FieldType.DATE
        if parse_number(text) is not None:
            return FieldType.NUMBER
    return FieldType.STRING


@dataclass
class FileAnalysis:
    """Outcome of analyzing an uploaded export."""
    file_type: str
    record_count: int
    fields: List[ParsedField] = field(default_factory=list)
    quality: int = 0
    detected_crm: str = "universal"
    suggested_mappings: List[FieldMapping] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    records: List[Dict[str, Any]] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "detected_crm": self.detected_crm,
            "detected_format": self.file_type,
            "record_count": self.record_count,
            "fields": [f.to_dict() for f in self.fields],
            "quality": self.quality,
            "suggested_mappings": [m.to_dict() for m in self.suggested_mappings],
            "warnings": self.warnings,
            "recommendations": self.recommendations,
        }


class FileAnalyzer:
    """
    Analyzer for uploaded CRM exports.

    Supports:
    - CSV and JSON parsing
    - Field type and null-rate inference
    - Source CRM detection
    - Quality scoring and mapping suggestions
    """

    def __init__(
        self,
        catalog: Optional[ConnectorCatalog] = None,
        suggester: Optional[MappingSuggester] = None,
        scorer: Optional[QualityScorer] = None,
        sample_size: int = 20,
        sample_values: int = 5
    ):
        """
        Initialize the analyzer.

        Args:
            catalog: Connector catalog for detection and field definitions
            suggester: Mapping suggester
            scorer: Quality scorer
            sample_size: Non-null values examined per field for type inference
            sample_values: Sample values reported per field
        """
        self.catalog = catalog or ConnectorCatalog()
        self.suggester = suggester or MappingSuggester()
        self.scorer = scorer or QualityScorer()
        self.sample_size = sample_size
        self.sample_values = sample_values

    def parse(self, content: str, file_type: str) -> ExtractionResult:
        """Parse content with the extractor for its file type."""
        return get_extractor(file_type).extract(content)

    def infer_fields(self, records: List[Dict[str, Any]], field_names: Optional[List[str]] = None) -> List[ParsedField]:
        """
        Infer type, null-rate and samples for every field.

        Args:
            records: Parsed records
            field_names: Field order; defaults to order of first appearance

        Returns:
            One ParsedField per field
        """
        if not records:
            return []

        names = field_names or BaseExtractor.collect_fields(records)
        total = len(records)
        fields = []

        for name in names:
            values = [r.get(name) for r in records]
            non_null = [v for v in values if not is_empty(v)]
            sample = non_null[:self.sample_size]
            types = {infer_value_type(v) for v in sample}
            # Disagreeing samples fall back to string
            field_type = next(iter(types)) if len(types) == 1 else FieldType.STRING

            null_count = total - len(non_null)
            fields.append(ParsedField(
                name=name,
                type=field_type,
                sample_values=non_null[:self.sample_values],
                null_count=null_count,
                null_rate=round(null_count / total, 4),
                mixed_types=len(types) > 1,
            ))

        return fields

    def analyze(self, content: str, file_type: str, source_crm: Optional[str] = None) -> FileAnalysis:
        """
        Analyze uploaded content.

        Args:
            content: Raw file content
            file_type: csv or json
            source_crm: Connector key hint; detected from field names if omitted

        Returns:
            FileAnalysis

        Raises:
            ParseError: If the content cannot be parsed
        """
        extraction = self.parse(content, file_type)
        records = extraction.records
        fields = self.infer_fields(records, extraction.fields)

        detected_crm = source_crm or self.catalog.detect(f.name for f in fields)
        suggestions = self.suggester.suggest(
            fields,
            self.catalog.field_definitions(detected_crm),
            detected_crm,
        )

        quality, quality_warnings = self.scorer.score(records, fields)

        analysis = FileAnalysis(
            file_type=extraction.file_type,
            record_count=len(records),
            fields=fields,
            quality=quality,
            detected_crm=detected_crm,
            suggested_mappings=suggestions,
            warnings=extraction.warnings + quality_warnings,
            recommendations=self.scorer.recommendations(fields, suggestions) if fields else [],
            records=records,
        )

        logger.info(
            f"Analyzed {analysis.record_count} {file_type} records: {len(fields)} fields, "
            f"quality {quality}, detected CRM '{detected_crm}'"
        )
        return analysis
