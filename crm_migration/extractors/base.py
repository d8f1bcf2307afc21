"""Base extractor interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List
import logging

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Records parsed from uploaded content."""
    file_type: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    fields: List[str] = field(default_factory=list)  # Order of first appearance
    warnings: List[str] = field(default_factory=list)

    @property
    def total_extracted(self) -> int:
        return len(self.records)


class BaseExtractor(ABC):
    """
    Base class for content extractors.

    Extractors turn the raw text of an uploaded CRM export into a list of
    flat records (field name -> value).
    """

    file_type: str = ""

    @abstractmethod
    def extract(self, content: str) -> ExtractionResult:
        """
        Parse the content.

        Args:
            content: Raw file content

        Returns:
            ExtractionResult with the parsed records

        Raises:
            ParseError: If the content is malformed
        """
        pass

    @staticmethod
    def collect_fields(records: List[Dict[str, Any]]) -> List[str]:
        """Union of record keys in order of first appearance."""
        seen: Dict[str, None] = {}
        for record in records:
            for key in record:
                seen.setdefault(key, None)
        return list(seen)


def get_extractor(file_type: str) -> BaseExtractor:
    """Return the extractor for a file type (csv or json)."""
    from .csv_extractor import CSVExtractor
    from .json_extractor import JSONExtractor
    from ..exceptions import ValidationError

    extractors = {"csv": CSVExtractor, "json": JSONExtractor}
    key = (file_type or "").lower().lstrip(".")
    if key not in extractors:
        raise ValidationError(f"Unsupported file type: {file_type}")
    return extractors[key]()
