"""Content extractors for uploaded CRM exports."""

from .base import BaseExtractor, ExtractionResult, get_extractor
from .csv_extractor import CSVExtractor
from .json_extractor import JSONExtractor

__all__ = [
    "BaseExtractor",
    "ExtractionResult",
    "get_extractor",
    "CSVExtractor",
    "JSONExtractor",
]
