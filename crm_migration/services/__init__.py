"""Service layer for the migration engine."""

from .connector_catalog import ConnectorCatalog
from .file_analyzer import FileAnalysis, FileAnalyzer
from .llm_inference import MappingSuggester, SuggestionProvider
from .quality import QualityScorer
from .templates import TemplateStore
from .transformer import TransformEngine
from .validator import DuplicateDetector, RecordValidator

__all__ = [
    "ConnectorCatalog",
    "FileAnalysis",
    "FileAnalyzer",
    "MappingSuggester",
    "SuggestionProvider",
    "QualityScorer",
    "TemplateStore",
    "TransformEngine",
    "DuplicateDetector",
    "RecordValidator",
]
