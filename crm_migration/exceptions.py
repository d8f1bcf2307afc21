"""Exceptions raised by the migration engine."""


class MigrationEngineError(Exception):
    """Base exception for all migration engine errors."""

    status_code = 500


class ValidationError(MigrationEngineError):
    """Raised when a request is missing required fields or has invalid values."""

    status_code = 400


class NotFoundError(MigrationEngineError):
    """Raised when a migration, template or connector does not exist."""

    status_code = 404


class PreconditionError(MigrationEngineError):
    """Raised when an operation is not allowed in the migration's current state."""

    status_code = 409


class ParseError(MigrationEngineError):
    """Raised when uploaded content cannot be parsed."""

    status_code = 400


AnalysisError = ParseError


class UpstreamSuggestionError(MigrationEngineError):
    """Raised when the mapping suggestion service is unreachable or returns garbage."""

    status_code = 502


class RecordError(MigrationEngineError):
    """Raised when a single record cannot be transformed or written."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class DestinationWriteError(RecordError):
    """Raised when the destination store rejects a row."""
