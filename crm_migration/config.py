"""Engine configuration."""

import os
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional

ENV_PREFIX = "CRM_MIGRATION_"


@dataclass
class EngineConfig:
    """Runtime configuration for the migration engine."""
    # Ingestion
    record_batch_cap: int = 1000  # Max records materialized per migration
    raw_preview_chars: int = 10000  # Raw content kept on the migration config
    sample_size: int = 20  # Non-null values examined per field for type inference
    sample_values: int = 5  # Sample values reported per field

    # Execution
    max_workers: int = 2

    # Mapping suggestions (OpenAI-compatible chat completions endpoint)
    suggestion_api_key: Optional[str] = None
    suggestion_base_url: Optional[str] = None  # None uses the OpenAI default
    suggestion_max_retries: int = 2
    suggestion_model: str = "gpt-4o-mini"
    suggestion_timeout: float = 30.0

    # Destination; None keeps everything in memory
    database_url: Optional[str] = None

    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (secrets masked)."""
        data = asdict(self)
        if data["suggestion_api_key"]:
            data["suggestion_api_key"] = "***"
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create from dictionary representation, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """Build a config from CRM_MIGRATION_* environment variables."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is None or raw == "":
                continue
            if f.type in (int, "int"):
                values[f.name] = int(raw)
            elif f.type in (float, "float"):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw

        if "suggestion_api_key" not in values and environ.get("OPENAI_API_KEY"):
            values["suggestion_api_key"] = environ["OPENAI_API_KEY"]

        return cls(**values)
