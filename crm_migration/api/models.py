"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class FieldMappingIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_field: str = ""
    target_field: str = ""
    target_table: str = "companies"
    confidence: Optional[float] = None
    ai_confidence: Optional[float] = None
    transform: Optional[str] = None
    transform_function: Optional[str] = None
    default_value: Optional[Any] = None
    is_required: bool = False
    is_auto_mapped: bool = False
    reasoning: Optional[str] = None


class RollbackOptions(BaseModel):
    dry_run: bool = False


class TemplateConfig(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_public: bool = False


class DetectedField(BaseModel):
    name: str
    type: Optional[str] = None
    sample_values: List[Any] = Field(default_factory=list)


class ActionRequest(BaseModel):
    """Body of ``POST /api/crm-migration``; which fields apply depends on the action."""
    model_config = ConfigDict(extra="allow")

    action: str

    migration_id: Optional[str] = None
    template_id: Optional[str] = None

    # Upload / creation
    name: Optional[str] = None
    source_crm: Optional[str] = None
    file_content: Optional[str] = None
    file_type: Optional[str] = None
    mappings: Optional[List[FieldMappingIn]] = None

    # Listing
    status: Optional[str] = None
    limit: Optional[int] = None

    # Templates
    is_public: bool = False
    description: Optional[str] = None
    template_config: Optional[TemplateConfig] = None

    rollback_options: Optional[RollbackOptions] = None

    # Suggestions, validation and previews
    detected_fields: Optional[List[Union[str, DetectedField]]] = None
    duplicate_fields: Optional[List[str]] = None
    threshold: Optional[float] = None
    source_data: Optional[Dict[str, Any]] = None
    transformation: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None
    transformations: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None
    export_format: str = "json"

    def mapping_dicts(self) -> Optional[List[Dict[str, Any]]]:
        if self.mappings is None:
            return None
        return [m.model_dump(exclude_none=True) for m in self.mappings]


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class HealthResponse(BaseModel):
    status: str = "healthy"
