"""Mapping template library."""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import NotFoundError, ValidationError
from ..models.migration import Migration
from ..models.schema import FieldMapping, MappingTemplate
from ..storage.base import TemplateRepo
from ..storage.memory import InMemoryTemplateRepo

logger = logging.getLogger(__name__)


class TemplateStore:
    """
    Saves and reuses named mapping sets.

    Supports:
    - Saving a mapping set as a template
    - Listing templates by source CRM, most used first
    - Applying a template (copies its mappings and bumps its usage counter)
    - Building a template from a finished migration
    """

    def __init__(self, repo: Optional[TemplateRepo] = None):
        self.repo = repo or InMemoryTemplateRepo()

    def save(
        self,
        name: str,
        source_crm: str,
        mappings: List[FieldMapping],
        description: str = "",
        is_public: bool = False,
        success_rate: Optional[float] = None
    ) -> MappingTemplate:
        """Save a new template."""
        if not name or not source_crm:
            raise ValidationError("name and source_crm are required")
        if not mappings:
            raise ValidationError("A template needs at least one mapping")

        template = MappingTemplate(
            name=name,
            source_crm=source_crm,
            description=description or "",
            field_mappings=list(mappings),
            is_public=bool(is_public),
            success_rate=success_rate,
        )
        saved = self.repo.create(template)
        logger.info(f"Saved template '{name}' for {source_crm} with {len(mappings)} mappings")
        return saved

    def list(self, source_crm: Optional[str] = None) -> List[MappingTemplate]:
        return self.repo.list(source_crm)

    def get(self, template_id: str) -> MappingTemplate:
        template = self.repo.get(template_id)
        if template is None:
            raise NotFoundError(f"Template not found: {template_id}")
        return template

    def apply(self, template_id: str) -> List[FieldMapping]:
        """Return the template's mappings and count the use."""
        template = self.get(template_id)
        self.repo.increment_usage(template_id)
        return list(template.field_mappings)

    def create_from_migration(
        self,
        migration: Migration,
        mappings: List[FieldMapping],
        template_config: Optional[Dict[str, Any]] = None
    ) -> MappingTemplate:
        """Save a finished migration's mappings, recording its success rate."""
        template_config = template_config or {}
        processed = migration.migrated_records + migration.failed_records
        success_rate = round(migration.migrated_records / processed * 100, 1) if processed else None

        return self.save(
            name=template_config.get("name") or f"Template from {migration.name}",
            source_crm=migration.source_crm,
            mappings=mappings,
            description=template_config.get("description") or f"Created from migration {migration.name}",
            is_public=template_config.get("is_public", False),
            success_rate=success_rate,
        )
