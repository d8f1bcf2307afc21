"""Action dispatch endpoint: every operation is a POST with an ``action`` field."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Union

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ...exceptions import MigrationEngineError
from ...orchestrator import MigrationController
from ..models import ActionRequest, ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter()

Result = Union[Dict[str, Any], Awaitable[Dict[str, Any]]]
Handler = Callable[[MigrationController, ActionRequest], Result]


def get_controller(request: Request) -> MigrationController:
    return request.app.state.controller


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def _list_connectors(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"connectors": [x.to_dict() for x in c.list_connectors()]}


def _list_migrations(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    migrations = c.list_migrations(body.limit or 50)
    return {"migrations": [m.to_dict() for m in migrations]}


def _list_templates(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"templates": [t.to_dict() for t in c.list_templates(body.source_crm)]}


def _analyze_file(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    analysis = c.analyze_file(body.file_content, body.file_type, body.source_crm)
    return {"analysis": analysis.to_dict()}


def _create_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    migration, warnings = c.create_migration(
        name=body.name,
        source_crm=body.source_crm,
        file_content=body.file_content,
        file_type=body.file_type or "csv",
        mappings=body.mapping_dicts(),
    )
    return {"migration": migration.to_dict(), "warnings": warnings}


def _update_mappings(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    mappings, warnings = c.update_mappings(body.migration_id, body.mapping_dicts())
    return {"mappings": [m.to_dict() for m in mappings], "warnings": warnings}


async def _run_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"message": await c.run_migration(body.migration_id)}


def _pause_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"migration": c.pause_migration(body.migration_id).to_dict()}


async def _resume_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    migration = await c.resume_migration(body.migration_id)
    return {"migration": migration.to_dict()}


def _cancel_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"migration": c.cancel_migration(body.migration_id).to_dict()}


def _rollback_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    options = body.rollback_options.model_dump() if body.rollback_options else None
    summary = c.rollback_migration(body.migration_id, options)
    if summary.pop("dry_run", False):
        return {"dry_run": True, "summary": summary}
    return {"summary": summary}


def _list_records(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    records = c.list_records(body.migration_id, body.status, body.limit or 100)
    return {"records": [r.to_dict() for r in records]}


def _get_status(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"migration": c.get_status(body.migration_id).to_dict(include_config=True)}


def _get_stats(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"stats": c.get_stats()}


def _save_template(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    template = c.save_template(
        name=body.name,
        source_crm=body.source_crm,
        mappings=body.mapping_dicts(),
        is_public=body.is_public,
        description=body.description or "",
    )
    return {"template": template.to_dict()}


def _apply_template(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    mappings = c.apply_template(body.migration_id, body.template_id)
    return {"mappings": [m.to_dict() for m in mappings]}


def _generate_ai_mappings(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    detected = [
        f if isinstance(f, str) else f.model_dump()
        for f in (body.detected_fields or [])
    ]
    mappings = c.generate_ai_mappings(detected, body.source_crm)
    return {"mappings": [m.to_dict() for m in mappings]}


def _validate_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"validation": c.validate_migration(body.migration_id)}


def _get_validation_rules(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"rules": c.get_validation_rules()}


def _check_duplicates(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    result = c.check_duplicates(body.migration_id, body.duplicate_fields, body.threshold)
    return {"duplicates": result}


def _preview_transformation(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return {"preview": c.preview_transformation(body.source_data, body.transformation)}


def _apply_transformations(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return c.apply_transformations(body.migration_id, body.transformations)


def _export_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return c.export_migration(body.migration_id, body.export_format)


def _get_migration_history(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    return c.get_migration_history(body.migration_id)


def _clone_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    migration, cloned = c.clone_migration(body.migration_id, body.name)
    return {"migration": migration.to_dict(), "mappings_cloned": cloned}


def _create_template_from_migration(c: MigrationController, body: ActionRequest) -> Dict[str, Any]:
    config = body.template_config.model_dump(exclude_none=True) if body.template_config else None
    template = c.create_template_from_migration(body.migration_id, config)
    return {"template": template.to_dict()}


ACTIONS: Dict[str, Handler] = {
    "list_connectors": _list_connectors,
    "list_migrations": _list_migrations,
    "list_templates": _list_templates,
    "analyze_file": _analyze_file,
    "create_migration": _create_migration,
    "update_mappings": _update_mappings,
    "run_migration": _run_migration,
    "pause_migration": _pause_migration,
    "resume_migration": _resume_migration,
    "cancel_migration": _cancel_migration,
    "rollback_migration": _rollback_migration,
    "list_records": _list_records,
    "get_status": _get_status,
    "get_stats": _get_stats,
    "save_template": _save_template,
    "apply_template": _apply_template,
    "generate_ai_mappings": _generate_ai_mappings,
    "validate_migration": _validate_migration,
    "get_validation_rules": _get_validation_rules,
    "check_duplicates": _check_duplicates,
    "preview_transformation": _preview_transformation,
    "apply_transformations": _apply_transformations,
    "export_migration": _export_migration,
    "get_migration_history": _get_migration_history,
    "clone_migration": _clone_migration,
    "create_template_from_migration": _create_template_from_migration,
}


@router.post("/crm-migration")
async def dispatch_action(body: ActionRequest, controller: MigrationController = Depends(get_controller)):
    """Run one engine action."""
    handler = ACTIONS.get(body.action)
    if handler is None:
        return error_response(400, f"Unknown action: {body.action}")

    logger.info(f"Action: {body.action}")
    try:
        if inspect.iscoroutinefunction(handler):
            result = await handler(controller, body)
        else:
            # Synchronous handlers parse files and hit the destination store
            result = await run_in_threadpool(handler, controller, body)
    except MigrationEngineError as e:
        logger.warning(f"Action {body.action} failed ({e.status_code}): {e}")
        return error_response(e.status_code, str(e))
    except Exception as e:
        logger.exception(f"Action {body.action} crashed")
        return error_response(500, str(e) or "Unknown error")

    return {"success": True, **result}
