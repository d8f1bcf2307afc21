"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import EngineConfig
from ..orchestrator import MigrationController
from .models import HealthResponse
from .routes import actions

logger = logging.getLogger(__name__)


def create_app(controller: Optional[MigrationController] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        controller: Controller to serve; built from the environment if omitted
    """
    if controller is None:
        controller = MigrationController.from_config(EngineConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down migration workers")
        await app.state.controller.shutdown()

    app = FastAPI(
        title="CRM Migration Engine API",
        description="Analyze CRM exports and migrate them into the canonical schema",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.controller = controller

    # CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        return actions.error_response(400, f"Invalid request: {errors}")

    app.include_router(actions.router, prefix="/api", tags=["crm-migration"])

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
