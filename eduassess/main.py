"""
Main application entry point for the EduAssess assessment engine.

This module builds the FastAPI application: database lifecycle, the
assessment service and its collaborators, exception handlers and routes.

Usage:
    - Direct: python -m eduassess.main
    - ASGI server: uvicorn eduassess.main:app
"""

import os
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from eduassess import __version__
from eduassess.api import (
    APIResponse,
    engine_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from eduassess.common.error_handling import AssessmentEngineError
from eduassess.common.logger import app_logger, configure_from_settings
from eduassess.config import Settings, get_settings
from eduassess.database.init_db import (
    close_database,
    get_session_factory,
    initialize_database,
    run_migrations,
)
from eduassess.assessments.integrations import (
    AuditLogger,
    AuditSink,
    CatalogService,
    EnrollmentService,
    IdentityService,
    InMemoryCatalogService,
    InMemoryEnrollmentService,
    InMemoryIdentityService,
    LoggingAuditSink,
)
from eduassess.assessments.router import router as assessments_router
from eduassess.assessments.services import AssessmentService

# Setup module logger
logger = app_logger.getChild("main")


def create_app(
    settings: Optional[Settings] = None,
    identity: Optional[IdentityService] = None,
    enrollment: Optional[EnrollmentService] = None,
    catalog: Optional[CatalogService] = None,
    audit_sink: Optional[AuditSink] = None,
    clock: Optional[Callable] = None,
) -> FastAPI:
    """
    Create and configure a FastAPI application instance.

    Collaborators default to in-memory implementations; a deployment passes
    its own identity, enrollment and catalog services.

    Args:
        settings: Application settings; defaults to the process-wide settings
        identity: Resolves bearer tokens to actors
        enrollment: Audience and capability decisions
        catalog: Subject context for new tests
        audit_sink: Destination of audit events
        clock: Current-time source for the engine

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    identity = identity or InMemoryIdentityService()
    enrollment = enrollment or InMemoryEnrollmentService()
    catalog = catalog or InMemoryCatalogService()
    audit = AuditLogger(audit_sink or LoggingAuditSink(), enabled=settings.AUDIT_ENABLED)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize the database and the engine; dispose of them on shutdown."""
        configure_from_settings(settings)
        logger.info("Application startup sequence initiated.")
        engine = await initialize_database(settings)
        if settings.DB_AUTO_CREATE:
            await run_migrations(engine)

        service_kwargs = {} if clock is None else {"clock": clock}
        app.state.assessment_service = AssessmentService(
            session_factory=get_session_factory(),
            enrollment=enrollment,
            catalog=catalog,
            audit=audit,
            submission_grace_seconds=settings.SUBMISSION_GRACE_SECONDS,
            **service_kwargs,
        )
        logger.info("Application startup complete")
        try:
            yield
        finally:
            await audit.drain()
            await close_database()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Test lifecycle, attempts, grading and statistics",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.identity = identity
    app.state.audit = audit

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(AssessmentEngineError, engine_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    app.include_router(
        assessments_router,
        prefix=f"{settings.API_PREFIX}/assessments",
        tags=["assessments"],
    )

    @app.get("/health")
    async def health():
        return APIResponse.success({"version": __version__}, message="ok")

    logger.info(f"Application initialized with {len(app.routes)} routes")
    return app


app = create_app()

# Entry point for running the application directly
if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))
    reload_enabled = os.environ.get("RELOAD", "false").lower() == "true"

    logger.info(f"Starting server on {host}:{port} (reload: {reload_enabled})")

    uvicorn.run(
        "eduassess.main:app",
        host=host,
        port=port,
        reload=reload_enabled,
        log_level="info"
    )
