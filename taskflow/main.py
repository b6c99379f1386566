"""
Taskflow SLA - Main Application
================================

Deadline tracking and escalation service for requests and tasks.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Engine, services, reminder registry, DTOs
- Domain: Entities, deadline clock, escalation rules
- Infrastructure: Database, YAML policy, webhook, APScheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from taskflow.config import Settings, settings as default_settings
from taskflow.core import ApplicationException
from taskflow.infrastructure.database import close_database, create_tables, init_database
from taskflow.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from taskflow.shared.infrastructure.logging import get_logger, setup_logging
from taskflow.sla.application.dto import HealthResponse, RunRecordResponse
from taskflow.sla.bootstrap import (
    SLAComponents,
    build_components,
    start_components,
    stop_components,
)
from taskflow.sla.interfaces import sla_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    components: Optional[SLAComponents] = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to run with (defaults to environment settings)
        components: Pre-built SLA services; when omitted they are built
            from settings at startup
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Application lifespan manager.

        STARTUP:
        1. Setup structured logging
        2. Build SLA services and initialize the database (skipped for the in-memory store)
        3. Load policy, reload reminders, start scheduler

        SHUTDOWN:
        1. Stop scheduler (waits for an in-flight pass)
        2. Stop timers, policy watcher and webhook client
        3. Close database connections
        """
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting Taskflow SLA service", extra={
            "version": settings.app_version,
            "environment": settings.environment
        })

        use_database = components is None and not settings.use_in_memory_store

        # Building the SQL adapters registers the models on Base.metadata
        sla = components or build_components(settings)
        app.state.sla = sla

        if use_database:
            logger.info("Initializing database")
            init_database()
            try:
                await create_tables()
            except Exception as e:
                sla.degraded_reasons.append("database_unavailable")
                logger.warning(
                    "Database not available - running in degraded mode",
                    extra={"error": str(e)}
                )

        await start_components(sla, settings)
        logger.info("Taskflow SLA service started", extra={"degraded": sla.degraded_reasons})

        yield

        logger.info("Shutting down Taskflow SLA service")
        await stop_components(sla)
        if use_database:
            await close_database()
        logger.info("Taskflow SLA service shutdown complete")

    app = FastAPI(
        title="Taskflow SLA API",
        description=(
            "Deadline tracking and escalation for requests and tasks: pausable SLA "
            "clocks, rule-based escalations, deadline reminders and scheduler operations."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.settings = settings
    if components is not None:
        app.state.sla = components

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(sla_router)

    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports scheduler state and last run; `degraded` when a startup
        step failed but the service kept running.
        """
        sla: Optional[SLAComponents] = getattr(request.app.state, "sla", None)
        if sla is None:
            return HealthResponse(
                status="degraded",
                version=settings.app_version,
                scheduler_state="STOPPED",
                degraded_reasons=["not_started"],
            )

        last_run = sla.scheduler.last_run
        return HealthResponse(
            status="degraded" if sla.is_degraded else "healthy",
            version=settings.app_version,
            scheduler_state=sla.scheduler.state.value,
            last_run=RunRecordResponse.from_domain(last_run) if last_run else None,
            degraded_reasons=list(sla.degraded_reasons),
        )

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "taskflow.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.environment == "development",
        log_level="info"
    )
