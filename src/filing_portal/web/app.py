"""
Filing portal FastAPI application.

Usage:
    uvicorn filing_portal.web.app:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from filing_portal.config.settings import PortalSettings, get_settings
from filing_portal.domain.repositories import IFilingBackend
from filing_portal.logging_config import configure_logging
from filing_portal.persistence.engine import dispose_engine, get_async_session_factory, init_database
from filing_portal.persistence.sql_backend import SqlFilingBackend

from .errors import register_exception_handlers
from .filing_api import WizardSessions, router as filing_router

logger = logging.getLogger(__name__)


def create_app(
    backend: Optional[IFilingBackend] = None,
    settings: Optional[PortalSettings] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        backend: Storage backend; when omitted the SQL backend for
            ``settings.database`` is used, with tables created at startup
            and the engine disposed at shutdown
        settings: Application settings
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    owns_database = backend is None
    if owns_database:
        backend = SqlFilingBackend(get_async_session_factory(settings.database))
    sessions = WizardSessions(backend, max_sessions=settings.wizard.max_sessions, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{settings.name} {settings.version} starting ({settings.environment})")
        if owns_database:
            await init_database()
        yield
        await sessions.close_all()
        if owns_database:
            await dispose_engine()
        logger.info(f"{settings.name} stopped")

    app = FastAPI(title=settings.name, version=settings.version, debug=settings.debug, lifespan=lifespan)
    app.state.backend = backend
    app.state.wizard_sessions = sessions

    register_exception_handlers(app)
    app.include_router(filing_router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": settings.version}

    return app
