"""
Autoflow Engine - Main FastAPI Application Entry Point
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from autoflow.api.v1.router import api_router as v1_router
from autoflow.config import Settings, get_settings
from autoflow.core.execution.dispatcher import ExecutionDispatcher
from autoflow.core.nodes.loader import build_registry
from autoflow.database.layout import SchemaDetector, create_schema
from autoflow.database.repositories.credential import CredentialRepository
from autoflow.database.repositories.integration import IntegrationRepository
from autoflow.database.session import (
    create_engine_for_url,
    create_session_factory,
    ensure_sqlite_directory,
)
from autoflow.exceptions import AutoflowError
from autoflow.observability.logging import setup_logging
from autoflow.security.encryption import CipherVault
from autoflow.services.credential_resolver import CredentialResolver
from autoflow.services.token_refresh import TokenRefreshOrchestrator

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Engine, vault, repositories, refresher, resolver, registry and
    dispatcher are created once in the lifespan and kept on app.state.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_DIR or None, settings.LOG_LEVEL)
        logger.info("🚀 Starting Autoflow Engine...")

        ensure_sqlite_directory(settings.DATABASE_URL)
        engine = create_engine_for_url(settings.DATABASE_URL, settings)
        session_factory = create_session_factory(engine)
        vault = CipherVault.from_material(settings.ENCRYPTION_KEY)

        detector = SchemaDetector(engine)
        layout = await detector.detect()
        if not layout.inline and not layout.catalogue:
            if settings.AUTO_CREATE_SCHEMA:
                logger.info(f"🗄️  No credential tables found, creating {settings.SCHEMA_LAYOUT} layout")
                async with engine.begin() as conn:
                    await create_schema(conn, settings.SCHEMA_LAYOUT)
                detector.invalidate()
                await detector.detect()
            else:
                logger.warning("⚠️  No user_integrations table; OAuth credentials will be unavailable")

        integrations = IntegrationRepository(session_factory, vault)
        credentials = CredentialRepository(session_factory, vault)
        refresher = TokenRefreshOrchestrator(integrations, detector, settings=settings)
        resolver = CredentialResolver(detector, integrations, credentials, refresher, vault=vault, settings=settings)

        # Import errors in node modules abort startup
        registry = build_registry()
        logger.info(f"✅ Registered {len(registry)} nodes")

        app.state.settings = settings
        app.state.engine = engine
        app.state.detector = detector
        app.state.integrations = integrations
        app.state.credentials = credentials
        app.state.refresher = refresher
        app.state.resolver = resolver
        app.state.registry = registry
        app.state.dispatcher = ExecutionDispatcher(registry, resolver, settings=settings)

        try:
            yield
        finally:
            logger.info("🛑 Shutting down Autoflow Engine...")
            await refresher.aclose()
            await engine.dispose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Autoflow Engine - credential resolution and node execution",
        docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AutoflowError)
    async def autoflow_error_handler(request: Request, exc: AutoflowError) -> JSONResponse:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(v1_router, prefix=settings.API_V1_PREFIX)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": settings.VERSION}

    return app


app = create_app()
