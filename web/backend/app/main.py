"""FastAPI application for the VIRT registrar.

Provides REST API endpoints wrapping ``virt.registrar`` for:
- Availability checks
- Registration with one-time secret keys
- Secret-gated update and delete
- Lookup with raw-content URL rewriting
- Weighted text search
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from virt import __version__
from virt.config import Settings
from virt.registrar.errors import InvalidInput, RegistrarError
from virt.registrar.service import RegistrarService
from web.backend.app.routers import registrar

logger = logging.getLogger(__name__)

# Origins the browser shell uses, plus localhost during development
ALLOWED_ORIGIN_REGEX = r"^(virt|electron|app)://.*$|^http://localhost(:\d+)?$"


def _error_response(error: RegistrarError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"error": error.code, "detail": error.message},
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the registrar application.

    The registry store is opened when the application starts. If it cannot be
    opened, startup fails and no request is ever served against a half
    initialised registry.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = settings or Settings.load()
        app.state.registrar = RegistrarService.open(config)
        logger.info("Registrar ready with data directory %s", config.data_dir)
        yield
        app.state.registrar.close()

    app = FastAPI(
        title="VIRT Registrar API",
        description=(
            "Name registry for the virt:// namespace. Registers names under "
            "reserved tags, resolves them to HTTPS or IP targets and searches them."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # ---------------------------------------------------------------------------
    # CORS middleware
    # ---------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=ALLOWED_ORIGIN_REGEX,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # ---------------------------------------------------------------------------
    # Error mapping
    # ---------------------------------------------------------------------------

    @app.exception_handler(RegistrarError)
    async def registrar_error_handler(request: Request, exc: RegistrarError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error_response(InvalidInput("Malformed request body"))

    app.include_router(registrar.router)

    # ---------------------------------------------------------------------------
    # Root and health-check endpoints
    # ---------------------------------------------------------------------------

    @app.get("/", tags=["meta"])
    async def root():
        """Return basic API information."""
        return {
            "name": "VIRT Registrar API",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    @app.get("/health", tags=["meta"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
