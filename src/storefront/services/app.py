"""Shared application factory for the backend services."""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.core.config import Settings, get_settings
from .exceptions import DocumentStoreError, DuplicateDocumentError
from .store import DocumentStore, create_document_store

logger = logging.getLogger(__name__)


def get_store(request: Request) -> DocumentStore:
    """Document store of the current application (for dependency injection)"""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise RuntimeError("Document store not initialized")
    return store


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as {"error": ...}"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400, with the first validation problem as the message"""
    errors = exc.errors()
    logger.warning(
        "Request validation failed",
        extra={
            "url": str(request.url),
            "method": request.method,
            "errors": errors
        }
    )

    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else first.get("msg", message)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message}
    )


async def duplicate_document_handler(request: Request, exc: DuplicateDocumentError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": exc.message}
    )


async def document_store_error_handler(request: Request, exc: DocumentStoreError):
    """Store failures are internal errors; the driver message is passed through"""
    logger.error(
        "Document store error",
        extra={
            "url": str(request.url),
            "method": request.method,
            "error": exc.message
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": exc.message}
    )


def create_service_app(
    title: str,
    service_name: str,
    routers: Sequence[APIRouter],
    store: Optional[DocumentStore] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create a backend service application

    Args:
        title: OpenAPI title
        service_name: Name reported by the health endpoint
        routers: Routers with the service's endpoints
        store: Document store to use; when omitted one is created from
            settings at startup and closed at shutdown
        settings: Configuration (defaults to the process settings)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if store is not None:
            yield
            return

        logger.info(f"Starting {service_name}...")
        app.state.store = create_document_store(settings)
        try:
            yield
        finally:
            logger.info(f"Shutting down {service_name}...")
            await app.state.store.close()
            app.state.store = None

    app = FastAPI(title=title, version="0.1.0", debug=settings.DEBUG, lifespan=lifespan)
    # An injected store is usable without running the lifespan
    app.state.store = store

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DuplicateDocumentError, duplicate_document_handler)
    app.add_exception_handler(DocumentStoreError, document_store_error_handler)

    @app.get("/health", tags=["health"])
    async def health_check():
        """Liveness check"""
        return {"status": "healthy", "service": service_name}

    for router in routers:
        app.include_router(router)

    return app
