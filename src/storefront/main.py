"""Main entry point for the storefront API gateway."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from storefront.api.routes import register_routes
from storefront.core.config import Settings, get_settings
from storefront.core.dispatch import DispatchTable, load_dispatch_table
from storefront.core.logging import setup_logging
from storefront.core.proxy import ProxyEngine, create_http_client

logger = logging.getLogger(__name__)


async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler for unhandled errors"""
    logger.error(
        "Unhandled exception",
        extra={
            "url": str(request.url),
            "method": request.method,
            "error": str(exc)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error occurred",
            "error_type": "internal_error"
        }
    )


def create_app(
    settings: Optional[Settings] = None,
    dispatch_table: Optional[DispatchTable] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create the gateway application

    Args:
        settings: Configuration (defaults to the process settings)
        dispatch_table: Mount points (defaults to the routes file or configured service URLs)
        transport: Outbound transport override, e.g. a mock or ASGI transport in tests
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan management
        Builds the dispatch table and the pooled client once, closes the pool on shutdown
        """
        logger.info("Starting storefront gateway...")

        table = dispatch_table if dispatch_table is not None else load_dispatch_table(settings)
        http_client = create_http_client(settings, transport=transport)
        app.state.proxy_engine = ProxyEngine(
            table,
            http_client,
            strip_hop_by_hop_headers=settings.STRIP_HOP_BY_HOP_HEADERS
        )

        logger.info(
            "Gateway configuration",
            extra={
                "host": settings.HOST,
                "port": settings.PORT,
                "mount_points": [rule.prefix for rule in table.rules],
                "strip_hop_by_hop": settings.STRIP_HOP_BY_HOP_HEADERS,
                "max_connections": settings.PROXY_MAX_CONNECTIONS
            }
        )

        try:
            yield
        finally:
            logger.info("Shutting down storefront gateway...")
            await http_client.aclose()
            app.state.proxy_engine = None

    # No docs or OpenAPI endpoints: every path outside a mount point is a 404
    app = FastAPI(
        title="Storefront Gateway",
        version="0.1.0",
        debug=settings.DEBUG,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    app.add_exception_handler(Exception, general_exception_handler)
    register_routes(app)

    return app


# Create app instance for uvicorn to find
app = create_app()


def main() -> None:
    """Run the gateway server."""
    settings = get_settings()
    setup_logging(settings)

    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
        # Relayed backend responses carry their own Server and Date headers
        server_header=False,
        date_header=False,
    )


if __name__ == "__main__":
    main()
