"""Voucher service REST API application."""

from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from voucher_api.dependencies import get_default_settings
from voucher_api.errors import install_exception_handlers
from voucher_api.routes import router
from voucher_config import VoucherSettings
from voucher_kernel import __version__
from voucher_kernel.db.engine import create_tables, init_engine_from_url
from voucher_kernel.db.immutability import register_immutability_listeners
from voucher_kernel.logging_config import LogContext, configure_logging, get_logger

logger = get_logger("api")

CORRELATION_HEADER = "X-Correlation-Id"


def init_database(settings: VoucherSettings) -> None:
    """Bind the kernel engine to the configured database and create tables."""
    db = settings.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        lock_timeout_ms=db.lock_timeout_ms,
        sqlite_busy_timeout=db.sqlite_busy_timeout,
    )
    create_tables()


def create_app(
    settings: Optional[VoucherSettings] = None,
    initialize_database: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Defaults to the active settings file.
        initialize_database: When False the caller has already bound the
            kernel engine (tests do this).
    """
    settings = settings or get_default_settings()
    configure_logging(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if initialize_database:
            init_database(settings)
        register_immutability_listeners()
        logger.info(
            "voucher_service_started",
            extra={
                "settings_checksum": settings.checksum,
                "numbering_strategy": settings.numbering.strategy.value,
            },
        )
        yield
        logger.info("voucher_service_stopped")

    app = FastAPI(
        title=settings.api.title,
        description="Sequential voucher and cheque numbering",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    origins = list(settings.api.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Credentials never go to a wildcard origin.
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        with LogContext.bind(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    install_exception_handlers(app)
    app.include_router(router, tags=["documents"])
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "voucher_api.main:create_app",
        factory=True,
        host="0.0.0.0",  # nosec B104
        port=8000,
        log_level="info",
    )
