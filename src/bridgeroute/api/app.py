"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bridgeroute import __version__
from bridgeroute.config import Settings, get_settings
from bridgeroute.engine import BridgeEngine, create_engine
from bridgeroute.errors import (
    BridgeRouteError,
    ChainUnavailable,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidTransition,
    NoRouteFound,
    QuoteExpired,
    QuoteNotFound,
    TransactionNotFound,
    ValidationError,
)
from bridgeroute.ledger.database import close_db, init_db

logger = logging.getLogger(__name__)

# Engine error -> HTTP status
ERROR_STATUS: dict[type[BridgeRouteError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    QuoteNotFound: status.HTTP_404_NOT_FOUND,
    TransactionNotFound: status.HTTP_404_NOT_FOUND,
    QuoteExpired: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    InsufficientAllowance: status.HTTP_409_CONFLICT,
    InsufficientBalance: status.HTTP_409_CONFLICT,
    NoRouteFound: status.HTTP_503_SERVICE_UNAVAILABLE,
    ChainUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(error: BridgeRouteError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def bridge_error_handler(request: Request, exc: BridgeRouteError) -> JSONResponse:
    """Render engine errors as {"error": code, "message": ...}."""
    body = {"error": exc.code, "message": exc.message}
    if isinstance(exc, NoRouteFound):
        body["providers"] = [
            {"provider": e.provider, "error": e.code, "message": e.message} for e in exc.errors
        ]
    code = status_for(exc)
    if code >= 500:
        logger.warning(f"{request.method} {request.url.path} -> {code}: {exc.message}")
    return JSONResponse(status_code=code, content=body)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    # Startup
    if settings.persist_transactions:
        await init_db(settings.database_url)
    if app.state.engine is None:
        app.state.engine = create_engine(settings)
    await app.state.engine.start()
    yield
    # Shutdown
    await app.state.engine.stop()
    if settings.persist_transactions:
        await close_db()


def create_app(settings: Optional[Settings] = None, engine: Optional[BridgeEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use, defaults to the environment
        engine: Pre-built engine. When omitted, one is created from the
            settings on startup.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="BridgeRoute API",
        description="Cross-chain bridge quote aggregation and transaction tracking",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.settings = settings
    app.state.engine = engine

    # CORS middleware
    origins = settings.cors_origin_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug and not origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BridgeRouteError, bridge_error_handler)

    # Register routes
    from bridgeroute.api.routes import chains, health, routes, transactions

    app.include_router(health.router, tags=["Health"])
    app.include_router(chains.router, prefix="/api/v1", tags=["Chains"])
    app.include_router(routes.router, prefix="/api/v1", tags=["Routes"])
    app.include_router(transactions.router, prefix="/api/v1", tags=["Transactions"])

    return app
