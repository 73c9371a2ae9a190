"""Health check endpoints."""

from fastapi import APIRouter, Depends, Request

from bridgeroute import __version__
from bridgeroute.api.deps import get_bridge_engine
from bridgeroute.engine import BridgeEngine

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "bridgeroute"}


@router.get("/health/detailed")
async def detailed_health(request: Request, engine: BridgeEngine = Depends(get_bridge_engine)):
    """Detailed health check with configuration and engine counters."""
    settings = request.app.state.settings
    return {
        "status": "healthy",
        "service": "bridgeroute",
        "version": __version__,
        "config": settings.get_safe_dict(),
        "engine": engine.stats(),
    }
