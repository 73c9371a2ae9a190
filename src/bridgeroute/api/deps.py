"""Request dependencies."""

from fastapi import HTTPException, Request, status

from bridgeroute.engine import BridgeEngine


def get_bridge_engine(request: Request) -> BridgeEngine:
    """The engine attached to the running app."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not started",
        )
    return engine
