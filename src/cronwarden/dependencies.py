"""FastAPI dependency injection providers."""

from typing import Annotated

from fastapi import Depends, Request

from cronwarden.services.engine import JobEngine


def get_engine(request: Request) -> JobEngine:
    """Return the wired job engine from app state."""
    return request.app.state.engine


def get_trace_id(request: Request) -> str:
    """Extract trace_id from request state (set by middleware)."""
    return getattr(request.state, "trace_id", "unknown")


# Type aliases for dependency injection
Engine = Annotated[JobEngine, Depends(get_engine)]
TraceId = Annotated[str, Depends(get_trace_id)]
