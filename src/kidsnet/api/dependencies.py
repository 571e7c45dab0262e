"""FastAPI dependency injection — the access engine.

Reads from app.state, which is populated during lifespan startup.
"""

from __future__ import annotations

from fastapi import Request

from kidsnet.access.engine import AccessEngine


def get_engine(request: Request) -> AccessEngine:
    """Get the AccessEngine instance from app state."""
    return request.app.state.engine
