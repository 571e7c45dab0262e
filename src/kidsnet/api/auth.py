"""Bearer-key authentication for the household API.

One key (KIDSNET_API_KEY) guards every route except the liveness check.
Rejected attempts are logged with the client address, never the presented key.
"""

from __future__ import annotations

import secrets

import structlog
from fastapi import HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)


async def _verify_key(request: Request, presented: str) -> None:
    expected = request.app.state.settings.kidsnet_api_key
    if secrets.compare_digest(presented.encode(), expected.encode()):
        return
    client = request.client.host if request.client else "unknown"
    await logger.awarning("api_key_rejected", path=request.url.path, client=client)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid API key",
    )


async def require_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> str:
    """Reject the request with 401 unless it carries the household key."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )
    await _verify_key(request, credentials.credentials)
    return credentials.credentials


async def optional_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> str | None:
    """None when no key is sent (/health then answers minimally); 401 when a wrong key is sent."""
    if credentials is None:
        return None
    await _verify_key(request, credentials.credentials)
    return credentials.credentials
