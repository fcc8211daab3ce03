"""Shared-secret access control for private endpoints.

Clients send the token as an ``X-Auth-Token`` header or a ``?token=``
query parameter.  When no token is configured every request is allowed.

Usage::

    from bucketd.auth import require_access_token

    @router.get("/", dependencies=[Depends(require_access_token)])
    async def list_all_buckets(...):
        ...
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import Request

from bucketd.errors import AccessDenied

logger = structlog.get_logger()

TOKEN_HEADER = "X-Auth-Token"


async def require_access_token(request: Request) -> None:
    """FastAPI dependency that validates the shared access token.

    Raises ``AccessDenied`` if the token is missing or incorrect.
    """
    expected = request.app.state.settings.access_token
    if not expected:
        logger.debug("access_control_disabled", path=request.url.path)
        return

    token = request.headers.get(TOKEN_HEADER) or request.query_params.get("token") or ""
    if not hmac.compare_digest(token.encode(), expected.encode()):
        logger.warning(
            "access_denied",
            path=request.url.path,
            remote=request.client.host if request.client else "unknown",
        )
        raise AccessDenied()
