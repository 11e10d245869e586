"""Admin key authentication middleware.

When an admin key is configured (``REQUESTDESK_ADMIN_KEY``), every
``/api`` request except the public listener endpoints must carry a
matching ``X-Admin-Key`` header.  Without a key, authentication is
disabled so development and testing remain frictionless.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.responses import Response
    from starlette.types import ASGIApp

ADMIN_KEY_HEADER = "X-Admin-Key"

# Listener-facing endpoints that never require the admin key
_PUBLIC_PATHS = frozenset({"/api/requestTrack", "/api/settings"})


def _is_protected(path: str) -> bool:
    return path.startswith("/api/") and path not in _PUBLIC_PATHS


class AdminKeyMiddleware(BaseHTTPMiddleware):
    """Reject admin requests that lack a valid key."""

    def __init__(self, app: ASGIApp, admin_key: str | None = None) -> None:
        super().__init__(app)
        self._admin_key: str | None = admin_key or None

    @property
    def enabled(self) -> bool:
        return self._admin_key is not None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.enabled or not _is_protected(request.url.path):
            return await call_next(request)

        provided = request.headers.get(ADMIN_KEY_HEADER)
        if not provided or not secrets.compare_digest(provided, self._admin_key):  # type: ignore[arg-type]
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"success": False, "message": "Unauthorized"},
            )

        return await call_next(request)
