"""
Audit trail middleware.

Emits one structured ``audit`` event per request under the configured path
prefixes. Storing the trail is left to whatever ships the logs.
"""

import time
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request

from shared.logging import get_logger


class AuditLogMiddleware(BaseHTTPMiddleware):
    """Records who called what, and how it ended."""

    def __init__(self, app, staff_id_header: str = "X-Staff-Id",
                 path_prefixes: Iterable[str] = ("/v1/api/",)):
        super().__init__(app)
        self.staff_id_header = staff_id_header
        self.path_prefixes = tuple(path_prefixes)
        self.logger = get_logger("entitlements.audit")

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefixes):
            return await call_next(request)

        start_time = time.time()
        actor = request.headers.get(self.staff_id_header) or "unknown"
        try:
            response = await call_next(request)
        except Exception as e:
            self.logger.error(
                "audit",
                action=f"{request.method} {request.url.path}",
                actor=actor,
                query=str(request.url.query),
                outcome="error",
                error=str(e),
                duration_ms=round((time.time() - start_time) * 1000, 2)
            )
            raise

        self.logger.info(
            "audit",
            action=f"{request.method} {request.url.path}",
            actor=actor,
            query=str(request.url.query),
            outcome="success" if response.status_code < 400 else "failure",
            status_code=response.status_code,
            duration_ms=round((time.time() - start_time) * 1000, 2)
        )
        return response
