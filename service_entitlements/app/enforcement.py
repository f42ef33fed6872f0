"""
FastAPI dependency that enforces permission decisions on incoming requests.
"""

from fastapi import Request

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger, set_staff_context
from .rules.engine import PermissionEvaluator


class PermissionGuard:
    """Authorizes the current request against the permission evaluator.

    The caller's staff id is read from a header set by the upstream gateway
    after authentication. A missing header raises AuthenticationError (401),
    a negative decision AuthorizationError (403). Store failures are not
    caught here and surface as 503 through the service error handler.
    """

    def __init__(self, evaluator: PermissionEvaluator, staff_id_header: str = "X-Staff-Id"):
        self.evaluator = evaluator
        self.staff_id_header = staff_id_header
        self.logger = get_logger("entitlements.permission_guard")

    async def __call__(self, request: Request) -> str:
        staff_id = (request.headers.get(self.staff_id_header) or "").strip()
        if not staff_id:
            raise AuthenticationError(
                f"{self.staff_id_header} header required",
                {"header": self.staff_id_header}
            )

        set_staff_context(staff_id)
        allowed = await self.evaluator.check_permission(staff_id, request.method, request.url.path)
        if not allowed:
            self.logger.warning(
                "Request denied",
                staff_id=staff_id,
                method=request.method,
                path=request.url.path
            )
            raise AuthorizationError(
                "Not authorized for this request",
                {"method": request.method, "path": request.url.path}
            )

        return staff_id
