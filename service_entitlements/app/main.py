"""
Entitlements service: HTTP surface of the permission evaluator.
"""

import time
from typing import Optional

from fastapi import Depends, Query
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.errors import ServiceError, ValidationError
from shared.retry import RetryConfig

from .audit import AuditLogMiddleware
from .enforcement import PermissionGuard
from .persistence.postgres import PostgreSQLDirectory
from .persistence.stores import InMemoryDirectory
from .rules.engine import PermissionEvaluator
from .rules.models import (
    PermissionCheckResponse, PermissionDecision, PermissionExplainResponse
)


def _blank(*values: Optional[str]) -> bool:
    return any(value is None or not value.strip() for value in values)


class EntitlementsService(BaseService):
    """Entitlements service implementation."""

    def __init__(self, directory=None):
        super().__init__("entitlements", 8011)

        self.directory = directory if directory is not None else self._create_directory()
        self.evaluator = PermissionEvaluator(self.directory, self.directory, self.directory)
        self.guard = PermissionGuard(self.evaluator, self.config.staff_id_header)

        if self.config.audit_enabled:
            self.app.add_middleware(
                AuditLogMiddleware,
                staff_id_header=self.config.staff_id_header,
                path_prefixes=self.config.audit_path_prefixes
            )

        self._setup_entitlements_routes()

    def _create_directory(self):
        """Build the principal/role/resource directory from configuration."""
        backend = self.config.directory_backend.lower()
        if backend == "postgres":
            return PostgreSQLDirectory(
                self.config.postgres_dsn,
                timeout=self.config.store_timeout_seconds,
                retry_config=RetryConfig(
                    max_attempts=self.config.store_retry_attempts,
                    base_delay=self.config.store_retry_base_delay
                ),
                min_size=self.config.postgres_pool_min_size,
                max_size=self.config.postgres_pool_max_size
            )
        if backend == "memory":
            if self.config.directory_file:
                return InMemoryDirectory.from_file(self.config.directory_file)
            return InMemoryDirectory()
        raise ServiceError(f"Unknown directory backend: {backend}")

    def _setup_entitlements_routes(self):
        """Set up entitlements-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "entitlements",
                "message": "Entitlements Service",
                "version": "1.0.0",
                "capabilities": ["permission_check", "permission_explain"]
            }

        @self.app.get("/v1/api/permissions/check", response_model=PermissionCheckResponse)
        async def check_permission(
            staff_id: Optional[str] = Query(None, alias="staffId", description="Staff ID"),
            http_method: Optional[str] = Query(None, alias="httpMethod", description="HTTP method"),
            request_uri: Optional[str] = Query(None, alias="requestUri", description="Request path")
        ):
            """Check whether a staff member may call a method on a path."""
            self.logger.info(
                "Received permission check request",
                staff_id=staff_id,
                method=http_method,
                uri=request_uri
            )

            if _blank(staff_id, http_method, request_uri):
                self.logger.warning("Invalid input parameters for permission check")
                return JSONResponse(status_code=400, content={"allowed": False})

            decision = await self._evaluate(staff_id, http_method, request_uri)
            return PermissionCheckResponse(allowed=decision.allowed)

        @self.app.get("/v1/api/permissions/explain", response_model=PermissionExplainResponse)
        async def explain_permission(
            staff_id: Optional[str] = Query(None, alias="staffId", description="Staff ID"),
            http_method: Optional[str] = Query(None, alias="httpMethod", description="HTTP method"),
            request_uri: Optional[str] = Query(None, alias="requestUri", description="Request path"),
            caller: str = Depends(self.guard)
        ):
            """Explain a permission decision. The caller must itself be authorized."""
            if _blank(staff_id, http_method, request_uri):
                raise ValidationError(
                    "staffId, httpMethod and requestUri are required",
                    {"caller": caller}
                )

            decision = await self._evaluate(staff_id, http_method, request_uri)
            return PermissionExplainResponse(
                staff_id=staff_id,
                http_method=http_method,
                request_uri=request_uri,
                allowed=decision.allowed,
                reason=decision.reason,
                matched_resource_id=decision.matched_resource_id,
                evaluation_time_ms=decision.evaluation_time_ms
            )

    async def _evaluate(self, staff_id: str, http_method: str, request_uri: str) -> PermissionDecision:
        """Run the evaluator and record the outcome."""
        start_time = time.time()
        try:
            decision = await self.evaluator.evaluate(staff_id, http_method, request_uri)
        except Exception:
            self.metrics.record_permission_check("error", time.time() - start_time)
            raise

        self.metrics.record_permission_check(
            "allowed" if decision.allowed else "denied",
            time.time() - start_time
        )
        return decision

    async def _check_dependencies(self):
        """Check entitlements service dependencies."""
        healthy = await self.directory.health_check()
        return {"directory": "ok" if healthy else "error"}

    async def start(self):
        """Start entitlements service components."""
        if hasattr(self.directory, "start"):
            await self.directory.start()
        self.logger.info("Entitlements service started", directory=type(self.directory).__name__)

    async def stop(self):
        """Stop entitlements service components."""
        if hasattr(self.directory, "stop"):
            await self.directory.stop()
        self.logger.info("Entitlements service stopped")


def create_app():
    """Create entitlements service application."""
    service = EntitlementsService()
    return service.app


if __name__ == "__main__":
    service = EntitlementsService()
    service.run()
