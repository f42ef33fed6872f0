"""
PostgreSQL directory for the Entitlements service.

Read-only: users, roles and resources are owned by the CRUD services that
write them. Expected tables::

    users(staff_id text primary key, username text, is_active boolean,
          entitlements jsonb)          -- [{"adGroup": ..., "roleIds": [...]}]
    roles(id text primary key, role_name text, resource_ids text[],
          is_active boolean)
    resources(id text primary key, name text, type text, ad_groups text[],
              permission jsonb, is_active boolean)
"""

import asyncio
import json
from typing import Any, List, Optional, Set

import asyncpg

from shared.errors import StoreUnavailableError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..rules.models import (
    Principal, Resource, ResourceType, Role,
    principal_from_document, resource_from_document, role_from_document
)


TRANSIENT_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)

FIND_USER_SQL = """
    SELECT staff_id, username, is_active, entitlements
    FROM users
    WHERE staff_id = $1
"""

FIND_ACTIVE_ROLES_SQL = """
    SELECT id, role_name, resource_ids, is_active
    FROM roles
    WHERE id = ANY($1::text[]) AND is_active = TRUE
"""

FIND_ACTIVE_API_RESOURCES_SQL = """
    SELECT id, name, type, ad_groups, permission, is_active
    FROM resources
    WHERE id = ANY($1::text[]) AND upper(type) = $2 AND is_active = TRUE
"""


class PostgreSQLDirectory:
    """Principal, role and resource store backed by PostgreSQL."""

    def __init__(self, dsn: str, timeout: float = 5.0,
                 retry_config: Optional[RetryConfig] = None,
                 min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.timeout = timeout
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("entitlements.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None
        self._query = retry_on_exception(
            TRANSIENT_ERRORS, retry_config or RetryConfig()
        )(self._query_once)

    async def start(self):
        """Open the connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.timeout,
                init=self._init_connection
            )
            self.logger.info("PostgreSQL directory started")
        except TRANSIENT_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL directory", error=str(e))
            raise StoreUnavailableError("postgres", str(e)) from e

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL directory stopped")

    @staticmethod
    async def _init_connection(conn):
        await conn.set_type_codec(
            "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )

    async def _query_once(self, fetch: str, sql: str, *args) -> Any:
        async with self.pool.acquire() as conn:
            return await getattr(conn, fetch)(sql, *args, timeout=self.timeout)

    async def _run(self, store: str, fetch: str, sql: str, *args) -> Any:
        if self.pool is None:
            raise StoreUnavailableError(store, "PostgreSQL directory not started")
        try:
            return await self._query(fetch, sql, *args)
        except RetryError as e:
            self.logger.error("Store lookup failed", store=store, error=str(e.last_exception))
            raise StoreUnavailableError(
                store,
                str(e.last_exception),
                {"attempts": e.attempts}
            ) from e.last_exception

    async def find_by_staff_id(self, staff_id: str) -> Optional[Principal]:
        row = await self._run("principal_store", "fetchrow", FIND_USER_SQL, staff_id)
        if row is None:
            return None
        return self._row_to_principal(row)

    async def find_active_by_ids(self, ids: Set[str]) -> List[Role]:
        if not ids:
            return []
        rows = await self._run("role_store", "fetch", FIND_ACTIVE_ROLES_SQL, sorted(ids))
        return [self._row_to_role(row) for row in rows]

    async def find_active_api_by_ids(self, ids: Set[str]) -> List[Resource]:
        if not ids:
            return []
        rows = await self._run(
            "resource_store", "fetch", FIND_ACTIVE_API_RESOURCES_SQL,
            sorted(ids), ResourceType.API.value
        )
        return [self._row_to_resource(row) for row in rows]

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1", timeout=self.timeout)
                return True
        except TRANSIENT_ERRORS:
            return False

    def _row_to_principal(self, row) -> Principal:
        """Convert a users row to a Principal."""
        return principal_from_document({
            "staffId": row["staff_id"],
            "username": row["username"],
            "isActive": row["is_active"],
            "entitlements": row["entitlements"],
        })

    def _row_to_role(self, row) -> Role:
        """Convert a roles row to a Role."""
        return role_from_document({
            "id": row["id"],
            "roleName": row["role_name"],
            "resourceIds": row["resource_ids"],
            "isActive": row["is_active"],
        })

    def _row_to_resource(self, row) -> Resource:
        """Convert a resources row to a Resource."""
        return resource_from_document({
            "id": row["id"],
            "name": row["name"],
            "type": row["type"],
            "adGroups": row["ad_groups"],
            "permission": row["permission"],
            "isActive": row["is_active"],
        })
