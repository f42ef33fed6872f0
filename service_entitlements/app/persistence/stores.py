"""
Store interfaces consumed by the permission evaluator, plus an in-memory
directory used for local development and tests.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Union

from shared.logging import get_logger
from ..rules.models import (
    Principal, Resource, Role,
    principal_from_document, resource_from_document, role_from_document
)


class PrincipalStore(Protocol):
    async def find_by_staff_id(self, staff_id: str) -> Optional[Principal]:
        ...


class RoleStore(Protocol):
    async def find_active_by_ids(self, ids: Set[str]) -> List[Role]:
        """Return only the active roles among ``ids``."""
        ...


class ResourceStore(Protocol):
    async def find_active_api_by_ids(self, ids: Set[str]) -> List[Resource]:
        """Return only the active, API-typed resources among ``ids``."""
        ...


class InMemoryDirectory:
    """Principal, role and resource store backed by dictionaries."""

    def __init__(self,
                 principals: Optional[Iterable[Principal]] = None,
                 roles: Optional[Iterable[Role]] = None,
                 resources: Optional[Iterable[Resource]] = None):
        self.logger = get_logger("entitlements.persistence.memory")
        self.principals: Dict[str, Principal] = {p.staff_id: p for p in principals or []}
        self.roles: Dict[str, Role] = {r.role_id: r for r in roles or []}
        self.resources: Dict[str, Resource] = {r.resource_id: r for r in resources or []}

    @classmethod
    def from_documents(cls, documents: Dict[str, List[Dict[str, Any]]]) -> "InMemoryDirectory":
        """Build a directory from ``users``, ``roles`` and ``resources`` documents."""
        return cls(
            principals=[principal_from_document(d) for d in documents.get("users", [])],
            roles=[role_from_document(d) for d in documents.get("roles", [])],
            resources=[resource_from_document(d) for d in documents.get("resources", [])]
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryDirectory":
        """Load a directory from a JSON file of documents."""
        with open(path, "r", encoding="utf-8") as f:
            documents = json.load(f)
        directory = cls.from_documents(documents)
        directory.logger.info(
            "Directory loaded",
            path=str(path),
            principals=len(directory.principals),
            roles=len(directory.roles),
            resources=len(directory.resources)
        )
        return directory

    async def find_by_staff_id(self, staff_id: str) -> Optional[Principal]:
        return self.principals.get(staff_id)

    async def find_active_by_ids(self, ids: Set[str]) -> List[Role]:
        return [
            role for role_id, role in self.roles.items()
            if role_id in ids and role.is_active
        ]

    async def find_active_api_by_ids(self, ids: Set[str]) -> List[Resource]:
        return [
            resource for resource_id, resource in self.resources.items()
            if resource_id in ids and resource.is_active and resource.is_api
        ]

    async def health_check(self) -> bool:
        return True
