"""
Permission evaluation engine for the Entitlements service.
"""

import time
from typing import List, Optional

from shared.logging import get_logger
from ..persistence.stores import PrincipalStore, RoleStore, ResourceStore
from .matchers import RuleMatcher, GroupIntersector
from .models import (
    DecisionReason, PermissionDecision, Principal, Resource, Role
)


class PermissionEvaluator:
    """Decides whether a staff member may call a method on a path.

    The pipeline resolves the principal, its active roles, and the active
    API resources of those roles, keeps the resources whose groups
    intersect the principal's, and grants access if any rule on any of
    them matches. Each step stops early with a denial when it comes up
    empty. Store failures propagate to the caller untouched.
    """

    def __init__(self, principal_store: PrincipalStore, role_store: RoleStore,
                 resource_store: ResourceStore,
                 rule_matcher: Optional[RuleMatcher] = None,
                 group_intersector: Optional[GroupIntersector] = None):
        self.principal_store = principal_store
        self.role_store = role_store
        self.resource_store = resource_store
        self.rule_matcher = rule_matcher or RuleMatcher()
        self.group_intersector = group_intersector or GroupIntersector()
        self.logger = get_logger("entitlements.permission_evaluator")

    async def check_permission(self, staff_id: str, http_method: str, request_uri: str) -> bool:
        """Return True iff the staff member is authorized."""
        decision = await self.evaluate(staff_id, http_method, request_uri)
        return decision.allowed

    async def evaluate(self, staff_id: str, http_method: str, request_uri: str) -> PermissionDecision:
        """Evaluate a request and report why it was granted or denied."""
        start_time = time.time()

        def decide(reason: DecisionReason, resource_id: Optional[str] = None) -> PermissionDecision:
            decision = PermissionDecision(
                allowed=(reason is DecisionReason.GRANTED),
                reason=reason,
                matched_resource_id=resource_id,
                evaluation_time_ms=(time.time() - start_time) * 1000
            )
            self.logger.info(
                "Permission check result",
                staff_id=staff_id,
                method=http_method,
                uri=request_uri,
                allowed=decision.allowed,
                reason=reason.value,
                matched_resource_id=resource_id
            )
            return decision

        self.logger.debug("Checking permission", staff_id=staff_id, method=http_method, uri=request_uri)

        principal = await self.principal_store.find_by_staff_id(staff_id)
        if principal is None:
            self.logger.warning("Principal not found", staff_id=staff_id)
            return decide(DecisionReason.PRINCIPAL_NOT_FOUND)
        if not principal.is_active:
            return decide(DecisionReason.PRINCIPAL_INACTIVE)

        if not principal.role_ids:
            return decide(DecisionReason.NO_ROLES)

        roles = await self._resolve_roles(principal)
        if not roles:
            return decide(DecisionReason.NO_ACTIVE_ROLES)

        resource_ids = self._collect_resource_ids(roles)
        if not resource_ids:
            return decide(DecisionReason.NO_RESOURCES)

        resources = await self._resolve_resources(resource_ids)
        if not resources:
            return decide(DecisionReason.NO_API_RESOURCES)

        eligible = [
            resource for resource in resources
            if self.group_intersector.intersects(principal.groups, resource.groups)
        ]
        if not eligible:
            self.logger.debug(
                "No group intersection",
                staff_id=staff_id,
                groups=sorted(principal.groups),
                resources=[r.resource_id for r in resources]
            )
            return decide(DecisionReason.NO_GROUP_INTERSECTION)

        for resource in eligible:
            if self.rule_matcher.any_match(resource.permissions, http_method, request_uri):
                return decide(DecisionReason.GRANTED, resource.resource_id)

        return decide(DecisionReason.NO_MATCHING_RULE)

    async def _resolve_roles(self, principal: Principal) -> List[Role]:
        roles = await self.role_store.find_active_by_ids(set(principal.role_ids))
        wanted = set(principal.role_ids)
        # Missing or inactive role ids are dropped silently
        return [role for role in roles if role.is_active and role.role_id in wanted]

    @staticmethod
    def _collect_resource_ids(roles: List[Role]) -> List[str]:
        resource_ids: List[str] = []
        seen = set()
        for role in roles:
            for resource_id in role.resource_ids:
                if resource_id not in seen:
                    seen.add(resource_id)
                    resource_ids.append(resource_id)
        return resource_ids

    async def _resolve_resources(self, resource_ids: List[str]) -> List[Resource]:
        resources = await self.resource_store.find_active_api_by_ids(set(resource_ids))
        wanted = set(resource_ids)
        return [
            resource for resource in resources
            if resource.is_active and resource.is_api and resource.resource_id in wanted
        ]
