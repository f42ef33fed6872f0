"""
Unit tests for the PermissionEvaluator.
"""

import asyncio
from dataclasses import replace

import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import StoreUnavailableError
from service_entitlements.app.persistence.stores import InMemoryDirectory
from service_entitlements.app.rules.engine import PermissionEvaluator
from service_entitlements.app.rules.models import (
    DecisionReason, OpaqueRule, Principal, Resource, ResourceType, Role, UriRule
)


def make_evaluator(directory):
    return PermissionEvaluator(directory, directory, directory)


class TestPermissionEvaluator:
    """Test cases for PermissionEvaluator."""

    @pytest.mark.asyncio
    async def test_scenario_a_granted(self, directory):
        """Group overlap plus a matching rule grants access."""
        evaluator = make_evaluator(directory)

        assert await evaluator.check_permission("P1", "GET", "/orders/42") is True

    @pytest.mark.asyncio
    async def test_scenario_b_disjoint_groups(self, principal, role, resource):
        """A resource for another group never authorizes."""
        directory = InMemoryDirectory(
            principals=[principal],
            roles=[role],
            resources=[replace(resource, groups=frozenset({"g2"}))]
        )
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.allowed is False
        assert decision.reason is DecisionReason.NO_GROUP_INTERSECTION

    @pytest.mark.asyncio
    async def test_scenario_c_extra_segments(self, directory):
        """A single wildcard does not absorb extra segments."""
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42/items")

        assert decision.allowed is False
        assert decision.reason is DecisionReason.NO_MATCHING_RULE

    @pytest.mark.asyncio
    async def test_scenario_d_no_roles_skips_stores(self, principal):
        """Without role ids neither the role nor the resource store is asked."""
        principal_store = AsyncMock()
        principal_store.find_by_staff_id.return_value = replace(principal, role_ids=())
        role_store = AsyncMock()
        resource_store = AsyncMock()
        evaluator = PermissionEvaluator(principal_store, role_store, resource_store)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.allowed is False
        assert decision.reason is DecisionReason.NO_ROLES
        principal_store.find_by_staff_id.assert_awaited_once_with("P1")
        role_store.find_active_by_ids.assert_not_awaited()
        resource_store.find_active_api_by_ids.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_principal(self, directory):
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("nobody", "GET", "/orders/42")

        assert decision.allowed is False
        assert decision.reason is DecisionReason.PRINCIPAL_NOT_FOUND

    @pytest.mark.asyncio
    async def test_inactive_principal(self, principal, role, resource):
        directory = InMemoryDirectory(
            principals=[replace(principal, is_active=False)],
            roles=[role],
            resources=[resource]
        )
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.allowed is False
        assert decision.reason is DecisionReason.PRINCIPAL_INACTIVE

    @pytest.mark.asyncio
    async def test_inactive_role_contributes_nothing(self, principal, role, resource):
        directory = InMemoryDirectory(
            principals=[principal],
            roles=[replace(role, is_active=False)],
            resources=[resource]
        )
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.allowed is False
        assert decision.reason is DecisionReason.NO_ACTIVE_ROLES

    @pytest.mark.asyncio
    async def test_missing_role_ids_are_dropped(self, principal, directory):
        """Dangling role ids are ignored, the remaining roles still count."""
        directory.principals["P1"] = replace(principal, role_ids=("GONE", "R1"))
        evaluator = make_evaluator(directory)

        assert await evaluator.check_permission("P1", "GET", "/orders/42") is True

    @pytest.mark.asyncio
    async def test_role_without_resources(self, principal, role):
        directory = InMemoryDirectory(
            principals=[principal],
            roles=[replace(role, resource_ids=())]
        )
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.reason is DecisionReason.NO_RESOURCES

    @pytest.mark.asyncio
    async def test_inactive_resource(self, principal, role, resource):
        directory = InMemoryDirectory(
            principals=[principal],
            roles=[role],
            resources=[replace(resource, is_active=False)]
        )
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.reason is DecisionReason.NO_API_RESOURCES

    @pytest.mark.asyncio
    async def test_non_api_resources_are_excluded(self, principal, role, resource):
        directory = InMemoryDirectory(
            principals=[principal],
            roles=[role],
            resources=[replace(resource, type=ResourceType.PAGE)]
        )
        evaluator = make_evaluator(directory)

        assert await evaluator.check_permission("P1", "GET", "/orders/42") is False

    @pytest.mark.asyncio
    async def test_store_results_are_rechecked(self, principal, role, resource):
        """A store that returns too much cannot widen access."""
        principal_store = AsyncMock()
        principal_store.find_by_staff_id.return_value = principal
        role_store = AsyncMock()
        role_store.find_active_by_ids.return_value = [role]
        resource_store = AsyncMock()
        resource_store.find_active_api_by_ids.return_value = [
            replace(resource, is_active=False),
            replace(resource, type=ResourceType.BUTTON),
            replace(resource, resource_id="NOT-ASKED-FOR"),
        ]
        evaluator = PermissionEvaluator(principal_store, role_store, resource_store)

        assert await evaluator.check_permission("P1", "GET", "/orders/42") is False
        role_store.find_active_by_ids.assert_awaited_once_with({"R1"})
        resource_store.find_active_api_by_ids.assert_awaited_once_with({"X1"})

    @pytest.mark.asyncio
    async def test_resource_ids_are_unioned_across_roles(self, principal, resource):
        principal = replace(principal, role_ids=("R1", "R2"))
        roles = [
            Role(role_id="R1", resource_ids=("X0",)),
            Role(role_id="R2", resource_ids=("X0", "X1")),
        ]
        resource_store = AsyncMock()
        resource_store.find_active_api_by_ids.return_value = [resource]
        directory = InMemoryDirectory(principals=[principal], roles=roles)
        evaluator = PermissionEvaluator(directory, directory, resource_store)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.allowed is True
        assert decision.matched_resource_id == "X1"
        resource_store.find_active_api_by_ids.assert_awaited_once_with({"X0", "X1"})

    @pytest.mark.asyncio
    async def test_any_rule_on_any_eligible_resource(self, principal, role):
        """Access is an OR over every rule of every eligible resource."""
        role = replace(role, resource_ids=("X1", "X2", "X3"))
        resources = [
            Resource(resource_id="X1", type=ResourceType.API, groups=frozenset({"g1"}),
                     permissions=(UriRule(method="GET", path="/invoices/**"),)),
            Resource(resource_id="X2", type=ResourceType.API, groups=frozenset({"g9"}),
                     permissions=(UriRule(method="*", path="/**"),)),
            Resource(resource_id="X3", type=ResourceType.API, groups=frozenset({"g1", "g2"}),
                     permissions=(UriRule(method="DELETE", path="/orders/{id}"),)),
        ]
        directory = InMemoryDirectory(principals=[principal], roles=[role], resources=resources)
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "delete", "/orders/42")

        assert decision.allowed is True
        assert decision.matched_resource_id == "X3"
        assert await evaluator.check_permission("P1", "POST", "/payroll") is False

    @pytest.mark.asyncio
    async def test_invalid_rule_regex_is_skipped(self, principal, role, resource):
        """A rule with a broken placeholder regex leaves other resources in play."""
        role = replace(role, resource_ids=("X0", "X1"))
        broken = Resource(
            resource_id="X0",
            type=ResourceType.API,
            groups=frozenset({"g1"}),
            permissions=(UriRule(method="GET", path="/orders/{id:[}"),)
        )
        directory = InMemoryDirectory(principals=[principal], roles=[role], resources=[broken, resource])
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.allowed is True
        assert decision.matched_resource_id == "X1"

    @pytest.mark.asyncio
    async def test_rules_without_path_are_inert(self, principal, role, resource):
        directory = InMemoryDirectory(
            principals=[principal],
            roles=[role],
            resources=[replace(resource, permissions=(OpaqueRule(fields={"method": "GET"}),))]
        )
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.allowed is False
        assert decision.reason is DecisionReason.NO_MATCHING_RULE

    @pytest.mark.asyncio
    async def test_principal_without_groups(self, principal, role, resource):
        """No groups never means "all groups"."""
        directory = InMemoryDirectory(
            principals=[replace(principal, groups=frozenset())],
            roles=[role],
            resources=[resource]
        )
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.reason is DecisionReason.NO_GROUP_INTERSECTION

    @pytest.mark.asyncio
    async def test_repeated_checks_are_stable(self, directory):
        evaluator = make_evaluator(directory)

        results = [await evaluator.check_permission("P1", "GET", "/orders/42") for _ in range(3)]

        assert results == [True, True, True]

    @pytest.mark.asyncio
    async def test_concurrent_checks(self, directory):
        evaluator = make_evaluator(directory)

        results = await asyncio.gather(
            evaluator.check_permission("P1", "GET", "/orders/1"),
            evaluator.check_permission("P1", "GET", "/orders/1/items"),
            evaluator.check_permission("nobody", "GET", "/orders/1"),
        )

        assert results == [True, False, False]

    @pytest.mark.asyncio
    async def test_reflects_current_directory_state(self, principal, directory):
        """Nothing is cached between calls."""
        evaluator = make_evaluator(directory)
        assert await evaluator.check_permission("P1", "GET", "/orders/42") is True

        directory.principals["P1"] = replace(principal, groups=frozenset({"g2"}))

        assert await evaluator.check_permission("P1", "GET", "/orders/42") is False

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, principal):
        """A failing store is an error, not a denial."""
        principal_store = AsyncMock()
        principal_store.find_by_staff_id.return_value = principal
        role_store = AsyncMock()
        role_store.find_active_by_ids.side_effect = StoreUnavailableError("role_store", "timeout")
        evaluator = PermissionEvaluator(principal_store, role_store, AsyncMock())

        with pytest.raises(StoreUnavailableError) as exc_info:
            await evaluator.check_permission("P1", "GET", "/orders/42")

        assert exc_info.value.store == "role_store"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        principal_store = AsyncMock()
        principal_store.find_by_staff_id.side_effect = asyncio.CancelledError()
        evaluator = PermissionEvaluator(principal_store, AsyncMock(), AsyncMock())

        with pytest.raises(asyncio.CancelledError):
            await evaluator.check_permission("P1", "GET", "/orders/42")

    @pytest.mark.asyncio
    async def test_decision_reports_timing(self, directory):
        evaluator = make_evaluator(directory)

        decision = await evaluator.evaluate("P1", "GET", "/orders/42")

        assert decision.reason is DecisionReason.GRANTED
        assert decision.matched_resource_id == "X1"
        assert decision.evaluation_time_ms >= 0.0
