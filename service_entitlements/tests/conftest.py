"""
Shared fixtures for Entitlements service tests.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_entitlements.app.persistence.stores import InMemoryDirectory
from service_entitlements.app.rules.models import (
    OpaqueRule, Principal, Resource, ResourceType, Role, UriRule
)


@pytest.fixture
def principal():
    """P1: member of g1 holding role R1."""
    return Principal(staff_id="P1", username="jdoe", groups=frozenset({"g1"}), role_ids=("R1",))


@pytest.fixture
def role():
    """R1: grants resource X1."""
    return Role(role_id="R1", name="order-reader", resource_ids=("X1",))


@pytest.fixture
def resource():
    """X1: active API resource for g1 allowing GET /orders/*."""
    return Resource(
        resource_id="X1",
        name="Orders API",
        type=ResourceType.API,
        groups=frozenset({"g1"}),
        permissions=(
            OpaqueRule(fields={"code": "BTN_EXPORT"}),
            UriRule(method="GET", path="/orders/*"),
        )
    )


@pytest.fixture
def directory(principal, role, resource):
    """Directory holding the P1 -> R1 -> X1 scenario."""
    return InMemoryDirectory(principals=[principal], roles=[role], resources=[resource])
