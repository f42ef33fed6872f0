"""
Data models for the permission evaluation engine.
"""

from typing import Dict, Any, Optional, List, Tuple, FrozenSet, Iterable, Mapping, Union
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field


METHOD_FIELD = "method"
URI_FIELD = "uri"
PATH_FIELD = "path"
CODE_FIELD = "code"
PARENT_PAGE_FIELD = "parentPage"


class ResourceType(str, Enum):
    """Resource types. Only API resources carry URI/method rules."""
    PAGE = "PAGE"
    API = "API"
    BUTTON = "BUTTON"

    @classmethod
    def parse(cls, value: Any) -> Optional["ResourceType"]:
        """Parse a stored type string, case-insensitively. Unknown types give None."""
        if isinstance(value, ResourceType):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


@dataclass(frozen=True)
class UriRule:
    """A method/path permission rule."""
    method: str
    path: str


@dataclass(frozen=True)
class OpaqueRule:
    """Any permission record that is not a URI rule (button codes, page links, ...)."""
    fields: Mapping[str, Any] = field(default_factory=dict)


PermissionRule = Union[UriRule, OpaqueRule]


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_permission_rule(document: Any) -> PermissionRule:
    """Build a permission rule from a loosely-typed stored document.

    A document becomes a UriRule only when it carries both a method and a
    uri (or path) as non-blank strings. Everything else is an OpaqueRule.
    """
    if not isinstance(document, Mapping):
        return OpaqueRule()

    method = _text(document.get(METHOD_FIELD))
    path = _text(document.get(URI_FIELD)) or _text(document.get(PATH_FIELD))
    if method is None or path is None:
        return OpaqueRule(fields=dict(document))
    return UriRule(method=method, path=path)


def _unique(values: Iterable[Any]) -> Tuple[str, ...]:
    seen = []
    for value in values:
        text = _text(value)
        if text is not None and text not in seen:
            seen.append(text)
    return tuple(seen)


@dataclass(frozen=True)
class Entitlement:
    """A group membership with the roles it grants."""
    ad_group: Optional[str] = None
    role_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Principal:
    """The staff member whose access is evaluated."""
    staff_id: str
    username: Optional[str] = None
    groups: FrozenSet[str] = frozenset()
    role_ids: Tuple[str, ...] = ()
    is_active: bool = True

    @classmethod
    def from_entitlements(cls, staff_id: str, entitlements: Iterable[Entitlement],
                          username: Optional[str] = None, is_active: bool = True) -> "Principal":
        """Derive groups and role ids from a user's entitlements.

        Blank group names and role ids are dropped; role ids keep their
        first-seen order.
        """
        entitlements = list(entitlements or [])
        groups = frozenset(_unique(e.ad_group for e in entitlements))
        role_ids = _unique(role_id for e in entitlements for role_id in (e.role_ids or ()))
        return cls(
            staff_id=staff_id,
            username=username,
            groups=groups,
            role_ids=role_ids,
            is_active=is_active
        )


@dataclass(frozen=True)
class Role:
    """A named bundle of resource identifiers."""
    role_id: str
    name: Optional[str] = None
    resource_ids: Tuple[str, ...] = ()
    is_active: bool = True


@dataclass(frozen=True)
class Resource:
    """A protected resource with its eligible groups and permission rules."""
    resource_id: str
    name: Optional[str] = None
    type: Optional[ResourceType] = None
    groups: FrozenSet[str] = frozenset()
    permissions: Tuple[PermissionRule, ...] = ()
    is_active: bool = True

    @property
    def is_api(self) -> bool:
        return self.type is ResourceType.API


class DecisionReason(str, Enum):
    """Why a permission check ended the way it did."""
    GRANTED = "granted"
    PRINCIPAL_NOT_FOUND = "principal_not_found"
    PRINCIPAL_INACTIVE = "principal_inactive"
    NO_ROLES = "no_roles"
    NO_ACTIVE_ROLES = "no_active_roles"
    NO_RESOURCES = "no_resources"
    NO_API_RESOURCES = "no_api_resources"
    NO_GROUP_INTERSECTION = "no_group_intersection"
    NO_MATCHING_RULE = "no_matching_rule"


@dataclass
class PermissionDecision:
    """Result of one permission evaluation."""
    allowed: bool
    reason: DecisionReason
    matched_resource_id: Optional[str] = None
    evaluation_time_ms: float = 0.0


class PermissionCheckResponse(BaseModel):
    """Response model for a permission check."""
    allowed: bool = Field(..., description="Whether the request is authorized")


class PermissionExplainResponse(BaseModel):
    """Response model describing how a decision was reached."""
    staff_id: str
    http_method: str
    request_uri: str
    allowed: bool
    reason: DecisionReason
    matched_resource_id: Optional[str] = None
    evaluation_time_ms: float = 0.0


def resource_from_document(document: Dict[str, Any]) -> Resource:
    """Build a Resource from a stored resource document."""
    permissions = document.get("permission") or []
    if isinstance(permissions, Mapping):
        permissions = [permissions]
    return Resource(
        resource_id=str(document.get("id")),
        name=document.get("name"),
        type=ResourceType.parse(document.get("type")),
        groups=frozenset(_unique(document.get("adGroups") or [])),
        permissions=tuple(parse_permission_rule(p) for p in permissions),
        is_active=bool(document.get("isActive", True))
    )


def role_from_document(document: Dict[str, Any]) -> Role:
    """Build a Role from a stored role document."""
    return Role(
        role_id=str(document.get("id")),
        name=document.get("roleName"),
        resource_ids=_unique(document.get("resourceIds") or []),
        is_active=bool(document.get("isActive", True))
    )


def principal_from_document(document: Dict[str, Any]) -> Principal:
    """Build a Principal from a stored user document with entitlements."""
    entitlements: List[Entitlement] = []
    for item in document.get("entitlements") or []:
        if not isinstance(item, Mapping):
            continue
        entitlements.append(Entitlement(
            ad_group=item.get("adGroup"),
            role_ids=tuple(item.get("roleIds") or ())
        ))
    return Principal.from_entitlements(
        staff_id=str(document.get("staffId")),
        entitlements=entitlements,
        username=document.get("username"),
        is_active=bool(document.get("isActive", True))
    )
