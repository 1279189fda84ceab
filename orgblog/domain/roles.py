from __future__ import annotations

from enum import StrEnum
from types import MappingProxyType
from typing import Any

from orgblog.domain.errors import UnknownRoleError


class Role(StrEnum):
    GLOBAL = "global"
    VERIFIED = "verified"
    DEPT_ADMIN = "dept_admin"
    ORG_ADMIN = "org_admin"
    SUPER_ADMIN = "super_admin"


ROLE_RANKS = MappingProxyType(
    {
        Role.GLOBAL: 0,
        Role.VERIFIED: 1,
        Role.DEPT_ADMIN: 2,
        Role.ORG_ADMIN: 3,
        Role.SUPER_ADMIN: 4,
    }
)

ADMIN_ROLES = frozenset({Role.DEPT_ADMIN, Role.ORG_ADMIN, Role.SUPER_ADMIN})


def parse_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        try:
            return Role(value)
        except ValueError as exc:
            raise UnknownRoleError(f"unknown role: {value!r}") from exc
    raise UnknownRoleError(f"unknown role: {value!r}")


def rank(role: Any) -> int:
    return ROLE_RANKS[parse_role(role)]


def has_exact_role(actor_role: Any, required_role: Any) -> bool:
    return parse_role(actor_role) == parse_role(required_role)


def has_min_role(actor_role: Any, min_role: Any) -> bool:
    return rank(actor_role) >= rank(min_role)
