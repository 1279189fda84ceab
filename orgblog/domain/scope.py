from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from orgblog.domain.errors import NotFoundError, UnresolvableTargetError
from orgblog.domain.roles import ADMIN_ROLES, Role, parse_role
from orgblog.domain.tenant_tree import Placed, TenantTree


@dataclass(frozen=True)
class UserRef:
    user_id: str


@dataclass(frozen=True)
class DepartmentRef:
    dept_id: str


@dataclass(frozen=True)
class OrganizationRef:
    org_id: str


@dataclass(frozen=True)
class VerificationRequestRef:
    request_id: str


Target = UserRef | DepartmentRef | OrganizationRef | VerificationRequestRef


@dataclass(frozen=True)
class Placement:
    org_id: str | None
    dept_id: str | None


@dataclass(frozen=True)
class ScopeBounds:
    unrestricted: bool = False
    org_id: str | None = None
    dept_id: str | None = None

    def is_empty(self) -> bool:
        return not self.unrestricted and self.org_id is None and self.dept_id is None


class ScopeRecords(Protocol):
    def get_user(self, user_id: str) -> Any | None: ...

    def get_verification_request(self, request_id: str) -> Any | None: ...


class ScopeResolver:
    def __init__(self, tree: TenantTree, records: ScopeRecords) -> None:
        self.tree = tree
        self._records = records

    def resolve(self, target: Target) -> Placement:
        if isinstance(target, OrganizationRef):
            if not self.tree.has_organization(target.org_id):
                raise UnresolvableTargetError(f"organization {target.org_id} cannot be resolved")
            return Placement(org_id=target.org_id, dept_id=None)
        if isinstance(target, DepartmentRef):
            try:
                org_id = self.tree.organization_of(target.dept_id)
            except NotFoundError as exc:
                raise UnresolvableTargetError(f"department {target.dept_id} cannot be resolved") from exc
            return Placement(org_id=org_id, dept_id=target.dept_id)
        if isinstance(target, UserRef):
            user = self._records.get_user(target.user_id)
            if user is None:
                raise UnresolvableTargetError(f"user {target.user_id} cannot be resolved")
            if not self.tree.validate_user_placement(user):
                raise UnresolvableTargetError(f"user {target.user_id} has an inconsistent placement")
            return Placement(org_id=user.org_id, dept_id=user.dept_id)
        if isinstance(target, VerificationRequestRef):
            request = self._records.get_verification_request(target.request_id)
            if request is None:
                raise UnresolvableTargetError(f"verification request {target.request_id} cannot be resolved")
            if not self.tree.is_descendant(request.dept_id, request.org_id):
                raise UnresolvableTargetError(
                    f"verification request {target.request_id} points outside the tenant tree"
                )
            return Placement(org_id=request.org_id, dept_id=request.dept_id)
        raise UnresolvableTargetError(f"unsupported target: {target!r}")

    def bounds(self, actor: Placed) -> ScopeBounds:
        role = parse_role(actor.role)
        if role == Role.SUPER_ADMIN:
            return ScopeBounds(unrestricted=True)
        if role not in ADMIN_ROLES:
            return ScopeBounds()
        if not self.tree.validate_user_placement(actor):
            return ScopeBounds()
        if role == Role.ORG_ADMIN:
            return ScopeBounds(org_id=actor.org_id)
        return ScopeBounds(dept_id=actor.dept_id)

    def contains(self, actor: Placed, target: Target) -> bool:
        bounds = self.bounds(actor)
        if bounds.unrestricted:
            return True
        if bounds.is_empty():
            return False
        placement = self.resolve(target)
        if bounds.org_id is not None:
            return placement.org_id == bounds.org_id
        return placement.dept_id is not None and placement.dept_id == bounds.dept_id
