from __future__ import annotations

from dataclasses import dataclass

from orgblog.domain.errors import DENY_ERRORS, DenyReason, UnauthenticatedError, UnresolvableTargetError
from orgblog.domain.models import Actor
from orgblog.domain.roles import Role, has_exact_role, has_min_role, parse_role
from orgblog.domain.scope import ScopeResolver, Target


@dataclass(frozen=True)
class ActionPolicy:
    name: str
    requires_auth: bool = True
    required_role: Role | None = None
    min_role: Role | None = None
    requires_scope: bool = False


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> Decision:
        return cls(allowed=False, reason=reason)

    def raise_for_denial(self, action: ActionPolicy | None = None) -> None:
        if self.allowed or self.reason is None:
            return
        suffix = f" for {action.name}" if action is not None else ""
        raise DENY_ERRORS[self.reason](f"{self.reason.value}{suffix}")


SUBMIT_VERIFICATION = ActionPolicy("verification.submit")
VIEW_OWN_VERIFICATIONS = ActionPolicy("verification.read_own")
APPROVE_VERIFICATION = ActionPolicy("verification.approve", min_role=Role.DEPT_ADMIN, requires_scope=True)
REJECT_VERIFICATION = ActionPolicy("verification.reject", min_role=Role.DEPT_ADMIN, requires_scope=True)
VIEW_VERIFICATION = ActionPolicy("verification.read", min_role=Role.DEPT_ADMIN, requires_scope=True)
LIST_VERIFICATIONS = ActionPolicy("verification.list", min_role=Role.DEPT_ADMIN)
VIEW_VERIFICATION_STATS = ActionPolicy("verification.stats", min_role=Role.DEPT_ADMIN)

CREATE_ORGANIZATION = ActionPolicy("organization.create", required_role=Role.SUPER_ADMIN)
DEACTIVATE_ORGANIZATION = ActionPolicy("organization.deactivate", required_role=Role.SUPER_ADMIN)
CREATE_DEPARTMENT = ActionPolicy("department.create", min_role=Role.ORG_ADMIN, requires_scope=True)
DEACTIVATE_DEPARTMENT = ActionPolicy("department.deactivate", min_role=Role.ORG_ADMIN, requires_scope=True)
ASSIGN_ORG_ADMIN = ActionPolicy("admin.assign_org_admin", required_role=Role.SUPER_ADMIN)
ASSIGN_DEPT_ADMIN = ActionPolicy("admin.assign_dept_admin", required_role=Role.ORG_ADMIN, requires_scope=True)
REMOVE_DEPT_ADMIN = ActionPolicy("admin.remove_dept_admin", required_role=Role.ORG_ADMIN, requires_scope=True)
VIEW_SCOPED_USERS = ActionPolicy("user.list_scoped", min_role=Role.DEPT_ADMIN)
VIEW_TENANCY_STATS = ActionPolicy("tenancy.stats", min_role=Role.DEPT_ADMIN)


def authorize(
    actor: Actor | None,
    action: ActionPolicy,
    target: Target | None = None,
    *,
    resolver: ScopeResolver | None = None,
) -> Decision:
    if actor is None:
        if action.requires_auth:
            return Decision.deny(DenyReason.UNAUTHENTICATED)
        return Decision.allow()

    role = parse_role(actor.role)
    if (
        action.required_role is not None
        and role != Role.SUPER_ADMIN
        and not has_exact_role(role, action.required_role)
    ):
        return Decision.deny(DenyReason.ROLE_MISMATCH)
    if action.min_role is not None and not has_min_role(role, action.min_role):
        return Decision.deny(DenyReason.INSUFFICIENT_ROLE)
    if action.requires_scope:
        if target is None or resolver is None:
            raise UnresolvableTargetError(f"{action.name} needs a target and a scope resolver")
        if not resolver.contains(actor, target):
            return Decision.deny(DenyReason.OUT_OF_SCOPE)
    return Decision.allow()


def require(
    actor: Actor | None,
    action: ActionPolicy,
    target: Target | None = None,
    *,
    resolver: ScopeResolver | None = None,
) -> Actor:
    authorize(actor, action, target, resolver=resolver).raise_for_denial(action)
    if actor is None:
        raise UnauthenticatedError(f"unauthenticated for {action.name}")
    return actor
