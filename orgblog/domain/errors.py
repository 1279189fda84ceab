from __future__ import annotations

from enum import StrEnum


class DenyReason(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    ROLE_MISMATCH = "role_mismatch"
    INSUFFICIENT_ROLE = "insufficient_role"
    OUT_OF_SCOPE = "out_of_scope"


class TenancyError(Exception):
    pass


class AccessDeniedError(TenancyError):
    reason: DenyReason = DenyReason.OUT_OF_SCOPE


class UnauthenticatedError(AccessDeniedError):
    reason = DenyReason.UNAUTHENTICATED


class RoleMismatchError(AccessDeniedError):
    reason = DenyReason.ROLE_MISMATCH


class InsufficientRoleError(AccessDeniedError):
    reason = DenyReason.INSUFFICIENT_ROLE


class OutOfScopeError(AccessDeniedError):
    reason = DenyReason.OUT_OF_SCOPE


class UnknownRoleError(TenancyError):
    pass


class NotFoundError(TenancyError):
    pass


class UnresolvableTargetError(TenancyError):
    pass


class ConflictError(TenancyError):
    pass


class AlreadyVerifiedError(ConflictError):
    pass


class DuplicatePendingError(ConflictError):
    pass


class AlreadyResolvedError(ConflictError):
    pass


class InactiveOrganizationError(ConflictError):
    pass


class MissingReasonError(TenancyError):
    pass


class InvalidPlacementError(TenancyError):
    pass


DENY_ERRORS: dict[DenyReason, type[AccessDeniedError]] = {
    DenyReason.UNAUTHENTICATED: UnauthenticatedError,
    DenyReason.ROLE_MISMATCH: RoleMismatchError,
    DenyReason.INSUFFICIENT_ROLE: InsufficientRoleError,
    DenyReason.OUT_OF_SCOPE: OutOfScopeError,
}
