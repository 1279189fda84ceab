from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any, Protocol

import sqlalchemy as sa
from sqlmodel import Session, col, func, select
from sqlmodel.sql.expression import SelectOfScalar

from orgblog.domain.errors import NotFoundError
from orgblog.domain.models import Department, Organization, User, VerificationRequest, now_utc
from orgblog.domain.roles import Role
from orgblog.domain.scope import ScopeBounds
from orgblog.domain.state_machine import VerificationStatus
from orgblog.domain.tenant_tree import TenantTree

SessionFactory = Callable[[], Session]


def _apply_bounds(statement: Any, model: Any, bounds: ScopeBounds) -> Any:
    if bounds.unrestricted:
        return statement
    if bounds.dept_id is not None:
        return statement.where(col(model.dept_id) == bounds.dept_id)
    if bounds.org_id is not None:
        return statement.where(col(model.org_id) == bounds.org_id)
    return statement.where(sa.false())


class SqlTenantReader:
    def __init__(self, session: Session) -> None:
        self.session = session

    def load_tree(self) -> TenantTree:
        organizations = self.session.exec(select(Organization)).all()
        departments = self.session.exec(select(Department)).all()
        return TenantTree.from_records(organizations, departments)

    def get_organization(self, org_id: str) -> Organization | None:
        return self.session.get(Organization, org_id)

    def get_department(self, dept_id: str) -> Department | None:
        return self.session.get(Department, dept_id)

    def get_user(self, user_id: str) -> User | None:
        return self.session.get(User, user_id)

    def get_verification_request(self, request_id: str) -> VerificationRequest | None:
        return self.session.get(VerificationRequest, request_id)

    def list_users(self, bounds: ScopeBounds) -> list[User]:
        statement = _apply_bounds(select(User), User, bounds).order_by(col(User.username))
        return list(self.session.exec(statement).all())

    def count_members(self, bounds: ScopeBounds) -> int:
        statement = select(func.count()).select_from(User).where(col(User.role) != Role.GLOBAL.value)
        statement = _apply_bounds(statement, User, bounds)
        return int(self.session.exec(statement).one())

    def count_departments(self, bounds: ScopeBounds) -> int:
        statement = select(func.count()).select_from(Department)
        if bounds.dept_id is not None:
            statement = statement.where(col(Department.id) == bounds.dept_id)
        elif bounds.org_id is not None:
            statement = statement.where(col(Department.org_id) == bounds.org_id)
        elif not bounds.unrestricted:
            statement = statement.where(sa.false())
        return int(self.session.exec(statement).one())


class ScopedListing:
    def __init__(self, session_factory: SessionFactory, statement: SelectOfScalar[VerificationRequest]) -> None:
        self._session_factory = session_factory
        self._statement = statement

    def __iter__(self) -> Iterator[VerificationRequest]:
        with self._session_factory() as session:
            yield from session.exec(self._statement)


class SqlVerificationStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, request_id: str) -> VerificationRequest | None:
        return self.session.get(VerificationRequest, request_id, populate_existing=True)

    def add(self, request: VerificationRequest) -> VerificationRequest:
        self.session.add(request)
        self.session.flush()
        return request

    def find_pending(self, user_id: str, org_id: str, dept_id: str) -> VerificationRequest | None:
        statement = (
            select(VerificationRequest)
            .where(VerificationRequest.user_id == user_id)
            .where(VerificationRequest.org_id == org_id)
            .where(VerificationRequest.dept_id == dept_id)
            .where(col(VerificationRequest.status) == VerificationStatus.PENDING.value)
        )
        return self.session.exec(statement).first()

    def compare_and_swap(
        self,
        request_id: str,
        *,
        expected: VerificationStatus,
        target: VerificationStatus,
        changes: dict[str, Any],
    ) -> bool:
        statement = (
            sa.update(VerificationRequest)
            .where(col(VerificationRequest.id) == request_id)
            .where(col(VerificationRequest.status) == expected.value)
            .values(status=target.value, **changes)
        )
        result = self.session.execute(statement)
        return int(getattr(result, "rowcount", 0) or 0) == 1

    def list_for_user(self, user_id: str) -> list[VerificationRequest]:
        statement = (
            select(VerificationRequest)
            .where(VerificationRequest.user_id == user_id)
            .order_by(col(VerificationRequest.created_at).desc(), col(VerificationRequest.id).asc())
        )
        return list(self.session.exec(statement).all())

    def count_by_status(self, bounds: ScopeBounds) -> dict[str, int]:
        statement = select(VerificationRequest.status, func.count()).group_by(VerificationRequest.status)
        statement = _apply_bounds(statement, VerificationRequest, bounds)
        return {str(status): int(count) for status, count in self.session.exec(statement).all()}


def scoped_verification_query(
    bounds: ScopeBounds,
    status_filter: VerificationStatus | None = None,
) -> SelectOfScalar[VerificationRequest]:
    statement = _apply_bounds(select(VerificationRequest), VerificationRequest, bounds)
    if status_filter is not None:
        statement = statement.where(col(VerificationRequest.status) == status_filter.value)
    return statement.order_by(col(VerificationRequest.created_at).desc(), col(VerificationRequest.id).asc())


class UserPromoter(Protocol):
    def promote(self, user_id: str, *, role: Role, org_id: str | None, dept_id: str | None) -> None: ...


class SqlUserPromoter:
    def __init__(self, session: Session) -> None:
        self.session = session

    def promote(self, user_id: str, *, role: Role, org_id: str | None, dept_id: str | None) -> None:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        user.role = role
        user.org_id = org_id
        user.dept_id = dept_id
        user.updated_at = now_utc()
        self.session.add(user)
