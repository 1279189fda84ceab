from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from orgblog.domain.authorization import (
    ASSIGN_DEPT_ADMIN,
    ASSIGN_ORG_ADMIN,
    CREATE_DEPARTMENT,
    CREATE_ORGANIZATION,
    DEACTIVATE_DEPARTMENT,
    DEACTIVATE_ORGANIZATION,
    REMOVE_DEPT_ADMIN,
    VIEW_SCOPED_USERS,
    VIEW_TENANCY_STATS,
    require,
)
from orgblog.domain.errors import (
    ConflictError,
    InactiveOrganizationError,
    InvalidPlacementError,
    NotFoundError,
)
from orgblog.domain.models import Actor, Department, Organization, TenancyStatsRead, User, now_utc
from orgblog.domain.roles import Role, has_min_role, parse_role
from orgblog.domain.scope import DepartmentRef, OrganizationRef, ScopeResolver, UserRef
from orgblog.domain.state_machine import VerificationStatus
from orgblog.domain.tenant_tree import TenantTree
from orgblog.infra.db import get_engine
from orgblog.infra.events import event_bus
from orgblog.infra.repositories import SqlTenantReader, SqlVerificationStore

logger = logging.getLogger(__name__)


class TenancyService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _resolver(self, session: Session) -> ScopeResolver:
        reader = SqlTenantReader(session)
        return ScopeResolver(reader.load_tree(), reader)

    def _get_user(self, session: Session, user_id: str) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def _place_user(
        self,
        session: Session,
        tree: TenantTree,
        user: User,
        *,
        role: Role,
        org_id: str | None,
        dept_id: str | None,
    ) -> User:
        user.role = role
        user.org_id = org_id
        user.dept_id = dept_id
        if not tree.validate_user_placement(user):
            session.rollback()
            raise InvalidPlacementError(f"invalid placement for role {role.value}")
        user.updated_at = now_utc()
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    def load_actor(self, user_id: str) -> Actor:
        with self._session() as session:
            user = self._get_user(session, user_id)
            return Actor(user_id=user.id, role=parse_role(user.role), org_id=user.org_id, dept_id=user.dept_id)

    def register_user(self, username: str) -> User:
        with self._session() as session:
            user = User(username=username.strip(), role=Role.GLOBAL)
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(user)
            return user

    def bootstrap_super_admin(self, username: str) -> User:
        with self._session() as session:
            if session.exec(select(User.id)).first() is not None:
                raise ConflictError("platform already initialized")
            user = User(username=username.strip(), role=Role.SUPER_ADMIN)
            session.add(user)
            session.commit()
            session.refresh(user)
        logger.info("bootstrapped super admin %s", user.id)
        return user

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            return self._get_user(session, user_id)

    def list_users_in_scope(self, actor: Actor | None) -> list[User]:
        actor = require(actor, VIEW_SCOPED_USERS)
        with self._session() as session:
            reader = SqlTenantReader(session)
            bounds = ScopeResolver(reader.load_tree(), reader).bounds(actor)
            return reader.list_users(bounds)

    def create_organization(self, actor: Actor | None, name: str) -> Organization:
        actor = require(actor, CREATE_ORGANIZATION)
        with self._session() as session:
            org = Organization(name=name.strip(), created_by=actor.user_id)
            session.add(org)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("organization name already exists") from exc
            session.refresh(org)
        event_bus.publish_dict("organization.created", {"org_id": org.id}, actor_id=actor.user_id, org_id=org.id)
        return org

    def list_organizations(self, include_inactive: bool = False) -> list[Organization]:
        with self._session() as session:
            statement = select(Organization).order_by(col(Organization.name))
            if not include_inactive:
                statement = statement.where(col(Organization.active).is_(True))
            return list(session.exec(statement).all())

    def get_organization(self, org_id: str) -> Organization:
        with self._session() as session:
            org = session.get(Organization, org_id)
            if org is None:
                raise NotFoundError("organization not found")
            return org

    def set_organization_active(self, actor: Actor | None, org_id: str, active: bool) -> Organization:
        actor = require(actor, DEACTIVATE_ORGANIZATION)
        with self._session() as session:
            org = session.get(Organization, org_id)
            if org is None:
                raise NotFoundError("organization not found")
            org.active = active
            session.add(org)
            session.commit()
            session.refresh(org)
        event_name = "organization.activated" if active else "organization.deactivated"
        logger.info("%s %s by %s", event_name, org_id, actor.user_id)
        event_bus.publish_dict(event_name, {"org_id": org_id}, actor_id=actor.user_id, org_id=org_id)
        return org

    def create_department(self, actor: Actor | None, org_id: str, name: str) -> Department:
        with self._session() as session:
            resolver = self._resolver(session)
            if not resolver.tree.has_organization(org_id):
                raise NotFoundError("organization not found")
            actor = require(actor, CREATE_DEPARTMENT, OrganizationRef(org_id), resolver=resolver)
            if not resolver.tree.is_active(org_id):
                raise InactiveOrganizationError("organization is deactivated")
            dept = Department(org_id=org_id, name=name.strip())
            session.add(dept)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("department name already exists in organization") from exc
            session.refresh(dept)
        event_bus.publish_dict(
            "department.created",
            {"dept_id": dept.id, "org_id": org_id},
            actor_id=actor.user_id,
            org_id=org_id,
        )
        return dept

    def list_departments(self, org_id: str) -> list[Department]:
        with self._session() as session:
            if session.get(Organization, org_id) is None:
                raise NotFoundError("organization not found")
            statement = select(Department).where(Department.org_id == org_id).order_by(col(Department.name))
            return list(session.exec(statement).all())

    def set_department_active(self, actor: Actor | None, dept_id: str, active: bool) -> Department:
        with self._session() as session:
            resolver = self._resolver(session)
            if not resolver.tree.has_department(dept_id):
                raise NotFoundError("department not found")
            actor = require(actor, DEACTIVATE_DEPARTMENT, DepartmentRef(dept_id), resolver=resolver)
            dept = session.get(Department, dept_id)
            if dept is None:
                raise NotFoundError("department not found")
            dept.active = active
            session.add(dept)
            session.commit()
            session.refresh(dept)
        event_name = "department.activated" if active else "department.deactivated"
        logger.info("%s %s by %s", event_name, dept_id, actor.user_id)
        event_bus.publish_dict(
            event_name,
            {"dept_id": dept_id, "org_id": dept.org_id},
            actor_id=actor.user_id,
            org_id=dept.org_id,
        )
        return dept

    def stats_for_scope(self, actor: Actor | None) -> TenancyStatsRead:
        actor = require(actor, VIEW_TENANCY_STATS)
        with self._session() as session:
            reader = SqlTenantReader(session)
            bounds = ScopeResolver(reader.load_tree(), reader).bounds(actor)
            counts = SqlVerificationStore(session).count_by_status(bounds)
            return TenancyStatsRead(
                total_members=reader.count_members(bounds),
                total_departments=reader.count_departments(bounds),
                pending_verifications=counts.get(VerificationStatus.PENDING.value, 0),
            )

    def assign_org_admin(self, actor: Actor | None, user_id: str, org_id: str) -> User:
        actor = require(actor, ASSIGN_ORG_ADMIN)
        with self._session() as session:
            tree = SqlTenantReader(session).load_tree()
            if not tree.has_organization(org_id):
                raise NotFoundError("organization not found")
            user = self._get_user(session, user_id)
            if parse_role(user.role) == Role.SUPER_ADMIN:
                raise InvalidPlacementError("super admins cannot be reassigned to an organization")
            user = self._place_user(session, tree, user, role=Role.ORG_ADMIN, org_id=org_id, dept_id=None)
        event_bus.publish_dict(
            "admin.org_admin_assigned",
            {"user_id": user_id, "org_id": org_id},
            actor_id=actor.user_id,
            org_id=org_id,
        )
        return user

    def assign_dept_admin(self, actor: Actor | None, user_id: str, dept_id: str) -> User:
        with self._session() as session:
            resolver = self._resolver(session)
            if not resolver.tree.has_department(dept_id):
                raise NotFoundError("department not found")
            actor = require(actor, ASSIGN_DEPT_ADMIN, DepartmentRef(dept_id), resolver=resolver)
            user = self._get_user(session, user_id)
            if user.dept_id != dept_id:
                raise InvalidPlacementError("user must be a member of this department first")
            if has_min_role(user.role, Role.ORG_ADMIN):
                raise InvalidPlacementError("user already holds a wider administrative role")
            org_id = resolver.tree.organization_of(dept_id)
            user = self._place_user(
                session,
                resolver.tree,
                user,
                role=Role.DEPT_ADMIN,
                org_id=org_id,
                dept_id=dept_id,
            )
        event_bus.publish_dict(
            "admin.dept_admin_assigned",
            {"user_id": user_id, "dept_id": dept_id},
            actor_id=actor.user_id,
            org_id=org_id,
        )
        return user

    def remove_dept_admin(self, actor: Actor | None, user_id: str) -> User:
        with self._session() as session:
            resolver = self._resolver(session)
            user = self._get_user(session, user_id)
            if parse_role(user.role) != Role.DEPT_ADMIN:
                raise InvalidPlacementError("user is not a department admin")
            actor = require(actor, REMOVE_DEPT_ADMIN, UserRef(user_id), resolver=resolver)
            user = self._place_user(
                session,
                resolver.tree,
                user,
                role=Role.VERIFIED,
                org_id=user.org_id,
                dept_id=user.dept_id,
            )
        event_bus.publish_dict(
            "admin.dept_admin_removed",
            {"user_id": user_id, "dept_id": user.dept_id},
            actor_id=actor.user_id,
            org_id=user.org_id,
        )
        return user
