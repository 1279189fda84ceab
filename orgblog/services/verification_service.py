from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from orgblog.domain.authorization import (
    APPROVE_VERIFICATION,
    LIST_VERIFICATIONS,
    REJECT_VERIFICATION,
    SUBMIT_VERIFICATION,
    VIEW_OWN_VERIFICATIONS,
    VIEW_VERIFICATION,
    VIEW_VERIFICATION_STATS,
    ActionPolicy,
    require,
)
from orgblog.domain.errors import (
    AlreadyResolvedError,
    AlreadyVerifiedError,
    DuplicatePendingError,
    InactiveOrganizationError,
    InvalidPlacementError,
    MissingReasonError,
    NotFoundError,
)
from orgblog.domain.models import Actor, VerificationRequest, VerificationStatsRead, now_utc
from orgblog.domain.roles import Role, has_min_role
from orgblog.domain.scope import ScopeResolver, VerificationRequestRef
from orgblog.domain.state_machine import VerificationStatus, can_transition
from orgblog.infra.db import get_engine
from orgblog.infra.events import event_bus
from orgblog.infra.repositories import (
    ScopedListing,
    SqlTenantReader,
    SqlUserPromoter,
    SqlVerificationStore,
    UserPromoter,
    scoped_verification_query,
)

logger = logging.getLogger(__name__)


class VerificationService:
    def __init__(self, promoter_factory: Callable[[Session], UserPromoter] = SqlUserPromoter) -> None:
        self._promoter_factory = promoter_factory

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _resolver(self, session: Session) -> ScopeResolver:
        reader = SqlTenantReader(session)
        return ScopeResolver(reader.load_tree(), reader)

    def _get_request(self, store: SqlVerificationStore, request_id: str) -> VerificationRequest:
        request = store.get(request_id)
        if request is None:
            raise NotFoundError("verification request not found")
        return request

    def _authorize_resolution(
        self,
        session: Session,
        admin: Actor | None,
        request_id: str,
        action: ActionPolicy,
    ) -> tuple[Actor, SqlVerificationStore, ScopeResolver, VerificationRequest]:
        store = SqlVerificationStore(session)
        request = self._get_request(store, request_id)
        resolver = self._resolver(session)
        admin = require(admin, action, VerificationRequestRef(request.id), resolver=resolver)
        return admin, store, resolver, request

    def submit(
        self,
        actor: Actor | None,
        org_id: str,
        dept_id: str,
        message: str | None = None,
    ) -> VerificationRequest:
        actor = require(actor, SUBMIT_VERIFICATION)
        with self._session() as session:
            reader = SqlTenantReader(session)
            tree = reader.load_tree()
            org = tree.get_organization(org_id)
            dept = tree.get_department(dept_id)
            if dept.org_id != org.id:
                raise InvalidPlacementError("department does not belong to the specified organization")
            if not org.active or not dept.active:
                raise InactiveOrganizationError("organization is not accepting verification requests")

            user = reader.get_user(actor.user_id)
            if user is None:
                raise NotFoundError("user not found")
            if has_min_role(user.role, Role.VERIFIED) and user.org_id == org_id and user.dept_id == dept_id:
                raise AlreadyVerifiedError("user is already verified for this department")

            store = SqlVerificationStore(session)
            if store.find_pending(user.id, org_id, dept_id) is not None:
                raise DuplicatePendingError("a pending verification request for this department already exists")

            request = VerificationRequest(
                user_id=user.id,
                org_id=org_id,
                dept_id=dept_id,
                message=(message or "").strip() or None,
            )
            try:
                store.add(request)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicatePendingError(
                    "a pending verification request for this department already exists"
                ) from exc
            session.refresh(request)

        logger.info("verification %s submitted by %s for dept %s", request.id, request.user_id, dept_id)
        event_bus.publish_dict(
            "verification.submitted",
            {"request_id": request.id, "user_id": request.user_id, "dept_id": dept_id},
            actor_id=actor.user_id,
            org_id=org_id,
        )
        return request

    def approve(
        self,
        admin: Actor | None,
        request_id: str,
        review_note: str | None = None,
    ) -> VerificationRequest:
        with self._session() as session:
            admin, store, resolver, request = self._authorize_resolution(
                session, admin, request_id, APPROVE_VERIFICATION
            )
            if not can_transition(VerificationStatus(request.status), VerificationStatus.APPROVED):
                raise AlreadyResolvedError(f"verification request is already {request.status}")
            if not resolver.tree.is_active(request.org_id):
                raise InactiveOrganizationError("organization is deactivated")

            swapped = store.compare_and_swap(
                request.id,
                expected=VerificationStatus.PENDING,
                target=VerificationStatus.APPROVED,
                changes={
                    "resolved_at": now_utc(),
                    "resolved_by": admin.user_id,
                    "review_note": (review_note or "").strip() or None,
                },
            )
            if not swapped:
                session.rollback()
                raise AlreadyResolvedError("verification request was resolved concurrently")
            self._promoter_factory(session).promote(
                request.user_id,
                role=Role.VERIFIED,
                org_id=request.org_id,
                dept_id=request.dept_id,
            )
            event_bus.publish_dict(
                "verification.approved",
                {
                    "request_id": request.id,
                    "user_id": request.user_id,
                    "dept_id": request.dept_id,
                    "resolved_by": admin.user_id,
                },
                actor_id=admin.user_id,
                org_id=request.org_id,
                session=session,
            )
            session.commit()
            request = self._get_request(store, request.id)

        logger.info("verification %s approved by %s", request.id, admin.user_id)
        return request

    def reject(self, admin: Actor | None, request_id: str, reason: str | None) -> VerificationRequest:
        with self._session() as session:
            admin, store, _resolver, request = self._authorize_resolution(
                session, admin, request_id, REJECT_VERIFICATION
            )
            cleaned_reason = (reason or "").strip()
            if not cleaned_reason:
                raise MissingReasonError("a rejection reason is required")
            if not can_transition(VerificationStatus(request.status), VerificationStatus.REJECTED):
                raise AlreadyResolvedError(f"verification request is already {request.status}")

            swapped = store.compare_and_swap(
                request.id,
                expected=VerificationStatus.PENDING,
                target=VerificationStatus.REJECTED,
                changes={
                    "resolved_at": now_utc(),
                    "resolved_by": admin.user_id,
                    "rejection_reason": cleaned_reason,
                },
            )
            if not swapped:
                session.rollback()
                raise AlreadyResolvedError("verification request was resolved concurrently")
            event_bus.publish_dict(
                "verification.rejected",
                {
                    "request_id": request.id,
                    "user_id": request.user_id,
                    "dept_id": request.dept_id,
                    "resolved_by": admin.user_id,
                    "reason": cleaned_reason,
                },
                actor_id=admin.user_id,
                org_id=request.org_id,
                session=session,
            )
            session.commit()
            request = self._get_request(store, request.id)

        logger.info("verification %s rejected by %s", request.id, admin.user_id)
        return request

    def list_for_scope(
        self,
        admin: Actor | None,
        status_filter: VerificationStatus | None = None,
    ) -> ScopedListing:
        admin = require(admin, LIST_VERIFICATIONS)
        with self._session() as session:
            bounds = self._resolver(session).bounds(admin)
        return ScopedListing(self._session, scoped_verification_query(bounds, status_filter))

    def list_for_user(self, actor: Actor | None) -> list[VerificationRequest]:
        actor = require(actor, VIEW_OWN_VERIFICATIONS)
        with self._session() as session:
            return SqlVerificationStore(session).list_for_user(actor.user_id)

    def get(self, actor: Actor | None, request_id: str) -> VerificationRequest:
        actor = require(actor, VIEW_OWN_VERIFICATIONS)
        with self._session() as session:
            request = self._get_request(SqlVerificationStore(session), request_id)
            if request.user_id != actor.user_id:
                resolver = self._resolver(session)
                require(actor, VIEW_VERIFICATION, VerificationRequestRef(request.id), resolver=resolver)
            return request

    def stats_for_scope(self, admin: Actor | None) -> VerificationStatsRead:
        admin = require(admin, VIEW_VERIFICATION_STATS)
        with self._session() as session:
            bounds = self._resolver(session).bounds(admin)
            counts = SqlVerificationStore(session).count_by_status(bounds)
        return VerificationStatsRead(
            pending=counts.get(VerificationStatus.PENDING.value, 0),
            approved=counts.get(VerificationStatus.APPROVED.value, 0),
            rejected=counts.get(VerificationStatus.REJECTED.value, 0),
        )
