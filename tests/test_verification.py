from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from orgblog.domain.errors import (
    AlreadyResolvedError,
    AlreadyVerifiedError,
    DuplicatePendingError,
    InactiveOrganizationError,
    InsufficientRoleError,
    InvalidPlacementError,
    MissingReasonError,
    NotFoundError,
    OutOfScopeError,
    UnauthenticatedError,
    UnresolvableTargetError,
)
from orgblog.domain.models import (
    Actor,
    Department,
    EventEnvelope,
    EventRecord,
    Organization,
    User,
    VerificationRequest,
    now_utc,
)
from orgblog.domain.roles import Role
from orgblog.domain.state_machine import VerificationStatus
from orgblog.infra import audit, db, events
from orgblog.infra.repositories import SqlVerificationStore
from orgblog.services.tenancy_service import TenancyService
from orgblog.services.verification_service import VerificationService


@pytest.fixture()
def test_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "verification_test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(audit, "engine", engine)
    monkeypatch.setattr(events, "engine", engine)
    yield engine
    engine.dispose()


@dataclass
class Platform:
    org_id: str
    other_org_id: str
    dept_id: str
    sibling_dept_id: str
    other_dept_id: str
    super_admin: Actor
    org_admin: Actor
    dept_admin: Actor
    other_org_admin: Actor


def _add_user(
    session: Session,
    username: str,
    role: Role,
    org_id: str | None = None,
    dept_id: str | None = None,
) -> Actor:
    user = User(username=username, role=role, org_id=org_id, dept_id=dept_id)
    session.add(user)
    session.commit()
    return Actor(user_id=user.id, role=role, org_id=org_id, dept_id=dept_id)


@pytest.fixture()
def platform(test_engine: Engine) -> Platform:
    with Session(test_engine, expire_on_commit=False) as session:
        org = Organization(id="O7", name="Acme")
        other_org = Organization(id="O8", name="Globex")
        session.add(org)
        session.add(other_org)
        session.commit()
        session.add(Department(id="D42", org_id="O7", name="Research"))
        session.add(Department(id="D99", org_id="O7", name="Sales"))
        session.add(Department(id="D50", org_id="O8", name="Legal"))
        session.commit()
        return Platform(
            org_id="O7",
            other_org_id="O8",
            dept_id="D42",
            sibling_dept_id="D99",
            other_dept_id="D50",
            super_admin=_add_user(session, "root", Role.SUPER_ADMIN),
            org_admin=_add_user(session, "olga", Role.ORG_ADMIN, "O7"),
            dept_admin=_add_user(session, "dave", Role.DEPT_ADMIN, "O7", "D42"),
            other_org_admin=_add_user(session, "oscar", Role.ORG_ADMIN, "O8"),
        )


@pytest.fixture()
def applicant(test_engine: Engine, platform: Platform) -> Actor:
    with Session(test_engine, expire_on_commit=False) as session:
        return _add_user(session, "alice", Role.GLOBAL)


def _stored_user(engine: Engine, user_id: str) -> User:
    with Session(engine, expire_on_commit=False) as session:
        user = session.get(User, user_id)
    assert user is not None
    return user


def test_dept_admin_approves_request_in_own_department(
    test_engine: Engine, platform: Platform, applicant: Actor
) -> None:
    service = VerificationService()
    request = service.submit(applicant, "O7", "D42", "I work in research")
    assert request.status == VerificationStatus.PENDING

    approved = service.approve(platform.dept_admin, request.id, review_note="welcome")

    assert approved.status == VerificationStatus.APPROVED
    assert approved.resolved_by == platform.dept_admin.user_id
    assert approved.resolved_at is not None
    assert approved.review_note == "welcome"
    user = _stored_user(test_engine, applicant.user_id)
    assert user.role == Role.VERIFIED
    assert (user.org_id, user.dept_id) == ("O7", "D42")


def test_dept_admin_cannot_approve_other_department(
    test_engine: Engine, platform: Platform, applicant: Actor
) -> None:
    service = VerificationService()
    request = service.submit(applicant, "O7", "D99")

    with pytest.raises(OutOfScopeError):
        service.approve(platform.dept_admin, request.id)

    with Session(test_engine) as session:
        stored = session.get(VerificationRequest, request.id)
        assert stored is not None
        assert stored.status == VerificationStatus.PENDING
    assert _stored_user(test_engine, applicant.user_id).role == Role.GLOBAL


def test_org_admin_approves_any_department_in_organization(platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    request = service.submit(applicant, "O7", "D99")

    approved = service.approve(platform.org_admin, request.id)

    assert approved.status == VerificationStatus.APPROVED
    with pytest.raises(OutOfScopeError):
        service.approve(platform.org_admin, service.submit(applicant, "O8", "D50").id)


def test_verified_user_cannot_resolve_requests(test_engine: Engine, platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    request = service.submit(applicant, "O7", "D42")
    with Session(test_engine, expire_on_commit=False) as session:
        member = _add_user(session, "vera", Role.VERIFIED, "O7", "D42")

    with pytest.raises(InsufficientRoleError):
        service.approve(member, request.id)
    with pytest.raises(UnauthenticatedError):
        service.reject(None, request.id, "no")


def test_second_approve_reports_already_resolved(test_engine: Engine, platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    request = service.submit(applicant, "O7", "D42")
    service.approve(platform.dept_admin, request.id)

    with pytest.raises(AlreadyResolvedError):
        service.approve(platform.org_admin, request.id)
    with pytest.raises(AlreadyResolvedError):
        service.reject(platform.org_admin, request.id, "too late")

    with Session(test_engine) as session:
        approvals = session.exec(
            select(EventRecord).where(EventRecord.event_type == "verification.approved")
        ).all()
    assert len(approvals) == 1


def test_compare_and_swap_lets_exactly_one_resolution_win(
    test_engine: Engine, platform: Platform, applicant: Actor
) -> None:
    request = VerificationService().submit(applicant, "O7", "D42")

    with Session(test_engine, expire_on_commit=False) as first, Session(test_engine, expire_on_commit=False) as second:
        first_store = SqlVerificationStore(first)
        second_store = SqlVerificationStore(second)
        assert first_store.get(request.id) is not None
        assert second_store.get(request.id) is not None

        won = first_store.compare_and_swap(
            request.id,
            expected=VerificationStatus.PENDING,
            target=VerificationStatus.APPROVED,
            changes={"resolved_at": now_utc(), "resolved_by": platform.dept_admin.user_id},
        )
        first.commit()
        lost = second_store.compare_and_swap(
            request.id,
            expected=VerificationStatus.PENDING,
            target=VerificationStatus.REJECTED,
            changes={"resolved_at": now_utc(), "resolved_by": platform.org_admin.user_id},
        )
        second.commit()

    assert won is True
    assert lost is False
    with Session(test_engine) as session:
        stored = session.get(VerificationRequest, request.id)
        assert stored is not None
        assert stored.status == VerificationStatus.APPROVED


def test_reject_requires_reason(test_engine: Engine, platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    request = service.submit(applicant, "O7", "D42")

    for reason in ("", "   ", None):
        with pytest.raises(MissingReasonError):
            service.reject(platform.dept_admin, request.id, reason)

    with Session(test_engine) as session:
        stored = session.get(VerificationRequest, request.id)
        assert stored is not None
        assert stored.status == VerificationStatus.PENDING
        assert stored.resolved_at is None


def test_reject_keeps_user_role_and_allows_new_request(
    test_engine: Engine, platform: Platform, applicant: Actor
) -> None:
    service = VerificationService()
    request = service.submit(applicant, "O7", "D42")

    rejected = service.reject(platform.dept_admin, request.id, "not on the staff list")

    assert rejected.status == VerificationStatus.REJECTED
    assert rejected.rejection_reason == "not on the staff list"
    assert rejected.resolved_by == platform.dept_admin.user_id
    assert _stored_user(test_engine, applicant.user_id).role == Role.GLOBAL

    retry = service.submit(applicant, "O7", "D42", "second try")
    assert retry.id != request.id
    assert retry.status == VerificationStatus.PENDING
    assert service.get(applicant, request.id).status == VerificationStatus.REJECTED


def test_duplicate_pending_request_is_rejected(platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    service.submit(applicant, "O7", "D42")

    with pytest.raises(DuplicatePendingError):
        service.submit(applicant, "O7", "D42")

    other = service.submit(applicant, "O7", "D99")
    assert other.status == VerificationStatus.PENDING


def test_pending_uniqueness_is_enforced_by_storage(
    test_engine: Engine, platform: Platform, applicant: Actor, monkeypatch: pytest.MonkeyPatch
) -> None:
    service = VerificationService()
    service.submit(applicant, "O7", "D42")
    monkeypatch.setattr(SqlVerificationStore, "find_pending", lambda self, *args: None)

    with pytest.raises(DuplicatePendingError):
        service.submit(applicant, "O7", "D42")


def test_already_verified_member_cannot_reapply(test_engine: Engine, platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    service.approve(platform.dept_admin, service.submit(applicant, "O7", "D42").id)

    with pytest.raises(AlreadyVerifiedError):
        service.submit(applicant, "O7", "D42")
    moved = service.submit(applicant, "O7", "D99")
    assert moved.status == VerificationStatus.PENDING


def test_submit_validates_tenant_tree(test_engine: Engine, platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    with pytest.raises(NotFoundError):
        service.submit(applicant, "O404", "D42")
    with pytest.raises(NotFoundError):
        service.submit(applicant, "O7", "D404")
    with pytest.raises(InvalidPlacementError):
        service.submit(applicant, "O7", "D50")
    with pytest.raises(UnauthenticatedError):
        service.submit(None, "O7", "D42")


def test_deactivated_organization_blocks_new_requests_and_approval(
    test_engine: Engine, platform: Platform, applicant: Actor
) -> None:
    service = VerificationService()
    pending = service.submit(applicant, "O7", "D42")
    with Session(test_engine) as session:
        org = session.get(Organization, "O7")
        assert org is not None
        org.active = False
        session.add(org)
        session.commit()

    with pytest.raises(InactiveOrganizationError):
        service.submit(applicant, "O7", "D99")
    with pytest.raises(InactiveOrganizationError):
        service.approve(platform.super_admin, pending.id)

    rejected = service.reject(platform.org_admin, pending.id, "organization closed")
    assert rejected.status == VerificationStatus.REJECTED
    history = list(service.list_for_scope(platform.org_admin))
    assert [item.id for item in history] == [pending.id]


def test_listing_follows_status_through_approval(platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    request = service.submit(applicant, "O7", "D42")

    pending = service.list_for_scope(platform.dept_admin, VerificationStatus.PENDING)
    assert [item.id for item in pending] == [request.id]

    service.approve(platform.dept_admin, request.id)

    assert list(pending) == []
    approved = service.list_for_scope(platform.dept_admin, VerificationStatus.APPROVED)
    assert [item.id for item in approved] == [request.id]


def test_listing_is_restricted_to_scope_and_ordered(
    test_engine: Engine, platform: Platform, applicant: Actor
) -> None:
    service = VerificationService()
    with Session(test_engine, expire_on_commit=False) as session:
        bob = _add_user(session, "bob", Role.GLOBAL)
    first = service.submit(applicant, "O7", "D42")
    second = service.submit(applicant, "O7", "D99")
    third = service.submit(bob, "O8", "D50")
    fourth = service.submit(bob, "O7", "D42")

    dept_view = [item.id for item in service.list_for_scope(platform.dept_admin)]
    org_view = [item.id for item in service.list_for_scope(platform.org_admin)]
    other_view = [item.id for item in service.list_for_scope(platform.other_org_admin)]
    super_view = [item.id for item in service.list_for_scope(platform.super_admin)]

    assert dept_view == [fourth.id, first.id]
    assert org_view == [fourth.id, second.id, first.id]
    assert other_view == [third.id]
    assert super_view == [fourth.id, third.id, second.id, first.id]
    with pytest.raises(InsufficientRoleError):
        service.list_for_scope(applicant)


def test_listing_breaks_created_at_ties_by_id(test_engine: Engine, platform: Platform) -> None:
    created_at = now_utc()
    with Session(test_engine, expire_on_commit=False) as session:
        users = [_add_user(session, f"tie-{index}", Role.GLOBAL) for index in range(3)]
        for request_id, user in zip(("c-req", "a-req", "b-req"), users, strict=True):
            session.add(
                VerificationRequest(
                    id=request_id,
                    user_id=user.user_id,
                    org_id="O7",
                    dept_id="D42",
                    created_at=created_at,
                )
            )
        session.commit()

    listing = VerificationService().list_for_scope(platform.dept_admin)
    assert [item.id for item in listing] == ["a-req", "b-req", "c-req"]
    assert [item.id for item in listing] == ["a-req", "b-req", "c-req"]


def test_user_history_and_single_request_visibility(platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    first = service.submit(applicant, "O7", "D42")
    second = service.submit(applicant, "O8", "D50")

    assert [item.id for item in service.list_for_user(applicant)] == [second.id, first.id]
    assert service.get(applicant, first.id).id == first.id
    assert service.get(platform.dept_admin, first.id).id == first.id
    with pytest.raises(OutOfScopeError):
        service.get(platform.dept_admin, second.id)
    with pytest.raises(NotFoundError):
        service.get(applicant, "missing")


def test_stats_count_requests_in_scope(test_engine: Engine, platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    with Session(test_engine, expire_on_commit=False) as session:
        bob = _add_user(session, "bob", Role.GLOBAL)
    service.approve(platform.dept_admin, service.submit(applicant, "O7", "D42").id)
    service.reject(platform.org_admin, service.submit(bob, "O7", "D99").id, "unknown")
    service.submit(bob, "O7", "D42")
    service.submit(bob, "O8", "D50")

    dept_stats = service.stats_for_scope(platform.dept_admin)
    org_stats = service.stats_for_scope(platform.org_admin)
    all_stats = service.stats_for_scope(platform.super_admin)

    assert (dept_stats.pending, dept_stats.approved, dept_stats.rejected) == (1, 1, 0)
    assert (org_stats.pending, org_stats.approved, org_stats.rejected) == (1, 1, 1)
    assert (all_stats.pending, all_stats.approved, all_stats.rejected) == (2, 1, 1)


def test_transitions_publish_audit_events(test_engine: Engine, platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    seen: list[str] = []

    def _record(envelope: EventEnvelope) -> None:
        seen.append(envelope.event_type)

    events.event_bus.subscribe("*", _record)
    try:
        request = service.submit(applicant, "O7", "D42")
        service.reject(platform.dept_admin, request.id, "duplicate account")
    finally:
        events.event_bus.unsubscribe("*", _record)

    assert seen == ["verification.submitted", "verification.rejected"]
    with Session(test_engine) as session:
        rejected = session.exec(
            select(EventRecord).where(EventRecord.event_type == "verification.rejected")
        ).one()
    assert rejected.actor_id == platform.dept_admin.user_id
    assert rejected.org_id == "O7"
    assert rejected.payload["reason"] == "duplicate account"


def test_custom_user_promoter_receives_request_placement(platform: Platform, applicant: Actor) -> None:
    calls: list[tuple[str, Role, str | None, str | None]] = []

    class RecordingPromoter:
        def __init__(self, session: Session) -> None:
            self.session = session

        def promote(self, user_id: str, *, role: Role, org_id: str | None, dept_id: str | None) -> None:
            calls.append((user_id, role, org_id, dept_id))

    service = VerificationService(promoter_factory=RecordingPromoter)
    request = service.submit(applicant, "O7", "D42")
    service.approve(platform.org_admin, request.id)

    assert calls == [(applicant.user_id, Role.VERIFIED, "O7", "D42")]


class RecordingPromoter:
    calls: list[str] = []

    def __init__(self, session: Session) -> None:
        self.session = session

    def promote(self, user_id: str, *, role: Role, org_id: str | None, dept_id: str | None) -> None:
        self.calls.append(user_id)


def _event_count(engine: Engine, event_type: str) -> int:
    with Session(engine) as session:
        return len(session.exec(select(EventRecord).where(EventRecord.event_type == event_type)).all())


def _stored_status(engine: Engine, request_id: str) -> str:
    with Session(engine) as session:
        stored = session.get(VerificationRequest, request_id)
        assert stored is not None
        return stored.status


def test_lost_resolution_race_changes_nothing(
    test_engine: Engine, platform: Platform, applicant: Actor, monkeypatch: pytest.MonkeyPatch
) -> None:
    request = VerificationService().submit(applicant, "O7", "D42")
    monkeypatch.setattr(SqlVerificationStore, "compare_and_swap", lambda self, *args, **kwargs: False)
    monkeypatch.setattr(RecordingPromoter, "calls", [])
    service = VerificationService(promoter_factory=RecordingPromoter)

    with pytest.raises(AlreadyResolvedError):
        service.approve(platform.dept_admin, request.id)
    with pytest.raises(AlreadyResolvedError):
        service.reject(platform.dept_admin, request.id, "duplicate account")

    assert RecordingPromoter.calls == []
    assert _event_count(test_engine, "verification.approved") == 0
    assert _event_count(test_engine, "verification.rejected") == 0
    assert _stored_status(test_engine, request.id) == VerificationStatus.PENDING
    assert _stored_user(test_engine, applicant.user_id).role == Role.GLOBAL


def test_failed_promotion_rolls_back_status_and_event(
    test_engine: Engine, platform: Platform, applicant: Actor
) -> None:
    class MissingUserPromoter:
        def __init__(self, session: Session) -> None:
            self.session = session

        def promote(self, user_id: str, *, role: Role, org_id: str | None, dept_id: str | None) -> None:
            raise NotFoundError("user not found")

    request = VerificationService().submit(applicant, "O7", "D42")

    with pytest.raises(NotFoundError):
        VerificationService(promoter_factory=MissingUserPromoter).approve(platform.dept_admin, request.id)

    assert _stored_status(test_engine, request.id) == VerificationStatus.PENDING
    assert _event_count(test_engine, "verification.approved") == 0
    approved = VerificationService().approve(platform.dept_admin, request.id)
    assert approved.status == VerificationStatus.APPROVED
    assert _event_count(test_engine, "verification.approved") == 1


def test_request_outside_tenant_tree_is_not_reported_as_denial(test_engine: Engine, platform: Platform) -> None:
    with Session(test_engine, expire_on_commit=False) as session:
        owner = _add_user(session, "mallory", Role.GLOBAL)
        session.add(VerificationRequest(id="broken", user_id=owner.user_id, org_id="O7", dept_id="D50"))
        session.commit()

    service = VerificationService()
    with pytest.raises(UnresolvableTargetError):
        service.approve(platform.org_admin, "broken")
    with pytest.raises(UnresolvableTargetError):
        service.reject(platform.other_org_admin, "broken", "wrong department")
    assert _stored_status(test_engine, "broken") == VerificationStatus.PENDING


def test_deactivated_department_blocks_new_requests(
    test_engine: Engine, platform: Platform, applicant: Actor
) -> None:
    tenancy = TenancyService()
    service = VerificationService()

    with pytest.raises(OutOfScopeError):
        tenancy.set_department_active(platform.other_org_admin, "D42", False)
    with pytest.raises(InsufficientRoleError):
        tenancy.set_department_active(platform.dept_admin, "D42", False)
    dept = tenancy.set_department_active(platform.org_admin, "D42", False)
    assert dept.active is False

    with pytest.raises(InactiveOrganizationError):
        service.submit(applicant, "O7", "D42")
    assert service.submit(applicant, "O7", "D99").status == VerificationStatus.PENDING

    tenancy.set_department_active(platform.org_admin, "D42", True)
    assert service.submit(applicant, "O7", "D42").status == VerificationStatus.PENDING
    assert _event_count(test_engine, "department.deactivated") == 1
    assert _event_count(test_engine, "department.activated") == 1


def test_tenancy_stats_follow_admin_scope(test_engine: Engine, platform: Platform, applicant: Actor) -> None:
    service = VerificationService()
    with Session(test_engine, expire_on_commit=False) as session:
        bob = _add_user(session, "bob", Role.GLOBAL)
    service.approve(platform.dept_admin, service.submit(applicant, "O7", "D42").id)
    service.submit(bob, "O7", "D99")
    service.submit(bob, "O8", "D50")

    tenancy = TenancyService()
    dept_stats = tenancy.stats_for_scope(platform.dept_admin)
    org_stats = tenancy.stats_for_scope(platform.org_admin)
    platform_stats = tenancy.stats_for_scope(platform.super_admin)

    assert (dept_stats.total_members, dept_stats.total_departments, dept_stats.pending_verifications) == (2, 1, 0)
    assert (org_stats.total_members, org_stats.total_departments, org_stats.pending_verifications) == (3, 2, 1)
    assert platform_stats.total_members == 5
    assert platform_stats.total_departments == 3
    assert platform_stats.pending_verifications == 2
    with pytest.raises(InsufficientRoleError):
        tenancy.stats_for_scope(applicant)
