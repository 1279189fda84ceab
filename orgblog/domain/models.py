from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, CheckConstraint, Column, Index, String, text
from sqlmodel import Field, SQLModel

from orgblog.domain.roles import Role
from orgblog.domain.state_machine import VerificationStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    org_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    active: bool = Field(default=True, index=True)
    created_by: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Department(SQLModel, table=True):
    __tablename__ = "departments"
    __table_args__ = (
        Index("uq_departments_org_name", "org_id", "name", unique=True),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    org_id: str = Field(foreign_key="organizations.id", index=True)
    name: str = Field(index=True)
    active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    role: Role = Field(
        default=Role.GLOBAL,
        sa_column=Column(String, nullable=False, index=True),
    )
    org_id: str | None = Field(default=None, foreign_key="organizations.id", index=True)
    dept_id: str | None = Field(default=None, foreign_key="departments.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class VerificationRequest(SQLModel, table=True):
    __tablename__ = "verification_requests"
    __table_args__ = (
        Index(
            "uq_verification_requests_pending",
            "user_id",
            "org_id",
            "dept_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_verification_requests_org_status", "org_id", "status"),
        Index("ix_verification_requests_dept_status", "dept_id", "status"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_verification_requests_status",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    org_id: str = Field(foreign_key="organizations.id")
    dept_id: str = Field(foreign_key="departments.id")
    status: VerificationStatus = Field(
        default=VerificationStatus.PENDING,
        sa_column=Column(String, nullable=False, index=True),
    )
    message: str | None = None
    rejection_reason: str | None = None
    review_note: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    resolved_at: datetime | None = None
    resolved_by: str | None = Field(default=None, index=True)


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role
    org_id: str | None = None
    dept_id: str | None = None


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    org_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class OrganizationCreate(BaseModel):
    name: str = PydanticField(min_length=2, max_length=100)


class OrganizationRead(ORMReadModel):
    id: str
    name: str
    active: bool
    created_at: datetime


class DepartmentCreate(BaseModel):
    name: str = PydanticField(min_length=2, max_length=100)


class DepartmentRead(ORMReadModel):
    id: str
    org_id: str
    name: str
    active: bool
    created_at: datetime


class UserRegister(BaseModel):
    username: str = PydanticField(min_length=2, max_length=50)


class UserRead(ORMReadModel):
    id: str
    username: str
    role: Role
    org_id: str | None
    dept_id: str | None
    created_at: datetime


class AssignOrgAdminRequest(BaseModel):
    user_id: str
    org_id: str


class AssignDeptAdminRequest(BaseModel):
    user_id: str
    dept_id: str


class RemoveDeptAdminRequest(BaseModel):
    user_id: str


class VerificationSubmit(BaseModel):
    org_id: str
    dept_id: str
    message: str | None = PydanticField(default=None, max_length=500)


class VerificationApprove(BaseModel):
    review_note: str | None = PydanticField(default=None, max_length=500)


class VerificationReject(BaseModel):
    reason: str = PydanticField(default="", max_length=500)


class VerificationRead(ORMReadModel):
    id: str
    user_id: str
    org_id: str
    dept_id: str
    status: VerificationStatus
    message: str | None
    rejection_reason: str | None
    review_note: str | None
    created_at: datetime
    resolved_at: datetime | None
    resolved_by: str | None


class VerificationStatsRead(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0


class TenancyStatsRead(BaseModel):
    total_members: int = 0
    total_departments: int = 0
    pending_verifications: int = 0
