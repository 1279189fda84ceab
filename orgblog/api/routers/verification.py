from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status

from orgblog.api.deps import CurrentActor, raise_http_error
from orgblog.domain.errors import TenancyError
from orgblog.domain.models import (
    VerificationApprove,
    VerificationRead,
    VerificationReject,
    VerificationStatsRead,
    VerificationSubmit,
)
from orgblog.domain.state_machine import VerificationStatus
from orgblog.infra.audit import set_audit_context
from orgblog.services.verification_service import VerificationService

router = APIRouter()


def get_verification_service() -> VerificationService:
    return VerificationService()


Service = Annotated[VerificationService, Depends(get_verification_service)]


@router.post("", response_model=VerificationRead, status_code=status.HTTP_201_CREATED)
def submit_verification(
    payload: VerificationSubmit,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> VerificationRead:
    set_audit_context(request, action="verification.submit", resource=f"departments/{payload.dept_id}")
    try:
        row = service.submit(actor, payload.org_id, payload.dept_id, payload.message)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return VerificationRead.model_validate(row)


@router.get("", response_model=list[VerificationRead])
def list_verifications(
    request: Request,
    actor: CurrentActor,
    service: Service,
    status_filter: Annotated[VerificationStatus | None, Query(alias="status")] = None,
) -> list[VerificationRead]:
    try:
        listing = service.list_for_scope(actor, status_filter)
        return [VerificationRead.model_validate(item) for item in listing]
    except TenancyError as exc:
        raise_http_error(request, exc)


@router.get("/mine", response_model=list[VerificationRead])
def list_my_verifications(request: Request, actor: CurrentActor, service: Service) -> list[VerificationRead]:
    try:
        rows = service.list_for_user(actor)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return [VerificationRead.model_validate(item) for item in rows]


@router.get("/stats", response_model=VerificationStatsRead)
def verification_stats(request: Request, actor: CurrentActor, service: Service) -> VerificationStatsRead:
    try:
        return service.stats_for_scope(actor)
    except TenancyError as exc:
        raise_http_error(request, exc)


@router.get("/{request_id}", response_model=VerificationRead)
def get_verification(request_id: str, request: Request, actor: CurrentActor, service: Service) -> VerificationRead:
    try:
        row = service.get(actor, request_id)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return VerificationRead.model_validate(row)


@router.post("/{request_id}/approve", response_model=VerificationRead)
def approve_verification(
    request_id: str,
    request: Request,
    actor: CurrentActor,
    service: Service,
    payload: VerificationApprove | None = None,
) -> VerificationRead:
    set_audit_context(request, action="verification.approve", resource=f"verifications/{request_id}")
    try:
        row = service.approve(actor, request_id, payload.review_note if payload is not None else None)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return VerificationRead.model_validate(row)


@router.post("/{request_id}/reject", response_model=VerificationRead)
def reject_verification(
    request_id: str,
    payload: VerificationReject,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> VerificationRead:
    set_audit_context(request, action="verification.reject", resource=f"verifications/{request_id}")
    try:
        row = service.reject(actor, request_id, payload.reason)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return VerificationRead.model_validate(row)
