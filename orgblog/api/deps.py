from __future__ import annotations

from typing import Annotated, NoReturn

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from orgblog.domain.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidPlacementError,
    MissingReasonError,
    NotFoundError,
    TenancyError,
    UnauthenticatedError,
)
from orgblog.domain.models import Actor
from orgblog.infra.audit import set_audit_context
from orgblog.infra.auth import decode_access_token
from orgblog.infra.tenant import set_request_context
from orgblog.services.tenancy_service import TenancyService

bearer_scheme = HTTPBearer(auto_error=False)


def get_tenancy_service() -> TenancyService:
    return TenancyService()


def get_current_actor(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    service: Annotated[TenancyService, Depends(get_tenancy_service)],
) -> Actor:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    try:
        claims = decode_access_token(credentials.credentials)
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    try:
        actor = service.load_actor(claims["sub"])
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user") from exc
    request.state.actor = actor
    set_request_context(actor.user_id, actor.org_id)
    return actor


CurrentActor = Annotated[Actor, Depends(get_current_actor)]


def raise_http_error(request: Request, exc: TenancyError) -> NoReturn:
    if isinstance(exc, AccessDeniedError):
        set_audit_context(request, detail={"result": {"outcome": "denied", "reason": exc.reason.value}})
        status_code = (
            status.HTTP_401_UNAUTHORIZED
            if isinstance(exc, UnauthenticatedError)
            else status.HTTP_403_FORBIDDEN
        )
        raise HTTPException(
            status_code=status_code,
            detail={"reason": exc.reason.value, "message": str(exc)},
        ) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": type(exc).__name__, "message": str(exc)},
        ) from exc
    if isinstance(exc, (MissingReasonError, InvalidPlacementError)):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"reason": type(exc).__name__, "message": str(exc)},
        ) from exc
    raise exc
