from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from orgblog.api.deps import CurrentActor, get_tenancy_service, raise_http_error
from orgblog.domain.errors import TenancyError
from orgblog.domain.models import UserRead, UserRegister
from orgblog.services.tenancy_service import TenancyService

router = APIRouter()

Service = Annotated[TenancyService, Depends(get_tenancy_service)]


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register_user(payload: UserRegister, request: Request, service: Service) -> UserRead:
    try:
        user = service.register_user(payload.username)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return UserRead.model_validate(user)


@router.post("/bootstrap", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_super_admin(payload: UserRegister, request: Request, service: Service) -> UserRead:
    try:
        user = service.bootstrap_super_admin(payload.username)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return UserRead.model_validate(user)


@router.get("/me", response_model=UserRead)
def read_me(request: Request, actor: CurrentActor, service: Service) -> UserRead:
    try:
        user = service.get_user(actor.user_id)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return UserRead.model_validate(user)


@router.get("/users", response_model=list[UserRead])
def list_scoped_users(request: Request, actor: CurrentActor, service: Service) -> list[UserRead]:
    try:
        users = service.list_users_in_scope(actor)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return [UserRead.model_validate(item) for item in users]
