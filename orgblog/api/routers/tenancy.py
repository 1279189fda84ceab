from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from orgblog.api.deps import CurrentActor, get_tenancy_service, raise_http_error
from orgblog.domain.errors import TenancyError
from orgblog.domain.models import (
    AssignDeptAdminRequest,
    AssignOrgAdminRequest,
    DepartmentCreate,
    DepartmentRead,
    OrganizationCreate,
    OrganizationRead,
    RemoveDeptAdminRequest,
    TenancyStatsRead,
    UserRead,
)
from orgblog.infra.audit import set_audit_context
from orgblog.services.tenancy_service import TenancyService

router = APIRouter()

Service = Annotated[TenancyService, Depends(get_tenancy_service)]


@router.post("/organizations", response_model=OrganizationRead, status_code=status.HTTP_201_CREATED)
def create_organization(
    payload: OrganizationCreate,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> OrganizationRead:
    try:
        org = service.create_organization(actor, payload.name)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return OrganizationRead.model_validate(org)


@router.get("/organizations", response_model=list[OrganizationRead])
def list_organizations(
    actor: CurrentActor,
    service: Service,
    include_inactive: bool = False,
) -> list[OrganizationRead]:
    return [OrganizationRead.model_validate(item) for item in service.list_organizations(include_inactive)]


@router.get("/organizations/{org_id}", response_model=OrganizationRead)
def get_organization(org_id: str, request: Request, actor: CurrentActor, service: Service) -> OrganizationRead:
    try:
        org = service.get_organization(org_id)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return OrganizationRead.model_validate(org)


@router.post("/organizations/{org_id}/deactivate", response_model=OrganizationRead)
def deactivate_organization(org_id: str, request: Request, actor: CurrentActor, service: Service) -> OrganizationRead:
    set_audit_context(request, action="organization.deactivate", resource=f"organizations/{org_id}")
    try:
        org = service.set_organization_active(actor, org_id, False)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return OrganizationRead.model_validate(org)


@router.post("/organizations/{org_id}/activate", response_model=OrganizationRead)
def activate_organization(org_id: str, request: Request, actor: CurrentActor, service: Service) -> OrganizationRead:
    set_audit_context(request, action="organization.activate", resource=f"organizations/{org_id}")
    try:
        org = service.set_organization_active(actor, org_id, True)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return OrganizationRead.model_validate(org)


@router.post(
    "/organizations/{org_id}/departments",
    response_model=DepartmentRead,
    status_code=status.HTTP_201_CREATED,
)
def create_department(
    org_id: str,
    payload: DepartmentCreate,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> DepartmentRead:
    try:
        dept = service.create_department(actor, org_id, payload.name)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return DepartmentRead.model_validate(dept)


@router.get("/organizations/{org_id}/departments", response_model=list[DepartmentRead])
def list_departments(org_id: str, request: Request, actor: CurrentActor, service: Service) -> list[DepartmentRead]:
    try:
        rows = service.list_departments(org_id)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return [DepartmentRead.model_validate(item) for item in rows]


@router.post("/admins/org", response_model=UserRead)
def assign_org_admin(
    payload: AssignOrgAdminRequest,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> UserRead:
    set_audit_context(request, action="admin.assign_org_admin", resource=f"users/{payload.user_id}")
    try:
        user = service.assign_org_admin(actor, payload.user_id, payload.org_id)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return UserRead.model_validate(user)


@router.post("/admins/dept", response_model=UserRead)
def assign_dept_admin(
    payload: AssignDeptAdminRequest,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> UserRead:
    set_audit_context(request, action="admin.assign_dept_admin", resource=f"users/{payload.user_id}")
    try:
        user = service.assign_dept_admin(actor, payload.user_id, payload.dept_id)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return UserRead.model_validate(user)


@router.post("/admins/dept/remove", response_model=UserRead)
def remove_dept_admin(
    payload: RemoveDeptAdminRequest,
    request: Request,
    actor: CurrentActor,
    service: Service,
) -> UserRead:
    set_audit_context(request, action="admin.remove_dept_admin", resource=f"users/{payload.user_id}")
    try:
        user = service.remove_dept_admin(actor, payload.user_id)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return UserRead.model_validate(user)


@router.post("/departments/{dept_id}/deactivate", response_model=DepartmentRead)
def deactivate_department(dept_id: str, request: Request, actor: CurrentActor, service: Service) -> DepartmentRead:
    set_audit_context(request, action="department.deactivate", resource=f"departments/{dept_id}")
    try:
        dept = service.set_department_active(actor, dept_id, False)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return DepartmentRead.model_validate(dept)


@router.post("/departments/{dept_id}/activate", response_model=DepartmentRead)
def activate_department(dept_id: str, request: Request, actor: CurrentActor, service: Service) -> DepartmentRead:
    set_audit_context(request, action="department.activate", resource=f"departments/{dept_id}")
    try:
        dept = service.set_department_active(actor, dept_id, True)
    except TenancyError as exc:
        raise_http_error(request, exc)
    return DepartmentRead.model_validate(dept)


@router.get("/stats", response_model=TenancyStatsRead)
def tenancy_stats(request: Request, actor: CurrentActor, service: Service) -> TenancyStatsRead:
    try:
        return service.stats_for_scope(actor)
    except TenancyError as exc:
        raise_http_error(request, exc)
