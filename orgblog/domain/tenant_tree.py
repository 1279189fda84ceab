from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Protocol

from orgblog.domain.errors import NotFoundError
from orgblog.domain.roles import Role, parse_role


class Placed(Protocol):
    role: Any
    org_id: str | None
    dept_id: str | None


@dataclass(frozen=True)
class OrganizationNode:
    id: str
    active: bool = True


@dataclass(frozen=True)
class DepartmentNode:
    id: str
    org_id: str
    active: bool = True


class TenantTree:
    def __init__(
        self,
        organizations: Iterable[OrganizationNode],
        departments: Iterable[DepartmentNode],
    ) -> None:
        self._organizations: Mapping[str, OrganizationNode] = MappingProxyType(
            {item.id: item for item in organizations}
        )
        self._departments: Mapping[str, DepartmentNode] = MappingProxyType(
            {item.id: item for item in departments}
        )

    @classmethod
    def from_records(cls, organizations: Iterable[Any], departments: Iterable[Any]) -> TenantTree:
        return cls(
            (OrganizationNode(id=item.id, active=bool(item.active)) for item in organizations),
            (DepartmentNode(id=item.id, org_id=item.org_id, active=bool(item.active)) for item in departments),
        )

    def get_organization(self, org_id: str) -> OrganizationNode:
        org = self._organizations.get(org_id)
        if org is None:
            raise NotFoundError("organization not found")
        return org

    def get_department(self, dept_id: str) -> DepartmentNode:
        dept = self._departments.get(dept_id)
        if dept is None:
            raise NotFoundError("department not found")
        return dept

    def has_organization(self, org_id: str) -> bool:
        return org_id in self._organizations

    def has_department(self, dept_id: str) -> bool:
        return dept_id in self._departments

    def organization_of(self, dept_id: str) -> str:
        return self.get_department(dept_id).org_id

    def is_descendant(self, dept_id: str, org_id: str) -> bool:
        dept = self._departments.get(dept_id)
        return dept is not None and dept.org_id == org_id

    def departments_of(self, org_id: str) -> list[DepartmentNode]:
        return [item for item in self._departments.values() if item.org_id == org_id]

    def is_active(self, org_id: str) -> bool:
        return self.get_organization(org_id).active

    def validate_user_placement(self, user: Placed) -> bool:
        role = parse_role(user.role)
        org_id = user.org_id
        dept_id = user.dept_id
        if role == Role.DEPT_ADMIN and dept_id is None:
            return False
        if role == Role.ORG_ADMIN and org_id is None:
            return False
        if org_id is not None and org_id not in self._organizations:
            return False
        if dept_id is None:
            return True
        if org_id is None:
            return False
        return self.is_descendant(dept_id, org_id)
