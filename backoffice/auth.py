from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CASHIER = "CASHIER"
    WAREHOUSE = "WAREHOUSE"
    ACCOUNTANT = "ACCOUNTANT"


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    branch_id: int | None
    active: bool


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def is_admin_role(role: Role) -> bool:
    return role in {Role.ADMIN, Role.MANAGER}


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def resolve_branch_scope(principal: Principal, requested_branch_id: int | None) -> int | None:
    # Admins may look across branches; everyone else is pinned to their own.
    if is_admin_role(principal.role):
        return requested_branch_id
    if requested_branch_id is not None and requested_branch_id != principal.branch_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal.branch_id


def assert_branch_scope(principal: Principal, target_branch_id: int) -> None:
    if is_admin_role(principal.role):
        return
    if principal.branch_id != target_branch_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)


any_staff = require_role(Role.ADMIN, Role.MANAGER, Role.CASHIER, Role.WAREHOUSE, Role.ACCOUNTANT)
admin_access = require_role(Role.ADMIN, Role.MANAGER)
sales_access = require_role(Role.ADMIN, Role.MANAGER, Role.CASHIER)
warehouse_access = require_role(Role.ADMIN, Role.MANAGER, Role.WAREHOUSE)
finance_access = require_role(Role.ADMIN, Role.MANAGER, Role.ACCOUNTANT, Role.CASHIER)
accounting_access = require_role(Role.ADMIN, Role.MANAGER, Role.ACCOUNTANT)
