from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends

from backoffice.auth import Principal, any_staff, resolve_branch_scope
from backoffice.services.dashboard_service import load_dashboard

router = APIRouter(prefix='/dashboard', tags=['dashboard'])


@router.get('')
def dashboard(branch_id: int | None = None, principal: Principal = Depends(any_staff)):
    # Sections open their own sessions so they can run in parallel.
    return load_dashboard(branch_id=resolve_branch_scope(principal, branch_id), today=date.today())
