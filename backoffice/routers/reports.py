from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backoffice.auth import Principal, finance_access, resolve_branch_scope
from backoffice.db import get_db
from backoffice.services.report_service import claims_report, installments_report, inventory_report, sales_report

router = APIRouter(prefix='/reports', tags=['reports'])

DEFAULT_SALES_WINDOW_DAYS = 30


@router.get('/sales')
def report_sales(
    branch_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    top_n: int = 10,
    db: Session = Depends(get_db),
    principal: Principal = Depends(finance_access),
):
    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=DEFAULT_SALES_WINDOW_DAYS)
    try:
        return sales_report(
            db,
            branch_id=resolve_branch_scope(principal, branch_id),
            start_date=start_date,
            end_date=end_date,
            top_n=min(max(top_n, 1), 100),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get('/inventory')
def report_inventory(
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(finance_access),
):
    return inventory_report(db, branch_id=resolve_branch_scope(principal, branch_id))


@router.get('/claims')
def report_claims(
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(finance_access),
):
    return claims_report(db, branch_id=resolve_branch_scope(principal, branch_id), today=date.today())


@router.get('/installments')
def report_installments(
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(finance_access),
):
    return installments_report(db, branch_id=resolve_branch_scope(principal, branch_id), today=date.today())
