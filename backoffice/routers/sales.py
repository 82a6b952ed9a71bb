from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import Principal, any_staff, resolve_branch_scope, sales_access
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.schemas import SaleCreate
from backoffice.security.csrf import verify_csrf
from backoffice.services.accounting_service import post_sale
from backoffice.services.audit_service import log_audit
from backoffice.services.recovery_service import post_journal_with_recovery
from backoffice.services.sales_service import SaleLine, list_sales, record_sale, sale_view

router = APIRouter(prefix='/sales', tags=['sales'])


@router.get('')
def sales_list(
    branch_id: int | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    if from_date and to_date and to_date < from_date:
        raise HTTPException(status_code=400, detail='Invalid date filter')
    return list_sales(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        from_date=from_date,
        to_date=to_date,
        limit=min(max(limit, 1), 500),
    )


@router.post('', status_code=201)
def sales_create(
    payload: SaleCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_access),
    _: None = Depends(verify_csrf),
):
    branch_id = resolve_branch_scope(principal, payload.branch_id) or principal.branch_id
    if not branch_id:
        raise HTTPException(status_code=400, detail='Branch is required')
    lines = [
        SaleLine(
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price=line.unit_price,
            serial_number_id=line.serial_number_id,
        )
        for line in payload.lines
    ]
    try:
        sale = record_sale(
            db,
            branch_id=branch_id,
            warehouse_id=payload.warehouse_id,
            lines=lines,
            payment_method=payload.payment_method,
            customer_id=payload.customer_id,
            employee_id=payload.employee_id,
            discount_amount=payload.discount_amount,
            tax_amount=payload.tax_amount,
            performed_by_user_id=principal.id,
            today=date.today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    post_journal_with_recovery(
        db, lambda: post_sale(db, sale_id=sale.id, entry_date=date.today(), created_by_user_id=principal.id)
    )

    log_audit(
        db,
        actor_user_id=principal.id,
        action='SALE_CREATE',
        entity_type='sales_transaction',
        entity_id=sale.id,
        ip=get_client_ip(request),
        metadata={'transaction_number': sale.transaction_number, 'net_amount': str(sale.net_amount)},
    )
    db.commit()
    return sale_view(sale)
