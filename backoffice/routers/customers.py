from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import Principal, admin_access, any_staff, assert_branch_scope, resolve_branch_scope, sales_access
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.schemas import CustomerCreate, CustomerUpdate
from backoffice.security.csrf import verify_csrf
from backoffice.services.audit_service import log_audit
from backoffice.services.customer_service import (
    create_customer,
    customer_stats,
    deactivate_customer,
    get_customer_detail,
    list_customers,
    recalculate_customer_credit_score,
    update_customer,
)

router = APIRouter(prefix='/customers', tags=['customers'])


def _load_scoped(db: Session, principal: Principal, customer_id: int) -> dict:
    try:
        detail = get_customer_detail(db, customer_id=customer_id, today=date.today())
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    assert_branch_scope(principal, detail['branch_id'])
    return detail


@router.get('')
def customers_list(
    q: str | None = None,
    risk_level: str | None = None,
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    return list_customers(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        query=q,
        risk_level=risk_level,
        today=date.today(),
    )


@router.get('/stats')
def customers_stats(
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    return customer_stats(db, branch_id=resolve_branch_scope(principal, branch_id), today=date.today())


@router.post('', status_code=201)
def customers_create(
    payload: CustomerCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_access),
    _: None = Depends(verify_csrf),
):
    branch_id = resolve_branch_scope(principal, payload.branch_id) or principal.branch_id
    if not branch_id:
        raise HTTPException(status_code=400, detail='Branch is required')
    try:
        customer = create_customer(
            db,
            branch_id=branch_id,
            name=payload.name,
            phone=payload.phone,
            email=payload.email,
            address=payload.address,
            id_card=payload.id_card,
            occupation=payload.occupation,
            monthly_income=payload.monthly_income,
            customer_type=payload.type,
            notes=payload.notes,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='CUSTOMER_CREATE',
        entity_type='customer',
        entity_id=customer.id,
        ip=get_client_ip(request),
        metadata={'customer_code': customer.customer_code},
    )
    db.commit()
    return get_customer_detail(db, customer_id=customer.id, today=date.today())


@router.get('/{customer_id}')
def customers_detail(customer_id: int, db: Session = Depends(get_db), principal: Principal = Depends(any_staff)):
    return _load_scoped(db, principal, customer_id)


@router.patch('/{customer_id}')
def customers_update(
    customer_id: int,
    payload: CustomerUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_access),
    _: None = Depends(verify_csrf),
):
    _load_scoped(db, principal, customer_id)
    changes = payload.model_dump(exclude_unset=True)
    try:
        update_customer(db, customer_id=customer_id, changes=changes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='CUSTOMER_UPDATE',
        entity_type='customer',
        entity_id=customer_id,
        ip=get_client_ip(request),
        metadata={'fields': sorted(changes)},
    )
    db.commit()
    return get_customer_detail(db, customer_id=customer_id, today=date.today())


@router.delete('/{customer_id}')
def customers_deactivate(
    customer_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    _load_scoped(db, principal, customer_id)
    deactivate_customer(db, customer_id=customer_id)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CUSTOMER_DEACTIVATE',
        entity_type='customer',
        entity_id=customer_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return {'ok': True}


@router.post('/{customer_id}/credit-score')
def customers_recalculate_score(
    customer_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_access),
    _: None = Depends(verify_csrf),
):
    _load_scoped(db, principal, customer_id)
    score = recalculate_customer_credit_score(db, customer_id=customer_id, today=date.today())
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CUSTOMER_CREDIT_SCORE',
        entity_type='customer',
        entity_id=customer_id,
        ip=get_client_ip(request),
        metadata={'credit_score': score},
    )
    db.commit()
    return {'customer_id': customer_id, 'credit_score': score}
