from __future__ import annotations

from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import (
    Principal,
    admin_access,
    any_staff,
    assert_branch_scope,
    finance_access,
    resolve_branch_scope,
    sales_access,
)
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.schemas import CancelRequest, ContractCreate, EligibilityRequest, PaymentCreate, PlanCreate
from backoffice.security.csrf import verify_csrf
from backoffice.services.accounting_service import post_contract, post_installment_payment
from backoffice.services.audit_service import log_audit
from backoffice.services.installment_service import (
    cancel_contract,
    check_customer_eligibility,
    contract_view,
    create_contract,
    create_plan,
    get_contract_detail,
    late_fees_collected,
    list_contracts,
    list_plans,
    record_payment,
)
from backoffice.services.recovery_service import post_journal_with_recovery

router = APIRouter(prefix='/installments', tags=['installments'])


def _plan_view(plan) -> dict:
    return {
        'id': plan.id,
        'plan_number': plan.plan_number,
        'name': plan.name,
        'months': plan.months,
        'interest_rate': plan.interest_rate,
        'down_payment_percent': plan.down_payment_percent,
        'processing_fee': plan.processing_fee,
        'requires_guarantor': plan.requires_guarantor,
        'active': plan.active,
    }


def _scoped_contract(db: Session, principal: Principal, contract_id: int) -> dict:
    try:
        detail = get_contract_detail(db, contract_id=contract_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    assert_branch_scope(principal, detail['branch_id'])
    return detail


@router.get('/plans')
def plans_list(include_inactive: bool = False, db: Session = Depends(get_db), _: Principal = Depends(any_staff)):
    return [_plan_view(plan) for plan in list_plans(db, active_only=not include_inactive)]


@router.post('/plans', status_code=201)
def plans_create(
    payload: PlanCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    try:
        plan = create_plan(db, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INSTALLMENT_PLAN_CREATE',
        entity_type='installment_plan',
        entity_id=plan.id,
        ip=get_client_ip(request),
        metadata={'plan_number': plan.plan_number},
    )
    db.commit()
    return _plan_view(plan)


@router.post('/eligibility')
def eligibility(
    payload: EligibilityRequest,
    db: Session = Depends(get_db),
    _: Principal = Depends(sales_access),
    __: None = Depends(verify_csrf),
):
    try:
        result = check_customer_eligibility(db, customer_id=payload.customer_id, amount=payload.amount)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(result)


@router.get('/contracts')
def contracts_list(
    branch_id: int | None = None,
    customer_id: int | None = None,
    status: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    try:
        contracts = list_contracts(
            db,
            branch_id=resolve_branch_scope(principal, branch_id),
            customer_id=customer_id,
            status=status,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [contract_view(contract) for contract in contracts]


@router.post('/contracts', status_code=201)
def contracts_create(
    payload: ContractCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_access),
    _: None = Depends(verify_csrf),
):
    branch_id = resolve_branch_scope(principal, payload.branch_id) or principal.branch_id
    if not branch_id:
        raise HTTPException(status_code=400, detail='Branch is required')
    try:
        contract = create_contract(
            db,
            branch_id=branch_id,
            customer_id=payload.customer_id,
            plan_id=payload.plan_id,
            total_amount=payload.total_amount,
            contract_date=payload.contract_date or date.today(),
            guarantor_name=payload.guarantor_name,
            guarantor_phone=payload.guarantor_phone,
            sale_id=payload.sale_id,
            notes=payload.notes,
            created_by_user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    post_journal_with_recovery(db, lambda: post_contract(db, contract_id=contract.id, created_by_user_id=principal.id))

    log_audit(
        db,
        actor_user_id=principal.id,
        action='INSTALLMENT_CONTRACT_CREATE',
        entity_type='installment_contract',
        entity_id=contract.id,
        ip=get_client_ip(request),
        metadata={'contract_number': contract.contract_number, 'total_amount': str(contract.total_amount)},
    )
    db.commit()
    return get_contract_detail(db, contract_id=contract.id)


@router.get('/contracts/{contract_id}')
def contracts_detail(contract_id: int, db: Session = Depends(get_db), principal: Principal = Depends(any_staff)):
    return _scoped_contract(db, principal, contract_id)


@router.post('/contracts/{contract_id}/payments')
def contracts_record_payment(
    contract_id: int,
    payload: PaymentCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(finance_access),
    _: None = Depends(verify_csrf),
):
    _scoped_contract(db, principal, contract_id)
    paid_date = payload.paid_date or date.today()
    fees_before = late_fees_collected(db, contract_id=contract_id)
    try:
        record_payment(
            db,
            contract_id=contract_id,
            amount=payload.amount,
            paid_date=paid_date,
            payment_method=payload.payment_method,
            receipt_number=payload.receipt_number,
            processed_by_user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    late_fee = late_fees_collected(db, contract_id=contract_id) - fees_before
    post_journal_with_recovery(
        db,
        lambda: post_installment_payment(
            db,
            contract_id=contract_id,
            amount=payload.amount,
            late_fee=late_fee,
            payment_method=payload.payment_method,
            paid_date=paid_date,
            receipt_number=payload.receipt_number,
            created_by_user_id=principal.id,
        ),
    )

    log_audit(
        db,
        actor_user_id=principal.id,
        action='INSTALLMENT_PAYMENT',
        entity_type='installment_contract',
        entity_id=contract_id,
        ip=get_client_ip(request),
        metadata={'amount': str(payload.amount), 'payment_method': payload.payment_method},
    )
    db.commit()
    return get_contract_detail(db, contract_id=contract_id)


@router.post('/contracts/{contract_id}/cancel')
def contracts_cancel(
    contract_id: int,
    payload: CancelRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    _scoped_contract(db, principal, contract_id)
    try:
        contract = cancel_contract(db, contract_id=contract_id, reason=payload.reason)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INSTALLMENT_CONTRACT_CANCEL',
        entity_type='installment_contract',
        entity_id=contract_id,
        ip=get_client_ip(request),
        metadata={'reason': payload.reason},
    )
    db.commit()
    return contract_view(contract)
