from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import Principal, any_staff, assert_branch_scope, resolve_branch_scope, sales_access
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.schemas import ClaimCreate, ClaimUpdate, CommentCreate
from backoffice.security.csrf import verify_csrf
from backoffice.services.audit_service import log_audit
from backoffice.services.claim_service import (
    add_comment,
    claim_timeline,
    claim_view,
    create_claim,
    get_claim,
    list_claims,
    overdue_claims,
    resolve_claim,
    update_claim,
)

router = APIRouter(prefix='/claims', tags=['claims'])


def _scoped_claim(db: Session, principal: Principal, claim_id: int):
    try:
        claim = get_claim(db, claim_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    assert_branch_scope(principal, claim.branch_id)
    return claim


@router.get('')
def claims_list(
    branch_id: int | None = None,
    status: str | None = None,
    priority: str | None = None,
    customer_id: int | None = None,
    q: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    try:
        claims = list_claims(
            db,
            branch_id=resolve_branch_scope(principal, branch_id),
            status=status,
            priority=priority,
            customer_id=customer_id,
            query=q,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    today = date.today()
    return [claim_view(c, today=today) for c in claims]


@router.get('/overdue')
def claims_overdue(
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    today = date.today()
    claims = list_claims(db, branch_id=resolve_branch_scope(principal, branch_id))
    return [claim_view(c, today=today) for c in overdue_claims(claims, today=today)]


@router.post('', status_code=201)
def claims_create(
    payload: ClaimCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_access),
    _: None = Depends(verify_csrf),
):
    branch_id = resolve_branch_scope(principal, payload.branch_id) or principal.branch_id
    if not branch_id:
        raise HTTPException(status_code=400, detail='Branch is required')
    today = date.today()
    try:
        claim = create_claim(
            db,
            branch_id=branch_id,
            customer_id=payload.customer_id,
            product_id=payload.product_id,
            description=payload.description,
            claim_type=payload.claim_type,
            priority=payload.priority,
            purchase_date=payload.purchase_date,
            serial_number_id=payload.serial_number_id,
            estimated_cost=payload.estimated_cost,
            actor_user_id=principal.id,
            today=today,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CLAIM_CREATE',
        entity_type='claim',
        entity_id=claim.id,
        ip=get_client_ip(request),
        metadata={'claim_number': claim.claim_number},
    )
    db.commit()
    return claim_view(claim, today=today)


@router.patch('/{claim_id}')
def claims_update(
    claim_id: int,
    payload: ClaimUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(sales_access),
    _: None = Depends(verify_csrf),
):
    _scoped_claim(db, principal, claim_id)
    try:
        if payload.resolution:
            claim = resolve_claim(
                db,
                claim_id=claim_id,
                resolution=payload.resolution,
                actual_cost=payload.actual_cost,
                actor_user_id=principal.id,
            )
        else:
            claim = update_claim(
                db,
                claim_id=claim_id,
                status=payload.status,
                priority=payload.priority,
                assigned_to_employee_id=payload.assigned_to_employee_id,
                estimated_cost=payload.estimated_cost,
                actor_user_id=principal.id,
            )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CLAIM_RESOLVE' if payload.resolution else 'CLAIM_UPDATE',
        entity_type='claim',
        entity_id=claim.id,
        ip=get_client_ip(request),
        metadata=payload.model_dump(exclude_unset=True, mode='json'),
    )
    db.commit()
    return claim_view(claim, today=date.today())


@router.get('/{claim_id}/timeline')
def claims_timeline(claim_id: int, db: Session = Depends(get_db), principal: Principal = Depends(any_staff)):
    _scoped_claim(db, principal, claim_id)
    return [
        {
            'id': event.id,
            'action': event.action,
            'description': event.description,
            'actor_user_id': event.actor_user_id,
            'created_at': event.created_at,
        }
        for event in claim_timeline(db, claim_id=claim_id)
    ]


@router.post('/{claim_id}/comments', status_code=201)
def claims_comment(
    claim_id: int,
    payload: CommentCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
    _: None = Depends(verify_csrf),
):
    _scoped_claim(db, principal, claim_id)
    try:
        event = add_comment(db, claim_id=claim_id, comment=payload.comment, actor_user_id=principal.id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CLAIM_COMMENT',
        entity_type='claim',
        entity_id=claim_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return {'id': event.id, 'action': event.action, 'description': event.description, 'created_at': event.created_at}
