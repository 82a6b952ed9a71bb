from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import (
    Principal,
    admin_access,
    any_staff,
    assert_branch_scope,
    resolve_branch_scope,
    warehouse_access,
)
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.schemas import CancelRequest, GoodsReceipt, ProductCreate, StockAdjustment, TransferCreate
from backoffice.security.csrf import verify_csrf
from backoffice.services.audit_service import log_audit
from backoffice.services.notification_service import notify_low_stock
from backoffice.services.stock_service import (
    adjust_stock,
    create_product,
    get_warehouse,
    list_movements,
    list_products,
    list_stock_levels,
    receive_goods,
)
from backoffice.services.transfer_service import (
    cancel_transfer,
    confirm_transfer,
    dispatch_transfer,
    initiate_transfer,
    list_transfers,
    transfer_stats,
    transfer_view,
)

router = APIRouter(prefix='/inventory', tags=['inventory'])


def _product_view(product) -> dict:
    return {
        'id': product.id,
        'product_code': product.product_code,
        'name': product.name,
        'category': product.category,
        'unit_price': product.unit_price,
        'cost_price': product.cost_price,
        'min_stock_level': product.min_stock_level,
        'warranty_months': product.warranty_months,
        'status': product.status,
    }


def _movement_view(movement) -> dict:
    return {
        'id': movement.id,
        'product_id': movement.product_id,
        'warehouse_id': movement.warehouse_id,
        'serial_number_id': movement.serial_number_id,
        'movement_type': movement.movement_type.value,
        'quantity': movement.quantity,
        'unit_cost': movement.unit_cost,
        'reference_type': movement.reference_type,
        'reference_number': movement.reference_number,
        'notes': movement.notes,
        'created_at': movement.created_at,
    }


def _scoped_warehouse(db: Session, principal: Principal, warehouse_id: int):
    try:
        warehouse = get_warehouse(db, warehouse_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    assert_branch_scope(principal, warehouse.branch_id)
    return warehouse


@router.get('/products')
def products_list(
    q: str | None = None,
    category: str | None = None,
    db: Session = Depends(get_db),
    _: Principal = Depends(any_staff),
):
    return [_product_view(p) for p in list_products(db, query=q, category=category)]


@router.post('/products', status_code=201)
def products_create(
    payload: ProductCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    try:
        product = create_product(db, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='PRODUCT_CREATE',
        entity_type='product',
        entity_id=product.id,
        ip=get_client_ip(request),
        metadata={'product_code': product.product_code},
    )
    db.commit()
    return _product_view(product)


@router.get('/stock')
def stock_levels(
    branch_id: int | None = None,
    warehouse_id: int | None = None,
    low_only: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    return list_stock_levels(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        warehouse_id=warehouse_id,
        low_only=low_only,
    )


@router.post('/adjustments', status_code=201)
def stock_adjust(
    payload: StockAdjustment,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(warehouse_access),
    _: None = Depends(verify_csrf),
):
    warehouse = _scoped_warehouse(db, principal, payload.warehouse_id)
    try:
        movement = adjust_stock(
            db,
            product_id=payload.product_id,
            warehouse_id=warehouse.id,
            quantity_change=payload.quantity_change,
            reason=payload.reason,
            performed_by_user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if payload.quantity_change < 0:
        notify_low_stock(
            db,
            branch_id=warehouse.branch_id,
            rows=list_stock_levels(db, branch_id=warehouse.branch_id, warehouse_id=warehouse.id, low_only=True),
        )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='STOCK_ADJUST',
        entity_type='product',
        entity_id=payload.product_id,
        ip=get_client_ip(request),
        metadata={'warehouse_id': warehouse.id, 'quantity_change': payload.quantity_change, 'reason': payload.reason},
    )
    db.commit()
    return _movement_view(movement)


@router.post('/receipts', status_code=201)
def goods_receive(
    payload: GoodsReceipt,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(warehouse_access),
    _: None = Depends(verify_csrf),
):
    warehouse = _scoped_warehouse(db, principal, payload.warehouse_id)
    try:
        serials = receive_goods(
            db,
            product_id=payload.product_id,
            warehouse_id=warehouse.id,
            serial_numbers=payload.serial_numbers,
            unit_cost=payload.unit_cost,
            reference_number=payload.reference_number,
            performed_by_user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='GOODS_RECEIVE',
        entity_type='product',
        entity_id=payload.product_id,
        ip=get_client_ip(request),
        metadata={'warehouse_id': warehouse.id, 'count': len(serials), 'reference_number': payload.reference_number},
    )
    db.commit()
    return {'received': len(serials), 'serial_number_ids': [s.id for s in serials]}


@router.get('/movements')
def movements_list(
    branch_id: int | None = None,
    product_id: int | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    if from_date and to_date and to_date < from_date:
        raise HTTPException(status_code=400, detail='Invalid date filter')
    movements = list_movements(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        product_id=product_id,
        from_date=from_date,
        to_date=to_date,
        limit=min(max(limit, 1), 1000),
    )
    return [_movement_view(m) for m in movements]


@router.get('/transfers')
def transfers_list(
    branch_id: int | None = None,
    status: str | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    try:
        transfers = list_transfers(db, branch_id=resolve_branch_scope(principal, branch_id), status=status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [transfer_view(t) for t in transfers]


@router.get('/transfers/stats')
def transfers_stats(db: Session = Depends(get_db), _: Principal = Depends(any_staff)):
    return transfer_stats(db)


@router.post('/transfers', status_code=201)
def transfers_create(
    payload: TransferCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(warehouse_access),
    _: None = Depends(verify_csrf),
):
    _scoped_warehouse(db, principal, payload.source_warehouse_id)
    try:
        transfer = initiate_transfer(
            db,
            source_warehouse_id=payload.source_warehouse_id,
            target_warehouse_id=payload.target_warehouse_id,
            serial_number_ids=payload.serial_number_ids,
            initiated_by_user_id=principal.id,
            notes=payload.notes,
            today=date.today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='TRANSFER_INITIATE',
        entity_type='stock_transfer',
        entity_id=transfer.id,
        ip=get_client_ip(request),
        metadata={'transfer_number': transfer.transfer_number, 'items': transfer.total_items},
    )
    db.commit()
    return transfer_view(transfer)


def _transfer_action(action: str, transfer, principal: Principal, request: Request, db: Session, **metadata) -> dict:
    log_audit(
        db,
        actor_user_id=principal.id,
        action=action,
        entity_type='stock_transfer',
        entity_id=transfer.id,
        ip=get_client_ip(request),
        metadata={'transfer_number': transfer.transfer_number, **metadata},
    )
    db.commit()
    return transfer_view(transfer)


@router.post('/transfers/{transfer_id}/dispatch')
def transfers_dispatch(
    transfer_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(warehouse_access),
    _: None = Depends(verify_csrf),
):
    try:
        transfer = dispatch_transfer(db, transfer_id=transfer_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _transfer_action('TRANSFER_DISPATCH', transfer, principal, request, db)


@router.post('/transfers/{transfer_id}/confirm')
def transfers_confirm(
    transfer_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(warehouse_access),
    _: None = Depends(verify_csrf),
):
    try:
        transfer = confirm_transfer(db, transfer_id=transfer_id, confirmed_by_user_id=principal.id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _transfer_action('TRANSFER_CONFIRM', transfer, principal, request, db)


@router.post('/transfers/{transfer_id}/cancel')
def transfers_cancel(
    transfer_id: int,
    payload: CancelRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(warehouse_access),
    _: None = Depends(verify_csrf),
):
    try:
        transfer = cancel_transfer(db, transfer_id=transfer_id, reason=payload.reason, cancelled_by_user_id=principal.id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _transfer_action('TRANSFER_CANCEL', transfer, principal, request, db, reason=payload.reason)
