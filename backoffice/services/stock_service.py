from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.models import (
    MovementType,
    Product,
    ProductInventory,
    RecordStatus,
    SerialNumber,
    SerialNumberStatus,
    StockMovement,
    Warehouse,
)

logger = logging.getLogger(__name__)


def stock_status(quantity: int, *, min_level: int | None = None) -> str:
    if quantity <= 0:
        return 'out'
    if quantity <= settings.critical_stock_threshold:
        return 'critical'
    if quantity < (min_level if min_level is not None else settings.low_stock_threshold):
        return 'low'
    return 'ok'


def get_warehouse(db: Session, warehouse_id: int) -> Warehouse:
    warehouse = db.execute(select(Warehouse).where(Warehouse.id == warehouse_id)).scalar_one_or_none()
    if not warehouse or not warehouse.active:
        raise ValueError('Warehouse not found')
    return warehouse


def get_product(db: Session, product_id: int) -> Product:
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    if not product or product.status != RecordStatus.ACTIVE.value:
        raise ValueError('Product not found')
    return product


def list_products(db: Session, *, query: str | None = None, category: str | None = None) -> list[Product]:
    stmt = select(Product).where(Product.status == RecordStatus.ACTIVE.value).order_by(Product.name.asc())
    if query and query.strip():
        term = f'%{query.strip().lower()}%'
        stmt = stmt.where(func.lower(Product.name).like(term) | func.lower(Product.product_code).like(term))
    if category:
        stmt = stmt.where(Product.category == category)
    return list(db.execute(stmt).scalars().all())


def create_product(
    db: Session,
    *,
    product_code: str,
    name: str,
    category: str | None = None,
    unit_price: Decimal = Decimal('0'),
    cost_price: Decimal = Decimal('0'),
    min_stock_level: int | None = None,
    warranty_months: int = 12,
    branch_id: int | None = None,
) -> Product:
    product_code = (product_code or '').strip().upper()
    name = (name or '').strip()
    if not product_code or not name:
        raise ValueError('Product code and name are required')
    if unit_price < 0 or cost_price < 0:
        raise ValueError('Prices cannot be negative')
    existing = db.execute(select(Product.id).where(Product.product_code == product_code)).first()
    if existing:
        raise ValueError('Product code already exists')

    product = Product(
        branch_id=branch_id,
        product_code=product_code,
        name=name,
        category=category,
        unit_price=unit_price,
        cost_price=cost_price,
        min_stock_level=min_stock_level if min_stock_level is not None else settings.low_stock_threshold,
        warranty_months=warranty_months,
        status=RecordStatus.ACTIVE.value,
    )
    db.add(product)
    db.flush()
    return product


def _get_or_create_inventory(db: Session, *, product_id: int, warehouse: Warehouse) -> ProductInventory:
    row = db.execute(
        select(ProductInventory).where(
            ProductInventory.product_id == product_id,
            ProductInventory.warehouse_id == warehouse.id,
        )
    ).scalar_one_or_none()
    if row:
        return row
    row = ProductInventory(product_id=product_id, warehouse_id=warehouse.id, branch_id=warehouse.branch_id, quantity=0)
    db.add(row)
    db.flush()
    return row


def change_stock(
    db: Session,
    *,
    product_id: int,
    warehouse_id: int,
    delta: int,
    movement_type: MovementType,
    serial_number_id: int | None = None,
    unit_cost: Decimal | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    performed_by_user_id: int | None = None,
) -> StockMovement:
    """Apply a signed quantity change and write the matching movement row."""
    if delta == 0:
        raise ValueError('Quantity change cannot be zero')
    warehouse = get_warehouse(db, warehouse_id)
    inventory = _get_or_create_inventory(db, product_id=product_id, warehouse=warehouse)
    if inventory.quantity + delta < 0:
        raise ValueError(f'Insufficient stock for product {product_id} (on hand {inventory.quantity})')
    inventory.quantity += delta

    movement = StockMovement(
        product_id=product_id,
        warehouse_id=warehouse.id,
        serial_number_id=serial_number_id,
        movement_type=movement_type,
        quantity=delta,
        unit_cost=unit_cost,
        reference_type=reference_type,
        reference_id=reference_id,
        reference_number=reference_number,
        notes=notes,
        performed_by_user_id=performed_by_user_id,
    )
    db.add(movement)
    db.flush()
    return movement


def adjust_stock(
    db: Session,
    *,
    product_id: int,
    warehouse_id: int,
    quantity_change: int,
    reason: str,
    performed_by_user_id: int | None = None,
) -> StockMovement:
    get_product(db, product_id)
    reason = (reason or '').strip()
    if not reason:
        raise ValueError('Adjustment reason is required')
    movement = change_stock(
        db,
        product_id=product_id,
        warehouse_id=warehouse_id,
        delta=quantity_change,
        movement_type=MovementType.ADJUSTMENT,
        notes=reason,
        performed_by_user_id=performed_by_user_id,
    )
    logger.info('Adjusted product %s in warehouse %s by %s: %s', product_id, warehouse_id, quantity_change, reason)
    return movement


def receive_goods(
    db: Session,
    *,
    product_id: int,
    warehouse_id: int,
    serial_numbers: list[str],
    unit_cost: Decimal | None = None,
    reference_number: str | None = None,
    performed_by_user_id: int | None = None,
) -> list[SerialNumber]:
    """Register serialised units into a warehouse, one movement per unit."""
    product = get_product(db, product_id)
    cleaned = [s.strip() for s in serial_numbers if s and s.strip()]
    if not cleaned:
        raise ValueError('At least one serial number is required')
    if len(set(cleaned)) != len(cleaned):
        raise ValueError('Duplicate serial numbers in receipt')
    existing = db.execute(select(SerialNumber.serial_number).where(SerialNumber.serial_number.in_(cleaned))).scalars().all()
    if existing:
        raise ValueError(f'Serial numbers already registered: {", ".join(sorted(existing))}')

    cost = unit_cost if unit_cost is not None else product.cost_price
    created: list[SerialNumber] = []
    for value in cleaned:
        serial = SerialNumber(
            serial_number=value,
            product_id=product.id,
            warehouse_id=warehouse_id,
            unit_cost=cost,
            status=SerialNumberStatus.AVAILABLE,
        )
        db.add(serial)
        db.flush()
        change_stock(
            db,
            product_id=product.id,
            warehouse_id=warehouse_id,
            delta=1,
            movement_type=MovementType.RECEIVE,
            serial_number_id=serial.id,
            unit_cost=cost,
            reference_type='receipt',
            reference_number=reference_number,
            performed_by_user_id=performed_by_user_id,
        )
        created.append(serial)
    logger.info('Received %s units of product %s into warehouse %s', len(created), product.id, warehouse_id)
    return created


def list_stock_levels(
    db: Session,
    *,
    branch_id: int | None,
    warehouse_id: int | None = None,
    low_only: bool = False,
) -> list[dict]:
    stmt = (
        select(ProductInventory, Product, Warehouse)
        .join(Product, Product.id == ProductInventory.product_id)
        .join(Warehouse, Warehouse.id == ProductInventory.warehouse_id)
        .where(Product.status == RecordStatus.ACTIVE.value)
        .order_by(ProductInventory.quantity.asc(), Product.name.asc())
    )
    if branch_id:
        stmt = stmt.where(ProductInventory.branch_id == branch_id)
    if warehouse_id:
        stmt = stmt.where(ProductInventory.warehouse_id == warehouse_id)
    if low_only:
        stmt = stmt.where(ProductInventory.quantity < Product.min_stock_level)

    rows = []
    for inventory, product, warehouse in db.execute(stmt).all():
        rows.append(
            {
                'product_id': product.id,
                'product_code': product.product_code,
                'product_name': product.name,
                'warehouse_id': warehouse.id,
                'warehouse_name': warehouse.name,
                'branch_id': inventory.branch_id,
                'quantity': inventory.quantity,
                'min_stock_level': product.min_stock_level,
                'status': stock_status(inventory.quantity, min_level=product.min_stock_level),
                'stock_value': product.cost_price * inventory.quantity,
            }
        )
    return rows


def list_movements(
    db: Session,
    *,
    branch_id: int | None,
    product_id: int | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    stmt = select(StockMovement).order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
    if branch_id:
        stmt = stmt.join(Warehouse, Warehouse.id == StockMovement.warehouse_id).where(Warehouse.branch_id == branch_id)
    if product_id:
        stmt = stmt.where(StockMovement.product_id == product_id)
    if from_date:
        stmt = stmt.where(StockMovement.created_at >= datetime.combine(from_date, time.min, tzinfo=timezone.utc))
    if to_date:
        stmt = stmt.where(StockMovement.created_at <= datetime.combine(to_date, time.max, tzinfo=timezone.utc))
    return list(db.execute(stmt).scalars().all())
