from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.models import (
    Customer,
    Employee,
    MovementType,
    SalesTransaction,
    SalesTransactionItem,
    SaleStatus,
    SerialNumber,
    SerialNumberStatus,
)
from backoffice.services.installment_math import round_money
from backoffice.services.stock_service import change_stock, get_product, get_warehouse

logger = logging.getLogger(__name__)

SALE_PAYMENT_METHODS = {'cash', 'card', 'transfer', 'installment', 'qr'}


@dataclass
class SaleLine:
    product_id: int
    quantity: int = 1
    unit_price: Decimal | None = None
    serial_number_id: int | None = None


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    return (
        datetime.combine(day, time.min, tzinfo=timezone.utc),
        datetime.combine(day, time.max, tzinfo=timezone.utc),
    )


def next_transaction_number(db: Session, *, on_date: date) -> str:
    prefix = f'TXN{on_date:%Y%m%d}'
    count = db.execute(
        select(func.count(SalesTransaction.id)).where(SalesTransaction.transaction_number.like(f'{prefix}%'))
    ).scalar_one()
    return f'{prefix}{count + 1:04d}'


def record_sale(
    db: Session,
    *,
    branch_id: int,
    warehouse_id: int,
    lines: list[SaleLine],
    payment_method: str,
    customer_id: int | None = None,
    employee_id: int | None = None,
    discount_amount: Decimal = Decimal('0'),
    tax_amount: Decimal = Decimal('0'),
    performed_by_user_id: int | None = None,
    today: date,
) -> SalesTransaction:
    if not lines:
        raise ValueError('A sale needs at least one line')
    if payment_method not in SALE_PAYMENT_METHODS:
        raise ValueError('Invalid payment method')
    if discount_amount < 0 or tax_amount < 0:
        raise ValueError('Discount and tax cannot be negative')
    warehouse = get_warehouse(db, warehouse_id)
    if warehouse.branch_id != branch_id:
        raise ValueError('Warehouse does not belong to this branch')

    sale = SalesTransaction(
        transaction_number=next_transaction_number(db, on_date=today),
        branch_id=branch_id,
        warehouse_id=warehouse.id,
        customer_id=customer_id,
        employee_id=employee_id,
        total_amount=Decimal('0'),
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        net_amount=Decimal('0'),
        payment_method=payment_method,
        status=SaleStatus.COMPLETED,
    )
    db.add(sale)
    db.flush()

    total = Decimal('0')
    for line in lines:
        if line.quantity <= 0:
            raise ValueError('Line quantity must be positive')
        product = get_product(db, line.product_id)
        unit_price = line.unit_price if line.unit_price is not None else product.unit_price
        line_total = round_money(unit_price * line.quantity)

        if line.serial_number_id is not None:
            if line.quantity != 1:
                raise ValueError('Serialised lines must have quantity 1')
            serial = db.execute(select(SerialNumber).where(SerialNumber.id == line.serial_number_id)).scalar_one_or_none()
            if (
                not serial
                or serial.product_id != product.id
                or serial.warehouse_id != warehouse.id
                or serial.status != SerialNumberStatus.AVAILABLE
            ):
                raise ValueError(f'Serial number {line.serial_number_id} is not available')
            serial.status = SerialNumberStatus.SOLD

        db.add(
            SalesTransactionItem(
                transaction_id=sale.id,
                product_id=product.id,
                serial_number_id=line.serial_number_id,
                quantity=line.quantity,
                unit_price=unit_price,
                line_total=line_total,
            )
        )
        change_stock(
            db,
            product_id=product.id,
            warehouse_id=warehouse.id,
            delta=-line.quantity,
            movement_type=MovementType.SALE,
            serial_number_id=line.serial_number_id,
            unit_cost=product.cost_price,
            reference_type='sale',
            reference_id=sale.id,
            reference_number=sale.transaction_number,
            performed_by_user_id=performed_by_user_id,
        )
        total += line_total

    net = total - discount_amount + tax_amount
    if net < 0:
        raise ValueError('Discount exceeds sale total')
    sale.total_amount = total
    sale.net_amount = net
    db.flush()
    logger.info('Recorded sale %s net %s at branch %s', sale.transaction_number, net, branch_id)
    return sale


def list_sales(
    db: Session,
    *,
    branch_id: int | None,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = 100,
) -> list[dict]:
    stmt = (
        select(SalesTransaction, Customer.name, Employee.first_name, Employee.last_name)
        .outerjoin(Customer, Customer.id == SalesTransaction.customer_id)
        .outerjoin(Employee, Employee.id == SalesTransaction.employee_id)
        .order_by(SalesTransaction.created_at.desc(), SalesTransaction.id.desc())
        .limit(limit)
    )
    if branch_id:
        stmt = stmt.where(SalesTransaction.branch_id == branch_id)
    if from_date:
        stmt = stmt.where(SalesTransaction.created_at >= _day_bounds(from_date)[0])
    if to_date:
        stmt = stmt.where(SalesTransaction.created_at <= _day_bounds(to_date)[1])

    return [
        sale_view(sale, customer_name=customer_name, employee_name=' '.join(filter(None, [first, last])) or None)
        for sale, customer_name, first, last in db.execute(stmt).all()
    ]


def sale_view(sale: SalesTransaction, *, customer_name: str | None = None, employee_name: str | None = None) -> dict:
    return {
        'id': sale.id,
        'transaction_number': sale.transaction_number,
        'branch_id': sale.branch_id,
        'customer_name': customer_name,
        'employee_name': employee_name,
        'total_amount': sale.total_amount,
        'discount_amount': sale.discount_amount,
        'tax_amount': sale.tax_amount,
        'net_amount': sale.net_amount,
        'payment_method': sale.payment_method,
        'status': sale.status.value,
        'created_at': sale.created_at,
    }
