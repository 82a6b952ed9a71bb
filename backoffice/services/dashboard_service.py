"""Dashboard summary for the back-office home screen.

Six sections are loaded concurrently, each in its own session. A section that
fails its query, or does not finish before the timeout, is replaced with a fixed
sample so the screen always renders.
"""

from __future__ import annotations

import copy
import logging
import time as time_module
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.db import SessionLocal
from backoffice.models import (
    Branch,
    Customer,
    Employee,
    Product,
    ProductInventory,
    RecordStatus,
    SalesTransaction,
    SaleStatus,
    StockMovement,
    Warehouse,
)
from backoffice.services.attendance_service import count_checked_in

logger = logging.getLogger(__name__)

INVENTORY_VALUE_PER_PRODUCT = 1000
DEFAULT_BRANCH_NAME = 'สาขาหลัก'
TIMEOUT_MESSAGE = 'การเชื่อมต่อใช้เวลานานเกินไป กรุณาลองใหม่อีกครั้ง'
NETWORK_MESSAGE = 'ไม่สามารถเชื่อมต่อเครือข่ายได้ กรุณาตรวจสอบการเชื่อมต่ออินเทอร์เน็ต'

FALLBACKS: dict[str, object] = {
    'today_sales': {'count': 0, 'revenue': Decimal('0'), 'growth': 0},
    'customers': {'total': 245, 'new_today': 5, 'growth': 12},
    'products': {'total': 150, 'low_stock': 8, 'out_of_stock': 3, 'movements_today': 0},
    'employees': {'total': 15, 'active': 12, 'online_today': 8},
    'recent_sales': [
        {
            'id': 1,
            'transaction_number': 'TXN-001',
            'customer_name': 'ลูกค้า A',
            'total_amount': Decimal('1500'),
            'payment_method': 'cash',
            'status': 'completed',
            'created_at': None,
            'employee_name': 'พนักงาน A',
        }
    ],
    'low_stock_items': [
        {
            'id': 1,
            'product_name': 'สินค้า A',
            'product_code': 'PRD-001',
            'current_stock': 3,
            'min_stock_level': 5,
            'branch_name': DEFAULT_BRANCH_NAME,
            'status': 'critical',
        },
        {
            'id': 2,
            'product_name': 'สินค้า B',
            'product_code': 'PRD-002',
            'current_stock': 0,
            'min_stock_level': 10,
            'branch_name': DEFAULT_BRANCH_NAME,
            'status': 'out',
        },
    ],
}


def fallback(section: str):
    value = copy.deepcopy(FALLBACKS[section])
    if section == 'recent_sales':
        for row in value:
            row['created_at'] = datetime.now(timezone.utc)
    return value


def _today_bounds(today: date) -> tuple[datetime, datetime]:
    return (
        datetime.combine(today, time.min, tzinfo=timezone.utc),
        datetime.combine(today, time.max, tzinfo=timezone.utc),
    )


def low_stock_status(quantity: int) -> str:
    if quantity == 0:
        return 'out'
    if quantity <= settings.critical_stock_threshold:
        return 'critical'
    return 'low'


def fetch_today_sales(db: Session, *, branch_id: int | None, today: date) -> dict:
    start, end = _today_bounds(today)
    stmt = select(func.count(SalesTransaction.id), func.coalesce(func.sum(SalesTransaction.net_amount), 0)).where(
        SalesTransaction.created_at >= start,
        SalesTransaction.created_at <= end,
        SalesTransaction.status == SaleStatus.COMPLETED,
    )
    if branch_id:
        stmt = stmt.where(SalesTransaction.branch_id == branch_id)
    count, revenue = db.execute(stmt).one()
    return {'count': count, 'revenue': Decimal(str(revenue)), 'growth': 0}


def fetch_customers(db: Session, *, branch_id: int | None, today: date) -> dict:
    start, end = _today_bounds(today)
    total_stmt = select(func.count(Customer.id))
    new_stmt = select(func.count(Customer.id)).where(Customer.created_at >= start, Customer.created_at <= end)
    if branch_id:
        total_stmt = total_stmt.where(Customer.branch_id == branch_id)
        new_stmt = new_stmt.where(Customer.branch_id == branch_id)
    return {
        'total': db.execute(total_stmt).scalar_one(),
        'new_today': db.execute(new_stmt).scalar_one(),
        'growth': 0,
    }


def fetch_products(db: Session, *, branch_id: int | None, today: date) -> dict:
    threshold = settings.low_stock_threshold
    total_stmt = select(func.count(Product.id)).where(Product.status == RecordStatus.ACTIVE.value)
    low_stmt = select(func.count(ProductInventory.id)).where(ProductInventory.quantity < threshold)
    out_stmt = select(func.count(ProductInventory.id)).where(ProductInventory.quantity == 0)
    start, end = _today_bounds(today)
    movement_stmt = select(func.count(StockMovement.id)).where(
        StockMovement.created_at >= start,
        StockMovement.created_at <= end,
    )
    if branch_id:
        total_stmt = total_stmt.where((Product.branch_id == branch_id) | Product.branch_id.is_(None))
        low_stmt = low_stmt.where(ProductInventory.branch_id == branch_id)
        out_stmt = out_stmt.where(ProductInventory.branch_id == branch_id)
        movement_stmt = movement_stmt.join(Warehouse, Warehouse.id == StockMovement.warehouse_id).where(
            Warehouse.branch_id == branch_id
        )
    return {
        'total': db.execute(total_stmt).scalar_one(),
        'low_stock': db.execute(low_stmt).scalar_one(),
        'out_of_stock': db.execute(out_stmt).scalar_one(),
        'movements_today': db.execute(movement_stmt).scalar_one(),
    }


def fetch_employees(db: Session, *, branch_id: int | None, today: date) -> dict:
    total_stmt = select(func.count(Employee.id))
    active_stmt = select(func.count(Employee.id)).where(Employee.status == RecordStatus.ACTIVE.value)
    if branch_id:
        total_stmt = total_stmt.where(Employee.branch_id == branch_id)
        active_stmt = active_stmt.where(Employee.branch_id == branch_id)
    return {
        'total': db.execute(total_stmt).scalar_one(),
        'active': db.execute(active_stmt).scalar_one(),
        'online_today': count_checked_in(db, branch_id=branch_id, work_date=today),
    }


def fetch_recent_sales(db: Session, *, branch_id: int | None, today: date, limit: int = 10) -> list[dict]:
    stmt = (
        select(SalesTransaction, Customer.name, Employee.first_name, Employee.last_name)
        .outerjoin(Customer, Customer.id == SalesTransaction.customer_id)
        .outerjoin(Employee, Employee.id == SalesTransaction.employee_id)
        .order_by(SalesTransaction.created_at.desc(), SalesTransaction.id.desc())
        .limit(limit)
    )
    if branch_id:
        stmt = stmt.where(SalesTransaction.branch_id == branch_id)
    rows = []
    for sale, customer_name, first_name, last_name in db.execute(stmt).all():
        rows.append(
            {
                'id': sale.id,
                'transaction_number': sale.transaction_number,
                'customer_name': customer_name,
                'total_amount': sale.total_amount,
                'payment_method': sale.payment_method,
                'status': sale.status.value,
                'created_at': sale.created_at,
                'employee_name': f'{first_name} {last_name}' if first_name is not None else None,
            }
        )
    return rows


def fetch_low_stock_items(db: Session, *, branch_id: int | None, today: date, limit: int = 10) -> list[dict]:
    stmt = (
        select(ProductInventory, Product.name, Product.product_code, Branch.name)
        .join(Product, Product.id == ProductInventory.product_id)
        .outerjoin(Branch, Branch.id == ProductInventory.branch_id)
        .where(ProductInventory.quantity < settings.low_stock_threshold)
        .order_by(ProductInventory.quantity.asc())
        .limit(limit)
    )
    if branch_id:
        stmt = stmt.where(ProductInventory.branch_id == branch_id)
    return [
        {
            'id': inventory.id,
            'product_name': product_name,
            'product_code': product_code,
            'current_stock': inventory.quantity,
            'min_stock_level': settings.low_stock_threshold,
            'branch_name': branch_name or DEFAULT_BRANCH_NAME,
            'status': low_stock_status(inventory.quantity),
        }
        for inventory, product_name, product_code, branch_name in db.execute(stmt).all()
    ]


SECTIONS: tuple[tuple[str, Callable], ...] = (
    ('today_sales', fetch_today_sales),
    ('customers', fetch_customers),
    ('products', fetch_products),
    ('employees', fetch_employees),
    ('recent_sales', fetch_recent_sales),
    ('low_stock_items', fetch_low_stock_items),
)


def _load_section(
    name: str,
    fetcher: Callable,
    session_factory: Callable[[], Session],
    branch_id: int | None,
    today: date,
):
    db = session_factory()
    try:
        return fetcher(db, branch_id=branch_id, today=today)
    except SQLAlchemyError:
        logger.exception('Dashboard section %s failed; using fallback data', name)
        return fallback(name)
    finally:
        db.close()


def error_message_for(exc: BaseException) -> str:
    text = str(exc)
    lowered = text.lower()
    if isinstance(exc, FutureTimeoutError) or 'timeout' in lowered:
        return TIMEOUT_MESSAGE
    if 'network' in lowered:
        return NETWORK_MESSAGE
    return text or 'Failed to fetch dashboard data'


def load_dashboard(
    *,
    branch_id: int | None,
    today: date,
    timeout_seconds: float | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> dict:
    timeout_seconds = settings.dashboard_timeout_seconds if timeout_seconds is None else timeout_seconds
    started = time_module.monotonic()
    deadline = started + timeout_seconds

    results: dict[str, object] = {}
    error: str | None = None
    executor = ThreadPoolExecutor(max_workers=len(SECTIONS), thread_name_prefix='dashboard')
    try:
        futures = {
            name: executor.submit(_load_section, name, fetcher, session_factory, branch_id, today)
            for name, fetcher in SECTIONS
        }
        for name, future in futures.items():
            try:
                results[name] = future.result(timeout=max(0.0, deadline - time_module.monotonic()))
            except FutureTimeoutError as exc:
                logger.warning('Dashboard section %s timed out after %.1fs', name, timeout_seconds)
                results[name] = fallback(name)
                error = error_message_for(exc)
            except Exception as exc:
                logger.exception('Dashboard section %s raised', name)
                results[name] = fallback(name)
                error = error_message_for(exc)
    finally:
        # Timed-out sections keep running in the background; nothing waits on them.
        executor.shutdown(wait=False)

    products = dict(results['products'])
    movements_today = products.pop('movements_today', 0)
    low_stock_items = results['low_stock_items']

    elapsed_ms = (time_module.monotonic() - started) * 1000
    if elapsed_ms > settings.dashboard_slow_warning_ms:
        logger.warning('Dashboard data fetch took %.2fms', elapsed_ms)

    return {
        'stats': {
            'today_sales': results['today_sales'],
            'customers': results['customers'],
            'products': products,
            'employees': results['employees'],
            'inventory': {
                'total_value': products['total'] * INVENTORY_VALUE_PER_PRODUCT,
                'movements': movements_today,
                'alerts': len(low_stock_items),
            },
        },
        'recent_sales': results['recent_sales'],
        'low_stock_items': low_stock_items,
        'error': error,
        'last_updated': datetime.now(timezone.utc),
    }
