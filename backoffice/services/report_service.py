from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.models import (
    Claim,
    ContractStatus,
    Employee,
    InstallmentContract,
    InstallmentPayment,
    PaymentStatus,
    Product,
    SalesTransaction,
    SalesTransactionItem,
    SaleStatus,
)
from backoffice.services.claim_service import overdue_claims
from backoffice.services.stock_service import list_stock_levels

ZERO = Decimal('0')


@dataclass(frozen=True)
class ProductSalesRow:
    product_id: int
    product_name: str
    quantity: int
    revenue: Decimal
    profit: Decimal


@dataclass(frozen=True)
class CategorySalesRow:
    category: str
    quantity: int
    revenue: Decimal
    percentage: float


@dataclass(frozen=True)
class EmployeeSalesRow:
    employee_id: int
    employee_name: str
    total_sales: Decimal
    total_orders: int
    commission: Decimal


@dataclass(frozen=True)
class SalesReport:
    start_date: date
    end_date: date
    total_sales: Decimal
    total_orders: int
    average_order_value: Decimal
    top_products: list[ProductSalesRow]
    sales_by_category: list[CategorySalesRow]
    sales_by_employee: list[EmployeeSalesRow]


def _range(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    if end_date < start_date:
        raise ValueError('End date must be on or after start date')
    return (
        datetime.combine(start_date, time.min, tzinfo=timezone.utc),
        datetime.combine(end_date, time.max, tzinfo=timezone.utc),
    )


def sales_report(
    db: Session,
    *,
    branch_id: int | None,
    start_date: date,
    end_date: date,
    top_n: int = 10,
) -> SalesReport:
    start, end = _range(start_date, end_date)
    sale_filter = [
        SalesTransaction.status == SaleStatus.COMPLETED,
        SalesTransaction.created_at >= start,
        SalesTransaction.created_at <= end,
    ]
    if branch_id:
        sale_filter.append(SalesTransaction.branch_id == branch_id)

    total_sales, total_orders = db.execute(
        select(func.coalesce(func.sum(SalesTransaction.net_amount), 0), func.count(SalesTransaction.id)).where(*sale_filter)
    ).one()
    total_sales = Decimal(str(total_sales))

    line_rows = db.execute(
        select(
            Product.id,
            Product.name,
            Product.category,
            Product.cost_price,
            func.sum(SalesTransactionItem.quantity),
            func.sum(SalesTransactionItem.line_total),
        )
        .join(SalesTransaction, SalesTransaction.id == SalesTransactionItem.transaction_id)
        .join(Product, Product.id == SalesTransactionItem.product_id)
        .where(*sale_filter)
        .group_by(Product.id, Product.name, Product.category, Product.cost_price)
    ).all()

    products: list[ProductSalesRow] = []
    by_category: dict[str, list] = defaultdict(lambda: [0, ZERO])
    for product_id, name, category, cost_price, quantity, revenue in line_rows:
        revenue = Decimal(str(revenue or 0))
        quantity = int(quantity or 0)
        products.append(
            ProductSalesRow(
                product_id=product_id,
                product_name=name,
                quantity=quantity,
                revenue=revenue,
                profit=revenue - cost_price * quantity,
            )
        )
        bucket = by_category[category or 'Uncategorised']
        bucket[0] += quantity
        bucket[1] += revenue

    category_total = sum((bucket[1] for bucket in by_category.values()), ZERO)
    categories = [
        CategorySalesRow(
            category=category,
            quantity=quantity,
            revenue=revenue,
            percentage=round(float(revenue / category_total * 100), 1) if category_total else 0.0,
        )
        for category, (quantity, revenue) in sorted(by_category.items(), key=lambda item: item[1][1], reverse=True)
    ]

    employee_rows = db.execute(
        select(
            Employee.id,
            Employee.first_name,
            Employee.last_name,
            Employee.commission_rate,
            func.sum(SalesTransaction.net_amount),
            func.count(SalesTransaction.id),
        )
        .join(Employee, Employee.id == SalesTransaction.employee_id)
        .where(*sale_filter)
        .group_by(Employee.id, Employee.first_name, Employee.last_name, Employee.commission_rate)
    ).all()
    employees = []
    for employee_id, first_name, last_name, rate, employee_total, orders in employee_rows:
        employee_total = Decimal(str(employee_total or 0))
        employees.append(
            EmployeeSalesRow(
                employee_id=employee_id,
                employee_name=f'{first_name} {last_name}',
                total_sales=employee_total,
                total_orders=orders,
                commission=(employee_total * rate / Decimal('100')).quantize(Decimal('0.01')),
            )
        )
    employees.sort(key=lambda row: row.total_sales, reverse=True)

    products.sort(key=lambda row: row.revenue, reverse=True)
    return SalesReport(
        start_date=start_date,
        end_date=end_date,
        total_sales=total_sales,
        total_orders=total_orders,
        average_order_value=(total_sales / total_orders).quantize(Decimal('0.01')) if total_orders else ZERO,
        top_products=products[:top_n],
        sales_by_category=categories,
        sales_by_employee=employees,
    )


def inventory_report(db: Session, *, branch_id: int | None) -> dict:
    rows = list_stock_levels(db, branch_id=branch_id)
    by_status: dict[str, int] = defaultdict(int)
    for row in rows:
        by_status[row['status']] += 1
    return {
        'total_items': len(rows),
        'total_quantity': sum(row['quantity'] for row in rows),
        'total_value': sum((row['stock_value'] for row in rows), ZERO),
        'by_status': dict(by_status),
        'low_stock_items': [row for row in rows if row['status'] in {'out', 'critical', 'low'}],
    }


def claims_report(db: Session, *, branch_id: int | None, today: date) -> dict:
    stmt = select(Claim)
    if branch_id:
        stmt = stmt.where(Claim.branch_id == branch_id)
    claims = list(db.execute(stmt).scalars().all())

    by_status: dict[str, int] = defaultdict(int)
    by_priority: dict[str, int] = defaultdict(int)
    resolution_days: list[int] = []
    total_cost = ZERO
    for claim in claims:
        by_status[claim.status.value] += 1
        by_priority[claim.priority.value] += 1
        if claim.actual_cost:
            total_cost += claim.actual_cost
        if claim.completed_at:
            resolution_days.append((claim.completed_at.date() - claim.claim_date).days)

    return {
        'total_claims': len(claims),
        'by_status': dict(by_status),
        'by_priority': dict(by_priority),
        'overdue': len(overdue_claims(claims, today=today)),
        'average_resolution_days': (sum(resolution_days) / len(resolution_days)) if resolution_days else 0,
        'total_cost': total_cost,
    }


def installments_report(db: Session, *, branch_id: int | None, today: date) -> dict:
    stmt = select(InstallmentContract)
    if branch_id:
        stmt = stmt.where(InstallmentContract.branch_id == branch_id)
    contracts = list(db.execute(stmt).scalars().all())

    by_status: dict[str, int] = defaultdict(int)
    for contract in contracts:
        by_status[contract.status.value] += 1

    open_ids = [c.id for c in contracts if c.status not in {ContractStatus.CANCELLED, ContractStatus.COMPLETED}]
    overdue_amount = ZERO
    overdue_payments = 0
    if open_ids:
        for amount, paid_amount in db.execute(
            select(InstallmentPayment.amount, InstallmentPayment.paid_amount).where(
                InstallmentPayment.contract_id.in_(open_ids),
                InstallmentPayment.status.in_([PaymentStatus.PENDING, PaymentStatus.PARTIAL, PaymentStatus.OVERDUE]),
                InstallmentPayment.due_date < today,
            )
        ).all():
            overdue_payments += 1
            overdue_amount += amount - paid_amount

    return {
        'total_contracts': len(contracts),
        'by_status': dict(by_status),
        'total_financed': sum((c.financed_amount for c in contracts), ZERO),
        'total_payable': sum((c.total_payable for c in contracts), ZERO),
        'total_collected': sum((c.total_paid for c in contracts), ZERO),
        'outstanding_balance': sum((c.remaining_balance for c in contracts if c.id in open_ids), ZERO),
        'overdue_payments': overdue_payments,
        'overdue_amount': overdue_amount,
    }
