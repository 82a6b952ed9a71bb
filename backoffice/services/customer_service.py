from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from backoffice.models import Customer, InstallmentContract, InstallmentPayment, RecordStatus
from backoffice.services.credit_scoring import (
    ContractRecord,
    CreditHistory,
    PaymentRecord,
    base_credit_score,
    recalculate_credit_score,
    summarize_contracts,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'phone', 'email', 'address', 'id_card', 'tax_id', 'occupation', 'notes')


def _get_customer(db: Session, customer_id: int) -> Customer:
    customer = db.execute(select(Customer).where(Customer.id == customer_id)).scalar_one_or_none()
    if not customer:
        raise ValueError('Customer not found')
    return customer


def _next_customer_code(db: Session) -> str:
    last_id = db.execute(select(func.max(Customer.id))).scalar_one_or_none() or 0
    return f'C{last_id + 1:06d}'


def _load_contract_records(db: Session, customer_ids: list[int]) -> dict[int, list[ContractRecord]]:
    if not customer_ids:
        return {}
    contracts = db.execute(
        select(InstallmentContract).where(InstallmentContract.customer_id.in_(customer_ids))
    ).scalars().all()
    contract_ids = [contract.id for contract in contracts]

    payments_by_contract: dict[int, list[PaymentRecord]] = defaultdict(list)
    if contract_ids:
        for payment in db.execute(
            select(InstallmentPayment).where(InstallmentPayment.contract_id.in_(contract_ids))
        ).scalars():
            payments_by_contract[payment.contract_id].append(
                PaymentRecord(
                    due_date=payment.due_date,
                    amount=payment.amount,
                    status=payment.status.value,
                    paid_date=payment.paid_date,
                )
            )

    records: dict[int, list[ContractRecord]] = defaultdict(list)
    for contract in contracts:
        records[contract.customer_id].append(
            ContractRecord(
                status=contract.status.value,
                total_amount=contract.total_amount,
                total_paid=contract.total_paid,
                payments=tuple(payments_by_contract.get(contract.id, [])),
            )
        )
    return records


def customer_view(customer: Customer, history: CreditHistory) -> dict:
    score = customer.credit_score
    if score is None:
        score = base_credit_score(customer.monthly_income, customer.occupation)
    return {
        'id': customer.id,
        'branch_id': customer.branch_id,
        'customer_code': customer.customer_code,
        'name': customer.name,
        'phone': customer.phone or '',
        'email': customer.email or '',
        'address': customer.address or '',
        'id_card': customer.id_card or '',
        'occupation': customer.occupation or '',
        'monthly_income': customer.monthly_income or Decimal('0'),
        'credit_score': score,
        'total_contracts': history.total_contracts,
        'active_contracts': history.active_contracts,
        'total_financed': history.total_financed,
        'total_paid': history.total_paid,
        'overdue_amount': history.overdue_amount,
        'last_payment_date': history.last_payment_date,
        'risk_level': history.risk_level,
        'customer_since': customer.created_at,
        'notes': customer.notes or '',
    }


def list_customers(
    db: Session,
    *,
    branch_id: int | None,
    query: str | None = None,
    risk_level: str | None = None,
    today: date,
) -> list[dict]:
    stmt = select(Customer).where(Customer.status == RecordStatus.ACTIVE.value).order_by(Customer.created_at.desc())
    if branch_id:
        stmt = stmt.where(Customer.branch_id == branch_id)
    if query and query.strip():
        term = f'%{query.strip().lower()}%'
        stmt = stmt.where(
            or_(
                func.lower(Customer.name).like(term),
                Customer.phone.like(term),
                func.lower(Customer.email).like(term),
                Customer.id_card.like(term),
            )
        )
    customers = db.execute(stmt).scalars().all()
    records = _load_contract_records(db, [c.id for c in customers])

    views = [customer_view(c, summarize_contracts(records.get(c.id, []), today=today)) for c in customers]
    if risk_level:
        views = [view for view in views if view['risk_level'] == risk_level]
    return views


def get_customer_detail(db: Session, *, customer_id: int, today: date) -> dict:
    customer = _get_customer(db, customer_id)
    records = _load_contract_records(db, [customer.id])
    return customer_view(customer, summarize_contracts(records.get(customer.id, []), today=today))


def create_customer(
    db: Session,
    *,
    branch_id: int,
    name: str,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
    id_card: str | None = None,
    occupation: str | None = None,
    monthly_income: Decimal | None = None,
    customer_type: str = 'individual',
    notes: str | None = None,
) -> Customer:
    clean_name = (name or '').strip()
    if not clean_name:
        raise ValueError('Customer name is required')
    if monthly_income is not None and monthly_income < 0:
        raise ValueError('Monthly income cannot be negative')

    customer = Customer(
        branch_id=branch_id,
        customer_code=_next_customer_code(db),
        type=customer_type,
        name=clean_name,
        phone=phone,
        email=email,
        address=address,
        id_card=id_card,
        occupation=occupation,
        monthly_income=monthly_income,
        credit_score=base_credit_score(monthly_income, occupation),
        notes=notes,
        status=RecordStatus.ACTIVE.value,
    )
    db.add(customer)
    db.flush()
    logger.info('Created customer %s (%s)', customer.customer_code, customer.id)
    return customer


def update_customer(db: Session, *, customer_id: int, changes: dict) -> Customer:
    customer = _get_customer(db, customer_id)
    for field_name in UPDATABLE_FIELDS:
        value = changes.get(field_name)
        if value:
            setattr(customer, field_name, value)
    if changes.get('monthly_income') is not None:
        if changes['monthly_income'] < 0:
            raise ValueError('Monthly income cannot be negative')
        customer.monthly_income = changes['monthly_income']
    db.flush()
    return customer


def deactivate_customer(db: Session, *, customer_id: int) -> None:
    customer = _get_customer(db, customer_id)
    customer.status = RecordStatus.INACTIVE.value
    db.flush()


def recalculate_customer_credit_score(db: Session, *, customer_id: int, today: date) -> int:
    customer = _get_customer(db, customer_id)
    records = _load_contract_records(db, [customer.id])
    history = summarize_contracts(records.get(customer.id, []), today=today)
    score = recalculate_credit_score(customer.monthly_income, customer.occupation, history)
    if score != customer.credit_score:
        logger.info('Credit score for customer %s changed %s -> %s', customer.id, customer.credit_score, score)
    customer.credit_score = score
    db.flush()
    return score


def customer_stats(db: Session, *, branch_id: int | None, today: date) -> dict:
    views = list_customers(db, branch_id=branch_id, today=today)
    total = len(views)
    return {
        'total': total,
        'active': sum(1 for v in views if v['active_contracts'] > 0),
        'overdue': sum(1 for v in views if v['overdue_amount'] > 0),
        'high_risk': sum(1 for v in views if v['risk_level'] == 'high'),
        'average_credit_score': (sum(v['credit_score'] for v in views) / total) if total else 0,
        'total_financed': sum((v['total_financed'] for v in views), Decimal('0')),
        'total_overdue': sum((v['overdue_amount'] for v in views), Decimal('0')),
    }
