from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.models import (
    ContractStatus,
    Customer,
    InstallmentContract,
    InstallmentPayment,
    InstallmentPlan,
    PaymentStatus,
)
from backoffice.services import installment_math
from backoffice.services.installment_math import ZERO, add_months, round_money

logger = logging.getLogger(__name__)

PAYMENT_METHODS = {'cash', 'transfer', 'card', 'cheque'}


def list_plans(db: Session, *, active_only: bool = True) -> list[InstallmentPlan]:
    stmt = select(InstallmentPlan).order_by(InstallmentPlan.months.asc(), InstallmentPlan.plan_number.asc())
    if active_only:
        stmt = stmt.where(InstallmentPlan.active.is_(True))
    return list(db.execute(stmt).scalars().all())


def create_plan(
    db: Session,
    *,
    plan_number: str,
    name: str,
    months: int,
    interest_rate: Decimal,
    down_payment_percent: Decimal = ZERO,
    processing_fee: Decimal = ZERO,
    requires_guarantor: bool = False,
) -> InstallmentPlan:
    plan_number = (plan_number or '').strip().upper()
    if not plan_number or not (name or '').strip():
        raise ValueError('Plan number and name are required')
    if months <= 0:
        raise ValueError('Plan months must be positive')
    if interest_rate < 0 or not (ZERO <= down_payment_percent < Decimal('100')):
        raise ValueError('Invalid plan rates')
    existing = db.execute(select(InstallmentPlan.id).where(InstallmentPlan.plan_number == plan_number)).first()
    if existing:
        raise ValueError('Plan number already exists')

    plan = InstallmentPlan(
        plan_number=plan_number,
        name=name.strip(),
        months=months,
        interest_rate=interest_rate,
        down_payment_percent=down_payment_percent,
        processing_fee=processing_fee,
        requires_guarantor=requires_guarantor,
        active=True,
    )
    db.add(plan)
    db.flush()
    return plan


def _get_plan(db: Session, plan_id: int) -> InstallmentPlan:
    plan = db.execute(select(InstallmentPlan).where(InstallmentPlan.id == plan_id)).scalar_one_or_none()
    if not plan or not plan.active:
        raise ValueError('Installment plan not found')
    return plan


def _get_contract(db: Session, contract_id: int) -> InstallmentContract:
    contract = db.execute(
        select(InstallmentContract).where(InstallmentContract.id == contract_id)
    ).scalar_one_or_none()
    if not contract:
        raise ValueError('Contract not found')
    return contract


def check_customer_eligibility(db: Session, *, customer_id: int, amount: Decimal) -> installment_math.EligibilityResult:
    customer = db.execute(select(Customer).where(Customer.id == customer_id)).scalar_one_or_none()
    if not customer:
        raise ValueError('Customer not found')
    return installment_math.check_eligibility(
        name=customer.name,
        id_card=customer.id_card,
        phone=customer.phone,
        address=customer.address,
        occupation=customer.occupation,
        monthly_income=customer.monthly_income,
        amount=amount,
    )


def _next_contract_number(db: Session, contract_date: date) -> str:
    prefix = f'IC{contract_date:%Y%m}'
    count = db.execute(
        select(func.count(InstallmentContract.id)).where(InstallmentContract.contract_number.like(f'{prefix}%'))
    ).scalar_one()
    return f'{prefix}{count + 1:04d}'


def create_contract(
    db: Session,
    *,
    branch_id: int,
    customer_id: int,
    plan_id: int,
    total_amount: Decimal,
    contract_date: date,
    guarantor_name: str | None = None,
    guarantor_phone: str | None = None,
    sale_id: int | None = None,
    notes: str | None = None,
    created_by_user_id: int | None = None,
) -> InstallmentContract:
    plan = _get_plan(db, plan_id)
    customer = db.execute(select(Customer).where(Customer.id == customer_id)).scalar_one_or_none()
    if not customer or customer.status != 'active':
        raise ValueError('Customer not found')

    needs_guarantor = installment_math.requires_guarantor(
        plan_requires_guarantor=plan.requires_guarantor,
        plan_months=plan.months,
        down_payment_percent=plan.down_payment_percent,
        annual_rate_percent=plan.interest_rate,
        monthly_income=customer.monthly_income,
        amount=total_amount,
    )
    if needs_guarantor and not (guarantor_name or '').strip():
        raise ValueError('A guarantor is required for this contract')

    terms = installment_math.compute_contract_terms(
        total_amount,
        down_payment_percent=plan.down_payment_percent,
        annual_rate_percent=plan.interest_rate,
        months=plan.months,
        processing_fee=plan.processing_fee,
    )
    first_payment_date = add_months(contract_date, 1)

    contract = InstallmentContract(
        contract_number=_next_contract_number(db, contract_date),
        branch_id=branch_id,
        customer_id=customer.id,
        plan_id=plan.id,
        guarantor_name=guarantor_name,
        guarantor_phone=guarantor_phone,
        sale_id=sale_id,
        total_amount=terms.total_amount,
        down_payment=terms.down_payment,
        financed_amount=terms.financed_amount,
        monthly_payment=terms.monthly_payment,
        total_interest=terms.total_interest,
        processing_fee=terms.processing_fee,
        total_payable=terms.total_payable,
        contract_date=contract_date,
        first_payment_date=first_payment_date,
        last_payment_date=add_months(contract_date, plan.months),
        paid_installments=0,
        remaining_installments=plan.months,
        total_paid=ZERO,
        remaining_balance=terms.total_payable,
        status=ContractStatus.PENDING,
        notes=notes,
        created_by_user_id=created_by_user_id,
    )
    db.add(contract)
    db.flush()

    for number, due_date, amount in installment_math.build_payment_schedule(terms, first_payment_date):
        db.add(
            InstallmentPayment(
                contract_id=contract.id,
                installment_number=number,
                due_date=due_date,
                amount=amount,
                status=PaymentStatus.PENDING,
            )
        )
    db.flush()
    logger.info(
        'Created contract %s for customer %s: %s over %s months',
        contract.contract_number,
        customer.id,
        terms.total_payable,
        plan.months,
    )
    return contract


def list_payments(db: Session, *, contract_id: int) -> list[InstallmentPayment]:
    return list(
        db.execute(
            select(InstallmentPayment)
            .where(InstallmentPayment.contract_id == contract_id)
            .order_by(InstallmentPayment.installment_number.asc())
        )
        .scalars()
        .all()
    )


def late_fees_collected(db: Session, *, contract_id: int) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(InstallmentPayment.late_fee_paid), 0)).where(
            InstallmentPayment.contract_id == contract_id
        )
    ).scalar_one()
    return round_money(Decimal(str(total)))


def _refresh_contract_totals(contract: InstallmentContract, payments: list[InstallmentPayment], *, today: date) -> None:
    months = len(payments)
    total_paid = sum((p.paid_amount for p in payments), ZERO)
    paid_installments = sum(1 for p in payments if p.status == PaymentStatus.PAID)
    overdue_count = sum(
        1 for p in payments if p.status != PaymentStatus.PAID and p.status != PaymentStatus.CANCELLED and p.due_date < today
    )

    contract.total_paid = total_paid
    contract.paid_installments = paid_installments
    contract.remaining_installments = months - paid_installments
    contract.remaining_balance = max(ZERO, contract.total_payable - total_paid)
    contract.status = ContractStatus(
        installment_math.contract_status(
            current_status=contract.status.value,
            total_paid=total_paid,
            total_payable=contract.total_payable,
            remaining_installments=contract.remaining_installments,
            overdue_count=overdue_count,
            paid_installments=paid_installments,
        )
    )


def record_payment(
    db: Session,
    *,
    contract_id: int,
    amount: Decimal,
    paid_date: date,
    payment_method: str,
    receipt_number: str | None = None,
    processed_by_user_id: int | None = None,
) -> InstallmentContract:
    """Apply a payment to the oldest open installments of a contract.

    Late fees are charged on each installment the payment touches after its due
    date; the unpaid part of the fee is collected first, the remainder settles the
    installment.
    """
    contract = _get_contract(db, contract_id)
    if contract.status in {ContractStatus.CANCELLED, ContractStatus.COMPLETED}:
        raise ValueError(f'Cannot record payment on a {contract.status.value} contract')
    if amount <= 0:
        raise ValueError('Payment amount must be positive')
    if payment_method not in PAYMENT_METHODS:
        raise ValueError('Invalid payment method')

    payments = list_payments(db, contract_id=contract.id)
    remaining = round_money(amount)
    for payment in payments:
        if remaining <= 0:
            break
        if payment.status in {PaymentStatus.PAID, PaymentStatus.CANCELLED}:
            continue

        if paid_date > payment.due_date and payment.late_fee == 0:
            payment.late_fee = installment_math.late_fee(payment.amount, (paid_date - payment.due_date).days)
        fee_paid = min(remaining, payment.late_fee - payment.late_fee_paid)
        payment.late_fee_paid += fee_paid
        remaining -= fee_paid

        outstanding = payment.amount - payment.paid_amount
        applied = min(remaining, outstanding)
        payment.paid_amount += applied
        remaining -= applied
        payment.paid_date = paid_date
        payment.payment_method = payment_method
        payment.receipt_number = receipt_number
        payment.processed_by_user_id = processed_by_user_id
        payment.status = PaymentStatus(
            installment_math.payment_status(
                due_date=payment.due_date,
                amount=payment.amount,
                paid_amount=payment.paid_amount,
                today=paid_date,
            )
        )

    if remaining > 0:
        raise ValueError('Payment exceeds the outstanding balance')

    _refresh_contract_totals(contract, payments, today=paid_date)
    db.flush()
    logger.info('Recorded payment %s on contract %s', amount, contract.contract_number)
    return contract


def cancel_contract(db: Session, *, contract_id: int, reason: str | None = None) -> InstallmentContract:
    contract = _get_contract(db, contract_id)
    if contract.status == ContractStatus.COMPLETED:
        raise ValueError('Completed contracts cannot be cancelled')
    contract.status = ContractStatus.CANCELLED
    for payment in list_payments(db, contract_id=contract.id):
        if payment.status in {PaymentStatus.PENDING, PaymentStatus.OVERDUE}:
            payment.status = PaymentStatus.CANCELLED
    if reason:
        contract.notes = f'{contract.notes}\n{reason}' if contract.notes else reason
    db.flush()
    return contract


def mark_overdue_payments(db: Session, *, today: date) -> int:
    payments = db.execute(
        select(InstallmentPayment).where(
            InstallmentPayment.status == PaymentStatus.PENDING,
            InstallmentPayment.due_date < today,
        )
    ).scalars().all()
    for payment in payments:
        payment.status = PaymentStatus.OVERDUE
    if payments:
        logger.info('Marked %s installment payments overdue', len(payments))
    db.flush()
    return len(payments)


def contract_view(contract: InstallmentContract, payments: list[InstallmentPayment] | None = None) -> dict:
    view = {
        'id': contract.id,
        'contract_number': contract.contract_number,
        'branch_id': contract.branch_id,
        'customer_id': contract.customer_id,
        'plan_id': contract.plan_id,
        'status': contract.status.value,
        'total_amount': contract.total_amount,
        'down_payment': contract.down_payment,
        'financed_amount': contract.financed_amount,
        'monthly_payment': contract.monthly_payment,
        'total_interest': contract.total_interest,
        'processing_fee': contract.processing_fee,
        'total_payable': contract.total_payable,
        'total_paid': contract.total_paid,
        'remaining_balance': contract.remaining_balance,
        'paid_installments': contract.paid_installments,
        'remaining_installments': contract.remaining_installments,
        'contract_date': contract.contract_date,
        'first_payment_date': contract.first_payment_date,
        'last_payment_date': contract.last_payment_date,
        'progress': installment_math.payment_progress(contract.total_paid, contract.total_payable),
    }
    if payments is not None:
        view['payments'] = [
            {
                'installment_number': p.installment_number,
                'due_date': p.due_date,
                'amount': p.amount,
                'paid_amount': p.paid_amount,
                'paid_date': p.paid_date,
                'late_fee': p.late_fee,
                'late_fee_paid': p.late_fee_paid,
                'status': p.status.value,
            }
            for p in payments
        ]
    return view


def list_contracts(
    db: Session,
    *,
    branch_id: int | None,
    customer_id: int | None = None,
    status: str | None = None,
) -> list[InstallmentContract]:
    stmt = select(InstallmentContract).order_by(InstallmentContract.created_at.desc(), InstallmentContract.id.desc())
    if branch_id:
        stmt = stmt.where(InstallmentContract.branch_id == branch_id)
    if customer_id:
        stmt = stmt.where(InstallmentContract.customer_id == customer_id)
    if status:
        try:
            stmt = stmt.where(InstallmentContract.status == ContractStatus(status))
        except ValueError as exc:
            raise ValueError('Invalid contract status') from exc
    return list(db.execute(stmt).scalars().all())


def get_contract_detail(db: Session, *, contract_id: int) -> dict:
    contract = _get_contract(db, contract_id)
    return contract_view(contract, list_payments(db, contract_id=contract.id))
