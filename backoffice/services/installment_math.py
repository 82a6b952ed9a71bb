from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal('0.01')
ZERO = Decimal('0')

MIN_FINANCED_AMOUNT = Decimal('1000')
INCOME_MULTIPLIER_CAP = 20
GUARANTOR_AMOUNT_THRESHOLD = Decimal('100000')
GUARANTOR_MONTHS_THRESHOLD = 24
LOW_INCOME_THRESHOLD = Decimal('15000')
MEDIUM_INCOME_THRESHOLD = Decimal('25000')
DEFAULT_LATE_FEE_RATE = Decimal('0.01')
LATE_FEE_CAP_RATE = Decimal('0.10')
DEFAULTED_OVERDUE_COUNT = 3


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def monthly_payment(principal: Decimal, annual_rate_percent: Decimal, months: int) -> Decimal:
    if months <= 0:
        raise ValueError('Installment months must be positive')
    if annual_rate_percent == 0:
        return round_money(principal / months)
    rate = annual_rate_percent / Decimal('100') / Decimal('12')
    growth = (1 + rate) ** months
    return round_money(principal * (rate * growth) / (growth - 1))


def total_interest(principal: Decimal, payment: Decimal, months: int) -> Decimal:
    return max(ZERO, round_money(payment * months - principal))


def remaining_balance(principal: Decimal, payment: Decimal, annual_rate_percent: Decimal, payments_made: int) -> Decimal:
    if annual_rate_percent == 0:
        return max(ZERO, round_money(principal - payment * payments_made))
    rate = annual_rate_percent / Decimal('100') / Decimal('12')
    growth = (1 + rate) ** payments_made
    remaining = principal * growth - payment * ((growth - 1) / rate)
    return max(ZERO, round_money(remaining))


def late_fee(amount: Decimal, days_late: int, rate: Decimal = DEFAULT_LATE_FEE_RATE) -> Decimal:
    if days_late <= 0:
        return ZERO
    return round_money(min(amount * rate * days_late, amount * LATE_FEE_CAP_RATE))


def payment_progress(total_paid: Decimal, total_payable: Decimal) -> float:
    if total_payable <= 0:
        return 0.0
    return min(100.0, max(0.0, float(total_paid / total_payable * 100)))


@dataclass(frozen=True)
class ContractTerms:
    total_amount: Decimal
    down_payment: Decimal
    financed_amount: Decimal
    monthly_payment: Decimal
    total_interest: Decimal
    processing_fee: Decimal
    total_payable: Decimal
    months: int


def compute_contract_terms(
    total_amount: Decimal,
    *,
    down_payment_percent: Decimal,
    annual_rate_percent: Decimal,
    months: int,
    processing_fee: Decimal = ZERO,
) -> ContractTerms:
    if total_amount <= 0:
        raise ValueError('Contract amount must be positive')
    down = round_money(total_amount * down_payment_percent / Decimal('100'))
    financed = total_amount - down
    payment = monthly_payment(financed, annual_rate_percent, months)
    interest = total_interest(financed, payment, months)
    return ContractTerms(
        total_amount=total_amount,
        down_payment=down,
        financed_amount=financed,
        monthly_payment=payment,
        total_interest=interest,
        processing_fee=processing_fee,
        total_payable=financed + interest + processing_fee,
        months=months,
    )


def build_payment_schedule(terms: ContractTerms, first_payment_date: date) -> list[tuple[int, date, Decimal]]:
    """Installment number, due date and amount for every month of the contract.

    The processing fee rides on the first installment and the last one absorbs
    rounding, so the amounts always sum to ``total_payable``.
    """
    schedule: list[tuple[int, date, Decimal]] = []
    allocated = ZERO
    for number in range(1, terms.months + 1):
        amount = terms.monthly_payment
        if number == 1:
            amount += terms.processing_fee
        if number == terms.months:
            amount = terms.total_payable - allocated
        schedule.append((number, add_months(first_payment_date, number - 1), amount))
        allocated += amount
    return schedule


@dataclass
class EligibilityResult:
    eligible: bool
    risk_level: str
    requires_guarantor: bool
    max_loan_amount: Decimal
    reasons: list[str] = field(default_factory=list)
    recommended_plans: list[str] = field(default_factory=list)


def check_eligibility(
    *,
    name: str | None,
    id_card: str | None,
    phone: str | None,
    address: str | None,
    occupation: str | None,
    monthly_income: Decimal | None,
    amount: Decimal,
) -> EligibilityResult:
    reasons: list[str] = []
    for label, value in (
        ('name', name),
        ('id card', id_card),
        ('phone', phone),
        ('address', address),
        ('occupation', occupation),
    ):
        if not (value or '').strip():
            reasons.append(f'Customer {label} is required')

    income = monthly_income or ZERO
    if income <= 0:
        reasons.append('Monthly income is required')

    risk = 'low'
    max_loan = income * INCOME_MULTIPLIER_CAP
    if income > 0:
        if income < LOW_INCOME_THRESHOLD:
            risk = 'high'
        elif income < MEDIUM_INCOME_THRESHOLD:
            risk = 'medium'

        # Rough monthly burden at 5 % of the amount.
        debt_to_income = amount * Decimal('0.05') / income
        if debt_to_income > Decimal('0.4'):
            reasons.append('Debt-to-income ratio exceeds 40%')
            risk = 'high'
        elif debt_to_income > Decimal('0.3') and risk == 'low':
            risk = 'medium'

    if amount < MIN_FINANCED_AMOUNT:
        reasons.append(f'Minimum amount is {MIN_FINANCED_AMOUNT:,}')
    if amount > max_loan:
        reasons.append(f'Amount exceeds maximum of {max_loan:,}')

    needs_guarantor = amount > GUARANTOR_AMOUNT_THRESHOLD or risk == 'high' or income < LOW_INCOME_THRESHOLD

    plans: list[str] = []
    if risk == 'low':
        plans.extend(['PLAN003', 'PLAN006', 'PLAN012'])
        if amount > Decimal('50000'):
            plans.extend(['PLAN024', 'PLAN036'])
    elif risk == 'medium':
        plans.extend(['PLAN003', 'PLAN006'])
        if needs_guarantor:
            plans.append('PLAN024')
    elif needs_guarantor:
        plans.append('PLAN024')

    return EligibilityResult(
        eligible=not reasons,
        risk_level=risk,
        requires_guarantor=needs_guarantor,
        max_loan_amount=max_loan,
        reasons=reasons,
        recommended_plans=plans,
    )


def requires_guarantor(
    *,
    plan_requires_guarantor: bool,
    plan_months: int,
    down_payment_percent: Decimal,
    annual_rate_percent: Decimal,
    monthly_income: Decimal | None,
    amount: Decimal,
) -> bool:
    if plan_requires_guarantor or amount > GUARANTOR_AMOUNT_THRESHOLD or plan_months > GUARANTOR_MONTHS_THRESHOLD:
        return True
    if monthly_income:
        financed = amount - amount * down_payment_percent / Decimal('100')
        payment = monthly_payment(financed, annual_rate_percent, plan_months)
        if monthly_income < payment * 3:
            return True
    return False


def payment_status(
    *,
    due_date: date,
    amount: Decimal,
    paid_amount: Decimal,
    today: date,
) -> str:
    if paid_amount >= amount and amount > 0:
        return 'paid'
    if paid_amount > 0:
        return 'partial'
    if today > due_date:
        return 'overdue'
    return 'pending'


def contract_status(
    *,
    current_status: str,
    total_paid: Decimal,
    total_payable: Decimal,
    remaining_installments: int,
    overdue_count: int,
    paid_installments: int,
) -> str:
    if current_status == 'cancelled':
        return 'cancelled'
    if remaining_installments <= 0 or total_paid >= total_payable:
        return 'completed'
    if overdue_count > DEFAULTED_OVERDUE_COUNT:
        return 'defaulted'
    if paid_installments > 0 or total_paid > 0:
        return 'active'
    return 'pending'
