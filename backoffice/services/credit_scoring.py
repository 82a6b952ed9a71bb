"""Credit score and risk level heuristics for installment customers.

The score is a lookup-table sum: a base of 500, income and occupation bonuses,
and (when contract history exists) payment-punctuality and overdue adjustments.
Every result is clamped to the 300-850 band.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

BASE_SCORE = 500
MIN_SCORE = 300
MAX_SCORE = 850

# Trading and freelance income is treated as unstable.
HIGH_RISK_OCCUPATIONS = frozenset({'ค้าขาย', 'อิสระ'})

INCOME_BRACKETS: tuple[tuple[Decimal, int], ...] = (
    (Decimal('50000'), 150),
    (Decimal('30000'), 100),
    (Decimal('20000'), 50),
)

RISK_LOW = 'low'
RISK_MEDIUM = 'medium'
RISK_HIGH = 'high'

UNPAID_STATUSES = frozenset({'pending', 'overdue'})


@dataclass(frozen=True)
class PaymentRecord:
    due_date: date
    amount: Decimal
    status: str
    paid_date: date | None = None


@dataclass(frozen=True)
class ContractRecord:
    status: str
    total_amount: Decimal
    total_paid: Decimal
    payments: tuple[PaymentRecord, ...] = ()


@dataclass
class CreditHistory:
    total_contracts: int = 0
    active_contracts: int = 0
    total_financed: Decimal = Decimal('0')
    total_paid: Decimal = Decimal('0')
    overdue_amount: Decimal = Decimal('0')
    last_payment_date: date | None = None
    payment_count: int = 0
    paid_on_time: int = 0
    risk_level: str = RISK_LOW
    contract_statuses: list[str] = field(default_factory=list)

    @property
    def on_time_ratio(self) -> float | None:
        if self.payment_count == 0:
            return None
        return self.paid_on_time / self.payment_count


def clamp_score(score: int) -> int:
    return min(MAX_SCORE, max(MIN_SCORE, score))


def _income_bonus(monthly_income: Decimal | None) -> int:
    if not monthly_income:
        return 0
    for threshold, bonus in INCOME_BRACKETS:
        if monthly_income >= threshold:
            return bonus
    return 0


def _occupation_bonus(occupation: str | None) -> int:
    occupation = (occupation or '').strip()
    if occupation and occupation not in HIGH_RISK_OCCUPATIONS:
        return 50
    return 0


def base_credit_score(monthly_income: Decimal | None, occupation: str | None) -> int:
    return clamp_score(BASE_SCORE + _income_bonus(monthly_income) + _occupation_bonus(occupation))


def _overdue_ratio(overdue_amount: Decimal, total_financed: Decimal) -> float:
    if overdue_amount <= 0 or total_financed <= 0:
        return 0.0
    return float(overdue_amount / total_financed)


def risk_level_for(overdue_amount: Decimal, total_financed: Decimal) -> str:
    ratio = _overdue_ratio(overdue_amount, total_financed)
    if ratio > 0.3:
        return RISK_HIGH
    if ratio > 0.1:
        return RISK_MEDIUM
    return RISK_LOW


def summarize_contracts(contracts: list[ContractRecord], *, today: date) -> CreditHistory:
    history = CreditHistory()
    for contract in contracts:
        history.total_contracts += 1
        history.contract_statuses.append(contract.status)
        if contract.status == 'active':
            history.active_contracts += 1
        history.total_financed += contract.total_amount
        history.total_paid += contract.total_paid

        for payment in contract.payments:
            history.payment_count += 1
            if payment.status in UNPAID_STATUSES and payment.due_date < today:
                history.overdue_amount += payment.amount
            if payment.status == 'paid' and payment.paid_date is not None:
                if payment.paid_date <= payment.due_date:
                    history.paid_on_time += 1
                if history.last_payment_date is None or payment.paid_date > history.last_payment_date:
                    history.last_payment_date = payment.paid_date

    history.risk_level = risk_level_for(history.overdue_amount, history.total_financed)
    return history


def recalculate_credit_score(
    monthly_income: Decimal | None,
    occupation: str | None,
    history: CreditHistory,
) -> int:
    score = BASE_SCORE + _income_bonus(monthly_income) + _occupation_bonus(occupation)

    ratio = history.on_time_ratio
    if ratio is not None:
        if ratio >= 0.95:
            score += 100
        elif ratio >= 0.85:
            score += 50
        elif ratio < 0.7:
            score -= 100

    overdue = _overdue_ratio(history.overdue_amount, history.total_financed)
    if overdue > 0.3:
        score -= 150
    elif overdue > 0.1:
        score -= 75

    return clamp_score(score)
