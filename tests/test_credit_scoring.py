from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from backoffice.services.credit_scoring import (
    ContractRecord,
    CreditHistory,
    PaymentRecord,
    base_credit_score,
    recalculate_credit_score,
    risk_level_for,
    summarize_contracts,
)

TODAY = date(2024, 6, 1)


def _paid(due: date, paid: date, amount: str = '1000') -> PaymentRecord:
    return PaymentRecord(due_date=due, amount=Decimal(amount), status='paid', paid_date=paid)


class BaseScoreTests(unittest.TestCase):
    def test_income_brackets(self) -> None:
        self.assertEqual(base_credit_score(None, None), 500)
        self.assertEqual(base_credit_score(Decimal('15000'), None), 500)
        self.assertEqual(base_credit_score(Decimal('20000'), None), 550)
        self.assertEqual(base_credit_score(Decimal('30000'), None), 600)
        self.assertEqual(base_credit_score(Decimal('80000'), None), 650)

    def test_stable_occupation_adds_bonus(self) -> None:
        self.assertEqual(base_credit_score(Decimal('30000'), 'engineer'), 650)
        self.assertEqual(base_credit_score(Decimal('30000'), 'ค้าขาย'), 600)
        self.assertEqual(base_credit_score(Decimal('30000'), 'อิสระ'), 600)


class HistoryTests(unittest.TestCase):
    def test_summary_counts_overdue_pending_and_overdue_rows(self) -> None:
        contract = ContractRecord(
            status='active',
            total_amount=Decimal('10000'),
            total_paid=Decimal('1000'),
            payments=(
                _paid(date(2024, 3, 1), date(2024, 2, 28)),
                PaymentRecord(due_date=date(2024, 4, 1), amount=Decimal('1000'), status='overdue'),
                PaymentRecord(due_date=date(2024, 5, 1), amount=Decimal('1000'), status='pending'),
                PaymentRecord(due_date=date(2024, 7, 1), amount=Decimal('1000'), status='pending'),
            ),
        )
        history = summarize_contracts([contract], today=TODAY)
        self.assertEqual(history.total_contracts, 1)
        self.assertEqual(history.active_contracts, 1)
        self.assertEqual(history.overdue_amount, Decimal('2000'))
        self.assertEqual(history.last_payment_date, date(2024, 2, 28))
        self.assertEqual(history.paid_on_time, 1)
        self.assertEqual(history.risk_level, 'medium')

    def test_risk_level_thresholds(self) -> None:
        self.assertEqual(risk_level_for(Decimal('0'), Decimal('0')), 'low')
        self.assertEqual(risk_level_for(Decimal('1000'), Decimal('10000')), 'low')
        self.assertEqual(risk_level_for(Decimal('2000'), Decimal('10000')), 'medium')
        self.assertEqual(risk_level_for(Decimal('3500'), Decimal('10000')), 'high')


class RecalculateTests(unittest.TestCase):
    def test_punctual_payer_gets_bonus(self) -> None:
        history = CreditHistory(payment_count=20, paid_on_time=20, total_financed=Decimal('10000'))
        self.assertEqual(recalculate_credit_score(Decimal('30000'), 'engineer', history), 750)

    def test_late_payer_with_heavy_overdue_is_penalised(self) -> None:
        history = CreditHistory(
            payment_count=10,
            paid_on_time=5,
            total_financed=Decimal('10000'),
            overdue_amount=Decimal('4000'),
        )
        # 500 + 100 + 50 - 100 - 150
        self.assertEqual(recalculate_credit_score(Decimal('30000'), 'engineer', history), 400)

    def test_score_is_clamped(self) -> None:
        history = CreditHistory(payment_count=10, paid_on_time=0, total_financed=Decimal('100'), overdue_amount=Decimal('100'))
        self.assertEqual(recalculate_credit_score(None, None, history), 300)
        best = CreditHistory(payment_count=10, paid_on_time=10, total_financed=Decimal('100'))
        self.assertLessEqual(recalculate_credit_score(Decimal('900000'), 'doctor', best), 850)

    def test_no_history_matches_base_score(self) -> None:
        self.assertEqual(
            recalculate_credit_score(Decimal('20000'), 'nurse', CreditHistory()),
            base_credit_score(Decimal('20000'), 'nurse'),
        )


if __name__ == '__main__':
    unittest.main()
