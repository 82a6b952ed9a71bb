from __future__ import annotations

import unittest
from datetime import date, timedelta
from decimal import Decimal

from db_fixtures import memory_session_factory, seed_branch, seed_customer, seed_employee, seed_product

from backoffice.models import ClaimPriority, ClaimStatus
from backoffice.services.claim_service import (
    add_comment,
    claim_timeline,
    claim_view,
    create_claim,
    high_priority_claims,
    is_overdue,
    list_claims,
    overdue_claims,
    pending_claims,
    resolve_claim,
    update_claim,
    warranty_status,
)

TODAY = date(2024, 6, 10)


class WarrantyTests(unittest.TestCase):
    def test_within_and_past_warranty(self) -> None:
        status = warranty_status(date(2024, 1, 31), 12, today=TODAY)
        self.assertTrue(status.under_warranty)
        self.assertEqual(status.warranty_end_date, date(2025, 1, 31))
        self.assertEqual(status.remaining_days, 235)

        expired = warranty_status(date(2022, 1, 1), 12, today=TODAY)
        self.assertFalse(expired.under_warranty)
        self.assertEqual(expired.remaining_days, 0)


class ClaimServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        self.branch, _, _ = seed_branch(self.db)
        self.customer = seed_customer(self.db, branch_id=self.branch.id)
        self.product = seed_product(self.db)
        self.employee = seed_employee(self.db, branch_id=self.branch.id)

    def tearDown(self) -> None:
        self.db.close()

    def _claim(self, **overrides):
        values = {
            'branch_id': self.branch.id,
            'customer_id': self.customer.id,
            'product_id': self.product.id,
            'description': 'Torn seat cushion',
            'actor_user_id': None,
            'today': TODAY,
        }
        values.update(overrides)
        return create_claim(self.db, **values)

    def test_create_claim_numbers_and_logs(self) -> None:
        claim = self._claim(priority='high')
        self.assertEqual(claim.claim_number, 'CLM-2024-001')
        self.assertEqual(claim.status, ClaimStatus.SUBMITTED)
        self.assertEqual(claim.priority, ClaimPriority.HIGH)
        self.assertEqual([e.action for e in claim_timeline(self.db, claim_id=claim.id)], ['created'])

        self.assertEqual(self._claim().claim_number, 'CLM-2024-002')

    def test_create_claim_validation(self) -> None:
        with self.assertRaisesRegex(ValueError, 'description'):
            self._claim(description='   ')
        with self.assertRaisesRegex(ValueError, 'not found'):
            self._claim(customer_id=9999)
        with self.assertRaisesRegex(ValueError, 'not found'):
            self._claim(product_id=9999)
        with self.assertRaisesRegex(ValueError, 'priority'):
            self._claim(priority='whenever')

    def test_update_records_status_and_assignment(self) -> None:
        claim = self._claim()
        update_claim(
            self.db,
            claim_id=claim.id,
            status='in_progress',
            assigned_to_employee_id=self.employee.id,
            estimated_cost=Decimal('800'),
            actor_user_id=None,
        )
        self.assertEqual(claim.status, ClaimStatus.IN_PROGRESS)
        self.assertEqual(claim.assigned_to_employee_id, self.employee.id)
        self.assertEqual(claim.estimated_cost, Decimal('800'))
        actions = [e.action for e in claim_timeline(self.db, claim_id=claim.id)]
        self.assertEqual(actions, ['created', 'status_changed', 'assigned'])

        with self.assertRaisesRegex(ValueError, 'Employee'):
            update_claim(self.db, claim_id=claim.id, assigned_to_employee_id=9999, actor_user_id=None)
        with self.assertRaisesRegex(ValueError, 'status'):
            update_claim(self.db, claim_id=claim.id, status='lost', actor_user_id=None)

    def test_resolve_closes_claim(self) -> None:
        claim = self._claim()
        with self.assertRaisesRegex(ValueError, 'Resolution'):
            resolve_claim(self.db, claim_id=claim.id, resolution=' ', actor_user_id=None)

        resolve_claim(self.db, claim_id=claim.id, resolution='Cushion replaced', actual_cost=Decimal('650'), actor_user_id=None)
        self.assertEqual(claim.status, ClaimStatus.COMPLETED)
        self.assertEqual(claim.actual_cost, Decimal('650'))
        self.assertIsNotNone(claim.completed_at)

        with self.assertRaisesRegex(ValueError, 'already completed'):
            resolve_claim(self.db, claim_id=claim.id, resolution='Again', actor_user_id=None)
        with self.assertRaisesRegex(ValueError, 'already completed'):
            update_claim(self.db, claim_id=claim.id, status='in_progress', actor_user_id=None)

    def test_comments(self) -> None:
        claim = self._claim()
        with self.assertRaises(ValueError):
            add_comment(self.db, claim_id=claim.id, comment='', actor_user_id=None)
        event = add_comment(self.db, claim_id=claim.id, comment='Called customer', actor_user_id=None)
        self.assertEqual(event.action, 'comment_added')
        with self.assertRaisesRegex(ValueError, 'Claim not found'):
            add_comment(self.db, claim_id=9999, comment='x', actor_user_id=None)

    def test_overdue_depends_on_priority(self) -> None:
        urgent = self._claim(priority='urgent', today=TODAY - timedelta(days=2))
        low = self._claim(priority='low', today=TODAY - timedelta(days=10))
        self.assertTrue(is_overdue(urgent, today=TODAY))
        self.assertFalse(is_overdue(low, today=TODAY))

        claims = list_claims(self.db, branch_id=self.branch.id)
        self.assertEqual(overdue_claims(claims, today=TODAY), [urgent])
        self.assertEqual(high_priority_claims(claims), [urgent])
        self.assertEqual(len(pending_claims(claims)), 2)
        self.assertTrue(claim_view(urgent, today=TODAY)['overdue'])

        resolve_claim(self.db, claim_id=urgent.id, resolution='Fixed', actor_user_id=None)
        self.assertFalse(is_overdue(urgent, today=TODAY))

    def test_list_filters(self) -> None:
        self._claim(description='Broken leg on table')
        self._claim(description='Scratched door', priority='high')
        self.assertEqual(len(list_claims(self.db, branch_id=None, query='LEG')), 1)
        self.assertEqual(len(list_claims(self.db, branch_id=None, priority='high')), 1)
        self.assertEqual(len(list_claims(self.db, branch_id=None, status='submitted')), 2)
        self.assertEqual(list_claims(self.db, branch_id=None, customer_id=9999), [])


if __name__ == '__main__':
    unittest.main()
