from __future__ import annotations

import threading
import unittest
from datetime import date, time
from unittest import mock

from db_fixtures import file_session_factory, seed_branch, seed_customer, seed_employee, seed_product
from sqlalchemy.exc import OperationalError

from backoffice.services import dashboard_service
from backoffice.services.attendance_service import check_in
from backoffice.services.stock_service import adjust_stock

TODAY = date(2024, 7, 1)


def _replace_section(name: str, fetcher):
    sections = tuple((key, fetcher if key == name else original) for key, original in dashboard_service.SECTIONS)
    return mock.patch.object(dashboard_service, 'SECTIONS', sections)


class DashboardServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory, cleanup = file_session_factory()
        self.addCleanup(cleanup)
        with self.session_factory() as db:
            branch, main, _ = seed_branch(db)
            self.branch_id = branch.id
            seed_customer(db, branch_id=branch.id)
            seed_customer(db, branch_id=branch.id, code='C0002')
            clerk = seed_employee(db, branch_id=branch.id)
            seed_employee(db, branch_id=branch.id, code='EMP0002')
            check_in(db, employee_id=clerk.id, work_date=TODAY, at=time(8, 55))
            sofa = seed_product(db)
            seed_product(db, code='BED-1')
            adjust_stock(db, product_id=sofa.id, warehouse_id=main.id, quantity_change=2, reason='Count')
            db.commit()

    def _load(self, **kwargs):
        return dashboard_service.load_dashboard(
            branch_id=self.branch_id, today=TODAY, session_factory=self.session_factory, **kwargs
        )

    def test_sections_come_from_database(self) -> None:
        data = self._load()

        self.assertIsNone(data['error'])
        stats = data['stats']
        self.assertEqual(stats['customers']['total'], 2)
        self.assertEqual(stats['employees'], {'total': 2, 'active': 2, 'online_today': 1})
        self.assertEqual(stats['products']['total'], 2)
        self.assertEqual(stats['products']['low_stock'], 1)
        self.assertNotIn('movements_today', stats['products'])
        self.assertEqual(stats['inventory']['total_value'], 2 * dashboard_service.INVENTORY_VALUE_PER_PRODUCT)
        self.assertEqual(stats['inventory']['alerts'], 1)
        self.assertEqual(data['recent_sales'], [])
        self.assertEqual(data['low_stock_items'][0]['product_code'], 'SOFA-1')
        self.assertEqual(data['low_stock_items'][0]['status'], 'critical')
        self.assertEqual(data['low_stock_items'][0]['branch_name'], 'Branch HQ')

    def test_query_failure_uses_fallback_without_error(self) -> None:
        def broken(db, *, branch_id, today):
            raise OperationalError('SELECT 1', {}, Exception('no such table'))

        with _replace_section('customers', broken):
            data = self._load()

        self.assertEqual(data['stats']['customers'], dashboard_service.FALLBACKS['customers'])
        self.assertEqual(data['stats']['employees']['total'], 2)
        self.assertIsNone(data['error'])

    def test_unexpected_failure_reports_error(self) -> None:
        def offline(db, *, branch_id, today):
            raise RuntimeError('network unreachable')

        with _replace_section('employees', offline):
            data = self._load()

        self.assertEqual(data['stats']['employees'], dashboard_service.FALLBACKS['employees'])
        self.assertEqual(data['error'], dashboard_service.NETWORK_MESSAGE)

    def test_slow_section_times_out(self) -> None:
        release = threading.Event()
        self.addCleanup(release.set)

        def slow(db, *, branch_id, today):
            release.wait(5)
            return []

        with _replace_section('recent_sales', slow):
            data = self._load(timeout_seconds=0.2)

        self.assertEqual(data['error'], dashboard_service.TIMEOUT_MESSAGE)
        self.assertEqual(len(data['recent_sales']), 1)
        self.assertEqual(data['recent_sales'][0]['transaction_number'], 'TXN-001')
        self.assertIsNotNone(data['recent_sales'][0]['created_at'])
        self.assertEqual(data['stats']['customers']['total'], 2)

    def test_fallback_is_a_fresh_copy(self) -> None:
        first = dashboard_service.fallback('low_stock_items')
        first[0]['current_stock'] = 99
        self.assertEqual(dashboard_service.fallback('low_stock_items')[0]['current_stock'], 3)

    def test_error_message_mapping(self) -> None:
        self.assertEqual(dashboard_service.error_message_for(RuntimeError('Request timeout')), dashboard_service.TIMEOUT_MESSAGE)
        self.assertEqual(dashboard_service.error_message_for(RuntimeError('boom')), 'boom')
        self.assertEqual(dashboard_service.error_message_for(RuntimeError()), 'Failed to fetch dashboard data')


if __name__ == '__main__':
    unittest.main()
