from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from db_fixtures import memory_session_factory, seed_branch, seed_product, seed_user

from backoffice.models import MovementType, SerialNumberStatus, TransferStatus
from backoffice.services.stock_service import (
    adjust_stock,
    list_movements,
    list_stock_levels,
    receive_goods,
    stock_status,
)
from backoffice.services.transfer_service import (
    cancel_transfer,
    confirm_transfer,
    dispatch_transfer,
    initiate_transfer,
    list_transfers,
    transfer_stats,
)

TODAY = date(2024, 3, 5)


class StockStatusTests(unittest.TestCase):
    def test_thresholds(self) -> None:
        self.assertEqual(stock_status(0, min_level=5), 'out')
        self.assertEqual(stock_status(-1, min_level=5), 'out')
        self.assertEqual(stock_status(3, min_level=5), 'critical')
        self.assertEqual(stock_status(4, min_level=5), 'low')
        self.assertEqual(stock_status(5, min_level=5), 'ok')


class StockServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        self.branch, self.main, self.spare = seed_branch(self.db)
        self.user = seed_user(self.db, branch_id=self.branch.id)
        self.product = seed_product(self.db, cost='5000', min_level=2)

    def tearDown(self) -> None:
        self.db.close()

    def _receive(self, *serials: str, warehouse_id: int | None = None):
        return receive_goods(
            self.db,
            product_id=self.product.id,
            warehouse_id=warehouse_id or self.main.id,
            serial_numbers=list(serials),
            reference_number='GR-1',
            performed_by_user_id=self.user.id,
        )

    def test_receive_goods_registers_serials_and_movements(self) -> None:
        created = self._receive('SN-1', ' SN-2 ')

        self.assertEqual([s.serial_number for s in created], ['SN-1', 'SN-2'])
        self.assertTrue(all(s.status == SerialNumberStatus.AVAILABLE for s in created))
        self.assertTrue(all(s.unit_cost == Decimal('5000') for s in created))

        levels = list_stock_levels(self.db, branch_id=self.branch.id)
        self.assertEqual(len(levels), 1)
        self.assertEqual(levels[0]['quantity'], 2)
        self.assertEqual(levels[0]['status'], 'critical')
        self.assertEqual(levels[0]['stock_value'], Decimal('10000'))

        movements = list_movements(self.db, branch_id=self.branch.id)
        self.assertEqual(len(movements), 2)
        self.assertTrue(all(m.movement_type == MovementType.RECEIVE for m in movements))

    def test_receive_rejects_duplicates(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Duplicate'):
            self._receive('SN-1', 'SN-1')
        self._receive('SN-1')
        with self.assertRaisesRegex(ValueError, 'already registered'):
            self._receive('SN-1')
        with self.assertRaises(ValueError):
            self._receive('  ')

    def test_adjustment_requires_reason_and_stock(self) -> None:
        self._receive('SN-1', 'SN-2', 'SN-3')
        with self.assertRaisesRegex(ValueError, 'reason'):
            adjust_stock(self.db, product_id=self.product.id, warehouse_id=self.main.id, quantity_change=-1, reason=' ')
        with self.assertRaisesRegex(ValueError, 'Insufficient'):
            adjust_stock(self.db, product_id=self.product.id, warehouse_id=self.main.id, quantity_change=-4, reason='Damaged')
        with self.assertRaises(ValueError):
            adjust_stock(self.db, product_id=self.product.id, warehouse_id=self.main.id, quantity_change=0, reason='Count')

        movement = adjust_stock(
            self.db, product_id=self.product.id, warehouse_id=self.main.id, quantity_change=-1, reason='Damaged'
        )
        self.assertEqual(movement.movement_type, MovementType.ADJUSTMENT)
        self.assertEqual(movement.notes, 'Damaged')
        self.assertEqual(list_stock_levels(self.db, branch_id=None)[0]['quantity'], 2)

    def test_low_only_filter(self) -> None:
        self._receive('SN-1')
        other = seed_product(self.db, code='BED-1', min_level=1)
        receive_goods(self.db, product_id=other.id, warehouse_id=self.main.id, serial_numbers=['B-1', 'B-2'])

        low = list_stock_levels(self.db, branch_id=self.branch.id, low_only=True)
        self.assertEqual([row['product_code'] for row in low], ['SOFA-1'])


class TransferServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        self.branch, self.main, self.spare = seed_branch(self.db)
        self.user = seed_user(self.db, branch_id=self.branch.id)
        self.product = seed_product(self.db)
        self.serials = receive_goods(
            self.db, product_id=self.product.id, warehouse_id=self.main.id, serial_numbers=['SN-1', 'SN-2', 'SN-3']
        )

    def tearDown(self) -> None:
        self.db.close()

    def _quantities(self) -> dict[int, int]:
        return {row['warehouse_id']: row['quantity'] for row in list_stock_levels(self.db, branch_id=None)}

    def _initiate(self, serial_ids: list[int] | None = None):
        return initiate_transfer(
            self.db,
            source_warehouse_id=self.main.id,
            target_warehouse_id=self.spare.id,
            serial_number_ids=serial_ids if serial_ids is not None else [self.serials[0].id, self.serials[1].id],
            initiated_by_user_id=self.user.id,
            notes='Showroom refill',
            today=TODAY,
        )

    def test_initiate_moves_units_out_of_source(self) -> None:
        transfer = self._initiate()

        self.assertEqual(transfer.transfer_number, 'TF2024030001')
        self.assertEqual(transfer.status, TransferStatus.PENDING)
        self.assertEqual(transfer.total_items, 2)
        self.assertEqual(self.serials[0].status, SerialNumberStatus.TRANSFERRED)
        self.assertEqual(self._quantities()[self.main.id], 1)

        second = self._initiate([self.serials[2].id])
        self.assertEqual(second.transfer_number, 'TF2024030002')

    def test_initiate_validation(self) -> None:
        with self.assertRaisesRegex(ValueError, 'differ'):
            initiate_transfer(
                self.db,
                source_warehouse_id=self.main.id,
                target_warehouse_id=self.main.id,
                serial_number_ids=[self.serials[0].id],
                initiated_by_user_id=None,
                today=TODAY,
            )
        with self.assertRaisesRegex(ValueError, 'At least one'):
            self._initiate([])
        self._initiate([self.serials[0].id])
        with self.assertRaisesRegex(ValueError, 'not available'):
            self._initiate([self.serials[0].id])

    def test_dispatch_then_confirm_lands_stock_in_target(self) -> None:
        transfer = self._initiate()
        dispatch_transfer(self.db, transfer_id=transfer.id)
        self.assertEqual(transfer.status, TransferStatus.IN_TRANSIT)
        with self.assertRaises(ValueError):
            dispatch_transfer(self.db, transfer_id=transfer.id)

        confirm_transfer(self.db, transfer_id=transfer.id, confirmed_by_user_id=self.user.id)

        self.assertEqual(transfer.status, TransferStatus.COMPLETED)
        self.assertIsNotNone(transfer.confirmed_at)
        self.assertEqual(self.serials[0].warehouse_id, self.spare.id)
        self.assertEqual(self.serials[0].status, SerialNumberStatus.AVAILABLE)
        self.assertEqual(self._quantities(), {self.main.id: 1, self.spare.id: 2})
        with self.assertRaises(ValueError):
            cancel_transfer(self.db, transfer_id=transfer.id, reason=None, cancelled_by_user_id=None)

    def test_cancel_returns_units_to_source(self) -> None:
        transfer = self._initiate()
        cancel_transfer(self.db, transfer_id=transfer.id, reason='Wrong branch', cancelled_by_user_id=self.user.id)

        self.assertEqual(transfer.status, TransferStatus.CANCELLED)
        self.assertIn('Cancelled: Wrong branch', transfer.notes)
        self.assertEqual(self.serials[0].status, SerialNumberStatus.AVAILABLE)
        self.assertEqual(self._quantities()[self.main.id], 3)
        returns = [m for m in list_movements(self.db, branch_id=None) if m.movement_type == MovementType.RETURN]
        self.assertEqual(len(returns), 2)
        with self.assertRaises(ValueError):
            confirm_transfer(self.db, transfer_id=transfer.id, confirmed_by_user_id=None)

    def test_listing_and_stats(self) -> None:
        first = self._initiate([self.serials[0].id])
        self._initiate([self.serials[1].id])
        cancel_transfer(self.db, transfer_id=first.id, reason=None, cancelled_by_user_id=None)

        stats = transfer_stats(self.db)
        self.assertEqual(stats['pending'], 1)
        self.assertEqual(stats['cancelled'], 1)
        self.assertEqual(stats['total'], 2)
        self.assertEqual(len(list_transfers(self.db, branch_id=self.branch.id, status='pending')), 1)
        with self.assertRaises(ValueError):
            list_transfers(self.db, branch_id=None, status='lost')


if __name__ == '__main__':
    unittest.main()
