from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest import mock

from db_fixtures import memory_session_factory, seed_branch, seed_customer, seed_plan, seed_product
from sqlalchemy import select

from backoffice.errors import AccountingIntegrationError
from backoffice.models import JournalEntry, JournalEntryStatus, RecoveryQueueItem, RecoveryQueueStatus
from backoffice.services import accounting_service, recovery_service
from backoffice.services.accounting_service import EntryLine
from backoffice.services.installment_service import create_contract, late_fees_collected, record_payment
from backoffice.services.sales_service import SaleLine, record_sale
from backoffice.services.stock_service import adjust_stock

TODAY = date(2024, 4, 2)


def _lines(view: dict) -> dict[str, tuple[Decimal, Decimal]]:
    return {line['account_code']: (line['debit'], line['credit']) for line in view['lines']}


class ChartOfAccountsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()

    def tearDown(self) -> None:
        self.db.close()

    def test_seed_is_idempotent(self) -> None:
        self.assertEqual(accounting_service.seed_chart_of_accounts(self.db), len(accounting_service.DEFAULT_ACCOUNTS))
        self.assertEqual(accounting_service.seed_chart_of_accounts(self.db), 0)
        codes = [a.code for a in accounting_service.list_accounts(self.db, account_type='revenue')]
        self.assertEqual(codes, ['4100', '4200', '4300'])

    def test_create_account_validation(self) -> None:
        accounting_service.seed_chart_of_accounts(self.db)
        cash = accounting_service.list_accounts(self.db, account_type='asset')[0]

        petty = accounting_service.create_account(
            self.db, code='1101', name='Petty cash', account_type='asset', category='current_asset', parent_id=cash.id
        )
        self.assertEqual(petty.parent_id, cash.id)

        with self.assertRaisesRegex(ValueError, 'four digits'):
            accounting_service.create_account(self.db, code='11', name='x', account_type='asset', category='current_asset')
        with self.assertRaisesRegex(ValueError, 'already exists'):
            accounting_service.create_account(self.db, code='1100', name='x', account_type='asset', category='current_asset')
        with self.assertRaisesRegex(ValueError, 'does not belong'):
            accounting_service.create_account(self.db, code='1500', name='x', account_type='asset', category='sales_revenue')
        with self.assertRaisesRegex(ValueError, 'same type'):
            accounting_service.create_account(
                self.db, code='4900', name='x', account_type='revenue', category='other_revenue', parent_id=cash.id
            )
        with self.assertRaisesRegex(ValueError, 'Invalid account type'):
            accounting_service.create_account(self.db, code='9100', name='x', account_type='memo', category='x')


class JournalEntryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = memory_session_factory()()
        accounting_service.seed_chart_of_accounts(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _owner_investment(self, amount: str = '50000', **overrides):
        values = {
            'entry_date': TODAY,
            'description': 'Owner investment',
            'lines': [EntryLine('1110', debit=Decimal(amount)), EntryLine('3100', credit=Decimal(amount))],
        }
        values.update(overrides)
        return accounting_service.create_journal_entry(self.db, **values)

    def test_lines_must_balance(self) -> None:
        with self.assertRaisesRegex(ValueError, 'at least two lines'):
            accounting_service.validate_lines([EntryLine('1100', debit=Decimal('1'))])
        with self.assertRaisesRegex(ValueError, 'either a debit or a credit'):
            accounting_service.validate_lines(
                [EntryLine('1100', debit=Decimal('1'), credit=Decimal('1')), EntryLine('3100', credit=Decimal('1'))]
            )
        with self.assertRaisesRegex(ValueError, r'Total debits \(100.00\) must equal total credits \(90.00\)'):
            accounting_service.validate_lines([EntryLine('1100', debit=Decimal('100')), EntryLine('3100', credit=Decimal('90'))])
        with self.assertRaisesRegex(ValueError, 'Unknown or inactive accounts: 9999'):
            self._owner_investment(lines=[EntryLine('1100', debit=Decimal('5')), EntryLine('9999', credit=Decimal('5'))])

    def test_draft_then_post(self) -> None:
        entry = self._owner_investment()
        self.assertEqual(entry.entry_number, 'JE-2024-00001')
        self.assertEqual(entry.status, JournalEntryStatus.DRAFT)
        self.assertEqual(accounting_service.trial_balance(self.db)['accounts'], [])

        accounting_service.post_journal_entry(self.db, entry_id=entry.id, approved_by_user_id=None)
        self.assertEqual(entry.status, JournalEntryStatus.APPROVED)
        self.assertIsNotNone(entry.approved_at)
        with self.assertRaisesRegex(ValueError, 'Cannot post journal entry with status: approved'):
            accounting_service.post_journal_entry(self.db, entry_id=entry.id)

        balance = accounting_service.trial_balance(self.db)
        self.assertTrue(balance['balanced'])
        self.assertEqual(balance['total_debit'], Decimal('50000.00'))
        self.assertEqual(self._owner_investment().entry_number, 'JE-2024-00002')

    def test_reject_only_unposted(self) -> None:
        entry = self._owner_investment()
        accounting_service.submit_journal_entry(self.db, entry_id=entry.id)
        self.assertEqual(entry.status, JournalEntryStatus.PENDING)
        accounting_service.reject_journal_entry(self.db, entry_id=entry.id, reason='wrong bank')
        self.assertEqual(entry.status, JournalEntryStatus.REJECTED)
        self.assertIn('wrong bank', entry.description)
        with self.assertRaisesRegex(ValueError, 'Cannot post'):
            accounting_service.post_journal_entry(self.db, entry_id=entry.id)

    def test_reverse_swaps_lines(self) -> None:
        entry = self._owner_investment()
        with self.assertRaisesRegex(ValueError, 'Only approved'):
            accounting_service.reverse_journal_entry(self.db, entry_id=entry.id, reversal_date=TODAY)
        accounting_service.post_journal_entry(self.db, entry_id=entry.id)

        reversal = accounting_service.reverse_journal_entry(
            self.db, entry_id=entry.id, reversal_date=TODAY + timedelta(days=1), reason='duplicate'
        )
        self.assertEqual(entry.status, JournalEntryStatus.REVERSED)
        self.assertEqual(reversal.status, JournalEntryStatus.APPROVED)
        self.assertEqual(reversal.reversal_of_id, entry.id)
        self.assertEqual(reversal.description, f'Reversal of {entry.entry_number}: duplicate')
        view = accounting_service.entry_view(self.db, reversal)
        self.assertEqual(_lines(view), {'1110': (Decimal('0.00'), Decimal('50000.00')), '3100': (Decimal('50000.00'), Decimal('0.00'))})

        balances = {row['code']: row['balance'] for row in accounting_service.account_balances(self.db)}
        self.assertEqual(balances['1110'], Decimal('0.00'))
        self.assertEqual(balances['3100'], Decimal('0.00'))

    def test_list_filters(self) -> None:
        draft = self._owner_investment()
        posted = self._owner_investment(entry_date=TODAY - timedelta(days=3))
        accounting_service.post_journal_entry(self.db, entry_id=posted.id)

        self.assertEqual([e.id for e in accounting_service.list_journal_entries(self.db, status='draft')], [draft.id])
        self.assertEqual(
            [e.id for e in accounting_service.list_journal_entries(self.db, start=TODAY - timedelta(days=1))], [draft.id]
        )
        with self.assertRaisesRegex(ValueError, 'Invalid journal entry status'):
            accounting_service.list_journal_entries(self.db, status='lost')


class BusinessPostingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = memory_session_factory()
        self.db = self.session_factory()
        self.branch, self.main, _ = seed_branch(self.db)
        self.customer = seed_customer(self.db, branch_id=self.branch.id)
        self.chair = seed_product(self.db, code='CHAIR-1', cost='400', price='1000')
        adjust_stock(self.db, product_id=self.chair.id, warehouse_id=self.main.id, quantity_change=10, reason='Opening count')

    def tearDown(self) -> None:
        self.db.close()

    def _sell(self, **overrides):
        values = {
            'branch_id': self.branch.id,
            'warehouse_id': self.main.id,
            'lines': [SaleLine(product_id=self.chair.id, quantity=2)],
            'payment_method': 'cash',
            'discount_amount': Decimal('100'),
            'tax_amount': Decimal('133'),
            'today': TODAY,
        }
        values.update(overrides)
        return record_sale(self.db, **values)

    def test_sale_posts_balanced_entry_once(self) -> None:
        accounting_service.seed_chart_of_accounts(self.db)
        sale = self._sell()

        entry = accounting_service.post_sale(self.db, sale_id=sale.id, entry_date=TODAY)
        self.assertEqual(entry.status, JournalEntryStatus.APPROVED)
        self.assertEqual(entry.branch_id, self.branch.id)
        self.assertEqual(entry.reference, sale.transaction_number)
        self.assertEqual(entry.total_debit, entry.total_credit)
        self.assertEqual(
            _lines(accounting_service.entry_view(self.db, entry)),
            {
                '1100': (Decimal('2033.00'), Decimal('0.00')),
                '6200': (Decimal('100.00'), Decimal('0.00')),
                '4100': (Decimal('0.00'), Decimal('2000.00')),
                '2300': (Decimal('0.00'), Decimal('133.00')),
                '5100': (Decimal('800.00'), Decimal('0.00')),
                '1400': (Decimal('0.00'), Decimal('800.00')),
            },
        )
        self.assertEqual(accounting_service.post_sale(self.db, sale_id=sale.id, entry_date=TODAY).id, entry.id)

    def test_card_sale_settles_to_bank_and_installment_sale_is_skipped(self) -> None:
        accounting_service.seed_chart_of_accounts(self.db)
        card = self._sell(payment_method='card', discount_amount=Decimal('0'), tax_amount=Decimal('0'))
        entry = accounting_service.post_sale(self.db, sale_id=card.id, entry_date=TODAY)
        self.assertEqual(_lines(accounting_service.entry_view(self.db, entry))['1110'], (Decimal('2000.00'), Decimal('0.00')))

        financed = self._sell(payment_method='installment')
        self.assertIsNone(accounting_service.post_sale(self.db, sale_id=financed.id, entry_date=TODAY))

    def test_contract_and_late_payment_postings(self) -> None:
        accounting_service.seed_chart_of_accounts(self.db)
        plan = seed_plan(self.db, months=12, rate='0', down='10')
        contract = create_contract(
            self.db,
            branch_id=self.branch.id,
            customer_id=self.customer.id,
            plan_id=plan.id,
            total_amount=Decimal('12000'),
            contract_date=date(2024, 1, 15),
        )
        booked = accounting_service.post_contract(self.db, contract_id=contract.id)
        self.assertEqual(
            _lines(accounting_service.entry_view(self.db, booked)),
            {
                '1100': (Decimal('1200.00'), Decimal('0.00')),
                '1300': (Decimal('10800.00'), Decimal('0.00')),
                '4100': (Decimal('0.00'), Decimal('12000.00')),
            },
        )

        before = late_fees_collected(self.db, contract_id=contract.id)
        record_payment(self.db, contract_id=contract.id, amount=Decimal('500'), paid_date=date(2024, 2, 25), payment_method='transfer')
        late_fee = late_fees_collected(self.db, contract_id=contract.id) - before
        self.assertEqual(late_fee, Decimal('90.00'))

        payment = accounting_service.post_installment_payment(
            self.db,
            contract_id=contract.id,
            amount=Decimal('500'),
            late_fee=late_fee,
            payment_method='transfer',
            paid_date=date(2024, 2, 25),
        )
        self.assertEqual(
            _lines(accounting_service.entry_view(self.db, payment)),
            {
                '1120': (Decimal('500.00'), Decimal('0.00')),
                '1300': (Decimal('0.00'), Decimal('410.00')),
                '4300': (Decimal('0.00'), Decimal('90.00')),
            },
        )

        balances = {row['code']: row['balance'] for row in accounting_service.account_balances(self.db)}
        self.assertEqual(balances['1300'], Decimal('10390.00'))
        self.assertTrue(accounting_service.trial_balance(self.db)['balanced'])
        summary = accounting_service.accounting_summary(self.db)
        self.assertEqual(summary['net_income'], Decimal('12090.00'))
        self.assertEqual(summary['unposted_entries'], 0)

    def test_missing_accounts_raise_integration_error_with_payload(self) -> None:
        sale = self._sell()
        with self.assertRaises(AccountingIntegrationError) as caught:
            accounting_service.post_sale(self.db, sale_id=sale.id, entry_date=TODAY)
        self.assertEqual(caught.exception.operation_type, accounting_service.JOURNAL_SYNC_OPERATION)
        self.assertEqual(caught.exception.payload, {'source_type': 'sale', 'source_id': sale.id, 'entry_date': '2024-04-02'})

    def test_failed_posting_is_queued_and_replayed(self) -> None:
        sale = self._sell()
        with mock.patch.object(recovery_service.recovery_service, '_sleep', lambda seconds: None):
            result = recovery_service.post_journal_with_recovery(
                self.db, lambda: accounting_service.post_sale(self.db, sale_id=sale.id, entry_date=TODAY)
            )
        self.assertIsNone(result)
        item = self.db.execute(select(RecoveryQueueItem)).scalar_one()
        self.assertEqual(item.operation_type, accounting_service.JOURNAL_SYNC_OPERATION)
        self.assertEqual(item.payload['source_id'], sale.id)

        accounting_service.seed_chart_of_accounts(self.db)
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        summary = recovery_service.recovery_service.process_recovery_queue(self.db, now=later)
        self.assertEqual(summary['successful'], 1)
        self.assertEqual(item.status, RecoveryQueueStatus.COMPLETED)
        posted = self.db.execute(select(JournalEntry).where(JournalEntry.source_type == 'sale')).scalar_one()
        self.assertEqual(posted.source_id, sale.id)


if __name__ == '__main__':
    unittest.main()
