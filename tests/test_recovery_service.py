from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from db_fixtures import memory_session_factory

from backoffice.errors import (
    AccountingIntegrationError,
    BackendRequestError,
    BackofficeError,
    IntegrationError,
    NotificationDeliveryError,
)
from backoffice.models import RecoveryQueueStatus
from backoffice.services.recovery_service import (
    CIRCUIT_BREAKER,
    FALLBACK,
    NO_RECOVERY,
    QUEUE_FOR_LATER,
    RETRY_WITH_BACKOFF,
    RecoveryService,
)

NOW = datetime(2024, 8, 1, 9, 0, tzinfo=timezone.utc)


class Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f'attempt {self.calls} failed')
        return 'synced'


class RecoveryServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = memory_session_factory()
        self.db = self.session_factory()
        self.delays: list[float] = []
        self.service = RecoveryService(
            session_factory=self.session_factory,
            failure_threshold=3,
            reset_timeout_seconds=60,
            sleep=self.delays.append,
        )

    def tearDown(self) -> None:
        self.db.close()

    def test_retry_with_backoff_doubles_delay(self) -> None:
        operation = Flaky(failures=2)
        result = self.service.retry_with_backoff(operation, max_retries=3, initial_delay=0.5)

        self.assertTrue(result.success)
        self.assertEqual(result.attempts, 3)
        self.assertEqual(result.data['result'], 'synced')
        self.assertEqual(self.delays, [0.5, 1.0])

    def test_retry_gives_up_after_max_retries(self) -> None:
        operation = Flaky(failures=10)
        result = self.service.retry_with_backoff(operation, max_retries=2, initial_delay=1, max_delay=1.5)

        self.assertFalse(result.success)
        self.assertEqual(operation.calls, 3)
        self.assertEqual(self.delays, [1, 1.5])
        self.assertIn('attempt 3 failed', result.message)

    def test_strategy_resolution_defaults(self) -> None:
        self.assertEqual(self.service.resolve_strategy(AccountingIntegrationError('ledger down'))[0], RETRY_WITH_BACKOFF)
        self.assertEqual(self.service.resolve_strategy(NotificationDeliveryError('sms down'))[0], QUEUE_FOR_LATER)
        self.assertEqual(self.service.resolve_strategy(BackendRequestError('timeout', retryable=True))[0], RETRY_WITH_BACKOFF)
        self.assertEqual(self.service.resolve_strategy(BackendRequestError('bad request'))[0], NO_RECOVERY)
        self.assertEqual(self.service.resolve_strategy(KeyError('x'))[0], NO_RECOVERY)

    def test_configured_strategy_overrides_default(self) -> None:
        self.service.configure_recovery_strategy(
            self.db, error_type='IntegrationError', strategy=CIRCUIT_BREAKER, parameters={}
        )
        strategy, _ = self.service.resolve_strategy(AccountingIntegrationError('ledger down'), self.db)
        self.assertEqual(strategy, CIRCUIT_BREAKER)

        with self.assertRaises(ValueError):
            self.service.configure_recovery_strategy(self.db, error_type='Nope', strategy=FALLBACK)
        with self.assertRaises(ValueError):
            self.service.configure_recovery_strategy(
                self.db, error_type='IntegrationError', strategy=RETRY_WITH_BACKOFF, parameters={'max_retries': -1}
            )
        with self.assertRaises(ValueError):
            self.service.configure_recovery_strategy(
                self.db, error_type='IntegrationError', strategy=QUEUE_FOR_LATER, parameters={'priority': 'asap'}
            )

    def test_execute_records_attempts_and_stats(self) -> None:
        retried = self.service.execute_recovery_strategy(
            AccountingIntegrationError('ledger down'), 'nightly_sync', operation=Flaky(failures=1), db=self.db
        )
        unrecoverable = self.service.execute_recovery_strategy(BackofficeError('bad input'), 'import', db=self.db)

        self.assertTrue(retried.success)
        self.assertFalse(unrecoverable.success)
        self.assertEqual(unrecoverable.strategy, NO_RECOVERY)
        self.assertIn('No recovery strategy available for BackofficeError', unrecoverable.message)

        stats = self.service.get_recovery_stats(self.db)
        self.assertEqual(stats['total_recovery_attempts'], 2)
        self.assertEqual(stats['successful_recoveries'], 1)
        self.assertEqual(stats['failed_recoveries'], 1)
        self.assertEqual(stats['strategies_used'], {RETRY_WITH_BACKOFF: 1, NO_RECOVERY: 1})

    def test_fallback_is_used_when_registered(self) -> None:
        self.service.register_fallback(IntegrationError.code, lambda error, context: {'cached': True, 'context': context})
        result = self.service.execute_recovery_strategy(IntegrationError('crm down'), 'customer_lookup')

        self.assertTrue(result.success)
        self.assertEqual(result.strategy, FALLBACK)
        self.assertEqual(result.data['result'], {'cached': True, 'context': 'customer_lookup'})

    def test_queue_then_process(self) -> None:
        calls: list[dict] = []
        self.service.register_operation('send_sms', lambda db, payload: calls.append(payload))

        item = self.service.queue_for_later_processing(
            self.db, operation_type='send_sms', payload={'to': '0812345678'}, priority='high', now=NOW
        )
        self.assertEqual(item.scheduled_for, NOW + timedelta(minutes=1))

        self.assertEqual(self.service.process_recovery_queue(self.db, now=NOW)['processed'], 0)
        summary = self.service.process_recovery_queue(self.db, now=NOW + timedelta(minutes=2))

        self.assertEqual(summary, {'processed': 1, 'successful': 1, 'failed': 0})
        self.assertEqual(calls, [{'to': '0812345678'}])
        self.assertEqual(item.status, RecoveryQueueStatus.COMPLETED)
        self.assertEqual(self.service.pending_queue_summary(self.db)['completed'], 1)

    def test_failing_queue_item_is_rescheduled_then_failed(self) -> None:
        def broken(db, payload):
            raise RuntimeError('gateway down')

        self.service.register_operation('send_sms', broken)
        item = self.service.queue_for_later_processing(self.db, operation_type='send_sms', payload={}, now=NOW)
        item.max_attempts = 2

        later = NOW + timedelta(hours=1)
        self.assertEqual(self.service.process_recovery_queue(self.db, now=later)['failed'], 1)
        self.assertEqual(item.status, RecoveryQueueStatus.PENDING)
        self.assertEqual(item.scheduled_for, later + timedelta(minutes=10))
        self.assertEqual(item.last_error, 'gateway down')

        self.service.process_recovery_queue(self.db, now=later + timedelta(hours=1))
        self.assertEqual(item.status, RecoveryQueueStatus.FAILED)
        self.assertEqual(item.attempts, 2)

    def test_unknown_operation_fails_in_queue(self) -> None:
        self.service.queue_for_later_processing(self.db, operation_type='mystery', payload={}, now=NOW)
        summary = self.service.process_recovery_queue(self.db, now=NOW + timedelta(days=1))
        self.assertEqual(summary['failed'], 1)

    def test_bulk_operations(self) -> None:
        self.service.register_operation('ok', lambda db, payload: payload['n'])
        summary = self.service.bulk_recovery_operation(
            self.db, [{'type': 'ok', 'data': {'n': 1}}, {'type': 'missing'}, {'type': 'ok', 'data': {}}]
        )
        self.assertEqual(summary, {'total': 3, 'successful': 1, 'failed': 2})

    def test_circuit_breaker_opens_and_recovers(self) -> None:
        failing = Flaky(failures=100)
        for _ in range(3):
            self.assertFalse(self.service.execute_with_circuit_breaker(failing, 'accounting').success)
        self.assertEqual(self.service.get_circuit_breaker_state('accounting')['state'], 'open')

        blocked = self.service.execute_with_circuit_breaker(failing, 'accounting')
        self.assertEqual(blocked.message, 'Circuit accounting is open')
        self.assertEqual(failing.calls, 3)

        self.service._circuit('accounting').opened_at -= 61
        healthy = self.service.execute_with_circuit_breaker(lambda: 'ok', 'accounting')
        self.assertTrue(healthy.success)
        state = self.service.get_circuit_breaker_state('accounting')
        self.assertEqual(state['state'], 'closed')
        self.assertEqual(state['failure_count'], 0)

    def test_half_open_failure_reopens(self) -> None:
        failing = Flaky(failures=100)
        for _ in range(3):
            self.service.execute_with_circuit_breaker(failing, 'pos')
        self.service._circuit('pos').opened_at -= 61

        self.service.execute_with_circuit_breaker(failing, 'pos')
        self.assertEqual(self.service.get_circuit_breaker_state('pos')['state'], 'open')
        self.assertEqual(failing.calls, 4)

    def test_half_open_admits_a_single_trial_call(self) -> None:
        failing = Flaky(failures=100)
        for _ in range(3):
            self.service.execute_with_circuit_breaker(failing, 'ledger')
        self.service._circuit('ledger').opened_at -= 61

        concurrent: list = []

        def trial():
            concurrent.append(self.service.execute_with_circuit_breaker(lambda: 'second', 'ledger'))
            return 'first'

        result = self.service.execute_with_circuit_breaker(trial, 'ledger')
        self.assertTrue(result.success)
        self.assertFalse(concurrent[0].success)
        self.assertEqual(concurrent[0].message, 'Circuit ledger is open')
        self.assertEqual(self.service.get_circuit_breaker_state('ledger')['state'], 'closed')

    def test_accounting_error_retries_registered_handler_for_context(self) -> None:
        sync = Flaky(failures=1)
        self.service.register_operation('journal-entry-sync', lambda db, payload: sync())

        result = self.service.execute_recovery_strategy(
            AccountingIntegrationError('Sync failed', code='SYNC_ERROR'), 'journal-entry-sync', db=self.db
        )
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, RETRY_WITH_BACKOFF)
        self.assertEqual(sync.calls, 2)

    def test_accounting_error_without_handler_is_queued_as_retry(self) -> None:
        result = self.service.execute_recovery_strategy(AccountingIntegrationError('Sync failed'), 'journal-entry-sync')

        self.assertTrue(result.success)
        self.assertEqual(result.strategy, RETRY_WITH_BACKOFF)
        with self.session_factory() as db:
            self.assertEqual(self.service.pending_queue_summary(db)['pending'], 1)

    def test_explicit_zero_settings_are_kept(self) -> None:
        service = RecoveryService(failure_threshold=0, reset_timeout_seconds=0, sleep=self.delays.append)
        self.assertEqual(service.failure_threshold, 0)
        self.assertEqual(service.reset_timeout_seconds, 0)

    def test_strategy_catalog(self) -> None:
        names = [entry['name'] for entry in self.service.get_recovery_strategies()]
        self.assertEqual(names, [RETRY_WITH_BACKOFF, QUEUE_FOR_LATER, FALLBACK, CIRCUIT_BREAKER, NO_RECOVERY])


if __name__ == '__main__':
    unittest.main()
