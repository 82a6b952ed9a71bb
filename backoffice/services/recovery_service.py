"""Recovery strategies for failed integration work.

Errors from ``backoffice.errors`` are mapped by code onto one of a handful of
strategies: retry in place with exponential backoff, park the work in the
``recovery_queue`` table for a later run, call a registered fallback, or guard
the call with a named circuit breaker. Anything without a mapping gets
``no_recovery``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.errors import (
    AccountingIntegrationError,
    BackendRequestError,
    BackofficeError,
    CircuitOpenError,
    IntegrationError,
    NotificationDeliveryError,
    POSIntegrationError,
)
from backoffice.models import RecoveryAttempt, RecoveryQueueItem, RecoveryQueueStatus, RecoveryStrategyConfig
from backoffice.services import accounting_service
from backoffice.services.customer_service import recalculate_customer_credit_score
from backoffice.services.notification_service import notify_low_stock
from backoffice.services.stock_service import list_stock_levels

logger = logging.getLogger(__name__)

RETRY_WITH_BACKOFF = 'retry_with_backoff'
QUEUE_FOR_LATER = 'queue_for_later'
FALLBACK = 'fallback'
CIRCUIT_BREAKER = 'circuit_breaker'
NO_RECOVERY = 'no_recovery'

STRATEGY_CATALOG: dict[str, dict[str, Any]] = {
    RETRY_WITH_BACKOFF: {
        'description': 'Retry the operation immediately with exponential backoff',
        'applicable_errors': ['AccountingIntegrationError', 'BackendRequestError'],
    },
    QUEUE_FOR_LATER: {
        'description': 'Store the operation in the recovery queue and retry on a schedule',
        'applicable_errors': ['POSIntegrationError', 'NotificationDeliveryError'],
    },
    FALLBACK: {
        'description': 'Run the registered fallback for the error code',
        'applicable_errors': ['IntegrationError'],
    },
    CIRCUIT_BREAKER: {
        'description': 'Stop calling a failing dependency until its reset timeout passes',
        'applicable_errors': ['IntegrationError', 'BackendRequestError'],
    },
    NO_RECOVERY: {
        'description': 'Report the failure without recovery',
        'applicable_errors': [],
    },
}

ERROR_TYPES: dict[str, type[BackofficeError]] = {
    cls.__name__: cls
    for cls in (
        BackofficeError,
        BackendRequestError,
        IntegrationError,
        AccountingIntegrationError,
        POSIntegrationError,
        NotificationDeliveryError,
    )
}

DEFAULT_STRATEGY_BY_CODE = {
    AccountingIntegrationError.code: RETRY_WITH_BACKOFF,
    POSIntegrationError.code: QUEUE_FOR_LATER,
    NotificationDeliveryError.code: QUEUE_FOR_LATER,
}

# First retry delay for queued work.
PRIORITY_DELAYS = {
    'high': timedelta(minutes=1),
    'normal': timedelta(minutes=5),
    'low': timedelta(minutes=15),
}

CIRCUIT_CLOSED = 'closed'
CIRCUIT_OPEN = 'open'
CIRCUIT_HALF_OPEN = 'half_open'

OperationHandler = Callable[[Session, dict], Any]


@dataclass
class RecoveryResult:
    success: bool
    strategy: str
    message: str = ''
    attempts: int = 0
    data: dict = field(default_factory=dict)


@dataclass
class CircuitBreaker:
    name: str
    state: str = CIRCUIT_CLOSED
    failure_count: int = 0
    opened_at: float | None = None
    last_failure: str | None = None
    trial_in_flight: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecoveryService:
    def __init__(
        self,
        *,
        session_factory: Callable[[], Session] | None = None,
        failure_threshold: int | None = None,
        reset_timeout_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session_factory = session_factory
        self.failure_threshold = settings.circuit_failure_threshold if failure_threshold is None else failure_threshold
        self.reset_timeout_seconds = (
            settings.circuit_reset_seconds if reset_timeout_seconds is None else reset_timeout_seconds
        )
        self._sleep = sleep
        self._handlers: dict[str, OperationHandler] = {}
        self._fallbacks: dict[str, Callable[[BackofficeError, str | None], Any]] = {}
        self._circuits: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def _open_session(self) -> Session:
        if self._session_factory is None:
            from backoffice.db import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory()

    # Registry

    def register_operation(self, operation_type: str, handler: OperationHandler) -> None:
        self._handlers[operation_type] = handler

    def register_fallback(self, error_code: str, fallback: Callable[[BackofficeError, str | None], Any]) -> None:
        self._fallbacks[error_code] = fallback

    def get_recovery_strategies(self) -> list[dict]:
        return [
            {'name': name, 'description': meta['description'], 'applicable_errors': list(meta['applicable_errors'])}
            for name, meta in STRATEGY_CATALOG.items()
        ]

    def resolve_strategy(self, error: BaseException, db: Session | None = None) -> tuple[str, dict]:
        if not isinstance(error, BackofficeError):
            return NO_RECOVERY, {}
        if db is not None:
            for cls in type(error).__mro__:
                config = db.execute(
                    select(RecoveryStrategyConfig).where(RecoveryStrategyConfig.error_type == cls.__name__)
                ).scalar_one_or_none()
                if config:
                    return config.strategy, dict(config.parameters or {})
        strategy = DEFAULT_STRATEGY_BY_CODE.get(error.code)
        if strategy:
            return strategy, {}
        if error.code in self._fallbacks:
            return FALLBACK, {}
        if error.retryable:
            return RETRY_WITH_BACKOFF, {}
        return NO_RECOVERY, {}

    # Strategies

    def execute_recovery_strategy(
        self,
        error: BaseException,
        context: str | None = None,
        *,
        operation: Callable[[], Any] | None = None,
        db: Session | None = None,
    ) -> RecoveryResult:
        started = time.monotonic()
        strategy, parameters = self.resolve_strategy(error, db)
        if operation is None and strategy in {RETRY_WITH_BACKOFF, CIRCUIT_BREAKER}:
            operation = self._registered_operation(error, context, db)

        if strategy == RETRY_WITH_BACKOFF and operation is not None:
            result = self.retry_with_backoff(operation, **parameters)
        elif strategy in {RETRY_WITH_BACKOFF, CIRCUIT_BREAKER} and operation is None:
            # Nothing to call yet; the queue retries once a handler is registered.
            queued = self._queue_error(error, context, db, priority='high')
            result = RecoveryResult(
                success=True,
                strategy=strategy,
                message='No handler registered; queued for retry',
                data=queued.data,
            )
        elif strategy == QUEUE_FOR_LATER:
            result = self._queue_error(error, context, db, priority=parameters.get('priority', 'normal'))
        elif strategy == FALLBACK and getattr(error, 'code', None) in self._fallbacks:
            value = self._fallbacks[error.code](error, context)
            result = RecoveryResult(success=True, strategy=FALLBACK, message='Fallback applied', data={'result': value})
        elif strategy == CIRCUIT_BREAKER and operation is not None:
            result = self.execute_with_circuit_breaker(operation, context or error.code)
        else:
            result = RecoveryResult(
                success=False,
                strategy=NO_RECOVERY,
                message=f'No recovery strategy available for {type(error).__name__}: {error}',
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        if db is not None:
            db.add(
                RecoveryAttempt(
                    error_code=getattr(error, 'code', type(error).__name__),
                    strategy=result.strategy,
                    context=context,
                    success=result.success,
                    duration_ms=duration_ms,
                    message=result.message,
                )
            )
            db.flush()
        log = logger.info if result.success else logger.warning
        log('Recovery for %s in %s via %s: %s', type(error).__name__, context, result.strategy, result.message)
        return result

    def _registered_operation(
        self, error: BaseException, context: str | None, db: Session | None
    ) -> Callable[[], Any] | None:
        operation_type = getattr(error, 'operation_type', None) or context
        handler = self._handlers.get(operation_type) if operation_type else None
        if handler is None:
            return None
        payload = dict(getattr(error, 'payload', None) or {})
        if db is not None:
            return lambda: handler(db, payload)

        def run_in_own_session() -> Any:
            with self._open_session() as own_db:
                value = handler(own_db, payload)
                own_db.commit()
                return value

        return run_in_own_session

    def retry_with_backoff(
        self,
        operation: Callable[[], Any],
        *,
        max_retries: int = 3,
        initial_delay: float = 0.1,
        backoff_multiplier: float = 2.0,
        max_delay: float = 30.0,
    ) -> RecoveryResult:
        """Call ``operation`` once, then up to ``max_retries`` more times."""
        last_error: Exception | None = None
        for attempt in range(max_retries + 1):
            if attempt:
                delay = min(initial_delay * backoff_multiplier ** (attempt - 1), max_delay)
                self._sleep(delay)
            try:
                value = operation()
            except Exception as exc:
                last_error = exc
                logger.debug('Attempt %s of %s failed: %s', attempt + 1, max_retries + 1, exc)
                continue
            return RecoveryResult(
                success=True,
                strategy=RETRY_WITH_BACKOFF,
                message=f'Succeeded after {attempt + 1} attempt(s)',
                attempts=attempt + 1,
                data={'result': value},
            )
        return RecoveryResult(
            success=False,
            strategy=RETRY_WITH_BACKOFF,
            message=f'Failed after {max_retries + 1} attempts: {last_error}',
            attempts=max_retries + 1,
        )

    def _queue_error(self, error: BaseException, context: str | None, db: Session | None, *, priority: str) -> RecoveryResult:
        payload = {'error_code': getattr(error, 'code', None), 'message': str(error)}
        payload.update(getattr(error, 'payload', None) or {})
        operation_type = getattr(error, 'operation_type', None) or context or 'unknown'
        if db is not None:
            item = self.queue_for_later_processing(
                db, operation_type=operation_type, payload=payload, context=context, priority=priority
            )
        else:
            with self._open_session() as own_db:
                item = self.queue_for_later_processing(
                    own_db, operation_type=operation_type, payload=payload, context=context, priority=priority
                )
                own_db.commit()
        return RecoveryResult(
            success=True,
            strategy=QUEUE_FOR_LATER,
            message='Queued for later processing',
            data={'queue_id': item.id},
        )

    def queue_for_later_processing(
        self,
        db: Session,
        *,
        operation_type: str,
        payload: dict,
        context: str | None = None,
        priority: str = 'normal',
        now: datetime | None = None,
    ) -> RecoveryQueueItem:
        if priority not in PRIORITY_DELAYS:
            raise ValueError(f'Invalid queue priority: {priority}')
        now = now or _utcnow()
        item = RecoveryQueueItem(
            operation_type=operation_type,
            payload=payload,
            context=context,
            priority=priority,
            status=RecoveryQueueStatus.PENDING,
            attempts=0,
            max_attempts=settings.recovery_max_attempts,
            scheduled_for=now + PRIORITY_DELAYS[priority],
        )
        db.add(item)
        db.flush()
        logger.info('Queued %s operation %s for %s', priority, operation_type, item.scheduled_for)
        return item

    def execute_queued_operation(self, db: Session, operation_type: str, payload: dict) -> Any:
        handler = self._handlers.get(operation_type)
        if handler is None:
            raise ValueError(f'No handler registered for {operation_type}')
        return handler(db, payload)

    def process_recovery_queue(self, db: Session, *, now: datetime | None = None, limit: int = 100) -> dict[str, int]:
        now = now or _utcnow()
        items = db.execute(
            select(RecoveryQueueItem)
            .where(
                RecoveryQueueItem.status == RecoveryQueueStatus.PENDING,
                RecoveryQueueItem.scheduled_for <= now,
            )
            .order_by(RecoveryQueueItem.scheduled_for.asc(), RecoveryQueueItem.id.asc())
            .limit(limit)
        ).scalars().all()

        summary = {'processed': 0, 'successful': 0, 'failed': 0}
        for item in items:
            summary['processed'] += 1
            item.attempts += 1
            try:
                self.execute_queued_operation(db, item.operation_type, dict(item.payload or {}))
            except Exception as exc:
                summary['failed'] += 1
                item.last_error = str(exc)
                if item.attempts >= item.max_attempts:
                    item.status = RecoveryQueueStatus.FAILED
                    logger.error('Recovery item %s (%s) gave up: %s', item.id, item.operation_type, exc)
                else:
                    base = PRIORITY_DELAYS.get(item.priority, PRIORITY_DELAYS['normal'])
                    item.scheduled_for = now + base * (2 ** item.attempts)
                    logger.warning('Recovery item %s (%s) failed, retry at %s', item.id, item.operation_type, item.scheduled_for)
                continue
            summary['successful'] += 1
            item.status = RecoveryQueueStatus.COMPLETED
            item.completed_at = now
        db.flush()
        return summary

    def bulk_recovery_operation(self, db: Session, operations: list[dict]) -> dict[str, int]:
        summary = {'total': len(operations), 'successful': 0, 'failed': 0}
        for operation in operations:
            try:
                self.execute_queued_operation(db, operation['type'], dict(operation.get('data') or {}))
            except Exception as exc:
                summary['failed'] += 1
                logger.warning('Bulk recovery operation %s failed: %s', operation.get('type'), exc)
            else:
                summary['successful'] += 1
        return summary

    # Circuit breakers

    def _circuit(self, name: str) -> CircuitBreaker:
        breaker = self._circuits.get(name)
        if breaker is None:
            breaker = self._circuits[name] = CircuitBreaker(name=name)
        return breaker

    def is_reset_timeout_expired(self, breaker: CircuitBreaker) -> bool:
        if breaker.opened_at is None:
            return True
        return time.monotonic() - breaker.opened_at >= self.reset_timeout_seconds

    def execute_with_circuit_breaker(self, operation: Callable[[], Any], name: str) -> RecoveryResult:
        with self._lock:
            breaker = self._circuit(name)
            if breaker.state == CIRCUIT_OPEN and self.is_reset_timeout_expired(breaker):
                breaker.state = CIRCUIT_HALF_OPEN
                breaker.trial_in_flight = False
            # Half-open lets a single trial call through.
            if breaker.state == CIRCUIT_OPEN or (breaker.state == CIRCUIT_HALF_OPEN and breaker.trial_in_flight):
                error = CircuitOpenError(name)
                return RecoveryResult(success=False, strategy=CIRCUIT_BREAKER, message=error.message)
            if breaker.state == CIRCUIT_HALF_OPEN:
                breaker.trial_in_flight = True

        try:
            value = operation()
        except Exception as exc:
            with self._lock:
                breaker.trial_in_flight = False
                breaker.failure_count += 1
                breaker.last_failure = str(exc)
                if breaker.state == CIRCUIT_HALF_OPEN or breaker.failure_count >= self.failure_threshold:
                    breaker.state = CIRCUIT_OPEN
                    breaker.opened_at = time.monotonic()
                    logger.warning('Circuit %s opened after %s failures', name, breaker.failure_count)
            return RecoveryResult(success=False, strategy=CIRCUIT_BREAKER, message=str(exc), attempts=1)

        with self._lock:
            if breaker.state != CIRCUIT_CLOSED:
                logger.info('Circuit %s closed', name)
            breaker.state = CIRCUIT_CLOSED
            breaker.failure_count = 0
            breaker.opened_at = None
            breaker.trial_in_flight = False
        return RecoveryResult(success=True, strategy=CIRCUIT_BREAKER, attempts=1, data={'result': value})

    def get_circuit_breaker_state(self, name: str) -> dict:
        with self._lock:
            breaker = self._circuit(name)
            return {
                'name': breaker.name,
                'state': breaker.state,
                'failure_count': breaker.failure_count,
                'last_failure': breaker.last_failure,
            }

    # Configuration and stats

    def configure_recovery_strategy(
        self,
        db: Session,
        *,
        error_type: str,
        strategy: str,
        parameters: dict | None = None,
    ) -> int:
        parameters = parameters or {}
        if error_type not in ERROR_TYPES or strategy not in STRATEGY_CATALOG or not isinstance(parameters, dict):
            raise ValueError('Invalid recovery strategy configuration')
        if strategy == RETRY_WITH_BACKOFF:
            allowed = {'max_retries', 'initial_delay', 'backoff_multiplier', 'max_delay'}
            if set(parameters) - allowed or any(
                not isinstance(v, (int, float)) or isinstance(v, bool) or v < 0 for v in parameters.values()
            ):
                raise ValueError('Invalid recovery strategy configuration')
        if strategy == QUEUE_FOR_LATER and parameters.get('priority', 'normal') not in PRIORITY_DELAYS:
            raise ValueError('Invalid recovery strategy configuration')

        config = db.execute(
            select(RecoveryStrategyConfig).where(RecoveryStrategyConfig.error_type == error_type)
        ).scalar_one_or_none()
        if config is None:
            config = RecoveryStrategyConfig(error_type=error_type)
            db.add(config)
        config.strategy = strategy
        config.parameters = parameters
        db.flush()
        return config.id

    def get_recovery_stats(
        self,
        db: Session,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        filters = []
        if start is not None:
            filters.append(RecoveryAttempt.created_at >= start)
        if end is not None:
            filters.append(RecoveryAttempt.created_at <= end)

        total, successful, average_ms = db.execute(
            select(
                func.count(RecoveryAttempt.id),
                func.coalesce(func.sum(case((RecoveryAttempt.success.is_(True), 1), else_=0)), 0),
                func.coalesce(func.avg(RecoveryAttempt.duration_ms), 0),
            ).where(*filters)
        ).one()
        strategies = db.execute(
            select(RecoveryAttempt.strategy, func.count(RecoveryAttempt.id))
            .where(*filters)
            .group_by(RecoveryAttempt.strategy)
        ).all()
        return {
            'total_recovery_attempts': total,
            'successful_recoveries': int(successful),
            'failed_recoveries': total - int(successful),
            'strategies_used': {strategy: count for strategy, count in strategies},
            'average_recovery_time_ms': float(average_ms),
            'date_range': {'start': start, 'end': end},
        }

    def pending_queue_summary(self, db: Session) -> dict[str, int]:
        counts = {status.value: 0 for status in RecoveryQueueStatus}
        for status, count in db.execute(
            select(RecoveryQueueItem.status, func.count(RecoveryQueueItem.id)).group_by(RecoveryQueueItem.status)
        ).all():
            counts[status.value] = count
        return counts


recovery_service = RecoveryService()


def _recalculate_credit_score(db: Session, payload: dict) -> int:
    return recalculate_customer_credit_score(
        db, customer_id=int(payload['customer_id']), today=_utcnow().date()
    )


def _low_stock_notification(db: Session, payload: dict) -> int | None:
    branch_id = payload.get('branch_id')
    notification = notify_low_stock(db, branch_id=branch_id, rows=list_stock_levels(db, branch_id=branch_id, low_only=True))
    return notification.id if notification else None


recovery_service.register_operation('credit_score_recalculation', _recalculate_credit_score)
recovery_service.register_operation('low_stock_notification', _low_stock_notification)
recovery_service.register_operation(accounting_service.JOURNAL_SYNC_OPERATION, accounting_service.post_from_payload)


def post_journal_with_recovery(db: Session, post: Callable[[], Any]) -> Any:
    """Run a journal posting; if the ledger rejects it, retry or park it in the queue."""
    try:
        return post()
    except AccountingIntegrationError as exc:
        logger.warning('Journal posting failed: %s', exc.message)
        result = recovery_service.execute_recovery_strategy(exc, accounting_service.JOURNAL_SYNC_OPERATION, db=db)
        if result.success:
            return result.data.get('result')
        recovery_service.queue_for_later_processing(
            db,
            operation_type=accounting_service.JOURNAL_SYNC_OPERATION,
            payload=exc.payload,
            context='journal posting',
        )
        return None
