"""Error taxonomy shared by services, recovery strategies and the API layer."""

from __future__ import annotations

import logging
import re

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

COLUMN_MISSING_RE = re.compile(r"Could not find the '([^']+)' column of '([^']+)'")
TABLE_MISSING_RE = re.compile(r'relation "(?:public\.)?([^"]+)" does not exist|Could not find the table \'(?:public\.)?([^\']+)\'')
NOT_NULL_RE = re.compile(r'null value in column "([^"]+)"')


class BackofficeError(Exception):
    code = 'BACKOFFICE_ERROR'
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, code: str | None = None, retryable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if retryable is not None:
            self.retryable = retryable


class TableMissingError(BackofficeError):
    code = 'TABLE_MISSING'

    def __init__(self, table: str) -> None:
        super().__init__(f'Table {table} does not exist')
        self.table = table


class ColumnMissingError(BackofficeError):
    code = 'COLUMN_MISSING'

    def __init__(self, table: str, column: str) -> None:
        super().__init__(f'Column {column} does not exist on {table}')
        self.table = table
        self.column = column


class BackendRequestError(BackofficeError):
    code = 'BACKEND_REQUEST_FAILED'
    status_code = 502

    def __init__(self, message: str, *, status: int | None = None, retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)
        self.status = status


class IntegrationError(BackofficeError):
    code = 'INTEGRATION_ERROR'
    status_code = 502
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        retryable: bool | None = None,
        operation_type: str | None = None,
        payload: dict | None = None,
    ) -> None:
        super().__init__(message, code=code, retryable=retryable)
        # Enough to replay the failed work from the recovery queue.
        self.operation_type = operation_type
        self.payload = payload or {}


class AccountingIntegrationError(IntegrationError):
    code = 'ACCOUNTING_SYNC_FAILED'


class POSIntegrationError(IntegrationError):
    code = 'INVENTORY_SYNC_FAILED'


class NotificationDeliveryError(IntegrationError):
    code = 'NOTIFICATION_DELIVERY_FAILED'


class CircuitOpenError(BackofficeError):
    code = 'CIRCUIT_OPEN'
    status_code = 503

    def __init__(self, name: str) -> None:
        super().__init__(f'Circuit {name} is open')
        self.name = name


def classify_backend_error(message: str) -> BackofficeError:
    """Map a raw database/REST error message onto the taxonomy."""
    column_match = COLUMN_MISSING_RE.search(message)
    if column_match:
        return ColumnMissingError(column_match.group(2), column_match.group(1))
    table_match = TABLE_MISSING_RE.search(message)
    if table_match:
        return TableMissingError(table_match.group(1) or table_match.group(2))
    lowered = message.lower()
    if 'timeout' in lowered or 'timed out' in lowered:
        return BackendRequestError(message, retryable=True)
    if 'network' in lowered or 'connection' in lowered:
        return BackendRequestError(message, retryable=True)
    return BackendRequestError(message)


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BackofficeError)
    async def backoffice_error_handler(request: Request, exc: BackofficeError):
        if exc.status_code >= 500:
            logger.error('%s %s failed: %s (%s)', request.method, request.url.path, exc.message, exc.code)
        return JSONResponse(status_code=exc.status_code, content={'detail': exc.message, 'code': exc.code})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception('Unhandled error on %s %s', request.method, request.url.path)
        return JSONResponse(status_code=500, content={'detail': 'Internal server error', 'code': 'INTERNAL_ERROR'})
