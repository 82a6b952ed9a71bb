from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.models import (
    MovementType,
    SerialNumber,
    SerialNumberStatus,
    StockTransfer,
    StockTransferItem,
    TransferStatus,
    Warehouse,
)
from backoffice.services.stock_service import change_stock, get_warehouse

logger = logging.getLogger(__name__)

OPEN_STATUSES = {TransferStatus.PENDING, TransferStatus.IN_TRANSIT}


def transfer_number_prefix(on_date: date) -> str:
    return f'TF{on_date:%Y%m}'


def next_transfer_number(db: Session, *, on_date: date) -> str:
    """TF + year + month + a four digit sequence that restarts every month."""
    prefix = transfer_number_prefix(on_date)
    last_number = db.execute(
        select(StockTransfer.transfer_number)
        .where(StockTransfer.transfer_number.like(f'{prefix}%'))
        .order_by(StockTransfer.transfer_number.desc())
        .limit(1)
    ).scalar_one_or_none()
    sequence = 1
    if last_number and last_number[-4:].isdigit():
        sequence = int(last_number[-4:]) + 1
    return f'{prefix}{sequence:04d}'


def _get_transfer(db: Session, transfer_id: int) -> StockTransfer:
    transfer = db.execute(select(StockTransfer).where(StockTransfer.id == transfer_id)).scalar_one_or_none()
    if not transfer:
        raise ValueError('Transfer not found')
    return transfer


def _transfer_items(db: Session, transfer_id: int) -> list[StockTransferItem]:
    return list(
        db.execute(select(StockTransferItem).where(StockTransferItem.transfer_id == transfer_id)).scalars().all()
    )


def _serials_for_items(db: Session, items: list[StockTransferItem]) -> dict[int, SerialNumber]:
    ids = [item.serial_number_id for item in items]
    if not ids:
        return {}
    rows = db.execute(select(SerialNumber).where(SerialNumber.id.in_(ids))).scalars().all()
    return {row.id: row for row in rows}


def initiate_transfer(
    db: Session,
    *,
    source_warehouse_id: int,
    target_warehouse_id: int,
    serial_number_ids: list[int],
    initiated_by_user_id: int | None,
    notes: str | None = None,
    today: date,
) -> StockTransfer:
    if source_warehouse_id == target_warehouse_id:
        raise ValueError('Source and target warehouse must differ')
    unique_ids = sorted(set(serial_number_ids))
    if not unique_ids:
        raise ValueError('At least one serial number is required')
    get_warehouse(db, source_warehouse_id)
    get_warehouse(db, target_warehouse_id)

    serials = db.execute(
        select(SerialNumber).where(
            SerialNumber.id.in_(unique_ids),
            SerialNumber.warehouse_id == source_warehouse_id,
            SerialNumber.status == SerialNumberStatus.AVAILABLE,
        )
    ).scalars().all()
    if len(serials) != len(unique_ids):
        missing = sorted(set(unique_ids) - {serial.id for serial in serials})
        raise ValueError(f'Serial numbers not available in source warehouse: {missing}')

    transfer = StockTransfer(
        transfer_number=next_transfer_number(db, on_date=today),
        source_warehouse_id=source_warehouse_id,
        target_warehouse_id=target_warehouse_id,
        status=TransferStatus.PENDING,
        total_items=len(serials),
        notes=notes,
        initiated_by_user_id=initiated_by_user_id,
    )
    db.add(transfer)
    db.flush()

    for serial in serials:
        db.add(
            StockTransferItem(
                transfer_id=transfer.id,
                serial_number_id=serial.id,
                product_id=serial.product_id,
                quantity=1,
                unit_cost=serial.unit_cost,
                status=TransferStatus.PENDING,
            )
        )
        serial.status = SerialNumberStatus.TRANSFERRED
        change_stock(
            db,
            product_id=serial.product_id,
            warehouse_id=source_warehouse_id,
            delta=-1,
            movement_type=MovementType.TRANSFER_OUT,
            serial_number_id=serial.id,
            unit_cost=serial.unit_cost,
            reference_type='transfer',
            reference_id=transfer.id,
            reference_number=transfer.transfer_number,
            performed_by_user_id=initiated_by_user_id,
        )
    db.flush()
    logger.info(
        'Initiated transfer %s: %s units from warehouse %s to %s',
        transfer.transfer_number,
        len(serials),
        source_warehouse_id,
        target_warehouse_id,
    )
    return transfer


def dispatch_transfer(db: Session, *, transfer_id: int) -> StockTransfer:
    transfer = _get_transfer(db, transfer_id)
    if transfer.status != TransferStatus.PENDING:
        raise ValueError('Only pending transfers can be dispatched')
    transfer.status = TransferStatus.IN_TRANSIT
    for item in _transfer_items(db, transfer.id):
        item.status = TransferStatus.IN_TRANSIT
    db.flush()
    return transfer


def confirm_transfer(db: Session, *, transfer_id: int, confirmed_by_user_id: int | None) -> StockTransfer:
    transfer = _get_transfer(db, transfer_id)
    if transfer.status not in OPEN_STATUSES:
        raise ValueError(f'Cannot confirm a {transfer.status.value} transfer')

    items = _transfer_items(db, transfer.id)
    serials = _serials_for_items(db, items)
    for item in items:
        serial = serials[item.serial_number_id]
        serial.warehouse_id = transfer.target_warehouse_id
        serial.status = SerialNumberStatus.AVAILABLE
        change_stock(
            db,
            product_id=item.product_id,
            warehouse_id=transfer.target_warehouse_id,
            delta=item.quantity,
            movement_type=MovementType.TRANSFER_IN,
            serial_number_id=serial.id,
            unit_cost=item.unit_cost,
            reference_type='transfer',
            reference_id=transfer.id,
            reference_number=transfer.transfer_number,
            performed_by_user_id=confirmed_by_user_id,
        )
        item.status = TransferStatus.COMPLETED

    transfer.status = TransferStatus.COMPLETED
    transfer.confirmed_by_user_id = confirmed_by_user_id
    transfer.confirmed_at = datetime.now(timezone.utc)
    db.flush()
    logger.info('Confirmed transfer %s', transfer.transfer_number)
    return transfer


def cancel_transfer(
    db: Session,
    *,
    transfer_id: int,
    reason: str | None,
    cancelled_by_user_id: int | None,
) -> StockTransfer:
    transfer = _get_transfer(db, transfer_id)
    if transfer.status not in OPEN_STATUSES:
        raise ValueError(f'Cannot cancel a {transfer.status.value} transfer')

    items = _transfer_items(db, transfer.id)
    serials = _serials_for_items(db, items)
    for item in items:
        serial = serials[item.serial_number_id]
        serial.status = SerialNumberStatus.AVAILABLE
        # Units never left the source warehouse record; put the quantity back there.
        change_stock(
            db,
            product_id=item.product_id,
            warehouse_id=transfer.source_warehouse_id,
            delta=item.quantity,
            movement_type=MovementType.RETURN,
            serial_number_id=serial.id,
            unit_cost=item.unit_cost,
            reference_type='transfer',
            reference_id=transfer.id,
            reference_number=transfer.transfer_number,
            notes='Transfer cancelled',
            performed_by_user_id=cancelled_by_user_id,
        )
        item.status = TransferStatus.CANCELLED

    note = f'Cancelled: {reason.strip()}' if reason and reason.strip() else 'Cancelled'
    transfer.notes = f'{transfer.notes}\n{note}' if transfer.notes else note
    transfer.status = TransferStatus.CANCELLED
    db.flush()
    logger.info('Cancelled transfer %s', transfer.transfer_number)
    return transfer


def list_transfers(
    db: Session,
    *,
    branch_id: int | None,
    status: str | None = None,
) -> list[StockTransfer]:
    stmt = select(StockTransfer).order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc())
    if branch_id:
        branch_warehouses = select(Warehouse.id).where(Warehouse.branch_id == branch_id)
        stmt = stmt.where(
            StockTransfer.source_warehouse_id.in_(branch_warehouses)
            | StockTransfer.target_warehouse_id.in_(branch_warehouses)
        )
    if status:
        try:
            stmt = stmt.where(StockTransfer.status == TransferStatus(status))
        except ValueError as exc:
            raise ValueError('Invalid transfer status') from exc
    return list(db.execute(stmt).scalars().all())


def transfer_stats(db: Session) -> dict[str, int]:
    counts = {status.value: 0 for status in TransferStatus}
    for status, count in db.execute(
        select(StockTransfer.status, func.count(StockTransfer.id)).group_by(StockTransfer.status)
    ).all():
        counts[status.value] = count
    counts['total'] = sum(counts.values())
    return counts


def transfer_view(transfer: StockTransfer) -> dict:
    return {
        'id': transfer.id,
        'transfer_number': transfer.transfer_number,
        'source_warehouse_id': transfer.source_warehouse_id,
        'target_warehouse_id': transfer.target_warehouse_id,
        'status': transfer.status.value,
        'total_items': transfer.total_items,
        'notes': transfer.notes or '',
        'confirmed_at': transfer.confirmed_at,
        'created_at': transfer.created_at,
    }
