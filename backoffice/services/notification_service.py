from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from backoffice.models import Notification
from backoffice.services.audit_service import log_audit


def notify(
    db: Session,
    *,
    category: str,
    title: str,
    message: str,
    severity: str = 'info',
    branch_id: int | None = None,
    user_id: int | None = None,
    metadata: dict | None = None,
) -> Notification:
    notification = Notification(
        branch_id=branch_id,
        user_id=user_id,
        category=category,
        title=title,
        message=message,
        severity=severity,
        meta=metadata or {},
    )
    db.add(notification)
    db.flush()
    return notification


def notify_low_stock(db: Session, *, branch_id: int | None, rows: list[dict]) -> Notification | None:
    alerts = [row for row in rows if row['status'] in {'out', 'critical'}]
    if not alerts:
        return None
    names = ', '.join(row['product_name'] for row in alerts[:5])
    return notify(
        db,
        category='inventory',
        title='Low stock',
        message=f'{len(alerts)} products need restocking: {names}',
        severity='warning',
        branch_id=branch_id,
        metadata={'product_ids': [row['product_id'] for row in alerts]},
    )


def list_notifications(
    db: Session,
    *,
    user_id: int,
    branch_id: int | None,
    unread_only: bool = False,
    limit: int = 50,
) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(or_(Notification.user_id == user_id, Notification.user_id.is_(None)))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    if branch_id:
        stmt = stmt.where(or_(Notification.branch_id == branch_id, Notification.branch_id.is_(None)))
    if unread_only:
        stmt = stmt.where(Notification.read_at.is_(None))
    return list(db.execute(stmt).scalars().all())


def mark_read(db: Session, *, notification_id: int, user_id: int, ip: str | None) -> Notification:
    notification = db.execute(select(Notification).where(Notification.id == notification_id)).scalar_one_or_none()
    if not notification or (notification.user_id is not None and notification.user_id != user_id):
        raise ValueError('Notification not found')
    if notification.read_at is None:
        notification.read_at = datetime.now(timezone.utc)
        log_audit(
            db,
            actor_user_id=user_id,
            action='NOTIFICATION_READ',
            entity_type='notification',
            entity_id=notification.id,
            ip=ip,
        )
    db.flush()
    return notification
