from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import Principal, any_staff
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.security.csrf import verify_csrf
from backoffice.services.notification_service import list_notifications, mark_read

router = APIRouter(prefix='/notifications', tags=['notifications'])


def _notification_view(notification) -> dict:
    return {
        'id': notification.id,
        'category': notification.category,
        'title': notification.title,
        'message': notification.message,
        'severity': notification.severity,
        'metadata': notification.meta,
        'read': notification.read_at is not None,
        'created_at': notification.created_at,
    }


@router.get('')
def notifications_list(
    unread_only: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    notifications = list_notifications(
        db,
        user_id=principal.id,
        branch_id=principal.branch_id,
        unread_only=unread_only,
        limit=min(max(limit, 1), 200),
    )
    return [_notification_view(n) for n in notifications]


@router.post('/{notification_id}/read')
def notifications_mark_read(
    notification_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
    _: None = Depends(verify_csrf),
):
    try:
        notification = mark_read(db, notification_id=notification_id, user_id=principal.id, ip=get_client_ip(request))
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return _notification_view(notification)
