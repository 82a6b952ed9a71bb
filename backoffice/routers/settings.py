from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import Principal, admin_access
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.security.csrf import verify_csrf
from backoffice.services.audit_service import log_audit
from backoffice.services.settings_service import get_all_settings, get_setting, update_setting

router = APIRouter(prefix='/settings', tags=['settings'])


@router.get('')
def settings_all(db: Session = Depends(get_db), _: Principal = Depends(admin_access)):
    return get_all_settings(db)


@router.get('/{key}')
def settings_get(key: str, db: Session = Depends(get_db), _: Principal = Depends(admin_access)):
    try:
        return get_setting(db, key=key)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.put('/{key}')
def settings_update(
    key: str,
    request: Request,
    values: dict = Body(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    try:
        merged = update_setting(db, key=key, values=values, updated_by_user_id=principal.id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='SETTINGS_UPDATE',
        entity_type='system_setting',
        ip=get_client_ip(request),
        metadata={'key': key, 'fields': sorted(values)},
    )
    db.commit()
    return merged
