from __future__ import annotations

from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import Principal, admin_access
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.schemas import RecoveryStrategyConfigIn
from backoffice.security.csrf import verify_csrf
from backoffice.services.audit_service import log_audit
from backoffice.services.recovery_service import recovery_service

router = APIRouter(prefix='/recovery', tags=['recovery'])


@router.get('/strategies')
def strategies_list(_: Principal = Depends(admin_access)):
    return recovery_service.get_recovery_strategies()


@router.post('/strategies', status_code=201)
def strategies_configure(
    payload: RecoveryStrategyConfigIn,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    try:
        config_id = recovery_service.configure_recovery_strategy(
            db,
            error_type=payload.error_type,
            strategy=payload.strategy,
            parameters=payload.parameters,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='RECOVERY_STRATEGY_CONFIGURE',
        entity_type='recovery_strategy_config',
        entity_id=config_id,
        ip=get_client_ip(request),
        metadata={'error_type': payload.error_type, 'strategy': payload.strategy},
    )
    db.commit()
    return {'id': config_id}


@router.get('/stats')
def recovery_stats(
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
    _: Principal = Depends(admin_access),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail='Invalid date filter')
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None
    end = datetime.combine(end_date, time.max, tzinfo=timezone.utc) if end_date else None
    stats = recovery_service.get_recovery_stats(db, start=start, end=end)
    stats['queue'] = recovery_service.pending_queue_summary(db)
    return stats


@router.post('/queue/process')
def queue_process(
    request: Request,
    limit: int = 100,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    summary = recovery_service.process_recovery_queue(db, limit=min(max(limit, 1), 500))
    log_audit(
        db,
        actor_user_id=principal.id,
        action='RECOVERY_QUEUE_PROCESS',
        ip=get_client_ip(request),
        metadata=summary,
    )
    db.commit()
    return summary


@router.get('/circuits/{name}')
def circuit_state(name: str, _: Principal = Depends(admin_access)):
    return recovery_service.get_circuit_breaker_state(name)
