from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import Principal, accounting_access, admin_access, resolve_branch_scope
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.models import JournalEntryStatus
from backoffice.schemas import AccountCreate, JournalEntryCreate, ReverseRequest
from backoffice.security.csrf import verify_csrf
from backoffice.services import accounting_service
from backoffice.services.audit_service import log_audit

router = APIRouter(prefix='/accounting', tags=['accounting'])


def _not_found_or_bad_request(exc: ValueError) -> HTTPException:
    status_code = 404 if 'not found' in str(exc) else 400
    return HTTPException(status_code=status_code, detail=str(exc))


@router.get('/accounts')
def accounts_list(
    account_type: str | None = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(accounting_access),
):
    try:
        accounts = accounting_service.list_accounts(db, account_type=account_type, active_only=not include_inactive)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [accounting_service.account_view(a) for a in accounts]


@router.post('/accounts', status_code=201)
def accounts_create(
    payload: AccountCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    try:
        account = accounting_service.create_account(db, **payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ACCOUNT_CREATE',
        entity_type='account',
        entity_id=account.id,
        ip=get_client_ip(request),
        metadata={'code': account.code},
    )
    db.commit()
    return accounting_service.account_view(account)


@router.post('/accounts/seed')
def accounts_seed(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    created = accounting_service.seed_chart_of_accounts(db)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ACCOUNT_SEED',
        entity_type='account',
        entity_id=None,
        ip=get_client_ip(request),
        metadata={'created': created},
    )
    db.commit()
    return {'created': created}


@router.get('/journal-entries')
def journal_entries_list(
    branch_id: int | None = None,
    status: str | None = None,
    source_type: str | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    principal: Principal = Depends(accounting_access),
):
    if from_date and to_date and to_date < from_date:
        raise HTTPException(status_code=400, detail='Invalid date filter')
    try:
        entries = accounting_service.list_journal_entries(
            db,
            branch_id=resolve_branch_scope(principal, branch_id),
            status=status,
            source_type=source_type,
            start=from_date,
            end=to_date,
            limit=min(max(limit, 1), 500),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [accounting_service.entry_view(db, e, with_lines=False) for e in entries]


@router.get('/journal-entries/{entry_id}')
def journal_entries_detail(
    entry_id: int, db: Session = Depends(get_db), principal: Principal = Depends(accounting_access)
):
    try:
        entry = accounting_service.get_journal_entry(db, entry_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return accounting_service.entry_view(db, entry)


@router.post('/journal-entries', status_code=201)
def journal_entries_create(
    payload: JournalEntryCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(accounting_access),
    _: None = Depends(verify_csrf),
):
    lines = [
        accounting_service.EntryLine(
            account_code=line.account_code, debit=line.debit, credit=line.credit, description=line.description
        )
        for line in payload.lines
    ]
    try:
        entry = accounting_service.create_journal_entry(
            db,
            entry_date=payload.entry_date or date.today(),
            description=payload.description,
            lines=lines,
            branch_id=resolve_branch_scope(principal, payload.branch_id),
            reference=payload.reference,
            status=JournalEntryStatus.PENDING if payload.submit else JournalEntryStatus.DRAFT,
            created_by_user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='JOURNAL_ENTRY_CREATE',
        entity_type='journal_entry',
        entity_id=entry.id,
        ip=get_client_ip(request),
        metadata={'entry_number': entry.entry_number, 'total': str(entry.total_debit)},
    )
    db.commit()
    return accounting_service.entry_view(db, entry)


@router.post('/journal-entries/{entry_id}/submit')
def journal_entries_submit(
    entry_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(accounting_access),
    _: None = Depends(verify_csrf),
):
    try:
        entry = accounting_service.submit_journal_entry(db, entry_id=entry_id)
    except ValueError as exc:
        raise _not_found_or_bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='JOURNAL_ENTRY_SUBMIT',
        entity_type='journal_entry',
        entity_id=entry.id,
        ip=get_client_ip(request),
        metadata={'entry_number': entry.entry_number},
    )
    db.commit()
    return accounting_service.entry_view(db, entry)


@router.post('/journal-entries/{entry_id}/post')
def journal_entries_post(
    entry_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    try:
        entry = accounting_service.post_journal_entry(db, entry_id=entry_id, approved_by_user_id=principal.id)
    except ValueError as exc:
        raise _not_found_or_bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='JOURNAL_ENTRY_POST',
        entity_type='journal_entry',
        entity_id=entry.id,
        ip=get_client_ip(request),
        metadata={'entry_number': entry.entry_number},
    )
    db.commit()
    return accounting_service.entry_view(db, entry)


@router.post('/journal-entries/{entry_id}/reject')
def journal_entries_reject(
    entry_id: int,
    payload: ReverseRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    try:
        entry = accounting_service.reject_journal_entry(db, entry_id=entry_id, reason=payload.reason)
    except ValueError as exc:
        raise _not_found_or_bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='JOURNAL_ENTRY_REJECT',
        entity_type='journal_entry',
        entity_id=entry.id,
        ip=get_client_ip(request),
        metadata={'entry_number': entry.entry_number, 'reason': payload.reason},
    )
    db.commit()
    return accounting_service.entry_view(db, entry)


@router.post('/journal-entries/{entry_id}/reverse', status_code=201)
def journal_entries_reverse(
    entry_id: int,
    payload: ReverseRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    try:
        reversal = accounting_service.reverse_journal_entry(
            db,
            entry_id=entry_id,
            reversal_date=date.today(),
            reason=payload.reason,
            created_by_user_id=principal.id,
        )
    except ValueError as exc:
        raise _not_found_or_bad_request(exc) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='JOURNAL_ENTRY_REVERSE',
        entity_type='journal_entry',
        entity_id=entry_id,
        ip=get_client_ip(request),
        metadata={'reversal_entry_number': reversal.entry_number, 'reason': payload.reason},
    )
    db.commit()
    return accounting_service.entry_view(db, reversal)


@router.get('/trial-balance')
def trial_balance(
    as_of: date | None = None,
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(accounting_access),
):
    return accounting_service.trial_balance(db, as_of=as_of, branch_id=resolve_branch_scope(principal, branch_id))


@router.get('/summary')
def summary(
    as_of: date | None = None,
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(accounting_access),
):
    return accounting_service.accounting_summary(
        db, as_of=as_of, branch_id=resolve_branch_scope(principal, branch_id)
    )
