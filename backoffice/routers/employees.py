from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from backoffice.auth import Principal, admin_access, any_staff, assert_branch_scope, resolve_branch_scope
from backoffice.db import get_db
from backoffice.dependencies import get_client_ip
from backoffice.schemas import AbsenceCreate, CheckInRequest, CheckOutRequest, EmployeeCreate, EmployeeUpdate
from backoffice.security.csrf import verify_csrf
from backoffice.services import attendance_service
from backoffice.services.audit_service import log_audit
from backoffice.services.employee_service import (
    create_employee,
    employee_view,
    get_employee,
    list_employees,
    update_employee,
)

router = APIRouter(prefix='/employees', tags=['employees'])


@router.get('')
def employees_list(
    branch_id: int | None = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    employees = list_employees(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        include_inactive=include_inactive,
    )
    return [employee_view(e) for e in employees]


@router.post('', status_code=201)
def employees_create(
    payload: EmployeeCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    fields = payload.model_dump()
    branch_id = fields.pop('branch_id') or principal.branch_id
    if not branch_id:
        raise HTTPException(status_code=400, detail='Branch is required')
    try:
        employee = create_employee(db, branch_id=branch_id, **fields)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='EMPLOYEE_CREATE',
        entity_type='employee',
        entity_id=employee.id,
        ip=get_client_ip(request),
        metadata={'employee_code': employee.employee_code},
    )
    db.commit()
    return employee_view(employee)


@router.patch('/{employee_id}')
def employees_update(
    employee_id: int,
    payload: EmployeeUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    changes = payload.model_dump(exclude_unset=True)
    try:
        employee = update_employee(db, employee_id=employee_id, changes=changes)
    except ValueError as exc:
        status_code = 404 if 'not found' in str(exc) else 400
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='EMPLOYEE_UPDATE',
        entity_type='employee',
        entity_id=employee.id,
        ip=get_client_ip(request),
        metadata={'fields': sorted(changes)},
    )
    db.commit()
    return employee_view(employee)


def _scoped_employee(db: Session, principal: Principal, employee_id: int):
    try:
        employee = get_employee(db, employee_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    assert_branch_scope(principal, employee.branch_id)
    return employee


@router.get('/attendance')
def attendance_list(
    branch_id: int | None = None,
    employee_id: int | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
):
    end = to_date or date.today()
    start = from_date or end - timedelta(days=30)
    try:
        records = attendance_service.list_attendance(
            db,
            branch_id=resolve_branch_scope(principal, branch_id),
            start=start,
            end=end,
            employee_id=employee_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [attendance_service.attendance_view(r) for r in records]


@router.get('/attendance/summary')
def attendance_summary(
    from_date: date,
    to_date: date,
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
):
    try:
        return attendance_service.attendance_summary(
            db, branch_id=resolve_branch_scope(principal, branch_id), start=from_date, end=to_date
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post('/{employee_id}/check-in', status_code=201)
def employees_check_in(
    employee_id: int,
    payload: CheckInRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
    _: None = Depends(verify_csrf),
):
    employee = _scoped_employee(db, principal, employee_id)
    try:
        record = attendance_service.check_in(
            db,
            employee_id=employee.id,
            work_date=payload.work_date or date.today(),
            at=payload.at,
            notes=payload.notes,
            recorded_by_user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='EMPLOYEE_CHECK_IN',
        entity_type='employee',
        entity_id=employee.id,
        ip=get_client_ip(request),
        metadata={'work_date': record.work_date.isoformat(), 'status': record.status.value},
    )
    db.commit()
    return attendance_service.attendance_view(record)


@router.post('/{employee_id}/check-out')
def employees_check_out(
    employee_id: int,
    payload: CheckOutRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(any_staff),
    _: None = Depends(verify_csrf),
):
    employee = _scoped_employee(db, principal, employee_id)
    try:
        record = attendance_service.check_out(
            db,
            employee_id=employee.id,
            work_date=payload.work_date or date.today(),
            at=payload.at,
            break_minutes=payload.break_minutes,
            notes=payload.notes,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='EMPLOYEE_CHECK_OUT',
        entity_type='employee',
        entity_id=employee.id,
        ip=get_client_ip(request),
        metadata={'work_date': record.work_date.isoformat(), 'total_hours': str(record.total_hours)},
    )
    db.commit()
    return attendance_service.attendance_view(record)


@router.post('/{employee_id}/absences', status_code=201)
def employees_record_absence(
    employee_id: int,
    payload: AbsenceCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(admin_access),
    _: None = Depends(verify_csrf),
):
    employee = _scoped_employee(db, principal, employee_id)
    try:
        record = attendance_service.record_absence(
            db,
            employee_id=employee.id,
            work_date=payload.work_date,
            status=payload.status,
            notes=payload.notes,
            recorded_by_user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='EMPLOYEE_ABSENCE',
        entity_type='employee',
        entity_id=employee.id,
        ip=get_client_ip(request),
        metadata={'work_date': record.work_date.isoformat(), 'status': record.status.value},
    )
    db.commit()
    return attendance_service.attendance_view(record)
