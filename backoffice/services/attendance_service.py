"""Employee attendance: daily check-in/check-out, absences and summaries.

Times are the branch's local wall-clock times; one row per employee per day.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.models import AttendanceStatus, Employee, EmployeeAttendance, RecordStatus
from backoffice.services.employee_service import get_employee
from backoffice.services.installment_math import ZERO

logger = logging.getLogger(__name__)

HOURS = Decimal('0.01')
ABSENCE_STATUSES = {AttendanceStatus.ABSENT, AttendanceStatus.HOLIDAY}


def _get_day(db: Session, employee_id: int, work_date: date) -> EmployeeAttendance | None:
    return db.execute(
        select(EmployeeAttendance).where(
            EmployeeAttendance.employee_id == employee_id,
            EmployeeAttendance.work_date == work_date,
        )
    ).scalar_one_or_none()


def check_in(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    at: time,
    notes: str | None = None,
    recorded_by_user_id: int | None = None,
) -> EmployeeAttendance:
    employee = get_employee(db, employee_id)
    if employee.status != RecordStatus.ACTIVE.value:
        raise ValueError('Inactive employees cannot check in')
    if _get_day(db, employee.id, work_date):
        raise ValueError('Attendance already recorded for this day')

    record = EmployeeAttendance(
        employee_id=employee.id,
        branch_id=employee.branch_id,
        work_date=work_date,
        check_in=at,
        break_minutes=0,
        total_hours=ZERO,
        overtime_hours=ZERO,
        status=AttendanceStatus.LATE if at > settings.work_day_start else AttendanceStatus.PRESENT,
        notes=notes,
        recorded_by_user_id=recorded_by_user_id,
    )
    db.add(record)
    db.flush()
    logger.info('Employee %s checked in at %s on %s (%s)', employee.employee_code, at, work_date, record.status.value)
    return record


def worked_hours(check_in_at: time, check_out_at: time, break_minutes: int) -> Decimal:
    start = datetime.combine(date.min, check_in_at)
    end = datetime.combine(date.min, check_out_at)
    minutes = (end - start - timedelta(minutes=break_minutes)).total_seconds() / 60
    return (Decimal(str(max(minutes, 0))) / Decimal('60')).quantize(HOURS)


def check_out(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    at: time,
    break_minutes: int = 0,
    notes: str | None = None,
) -> EmployeeAttendance:
    """Close the day: work out total and overtime hours and settle the status."""
    record = _get_day(db, employee_id, work_date)
    if not record or record.check_in is None:
        raise ValueError('No check-in recorded for this day')
    if record.check_out is not None:
        raise ValueError('Already checked out for this day')
    if at <= record.check_in:
        raise ValueError('Check-out must be after check-in')
    if break_minutes < 0:
        raise ValueError('Break minutes cannot be negative')

    total = worked_hours(record.check_in, at, break_minutes)
    overtime = max(ZERO, total - settings.standard_work_hours)
    record.check_out = at
    record.break_minutes = break_minutes
    record.total_hours = total
    record.overtime_hours = overtime
    if total < settings.half_day_hours:
        record.status = AttendanceStatus.HALF_DAY
    elif overtime > 0 and record.status != AttendanceStatus.LATE:
        record.status = AttendanceStatus.OVERTIME
    if notes:
        record.notes = f'{record.notes}\n{notes}' if record.notes else notes
    db.flush()
    return record


def record_absence(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    status: str = AttendanceStatus.ABSENT.value,
    notes: str | None = None,
    recorded_by_user_id: int | None = None,
) -> EmployeeAttendance:
    try:
        absence = AttendanceStatus(status)
    except ValueError as exc:
        raise ValueError('Invalid attendance status') from exc
    if absence not in ABSENCE_STATUSES:
        raise ValueError('Absences must be absent or holiday')
    employee = get_employee(db, employee_id)
    if _get_day(db, employee.id, work_date):
        raise ValueError('Attendance already recorded for this day')

    record = EmployeeAttendance(
        employee_id=employee.id,
        branch_id=employee.branch_id,
        work_date=work_date,
        break_minutes=0,
        total_hours=ZERO,
        overtime_hours=ZERO,
        status=absence,
        notes=notes,
        recorded_by_user_id=recorded_by_user_id,
    )
    db.add(record)
    db.flush()
    return record


def list_attendance(
    db: Session,
    *,
    branch_id: int | None,
    start: date,
    end: date,
    employee_id: int | None = None,
) -> list[EmployeeAttendance]:
    if end < start:
        raise ValueError('End date must not be before start date')
    stmt = (
        select(EmployeeAttendance)
        .where(EmployeeAttendance.work_date >= start, EmployeeAttendance.work_date <= end)
        .order_by(EmployeeAttendance.work_date.desc(), EmployeeAttendance.employee_id.asc())
    )
    if branch_id:
        stmt = stmt.where(EmployeeAttendance.branch_id == branch_id)
    if employee_id:
        stmt = stmt.where(EmployeeAttendance.employee_id == employee_id)
    return list(db.execute(stmt).scalars().all())


def attendance_view(record: EmployeeAttendance) -> dict:
    return {
        'id': record.id,
        'employee_id': record.employee_id,
        'branch_id': record.branch_id,
        'work_date': record.work_date,
        'check_in': record.check_in,
        'check_out': record.check_out,
        'break_minutes': record.break_minutes,
        'total_hours': record.total_hours,
        'overtime_hours': record.overtime_hours,
        'status': record.status.value,
        'notes': record.notes,
    }


def working_days(start: date, end: date) -> int:
    days = 0
    current = start
    while current <= end:
        if current.weekday() < 5:
            days += 1
        current += timedelta(days=1)
    return days


def attendance_summary(db: Session, *, branch_id: int | None, start: date, end: date) -> list[dict]:
    records = list_attendance(db, branch_id=branch_id, start=start, end=end)
    employee_stmt = select(Employee).where(Employee.status == RecordStatus.ACTIVE.value).order_by(Employee.id.asc())
    if branch_id:
        employee_stmt = employee_stmt.where(Employee.branch_id == branch_id)
    expected_days = working_days(start, end)

    rows: dict[int, dict] = {}
    for employee in db.execute(employee_stmt).scalars().all():
        rows[employee.id] = {
            'employee_id': employee.id,
            'employee_code': employee.employee_code,
            'name': f'{employee.first_name} {employee.last_name}',
            'present_days': 0,
            'late_days': 0,
            'absent_days': 0,
            'total_hours': ZERO,
            'overtime_hours': ZERO,
        }
    for record in records:
        row = rows.get(record.employee_id)
        if row is None:
            continue
        if record.check_in is not None:
            row['present_days'] += 1
        if record.status == AttendanceStatus.LATE:
            row['late_days'] += 1
        if record.status == AttendanceStatus.ABSENT:
            row['absent_days'] += 1
        row['total_hours'] += record.total_hours
        row['overtime_hours'] += record.overtime_hours

    for row in rows.values():
        rate = row['present_days'] / expected_days * 100 if expected_days else 0.0
        row['attendance_rate'] = round(min(rate, 100.0), 1)
    return list(rows.values())


def count_checked_in(db: Session, *, branch_id: int | None, work_date: date) -> int:
    stmt = select(func.count(EmployeeAttendance.id)).where(
        EmployeeAttendance.work_date == work_date,
        EmployeeAttendance.check_in.is_not(None),
    )
    if branch_id:
        stmt = stmt.where(EmployeeAttendance.branch_id == branch_id)
    return db.execute(stmt).scalar_one()
