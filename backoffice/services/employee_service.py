from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.models import Employee, RecordStatus

EDITABLE_FIELDS = ('first_name', 'last_name', 'position', 'department', 'phone', 'email', 'hire_date')


def _next_employee_code(db: Session) -> str:
    last_id = db.execute(select(func.max(Employee.id))).scalar_one_or_none() or 0
    return f'EMP{last_id + 1:04d}'


def get_employee(db: Session, employee_id: int) -> Employee:
    employee = db.execute(select(Employee).where(Employee.id == employee_id)).scalar_one_or_none()
    if not employee:
        raise ValueError('Employee not found')
    return employee


def list_employees(db: Session, *, branch_id: int | None, include_inactive: bool = False) -> list[Employee]:
    stmt = select(Employee).order_by(Employee.first_name.asc(), Employee.last_name.asc())
    if branch_id:
        stmt = stmt.where(Employee.branch_id == branch_id)
    if not include_inactive:
        stmt = stmt.where(Employee.status == RecordStatus.ACTIVE.value)
    return list(db.execute(stmt).scalars().all())


def create_employee(
    db: Session,
    *,
    branch_id: int,
    first_name: str,
    last_name: str,
    position: str | None = None,
    department: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    hire_date: date | None = None,
    salary: Decimal | None = None,
    commission_rate: Decimal = Decimal('0'),
) -> Employee:
    first_name = (first_name or '').strip()
    last_name = (last_name or '').strip()
    if not first_name or not last_name:
        raise ValueError('First and last name are required')
    if salary is not None and salary < 0:
        raise ValueError('Salary cannot be negative')
    if not (Decimal('0') <= commission_rate <= Decimal('100')):
        raise ValueError('Commission rate must be between 0 and 100')

    employee = Employee(
        branch_id=branch_id,
        employee_code=_next_employee_code(db),
        first_name=first_name,
        last_name=last_name,
        position=position,
        department=department,
        phone=phone,
        email=email,
        hire_date=hire_date,
        salary=salary,
        commission_rate=commission_rate,
        status=RecordStatus.ACTIVE.value,
    )
    db.add(employee)
    db.flush()
    return employee


def update_employee(db: Session, *, employee_id: int, changes: dict) -> Employee:
    employee = get_employee(db, employee_id)
    for field_name in EDITABLE_FIELDS:
        if changes.get(field_name) is not None:
            setattr(employee, field_name, changes[field_name])
    if changes.get('salary') is not None:
        if changes['salary'] < 0:
            raise ValueError('Salary cannot be negative')
        employee.salary = changes['salary']
    if changes.get('commission_rate') is not None:
        if not (Decimal('0') <= changes['commission_rate'] <= Decimal('100')):
            raise ValueError('Commission rate must be between 0 and 100')
        employee.commission_rate = changes['commission_rate']
    if changes.get('status') is not None:
        status = changes['status']
        if status not in {RecordStatus.ACTIVE.value, RecordStatus.INACTIVE.value}:
            raise ValueError('Invalid employee status')
        employee.status = status
    db.flush()
    return employee


def employee_view(employee: Employee) -> dict:
    return {
        'id': employee.id,
        'branch_id': employee.branch_id,
        'employee_code': employee.employee_code,
        'name': f'{employee.first_name} {employee.last_name}',
        'first_name': employee.first_name,
        'last_name': employee.last_name,
        'position': employee.position,
        'department': employee.department,
        'phone': employee.phone,
        'email': employee.email,
        'hire_date': employee.hire_date,
        'status': employee.status,
    }
