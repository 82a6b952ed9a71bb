from __future__ import annotations

import os
import tempfile
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.models import Base, Branch, Customer, Employee, InstallmentPlan, Product, User, UserRole, Warehouse


def memory_session_factory():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def file_session_factory():
    """A throwaway on-disk database, for code that opens sessions from several threads."""
    handle, path = tempfile.mkstemp(suffix='.sqlite3')
    os.close(handle)
    engine = create_engine(f'sqlite:///{path}', connect_args={'check_same_thread': False})
    Base.metadata.create_all(bind=engine)

    def cleanup() -> None:
        engine.dispose()
        os.unlink(path)

    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False), cleanup


def seed_branch(db, *, code: str = 'HQ') -> tuple[Branch, Warehouse, Warehouse]:
    branch = Branch(code=code, name=f'Branch {code}')
    db.add(branch)
    db.flush()
    main = Warehouse(branch_id=branch.id, code=f'{code}-MAIN', name='Main')
    spare = Warehouse(branch_id=branch.id, code=f'{code}-SPARE', name='Spare')
    db.add_all([main, spare])
    db.flush()
    return branch, main, spare


def seed_user(db, *, branch_id: int | None, username: str = 'admin', role: UserRole = UserRole.ADMIN) -> User:
    user = User(username=username, password_hash='x', role=role, branch_id=branch_id)
    db.add(user)
    db.flush()
    return user


def seed_product(db, *, code: str = 'SOFA-1', cost: str = '5000', price: str = '9000', min_level: int = 5) -> Product:
    product = Product(
        product_code=code,
        name=f'Product {code}',
        category='sofa',
        unit_price=Decimal(price),
        cost_price=Decimal(cost),
        min_stock_level=min_level,
    )
    db.add(product)
    db.flush()
    return product


def seed_customer(db, *, branch_id: int, code: str = 'C0001', income: str | None = '30000', **fields) -> Customer:
    values = {
        'name': 'Somchai',
        'phone': '0812345678',
        'address': '1 Sukhumvit',
        'id_card': '1100100100100',
        'occupation': 'engineer',
    }
    values.update(fields)
    customer = Customer(
        branch_id=branch_id,
        customer_code=code,
        monthly_income=Decimal(income) if income is not None else None,
        **values,
    )
    db.add(customer)
    db.flush()
    return customer


def seed_plan(
    db,
    *,
    number: str = 'PLAN-12',
    months: int = 12,
    rate: str = '0',
    down: str = '10',
    fee: str = '0',
    guarantor: bool = False,
) -> InstallmentPlan:
    plan = InstallmentPlan(
        plan_number=number,
        name=number,
        months=months,
        interest_rate=Decimal(rate),
        down_payment_percent=Decimal(down),
        processing_fee=Decimal(fee),
        requires_guarantor=guarantor,
    )
    db.add(plan)
    db.flush()
    return plan


def seed_employee(db, *, branch_id: int, code: str = 'EMP0001', commission: str = '5') -> Employee:
    employee = Employee(
        branch_id=branch_id,
        employee_code=code,
        first_name='Malee',
        last_name='Sukjai',
        commission_rate=Decimal(commission),
    )
    db.add(employee)
    db.flush()
    return employee
