from decimal import Decimal

from sqlalchemy import select

from backoffice.db import SessionLocal, engine
from backoffice.models import (
    Base,
    Branch,
    Employee,
    InstallmentPlan,
    Product,
    User,
    UserRole,
    Warehouse,
)
from backoffice.security.passwords import hash_password
from backoffice.services.accounting_service import seed_chart_of_accounts

DEMO_PLANS = [
    ('PLAN-06', 'ผ่อน 6 เดือน 0%', 6, Decimal('0'), Decimal('10'), Decimal('0'), False),
    ('PLAN-12', 'ผ่อน 12 เดือน', 12, Decimal('12'), Decimal('15'), Decimal('500'), False),
    ('PLAN-36', 'ผ่อน 36 เดือน', 36, Decimal('15'), Decimal('20'), Decimal('1000'), True),
]

DEMO_PRODUCTS = [
    ('SOFA-001', 'โซฟา 3 ที่นั่ง', 'sofa', Decimal('25900'), Decimal('15000')),
    ('BED-001', 'เตียง 6 ฟุต', 'bedroom', Decimal('18900'), Decimal('11000')),
    ('TBL-001', 'โต๊ะทานข้าว 6 ที่นั่ง', 'dining', Decimal('12500'), Decimal('7000')),
]


def _get_or_create_user(db, *, username: str, password: str, role: UserRole, branch_id: int | None) -> None:
    user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if not user:
        db.add(
            User(
                username=username,
                password_hash=hash_password(password),
                full_name=username.title(),
                role=role,
                branch_id=branch_id,
                active=True,
            )
        )


def seed() -> None:
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        branch = db.execute(select(Branch).where(Branch.code == 'HQ')).scalar_one_or_none()
        if not branch:
            branch = Branch(code='HQ', name='สาขาหลัก', address='Bangkok', active=True)
            db.add(branch)
            db.flush()

        for code, name in (('WH-HQ', 'คลังสินค้าหลัก'), ('WH-HQ-2', 'คลังสำรอง')):
            if not db.execute(select(Warehouse).where(Warehouse.code == code)).scalar_one_or_none():
                db.add(Warehouse(branch_id=branch.id, code=code, name=name, active=True))

        for plan_number, name, months, rate, down, fee, guarantor in DEMO_PLANS:
            if not db.execute(select(InstallmentPlan).where(InstallmentPlan.plan_number == plan_number)).scalar_one_or_none():
                db.add(
                    InstallmentPlan(
                        plan_number=plan_number,
                        name=name,
                        months=months,
                        interest_rate=rate,
                        down_payment_percent=down,
                        processing_fee=fee,
                        requires_guarantor=guarantor,
                        active=True,
                    )
                )

        for code, name, category, price, cost in DEMO_PRODUCTS:
            if not db.execute(select(Product).where(Product.product_code == code)).scalar_one_or_none():
                db.add(
                    Product(
                        branch_id=branch.id,
                        product_code=code,
                        name=name,
                        category=category,
                        unit_price=price,
                        cost_price=cost,
                    )
                )

        if not db.execute(select(Employee).where(Employee.employee_code == 'EMP0001')).scalar_one_or_none():
            db.add(
                Employee(
                    branch_id=branch.id,
                    employee_code='EMP0001',
                    first_name='สมชาย',
                    last_name='ใจดี',
                    position='sales',
                    commission_rate=Decimal('3'),
                )
            )

        seed_chart_of_accounts(db)

        _get_or_create_user(db, username='admin', password='adminpass', role=UserRole.ADMIN, branch_id=None)
        _get_or_create_user(db, username='cashier1', password='cashierpass', role=UserRole.CASHIER, branch_id=branch.id)
        _get_or_create_user(db, username='warehouse1', password='warehousepass', role=UserRole.WAREHOUSE, branch_id=branch.id)

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
