from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys; tests run on it.
IdType = BigInteger().with_variant(Integer, 'sqlite')
Money = Numeric(12, 2)


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    ADMIN = 'ADMIN'
    MANAGER = 'MANAGER'
    CASHIER = 'CASHIER'
    WAREHOUSE = 'WAREHOUSE'
    ACCOUNTANT = 'ACCOUNTANT'


class RecordStatus(str, Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class MovementType(str, Enum):
    RECEIVE = 'receive'
    SALE = 'sale'
    ADJUSTMENT = 'adjustment'
    TRANSFER_OUT = 'transfer_out'
    TRANSFER_IN = 'transfer_in'
    RETURN = 'return'


class SerialNumberStatus(str, Enum):
    AVAILABLE = 'available'
    RESERVED = 'reserved'
    SOLD = 'sold'
    TRANSFERRED = 'transferred'
    CLAIMED = 'claimed'


class TransferStatus(str, Enum):
    PENDING = 'pending'
    IN_TRANSIT = 'in_transit'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class ContractStatus(str, Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    DEFAULTED = 'defaulted'
    CANCELLED = 'cancelled'


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'
    PARTIAL = 'partial'
    OVERDUE = 'overdue'
    CANCELLED = 'cancelled'


class SaleStatus(str, Enum):
    COMPLETED = 'completed'
    REFUNDED = 'refunded'
    CANCELLED = 'cancelled'


class ClaimStatus(str, Enum):
    SUBMITTED = 'submitted'
    UNDER_REVIEW = 'under_review'
    APPROVED = 'approved'
    IN_PROGRESS = 'in_progress'
    WAITING_PARTS = 'waiting_parts'
    COMPLETED = 'completed'
    REJECTED = 'rejected'
    CANCELLED = 'cancelled'


class ClaimPriority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    URGENT = 'urgent'


class RecoveryQueueStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    LATE = 'late'
    ABSENT = 'absent'
    HALF_DAY = 'half_day'
    OVERTIME = 'overtime'
    HOLIDAY = 'holiday'


class AccountType(str, Enum):
    ASSET = 'asset'
    LIABILITY = 'liability'
    EQUITY = 'equity'
    REVENUE = 'revenue'
    EXPENSE = 'expense'


class JournalEntryStatus(str, Enum):
    DRAFT = 'draft'
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    REVERSED = 'reversed'


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class Branch(Base):
    __tablename__ = 'branches'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    full_name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, 'user_role'), nullable=False)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey('branches.id'))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(50))
    entity_id: Mapped[int | None] = mapped_column(BigInteger)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False)
    customer_code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default='individual')
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30))
    email: Mapped[str | None] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(Text)
    id_card: Mapped[str | None] = mapped_column(String(20))
    tax_id: Mapped[str | None] = mapped_column(String(20))
    occupation: Mapped[str | None] = mapped_column(Text)
    monthly_income: Mapped[Decimal | None] = mapped_column(Money)
    credit_limit: Mapped[Decimal | None] = mapped_column(Money)
    credit_score: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RecordStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (CheckConstraint('credit_score IS NULL OR credit_score BETWEEN 300 AND 850', name='ck_customer_score'),)


class Product(Base):
    __tablename__ = 'products'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey('branches.id'))
    product_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(Text)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    cost_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    min_stock_level: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    warranty_months: Mapped[int] = mapped_column(Integer, nullable=False, default=12)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RecordStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Warehouse(Base):
    __tablename__ = 'warehouses'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class ProductInventory(Base):
    __tablename__ = 'product_inventory'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey('warehouses.id'), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint('product_id', 'warehouse_id', name='uq_inventory_product_warehouse'),
        CheckConstraint('quantity >= 0', name='ck_inventory_quantity_non_negative'),
    )


class SerialNumber(Base):
    __tablename__ = 'product_serial_numbers'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey('warehouses.id'), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    status: Mapped[SerialNumberStatus] = mapped_column(
        _enum(SerialNumberStatus, 'serial_number_status'), nullable=False, default=SerialNumberStatus.AVAILABLE
    )
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StockMovement(Base):
    __tablename__ = 'stock_movements'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey('warehouses.id'), nullable=False)
    serial_number_id: Mapped[int | None] = mapped_column(ForeignKey('product_serial_numbers.id'))
    movement_type: Mapped[MovementType] = mapped_column(_enum(MovementType, 'movement_type'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Money)
    reference_type: Mapped[str | None] = mapped_column(String(30))
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    reference_number: Mapped[str | None] = mapped_column(String(50))
    notes: Mapped[str | None] = mapped_column(Text)
    performed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StockTransfer(Base):
    __tablename__ = 'stock_transfers'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    transfer_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    source_warehouse_id: Mapped[int] = mapped_column(ForeignKey('warehouses.id'), nullable=False)
    target_warehouse_id: Mapped[int] = mapped_column(ForeignKey('warehouses.id'), nullable=False)
    status: Mapped[TransferStatus] = mapped_column(
        _enum(TransferStatus, 'transfer_status'), nullable=False, default=TransferStatus.PENDING
    )
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text)
    initiated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    confirmed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint('source_warehouse_id <> target_warehouse_id', name='ck_transfer_distinct_warehouses'),
    )


class StockTransferItem(Base):
    __tablename__ = 'stock_transfer_items'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    transfer_id: Mapped[int] = mapped_column(ForeignKey('stock_transfers.id', ondelete='CASCADE'), nullable=False)
    serial_number_id: Mapped[int] = mapped_column(ForeignKey('product_serial_numbers.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_cost: Mapped[Decimal | None] = mapped_column(Money)
    status: Mapped[TransferStatus] = mapped_column(
        _enum(TransferStatus, 'transfer_status'), nullable=False, default=TransferStatus.PENDING
    )


class InstallmentPlan(Base):
    __tablename__ = 'installment_plans'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    plan_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    months: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=Decimal('0'))
    down_payment_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    processing_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    requires_guarantor: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    __table_args__ = (CheckConstraint('months > 0', name='ck_plan_months_positive'),)


class InstallmentContract(Base):
    __tablename__ = 'installment_contracts'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    contract_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'), nullable=False)
    plan_id: Mapped[int] = mapped_column(ForeignKey('installment_plans.id'), nullable=False)
    guarantor_name: Mapped[str | None] = mapped_column(Text)
    guarantor_phone: Mapped[str | None] = mapped_column(String(30))
    sale_id: Mapped[int | None] = mapped_column(ForeignKey('sales_transactions.id'))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    down_payment: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    financed_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    monthly_payment: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_interest: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    processing_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    total_payable: Mapped[Decimal] = mapped_column(Money, nullable=False)
    contract_date: Mapped[date] = mapped_column(Date, nullable=False)
    first_payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_installments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    remaining_installments: Mapped[int] = mapped_column(Integer, nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    remaining_balance: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[ContractStatus] = mapped_column(
        _enum(ContractStatus, 'contract_status'), nullable=False, default=ContractStatus.PENDING
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (CheckConstraint('remaining_balance >= 0', name='ck_contract_balance_non_negative'),)


class InstallmentPayment(Base):
    __tablename__ = 'installment_payments'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    contract_id: Mapped[int] = mapped_column(ForeignKey('installment_contracts.id', ondelete='CASCADE'), nullable=False)
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paid_date: Mapped[date | None] = mapped_column(Date)
    paid_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    late_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    late_fee_paid: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    payment_method: Mapped[str | None] = mapped_column(String(30))
    receipt_number: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, 'payment_status'), nullable=False, default=PaymentStatus.PENDING
    )
    processed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))

    __table_args__ = (UniqueConstraint('contract_id', 'installment_number', name='uq_payment_contract_number'),)


class Employee(Base):
    __tablename__ = 'employees'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False)
    employee_code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[str | None] = mapped_column(Text)
    department: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(30))
    email: Mapped[str | None] = mapped_column(String(255))
    hire_date: Mapped[date | None] = mapped_column(Date)
    salary: Mapped[Decimal | None] = mapped_column(Money)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RecordStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class EmployeeAttendance(Base):
    __tablename__ = 'employee_attendance'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey('employees.id', ondelete='CASCADE'), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Local wall-clock times at the branch.
    check_in: Mapped[time | None] = mapped_column(Time)
    check_out: Mapped[time | None] = mapped_column(Time)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('0'))
    status: Mapped[AttendanceStatus] = mapped_column(
        _enum(AttendanceStatus, 'attendance_status'), nullable=False, default=AttendanceStatus.PRESENT
    )
    notes: Mapped[str | None] = mapped_column(Text)
    recorded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))

    __table_args__ = (
        UniqueConstraint('employee_id', 'work_date', name='uq_attendance_employee_day'),
        CheckConstraint('break_minutes >= 0', name='ck_attendance_break_non_negative'),
    )


class SalesTransaction(Base):
    __tablename__ = 'sales_transactions'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    transaction_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False)
    warehouse_id: Mapped[int] = mapped_column(ForeignKey('warehouses.id'), nullable=False)
    customer_id: Mapped[int | None] = mapped_column(ForeignKey('customers.id'))
    employee_id: Mapped[int | None] = mapped_column(ForeignKey('employees.id'))
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    net_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[SaleStatus] = mapped_column(_enum(SaleStatus, 'sale_status'), nullable=False, default=SaleStatus.COMPLETED)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SalesTransactionItem(Base):
    __tablename__ = 'sales_transaction_items'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey('sales_transactions.id', ondelete='CASCADE'), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'), nullable=False)
    serial_number_id: Mapped[int | None] = mapped_column(ForeignKey('product_serial_numbers.id'))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Money, nullable=False)


class Claim(Base):
    __tablename__ = 'claims'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    claim_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey('branches.id'), nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey('customers.id'), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'), nullable=False)
    serial_number_id: Mapped[int | None] = mapped_column(ForeignKey('product_serial_numbers.id'))
    claim_type: Mapped[str] = mapped_column(String(30), nullable=False, default='warranty')
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ClaimStatus] = mapped_column(_enum(ClaimStatus, 'claim_status'), nullable=False, default=ClaimStatus.SUBMITTED)
    priority: Mapped[ClaimPriority] = mapped_column(
        _enum(ClaimPriority, 'claim_priority'), nullable=False, default=ClaimPriority.MEDIUM
    )
    purchase_date: Mapped[date | None] = mapped_column(Date)
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    assigned_to_employee_id: Mapped[int | None] = mapped_column(ForeignKey('employees.id'))
    resolution: Mapped[str | None] = mapped_column(Text)
    estimated_cost: Mapped[Decimal | None] = mapped_column(Money)
    actual_cost: Mapped[Decimal | None] = mapped_column(Money)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ClaimEvent(Base):
    __tablename__ = 'claim_events'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    claim_id: Mapped[int] = mapped_column(ForeignKey('claims.id', ondelete='CASCADE'), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Notification(Base):
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey('branches.id'))
    user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default='info')
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SystemSetting(Base):
    __tablename__ = 'system_settings'

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    description: Mapped[str | None] = mapped_column(Text)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class Account(Base):
    __tablename__ = 'chart_of_accounts'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    code: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    account_type: Mapped[AccountType] = mapped_column(_enum(AccountType, 'account_type'), nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey('chart_of_accounts.id'))
    description: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class JournalEntry(Base):
    __tablename__ = 'journal_entries'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    entry_number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    branch_id: Mapped[int | None] = mapped_column(ForeignKey('branches.id'))
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100))
    source_type: Mapped[str] = mapped_column(String(30), nullable=False, default='manual')
    source_id: Mapped[int | None] = mapped_column(IdType)
    total_debit: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_credit: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[JournalEntryStatus] = mapped_column(
        _enum(JournalEntryStatus, 'journal_entry_status'), nullable=False, default=JournalEntryStatus.DRAFT
    )
    reversal_of_id: Mapped[int | None] = mapped_column(ForeignKey('journal_entries.id'))
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    approved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class JournalEntryLine(Base):
    __tablename__ = 'journal_entry_lines'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey('journal_entries.id', ondelete='CASCADE'), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey('chart_of_accounts.id'), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    debit_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    credit_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))

    __table_args__ = (
        CheckConstraint('debit_amount >= 0 AND credit_amount >= 0', name='ck_journal_line_non_negative'),
    )


class RecoveryQueueItem(Base):
    __tablename__ = 'recovery_queue'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    context: Mapped[str | None] = mapped_column(String(100))
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default='normal')
    status: Mapped[RecoveryQueueStatus] = mapped_column(
        _enum(RecoveryQueueStatus, 'recovery_queue_status'), nullable=False, default=RecoveryQueueStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    last_error: Mapped[str | None] = mapped_column(Text)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class RecoveryAttempt(Base):
    __tablename__ = 'recovery_attempts'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    error_code: Mapped[str] = mapped_column(String(50), nullable=False)
    strategy: Mapped[str] = mapped_column(String(30), nullable=False)
    context: Mapped[str | None] = mapped_column(String(100))
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RecoveryStrategyConfig(Base):
    __tablename__ = 'recovery_strategy_configs'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    error_type: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    strategy: Mapped[str] = mapped_column(String(30), nullable=False)
    parameters: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
