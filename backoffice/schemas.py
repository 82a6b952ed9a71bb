from __future__ import annotations

from datetime import date, time
from decimal import Decimal

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str
    password: str


class CustomerCreate(BaseModel):
    branch_id: int | None = None
    name: str
    type: str = 'individual'
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    id_card: str | None = None
    occupation: str | None = None
    monthly_income: Decimal | None = None
    notes: str | None = None


class CustomerUpdate(BaseModel):
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    id_card: str | None = None
    tax_id: str | None = None
    occupation: str | None = None
    monthly_income: Decimal | None = None
    notes: str | None = None


class PlanCreate(BaseModel):
    plan_number: str
    name: str
    months: int
    interest_rate: Decimal
    down_payment_percent: Decimal = Decimal('0')
    processing_fee: Decimal = Decimal('0')
    requires_guarantor: bool = False


class EligibilityRequest(BaseModel):
    customer_id: int
    amount: Decimal


class ContractCreate(BaseModel):
    branch_id: int | None = None
    customer_id: int
    plan_id: int
    total_amount: Decimal
    contract_date: date | None = None
    guarantor_name: str | None = None
    guarantor_phone: str | None = None
    sale_id: int | None = None
    notes: str | None = None


class PaymentCreate(BaseModel):
    amount: Decimal
    paid_date: date | None = None
    payment_method: str = 'cash'
    receipt_number: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class ProductCreate(BaseModel):
    product_code: str
    name: str
    category: str | None = None
    unit_price: Decimal = Decimal('0')
    cost_price: Decimal = Decimal('0')
    min_stock_level: int | None = None
    warranty_months: int = 12
    branch_id: int | None = None


class StockAdjustment(BaseModel):
    product_id: int
    warehouse_id: int
    quantity_change: int
    reason: str


class GoodsReceipt(BaseModel):
    product_id: int
    warehouse_id: int
    serial_numbers: list[str] = Field(min_length=1)
    unit_cost: Decimal | None = None
    reference_number: str | None = None


class TransferCreate(BaseModel):
    source_warehouse_id: int
    target_warehouse_id: int
    serial_number_ids: list[int] = Field(min_length=1)
    notes: str | None = None


class SaleLineIn(BaseModel):
    product_id: int
    quantity: int = 1
    unit_price: Decimal
    serial_number_id: int | None = None


class SaleCreate(BaseModel):
    branch_id: int | None = None
    warehouse_id: int
    lines: list[SaleLineIn] = Field(min_length=1)
    payment_method: str
    customer_id: int | None = None
    employee_id: int | None = None
    discount_amount: Decimal = Decimal('0')
    tax_amount: Decimal = Decimal('0')


class ClaimCreate(BaseModel):
    branch_id: int | None = None
    customer_id: int
    product_id: int
    description: str
    claim_type: str = 'warranty'
    priority: str = 'medium'
    purchase_date: date | None = None
    serial_number_id: int | None = None
    estimated_cost: Decimal | None = None


class ClaimUpdate(BaseModel):
    status: str | None = None
    priority: str | None = None
    assigned_to_employee_id: int | None = None
    estimated_cost: Decimal | None = None
    resolution: str | None = None
    actual_cost: Decimal | None = None


class CommentCreate(BaseModel):
    comment: str


class EmployeeCreate(BaseModel):
    branch_id: int | None = None
    first_name: str
    last_name: str
    position: str | None = None
    department: str | None = None
    phone: str | None = None
    email: str | None = None
    hire_date: date | None = None
    salary: Decimal | None = None
    commission_rate: Decimal = Decimal('0')


class EmployeeUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    position: str | None = None
    department: str | None = None
    phone: str | None = None
    email: str | None = None
    hire_date: date | None = None
    salary: Decimal | None = None
    commission_rate: Decimal | None = None
    status: str | None = None


class CheckInRequest(BaseModel):
    work_date: date | None = None
    at: time
    notes: str | None = None


class CheckOutRequest(BaseModel):
    work_date: date | None = None
    at: time
    break_minutes: int = Field(default=0, ge=0)
    notes: str | None = None


class AbsenceCreate(BaseModel):
    work_date: date
    status: str = 'absent'
    notes: str | None = None


class AccountCreate(BaseModel):
    code: str
    name: str
    account_type: str
    category: str
    parent_id: int | None = None
    description: str | None = None


class JournalLineIn(BaseModel):
    account_code: str
    debit: Decimal = Decimal('0')
    credit: Decimal = Decimal('0')
    description: str | None = None


class JournalEntryCreate(BaseModel):
    branch_id: int | None = None
    entry_date: date | None = None
    description: str
    reference: str | None = None
    lines: list[JournalLineIn] = Field(min_length=2)
    submit: bool = False


class ReverseRequest(BaseModel):
    reason: str | None = None


class RecoveryStrategyConfigIn(BaseModel):
    error_type: str
    strategy: str
    parameters: dict = Field(default_factory=dict)
