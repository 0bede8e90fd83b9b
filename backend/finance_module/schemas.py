from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from .config import settings
from .models import ExpenseCategory, InvoiceStatus, PaymentMethod, ReferenceType, TransactionType


# Decimal in Python, plain number on the wire.
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class GenerateInvoicesRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    center_id: str = Field(min_length=1)
    month: int
    year: int
    academic_year: str = Field(min_length=1)
    due_in_days: int = settings.default_due_days
    late_fee_per_day: Decimal = Decimal("0")


class GeneratedInvoiceOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    invoice_id: str
    invoice_number: str
    student_id: str
    student_name: str
    total_amount: Amount


class GenerateInvoicesResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    message: str
    invoices_generated: int
    invoices: list[GeneratedInvoiceOut] = []
    already_exists: bool = False


class InvoiceItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    fee_heading_id: str
    description: str
    quantity: int
    unit_amount: Amount
    total_amount: Amount


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    center_id: str
    student_id: str
    invoice_number: str
    invoice_month: int
    invoice_year: int
    invoice_date: date
    due_date: date
    total_amount: Amount
    paid_amount: Amount
    status: InvoiceStatus
    academic_year: str
    late_fee_per_day: Amount
    notes: str | None = None
    items: list[InvoiceItemOut] = []


class InvoiceDetailOut(BaseModel):
    invoice: InvoiceOut
    status: InvoiceStatus
    late_fee: Amount
    outstanding_amount: Amount
    outstanding_with_late_fee: Amount


class CancelInvoiceRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class RefreshStatusRequest(BaseModel):
    center_id: str = Field(min_length=1)


class RefreshStatusResponse(BaseModel):
    center_id: str
    invoices_updated: int


class PaymentCreateRequest(BaseModel):
    center_id: str = Field(min_length=1)
    student_id: str = Field(min_length=1)
    amount_paid: Decimal
    payment_method: str
    invoice_id: str | None = None
    reference_number: str | None = Field(default=None, max_length=128)
    notes: str | None = None
    payment_date: date | None = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    center_id: str
    student_id: str
    invoice_id: str | None
    payment_date: date
    amount_paid: Amount
    payment_method: PaymentMethod
    reference_number: str | None
    notes: str | None
    received_by: str | None
    created_at: datetime


class FeeHeadingCreateRequest(BaseModel):
    center_id: str = Field(min_length=1)
    heading_name: str = Field(min_length=1, max_length=255)
    heading_code: str = Field(min_length=1, max_length=32)
    description: str | None = None
    sort_order: int = 0


class FeeHeadingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    center_id: str
    heading_name: str
    heading_code: str
    description: str | None
    is_active: bool
    sort_order: int


class FeeStructureCreateRequest(BaseModel):
    center_id: str = Field(min_length=1)
    fee_heading_id: str = Field(min_length=1)
    grade: str = Field(min_length=1, max_length=32)
    amount: Decimal
    academic_year: str = Field(min_length=1, max_length=16)
    effective_from: date
    effective_to: date | None = None


class FeeStructureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    center_id: str
    fee_heading_id: str
    grade: str
    amount: Amount
    academic_year: str
    effective_from: date
    effective_to: date | None
    is_active: bool


class FeeAssignRequest(BaseModel):
    student_ids: list[str] | None = None


class FeeAssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    fee_heading_id: str
    fee_structure_id: str
    amount: Amount
    academic_year: str
    assigned_date: date


class ExpenseCreateRequest(BaseModel):
    center_id: str = Field(min_length=1)
    expense_category: str
    description: str
    amount: Decimal
    payment_method: str | None = None
    expense_date: date | None = None
    reference_number: str | None = Field(default=None, max_length=128)
    notes: str | None = None


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    center_id: str
    expense_category: ExpenseCategory
    description: str
    amount: Amount
    expense_date: date
    payment_method: PaymentMethod | None
    is_approved: bool
    approved_by: str | None


class FinancialSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    center_id: str
    summary_month: int
    summary_year: int
    total_invoiced: Amount
    total_collected: Amount
    total_outstanding: Amount
    total_expenses: Amount
    net_balance: Amount
    last_updated: datetime


class AgingOut(BaseModel):
    center_id: str
    buckets: dict[str, Amount]


class ReconciliationOut(BaseModel):
    center_id: str
    subledger: Amount
    gl_control: Amount
    difference: Amount
    matched: bool


class TrialBalanceRow(BaseModel):
    account_code: str
    account_name: str
    total_debit: Amount
    total_credit: Amount
    balance: Amount


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    transaction_date: date
    transaction_type: TransactionType
    reference_type: ReferenceType
    reference_id: str
    account_code: str
    account_name: str
    debit_amount: Amount
    credit_amount: Amount
    description: str | None
    created_by: str | None
