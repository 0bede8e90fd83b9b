import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CHEQUE = "cheque"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CARD = "card"
    WALLET = "wallet"
    OTHER = "other"


class ExpenseCategory(str, enum.Enum):
    SALARIES = "salaries"
    RENT = "rent"
    UTILITIES = "utilities"
    MATERIALS = "materials"
    MAINTENANCE = "maintenance"
    TRANSPORT = "transport"
    ADMIN = "admin"
    OTHER = "other"


class TransactionType(str, enum.Enum):
    FEE_INVOICE = "fee_invoice"
    PAYMENT_RECEIVED = "payment_received"
    EXPENSE = "expense"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"
    BANK_CHARGE = "bank_charge"
    OTHER = "other"


class ReferenceType(str, enum.Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"
    EXPENSE = "expense"


def _enum_column(enum_cls):
    # Persist the lowercase values the dashboard tables already use.
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
        length=32,
    )


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


Money = Numeric(12, 2)


class Center(Base):
    __tablename__ = "centers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class Student(Base):
    __tablename__ = "students"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    grade: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    center: Mapped[Center] = relationship("Center")


class CenterFeaturePermission(Base):
    __tablename__ = "center_feature_permissions"
    __table_args__ = (UniqueConstraint("center_id", "feature_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    feature_name: Mapped[str] = mapped_column(String(64), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class FeeHeading(Base):
    __tablename__ = "fee_headings"
    __table_args__ = (UniqueConstraint("center_id", "heading_code"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    heading_name: Mapped[str] = mapped_column(String(255), nullable=False)
    heading_code: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class FeeStructure(Base):
    __tablename__ = "fee_structures"
    __table_args__ = (UniqueConstraint("center_id", "fee_heading_id", "grade", "academic_year"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_heading_id: Mapped[str] = mapped_column(ForeignKey("fee_headings.id", ondelete="CASCADE"), nullable=False)
    grade: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    academic_year: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    fee_heading: Mapped[FeeHeading] = relationship("FeeHeading")


class StudentFeeAssignment(Base):
    __tablename__ = "student_fee_assignments"
    __table_args__ = (
        Index(
            "uq_active_fee_assignment",
            "student_id",
            "fee_heading_id",
            "academic_year",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_heading_id: Mapped[str] = mapped_column(ForeignKey("fee_headings.id", ondelete="CASCADE"), nullable=False)
    fee_structure_id: Mapped[str] = mapped_column(ForeignKey("fee_structures.id", ondelete="CASCADE"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    academic_year: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assigned_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    fee_heading: Mapped[FeeHeading] = relationship("FeeHeading")


class InvoiceRun(Base):
    """Claim on a billing period; at most one per (center, month, year)."""

    __tablename__ = "invoice_runs"
    __table_args__ = (UniqueConstraint("center_id", "invoice_month", "invoice_year", name="uq_invoice_run_period"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False)
    invoice_month: Mapped[int] = mapped_column(Integer, nullable=False)
    invoice_year: Mapped[int] = mapped_column(Integer, nullable=False)
    academic_year: Mapped[str] = mapped_column(String(16), nullable=False)
    invoices_generated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("center_id", "invoice_number"),
        UniqueConstraint("center_id", "student_id", "invoice_month", "invoice_year", name="uq_invoice_student_period"),
        Index("ix_invoices_period", "center_id", "invoice_month", "invoice_year"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_month: Mapped[int] = mapped_column(Integer, nullable=False)
    invoice_year: Mapped[int] = mapped_column(Integer, nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(_enum_column(InvoiceStatus), nullable=False, index=True)
    academic_year: Mapped[str] = mapped_column(String(16), nullable=False)
    late_fee_per_day: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    student: Mapped[Student] = relationship("Student")
    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan", order_by="InvoiceItem.created_at"
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_heading_id: Mapped[str] = mapped_column(ForeignKey("fee_headings.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)

    invoice: Mapped[Invoice] = relationship("Invoice", back_populates="items")


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id: Mapped[str] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id: Mapped[str | None] = mapped_column(ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    amount_paid: Mapped[Decimal] = mapped_column(Money, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(_enum_column(PaymentMethod), nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class PaymentAllocation(Base):
    __tablename__ = "payment_allocations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    payment_id: Mapped[str] = mapped_column(ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    allocated_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (Index("ix_ledger_reference", "reference_type", "reference_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    transaction_type: Mapped[TransactionType] = mapped_column(_enum_column(TransactionType), nullable=False)
    reference_type: Mapped[ReferenceType] = mapped_column(_enum_column(ReferenceType), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(36), nullable=False)
    account_code: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    debit_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    expense_category: Mapped[ExpenseCategory] = mapped_column(_enum_column(ExpenseCategory), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    payment_method: Mapped[PaymentMethod | None] = mapped_column(_enum_column(PaymentMethod), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class FinancialSummary(Base):
    __tablename__ = "financial_summaries"
    __table_args__ = (UniqueConstraint("center_id", "summary_month", "summary_year"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    center_id: Mapped[str] = mapped_column(ForeignKey("centers.id", ondelete="CASCADE"), nullable=False, index=True)
    summary_month: Mapped[int] = mapped_column(Integer, nullable=False)
    summary_year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_invoiced: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    total_collected: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    total_outstanding: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    total_expenses: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    net_balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
