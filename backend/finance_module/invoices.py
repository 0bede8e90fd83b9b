"""Monthly invoice generation and invoice maintenance.

Generation is idempotent per (center, month, year). The period is claimed by
inserting an ``InvoiceRun`` row guarded by a unique constraint. The claim is
part of the same transaction as the invoices: a concurrent run for the period
blocks on the unique index until the first one commits or rolls back, and a
run that dies midway leaves no claim behind. Each student's invoice is built
inside a savepoint: a failure rolls back that student alone and the run moves
on.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .capabilities import Action, Capabilities
from .exceptions import ConflictError, FinanceValidationError, NotFoundError
from .fees import active_assignments, get_center
from .ledger import post_double_entry, receivable_account, revenue_account
from .models import (
    Invoice,
    InvoiceItem,
    InvoiceRun,
    InvoiceStatus,
    ReferenceType,
    Student,
    StudentFeeAssignment,
    TransactionType,
)
from .status import ZERO, current_status, invoice_status, to_money
from .summaries import recompute_financial_summary

logger = logging.getLogger(__name__)


@dataclass
class GeneratedInvoice:
    invoice_id: str
    invoice_number: str
    student_id: str
    student_name: str
    total_amount: Decimal


@dataclass
class GenerationResult:
    invoices_generated: int
    invoices: list[GeneratedInvoice] = field(default_factory=list)
    already_exists: bool = False
    message: str = ""


def invoice_number_for(center_id: str, month: int, year: int, sequence: int) -> str:
    return f"INV-{center_id[:4].upper()}-{year}{month:02d}-{sequence:04d}"


def _period_has_invoices(db: Session, center_id: str, month: int, year: int) -> bool:
    return (
        db.execute(
            select(Invoice.id)
            .where(Invoice.center_id == center_id, Invoice.invoice_month == month, Invoice.invoice_year == year)
            .limit(1)
        ).first()
        is not None
    )


def _existing_run(db: Session, center_id: str, month: int, year: int) -> InvoiceRun | None:
    return db.execute(
        select(InvoiceRun).where(
            InvoiceRun.center_id == center_id,
            InvoiceRun.invoice_month == month,
            InvoiceRun.invoice_year == year,
        )
    ).scalar_one_or_none()


def _claim_period(db: Session, center_id: str, month: int, year: int, academic_year: str) -> InvoiceRun | None:
    """Reserve the period inside the caller's open transaction.

    Returns None when the period is already billed or another run holds the
    claim. Nothing is committed here.
    """
    if _period_has_invoices(db, center_id, month, year):
        return None
    stale = _existing_run(db, center_id, month, year)
    if stale is not None:
        # A committed claim without invoices was left by an interrupted run.
        logger.warning(f"Reclaiming abandoned invoice run for {center_id} {month}/{year}")
        db.delete(stale)
        db.flush()
    run = InvoiceRun(center_id=center_id, invoice_month=month, invoice_year=year, academic_year=academic_year)
    db.add(run)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return None
    return run


def _build_items(invoice: Invoice, assignments: list[StudentFeeAssignment]) -> list[InvoiceItem]:
    items = []
    for assignment in assignments:
        amount = to_money(assignment.amount)
        items.append(
            InvoiceItem(
                invoice=invoice,
                fee_heading_id=assignment.fee_heading_id,
                description=assignment.fee_heading.heading_name if assignment.fee_heading else "Fee",
                quantity=1,
                unit_amount=amount,
                total_amount=amount,
            )
        )
    return items


def _create_student_invoice(
    db: Session,
    *,
    center_id: str,
    student: Student,
    assignments: list[StudentFeeAssignment],
    month: int,
    year: int,
    academic_year: str,
    invoice_date: date,
    due_date: date,
    late_fee_per_day: Decimal,
    sequence: int,
) -> Invoice:
    total_amount = sum((to_money(a.amount) for a in assignments), ZERO)
    invoice_number = invoice_number_for(center_id, month, year, sequence)

    invoice = Invoice(
        center_id=center_id,
        student_id=student.id,
        invoice_number=invoice_number,
        invoice_month=month,
        invoice_year=year,
        invoice_date=invoice_date,
        due_date=due_date,
        total_amount=total_amount,
        paid_amount=ZERO,
        status=invoice_status(total_amount, ZERO, due_date, invoice_date),
        academic_year=academic_year,
        late_fee_per_day=late_fee_per_day,
        notes=f"Monthly invoice for {invoice_date:%B %Y}",
    )
    db.add(invoice)
    items = _build_items(invoice, assignments)
    db.add_all(items)
    db.flush()

    if sum((item.total_amount for item in items), ZERO) != total_amount:
        raise FinanceValidationError(f"Invoice {invoice_number} items do not add up to the invoice total")

    post_double_entry(
        db,
        center_id=center_id,
        transaction_date=invoice_date,
        transaction_type=TransactionType.FEE_INVOICE,
        reference_type=ReferenceType.INVOICE,
        reference_id=invoice.id,
        debit=receivable_account(),
        credit=revenue_account(),
        amount=total_amount,
        description=f"Invoice {invoice_number} for {student.name}",
    )
    db.flush()
    return invoice


def _validate_generation(month, year, academic_year, due_in_days, late_fee_per_day) -> None:
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise FinanceValidationError("month must be between 1 and 12")
    if not isinstance(year, int) or year < 1:
        raise FinanceValidationError("year must be a positive integer")
    if not academic_year or not str(academic_year).strip():
        raise FinanceValidationError("academic_year is required")
    if due_in_days is None or due_in_days < 0:
        raise FinanceValidationError("due_in_days cannot be negative")
    if to_money(late_fee_per_day) < ZERO:
        raise FinanceValidationError("late_fee_per_day cannot be negative")


def generate_monthly_invoices(
    db: Session,
    capabilities: Capabilities,
    *,
    center_id: str,
    month: int,
    year: int,
    academic_year: str,
    due_in_days: int = 30,
    late_fee_per_day=0,
) -> GenerationResult:
    """Create one invoice per billable student of a center for a month.

    Returns ``already_exists=True`` with nothing generated when the period was
    already billed; that outcome is not an error. ``invoices_generated`` only
    counts invoices that were created completely, which can be fewer than the
    number of eligible students.
    """
    capabilities.require(Action.GENERATE_INVOICES, center_id)
    get_center(db, center_id)
    _validate_generation(month, year, academic_year, due_in_days, late_fee_per_day)

    try:
        run = _claim_period(db, center_id, month, year, academic_year)
        if run is None:
            db.rollback()
            logger.info(f"Invoices already exist for {center_id} {month}/{year}, skipping generation")
            return GenerationResult(
                invoices_generated=0,
                already_exists=True,
                message=f"Invoices already exist for {month}/{year}. Skipping generation.",
            )

        students = db.execute(
            select(Student)
            .where(Student.center_id == center_id, Student.is_active.is_(True))
            .order_by(Student.name, Student.id)
        ).scalars().all()

        invoice_date = date(year, month, 1)
        due_date = invoice_date + timedelta(days=due_in_days)
        rate = to_money(late_fee_per_day)
        generated: list[GeneratedInvoice] = []
        sequence = 1

        for student in students:
            assignments = active_assignments(db, student.id, academic_year)
            if not assignments or sum((to_money(a.amount) for a in assignments), ZERO) <= ZERO:
                logger.info(f"No fee assignments for student {student.id}")
                continue
            try:
                with db.begin_nested():
                    invoice = _create_student_invoice(
                        db,
                        center_id=center_id,
                        student=student,
                        assignments=assignments,
                        month=month,
                        year=year,
                        academic_year=academic_year,
                        invoice_date=invoice_date,
                        due_date=due_date,
                        late_fee_per_day=rate,
                        sequence=sequence,
                    )
            except Exception as e:
                logger.error(f"Error processing student {student.id}: {e}")
                continue

            generated.append(
                GeneratedInvoice(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    student_id=student.id,
                    student_name=student.name,
                    total_amount=invoice.total_amount,
                )
            )
            sequence += 1

        if generated:
            run.invoices_generated = len(generated)
        else:
            db.delete(run)
        recompute_financial_summary(db, center_id, month, year)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if not students:
        message = "No students found for this center"
    else:
        message = f"Successfully generated {len(generated)} invoices for {month}/{year}"
    logger.info(f"{message} (center {center_id})")
    return GenerationResult(invoices_generated=len(generated), invoices=generated, message=message)


def get_invoice(db: Session, invoice_id: str) -> Invoice:
    invoice = db.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def lock_invoice(db: Session, invoice_id: str) -> Invoice:
    invoice = db.execute(
        select(Invoice)
        .where(Invoice.id == invoice_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def cancel_invoice(
    db: Session,
    capabilities: Capabilities,
    *,
    invoice_id: str,
    reason: str | None = None,
    cancelled_by: str | None = None,
    today: date | None = None,
) -> Invoice:
    """Cancel an unpaid invoice and reverse its receivable.

    Invoices that already carry payments cannot be cancelled; those need an
    offsetting refund instead.
    """
    today = today or date.today()
    try:
        invoice = lock_invoice(db, invoice_id)
        capabilities.require(Action.CANCEL_INVOICES, invoice.center_id)
        if invoice.is_cancelled:
            raise ConflictError(f"Invoice {invoice.invoice_number} is already cancelled")
        if to_money(invoice.paid_amount) > ZERO:
            raise ConflictError(f"Invoice {invoice.invoice_number} has payments and cannot be cancelled")

        invoice.is_cancelled = True
        invoice.cancellation_reason = reason
        invoice.status = current_status(invoice, today)

        post_double_entry(
            db,
            center_id=invoice.center_id,
            transaction_date=today,
            transaction_type=TransactionType.ADJUSTMENT,
            reference_type=ReferenceType.INVOICE,
            reference_id=invoice.id,
            debit=revenue_account(),
            credit=receivable_account(),
            amount=invoice.total_amount,
            description=f"Cancellation of invoice {invoice.invoice_number}",
            created_by=cancelled_by,
        )
        recompute_financial_summary(db, invoice.center_id, invoice.invoice_month, invoice.invoice_year)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(invoice)
    logger.info(f"Cancelled invoice {invoice.invoice_number}")
    return invoice


def refresh_invoice_statuses(
    db: Session,
    capabilities: Capabilities,
    *,
    center_id: str,
    today: date | None = None,
) -> int:
    """Re-derive the stored status of open invoices as of ``today``."""
    capabilities.require(Action.GENERATE_INVOICES, center_id)
    today = today or date.today()
    open_invoices = db.execute(
        select(Invoice).where(
            Invoice.center_id == center_id,
            Invoice.is_cancelled.is_(False),
            Invoice.status != InvoiceStatus.PAID,
        )
    ).scalars().all()

    changed = 0
    for invoice in open_invoices:
        status = current_status(invoice, today)
        if status != invoice.status:
            invoice.status = status
            changed += 1
    db.commit()
    logger.info(f"Refreshed invoice statuses for {center_id}: {changed} changed")
    return changed
