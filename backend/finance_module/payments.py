import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from .capabilities import Action, Capabilities
from .exceptions import ConflictError, FinanceValidationError, NotFoundError
from .fees import get_center
from .invoices import lock_invoice
from .ledger import cash_account, post_double_entry, receivable_account
from .models import (
    Payment,
    PaymentAllocation,
    PaymentMethod,
    ReferenceType,
    Student,
    TransactionType,
)
from .status import ZERO, invoice_status, to_money
from .summaries import recompute_financial_summary

logger = logging.getLogger(__name__)


def _parse_method(payment_method) -> PaymentMethod:
    try:
        return PaymentMethod(payment_method)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in PaymentMethod)
        raise FinanceValidationError(f"Invalid payment_method '{payment_method}'. Must be one of: {allowed}") from exc


def record_payment(
    db: Session,
    capabilities: Capabilities,
    *,
    center_id: str,
    student_id: str,
    amount_paid,
    payment_method,
    invoice_id: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    received_by: str | None = None,
    payment_date: date | None = None,
    today: date | None = None,
) -> Payment:
    """Record a payment and, when ``invoice_id`` is given, apply it.

    The payment row, the invoice update, the allocation and both ledger rows
    are written in one transaction. The invoice row is locked for the
    read-modify-write of ``paid_amount``.

    ``paid_amount`` is not capped at ``total_amount``: an over-payment is kept
    on the invoice as-is so the surplus stays visible.
    """
    capabilities.require(Action.RECORD_PAYMENTS, center_id)
    today = today or date.today()
    payment_date = payment_date or today

    amount = to_money(amount_paid)
    if amount <= ZERO:
        raise FinanceValidationError("amount_paid must be greater than zero")
    method = _parse_method(payment_method)
    get_center(db, center_id)
    if not student_id:
        raise FinanceValidationError("student_id is required")
    student = db.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")
    if student.center_id != center_id:
        raise FinanceValidationError("Student does not belong to this center")

    periods = {(payment_date.month, payment_date.year)}
    try:
        invoice = None
        if invoice_id:
            invoice = lock_invoice(db, invoice_id)
            if invoice.center_id != center_id or invoice.student_id != student_id:
                raise FinanceValidationError("Invoice does not belong to this student and center")
            if invoice.is_cancelled:
                raise ConflictError(f"Invoice {invoice.invoice_number} is cancelled")

        payment = Payment(
            center_id=center_id,
            student_id=student_id,
            invoice_id=invoice_id,
            payment_date=payment_date,
            amount_paid=amount,
            payment_method=method,
            reference_number=reference_number,
            notes=notes,
            received_by=received_by,
        )
        db.add(payment)
        db.flush()

        if invoice is not None:
            new_paid = to_money(invoice.paid_amount) + amount
            invoice.paid_amount = new_paid
            invoice.status = invoice_status(invoice.total_amount, new_paid, invoice.due_date, today)
            db.add(PaymentAllocation(payment_id=payment.id, invoice_id=invoice.id, allocated_amount=amount))
            periods.add((invoice.invoice_month, invoice.invoice_year))
            if new_paid > to_money(invoice.total_amount):
                logger.warning(
                    f"Invoice {invoice.invoice_number} over-paid: paid {new_paid} against total {invoice.total_amount}"
                )

        post_double_entry(
            db,
            center_id=center_id,
            transaction_date=payment_date,
            transaction_type=TransactionType.PAYMENT_RECEIVED,
            reference_type=ReferenceType.PAYMENT,
            reference_id=payment.id,
            debit=cash_account(),
            credit=receivable_account(),
            amount=amount,
            description=f"Payment from {student.name} via {method.value}",
            created_by=received_by,
        )

        for month, year in sorted(periods, key=lambda p: (p[1], p[0])):
            recompute_financial_summary(db, center_id, month, year)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    logger.info(f"Recorded payment {payment.id} of {amount} for student {student_id}")
    return payment


def list_payments(
    db: Session,
    center_id: str,
    *,
    student_id: str | None = None,
    invoice_id: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[Payment]:
    query = select(Payment).where(Payment.center_id == center_id)
    if student_id:
        query = query.where(Payment.student_id == student_id)
    if invoice_id:
        query = query.where(Payment.invoice_id == invoice_id)
    if start:
        query = query.where(Payment.payment_date >= start)
    if end:
        query = query.where(Payment.payment_date <= end)
    return list(db.execute(query.order_by(Payment.payment_date.desc(), Payment.created_at.desc())).scalars())
