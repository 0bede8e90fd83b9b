"""Read-only projections over invoices, payments and the ledger."""

from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from .ledger import account_balance, receivable_account
from .models import Invoice, InvoiceStatus, Payment
from .status import ZERO, current_status, invoice_late_fee, outstanding_amount, to_money


def invoice_view(invoice: Invoice, today: date) -> dict:
    late = invoice_late_fee(invoice, today)
    outstanding = outstanding_amount(invoice)
    return {
        "invoice": invoice,
        "status": current_status(invoice, today),
        "late_fee": late,
        "outstanding_amount": outstanding,
        "outstanding_with_late_fee": outstanding + late,
    }


def list_invoices(
    db: Session,
    center_id: str,
    *,
    month: int | None = None,
    year: int | None = None,
    student_id: str | None = None,
    status: InvoiceStatus | None = None,
    today: date | None = None,
) -> list[dict]:
    today = today or date.today()
    query = select(Invoice).options(selectinload(Invoice.items)).where(Invoice.center_id == center_id)
    if month:
        query = query.where(Invoice.invoice_month == month)
    if year:
        query = query.where(Invoice.invoice_year == year)
    if student_id:
        query = query.where(Invoice.student_id == student_id)
    invoices = db.execute(query.order_by(Invoice.invoice_date.desc(), Invoice.invoice_number)).scalars().all()

    views = [invoice_view(inv, today) for inv in invoices]
    if status:
        # Filter on the live status, not the stored one.
        views = [v for v in views if v["status"] == status]
    return views


def ar_aging(db: Session, center_id: str, today: date | None = None) -> dict[str, Decimal]:
    today = today or date.today()
    buckets = {"0_30": ZERO, "31_60": ZERO, "61_90": ZERO, "90_plus": ZERO}
    invoices = db.execute(
        select(Invoice).where(Invoice.center_id == center_id, Invoice.is_cancelled.is_(False))
    ).scalars().all()
    for invoice in invoices:
        amount = outstanding_amount(invoice)
        if amount <= ZERO:
            continue
        age = (today - invoice.due_date).days
        if age <= 30:
            buckets["0_30"] += amount
        elif age <= 60:
            buckets["31_60"] += amount
        elif age <= 90:
            buckets["61_90"] += amount
        else:
            buckets["90_plus"] += amount
    return buckets


def reconciliation_check(db: Session, center_id: str) -> dict:
    """Compare the receivable sub-ledger with the receivable control account."""
    invoiced = db.execute(
        select(func.coalesce(func.sum(Invoice.total_amount), 0)).where(
            Invoice.center_id == center_id, Invoice.is_cancelled.is_(False)
        )
    ).scalar_one()
    collected = db.execute(
        select(func.coalesce(func.sum(Payment.amount_paid), 0)).where(Payment.center_id == center_id)
    ).scalar_one()
    subledger = to_money(invoiced) - to_money(collected)
    control = account_balance(db, center_id, receivable_account().code)
    difference = subledger - control
    return {
        "subledger": subledger,
        "gl_control": control,
        "difference": difference,
        "matched": abs(difference) <= Decimal("0.01"),
    }
