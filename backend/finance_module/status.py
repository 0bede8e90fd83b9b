"""Invoice status and late-fee rules.

Everything here is a pure function of its arguments. ``invoice_status`` is the
only place an ``InvoiceStatus`` is decided; the generator, the payment
allocator, cancellation and the reporting views all go through it.

Precedence:

* a cancelled invoice is ``cancelled``;
* nothing charged and nothing paid is ``draft``;
* nothing paid is ``overdue`` once ``today`` is past the due date, else ``issued``;
* paid in full (or more) is ``paid``;
* anything in between is ``partial``, even past the due date.

The last rule means a partially paid invoice never reports ``overdue``; the late
fee is computed from the due date independently, so it can still accrue.
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from .models import Invoice, InvoiceStatus


ZERO = Decimal("0.00")
CENT = Decimal("0.01")

NO_LATE_FEE_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def invoice_status(total_amount, paid_amount, due_date: date, today: date, cancelled: bool = False) -> InvoiceStatus:
    total = to_money(total_amount)
    paid = to_money(paid_amount)

    if cancelled:
        return InvoiceStatus.CANCELLED
    if total == ZERO and paid <= ZERO:
        return InvoiceStatus.DRAFT
    if paid <= ZERO:
        return InvoiceStatus.OVERDUE if due_date < today else InvoiceStatus.ISSUED
    if paid >= total:
        return InvoiceStatus.PAID
    return InvoiceStatus.PARTIAL


def days_overdue(due_date: date, today: date) -> int:
    return max((today - due_date).days, 0)


def late_fee(status: InvoiceStatus, due_date: date, late_fee_per_day, today: date) -> Decimal:
    if status in NO_LATE_FEE_STATUSES:
        return ZERO
    rate = to_money(late_fee_per_day)
    if rate <= ZERO or today <= due_date:
        return ZERO
    return to_money(days_overdue(due_date, today) * rate)


def current_status(invoice: Invoice, today: date) -> InvoiceStatus:
    return invoice_status(
        invoice.total_amount,
        invoice.paid_amount,
        invoice.due_date,
        today,
        cancelled=invoice.is_cancelled,
    )


def invoice_late_fee(invoice: Invoice, today: date) -> Decimal:
    return late_fee(current_status(invoice, today), invoice.due_date, invoice.late_fee_per_day, today)


def outstanding_amount(invoice: Invoice) -> Decimal:
    if invoice.is_cancelled:
        return ZERO
    return max(to_money(invoice.total_amount) - to_money(invoice.paid_amount), ZERO)


def outstanding_with_late_fee(invoice: Invoice, today: date) -> Decimal:
    return outstanding_amount(invoice) + invoice_late_fee(invoice, today)
