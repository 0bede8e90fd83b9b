import logging
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from finance_module import payments as payments_module
from finance_module.capabilities import Action, Capabilities
from finance_module.exceptions import CapabilityError, ConflictError, FinanceValidationError, NotFoundError
from finance_module.invoices import cancel_invoice, generate_monthly_invoices
from finance_module.ledger import ledger_balance
from finance_module.models import (
    FinancialSummary,
    Invoice,
    InvoiceStatus,
    LedgerEntry,
    Payment,
    PaymentAllocation,
    ReferenceType,
)
from finance_module.payments import list_payments, record_payment
from finance_module.status import invoice_late_fee

from .conftest import ACADEMIC_YEAR, CENTER_ID


@pytest.fixture
def invoice(db, caps, add_student, give_fees):
    student = add_student("Asha Rao")
    give_fees(student, {"TUITION": "1000"})
    generate_monthly_invoices(db, caps, center_id=CENTER_ID, month=3, year=2024, academic_year=ACADEMIC_YEAR)
    return db.execute(select(Invoice)).scalar_one()


def _pay(db, caps, invoice, amount, **kwargs):
    kwargs.setdefault("payment_method", "cash")
    kwargs.setdefault("payment_date", date(2024, 3, 10))
    return record_payment(
        db,
        caps,
        center_id=invoice.center_id,
        student_id=invoice.student_id,
        invoice_id=invoice.id,
        amount_paid=amount,
        **kwargs,
    )


def test_partial_payment_updates_invoice_and_posts_cash_entry(db, caps, invoice):
    payment = _pay(db, caps, invoice, "400", received_by="cashier-1")

    db.refresh(invoice)
    assert invoice.paid_amount == Decimal("400.00")
    assert invoice.status is InvoiceStatus.PARTIAL
    entries = db.execute(
        select(LedgerEntry).where(LedgerEntry.reference_type == ReferenceType.PAYMENT, LedgerEntry.reference_id == payment.id)
    ).scalars().all()
    assert {(e.account_code, e.debit_amount, e.credit_amount) for e in entries} == {
        ("1101", Decimal("400.00"), Decimal("0.00")),
        ("1301", Decimal("0.00"), Decimal("400.00")),
    }
    allocation = db.execute(select(PaymentAllocation)).scalar_one()
    assert (allocation.invoice_id, allocation.allocated_amount) == (invoice.id, Decimal("400.00"))


def test_second_payment_settles_invoice_and_stops_late_fee(db, caps, invoice):
    invoice.late_fee_per_day = Decimal("10")
    db.commit()
    _pay(db, caps, invoice, "400")
    _pay(db, caps, invoice, "600")

    db.refresh(invoice)
    assert invoice.paid_amount == Decimal("1000.00")
    assert invoice.status is InvoiceStatus.PAID
    assert invoice_late_fee(invoice, invoice.due_date + timedelta(days=45)) == Decimal("0.00")


def test_payment_after_due_date_is_partial_not_overdue(db, caps, invoice):
    _pay(db, caps, invoice, "250", today=invoice.due_date + timedelta(days=20))

    db.refresh(invoice)
    assert invoice.status is InvoiceStatus.PARTIAL


def test_overpayment_is_kept_and_logged(db, caps, invoice, caplog):
    with caplog.at_level(logging.WARNING, logger="finance_module.payments"):
        _pay(db, caps, invoice, "1200")

    db.refresh(invoice)
    assert invoice.paid_amount == Decimal("1200.00")
    assert invoice.status is InvoiceStatus.PAID
    assert "over-paid" in caplog.text


def test_payment_without_invoice_still_reaches_the_ledger(db, caps, invoice):
    payment = record_payment(
        db,
        caps,
        center_id=CENTER_ID,
        student_id=invoice.student_id,
        amount_paid="150",
        payment_method="upi",
        payment_date=date(2024, 3, 12),
    )

    assert payment.invoice_id is None
    assert ledger_balance(db, ReferenceType.PAYMENT, payment.id) == (Decimal("150.00"), Decimal("150.00"))
    db.refresh(invoice)
    assert invoice.paid_amount == Decimal("0.00")


def test_payment_refreshes_summary(db, caps, invoice):
    _pay(db, caps, invoice, "400")

    summary = db.execute(
        select(FinancialSummary).where(FinancialSummary.summary_month == 3, FinancialSummary.summary_year == 2024)
    ).scalar_one()
    assert summary.total_collected == Decimal("400.00")
    assert summary.total_outstanding == Decimal("600.00")
    assert summary.net_balance == Decimal("400.00")


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_non_positive_amount_is_rejected(db, caps, invoice, amount):
    with pytest.raises(FinanceValidationError, match="amount_paid must be greater than zero"):
        _pay(db, caps, invoice, amount)


def test_unknown_payment_method_is_rejected(db, caps, invoice):
    with pytest.raises(FinanceValidationError, match="Invalid payment_method 'barter'"):
        _pay(db, caps, invoice, "100", payment_method="barter")


def test_unknown_invoice_and_student(db, caps, invoice):
    with pytest.raises(NotFoundError, match="Invoice not found"):
        record_payment(
            db, caps, center_id=CENTER_ID, student_id=invoice.student_id, invoice_id="nope",
            amount_paid="10", payment_method="cash",
        )
    with pytest.raises(NotFoundError, match="Student not found"):
        record_payment(db, caps, center_id=CENTER_ID, student_id="nobody", amount_paid="10", payment_method="cash")
    assert db.execute(select(func.count()).select_from(Payment)).scalar_one() == 0


def test_cancelled_invoice_cannot_take_payments(db, caps, invoice):
    cancel_invoice(db, caps, invoice_id=invoice.id)
    with pytest.raises(ConflictError):
        _pay(db, caps, invoice, "100")


def test_paid_invoice_cannot_be_cancelled(db, caps, invoice):
    _pay(db, caps, invoice, "100")
    with pytest.raises(ConflictError, match="has payments"):
        cancel_invoice(db, caps, invoice_id=invoice.id)


def test_failure_after_payment_insert_rolls_everything_back(db, caps, invoice, monkeypatch):
    def broken_post(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(payments_module, "post_double_entry", broken_post)

    with pytest.raises(RuntimeError):
        _pay(db, caps, invoice, "400")

    db.refresh(invoice)
    assert invoice.paid_amount == Decimal("0.00")
    assert invoice.status is InvoiceStatus.ISSUED
    assert db.execute(select(func.count()).select_from(Payment)).scalar_one() == 0
    assert db.execute(select(func.count()).select_from(PaymentAllocation)).scalar_one() == 0


def test_recording_requires_capability(db, invoice):
    caps = Capabilities(actions=frozenset({Action.READ_REPORTS}))
    with pytest.raises(CapabilityError, match="payments.record"):
        _pay(db, caps, invoice, "100")


def test_list_payments_filters(db, caps, invoice):
    _pay(db, caps, invoice, "100", payment_date=date(2024, 3, 5))
    _pay(db, caps, invoice, "200", payment_date=date(2024, 4, 5))

    march = list_payments(db, CENTER_ID, start=date(2024, 3, 1), end=date(2024, 3, 31))
    assert [p.amount_paid for p in march] == [Decimal("100.00")]
    assert len(list_payments(db, CENTER_ID, invoice_id=invoice.id)) == 2
