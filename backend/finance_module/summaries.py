import calendar
import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import Expense, FinancialSummary, Invoice, Payment
from .status import ZERO, outstanding_amount, to_money

logger = logging.getLogger(__name__)


def period_bounds(month: int, year: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def recompute_financial_summary(db: Session, center_id: str, month: int, year: int) -> FinancialSummary:
    """Rebuild the cached rollup for one period from the source tables.

    The summary is never read back by the engine; it only exists so the
    dashboards do not have to aggregate on every page load.
    """
    db.flush()
    start, end = period_bounds(month, year)

    invoices = db.execute(
        select(Invoice).where(
            Invoice.center_id == center_id,
            Invoice.invoice_month == month,
            Invoice.invoice_year == year,
            Invoice.is_cancelled.is_(False),
        )
    ).scalars().all()
    total_invoiced = sum((to_money(inv.total_amount) for inv in invoices), ZERO)
    total_outstanding = sum((outstanding_amount(inv) for inv in invoices), ZERO)

    total_collected = to_money(
        db.execute(
            select(func.coalesce(func.sum(Payment.amount_paid), 0)).where(
                Payment.center_id == center_id,
                Payment.payment_date >= start,
                Payment.payment_date <= end,
            )
        ).scalar_one()
    )
    total_expenses = to_money(
        db.execute(
            select(func.coalesce(func.sum(Expense.amount), 0)).where(
                Expense.center_id == center_id,
                Expense.is_approved.is_(True),
                Expense.expense_date >= start,
                Expense.expense_date <= end,
            )
        ).scalar_one()
    )

    summary = db.execute(
        select(FinancialSummary).where(
            FinancialSummary.center_id == center_id,
            FinancialSummary.summary_month == month,
            FinancialSummary.summary_year == year,
        )
    ).scalar_one_or_none()
    if summary is None:
        summary = FinancialSummary(center_id=center_id, summary_month=month, summary_year=year)
        db.add(summary)

    summary.total_invoiced = total_invoiced
    summary.total_outstanding = total_outstanding
    summary.total_collected = total_collected
    summary.total_expenses = total_expenses
    summary.net_balance = total_collected - total_expenses
    db.flush()

    logger.info(
        f"Financial summary {center_id} {month:02d}/{year}: invoiced={total_invoiced} "
        f"collected={total_collected} outstanding={total_outstanding} expenses={total_expenses}"
    )
    return summary


def list_summaries(db: Session, center_id: str, limit: int = 12) -> list[FinancialSummary]:
    return list(
        db.execute(
            select(FinancialSummary)
            .where(FinancialSummary.center_id == center_id)
            .order_by(FinancialSummary.summary_year.desc(), FinancialSummary.summary_month.desc())
            .limit(limit)
        ).scalars()
    )
