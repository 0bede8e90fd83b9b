import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from .capabilities import Action, Capabilities
from .exceptions import ConflictError, FinanceValidationError, NotFoundError
from .fees import get_center
from .ledger import cash_account, expense_account, post_double_entry
from .models import Expense, ExpenseCategory, PaymentMethod, ReferenceType, TransactionType
from .status import ZERO, to_money
from .summaries import recompute_financial_summary

logger = logging.getLogger(__name__)


def record_expense(
    db: Session,
    capabilities: Capabilities,
    *,
    center_id: str,
    expense_category,
    description: str,
    amount,
    payment_method=None,
    expense_date: date | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
    created_by: str | None = None,
) -> Expense:
    """Record an expense. It stays off the ledger until it is approved."""
    capabilities.require(Action.RECORD_EXPENSES, center_id)
    get_center(db, center_id)
    try:
        category = ExpenseCategory(expense_category)
    except ValueError as exc:
        raise FinanceValidationError(f"Invalid expense_category '{expense_category}'") from exc
    method = None
    if payment_method:
        try:
            method = PaymentMethod(payment_method)
        except ValueError as exc:
            raise FinanceValidationError(f"Invalid payment_method '{payment_method}'") from exc
    value = to_money(amount)
    if value <= ZERO:
        raise FinanceValidationError("Expense amount must be greater than zero")
    if not description or not description.strip():
        raise FinanceValidationError("description is required")

    expense = Expense(
        center_id=center_id,
        expense_category=category,
        description=description.strip(),
        amount=value,
        expense_date=expense_date or date.today(),
        payment_method=method,
        reference_number=reference_number,
        notes=notes,
        created_by=created_by,
        is_approved=False,
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    logger.info(f"Recorded {category.value} expense {expense.id} of {value} for center {center_id}")
    return expense


def approve_expense(
    db: Session,
    capabilities: Capabilities,
    *,
    expense_id: str,
    approved_by: str | None = None,
) -> Expense:
    try:
        expense = db.execute(
            select(Expense)
            .where(Expense.id == expense_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not expense:
            raise NotFoundError("Expense not found")
        capabilities.require(Action.APPROVE_EXPENSES, expense.center_id)
        if expense.is_approved:
            raise ConflictError("Expense is already approved")

        expense.is_approved = True
        expense.approved_by = approved_by
        post_double_entry(
            db,
            center_id=expense.center_id,
            transaction_date=expense.expense_date,
            transaction_type=TransactionType.EXPENSE,
            reference_type=ReferenceType.EXPENSE,
            reference_id=expense.id,
            debit=expense_account(),
            credit=cash_account(),
            amount=expense.amount,
            description=f"{expense.expense_category.value.title()} expense: {expense.description}",
            created_by=approved_by,
        )
        recompute_financial_summary(db, expense.center_id, expense.expense_date.month, expense.expense_date.year)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(expense)
    logger.info(f"Approved expense {expense.id}")
    return expense


def list_expenses(db: Session, center_id: str, approved: bool | None = None) -> list[Expense]:
    query = select(Expense).where(Expense.center_id == center_id)
    if approved is not None:
        query = query.where(Expense.is_approved.is_(approved))
    return list(db.execute(query.order_by(Expense.expense_date.desc(), Expense.created_at.desc())).scalars())
