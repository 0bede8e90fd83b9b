import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import settings
from .exceptions import FinanceValidationError, NotFoundError
from .models import Expense, Invoice, LedgerEntry, Payment, ReferenceType, TransactionType
from .status import ZERO, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Account:
    code: str
    name: str


def receivable_account() -> Account:
    return Account(settings.receivable_account_code, settings.receivable_account_name)


def revenue_account() -> Account:
    return Account(settings.revenue_account_code, settings.revenue_account_name)


def cash_account() -> Account:
    return Account(settings.cash_account_code, settings.cash_account_name)


def expense_account() -> Account:
    return Account(settings.expense_account_code, settings.expense_account_name)


def post_double_entry(
    db: Session,
    *,
    center_id: str,
    transaction_date: date,
    transaction_type: TransactionType,
    reference_type: ReferenceType,
    reference_id: str,
    debit: Account,
    credit: Account,
    amount,
    description: str,
    created_by: str | None = None,
) -> tuple[LedgerEntry, LedgerEntry]:
    """Append one balanced debit/credit pair for a financial event.

    The rows are added to the caller's session and share its transaction, so
    they are committed or rolled back together with the event they describe.
    """
    value = to_money(amount)
    if value <= ZERO:
        raise FinanceValidationError("Posting amount must be greater than zero.")

    common = dict(
        center_id=center_id,
        transaction_date=transaction_date,
        transaction_type=transaction_type,
        reference_type=reference_type,
        reference_id=reference_id,
        created_by=created_by,
    )
    debit_row = LedgerEntry(
        account_code=debit.code,
        account_name=debit.name,
        debit_amount=value,
        credit_amount=ZERO,
        description=description,
        **common,
    )
    credit_row = LedgerEntry(
        account_code=credit.code,
        account_name=credit.name,
        debit_amount=ZERO,
        credit_amount=value,
        description=description,
        **common,
    )
    db.add_all([debit_row, credit_row])
    logger.debug(f"Posted {transaction_type.value} {reference_type.value}:{reference_id} Dr {debit.code} / Cr {credit.code} {value}")
    return debit_row, credit_row


def ledger_balance(db: Session, reference_type: ReferenceType, reference_id: str) -> tuple[Decimal, Decimal]:
    debits, credits = db.execute(
        select(
            func.coalesce(func.sum(LedgerEntry.debit_amount), 0),
            func.coalesce(func.sum(LedgerEntry.credit_amount), 0),
        ).where(
            LedgerEntry.reference_type == reference_type,
            LedgerEntry.reference_id == reference_id,
        )
    ).one()
    return to_money(debits), to_money(credits)


_REFERENCE_MODELS = {
    ReferenceType.INVOICE: Invoice,
    ReferenceType.PAYMENT: Payment,
    ReferenceType.EXPENSE: Expense,
}


def reference_center(db: Session, reference_type: ReferenceType, reference_id: str) -> str:
    model = _REFERENCE_MODELS[reference_type]
    center_id = db.execute(select(model.center_id).where(model.id == reference_id)).scalar_one_or_none()
    if center_id is None:
        raise NotFoundError(f"{reference_type.value.capitalize()} not found")
    return center_id


def entries_for(db: Session, reference_type: ReferenceType, reference_id: str) -> list[LedgerEntry]:
    return list(
        db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.reference_type == reference_type, LedgerEntry.reference_id == reference_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.debit_amount.desc())
        ).scalars()
    )


def trial_balance(db: Session, center_id: str, start: date | None = None, end: date | None = None) -> list[dict]:
    query = select(
        LedgerEntry.account_code,
        LedgerEntry.account_name,
        func.coalesce(func.sum(LedgerEntry.debit_amount), 0),
        func.coalesce(func.sum(LedgerEntry.credit_amount), 0),
    ).where(LedgerEntry.center_id == center_id)
    if start:
        query = query.where(LedgerEntry.transaction_date >= start)
    if end:
        query = query.where(LedgerEntry.transaction_date <= end)
    query = query.group_by(LedgerEntry.account_code, LedgerEntry.account_name).order_by(LedgerEntry.account_code)

    rows = []
    for code, name, debits, credits in db.execute(query).all():
        debits, credits = to_money(debits), to_money(credits)
        rows.append(
            {
                "account_code": code,
                "account_name": name,
                "total_debit": debits,
                "total_credit": credits,
                "balance": debits - credits,
            }
        )
    return rows


def account_balance(db: Session, center_id: str, account_code: str) -> Decimal:
    debits, credits = db.execute(
        select(
            func.coalesce(func.sum(LedgerEntry.debit_amount), 0),
            func.coalesce(func.sum(LedgerEntry.credit_amount), 0),
        ).where(LedgerEntry.center_id == center_id, LedgerEntry.account_code == account_code)
    ).one()
    return to_money(debits) - to_money(credits)
