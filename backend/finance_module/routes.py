from contextlib import contextmanager
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .capabilities import Action, Capabilities
from .database import get_db_session
from .exceptions import FinanceError
from .expenses import approve_expense, list_expenses, record_expense
from .fees import assign_fee_structure, create_fee_heading, create_fee_structure, list_fee_headings
from .invoices import cancel_invoice, generate_monthly_invoices, get_invoice, refresh_invoice_statuses
from .ledger import entries_for, reference_center, trial_balance
from .middleware import Actor, get_capabilities, get_current_actor
from .models import InvoiceStatus, ReferenceType
from .payments import list_payments, record_payment
from .reports import ar_aging, invoice_view, list_invoices, reconciliation_check
from .schemas import (
    AgingOut,
    CancelInvoiceRequest,
    ExpenseCreateRequest,
    ExpenseOut,
    FeeAssignmentOut,
    FeeAssignRequest,
    FeeHeadingCreateRequest,
    FeeHeadingOut,
    FeeStructureCreateRequest,
    FeeStructureOut,
    FinancialSummaryOut,
    GeneratedInvoiceOut,
    GenerateInvoicesRequest,
    GenerateInvoicesResponse,
    InvoiceDetailOut,
    InvoiceOut,
    LedgerEntryOut,
    PaymentCreateRequest,
    PaymentOut,
    ReconciliationOut,
    RefreshStatusRequest,
    RefreshStatusResponse,
    TrialBalanceRow,
)
from .summaries import list_summaries

router = APIRouter(prefix="/api/v1/finance", tags=["Finance"])


@contextmanager
def _engine_errors():
    try:
        yield
    except FinanceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


def _detail(view: dict) -> InvoiceDetailOut:
    return InvoiceDetailOut(
        invoice=InvoiceOut.model_validate(view["invoice"]),
        status=view["status"],
        late_fee=view["late_fee"],
        outstanding_amount=view["outstanding_amount"],
        outstanding_with_late_fee=view["outstanding_with_late_fee"],
    )


@router.post("/invoices/generate", response_model=GenerateInvoicesResponse)
def generate_invoices(
    payload: GenerateInvoicesRequest,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        result = generate_monthly_invoices(
            db,
            caps,
            center_id=payload.center_id,
            month=payload.month,
            year=payload.year,
            academic_year=payload.academic_year,
            due_in_days=payload.due_in_days,
            late_fee_per_day=payload.late_fee_per_day,
        )
    return GenerateInvoicesResponse(
        message=result.message,
        invoices_generated=result.invoices_generated,
        invoices=[GeneratedInvoiceOut.model_validate(inv) for inv in result.invoices],
        already_exists=result.already_exists,
    )


@router.get("/invoices", response_model=list[InvoiceDetailOut])
def get_invoices(
    center_id: str,
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = None,
    student_id: str | None = None,
    invoice_status: InvoiceStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require_account(center_id, student_id)
    views = list_invoices(db, center_id, month=month, year=year, student_id=student_id, status=invoice_status)
    return [_detail(view) for view in views]


@router.post("/invoices/refresh-status", response_model=RefreshStatusResponse)
def refresh_status(
    payload: RefreshStatusRequest,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        changed = refresh_invoice_statuses(db, caps, center_id=payload.center_id)
    return RefreshStatusResponse(center_id=payload.center_id, invoices_updated=changed)


@router.get("/invoices/{invoice_id}", response_model=InvoiceDetailOut)
def get_invoice_detail(
    invoice_id: str,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        invoice = get_invoice(db, invoice_id)
        caps.require_account(invoice.center_id, invoice.student_id)
    return _detail(invoice_view(invoice, date.today()))


@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceOut)
def cancel(
    invoice_id: str,
    payload: CancelInvoiceRequest,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
    actor: Actor = Depends(get_current_actor),
):
    with _engine_errors():
        invoice = cancel_invoice(db, caps, invoice_id=invoice_id, reason=payload.reason, cancelled_by=actor.subject)
    return InvoiceOut.model_validate(invoice)


@router.post("/payments", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
def create_payment(
    payload: PaymentCreateRequest,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
    actor: Actor = Depends(get_current_actor),
):
    with _engine_errors():
        payment = record_payment(
            db,
            caps,
            center_id=payload.center_id,
            student_id=payload.student_id,
            amount_paid=payload.amount_paid,
            payment_method=payload.payment_method,
            invoice_id=payload.invoice_id,
            reference_number=payload.reference_number,
            notes=payload.notes,
            received_by=actor.subject,
            payment_date=payload.payment_date,
        )
    return PaymentOut.model_validate(payment)


@router.get("/payments", response_model=list[PaymentOut])
def get_payments(
    center_id: str,
    student_id: str | None = None,
    invoice_id: str | None = None,
    start: date | None = None,
    end: date | None = None,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require_account(center_id, student_id)
    payments = list_payments(db, center_id, student_id=student_id, invoice_id=invoice_id, start=start, end=end)
    return [PaymentOut.model_validate(p) for p in payments]


@router.post("/fee-headings", response_model=FeeHeadingOut, status_code=status.HTTP_201_CREATED)
def add_fee_heading(
    payload: FeeHeadingCreateRequest,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        heading = create_fee_heading(
            db,
            caps,
            center_id=payload.center_id,
            heading_name=payload.heading_name,
            heading_code=payload.heading_code,
            description=payload.description,
            sort_order=payload.sort_order,
        )
    return FeeHeadingOut.model_validate(heading)


@router.get("/fee-headings", response_model=list[FeeHeadingOut])
def get_fee_headings(
    center_id: str,
    include_inactive: bool = False,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require(Action.READ_REPORTS, center_id)
    headings = list_fee_headings(db, center_id, active_only=not include_inactive)
    return [FeeHeadingOut.model_validate(h) for h in headings]


@router.post("/fee-structures", response_model=FeeStructureOut, status_code=status.HTTP_201_CREATED)
def add_fee_structure(
    payload: FeeStructureCreateRequest,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        structure = create_fee_structure(
            db,
            caps,
            center_id=payload.center_id,
            fee_heading_id=payload.fee_heading_id,
            grade=payload.grade,
            amount=payload.amount,
            academic_year=payload.academic_year,
            effective_from=payload.effective_from,
            effective_to=payload.effective_to,
        )
    return FeeStructureOut.model_validate(structure)


@router.post("/fee-structures/{fee_structure_id}/assign", response_model=list[FeeAssignmentOut])
def assign_structure(
    fee_structure_id: str,
    payload: FeeAssignRequest,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        assignments = assign_fee_structure(
            db, caps, fee_structure_id=fee_structure_id, student_ids=payload.student_ids
        )
    return [FeeAssignmentOut.model_validate(a) for a in assignments]


@router.post("/expenses", response_model=ExpenseOut, status_code=status.HTTP_201_CREATED)
def add_expense(
    payload: ExpenseCreateRequest,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
    actor: Actor = Depends(get_current_actor),
):
    with _engine_errors():
        expense = record_expense(
            db,
            caps,
            center_id=payload.center_id,
            expense_category=payload.expense_category,
            description=payload.description,
            amount=payload.amount,
            payment_method=payload.payment_method,
            expense_date=payload.expense_date,
            reference_number=payload.reference_number,
            notes=payload.notes,
            created_by=actor.subject,
        )
    return ExpenseOut.model_validate(expense)


@router.get("/expenses", response_model=list[ExpenseOut])
def get_expenses(
    center_id: str,
    approved: bool | None = None,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require(Action.READ_REPORTS, center_id)
    return [ExpenseOut.model_validate(e) for e in list_expenses(db, center_id, approved=approved)]


@router.post("/expenses/{expense_id}/approve", response_model=ExpenseOut)
def approve(
    expense_id: str,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
    actor: Actor = Depends(get_current_actor),
):
    with _engine_errors():
        expense = approve_expense(db, caps, expense_id=expense_id, approved_by=actor.subject)
    return ExpenseOut.model_validate(expense)


@router.get("/summaries", response_model=list[FinancialSummaryOut])
def get_summaries(
    center_id: str,
    limit: int = Query(default=12, ge=1, le=120),
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require(Action.READ_REPORTS, center_id)
    return [FinancialSummaryOut.model_validate(s) for s in list_summaries(db, center_id, limit=limit)]


@router.get("/reports/aging", response_model=AgingOut)
def aging_report(
    center_id: str,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require(Action.READ_REPORTS, center_id)
    return AgingOut(center_id=center_id, buckets=ar_aging(db, center_id))


@router.get("/reports/reconciliation", response_model=ReconciliationOut)
def reconciliation_report(
    center_id: str,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require(Action.READ_REPORTS, center_id)
    return ReconciliationOut(center_id=center_id, **reconciliation_check(db, center_id))


@router.get("/reports/trial-balance", response_model=list[TrialBalanceRow])
def trial_balance_report(
    center_id: str,
    start: date | None = None,
    end: date | None = None,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require(Action.READ_REPORTS, center_id)
    return [TrialBalanceRow(**row) for row in trial_balance(db, center_id, start, end)]


@router.get("/ledger/{reference_type}/{reference_id}", response_model=list[LedgerEntryOut])
def ledger_entries(
    reference_type: ReferenceType,
    reference_id: str,
    db: Session = Depends(get_db_session),
    caps: Capabilities = Depends(get_capabilities),
):
    with _engine_errors():
        caps.require_action(Action.READ_REPORTS)
        caps.require(Action.READ_REPORTS, reference_center(db, reference_type, reference_id))
    entries = entries_for(db, reference_type, reference_id)
    return [LedgerEntryOut.model_validate(e) for e in entries]
