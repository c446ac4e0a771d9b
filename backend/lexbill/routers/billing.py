from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from lexbill.core import rbac
from lexbill.core.deps import get_actor
from lexbill.core.rbac import Actor
from lexbill.db.session import get_db
from lexbill.models.enums import FinderFeeStatus
from lexbill.schemas.billing import (
    ChargeCreate,
    ChargeRead,
    ExpenseCreate,
    ExpenseRead,
    FinderFeeListResponse,
    FinderFeePaymentCreate,
    FinderFeeRead,
    InvoiceItemCreate,
    InvoiceItemUpdate,
    InvoicePricingUpdate,
    InvoiceRead,
    InvoiceTransitionPayload,
    PaymentOutcomeRead,
    RecurringRunRead,
    TimesheetEntryCreate,
    TimesheetEntryRead,
    UnbilledSummaryRead,
)
from lexbill.services import invoice_edits, work
from lexbill.services.finder_fees import list_finder_fees, outstanding_total, record_finder_fee_payment
from lexbill.services.invoice_status import InvoiceAction, mark_invoice_paid, transition
from lexbill.services.invoices import (
    generate_invoice,
    generate_upfront_invoice,
    get_invoice,
    list_outstanding_invoices,
)
from lexbill.services.recurring import generate_due_recurring_invoices, generate_recurring_invoice
from lexbill.services.unbilled import summarize_unbilled

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.get("/projects/{project_id}/unbilled", response_model=UnbilledSummaryRead)
def unbilled_summary(
    project_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> UnbilledSummaryRead:
    rbac.require_capability(actor, "view_invoices")
    return UnbilledSummaryRead.model_validate(summarize_unbilled(db, project_id))


@router.post("/projects/{project_id}/timesheet", response_model=TimesheetEntryRead, status_code=status.HTTP_201_CREATED)
def create_timesheet_entry(
    project_id: int,
    payload: TimesheetEntryCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TimesheetEntryRead:
    entry = work.create_timesheet_entry(
        db,
        project_id,
        payload.user_id,
        payload.entry_date,
        payload.hours,
        actor=actor,
        rate=payload.rate,
        description=payload.description,
        billable=payload.billable,
    )
    return TimesheetEntryRead.model_validate(entry)


@router.post("/projects/{project_id}/charges", response_model=ChargeRead, status_code=status.HTTP_201_CREATED)
def create_charge(
    project_id: int,
    payload: ChargeCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ChargeRead:
    charge = work.create_charge(
        db,
        project_id,
        payload.description,
        payload.unit_price,
        actor=actor,
        quantity=payload.quantity,
        charge_type=payload.charge_type,
        recurring_frequency=payload.recurring_frequency,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    return ChargeRead.model_validate(charge)


@router.post("/projects/{project_id}/expenses", response_model=ExpenseRead, status_code=status.HTTP_201_CREATED)
def create_expense(
    project_id: int,
    payload: ExpenseCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ExpenseRead:
    expense = work.create_expense(
        db,
        project_id,
        payload.description,
        payload.amount,
        actor=actor,
        expense_date=payload.expense_date,
        is_billable=payload.is_billable,
        is_reimbursement=payload.is_reimbursement,
    )
    return ExpenseRead.model_validate(expense)


@router.post("/projects/{project_id}/invoices", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_project_invoice(
    project_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    invoice = generate_invoice(db, project_id, actor=actor)
    return InvoiceRead.model_validate(invoice)


@router.post("/proposals/{proposal_id}/upfront-invoice", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_upfront_invoice(
    proposal_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    invoice = generate_upfront_invoice(db, proposal_id, actor=actor)
    return InvoiceRead.model_validate(invoice)


@router.post(
    "/projects/{project_id}/recurring-invoices",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
def create_recurring_invoice(
    project_id: int,
    today: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    invoice = generate_recurring_invoice(db, project_id, actor=actor, today=today)
    return InvoiceRead.model_validate(invoice)


@router.post("/recurring-invoices/run", response_model=RecurringRunRead)
def run_recurring_billing(
    today: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> RecurringRunRead:
    run = generate_due_recurring_invoices(db, actor=actor, today=today)
    return RecurringRunRead(
        invoices=[InvoiceRead.model_validate(invoice) for invoice in run.invoices],
        failed_project_ids=run.failed_project_ids,
    )


@router.get("/invoices/outstanding", response_model=List[InvoiceRead])
def outstanding_invoices(
    today: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> List[InvoiceRead]:
    rbac.require_capability(actor, "view_invoices")
    return [InvoiceRead.model_validate(invoice) for invoice in list_outstanding_invoices(db, today)]


@router.get("/invoices/{invoice_id}", response_model=InvoiceRead)
def read_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    rbac.require_capability(actor, "view_invoices")
    return InvoiceRead.model_validate(get_invoice(db, invoice_id))


@router.patch("/invoices/{invoice_id}/pricing", response_model=InvoiceRead)
def update_invoice_pricing(
    invoice_id: int,
    payload: InvoicePricingUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    invoice = invoice_edits.update_invoice_pricing(db, invoice_id, actor=actor, **payload.model_dump(exclude_unset=True))
    return InvoiceRead.model_validate(invoice)


@router.post("/invoices/{invoice_id}/items", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def add_invoice_item(
    invoice_id: int,
    payload: InvoiceItemCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    invoice = invoice_edits.add_invoice_item(
        db,
        invoice_id,
        payload.description,
        payload.quantity,
        payload.rate,
        actor=actor,
        service_date=payload.service_date,
    )
    return InvoiceRead.model_validate(invoice)


@router.patch("/invoices/{invoice_id}/items/{item_id}", response_model=InvoiceRead)
def update_invoice_item(
    invoice_id: int,
    item_id: int,
    payload: InvoiceItemUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    changes = payload.model_dump(exclude_unset=True)
    invoice = invoice_edits.update_invoice_item(db, invoice_id, item_id, actor=actor, **changes)
    return InvoiceRead.model_validate(invoice)


@router.delete("/invoices/{invoice_id}/items/{item_id}", response_model=InvoiceRead)
def remove_invoice_item(
    invoice_id: int,
    item_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    return InvoiceRead.model_validate(invoice_edits.remove_invoice_item(db, invoice_id, item_id, actor=actor))


@router.post("/invoices/{invoice_id}/transition", response_model=InvoiceRead)
def transition_invoice(
    invoice_id: int,
    payload: InvoiceTransitionPayload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> InvoiceRead:
    # Payment always runs the finder-fee step.
    if payload.action == InvoiceAction.MARK_PAID:
        return InvoiceRead.model_validate(mark_invoice_paid(db, invoice_id, actor=actor).invoice)
    invoice = transition(db, get_invoice(db, invoice_id), payload.action, actor)
    return InvoiceRead.model_validate(invoice)


@router.post("/invoices/{invoice_id}/mark-paid", response_model=PaymentOutcomeRead)
def mark_paid(
    invoice_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> PaymentOutcomeRead:
    return PaymentOutcomeRead.model_validate(mark_invoice_paid(db, invoice_id, actor=actor))


@router.get("/finder-fees", response_model=FinderFeeListResponse)
def finder_fees(
    finder_id: Optional[int] = Query(None),
    fee_status: Optional[FinderFeeStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> FinderFeeListResponse:
    rbac.require_capability(actor, "view_invoices")
    # Staff and clients only see the fees they earned.
    if not rbac.can(actor, "record_finder_fee_payment") and not rbac.can(actor, "approve_invoice"):
        finder_id = actor.user_id
    fees = list_finder_fees(db, finder_id=finder_id, status=fee_status, client_id=client_id, start=start, end=end)
    return FinderFeeListResponse(
        items=[FinderFeeRead.model_validate(fee) for fee in fees],
        outstanding_total=outstanding_total(fees),
    )


@router.post("/finder-fees/{fee_id}/payments", response_model=FinderFeeRead)
def pay_finder_fee(
    fee_id: int,
    payload: FinderFeePaymentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> FinderFeeRead:
    fee = record_finder_fee_payment(
        db,
        fee_id,
        payload.amount,
        payload.payment_date,
        actor=actor,
        notes=payload.notes,
    )
    return FinderFeeRead.model_validate(fee)
