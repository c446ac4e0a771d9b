"""Invoice status lifecycle.

Every status change goes through ``transition``; the table below is the only
place that decides which changes are legal and who may make them.

    DRAFT -> SUBMITTED -> APPROVED -> PAID
    DRAFT/SUBMITTED/APPROVED -> CANCELLED
    SUBMITTED/APPROVED -> WRITTEN_OFF
    SUBMITTED -> DRAFT (rejected)
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from lexbill.core import rbac
from lexbill.core.errors import InvalidTransitionError
from lexbill.core.rbac import Actor
from lexbill.db.session import transaction
from lexbill.models.enums import ChargeType, InvoiceStatus
from lexbill.models.finder_fee import FinderFee
from lexbill.models.invoice import Invoice
from lexbill.models.work import Charge, Expense, TimesheetEntry
from lexbill.services.finder_fees import calculate_and_create_finder_fees
from lexbill.services.invoices import get_invoice
from lexbill.services.money import is_positive
from lexbill.services.recurring import rewind_recurring_charges

logger = logging.getLogger(__name__)


class InvoiceAction(str, enum.Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    MARK_PAID = "mark_paid"
    CANCEL = "cancel"
    WRITE_OFF = "write_off"


TRANSITIONS: Dict[Tuple[InvoiceStatus, InvoiceAction], InvoiceStatus] = {
    (InvoiceStatus.DRAFT, InvoiceAction.SUBMIT): InvoiceStatus.SUBMITTED,
    (InvoiceStatus.SUBMITTED, InvoiceAction.APPROVE): InvoiceStatus.APPROVED,
    (InvoiceStatus.SUBMITTED, InvoiceAction.REJECT): InvoiceStatus.DRAFT,
    (InvoiceStatus.SUBMITTED, InvoiceAction.MARK_PAID): InvoiceStatus.PAID,
    (InvoiceStatus.APPROVED, InvoiceAction.MARK_PAID): InvoiceStatus.PAID,
    (InvoiceStatus.DRAFT, InvoiceAction.CANCEL): InvoiceStatus.CANCELLED,
    (InvoiceStatus.SUBMITTED, InvoiceAction.CANCEL): InvoiceStatus.CANCELLED,
    (InvoiceStatus.APPROVED, InvoiceAction.CANCEL): InvoiceStatus.CANCELLED,
    (InvoiceStatus.SUBMITTED, InvoiceAction.WRITE_OFF): InvoiceStatus.WRITTEN_OFF,
    (InvoiceStatus.APPROVED, InvoiceAction.WRITE_OFF): InvoiceStatus.WRITTEN_OFF,
}

REQUIRED_CAPABILITY: Dict[InvoiceAction, str] = {
    InvoiceAction.SUBMIT: "create_invoice",
    InvoiceAction.APPROVE: "approve_invoice",
    InvoiceAction.REJECT: "approve_invoice",
    InvoiceAction.MARK_PAID: "mark_invoice_paid",
    InvoiceAction.CANCEL: "modify_invoice",
    InvoiceAction.WRITE_OFF: "modify_invoice",
}


def allowed_actions(status: InvoiceStatus) -> List[InvoiceAction]:
    return [action for (from_status, action) in TRANSITIONS if from_status == status]


def next_status(current: InvoiceStatus, action: InvoiceAction) -> InvoiceStatus:
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidTransitionError(f"Cannot {action.value.replace('_', ' ')} a {current.value} invoice")
    return target


def _release_sources(db: Session, invoice: Invoice) -> None:
    """Put the invoice's work back in the unbilled pool."""
    entry_ids = [item.timesheet_entry_id for item in invoice.items if item.timesheet_entry_id is not None]
    charge_ids = [item.charge_id for item in invoice.items if item.charge_id is not None]
    if entry_ids:
        db.query(TimesheetEntry).filter(TimesheetEntry.id.in_(entry_ids)).update(
            {TimesheetEntry.billed: False}, synchronize_session="fetch"
        )
    if charge_ids:
        db.query(Charge).filter(Charge.id.in_(charge_ids), Charge.charge_type == ChargeType.ONE_TIME).update(
            {Charge.billed: False}, synchronize_session="fetch"
        )
        rewind_recurring_charges(db, invoice.items)
    db.query(Expense).filter(Expense.invoice_id == invoice.id).update(
        {Expense.billed_at: None, Expense.invoice_id: None}, synchronize_session="fetch"
    )
    if is_positive(invoice.credit_used):
        # Consumed credit stays on the upfront invoices; it has to be restored by hand.
        logger.warning(
            "credit.forfeited_on_cancel",
            extra={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "credit_used": invoice.credit_used,
                "credit_source_invoice_ids": [item.credit_source_invoice_id for item in invoice.credit_items],
            },
        )


def _apply_transition(
    db: Session,
    invoice: Invoice,
    action: InvoiceAction,
    actor: Actor,
    now: datetime,
) -> Invoice:
    rbac.require_capability(actor, REQUIRED_CAPABILITY[action])
    previous = invoice.status
    target = next_status(previous, action)

    invoice.status = target
    if target == InvoiceStatus.SUBMITTED:
        invoice.submitted_at = now
    elif target == InvoiceStatus.APPROVED:
        invoice.approved_at = now
    elif target == InvoiceStatus.PAID:
        invoice.paid_at = now
    elif target == InvoiceStatus.CANCELLED:
        invoice.cancelled_at = now
        _release_sources(db, invoice)
    elif target == InvoiceStatus.WRITTEN_OFF:
        invoice.written_off_at = now
    db.add(invoice)
    db.flush()

    logger.info(
        "invoice.status_changed",
        extra={
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "from_status": previous.value,
            "to_status": target.value,
            "actor_id": actor.user_id,
        },
    )
    return invoice


def transition(
    db: Session,
    invoice: Invoice,
    action: InvoiceAction,
    actor: Actor,
    *,
    now: Optional[datetime] = None,
) -> Invoice:
    now = now or datetime.now(timezone.utc)
    with transaction(db):
        _apply_transition(db, invoice, action, actor, now)
    return invoice


@dataclass
class PaymentOutcome:
    invoice: Invoice
    finder_fees: List[FinderFee] = field(default_factory=list)
    finder_fee_error: Optional[str] = None


def mark_invoice_paid(
    db: Session,
    invoice_id: int,
    *,
    actor: Actor,
    now: Optional[datetime] = None,
) -> PaymentOutcome:
    """Mark the invoice PAID, then compute finder fees.

    The PAID status is committed first. A failure while computing the fees
    is rolled back on its own, logged and reported on the outcome; it never
    undoes the payment.
    """
    invoice = get_invoice(db, invoice_id)
    transition(db, invoice, InvoiceAction.MARK_PAID, actor, now=now)

    outcome = PaymentOutcome(invoice=invoice)
    try:
        with transaction(db):
            outcome.finder_fees = calculate_and_create_finder_fees(db, invoice.id)
    except Exception as exc:
        logger.exception(
            "finder_fee.calculation_failed",
            extra={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "actor_id": actor.user_id,
                "error": str(exc),
            },
        )
        outcome.finder_fee_error = str(exc) or exc.__class__.__name__
    return outcome
