"""Anniversary billing for recurring project charges.

A RECURRING charge bills ``amount`` once per occurrence, starting on
``start_date`` and stepping by its frequency until ``end_date``. Occurrences
are always counted from ``start_date`` so month-end starts do not drift.
``last_billed_on`` records the latest occurrence already on an invoice and
``billed`` turns true once the schedule has no occurrences left.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from lexbill.core import rbac
from lexbill.core.errors import NoRecurringChargesDueError, NotFoundError
from lexbill.core.rbac import Actor
from lexbill.models.enums import ChargeType, InvoiceStatus, LineItemType, RecurringFrequency
from lexbill.models.invoice import Invoice, InvoiceLineItem
from lexbill.models.proposal import Project
from lexbill.models.work import Charge
from lexbill.services.invoices import (
    BillingTerms,
    _bill_to,
    _default_due_date,
    _lock_proposal,
    _utcnow,
    _with_number_retry,
    get_invoice,
)
from lexbill.services.money import ZERO, money_sum, q
from lexbill.services.numbering import allocate_invoice_number
from lexbill.services.pricing import prorate_discount

logger = logging.getLogger(__name__)

FREQUENCY_STEP: Dict[RecurringFrequency, relativedelta] = {
    RecurringFrequency.WEEKLY: relativedelta(weeks=1),
    RecurringFrequency.MONTHLY: relativedelta(months=1),
    RecurringFrequency.QUARTERLY: relativedelta(months=3),
    RecurringFrequency.YEARLY: relativedelta(years=1),
}


def occurrence(start: date, frequency: RecurringFrequency, index: int) -> date:
    return start + FREQUENCY_STEP[frequency] * index


def _next_index(charge: Charge) -> int:
    if charge.last_billed_on is None:
        return 0
    index = 0
    while occurrence(charge.start_date, charge.recurring_frequency, index) <= charge.last_billed_on:
        index += 1
    return index


def _within_schedule(charge: Charge, when: date) -> bool:
    return charge.end_date is None or when <= charge.end_date


def next_billing_date(charge: Charge) -> Optional[date]:
    """The next occurrence not yet invoiced, or None once the schedule is over."""
    if charge.charge_type != ChargeType.RECURRING or charge.start_date is None or charge.recurring_frequency is None:
        return None
    upcoming = occurrence(charge.start_date, charge.recurring_frequency, _next_index(charge))
    return upcoming if _within_schedule(charge, upcoming) else None


def due_occurrences(charge: Charge, today: date) -> List[date]:
    """Every occurrence up to and including ``today`` that has not been invoiced yet."""
    if next_billing_date(charge) is None:
        return []
    dates: List[date] = []
    index = _next_index(charge)
    while True:
        when = occurrence(charge.start_date, charge.recurring_frequency, index)
        if when > today or not _within_schedule(charge, when):
            return dates
        dates.append(when)
        index += 1


def _recurring_charges(db: Session, project_id: int) -> List[Charge]:
    return (
        db.query(Charge)
        .filter(
            Charge.project_id == project_id,
            Charge.charge_type == ChargeType.RECURRING,
            Charge.billed.is_(False),
        )
        .order_by(Charge.start_date.asc(), Charge.id.asc())
        .all()
    )


def _assemble_recurring_invoice(db: Session, project_id: int, *, actor: Actor, today: date, now: datetime) -> Invoice:
    project = db.get(Project, project_id)
    if not project:
        raise NotFoundError("Project not found")
    proposal = _lock_proposal(db, project.proposal_id)

    schedule = [(charge, due_occurrences(charge, today)) for charge in _recurring_charges(db, project.id)]
    schedule = [(charge, dates) for charge, dates in schedule if dates]
    if not schedule:
        raise NoRecurringChargesDueError()

    subtotal = money_sum(charge.amount for charge, dates in schedule for _ in dates)
    base_terms = BillingTerms.from_proposal(proposal)
    terms = BillingTerms(
        discount=prorate_discount(base_terms.discount, subtotal, proposal.amount if proposal else None),
        tax_rate=base_terms.tax_rate,
        tax_inclusive=base_terms.tax_inclusive,
        currency=base_terms.currency,
    )
    breakdown = terms.price(subtotal)
    client_id, lead_id = _bill_to(project, proposal)

    invoice = Invoice(
        proposal_id=proposal.id if proposal else None,
        project_id=project.id,
        client_id=client_id,
        lead_id=lead_id,
        created_by_user_id=actor.user_id,
        invoice_number=allocate_invoice_number(db, proposal),
        description=f"Recurring Payment - {project.name}",
        subtotal=subtotal,
        credit_used=ZERO,
        tax_amount=breakdown.tax_amount,
        amount=breakdown.final_amount,
        status=InvoiceStatus.DRAFT,
        due_date=_default_due_date(now),
    )
    terms.apply_to(invoice)
    db.add(invoice)
    db.flush()

    order_index = 0
    for charge, dates in schedule:
        for when in dates:
            db.add(
                InvoiceLineItem(
                    invoice_id=invoice.id,
                    item_type=LineItemType.CHARGE,
                    charge_id=charge.id,
                    description=f"{charge.description} ({when.isoformat()})",
                    quantity=charge.quantity,
                    rate=charge.unit_price,
                    amount=q(charge.amount),
                    order_index=order_index,
                    service_date=when,
                )
            )
            order_index += 1
        charge.last_billed_on = dates[-1]
        charge.billed = next_billing_date(charge) is None
    db.flush()
    return invoice


def generate_recurring_invoice(
    db: Session,
    project_id: int,
    *,
    actor: Actor,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    """Invoice every recurring charge occurrence of a project that is due by ``today``."""
    rbac.require_capability(actor, "create_invoice")
    now = now or _utcnow()
    today = today or now.date()
    invoice = _with_number_retry(
        db,
        lambda: _assemble_recurring_invoice(db, project_id, actor=actor, today=today, now=now),
        context={"project_id": project_id, "actor_id": actor.user_id},
    )
    logger.info(
        "invoice.recurring_generated",
        extra={
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "project_id": project_id,
            "amount": invoice.amount,
            "actor_id": actor.user_id,
        },
    )
    return get_invoice(db, invoice.id)


@dataclass
class RecurringRun:
    invoices: List[Invoice] = field(default_factory=list)
    failed_project_ids: List[int] = field(default_factory=list)


def projects_with_due_charges(db: Session, today: date) -> List[int]:
    charges = (
        db.query(Charge)
        .filter(
            Charge.charge_type == ChargeType.RECURRING,
            Charge.billed.is_(False),
            Charge.start_date <= today,
        )
        .order_by(Charge.project_id.asc(), Charge.id.asc())
        .all()
    )
    project_ids: List[int] = []
    for charge in charges:
        if charge.project_id not in project_ids and due_occurrences(charge, today):
            project_ids.append(charge.project_id)
    return project_ids


def generate_due_recurring_invoices(
    db: Session,
    *,
    actor: Actor,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> RecurringRun:
    """Run the recurring billing pass over every project; one project failing does not stop the others."""
    rbac.require_capability(actor, "create_invoice")
    now = now or _utcnow()
    today = today or now.date()
    run = RecurringRun()
    for project_id in projects_with_due_charges(db, today):
        try:
            run.invoices.append(generate_recurring_invoice(db, project_id, actor=actor, today=today, now=now))
        except Exception:
            logger.exception("recurring.invoice_failed", extra={"project_id": project_id, "actor_id": actor.user_id})
            run.failed_project_ids.append(project_id)
    logger.info(
        "recurring.run_completed",
        extra={"count": len(run.invoices), "failed": len(run.failed_project_ids), "actor_id": actor.user_id},
    )
    return run


def rewind_recurring_charges(db: Session, items: Iterable[InvoiceLineItem]) -> None:
    """Make the occurrences on ``items`` due again when they are the latest ones billed."""
    dates_by_charge: Dict[int, List[date]] = {}
    for item in items:
        if item.charge_id is not None and item.service_date is not None:
            dates_by_charge.setdefault(item.charge_id, []).append(item.service_date)

    for charge_id, dates in dates_by_charge.items():
        charge = db.get(Charge, charge_id)
        if charge is None or charge.charge_type != ChargeType.RECURRING:
            continue
        if charge.last_billed_on != max(dates):
            # A later invoice already billed past these occurrences.
            logger.warning(
                "recurring.rewind_skipped",
                extra={"charge_id": charge.id, "last_billed_on": charge.last_billed_on, "service_date": min(dates)},
            )
            continue
        earliest = min(dates)
        previous: Optional[date] = None
        index = 0
        while True:
            when = occurrence(charge.start_date, charge.recurring_frequency, index)
            if when >= earliest:
                break
            previous = when
            index += 1
        charge.last_billed_on = previous
        charge.billed = False
        db.add(charge)
    db.flush()
