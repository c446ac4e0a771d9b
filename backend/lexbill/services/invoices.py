from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from lexbill.core import rbac
from lexbill.core.errors import (
    BillingError,
    DuplicateInvoiceNumberError,
    InvalidUpfrontAmountError,
    NoUpfrontTermError,
    NotFoundError,
    UpfrontInvoiceExistsError,
)
from lexbill.core.rbac import Actor
from lexbill.core.settings import settings
from lexbill.db.session import transaction
from lexbill.models.enums import InvoiceStatus, LineItemType, UpfrontPaymentType
from lexbill.models.invoice import Invoice, InvoiceLineItem
from lexbill.models.proposal import Project, Proposal
from lexbill.services.credits import (
    CreditAllocation,
    allocate_credit,
    apply_credit_allocations,
    compute_available_credit,
    credit_to_apply,
)
from lexbill.services.money import ZERO, is_positive, line_total, money_sum, percent_of, q, to_decimal
from lexbill.services.numbering import allocate_invoice_number
from lexbill.services.pricing import (
    Discount,
    NoDiscount,
    PriceBreakdown,
    discount_from_columns,
    discount_to_columns,
    price,
    price_from_columns,
    prorate_discount,
)
from lexbill.services.unbilled import UnbilledWork, require_unbilled

logger = logging.getLogger(__name__)

CLOSED_STATUSES = {InvoiceStatus.PAID, InvoiceStatus.CANCELLED, InvoiceStatus.WRITTEN_OFF}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BillingTerms:
    """Tax and discount settings copied from a proposal onto a new invoice."""

    discount: Discount
    tax_rate: Optional[Decimal]
    tax_inclusive: bool
    currency: str

    @classmethod
    def from_proposal(cls, proposal: Optional[Proposal]) -> "BillingTerms":
        if proposal is None:
            return cls(discount=NoDiscount(), tax_rate=None, tax_inclusive=False, currency=settings.default_currency)
        return cls(
            discount=discount_from_columns(proposal.discount_percent, proposal.discount_amount),
            tax_rate=proposal.tax_rate if is_positive(proposal.tax_rate) else None,
            tax_inclusive=bool(proposal.tax_inclusive),
            currency=proposal.currency or settings.default_currency,
        )

    def price(self, subtotal: Decimal) -> PriceBreakdown:
        return price(subtotal, self.discount, self.tax_rate, self.tax_inclusive)

    def apply_to(self, invoice: Invoice) -> None:
        invoice.discount_percent, invoice.discount_amount = discount_to_columns(self.discount)
        invoice.tax_rate = self.tax_rate
        invoice.tax_inclusive = self.tax_inclusive
        invoice.currency = self.currency


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = (
        db.query(Invoice)
        .options(selectinload(Invoice.items), selectinload(Invoice.finder_fees))
        .filter(Invoice.id == invoice_id)
        .first()
    )
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def _lock_proposal(db: Session, proposal_id: Optional[int]) -> Optional[Proposal]:
    if proposal_id is None:
        return None
    proposal = db.query(Proposal).filter(Proposal.id == proposal_id).with_for_update().first()
    if not proposal:
        raise NotFoundError("Proposal not found")
    return proposal


def _bill_to(*owners) -> Tuple[Optional[int], Optional[int]]:
    for owner in owners:
        if owner is None:
            continue
        if owner.client_id is not None:
            return owner.client_id, None
        if owner.lead_id is not None:
            return None, owner.lead_id
    raise BillingError("No client or lead to bill")


def _default_due_date(now: datetime) -> date:
    return now.date() + timedelta(days=settings.invoice_due_days)


def _is_invoice_number_conflict(exc: IntegrityError) -> bool:
    return "invoice_number" in str(exc.orig)


def _with_number_retry(db: Session, build: Callable[[], Invoice], *, context: dict) -> Invoice:
    """Run ``build`` in its own transaction, retrying from scratch when the invoice number is taken."""
    attempts = settings.invoice_number_max_attempts
    for attempt in range(1, attempts + 1):
        try:
            with transaction(db):
                return build()
        except IntegrityError as exc:
            if not _is_invoice_number_conflict(exc):
                raise
            logger.warning("invoice.number_conflict", extra={**context, "error": f"attempt {attempt}/{attempts}"})
    raise DuplicateInvoiceNumberError(f"Could not allocate a unique invoice number after {attempts} attempts")


def _credit_line(invoice: Invoice, share: CreditAllocation, order_index: int) -> InvoiceLineItem:
    return InvoiceLineItem(
        invoice_id=invoice.id,
        item_type=LineItemType.CHARGE,
        credit_source_invoice_id=share.invoice_id,
        description=share.description,
        quantity=Decimal("1.00"),
        rate=-share.amount,
        amount=-share.amount,
        is_credit=True,
        order_index=order_index,
    )


def _attach_work_lines(db: Session, invoice: Invoice, work: UnbilledWork, start_index: int, now: datetime) -> None:
    order_index = start_index
    for entry in work.timesheet_entries:
        worker_name = entry.user.name if entry.user and entry.user.name else "team member"
        db.add(
            InvoiceLineItem(
                invoice_id=invoice.id,
                item_type=LineItemType.TIMESHEET,
                timesheet_entry_id=entry.id,
                person_id=entry.user_id,
                description=entry.description or f"Hours worked by {worker_name}",
                quantity=entry.hours,
                rate=entry.rate or ZERO,
                amount=line_total(entry.hours, entry.rate),
                order_index=order_index,
                service_date=entry.entry_date,
            )
        )
        entry.billed = True
        order_index += 1

    for charge in work.charges:
        db.add(
            InvoiceLineItem(
                invoice_id=invoice.id,
                item_type=LineItemType.CHARGE,
                charge_id=charge.id,
                description=charge.description,
                quantity=charge.quantity or Decimal("1.00"),
                rate=charge.unit_price or charge.amount,
                amount=q(charge.amount),
                order_index=order_index,
            )
        )
        charge.billed = True
        order_index += 1

    for expense in work.expenses:
        description = f"Reimbursement: {expense.description}" if expense.is_reimbursement else expense.description
        db.add(
            InvoiceLineItem(
                invoice_id=invoice.id,
                item_type=LineItemType.EXPENSE,
                expense_id=expense.id,
                person_id=expense.created_by_user_id,
                description=description,
                quantity=Decimal("1.00"),
                rate=expense.amount,
                amount=q(expense.amount),
                order_index=order_index,
                service_date=expense.expense_date,
            )
        )
        expense.billed_at = now
        expense.invoice_id = invoice.id
        order_index += 1


def _assemble_invoice(db: Session, project_id: int, *, actor: Actor, now: datetime) -> Invoice:
    project = db.get(Project, project_id)
    if not project:
        raise NotFoundError("Project not found")
    proposal = _lock_proposal(db, project.proposal_id)

    work = require_unbilled(db, project.id)
    raw_subtotal = work.raw_subtotal

    available = compute_available_credit(db, proposal.id if proposal else None)
    credit_used = credit_to_apply(raw_subtotal, available)
    shares = allocate_credit(available, credit_used)

    terms = BillingTerms.from_proposal(proposal)
    breakdown = terms.price(raw_subtotal - credit_used)
    client_id, lead_id = _bill_to(project, proposal)

    invoice = Invoice(
        proposal_id=proposal.id if proposal else None,
        project_id=project.id,
        client_id=client_id,
        lead_id=lead_id,
        created_by_user_id=actor.user_id,
        invoice_number=allocate_invoice_number(db, proposal),
        subtotal=raw_subtotal,
        credit_used=credit_used,
        tax_amount=breakdown.tax_amount,
        amount=breakdown.final_amount,
        status=InvoiceStatus.DRAFT,
        due_date=_default_due_date(now),
    )
    terms.apply_to(invoice)
    db.add(invoice)
    db.flush()

    for index, share in enumerate(shares):
        db.add(_credit_line(invoice, share, index))
    _attach_work_lines(db, invoice, work, len(shares), now)
    db.flush()

    apply_credit_allocations(db, shares, invoice)
    return invoice


def generate_invoice(db: Session, project_id: int, *, actor: Actor, now: Optional[datetime] = None) -> Invoice:
    rbac.require_capability(actor, "create_invoice")
    now = now or _utcnow()
    invoice = _with_number_retry(
        db,
        lambda: _assemble_invoice(db, project_id, actor=actor, now=now),
        context={"project_id": project_id, "actor_id": actor.user_id},
    )
    logger.info(
        "invoice.generated",
        extra={
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "project_id": project_id,
            "proposal_id": invoice.proposal_id,
            "raw_subtotal": invoice.subtotal,
            "credit_used": invoice.credit_used,
            "amount": invoice.amount,
            "actor_id": actor.user_id,
        },
    )
    return get_invoice(db, invoice.id)


def upfront_amount(proposal: Proposal) -> Decimal:
    if proposal.upfront_type is None or not is_positive(proposal.upfront_value):
        raise NoUpfrontTermError()
    if proposal.upfront_type == UpfrontPaymentType.PERCENT:
        return percent_of(proposal.amount or ZERO, proposal.upfront_value)
    return q(proposal.upfront_value)


def _assemble_upfront_invoice(db: Session, proposal_id: int, *, actor: Actor, now: datetime) -> Invoice:
    proposal = _lock_proposal(db, proposal_id)
    existing = (
        db.query(Invoice)
        .filter(
            Invoice.proposal_id == proposal.id,
            Invoice.is_upfront_payment.is_(True),
            Invoice.status != InvoiceStatus.CANCELLED,
        )
        .first()
    )
    if existing:
        raise UpfrontInvoiceExistsError()

    amount = upfront_amount(proposal)
    if amount <= ZERO:
        raise InvalidUpfrontAmountError()

    base_terms = BillingTerms.from_proposal(proposal)
    terms = BillingTerms(
        discount=prorate_discount(base_terms.discount, amount, proposal.amount),
        tax_rate=base_terms.tax_rate,
        tax_inclusive=base_terms.tax_inclusive,
        currency=base_terms.currency,
    )
    breakdown = terms.price(amount)
    client_id, lead_id = _bill_to(proposal)

    invoice = Invoice(
        proposal_id=proposal.id,
        client_id=client_id,
        lead_id=lead_id,
        created_by_user_id=actor.user_id,
        invoice_number=allocate_invoice_number(db, proposal),
        description=f"Upfront Payment - {proposal.title}",
        subtotal=amount,
        credit_used=ZERO,
        tax_amount=breakdown.tax_amount,
        amount=breakdown.final_amount,
        is_upfront_payment=True,
        status=InvoiceStatus.DRAFT,
        due_date=_default_due_date(now),
    )
    terms.apply_to(invoice)
    db.add(invoice)
    db.flush()
    db.add(
        InvoiceLineItem(
            invoice_id=invoice.id,
            item_type=LineItemType.CHARGE,
            description=f"Upfront Payment - {proposal.title}",
            quantity=Decimal("1.00"),
            rate=amount,
            amount=amount,
        )
    )
    db.flush()
    return invoice


def generate_upfront_invoice(
    db: Session,
    proposal_id: int,
    *,
    actor: Actor,
    now: Optional[datetime] = None,
) -> Invoice:
    rbac.require_capability(actor, "create_invoice")
    now = now or _utcnow()
    invoice = _with_number_retry(
        db,
        lambda: _assemble_upfront_invoice(db, proposal_id, actor=actor, now=now),
        context={"proposal_id": proposal_id, "actor_id": actor.user_id},
    )
    logger.info(
        "invoice.upfront_generated",
        extra={
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "proposal_id": proposal_id,
            "amount": invoice.amount,
            "actor_id": actor.user_id,
        },
    )
    return get_invoice(db, invoice.id)


def verify_invoice_amount(invoice: Invoice) -> bool:
    """Rebuild the amount from stored line items and pricing fields and compare it to the stored amount."""
    work_total = money_sum(item.amount for item in invoice.work_items)
    credit_total = money_sum(-to_decimal(item.amount) for item in invoice.credit_items)
    if work_total != q(invoice.subtotal) or credit_total != q(invoice.credit_used):
        return False
    expected = price_from_columns(
        work_total - credit_total,
        invoice.discount_percent,
        invoice.discount_amount,
        invoice.tax_rate,
        invoice.tax_inclusive,
    )
    return expected.final_amount == q(invoice.amount) and expected.tax_amount == q(invoice.tax_amount)


def is_invoice_outstanding(invoice: Invoice, today: Optional[date] = None) -> bool:
    if invoice.status in CLOSED_STATUSES:
        return False
    if invoice.due_date is None:
        return False
    today = today or _utcnow().date()
    return invoice.due_date < today


def list_outstanding_invoices(db: Session, today: Optional[date] = None) -> List[Invoice]:
    today = today or _utcnow().date()
    return (
        db.query(Invoice)
        .filter(
            Invoice.status.notin_(CLOSED_STATUSES),
            Invoice.due_date.is_not(None),
            Invoice.due_date < today,
        )
        .order_by(Invoice.due_date.asc(), Invoice.id.asc())
        .all()
    )
