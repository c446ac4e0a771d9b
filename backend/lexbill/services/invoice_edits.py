"""Editing draft invoices.

Every edit re-prices the invoice from its stored lines and its own discount
and tax columns, so ``verify_invoice_amount`` keeps holding. Credit lines are
fixed at generation time; only work and manual lines change.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from lexbill.core import rbac
from lexbill.core.errors import (
    CreditLineLockedError,
    InvalidTaxRateError,
    InvalidWorkItemError,
    InvoiceNotEditableError,
    NotFoundError,
)
from lexbill.core.rbac import Actor
from lexbill.db.session import transaction
from lexbill.models.enums import ChargeType, InvoiceStatus, LineItemType
from lexbill.models.invoice import Invoice, InvoiceLineItem
from lexbill.models.work import Charge, Expense, TimesheetEntry
from lexbill.services.invoices import get_invoice
from lexbill.services.money import ZERO, Numeric, is_positive, line_total, money_sum, q, to_decimal
from lexbill.services.pricing import discount_from_columns, discount_to_columns, price_from_columns
from lexbill.services.recurring import rewind_recurring_charges

logger = logging.getLogger(__name__)

PRICING_FIELDS = ("discount_percent", "discount_amount", "tax_rate", "tax_inclusive")
ITEM_FIELDS = ("description", "quantity", "rate", "service_date")


def reprice_invoice(invoice: Invoice) -> Invoice:
    subtotal = money_sum(item.amount for item in invoice.work_items)
    credit_used = q(invoice.credit_used)
    if subtotal < credit_used:
        raise InvalidWorkItemError(f"Invoice lines cannot total less than the credit applied ({credit_used})")

    breakdown = price_from_columns(
        subtotal - credit_used,
        invoice.discount_percent,
        invoice.discount_amount,
        invoice.tax_rate,
        invoice.tax_inclusive,
    )
    invoice.subtotal = subtotal
    invoice.tax_amount = breakdown.tax_amount
    invoice.amount = breakdown.final_amount
    return invoice


def _draft_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    if invoice.status != InvoiceStatus.DRAFT:
        raise InvoiceNotEditableError()
    return invoice


def _get_line(invoice: Invoice, item_id: int) -> InvoiceLineItem:
    for item in invoice.items:
        if item.id == item_id:
            if item.is_credit:
                raise CreditLineLockedError()
            return item
    raise NotFoundError("Invoice item not found")


def _log_repriced(invoice: Invoice, actor: Actor, item_id: Optional[int] = None) -> None:
    logger.info(
        "invoice.repriced",
        extra={
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "item_id": item_id,
            "amount": invoice.amount,
            "actor_id": actor.user_id,
        },
    )


def update_invoice_pricing(db: Session, invoice_id: int, *, actor: Actor, **changes: Any) -> Invoice:
    """Change a draft invoice's discount or tax terms and re-price it.

    A new discount replaces the old one outright; passing ``discount_percent``
    clears the amount column and vice versa. A zero tax rate means no tax.
    """
    rbac.require_capability(actor, "modify_invoice")
    unknown = set(changes) - set(PRICING_FIELDS)
    if unknown:
        raise InvalidWorkItemError(f"Cannot change: {', '.join(sorted(unknown))}")

    with transaction(db):
        invoice = _draft_invoice(db, invoice_id)

        percent, amount = invoice.discount_percent, invoice.discount_amount
        if "discount_percent" in changes:
            percent, amount = changes["discount_percent"], None
        if "discount_amount" in changes:
            amount = changes["discount_amount"]
            if "discount_percent" not in changes:
                percent = None
        discount = discount_from_columns(percent, amount)
        invoice.discount_percent, invoice.discount_amount = discount_to_columns(discount)

        if "tax_rate" in changes:
            tax_rate = changes["tax_rate"]
            if tax_rate is not None and to_decimal(tax_rate) < ZERO:
                raise InvalidTaxRateError()
            invoice.tax_rate = to_decimal(tax_rate) if is_positive(tax_rate) else None
        if "tax_inclusive" in changes:
            invoice.tax_inclusive = bool(changes["tax_inclusive"])

        reprice_invoice(invoice)
        db.add(invoice)
        db.flush()

    _log_repriced(invoice, actor)
    return get_invoice(db, invoice.id)


def add_invoice_item(
    db: Session,
    invoice_id: int,
    description: str,
    quantity: Numeric,
    rate: Numeric,
    *,
    actor: Actor,
    service_date: Optional[date] = None,
) -> Invoice:
    rbac.require_capability(actor, "modify_invoice")
    if to_decimal(quantity) < ZERO or to_decimal(rate) < ZERO:
        raise InvalidWorkItemError("Quantity and rate cannot be negative")

    with transaction(db):
        invoice = _draft_invoice(db, invoice_id)
        next_index = max((item.order_index for item in invoice.items), default=-1) + 1
        item = InvoiceLineItem(
            invoice_id=invoice.id,
            item_type=LineItemType.MANUAL,
            description=description,
            quantity=to_decimal(quantity),
            rate=q(rate),
            amount=line_total(quantity, rate),
            order_index=next_index,
            service_date=service_date,
        )
        db.add(item)
        invoice.items.append(item)
        reprice_invoice(invoice)
        db.flush()

    _log_repriced(invoice, actor, item.id)
    return get_invoice(db, invoice.id)


def update_invoice_item(db: Session, invoice_id: int, item_id: int, *, actor: Actor, **changes: Any) -> Invoice:
    rbac.require_capability(actor, "modify_invoice")
    unknown = set(changes) - set(ITEM_FIELDS)
    if unknown:
        raise InvalidWorkItemError(f"Cannot change: {', '.join(sorted(unknown))}")

    with transaction(db):
        invoice = _draft_invoice(db, invoice_id)
        item = _get_line(invoice, item_id)
        for key, value in changes.items():
            setattr(item, key, value)
        quantity: Decimal = to_decimal(item.quantity)
        if quantity < ZERO or to_decimal(item.rate) < ZERO:
            raise InvalidWorkItemError("Quantity and rate cannot be negative")
        item.rate = q(item.rate)
        item.amount = line_total(quantity, item.rate)
        reprice_invoice(invoice)
        db.flush()

    _log_repriced(invoice, actor, item_id)
    return get_invoice(db, invoice.id)


def _release_line(db: Session, item: InvoiceLineItem) -> None:
    if item.timesheet_entry_id is not None:
        entry = db.get(TimesheetEntry, item.timesheet_entry_id)
        if entry is not None:
            entry.billed = False
    if item.charge_id is not None:
        charge = db.get(Charge, item.charge_id)
        if charge is not None and charge.charge_type == ChargeType.RECURRING:
            rewind_recurring_charges(db, [item])
        elif charge is not None:
            charge.billed = False
    if item.expense_id is not None:
        expense = db.get(Expense, item.expense_id)
        if expense is not None:
            expense.billed_at = None
            expense.invoice_id = None


def remove_invoice_item(db: Session, invoice_id: int, item_id: int, *, actor: Actor) -> Invoice:
    """Drop a line from a draft invoice; the work it billed goes back to unbilled."""
    rbac.require_capability(actor, "modify_invoice")
    with transaction(db):
        invoice = _draft_invoice(db, invoice_id)
        item = _get_line(invoice, item_id)
        _release_line(db, item)
        invoice.items.remove(item)
        reprice_invoice(invoice)
        db.flush()

    _log_repriced(invoice, actor, item_id)
    return get_invoice(db, invoice.id)
