from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from lexbill.core.errors import (
    CreditLineLockedError,
    InvalidDiscountConfigurationError,
    InvalidTaxRateError,
    InvalidWorkItemError,
    InvoiceNotEditableError,
    PermissionDeniedError,
)
from lexbill.core.rbac import Actor
from lexbill.models.enums import LineItemType, Role
from lexbill.models.invoice import Invoice
from lexbill.models.work import Charge, TimesheetEntry
from lexbill.services.invoice_edits import (
    add_invoice_item,
    remove_invoice_item,
    update_invoice_item,
    update_invoice_pricing,
)
from lexbill.services.invoice_status import InvoiceAction, transition
from lexbill.services.invoices import generate_invoice, verify_invoice_amount
from lexbill.services.unbilled import summarize_unbilled

NOW = datetime(2024, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def draft(db, admin, factory):
    acme = factory.client()
    proposal = factory.proposal(client=acme)
    project = factory.project(proposal=proposal)
    entry = factory.entry(project, factory.user(), "5", "100")
    charge = factory.charge(project, "50")
    invoice = generate_invoice(db, project.id, actor=admin, now=NOW)
    return invoice, entry, charge


def _line(invoice, item_type):
    return next(item for item in invoice.items if item.item_type == item_type)


def test_adding_tax_reprices(db, admin, draft):
    invoice = draft[0]
    assert invoice.amount == Decimal("550.00")

    invoice = update_invoice_pricing(db, invoice.id, actor=admin, tax_rate=Decimal("23"))

    assert invoice.tax_amount == Decimal("126.50")
    assert invoice.amount == Decimal("676.50")
    assert verify_invoice_amount(invoice)

    invoice = update_invoice_pricing(db, invoice.id, actor=admin, tax_inclusive=True)
    assert invoice.tax_amount == Decimal("102.85")
    assert invoice.amount == Decimal("550.00")
    assert verify_invoice_amount(invoice)


def test_new_discount_replaces_old(db, admin, draft):
    invoice = update_invoice_pricing(db, draft[0].id, actor=admin, discount_percent=Decimal("10"))
    assert invoice.amount == Decimal("495.00")

    invoice = update_invoice_pricing(db, invoice.id, actor=admin, discount_amount=Decimal("100"))
    assert invoice.discount_percent is None
    assert invoice.discount_amount == Decimal("100.00")
    assert invoice.amount == Decimal("450.00")
    assert verify_invoice_amount(invoice)

    invoice = update_invoice_pricing(db, invoice.id, actor=admin, discount_amount=None)
    assert invoice.discount_amount is None
    assert invoice.amount == Decimal("550.00")


@pytest.mark.parametrize(
    "changes, error",
    [
        ({"discount_percent": Decimal("150")}, InvalidDiscountConfigurationError),
        ({"discount_amount": Decimal("-5")}, InvalidDiscountConfigurationError),
        ({"tax_rate": Decimal("-1")}, InvalidTaxRateError),
        ({"amount": Decimal("1")}, InvalidWorkItemError),
    ],
)
def test_bad_pricing_writes_nothing(db, admin, draft, changes, error):
    invoice = draft[0]
    with pytest.raises(error):
        update_invoice_pricing(db, invoice.id, actor=admin, **changes)

    stored = db.get(Invoice, invoice.id)
    assert stored.amount == Decimal("550.00")
    assert stored.discount_percent is None
    assert stored.tax_rate is None


def test_only_drafts_are_editable(db, admin, draft):
    invoice = draft[0]
    transition(db, invoice, InvoiceAction.SUBMIT, admin)

    with pytest.raises(InvoiceNotEditableError):
        update_invoice_pricing(db, invoice.id, actor=admin, tax_rate=Decimal("23"))
    with pytest.raises(InvoiceNotEditableError):
        add_invoice_item(db, invoice.id, "Courier", Decimal("1"), Decimal("10"), actor=admin)


def test_client_cannot_edit(db, factory, draft):
    outsider = Actor(user_id=factory.user(role=Role.CLIENT).id, role=Role.CLIENT)
    with pytest.raises(PermissionDeniedError):
        update_invoice_pricing(db, draft[0].id, actor=outsider, tax_rate=Decimal("23"))


def test_manual_line_is_appended_and_priced(db, admin, draft):
    invoice = update_invoice_pricing(db, draft[0].id, actor=admin, tax_rate=Decimal("23"))

    invoice = add_invoice_item(db, invoice.id, "Certified copies", Decimal("2"), Decimal("25"), actor=admin)

    manual = invoice.items[-1]
    assert manual.item_type == LineItemType.MANUAL
    assert manual.amount == Decimal("50.00")
    assert invoice.subtotal == Decimal("600.00")
    assert invoice.amount == Decimal("738.00")
    assert verify_invoice_amount(invoice)


def test_editing_a_line_reprices(db, admin, draft):
    invoice = draft[0]
    hours_line = _line(invoice, LineItemType.TIMESHEET)

    invoice = update_invoice_item(db, invoice.id, hours_line.id, actor=admin, quantity=Decimal("4"))

    assert _line(invoice, LineItemType.TIMESHEET).amount == Decimal("400.00")
    assert invoice.subtotal == Decimal("450.00")
    assert invoice.amount == Decimal("450.00")
    assert verify_invoice_amount(invoice)


def test_removing_a_line_releases_its_source(db, admin, draft):
    invoice, _, charge = draft
    charge_line = _line(invoice, LineItemType.CHARGE)

    invoice = remove_invoice_item(db, invoice.id, charge_line.id, actor=admin)

    assert [item.item_type for item in invoice.items] == [LineItemType.TIMESHEET]
    assert invoice.amount == Decimal("500.00")
    assert verify_invoice_amount(invoice)
    assert db.get(Charge, charge.id).billed is False
    assert summarize_unbilled(db, invoice.project_id).charges_total == Decimal("50.00")


def test_credit_lines_are_locked(db, admin, factory):
    acme = factory.client()
    proposal = factory.proposal(client=acme)
    project = factory.project(proposal=proposal)
    entry = factory.entry(project, factory.user(), "5", "100")
    factory.charge(project, "50")
    factory.paid_upfront(proposal, "200", number="INV-UP-3")
    invoice = generate_invoice(db, project.id, actor=admin, now=NOW)
    credit_line = invoice.credit_items[0]

    with pytest.raises(CreditLineLockedError):
        update_invoice_item(db, invoice.id, credit_line.id, actor=admin, rate=Decimal("0"))
    with pytest.raises(CreditLineLockedError):
        remove_invoice_item(db, invoice.id, credit_line.id, actor=admin)

    # dropping the hours would leave less work than the credit already drawn
    hours_line = _line(invoice, LineItemType.TIMESHEET)
    with pytest.raises(InvalidWorkItemError):
        remove_invoice_item(db, invoice.id, hours_line.id, actor=admin)
    assert db.get(TimesheetEntry, entry.id).billed is True
    assert db.get(Invoice, invoice.id).amount == Decimal("350.00")

    invoice = update_invoice_pricing(db, invoice.id, actor=admin, tax_rate=Decimal("23"))
    assert invoice.amount == Decimal("430.50")
    assert verify_invoice_amount(invoice)
