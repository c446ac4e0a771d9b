from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from lexbill.core.errors import (
    ExceedsRemainingAmountError,
    InvalidPaymentAmountError,
    InvoiceNotPaidError,
    PermissionDeniedError,
)
from lexbill.models.enums import FinderFeeStatus, InvoiceStatus
from lexbill.models.finder_fee import FinderFee, FinderFeePayment
from lexbill.models.invoice import Invoice
from lexbill.services.finder_fees import (
    calculate_and_create_finder_fees,
    finder_fee_status,
    list_finder_fees,
    outstanding_total,
    record_finder_fee_payment,
)

PAID_ON = datetime(2024, 4, 10, tzinfo=timezone.utc)


@pytest.fixture()
def paid_with_finder(db, factory):
    acme = factory.client()
    finder = factory.user(name="Filipa Finder")
    factory.finder(acme, finder, "10")
    invoice = factory.paid_invoice(acme, "1000")
    return invoice, finder


def test_finder_fee_status():
    assert finder_fee_status(Decimal("100"), Decimal("0")) == FinderFeeStatus.PENDING
    assert finder_fee_status(Decimal("100"), Decimal("60")) == FinderFeeStatus.PARTIALLY_PAID
    assert finder_fee_status(Decimal("100"), Decimal("100")) == FinderFeeStatus.PAID


def test_scenario_e_partial_then_rejected_overpayment(db, admin, paid_with_finder):
    invoice, finder = paid_with_finder
    fees = calculate_and_create_finder_fees(db, invoice.id)
    db.commit()

    assert len(fees) == 1
    fee = fees[0]
    assert fee.fee_amount == Decimal("100.00")
    assert fee.remaining_amount == Decimal("100.00")
    assert fee.status == FinderFeeStatus.PENDING
    assert fee.finder_id == finder.id

    fee = record_finder_fee_payment(db, fee.id, Decimal("60"), PAID_ON, actor=admin)
    assert fee.status == FinderFeeStatus.PARTIALLY_PAID
    assert fee.paid_amount == Decimal("60.00")
    assert fee.remaining_amount == Decimal("40.00")

    with pytest.raises(ExceedsRemainingAmountError) as excinfo:
        record_finder_fee_payment(db, fee.id, Decimal("41"), PAID_ON, actor=admin)
    assert excinfo.value.max_payable == Decimal("40.00")
    assert "Maximum payment: 40.00" in excinfo.value.message
    assert db.query(FinderFeePayment).count() == 1

    fee = record_finder_fee_payment(db, fee.id, Decimal("40"), PAID_ON, actor=admin, notes="Final instalment")
    assert fee.status == FinderFeeStatus.PAID
    assert fee.remaining_amount == Decimal("0.00")
    assert fee.paid_at is not None


def test_calculation_is_idempotent(db, paid_with_finder):
    invoice, _ = paid_with_finder
    first = calculate_and_create_finder_fees(db, invoice.id)
    db.commit()
    second = calculate_and_create_finder_fees(db, invoice.id)

    assert [fee.id for fee in second] == [fee.id for fee in first]
    assert db.query(FinderFee).count() == 1


def test_unpaid_invoice_is_rejected(db, factory):
    acme = factory.client()
    invoice = factory.paid_invoice(acme, "500")
    invoice.status = InvoiceStatus.APPROVED
    db.commit()

    with pytest.raises(InvoiceNotPaidError):
        calculate_and_create_finder_fees(db, invoice.id)


def test_zero_percent_finder_is_skipped(db, factory):
    acme = factory.client()
    factory.finder(acme, factory.user(), "0")
    earner = factory.user()
    factory.finder(acme, earner, "2.5")
    invoice = factory.paid_invoice(acme, "333")

    fees = calculate_and_create_finder_fees(db, invoice.id)

    assert [fee.finder_id for fee in fees] == [earner.id]
    assert fees[0].fee_amount == Decimal("8.33")


def test_lead_invoice_has_no_fees(db, factory):
    prospect = factory.lead()
    invoice = Invoice(
        lead_id=prospect.id,
        amount=Decimal("800"),
        status=InvoiceStatus.PAID,
        paid_at=PAID_ON,
    )
    db.add(invoice)
    db.commit()

    assert calculate_and_create_finder_fees(db, invoice.id) == []


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
def test_non_positive_payment_is_rejected(db, admin, paid_with_finder, amount):
    invoice, _ = paid_with_finder
    fee = calculate_and_create_finder_fees(db, invoice.id)[0]
    db.commit()

    with pytest.raises(InvalidPaymentAmountError):
        record_finder_fee_payment(db, fee.id, amount, actor=admin)


def test_only_admins_record_payments(db, manager, paid_with_finder):
    invoice, _ = paid_with_finder
    fee = calculate_and_create_finder_fees(db, invoice.id)[0]
    db.commit()

    with pytest.raises(PermissionDeniedError):
        record_finder_fee_payment(db, fee.id, Decimal("10"), actor=manager)


def test_list_and_outstanding_total(db, admin, factory, paid_with_finder):
    invoice, finder = paid_with_finder
    fee = calculate_and_create_finder_fees(db, invoice.id)[0]
    db.commit()
    record_finder_fee_payment(db, fee.id, Decimal("25"), actor=admin)

    other_client = factory.client(name="Beta SA")
    other_finder = factory.user()
    factory.finder(other_client, other_finder, "5")
    calculate_and_create_finder_fees(db, factory.paid_invoice(other_client, "200").id)
    db.commit()

    mine = list_finder_fees(db, finder_id=finder.id)
    assert [row.id for row in mine] == [fee.id]
    assert outstanding_total(mine) == Decimal("75.00")

    partial = list_finder_fees(db, status=FinderFeeStatus.PARTIALLY_PAID)
    assert [row.id for row in partial] == [fee.id]
    assert len(list_finder_fees(db)) == 2
    assert outstanding_total(list_finder_fees(db)) == Decimal("85.00")
