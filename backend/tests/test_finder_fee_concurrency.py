from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from lexbill.core.errors import ExceedsRemainingAmountError, FinderFeeConflictError
from lexbill.core.rbac import Actor
from lexbill.models.enums import FinderFeeStatus, Role
from lexbill.models.finder_fee import FinderFee
from lexbill.services import finder_fees
from lexbill.services.finder_fees import calculate_and_create_finder_fees, record_finder_fee_payment

PAID_ON = datetime(2024, 4, 10, tzinfo=timezone.utc)


def _earned_fee(db, factory):
    acme = factory.client()
    factory.finder(acme, factory.user(name="Filipa Finder"), "10")
    invoice = factory.paid_invoice(acme, "1000")
    fee = calculate_and_create_finder_fees(db, invoice.id)[0]
    db.commit()
    return fee


def _admin(factory):
    return Actor(user_id=factory.user(role=Role.ADMIN).id, role=Role.ADMIN)


def _reload(db, fee_id):
    db.expire_all()
    return db.get(FinderFee, fee_id)


def _assert_ledger_consistent(fee):
    assert sum(payment.amount for payment in fee.payments) == fee.paid_amount
    assert fee.paid_amount + fee.remaining_amount == fee.fee_amount
    assert fee.paid_amount <= fee.fee_amount


def test_payment_rereads_fee_paid_from_another_session(file_sessions):
    first, second, factory = file_sessions
    admin = _admin(factory)
    fee = _earned_fee(first, factory)
    # first session still holds the unpaid row in its identity map
    assert first.get(FinderFee, fee.id).paid_amount == Decimal("0.00")

    record_finder_fee_payment(second, fee.id, Decimal("60"), PAID_ON, actor=admin)

    with pytest.raises(ExceedsRemainingAmountError) as excinfo:
        record_finder_fee_payment(first, fee.id, Decimal("60"), PAID_ON, actor=admin)
    assert excinfo.value.max_payable == Decimal("40.00")

    fee = _reload(first, fee.id)
    assert fee.paid_amount == Decimal("60.00")
    assert len(fee.payments) == 1
    _assert_ledger_consistent(fee)


def test_payment_committed_between_read_and_write_is_rejected(file_sessions, monkeypatch):
    first, second, factory = file_sessions
    admin = _admin(factory)
    fee = _earned_fee(first, factory)

    paid_so_far = finder_fees._paid_so_far

    def paid_then_competing_payment(db, fee_id):
        paid = paid_so_far(db, fee_id)
        if db is first:
            monkeypatch.setattr(finder_fees, "_paid_so_far", paid_so_far)
            record_finder_fee_payment(second, fee_id, Decimal("60"), PAID_ON, actor=admin)
        return paid

    monkeypatch.setattr(finder_fees, "_paid_so_far", paid_then_competing_payment)

    with pytest.raises(FinderFeeConflictError):
        record_finder_fee_payment(first, fee.id, Decimal("60"), PAID_ON, actor=admin)

    fee = _reload(first, fee.id)
    assert fee.paid_amount == Decimal("60.00")
    assert fee.status == FinderFeeStatus.PARTIALLY_PAID
    _assert_ledger_consistent(fee)

    # a retry sees the competing payment
    with pytest.raises(ExceedsRemainingAmountError):
        record_finder_fee_payment(first, fee.id, Decimal("60"), PAID_ON, actor=admin)
    fee = record_finder_fee_payment(first, fee.id, Decimal("40"), PAID_ON, actor=admin)
    assert fee.status == FinderFeeStatus.PAID
    _assert_ledger_consistent(_reload(first, fee.id))
