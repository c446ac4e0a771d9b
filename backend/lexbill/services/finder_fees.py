from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from lexbill.core import rbac
from lexbill.core.errors import (
    ExceedsRemainingAmountError,
    FinderFeeConflictError,
    InvalidPaymentAmountError,
    InvoiceNotPaidError,
    NotFoundError,
)
from lexbill.core.rbac import Actor
from lexbill.db.session import transaction
from lexbill.models.enums import FinderFeeStatus, InvoiceStatus
from lexbill.models.finder_fee import FinderFee, FinderFeePayment
from lexbill.models.invoice import Invoice
from lexbill.models.party import Client
from lexbill.services.money import ZERO, Numeric, percent_of, q, to_decimal

logger = logging.getLogger(__name__)


def finder_fee_status(fee_amount: Numeric, paid_amount: Numeric) -> FinderFeeStatus:
    remaining = to_decimal(fee_amount) - to_decimal(paid_amount)
    if remaining <= ZERO:
        return FinderFeeStatus.PAID
    if to_decimal(paid_amount) > ZERO:
        return FinderFeeStatus.PARTIALLY_PAID
    return FinderFeeStatus.PENDING


def calculate_and_create_finder_fees(db: Session, invoice_id: int) -> List[FinderFee]:
    """Create one PENDING fee per finder of the invoice's client. Safe to call again."""
    invoice = db.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    if invoice.status != InvoiceStatus.PAID or invoice.paid_at is None:
        raise InvoiceNotPaidError()

    existing = db.query(FinderFee).filter(FinderFee.invoice_id == invoice.id).order_by(FinderFee.id.asc()).all()
    if existing:
        return existing

    # Leads have no finders.
    if invoice.client_id is None:
        return []

    client = (
        db.query(Client)
        .options(selectinload(Client.finders))
        .filter(Client.id == invoice.client_id)
        .first()
    )
    if client is None or not client.finders:
        return []

    base_amount = q(invoice.amount)
    if base_amount <= ZERO:
        return []

    fees: List[FinderFee] = []
    for client_finder in client.finders:
        if to_decimal(client_finder.fee_percent) <= ZERO:
            continue
        fee_amount = percent_of(base_amount, client_finder.fee_percent)
        fee = FinderFee(
            invoice_id=invoice.id,
            client_id=client.id,
            finder_id=client_finder.user_id,
            client_finder_id=client_finder.id,
            invoice_amount=base_amount,
            fee_percent=client_finder.fee_percent,
            fee_amount=fee_amount,
            paid_amount=ZERO,
            remaining_amount=fee_amount,
            status=FinderFeeStatus.PENDING,
            earned_at=invoice.paid_at,
        )
        db.add(fee)
        fees.append(fee)
    db.flush()

    logger.info(
        "finder_fee.created",
        extra={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number, "amount": base_amount},
    )
    return fees


def record_finder_fee_payment(
    db: Session,
    fee_id: int,
    amount: Numeric,
    payment_date: Optional[datetime] = None,
    *,
    actor: Actor,
    notes: Optional[str] = None,
) -> FinderFee:
    rbac.require_capability(actor, "record_finder_fee_payment")
    payment_amount = q(amount)
    if payment_amount <= ZERO:
        raise InvalidPaymentAmountError()

    try:
        fee = _pay_locked_fee(db, fee_id, payment_amount, payment_date, actor=actor, notes=notes)
    except StaleDataError:
        logger.warning("finder_fee.payment_conflict", extra={"finder_fee_id": fee_id, "actor_id": actor.user_id})
        raise FinderFeeConflictError()

    logger.info(
        "finder_fee.payment_recorded",
        extra={"finder_fee_id": fee.id, "amount": payment_amount, "actor_id": actor.user_id},
    )
    return fee


def _lock_finder_fee(db: Session, fee_id: int) -> FinderFee:
    fee = (
        db.query(FinderFee)
        .options(selectinload(FinderFee.payments))
        .filter(FinderFee.id == fee_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if not fee:
        raise NotFoundError("Finder fee not found")
    return fee


def _paid_so_far(db: Session, fee_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(FinderFeePayment.amount), 0))
        .filter(FinderFeePayment.finder_fee_id == fee_id)
        .scalar()
    )
    return q(total)


def _pay_locked_fee(
    db: Session,
    fee_id: int,
    payment_amount: Decimal,
    payment_date: Optional[datetime],
    *,
    actor: Actor,
    notes: Optional[str],
) -> FinderFee:
    # The version column rejects the write if another payment committed after the lock read.
    with transaction(db):
        fee = _lock_finder_fee(db, fee_id)
        total_paid = _paid_so_far(db, fee.id)
        new_total_paid = total_paid + payment_amount
        fee_amount = to_decimal(fee.fee_amount)
        if new_total_paid > fee_amount:
            raise ExceedsRemainingAmountError(max_payable=q(fee_amount - total_paid))

        paid_on = payment_date or datetime.now(timezone.utc)
        payment = FinderFeePayment(
            finder_fee_id=fee.id,
            amount=payment_amount,
            payment_date=paid_on,
            notes=notes,
            paid_by_user_id=actor.user_id,
        )
        db.add(payment)
        fee.payments.append(payment)

        fee.paid_amount = q(new_total_paid)
        fee.remaining_amount = q(max(fee_amount - new_total_paid, ZERO))
        fee.status = finder_fee_status(fee_amount, new_total_paid)
        if fee.status == FinderFeeStatus.PAID:
            fee.paid_at = paid_on
        db.add(fee)
        db.flush()
    return fee


def list_finder_fees(
    db: Session,
    *,
    finder_id: Optional[int] = None,
    status: Optional[FinderFeeStatus] = None,
    client_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[FinderFee]:
    query = db.query(FinderFee).options(selectinload(FinderFee.payments))
    if finder_id is not None:
        query = query.filter(FinderFee.finder_id == finder_id)
    if status is not None:
        query = query.filter(FinderFee.status == status)
    if client_id is not None:
        query = query.filter(FinderFee.client_id == client_id)
    if start is not None:
        query = query.filter(FinderFee.earned_at >= start)
    if end is not None:
        query = query.filter(FinderFee.earned_at <= end)
    return query.order_by(FinderFee.earned_at.desc(), FinderFee.id.desc()).all()


def outstanding_total(fees: List[FinderFee]) -> Decimal:
    return q(sum((to_decimal(fee.remaining_amount) for fee in fees), start=ZERO))
