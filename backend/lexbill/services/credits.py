"""Upfront-payment credit ledger.

A paid upfront invoice becomes a credit pool for later invoices on the same
proposal. Pools are drawn oldest first, and ``credit_applied`` on the
upfront invoice records how much has been consumed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from lexbill.core.errors import CreditOverAllocationError
from lexbill.core.settings import settings
from lexbill.models.enums import InvoiceStatus
from lexbill.models.invoice import Invoice
from lexbill.services.money import ZERO, Numeric, q, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditAllocation:
    invoice_id: int
    invoice_number: Optional[str]
    amount: Decimal

    @property
    def description(self) -> str:
        if self.invoice_number:
            return f"Credit from upfront payment ({self.invoice_number})"
        return "Credit from upfront payment"


@dataclass(frozen=True)
class AvailableCredit:
    allocations: List[CreditAllocation] = field(default_factory=list)

    @property
    def total_available(self) -> Decimal:
        return sum((allocation.amount for allocation in self.allocations), start=ZERO)


def paid_upfront_invoices(db: Session, proposal_id: int) -> List[Invoice]:
    return (
        db.query(Invoice)
        .filter(
            Invoice.proposal_id == proposal_id,
            Invoice.is_upfront_payment.is_(True),
            Invoice.status == InvoiceStatus.PAID,
        )
        .order_by(Invoice.created_at.asc(), Invoice.id.asc())
        .all()
    )


def compute_available_credit(db: Session, proposal_id: Optional[int]) -> AvailableCredit:
    if proposal_id is None:
        return AvailableCredit()
    allocations = []
    for upfront in paid_upfront_invoices(db, proposal_id):
        remaining = q(upfront.available_credit)
        if remaining > ZERO:
            allocations.append(
                CreditAllocation(invoice_id=upfront.id, invoice_number=upfront.invoice_number, amount=remaining)
            )
    return AvailableCredit(allocations=allocations)


def credit_to_apply(raw_subtotal: Numeric, available: AvailableCredit) -> Decimal:
    """Credit never takes the post-credit subtotal below zero."""
    return min(available.total_available, max(q(raw_subtotal), ZERO))


def allocate_credit(available: AvailableCredit, credit_used: Numeric) -> List[CreditAllocation]:
    """Split ``credit_used`` across the pools, oldest first."""
    remaining = to_decimal(credit_used)
    if remaining > available.total_available:
        _over_allocated(
            f"Credit {remaining} exceeds available credit {available.total_available}",
        )
        remaining = available.total_available

    shares: List[CreditAllocation] = []
    for pool in available.allocations:
        if remaining <= ZERO:
            break
        share = min(pool.amount, remaining)
        shares.append(CreditAllocation(invoice_id=pool.invoice_id, invoice_number=pool.invoice_number, amount=share))
        remaining -= share
    return shares


def apply_credit_allocations(db: Session, shares: List[CreditAllocation], new_invoice: Invoice) -> None:
    for share in shares:
        upfront = db.get(Invoice, share.invoice_id)
        if upfront is None:
            raise CreditOverAllocationError(f"Upfront invoice {share.invoice_id} no longer exists")
        available = q(upfront.available_credit)
        amount = share.amount
        if amount > available:
            _over_allocated(
                f"Share {amount} exceeds the {available} left on upfront invoice {upfront.id}",
            )
            amount = available
        upfront.credit_applied = q(to_decimal(upfront.credit_applied) + amount)
        upfront.related_invoice_id = new_invoice.id
        db.add(upfront)
        logger.info(
            "credit.applied",
            extra={
                "invoice_id": upfront.id,
                "invoice_number": upfront.invoice_number,
                "amount": amount,
                "proposal_id": upfront.proposal_id,
            },
        )
    db.flush()


def _over_allocated(message: str) -> None:
    if settings.strict_credit_allocation:
        raise CreditOverAllocationError(message)
    logger.warning("credit.over_allocation_clamped", extra={"error": message})
