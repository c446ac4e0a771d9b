from __future__ import annotations

from typing import Container, Optional

from sqlalchemy.orm import Session

from lexbill.models.invoice import Invoice
from lexbill.models.proposal import Proposal

PROPOSAL_PREFIX = "PROP-"
INVOICE_PREFIX = "INV-"


def invoice_number_base(proposal_number: str) -> str:
    if proposal_number.startswith(PROPOSAL_PREFIX):
        return INVOICE_PREFIX + proposal_number[len(PROPOSAL_PREFIX):]
    return proposal_number


def next_invoice_number(
    proposal_number: Optional[str],
    existing_for_proposal: int,
    taken: Container[str],
) -> Optional[str]:
    """``INV-<base>-<n>`` where n follows the proposal's invoice count, skipping numbers already in use."""
    if not proposal_number:
        return None
    base = invoice_number_base(proposal_number)
    suffix = existing_for_proposal + 1
    candidate = f"{base}-{suffix}"
    while candidate in taken:
        suffix += 1
        candidate = f"{base}-{suffix}"
    return candidate


def allocate_invoice_number(db: Session, proposal: Optional[Proposal]) -> Optional[str]:
    # Caller holds the proposal row lock, so the count and the taken set are stable for this transaction.
    if proposal is None or not proposal.proposal_number:
        return None
    existing = db.query(Invoice).filter(Invoice.proposal_id == proposal.id).count()
    base = invoice_number_base(proposal.proposal_number)
    taken = {
        number
        for (number,) in db.query(Invoice.invoice_number).filter(Invoice.invoice_number.like(f"{base}-%")).all()
    }
    return next_invoice_number(proposal.proposal_number, existing, taken)
