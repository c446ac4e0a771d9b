"""Import all models so SQLAlchemy metadata is fully registered."""

from lexbill.db.base import Base

from lexbill.models.enums import (
    ChargeType,
    FinderFeeStatus,
    HourlyRateTableType,
    InvoiceStatus,
    LineItemType,
    ProposalType,
    RecurringFrequency,
    Role,
    UpfrontPaymentType,
    WorkerProfile,
)
from lexbill.models.finder_fee import FinderFee, FinderFeePayment
from lexbill.models.invoice import Invoice, InvoiceLineItem
from lexbill.models.party import Client, ClientFinder, Lead, User
from lexbill.models.proposal import Project, ProjectUserRate, Proposal
from lexbill.models.work import Charge, Expense, TimesheetEntry

__all__ = [
    "Base",
    "ChargeType",
    "FinderFeeStatus",
    "HourlyRateTableType",
    "InvoiceStatus",
    "LineItemType",
    "ProposalType",
    "RecurringFrequency",
    "Role",
    "UpfrontPaymentType",
    "WorkerProfile",
    "FinderFee",
    "FinderFeePayment",
    "Invoice",
    "InvoiceLineItem",
    "Client",
    "ClientFinder",
    "Lead",
    "User",
    "Project",
    "ProjectUserRate",
    "Proposal",
    "Charge",
    "Expense",
    "TimesheetEntry",
]
