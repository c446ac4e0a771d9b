from __future__ import annotations

import enum


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    CLIENT = "CLIENT"


class WorkerProfile(str, enum.Enum):
    SECRETARIAT = "SECRETARIAT"
    TRAINEE = "TRAINEE"
    JUNIOR_LAWYER = "JUNIOR_LAWYER"
    LAWYER = "LAWYER"
    SENIOR_LAWYER = "SENIOR_LAWYER"
    PARTNER = "PARTNER"


class ProposalType(str, enum.Enum):
    HOURLY = "HOURLY"
    FIXED_FEE = "FIXED_FEE"
    SUCCESS_FEE = "SUCCESS_FEE"
    RECURRING = "RECURRING"
    CAPPED_FEE = "CAPPED_FEE"
    MIXED_MODEL = "MIXED_MODEL"


class HourlyRateTableType(str, enum.Enum):
    HOURLY_TABLE = "HOURLY_TABLE"
    RATE_RANGE = "RATE_RANGE"


class UpfrontPaymentType(str, enum.Enum):
    PERCENT = "PERCENT"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class ChargeType(str, enum.Enum):
    ONE_TIME = "ONE_TIME"
    RECURRING = "RECURRING"


class RecurringFrequency(str, enum.Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    WRITTEN_OFF = "WRITTEN_OFF"


class LineItemType(str, enum.Enum):
    TIMESHEET = "TIMESHEET"
    CHARGE = "CHARGE"
    EXPENSE = "EXPENSE"
    MANUAL = "MANUAL"


class FinderFeeStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
