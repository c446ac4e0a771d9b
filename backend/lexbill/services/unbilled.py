from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session, selectinload

from lexbill.core.errors import NoUnbilledItemsError, NotFoundError
from lexbill.models.enums import ChargeType
from lexbill.models.proposal import Project
from lexbill.models.work import Charge, Expense, TimesheetEntry
from lexbill.services.money import ZERO, line_total, money_sum, to_decimal


@dataclass
class UnbilledWork:
    project_id: int
    timesheet_entries: List[TimesheetEntry] = field(default_factory=list)
    charges: List[Charge] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.timesheet_entries or self.charges or self.expenses)

    @property
    def timesheet_hours(self) -> Decimal:
        return sum((to_decimal(entry.hours) for entry in self.timesheet_entries), start=ZERO)

    @property
    def timesheet_total(self) -> Decimal:
        return money_sum(line_total(entry.hours, entry.rate) for entry in self.timesheet_entries)

    @property
    def charges_total(self) -> Decimal:
        return money_sum(charge.amount for charge in self.charges)

    @property
    def expenses_total(self) -> Decimal:
        return money_sum(expense.amount for expense in self.expenses)

    @property
    def raw_subtotal(self) -> Decimal:
        return self.timesheet_total + self.charges_total + self.expenses_total


@dataclass(frozen=True)
class UnbilledSummary:
    project_id: int
    timesheet_hours: Decimal
    timesheet_total: Decimal
    charges_total: Decimal
    expenses_total: Decimal
    raw_subtotal: Decimal
    item_count: int


def collect_unbilled(db: Session, project_id: int) -> UnbilledWork:
    timesheet_entries = (
        db.query(TimesheetEntry)
        .options(selectinload(TimesheetEntry.user))
        .filter(
            TimesheetEntry.project_id == project_id,
            TimesheetEntry.billable.is_(True),
            TimesheetEntry.billed.is_(False),
        )
        .order_by(TimesheetEntry.entry_date.asc(), TimesheetEntry.id.asc())
        .all()
    )
    charges = (
        db.query(Charge)
        .filter(
            Charge.project_id == project_id,
            Charge.charge_type == ChargeType.ONE_TIME,
            Charge.billed.is_(False),
        )
        .order_by(Charge.created_at.asc(), Charge.id.asc())
        .all()
    )
    expenses = (
        db.query(Expense)
        .filter(
            Expense.project_id == project_id,
            Expense.is_billable.is_(True),
            Expense.billed_at.is_(None),
        )
        .order_by(Expense.created_at.asc(), Expense.id.asc())
        .all()
    )
    return UnbilledWork(
        project_id=project_id,
        timesheet_entries=timesheet_entries,
        charges=charges,
        expenses=expenses,
    )


def require_unbilled(db: Session, project_id: int) -> UnbilledWork:
    work = collect_unbilled(db, project_id)
    if work.is_empty:
        raise NoUnbilledItemsError()
    return work


def summarize_unbilled(db: Session, project_id: int) -> UnbilledSummary:
    if db.get(Project, project_id) is None:
        raise NotFoundError("Project not found")
    work = collect_unbilled(db, project_id)
    return UnbilledSummary(
        project_id=project_id,
        timesheet_hours=work.timesheet_hours,
        timesheet_total=work.timesheet_total,
        charges_total=work.charges_total,
        expenses_total=work.expenses_total,
        raw_subtotal=work.raw_subtotal,
        item_count=len(work.timesheet_entries) + len(work.charges) + len(work.expenses),
    )
