"""Capture of billable work: timesheet entries, project charges and expenses.

Rows that already sit on an invoice are locked; edits go through
``ensure_editable`` and fail with ``BilledItemLockedError``.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Union

from sqlalchemy.orm import Session, selectinload

from lexbill.core import rbac
from lexbill.core.errors import BilledItemLockedError, InvalidWorkItemError, NotFoundError
from lexbill.core.rbac import Actor
from lexbill.db.session import transaction
from lexbill.models.enums import ChargeType, RecurringFrequency
from lexbill.models.party import User
from lexbill.models.proposal import Project
from lexbill.models.work import Charge, Expense, TimesheetEntry
from lexbill.services.money import ZERO, Numeric, line_total, q, to_decimal
from lexbill.services.rates import RateConfig, WorkerRate, resolve_project_rate

logger = logging.getLogger(__name__)

WorkItem = Union[TimesheetEntry, Charge, Expense]

TIMESHEET_FIELDS = ("entry_date", "hours", "rate", "description", "billable")
CHARGE_FIELDS = ("description", "quantity", "unit_price", "charge_type", "recurring_frequency", "start_date", "end_date")
EXPENSE_FIELDS = ("description", "amount", "expense_date", "is_billable", "is_reimbursement")


def _get_project(db: Session, project_id: int) -> Project:
    project = (
        db.query(Project)
        .options(selectinload(Project.user_rates), selectinload(Project.proposal))
        .filter(Project.id == project_id)
        .first()
    )
    if not project:
        raise NotFoundError("Project not found")
    return project


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def is_billed(item: WorkItem) -> bool:
    if isinstance(item, Expense):
        return item.billed_at is not None
    return bool(item.billed)


def ensure_editable(item: WorkItem) -> None:
    if is_billed(item):
        raise BilledItemLockedError()


def rate_for(project: Project, user: User, explicit_rate: Optional[Numeric] = None) -> Optional[Decimal]:
    proposal_config = RateConfig.from_model(project.proposal) if project.proposal is not None else None
    user_rates = {row.user_id: row.rate for row in project.user_rates}
    return resolve_project_rate(
        RateConfig.from_model(project),
        user_rates,
        proposal_config,
        WorkerRate.from_user(user),
        explicit_rate,
    )


def _non_negative(value: Numeric, label: str) -> Decimal:
    amount = to_decimal(value)
    if amount < ZERO:
        raise InvalidWorkItemError(f"{label} cannot be negative")
    return amount


def _validate_recurring(charge_type: ChargeType, frequency: Optional[RecurringFrequency], start: Optional[date]) -> None:
    if charge_type == ChargeType.RECURRING and (frequency is None or start is None):
        raise InvalidWorkItemError("Recurring charges need a frequency and a start date")


def _apply_changes(item: WorkItem, changes: Dict[str, Any], allowed: Iterable[str]) -> None:
    allowed = set(allowed)
    unknown = set(changes) - allowed
    if unknown:
        raise InvalidWorkItemError(f"Cannot update: {', '.join(sorted(unknown))}")
    for key, value in changes.items():
        setattr(item, key, value)


def create_timesheet_entry(
    db: Session,
    project_id: int,
    user_id: int,
    entry_date: date,
    hours: Numeric,
    *,
    actor: Actor,
    rate: Optional[Numeric] = None,
    description: Optional[str] = None,
    billable: bool = True,
) -> TimesheetEntry:
    rbac.require_capability(actor, "log_time")
    hours_value = _non_negative(hours, "Hours")
    if rate is not None:
        _non_negative(rate, "Rate")

    with transaction(db):
        project = _get_project(db, project_id)
        user = _get_user(db, user_id)
        resolved = rate_for(project, user, rate)
        entry = TimesheetEntry(
            project_id=project.id,
            user_id=user.id,
            entry_date=entry_date,
            hours=hours_value,
            rate=q(resolved) if resolved is not None else None,
            description=description or None,
            billable=billable,
            billed=False,
        )
        db.add(entry)
        db.flush()

    logger.info(
        "timesheet.created",
        extra={"project_id": project_id, "actor_id": actor.user_id, "amount": line_total(entry.hours, entry.rate)},
    )
    return entry


def update_timesheet_entry(db: Session, entry_id: int, *, actor: Actor, **changes: Any) -> TimesheetEntry:
    rbac.require_capability(actor, "log_time")
    with transaction(db):
        entry = db.get(TimesheetEntry, entry_id)
        if not entry:
            raise NotFoundError("Timesheet entry not found")
        ensure_editable(entry)
        if "hours" in changes:
            changes["hours"] = _non_negative(changes["hours"], "Hours")
        if changes.get("rate") is not None:
            changes["rate"] = q(_non_negative(changes["rate"], "Rate"))
        _apply_changes(entry, changes, TIMESHEET_FIELDS)
        db.flush()
    return entry


def create_charge(
    db: Session,
    project_id: int,
    description: str,
    unit_price: Numeric,
    *,
    actor: Actor,
    quantity: Numeric = Decimal("1.00"),
    charge_type: ChargeType = ChargeType.ONE_TIME,
    recurring_frequency: Optional[RecurringFrequency] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Charge:
    rbac.require_capability(actor, "modify_invoice")
    quantity_value = _non_negative(quantity, "Quantity")
    price_value = _non_negative(unit_price, "Unit price")
    _validate_recurring(charge_type, recurring_frequency, start_date)

    with transaction(db):
        project = _get_project(db, project_id)
        charge = Charge(
            project_id=project.id,
            description=description,
            quantity=quantity_value,
            unit_price=q(price_value),
            amount=line_total(quantity_value, price_value),
            charge_type=charge_type,
            recurring_frequency=recurring_frequency if charge_type == ChargeType.RECURRING else None,
            start_date=start_date,
            end_date=end_date,
            billed=False,
        )
        db.add(charge)
        db.flush()

    logger.info("charge.created", extra={"project_id": project_id, "actor_id": actor.user_id, "amount": charge.amount})
    return charge


def update_charge(db: Session, charge_id: int, *, actor: Actor, **changes: Any) -> Charge:
    rbac.require_capability(actor, "modify_invoice")
    with transaction(db):
        charge = db.get(Charge, charge_id)
        if not charge:
            raise NotFoundError("Charge not found")
        ensure_editable(charge)
        _apply_changes(charge, changes, CHARGE_FIELDS)
        charge.quantity = _non_negative(charge.quantity, "Quantity")
        charge.unit_price = q(_non_negative(charge.unit_price, "Unit price"))
        charge.amount = line_total(charge.quantity, charge.unit_price)
        _validate_recurring(charge.charge_type, charge.recurring_frequency, charge.start_date)
        db.flush()
    return charge


def create_expense(
    db: Session,
    project_id: int,
    description: str,
    amount: Numeric,
    *,
    actor: Actor,
    expense_date: Optional[date] = None,
    is_billable: bool = True,
    is_reimbursement: bool = False,
) -> Expense:
    rbac.require_capability(actor, "modify_invoice")
    amount_value = q(_non_negative(amount, "Amount"))

    with transaction(db):
        project = _get_project(db, project_id)
        expense = Expense(
            project_id=project.id,
            created_by_user_id=actor.user_id,
            description=description,
            amount=amount_value,
            expense_date=expense_date,
            is_billable=is_billable,
            is_reimbursement=is_reimbursement,
        )
        db.add(expense)
        db.flush()

    logger.info("expense.created", extra={"project_id": project_id, "actor_id": actor.user_id, "amount": amount_value})
    return expense


def update_expense(db: Session, expense_id: int, *, actor: Actor, **changes: Any) -> Expense:
    rbac.require_capability(actor, "modify_invoice")
    with transaction(db):
        expense = db.get(Expense, expense_id)
        if not expense:
            raise NotFoundError("Expense not found")
        ensure_editable(expense)
        if "amount" in changes:
            changes["amount"] = q(_non_negative(changes["amount"], "Amount"))
        _apply_changes(expense, changes, EXPENSE_FIELDS)
        db.flush()
    return expense
