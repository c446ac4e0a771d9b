from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from lexbill.core.errors import BilledItemLockedError, InvalidWorkItemError, NotFoundError, PermissionDeniedError
from lexbill.core.rbac import Actor
from lexbill.models.enums import ChargeType, HourlyRateTableType, RecurringFrequency, Role, WorkerProfile
from lexbill.models.proposal import ProjectUserRate
from lexbill.services import work
from lexbill.services.invoices import generate_invoice

NOW = datetime(2024, 3, 31, tzinfo=timezone.utc)


@pytest.fixture()
def setup(factory):
    acme = factory.client()
    lawyer = factory.user(profile=WorkerProfile.LAWYER, default_hourly_rate=Decimal("120"))
    proposal = factory.proposal(
        client=acme,
        hourly_rate_table_type=HourlyRateTableType.HOURLY_TABLE,
        hourly_rate_table_rates={"LAWYER": "150.00"},
    )
    project = factory.project(proposal=proposal)
    return project, lawyer


def test_entry_rate_comes_from_proposal_table(db, staff, setup):
    project, lawyer = setup
    entry = work.create_timesheet_entry(db, project.id, lawyer.id, date(2024, 3, 4), Decimal("2.5"), actor=staff)

    assert entry.rate == Decimal("150.00")
    assert entry.billed is False


def test_project_user_rate_overrides_proposal(db, staff, setup):
    project, lawyer = setup
    db.add(ProjectUserRate(project_id=project.id, user_id=lawyer.id, rate=Decimal("175")))
    db.commit()

    entry = work.create_timesheet_entry(db, project.id, lawyer.id, date(2024, 3, 4), Decimal("1"), actor=staff)
    assert entry.rate == Decimal("175.00")


def test_explicit_rate_is_kept(db, staff, setup):
    project, lawyer = setup
    entry = work.create_timesheet_entry(
        db, project.id, lawyer.id, date(2024, 3, 4), Decimal("1"), actor=staff, rate=Decimal("0")
    )
    assert entry.rate == Decimal("0.00")


def test_negative_hours_rejected(db, staff, setup):
    project, lawyer = setup
    with pytest.raises(InvalidWorkItemError):
        work.create_timesheet_entry(db, project.id, lawyer.id, date(2024, 3, 4), Decimal("-1"), actor=staff)


def test_client_cannot_log_time(db, factory, setup):
    project, lawyer = setup
    outsider = factory.user(role=Role.CLIENT)
    with pytest.raises(PermissionDeniedError):
        work.create_timesheet_entry(
            db,
            project.id,
            lawyer.id,
            date(2024, 3, 4),
            Decimal("1"),
            actor=Actor(user_id=outsider.id, role=Role.CLIENT),
        )


def test_unknown_user(db, staff, setup):
    project, _ = setup
    with pytest.raises(NotFoundError):
        work.create_timesheet_entry(db, project.id, 4242, date(2024, 3, 4), Decimal("1"), actor=staff)


def test_billed_entry_is_locked(db, admin, staff, setup):
    project, lawyer = setup
    entry = work.create_timesheet_entry(db, project.id, lawyer.id, date(2024, 3, 4), Decimal("1"), actor=staff)
    generate_invoice(db, project.id, actor=admin, now=NOW)

    with pytest.raises(BilledItemLockedError):
        work.update_timesheet_entry(db, entry.id, actor=staff, hours=Decimal("3"))
    assert db.get(type(entry), entry.id).hours == Decimal("1.00")


def test_unbilled_entry_can_be_edited(db, staff, setup):
    project, lawyer = setup
    entry = work.create_timesheet_entry(db, project.id, lawyer.id, date(2024, 3, 4), Decimal("1"), actor=staff)

    updated = work.update_timesheet_entry(db, entry.id, actor=staff, hours=Decimal("1.75"), description="Review")
    assert updated.hours == Decimal("1.75")
    assert updated.description == "Review"

    with pytest.raises(InvalidWorkItemError):
        work.update_timesheet_entry(db, entry.id, actor=staff, billed=True)


def test_charge_amount_is_derived(db, staff, setup):
    project, _ = setup
    charge = work.create_charge(db, project.id, "Certified copies", Decimal("12.50"), actor=staff, quantity=Decimal("3"))

    assert charge.amount == Decimal("37.50")
    assert charge.charge_type == ChargeType.ONE_TIME


def test_recurring_charge_needs_schedule(db, staff, setup):
    project, _ = setup
    with pytest.raises(InvalidWorkItemError):
        work.create_charge(db, project.id, "Retainer", Decimal("500"), actor=staff, charge_type=ChargeType.RECURRING)

    charge = work.create_charge(
        db,
        project.id,
        "Retainer",
        Decimal("500"),
        actor=staff,
        charge_type=ChargeType.RECURRING,
        recurring_frequency=RecurringFrequency.MONTHLY,
        start_date=date(2024, 1, 1),
    )
    assert charge.recurring_frequency == RecurringFrequency.MONTHLY


def test_charge_update_recomputes_amount(db, staff, setup):
    project, _ = setup
    charge = work.create_charge(db, project.id, "Translation", Decimal("40"), actor=staff)

    updated = work.update_charge(db, charge.id, actor=staff, quantity=Decimal("2.5"))
    assert updated.amount == Decimal("100.00")


def test_billed_expense_is_locked(db, admin, staff, setup):
    project, _ = setup
    expense = work.create_expense(db, project.id, "Court fee", Decimal("102"), actor=staff, is_reimbursement=True)
    assert expense.created_by_user_id == staff.user_id

    invoice = generate_invoice(db, project.id, actor=admin, now=NOW)
    assert invoice.items[-1].description == "Reimbursement: Court fee"

    with pytest.raises(BilledItemLockedError):
        work.update_expense(db, expense.id, actor=staff, amount=Decimal("1"))
