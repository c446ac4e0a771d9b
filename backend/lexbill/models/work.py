from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Enum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lexbill.db.base import Base, IDMixin, TimestampMixin
from lexbill.models.enums import ChargeType, RecurringFrequency


class TimesheetEntry(IDMixin, TimestampMixin, Base):
    __tablename__ = "timesheet_entries"

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    billable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    billed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    project: Mapped["Project"] = relationship()
    user: Mapped["User"] = relationship()


class Charge(IDMixin, TimestampMixin, Base):
    __tablename__ = "project_charges"

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("1.00"), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    charge_type: Mapped[ChargeType] = mapped_column(
        Enum(ChargeType, name="charge_type"),
        default=ChargeType.ONE_TIME,
        nullable=False,
    )
    recurring_frequency: Mapped[Optional[RecurringFrequency]] = mapped_column(
        Enum(RecurringFrequency, name="recurring_frequency"),
        nullable=True,
    )
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    # Recurring charges only: the last occurrence put on an invoice.
    last_billed_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    billed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    project: Mapped["Project"] = relationship()


class Expense(IDMixin, TimestampMixin, Base):
    __tablename__ = "project_expenses"

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    expense_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_billable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    is_reimbursement: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    billed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    invoice_id: Mapped[Optional[int]] = mapped_column(ForeignKey("invoices.id"), nullable=True, index=True)

    project: Mapped["Project"] = relationship()
