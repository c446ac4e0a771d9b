from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lexbill.db.base import Base, IDMixin, TimestampMixin
from lexbill.models.enums import FinderFeeStatus


class FinderFee(IDMixin, TimestampMixin, Base):
    __tablename__ = "finder_fees"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    finder_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    client_finder_id: Mapped[Optional[int]] = mapped_column(ForeignKey("client_finders.id"), nullable=True)

    invoice_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    fee_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[FinderFeeStatus] = mapped_column(
        Enum(FinderFeeStatus, name="finder_fee_status"),
        default=FinderFeeStatus.PENDING,
        nullable=False,
        index=True,
    )
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    invoice: Mapped["Invoice"] = relationship(back_populates="finder_fees")
    client: Mapped["Client"] = relationship()
    finder: Mapped["User"] = relationship()
    payments: Mapped[List["FinderFeePayment"]] = relationship(
        back_populates="finder_fee",
        cascade="all, delete-orphan",
        order_by=lambda: FinderFeePayment.payment_date.desc(),
    )

    __mapper_args__ = {"version_id_col": version}


class FinderFeePayment(IDMixin, TimestampMixin, Base):
    __tablename__ = "finder_fee_payments"

    finder_fee_id: Mapped[int] = mapped_column(ForeignKey("finder_fees.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    finder_fee: Mapped[FinderFee] = relationship(back_populates="payments")
