from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lexbill.db.base import Base, IDMixin, TimestampMixin
from lexbill.models.enums import InvoiceStatus, LineItemType


class Invoice(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("(client_id IS NULL) <> (lead_id IS NULL)", name="bill_to_exactly_one"),
    )

    proposal_id: Mapped[Optional[int]] = mapped_column(ForeignKey("proposals.id"), nullable=True, index=True)
    project_id: Mapped[Optional[int]] = mapped_column(ForeignKey("projects.id"), nullable=True, index=True)
    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"), nullable=True, index=True)
    lead_id: Mapped[Optional[int]] = mapped_column(ForeignKey("leads.id"), nullable=True, index=True)
    created_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    invoice_number: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="EUR", nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status"),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Raw subtotal of the billed work, before credit, discount and tax.
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    credit_used: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    discount_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    discount_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    tax_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    tax_inclusive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    # Upfront invoices only: how much of this invoice's amount later invoices consumed.
    is_upfront_payment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    credit_applied: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    related_invoice_id: Mapped[Optional[int]] = mapped_column(ForeignKey("invoices.id"), nullable=True)

    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    written_off_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    proposal: Mapped[Optional["Proposal"]] = relationship()
    project: Mapped[Optional["Project"]] = relationship()
    client: Mapped[Optional["Client"]] = relationship()
    lead: Mapped[Optional["Lead"]] = relationship()
    items: Mapped[List["InvoiceLineItem"]] = relationship(
        back_populates="invoice",
        foreign_keys="InvoiceLineItem.invoice_id",
        cascade="all, delete-orphan",
        order_by=lambda: [InvoiceLineItem.order_index.asc(), InvoiceLineItem.id.asc()],
    )
    finder_fees: Mapped[List["FinderFee"]] = relationship(back_populates="invoice", cascade="all, delete-orphan")

    @property
    def available_credit(self) -> Decimal:
        return Decimal(self.amount or Decimal("0.00")) - Decimal(self.credit_applied or Decimal("0.00"))

    @property
    def credit_items(self) -> list["InvoiceLineItem"]:
        return [item for item in self.items if item.is_credit]

    @property
    def work_items(self) -> list["InvoiceLineItem"]:
        return [item for item in self.items if not item.is_credit]


class InvoiceLineItem(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_line_items"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type: Mapped[LineItemType] = mapped_column(Enum(LineItemType, name="line_item_type"), nullable=False)
    timesheet_entry_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("timesheet_entries.id"),
        nullable=True,
        index=True,
    )
    charge_id: Mapped[Optional[int]] = mapped_column(ForeignKey("project_charges.id"), nullable=True, index=True)
    expense_id: Mapped[Optional[int]] = mapped_column(ForeignKey("project_expenses.id"), nullable=True, index=True)
    credit_source_invoice_id: Mapped[Optional[int]] = mapped_column(ForeignKey("invoices.id"), nullable=True)
    person_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("1.00"), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    is_credit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    service_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    invoice: Mapped[Invoice] = relationship(back_populates="items", foreign_keys=[invoice_id])
