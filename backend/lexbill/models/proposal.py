from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lexbill.db.base import Base, IDMixin, TimestampMixin
from lexbill.models.enums import HourlyRateTableType, ProposalType, UpfrontPaymentType


class RateConfigMixin:
    """Hourly rate configuration shared by proposals and project-level overrides."""

    use_blended_rate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blended_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    hourly_rate_table_type: Mapped[Optional[HourlyRateTableType]] = mapped_column(
        Enum(HourlyRateTableType, name="hourly_rate_table_type"),
        nullable=True,
    )
    # Keyed by WorkerProfile value, e.g. {"LAWYER": "150.00"}
    hourly_rate_table_rates: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    hourly_rate_range_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    hourly_rate_range_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)


class Proposal(RateConfigMixin, IDMixin, TimestampMixin, Base):
    __tablename__ = "proposals"

    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"), nullable=True, index=True)
    lead_id: Mapped[Optional[int]] = mapped_column(ForeignKey("leads.id"), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    proposal_number: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True, index=True)
    proposal_type: Mapped[ProposalType] = mapped_column(
        Enum(ProposalType, name="proposal_type"),
        default=ProposalType.HOURLY,
        nullable=False,
    )
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)

    tax_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    tax_inclusive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    discount_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    discount_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    upfront_type: Mapped[Optional[UpfrontPaymentType]] = mapped_column(
        Enum(UpfrontPaymentType, name="upfront_payment_type"),
        nullable=True,
    )
    upfront_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    client: Mapped[Optional["Client"]] = relationship()
    lead: Mapped[Optional["Lead"]] = relationship()
    projects: Mapped[List["Project"]] = relationship(back_populates="proposal")


class Project(RateConfigMixin, IDMixin, TimestampMixin, Base):
    __tablename__ = "projects"

    proposal_id: Mapped[Optional[int]] = mapped_column(ForeignKey("proposals.id"), nullable=True, index=True)
    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"), nullable=True, index=True)
    lead_id: Mapped[Optional[int]] = mapped_column(ForeignKey("leads.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    proposal: Mapped[Optional[Proposal]] = relationship(back_populates="projects")
    client: Mapped[Optional["Client"]] = relationship()
    lead: Mapped[Optional["Lead"]] = relationship()
    user_rates: Mapped[List["ProjectUserRate"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
    )


class ProjectUserRate(IDMixin, TimestampMixin, Base):
    __tablename__ = "project_user_rates"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_user_rates_project_user"),)

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    project: Mapped[Project] = relationship(back_populates="user_rates")
