from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Enum, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lexbill.db.base import Base, IDMixin, TimestampMixin
from lexbill.models.enums import Role, WorkerProfile


class User(IDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), default=Role.STAFF, nullable=False, index=True)
    profile: Mapped[Optional[WorkerProfile]] = mapped_column(
        Enum(WorkerProfile, name="worker_profile"),
        nullable=True,
    )
    default_hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)


class Client(IDMixin, TimestampMixin, Base):
    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    finders: Mapped[List["ClientFinder"]] = relationship(
        back_populates="client",
        cascade="all, delete-orphan",
        order_by=lambda: ClientFinder.id.asc(),
    )


class Lead(IDMixin, TimestampMixin, Base):
    __tablename__ = "leads"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)


class ClientFinder(IDMixin, TimestampMixin, Base):
    """A referring party entitled to a share of a client's paid invoices."""

    __tablename__ = "client_finders"
    __table_args__ = (UniqueConstraint("client_id", "user_id", name="uq_client_finders_client_user"),)

    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    fee_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0.00"), nullable=False)

    client: Mapped[Client] = relationship(back_populates="finders")
    user: Mapped[User] = relationship()
