from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import lexbill.models  # noqa: F401
from lexbill.core.deps import get_actor
from lexbill.core.rbac import Actor
from lexbill.db.base import Base
from lexbill.db.session import get_db
from lexbill.main import app
from lexbill.models.enums import InvoiceStatus, ProposalType, Role
from lexbill.models.invoice import Invoice
from lexbill.models.party import Client, ClientFinder, Lead, User
from lexbill.models.proposal import Project, Proposal
from lexbill.models.work import Charge, Expense, TimesheetEntry


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class Factory:
    """Small helpers that insert committed rows for a test."""

    def __init__(self, db):
        self.db = db
        self._seq = count(1)

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def user(self, role=Role.STAFF, **kwargs):
        n = next(self._seq)
        kwargs.setdefault("email", f"user{n}@example.com")
        kwargs.setdefault("name", f"User {n}")
        return self._save(User(role=role, **kwargs))

    def client(self, **kwargs):
        kwargs.setdefault("name", "Acme Lda")
        return self._save(Client(**kwargs))

    def lead(self, **kwargs):
        kwargs.setdefault("name", "Prospect SA")
        return self._save(Lead(**kwargs))

    def finder(self, client, user, fee_percent):
        return self._save(ClientFinder(client_id=client.id, user_id=user.id, fee_percent=Decimal(str(fee_percent))))

    def proposal(self, client=None, lead=None, **kwargs):
        n = next(self._seq)
        kwargs.setdefault("title", "Corporate restructuring")
        kwargs.setdefault("proposal_number", f"PROP-2024-{n:03d}")
        kwargs.setdefault("proposal_type", ProposalType.HOURLY)
        return self._save(
            Proposal(
                client_id=client.id if client else None,
                lead_id=lead.id if lead else None,
                **kwargs,
            )
        )

    def project(self, proposal=None, client=None, lead=None, **kwargs):
        kwargs.setdefault("name", "Restructuring")
        client_id = client.id if client else None
        lead_id = lead.id if lead else None
        if proposal is not None and client is None and lead is None:
            client_id, lead_id = proposal.client_id, proposal.lead_id
        return self._save(
            Project(
                proposal_id=proposal.id if proposal else None,
                client_id=client_id,
                lead_id=lead_id,
                **kwargs,
            )
        )

    def entry(self, project, user, hours, rate, **kwargs):
        kwargs.setdefault("entry_date", date(2024, 3, 1))
        return self._save(
            TimesheetEntry(
                project_id=project.id,
                user_id=user.id,
                hours=Decimal(str(hours)),
                rate=Decimal(str(rate)) if rate is not None else None,
                **kwargs,
            )
        )

    def charge(self, project, amount, **kwargs):
        kwargs.setdefault("description", "Court filing fee")
        value = Decimal(str(amount))
        return self._save(
            Charge(project_id=project.id, quantity=Decimal("1.00"), unit_price=value, amount=value, **kwargs)
        )

    def expense(self, project, amount, **kwargs):
        kwargs.setdefault("description", "Travel")
        return self._save(Expense(project_id=project.id, amount=Decimal(str(amount)), **kwargs))

    def paid_upfront(self, proposal, amount, credit_applied="0.00", number=None):
        return self._save(
            Invoice(
                proposal_id=proposal.id,
                client_id=proposal.client_id,
                lead_id=None if proposal.client_id else proposal.lead_id,
                invoice_number=number,
                subtotal=Decimal(str(amount)),
                amount=Decimal(str(amount)),
                credit_applied=Decimal(str(credit_applied)),
                is_upfront_payment=True,
                status=InvoiceStatus.PAID,
                paid_at=datetime(2024, 1, 15, tzinfo=timezone.utc),
            )
        )

    def paid_invoice(self, client, amount):
        return self._save(
            Invoice(
                client_id=client.id,
                subtotal=Decimal(str(amount)),
                amount=Decimal(str(amount)),
                status=InvoiceStatus.PAID,
                paid_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
            )
        )


@pytest.fixture()
def factory(db):
    return Factory(db)


@pytest.fixture()
def file_sessions(tmp_path):
    """Two sessions on one SQLite file, each holding its own connection."""
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'lexbill.db'}")
    Base.metadata.create_all(bind=engine)
    SessionFactory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    first, second = SessionFactory(), SessionFactory()
    try:
        yield first, second, Factory(first)
    finally:
        first.close()
        second.close()
        engine.dispose()


@pytest.fixture()
def admin(factory):
    user = factory.user(role=Role.ADMIN, name="Ana Admin")
    return Actor(user_id=user.id, role=Role.ADMIN)


@pytest.fixture()
def manager(factory):
    user = factory.user(role=Role.MANAGER, name="Miguel Manager")
    return Actor(user_id=user.id, role=Role.MANAGER)


@pytest.fixture()
def staff(factory):
    user = factory.user(role=Role.STAFF, name="Sara Staff")
    return Actor(user_id=user.id, role=Role.STAFF)


@pytest.fixture()
def api(db, admin):
    state = {"actor": admin}

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_actor():
        return state["actor"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_actor] = override_get_actor

    client_instance = TestClient(app)
    try:
        yield client_instance, state
    finally:
        client_instance.close()
        app.dependency_overrides.clear()
