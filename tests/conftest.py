import os

# Settings are read at import time; point them at throwaway values before the app modules load
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("EXPIRY_SWEEP_ENABLED", "false")

import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import QuotationSettings
from database import Base
import models  # noqa: F401
from models.companies import Company
from models.parts import Part
from models.part_items import PartItem, PartItemStatus
from models.quotations import Quotation, QuotationStatus
from services import events
from services.quotation_state import Actor, Role
from utils.time_utils import utc_now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return QuotationSettings(
        tax_rate=Decimal("0.085"),
        validity_days=30,
        invoice_due_days=30,
        allow_backorder=False,
        lock_timeout_ms=5000,
        max_reservation_retries=3,
        retry_backoff_seconds=0.1,
    )


@pytest.fixture
def seller():
    return Actor(role=Role.SELLER, user_id="seller-1")


@pytest.fixture
def customer():
    return Actor(role=Role.CUSTOMER, user_id="customer-1")


@pytest.fixture
def other_customer():
    return Actor(role=Role.CUSTOMER, user_id="customer-2")


@pytest.fixture
def make_part(db):
    counter = itertools.count(1)

    def _make(price="100.00", list_price=None, discount="0", name=None):
        n = next(counter)
        part = Part(
            part_number=f"CAT-{n:04d}",
            name=name or f"Hydraulic pump {n}",
            brand="Caterpillar",
            price=Decimal(price),
            list_price=Decimal(list_price) if list_price is not None else None,
            discount=Decimal(discount),
        )
        db.add(part)
        db.commit()
        return part
    return _make


@pytest.fixture
def make_units(db):
    counter = itertools.count(1)

    def _make(part, count, status=PartItemStatus.AVAILABLE, start=None):
        start = start or utc_now() - timedelta(days=60)
        units = []
        for i in range(count):
            n = next(counter)
            unit = PartItem(
                part_id=part.id,
                bar_code=f"BC-{part.id}-{n:05d}",
                serial_number=f"SN-{part.id}-{n:05d}",
                location="Main warehouse",
                status=status,
                added_on=start + timedelta(days=i),
            )
            db.add(unit)
            units.append(unit)
        db.commit()
        return units
    return _make


@pytest.fixture
def make_company(db):
    def _make(name="Acme Mining", tax_rate=None):
        company = Company(name=name, email="purchasing@acme-mining.com", tax_rate=tax_rate)
        db.add(company)
        db.commit()
        return company
    return _make


@pytest.fixture
def make_quotation(db):
    """Bare quotation row for ledger tests that do not go through the service."""
    counter = itertools.count(1)

    def _make(status=QuotationStatus.CONFIRMED):
        quotation = Quotation(
            quotation_number=f"QT-T{next(counter):05d}",
            customer_name="Dana Ortiz",
            customer_email="dana@acme-mining.com",
            tax_rate=Decimal("0.085"),
            status=status,
            valid_until=utc_now() + timedelta(days=30),
        )
        db.add(quotation)
        db.commit()
        return quotation
    return _make


@pytest.fixture
def published_events():
    received = []

    def _collect(event_name, payload):
        received.append((event_name, payload))

    events.subscribe(events.ALL_EVENTS, _collect)
    yield received
    events.unsubscribe(events.ALL_EVENTS, _collect)
