"""
Pytest fixtures for the shipment kernel test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- A BrokerageEngine facade wired to a DeterministicClock
- Factories for requests, accepted requests and registered resources
- Structured log capture

Environment Variables:
- DATABASE_URL: run against another backend (e.g. PostgreSQL).  Tables are
  dropped and recreated for every test.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from shipment_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from shipment_kernel.db.immutability import register_immutability_listeners
from shipment_kernel.domain.clock import DeterministicClock
from shipment_kernel.domain.dtos import (
    AddressInput,
    DriverAddressInput,
    ItemInput,
    VehicleRuleInput,
)
from shipment_kernel.domain.values import DeliveryKind, PickupMode
from shipment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from shipment_kernel.services.auditor_service import AuditorService
from shipment_kernel.services.brokerage_engine import BrokerageEngine

CLIENT_ID = "client-1"
COMPANY_A = "company-a"
COMPANY_B = "company-b"
OPERATOR_ID = "operator-1"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture shipment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, brokerage):
            brokerage.create_request(...)
            logs = captured_logs()
            assert any(r["message"] == "request_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("shipment_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    """One database per test; real commits, no cross-test state."""
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'shipment_test.db'}"
    eng = init_engine_from_url(url, echo=False, pool_size=10, max_overflow=10)
    if eng.dialect.name != "sqlite":
        drop_tables()
    create_tables()
    register_immutability_listeners()
    yield eng
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """A session for service-level tests.  Everything is rolled back at teardown."""
    sess = get_session()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def auditor_service(session, deterministic_clock):
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def brokerage(db_engine, deterministic_clock) -> BrokerageEngine:
    return BrokerageEngine(
        get_session_factory(),
        clock=deterministic_clock,
        sleep=lambda seconds: None,
    )


# =============================================================================
# Data factories
# =============================================================================


def address(country: str = "Egypt", mode: PickupMode = PickupMode.DELEGATE, city: str | None = None) -> AddressInput:
    return AddressInput(country=country, pickup_mode=mode, city=city)


def sample_items() -> list[ItemInput]:
    return [
        ItemInput(name="Laptop", category="Electronics", weight=Decimal("2.5"), dimensions="40x30x5"),
        ItemInput(name="Books", category="Paper", weight=Decimal("8"), dimensions="30x20x20", quantity=2),
    ]


@pytest.fixture
def create_request(brokerage, deterministic_clock):
    """Create a request through the facade; the clock advances one second per call."""

    def _create(
        source_mode: PickupMode = PickupMode.DELEGATE,
        destination_mode: PickupMode = PickupMode.DELEGATE,
        source_country: str = "Egypt",
        destination_country: str = "Jordan",
        items: list[ItemInput] | None = None,
        delivery_kind: DeliveryKind = DeliveryKind.NORMAL,
        client_id: str = CLIENT_ID,
    ):
        deterministic_clock.advance(1)
        return brokerage.create_request(
            client_id,
            address(source_country, source_mode),
            address(destination_country, destination_mode),
            items if items is not None else sample_items(),
            delivery_kind,
        )

    return _create


@pytest.fixture
def accept_request(brokerage):
    """Submit one offer from ``company_id`` and select it."""

    def _accept(request_id, company_id: str = COMPANY_A, cost: str = "150.00"):
        request = brokerage.submit_offer(request_id, company_id, Decimal(cost))
        offer = request.cost_offers[-1]
        return brokerage.select_offer(request_id, offer.id, CLIENT_ID)

    return _accept


@pytest.fixture
def accepted_request(create_request, accept_request):
    request = create_request()
    return accept_request(request.id)


@pytest.fixture
def driver(brokerage):
    return brokerage.register_driver(
        "Omar",
        [DriverAddressInput(country="Egypt", city="Cairo")],
        OPERATOR_ID,
    )


@pytest.fixture
def vehicle(brokerage):
    return brokerage.register_vehicle(
        "Van 1",
        "CAI-1001",
        "van",
        "Egypt",
        OPERATOR_ID,
        rule=VehicleRuleInput(
            max_weight=Decimal("50"),
            max_dimensions="120x80x80",
            allowed_categories=("Electronics", "Paper"),
            min_delivery_days=1,
            max_delivery_days=5,
        ),
    )


@pytest.fixture
def register_warehouse(brokerage):
    counter = {"n": 0}

    def _register(country: str = "Egypt", company_id: str | None = COMPANY_A, **kwargs):
        counter["n"] += 1
        return brokerage.register_warehouse(
            f"Warehouse {counter['n']}",
            f"WH-{counter['n']:03d}",
            country,
            OPERATOR_ID,
            company_id=company_id,
            capacity=kwargs.pop("capacity", 100),
            **kwargs,
        )

    return _register
