"""
Race tests: many callers hit the same request or vehicle at once.

Each worker goes through the public facade from its own thread; a Barrier
releases them together.  Exactly one caller may win every contested
resource, and the audit chain stays contiguous and valid afterwards.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest
from sqlalchemy import select

from shipment_kernel.db.engine import get_session_factory
from shipment_kernel.domain.dtos import AuditLogFilter
from shipment_kernel.domain.values import OfferStatus, PickupMode, VehicleStatus
from shipment_kernel.exceptions import (
    AlreadyAssignedError,
    OfferLimitExceededError,
    RequestNotOpenError,
    ShipmentKernelError,
    VehicleUnavailableError,
)
from shipment_kernel.models.audit_entry import AuditEntry
from shipment_kernel.services.brokerage_engine import BrokerageEngine
from tests.conftest import CLIENT_ID, COMPANY_A, OPERATOR_ID

pytestmark = pytest.mark.slow_locks


def _race(calls):
    """Run every zero-arg callable at once; return (results, kernel errors)."""
    barrier = Barrier(len(calls), timeout=30)

    def run(call):
        barrier.wait()
        try:
            return call(), None
        except ShipmentKernelError as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as executor:
        outcomes = list(executor.map(run, calls))
    results = [r for r, e in outcomes if e is None]
    errors = [e for r, e in outcomes if e is not None]
    return results, errors


class TestVehicleRace:
    def test_one_vehicle_two_requests(
        self, brokerage, create_request, accept_request, driver, vehicle
    ):
        first = accept_request(create_request().id)
        second = accept_request(create_request().id)

        results, errors = _race([
            lambda: brokerage.create_assignment(first.id, driver.id, vehicle.id, OPERATOR_ID),
            lambda: brokerage.create_assignment(second.id, driver.id, vehicle.id, OPERATOR_ID),
        ])

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], VehicleUnavailableError)
        assert brokerage.get_vehicle(vehicle.id).status == VehicleStatus.IN_USE
        assigned = [
            a for a in (brokerage.get_assignment(first.id), brokerage.get_assignment(second.id))
            if a is not None
        ]
        assert [a.id for a in assigned] == [results[0].id]

    def test_compare_and_swap_without_shared_locks(
        self, deterministic_clock, create_request, accept_request, driver, vehicle
    ):
        # Two facades with separate lock registries behave like two processes
        first = accept_request(create_request().id)
        second = accept_request(create_request().id)
        engines = [
            BrokerageEngine(get_session_factory(), clock=deterministic_clock) for _ in range(2)
        ]

        results, errors = _race([
            lambda: engines[0].create_assignment(first.id, driver.id, vehicle.id, OPERATOR_ID),
            lambda: engines[1].create_assignment(second.id, driver.id, vehicle.id, OPERATOR_ID),
        ])

        assert len(results) == 1
        assert [type(e) for e in errors] == [VehicleUnavailableError]


class TestRequestRaces:
    def test_concurrent_selection(self, brokerage, create_request):
        request = create_request()
        companies = [f"company-{n}" for n in range(5)]
        offers = []
        for company in companies:
            info = brokerage.submit_offer(request.id, company, "100")
            offers.append(info.cost_offers[-1])

        results, errors = _race([
            lambda offer=offer: brokerage.select_offer(request.id, offer.id, CLIENT_ID)
            for offer in offers
        ])

        assert len(results) == 1
        assert len(errors) == 4
        assert all(isinstance(e, RequestNotOpenError) for e in errors)
        final = brokerage.get_request(request.id)
        assert final.assigned_company_id == results[0].assigned_company_id
        assert [o.status for o in final.cost_offers].count(OfferStatus.ACCEPTED) == 1
        assert len(brokerage.list_audit_log(AuditLogFilter(action="COST_SET"))) == 1

    def test_concurrent_warehouse_binding(self, brokerage, create_request, register_warehouse):
        request = create_request(source_mode=PickupMode.SELF)
        warehouses = [register_warehouse("Egypt") for _ in range(4)]

        results, errors = _race([
            lambda w=w: brokerage.assign_warehouse(request.id, COMPANY_A, w.id, "source")
            for w in warehouses
        ])

        assert len(results) == 1
        assert all(isinstance(e, AlreadyAssignedError) for e in errors)
        stored = brokerage.get_request(request.id).source_warehouse_id
        assert stored == results[0].source_warehouse_id

    def test_offer_limit_holds_under_contention(self, brokerage, create_request):
        request = create_request()

        results, errors = _race([
            lambda cost=cost: brokerage.submit_offer(request.id, COMPANY_A, cost)
            for cost in ("100", "101", "102", "103", "104", "105")
        ])

        assert len(results) == 3
        assert all(isinstance(e, OfferLimitExceededError) for e in errors)
        assert len(brokerage.get_request(request.id).cost_offers) == 3


class TestAuditUnderLoad:
    def test_parallel_creates_keep_the_chain(self, brokerage, create_request, session):
        results, errors = _race([create_request for _ in range(8)])

        assert errors == []
        assert len({r.id for r in results}) == 8
        seqs = session.execute(select(AuditEntry.seq).order_by(AuditEntry.seq)).scalars().all()
        assert seqs == list(range(1, len(seqs) + 1))
        assert brokerage.validate_audit_chain() is True
