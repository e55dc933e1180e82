"""
Tests for RequestService.create_request.

Validation happens before any store access; a valid request starts at
Pending/Pending with both histories seeded and one REQUEST_CREATED entry.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from shipment_kernel.domain.dtos import AddressInput, ItemInput
from shipment_kernel.domain.values import (
    CommercialStatus,
    DeliveryKind,
    DeliveryStatus,
    PickupMode,
)
from shipment_kernel.exceptions import (
    InvalidAddressError,
    InvalidItemsError,
    InvalidStatusError,
)
from shipment_kernel.models.audit_entry import AuditAction, AuditEntry
from shipment_kernel.services.request_service import RequestService
from tests.conftest import CLIENT_ID, address, sample_items


@pytest.fixture
def request_service(session, deterministic_clock):
    return RequestService(session, deterministic_clock)


def _audit_count(session) -> int:
    return session.execute(select(func.count()).select_from(AuditEntry)).scalar_one()


class TestCreateRequest:
    def test_starts_pending_on_both_dimensions(self, request_service):
        info = request_service.create_request(
            CLIENT_ID, address("Egypt"), address("Jordan"), sample_items()
        )
        assert info.commercial_status == CommercialStatus.PENDING
        assert info.delivery_status == DeliveryStatus.PENDING
        assert info.primary_cost is None
        assert info.assigned_company_id is None
        assert info.cost_offers == ()
        assert info.excluded_company_ids == frozenset()

    def test_histories_are_seeded_with_pending(self, request_service):
        info = request_service.create_request(
            CLIENT_ID, address(), address("Jordan"), sample_items()
        )
        assert [e.status for e in info.commercial_status_history] == ["Pending"]
        assert [e.status for e in info.delivery_status_history] == ["Pending"]
        assert info.commercial_status_history[0].changed_by == CLIENT_ID
        assert info.commercial_status_history[0].role == "client"

    def test_items_keep_their_order(self, request_service):
        info = request_service.create_request(
            CLIENT_ID, address(), address("Jordan"), sample_items()
        )
        assert [i.name for i in info.items] == ["Laptop", "Books"]
        assert info.items[0].weight == Decimal("2.5")
        assert info.items[1].quantity == 2

    def test_addresses_and_modes_are_stored(self, request_service):
        info = request_service.create_request(
            CLIENT_ID,
            AddressInput(country=" Egypt ", pickup_mode=PickupMode.SELF, city="Cairo"),
            address("Jordan", PickupMode.DELEGATE),
            sample_items(),
            DeliveryKind.FAST,
        )
        assert info.source.country == "Egypt"
        assert info.source.pickup_mode == PickupMode.SELF
        assert info.source.city == "Cairo"
        assert info.destination.pickup_mode == PickupMode.DELEGATE
        assert info.delivery_kind == DeliveryKind.FAST

    def test_records_one_audit_entry(self, request_service, session):
        info = request_service.create_request(
            CLIENT_ID, address(), address("Jordan"), sample_items()
        )
        entries = session.execute(select(AuditEntry)).scalars().all()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == AuditAction.REQUEST_CREATED.value
        assert entry.resource_id == str(info.id)
        assert entry.actor_id == CLIENT_ID
        assert entry.changes["item_count"] == 2
        assert entry.changes["commercial_status"] == "Pending"


class TestCreateRequestValidation:
    @pytest.mark.parametrize(
        "items,reason",
        [
            ([], "at least one item"),
            ([ItemInput(name="", category="c", weight="1", dimensions="1x1x1")], "name"),
            ([ItemInput(name="n", category=" ", weight="1", dimensions="1x1x1")], "category"),
            ([ItemInput(name="n", category="c", weight="0", dimensions="1x1x1")], "weight"),
            ([ItemInput(name="n", category="c", weight="-2", dimensions="1x1x1")], "weight"),
            ([ItemInput(name="n", category="c", weight="heavy", dimensions="1x1x1")], "weight"),
            ([ItemInput(name="n", category="c", weight="1", dimensions="1x1x1", quantity=0)], "quantity"),
            ([ItemInput(name="n", category="c", weight="1", dimensions="big")], "dimensions"),
        ],
    )
    def test_malformed_items_rejected(self, request_service, session, items, reason):
        with pytest.raises(InvalidItemsError, match=reason):
            request_service.create_request(CLIENT_ID, address(), address("Jordan"), items)
        assert _audit_count(session) == 0

    def test_bad_item_index_is_reported(self, request_service):
        items = sample_items() + [ItemInput(name="x", category="c", weight="1", dimensions="?")]
        with pytest.raises(InvalidItemsError) as exc_info:
            request_service.create_request(CLIENT_ID, address(), address("Jordan"), items)
        assert exc_info.value.item_index == 2
        assert exc_info.value.code == "INVALID_ITEMS"

    def test_missing_country(self, request_service):
        with pytest.raises(InvalidAddressError) as exc_info:
            request_service.create_request(
                CLIENT_ID, address(), AddressInput(country=""), sample_items()
            )
        assert exc_info.value.side == "destination"

    def test_unknown_pickup_mode(self, request_service):
        with pytest.raises(InvalidStatusError):
            request_service.create_request(
                CLIENT_ID,
                AddressInput(country="Egypt", pickup_mode="Drone"),
                address("Jordan"),
                sample_items(),
            )

    def test_unknown_delivery_kind(self, request_service):
        with pytest.raises(InvalidStatusError):
            request_service.create_request(
                CLIENT_ID, address(), address("Jordan"), sample_items(), "Teleport"
            )
