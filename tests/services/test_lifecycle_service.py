"""
Tests for the request state machine.

Commercial:
- Accepted needs an accepted offer; forward steps one at a time.
- Rejected from Pending/Accepted; Cancelled from any non-terminal state.
- Completed only once delivery is Delivered; the vehicle stays InUse until then.

Delivery:
- Forward only while commercial is Accepted, Action needed or In Progress.
- Self sides need their warehouse before leaving Pending.
- Failed/Cancelled always reachable from a non-terminal state.

Every applied transition appends one history event and one audit entry;
every rejected one leaves the request and the audit log untouched.
"""

import pytest

from shipment_kernel.domain.dtos import AuditLogFilter
from shipment_kernel.domain.values import (
    CommercialStatus,
    DeliveryStatus,
    PickupMode,
    VehicleStatus,
)
from shipment_kernel.exceptions import (
    HistoryDriftError,
    InvalidStatusError,
    InvalidTransitionError,
    PreconditionUnmetError,
    RequestNotFoundError,
    WarehouseRequiredError,
)
from shipment_kernel.models.request import ShipmentRequest
from shipment_kernel.services.lifecycle_service import LifecycleService
from shipment_kernel.services.request_service import RequestService
from tests.conftest import CLIENT_ID, COMPANY_A, OPERATOR_ID, address, sample_items

FORWARD_DELIVERY = [
    DeliveryStatus.PICKED_UP_SOURCE,
    DeliveryStatus.WAREHOUSE_SOURCE_RECEIVED,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.WAREHOUSE_DESTINATION_RECEIVED,
    DeliveryStatus.PICKED_UP_DESTINATION,
    DeliveryStatus.DELIVERED,
]


def _audit_size(brokerage) -> int:
    return len(brokerage.list_audit_log(AuditLogFilter(limit=10_000)))


class TestCommercialTransitions:
    def test_accepting_without_offer_is_refused(self, brokerage, create_request):
        request = create_request()
        with pytest.raises(PreconditionUnmetError, match="no offer"):
            brokerage.transition_commercial(
                request.id, CommercialStatus.ACCEPTED, OPERATOR_ID, "operator"
            )
        assert brokerage.get_request(request.id).commercial_status == CommercialStatus.PENDING

    def test_forward_path_to_completed(self, brokerage, accepted_request):
        for target in FORWARD_DELIVERY:
            brokerage.transition_delivery(accepted_request.id, target, OPERATOR_ID, "operator")
        for target in (
            CommercialStatus.ACTION_NEEDED,
            CommercialStatus.IN_PROGRESS,
            CommercialStatus.COMPLETED,
        ):
            info = brokerage.transition_commercial(
                accepted_request.id, target, OPERATOR_ID, "operator"
            )
            assert info.commercial_status == target

        history = [e.status for e in info.commercial_status_history]
        assert history == ["Pending", "Accepted", "Action needed", "In Progress", "Completed"]

    def test_completion_waits_for_delivery(
        self, brokerage, accepted_request, driver, vehicle
    ):
        brokerage.create_assignment(accepted_request.id, driver.id, vehicle.id, OPERATOR_ID)
        for target in (CommercialStatus.ACTION_NEEDED, CommercialStatus.IN_PROGRESS):
            brokerage.transition_commercial(accepted_request.id, target, OPERATOR_ID, "operator")
        before = _audit_size(brokerage)

        with pytest.raises(PreconditionUnmetError, match="Pending"):
            brokerage.transition_commercial(
                accepted_request.id, CommercialStatus.COMPLETED, OPERATOR_ID, "operator"
            )
        assert _audit_size(brokerage) == before
        assert brokerage.get_vehicle(vehicle.id).status == VehicleStatus.IN_USE
        assert brokerage.get_assignment(accepted_request.id).closed_at is None

        brokerage.transition_delivery(
            accepted_request.id, DeliveryStatus.PICKED_UP_SOURCE, OPERATOR_ID, "operator"
        )
        assert brokerage.get_vehicle(vehicle.id).status == VehicleStatus.IN_USE
        with pytest.raises(PreconditionUnmetError, match="Picked Up Source"):
            brokerage.transition_commercial(
                accepted_request.id, CommercialStatus.COMPLETED, OPERATOR_ID, "operator"
            )

        for target in FORWARD_DELIVERY[1:]:
            brokerage.transition_delivery(accepted_request.id, target, OPERATOR_ID, "operator")
        assert brokerage.get_vehicle(vehicle.id).status == VehicleStatus.AVAILABLE
        info = brokerage.transition_commercial(
            accepted_request.id, CommercialStatus.COMPLETED, OPERATOR_ID, "operator"
        )
        assert info.commercial_status == CommercialStatus.COMPLETED

    def test_skipping_ahead_is_rejected_without_side_effects(self, brokerage, accepted_request):
        before = _audit_size(brokerage)
        with pytest.raises(InvalidTransitionError) as exc_info:
            brokerage.transition_commercial(
                accepted_request.id, CommercialStatus.COMPLETED, OPERATOR_ID, "operator"
            )
        assert exc_info.value.from_status == "Accepted"
        assert exc_info.value.to_status == "Completed"

        after = brokerage.get_request(accepted_request.id)
        assert after.commercial_status == CommercialStatus.ACCEPTED
        assert len(after.commercial_status_history) == 2
        assert _audit_size(brokerage) == before

    def test_reject_pending_request(self, brokerage, create_request):
        request = create_request()
        info = brokerage.transition_commercial(
            request.id, CommercialStatus.REJECTED, OPERATOR_ID, "operator", note="out of area"
        )
        assert info.commercial_status == CommercialStatus.REJECTED
        assert info.commercial_status_history[-1].note == "out of area"

    def test_cannot_reject_once_in_progress(self, brokerage, accepted_request):
        brokerage.transition_commercial(
            accepted_request.id, CommercialStatus.ACTION_NEEDED, OPERATOR_ID, "operator"
        )
        with pytest.raises(InvalidTransitionError):
            brokerage.transition_commercial(
                accepted_request.id, CommercialStatus.REJECTED, OPERATOR_ID, "operator"
            )

    def test_cancel_from_action_needed(self, brokerage, accepted_request):
        brokerage.transition_commercial(
            accepted_request.id, CommercialStatus.ACTION_NEEDED, OPERATOR_ID, "operator"
        )
        info = brokerage.transition_commercial(
            accepted_request.id, CommercialStatus.CANCELLED, CLIENT_ID, "client"
        )
        assert info.commercial_status == CommercialStatus.CANCELLED

    def test_terminal_status_is_final(self, brokerage, create_request):
        request = create_request()
        brokerage.transition_commercial(request.id, "Cancelled", CLIENT_ID, "client")
        with pytest.raises(InvalidTransitionError):
            brokerage.transition_commercial(request.id, "Pending", CLIENT_ID, "client")

    def test_transition_is_audited(self, brokerage, accepted_request):
        brokerage.transition_commercial(
            accepted_request.id, CommercialStatus.ACTION_NEEDED, OPERATOR_ID, "operator"
        )
        latest = brokerage.list_audit_log(AuditLogFilter(limit=1))[0]
        assert latest.action == "ORDER_ACTION_NEEDED"
        assert latest.resource_id == str(accepted_request.id)
        assert latest.actor_id == OPERATOR_ID
        assert latest.changes["commercial_status"] == "Action needed"
        assert latest.changes["previous_status"] == "Accepted"

    def test_unknown_status_string(self, brokerage, create_request):
        request = create_request()
        with pytest.raises(InvalidStatusError):
            brokerage.transition_commercial(request.id, "Shipped", OPERATOR_ID, "operator")

    def test_unknown_request(self, brokerage):
        with pytest.raises(RequestNotFoundError):
            brokerage.transition_commercial(
                "00000000-0000-0000-0000-000000000000", "Accepted", OPERATOR_ID, "operator"
            )


class TestDeliveryTransitions:
    def test_blocked_while_commercial_pending(self, brokerage, create_request):
        request = create_request()
        with pytest.raises(PreconditionUnmetError, match="commercial status is Pending"):
            brokerage.transition_delivery(
                request.id, DeliveryStatus.PICKED_UP_SOURCE, OPERATOR_ID, "operator"
            )

    def test_full_forward_path(self, brokerage, accepted_request):
        for target in FORWARD_DELIVERY:
            info = brokerage.transition_delivery(accepted_request.id, target, "driver-1", "driver")
        assert info.delivery_status == DeliveryStatus.DELIVERED
        assert [e.status for e in info.delivery_status_history] == ["Pending"] + [
            t.value for t in FORWARD_DELIVERY
        ]
        assert brokerage.verify_history(accepted_request.id) is True

    def test_no_skipping(self, brokerage, accepted_request):
        with pytest.raises(InvalidTransitionError):
            brokerage.transition_delivery(
                accepted_request.id, DeliveryStatus.IN_TRANSIT, OPERATOR_ID, "operator"
            )

    def test_self_sides_need_warehouses(self, brokerage, create_request, accept_request):
        request = create_request(
            source_mode=PickupMode.SELF, destination_mode=PickupMode.SELF
        )
        accept_request(request.id)
        with pytest.raises(WarehouseRequiredError) as exc_info:
            brokerage.transition_delivery(
                request.id, DeliveryStatus.PICKED_UP_SOURCE, OPERATOR_ID, "operator"
            )
        assert exc_info.value.sides == ["source", "destination"]
        assert brokerage.get_request(request.id).delivery_status == DeliveryStatus.PENDING

    def test_warehouse_gate_checked_before_commercial_gate(self, brokerage, create_request):
        request = create_request(source_mode=PickupMode.SELF)
        with pytest.raises(WarehouseRequiredError):
            brokerage.transition_delivery(
                request.id, DeliveryStatus.PICKED_UP_SOURCE, OPERATOR_ID, "operator"
            )

    def test_bound_warehouses_open_the_gate(
        self, brokerage, create_request, accept_request, register_warehouse
    ):
        request = create_request(
            source_mode=PickupMode.SELF,
            destination_mode=PickupMode.SELF,
        )
        accept_request(request.id)
        source_wh = register_warehouse("Egypt")
        dest_wh = register_warehouse("Jordan")
        brokerage.assign_warehouse(request.id, COMPANY_A, source_wh.id, "source")
        brokerage.assign_warehouse(request.id, COMPANY_A, dest_wh.id, "destination")

        info = brokerage.transition_delivery(
            request.id, DeliveryStatus.PICKED_UP_SOURCE, OPERATOR_ID, "operator"
        )
        assert info.delivery_status == DeliveryStatus.PICKED_UP_SOURCE

    @pytest.mark.parametrize("escape", [DeliveryStatus.FAILED, DeliveryStatus.CANCELLED])
    def test_escapes_skip_every_gate(self, brokerage, create_request, escape):
        request = create_request(source_mode=PickupMode.SELF)
        info = brokerage.transition_delivery(request.id, escape, OPERATOR_ID, "operator")
        assert info.delivery_status == escape
        assert info.commercial_status == CommercialStatus.PENDING

    def test_failed_mid_route(self, brokerage, accepted_request):
        brokerage.transition_delivery(
            accepted_request.id, DeliveryStatus.PICKED_UP_SOURCE, OPERATOR_ID, "operator"
        )
        info = brokerage.transition_delivery(
            accepted_request.id, DeliveryStatus.FAILED, OPERATOR_ID, "operator"
        )
        assert info.delivery_status == DeliveryStatus.FAILED
        with pytest.raises(InvalidTransitionError):
            brokerage.transition_delivery(
                accepted_request.id, DeliveryStatus.IN_TRANSIT, OPERATOR_ID, "operator"
            )

    def test_delivered_is_audited(self, brokerage, accepted_request):
        for target in FORWARD_DELIVERY:
            brokerage.transition_delivery(accepted_request.id, target, OPERATOR_ID, "operator")
        actions = brokerage.audit_trace("ShipmentRequest", accepted_request.id).actions
        assert actions[-1] == "DELIVERY_DELIVERED"
        assert actions.count("DELIVERY_PICKED_UP_SOURCE") == 1


class TestAssignmentRelease:
    def test_terminal_delivery_frees_the_vehicle(
        self, brokerage, accepted_request, driver, vehicle
    ):
        brokerage.create_assignment(accepted_request.id, driver.id, vehicle.id, OPERATOR_ID)
        assert brokerage.get_vehicle(vehicle.id).status == VehicleStatus.IN_USE

        for target in FORWARD_DELIVERY:
            brokerage.transition_delivery(accepted_request.id, target, "driver-1", "driver")

        assert brokerage.get_vehicle(vehicle.id).status == VehicleStatus.AVAILABLE
        assignment = brokerage.get_assignment(accepted_request.id)
        assert assignment.closed_at is not None
        assert assignment.status.value == "Delivered"

    def test_commercial_cancel_frees_the_vehicle(
        self, brokerage, accepted_request, driver, vehicle
    ):
        assignment = brokerage.create_assignment(
            accepted_request.id, driver.id, vehicle.id, OPERATOR_ID
        )
        brokerage.transition_commercial(
            accepted_request.id, CommercialStatus.CANCELLED, CLIENT_ID, "client"
        )

        assert brokerage.get_vehicle(vehicle.id).status == VehicleStatus.AVAILABLE
        assert brokerage.get_assignment(accepted_request.id).status.value == "Cancelled"
        trace = brokerage.audit_trace("Assignment", assignment.id)
        assert trace.actions == ("ASSIGNMENT_CREATED", "ASSIGNMENT_CLOSED")


class TestHistoryReplay:
    def test_fresh_request_verifies(self, brokerage, create_request):
        request = create_request()
        assert brokerage.verify_history(request.id) is True

    def test_drift_is_detected(self, session, deterministic_clock):
        info = RequestService(session, deterministic_clock).create_request(
            CLIENT_ID, address(), address("Jordan"), sample_items()
        )
        request = session.get(ShipmentRequest, info.id)
        # Status written behind the state machine's back
        request.commercial_status = CommercialStatus.IN_PROGRESS.value
        session.flush()

        with pytest.raises(HistoryDriftError) as exc_info:
            LifecycleService(session, deterministic_clock).verify_history(info.id)
        assert exc_info.value.dimension == "commercial"
        assert exc_info.value.stored == "In Progress"
        assert exc_info.value.replayed == "Pending"
