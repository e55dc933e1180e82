"""
Pure tests of the commercial and delivery transition tables.

No database: these exercise domain/lifecycle.py and domain/workflow.py only.
"""

import pytest

from shipment_kernel.domain.lifecycle import (
    ACCEPTED_OFFER_GUARD,
    COMMERCIAL_ORDER,
    COMMERCIAL_WORKFLOW,
    DELIVERY_ORDER,
    DELIVERED_GUARD,
    DELIVERY_WORKFLOW,
    SELF_PICKUP_WAREHOUSE_GUARD,
    WarehouseFacts,
    check_commercial,
    check_delivery,
    commercial_allows_delivery,
    delivery_allows_completion,
    derive_assignment_status,
    missing_warehouse_sides,
    replay_commercial,
    replay_delivery,
)
from shipment_kernel.domain.values import (
    AssignmentStatus,
    CommercialStatus,
    DeliveryStatus,
    PickupMode,
)
from shipment_kernel.domain.workflow import Transition, Workflow


class TestCommercialTable:
    @pytest.mark.parametrize(
        "current,target",
        list(zip(COMMERCIAL_ORDER, COMMERCIAL_ORDER[1:])),
    )
    def test_forward_steps_are_legal(self, current, target):
        assert check_commercial(current, target) is not None

    @pytest.mark.parametrize(
        "current,target",
        [
            (CommercialStatus.PENDING, CommercialStatus.IN_PROGRESS),
            (CommercialStatus.PENDING, CommercialStatus.COMPLETED),
            (CommercialStatus.ACCEPTED, CommercialStatus.COMPLETED),
            (CommercialStatus.IN_PROGRESS, CommercialStatus.ACCEPTED),
            (CommercialStatus.ACTION_NEEDED, CommercialStatus.PENDING),
        ],
    )
    def test_skips_and_backward_moves_are_illegal(self, current, target):
        assert check_commercial(current, target) is None

    def test_rejected_only_from_pending_or_accepted(self):
        sources = {
            s for s in CommercialStatus
            if check_commercial(s, CommercialStatus.REJECTED) is not None
        }
        assert sources == {CommercialStatus.PENDING, CommercialStatus.ACCEPTED}

    def test_cancelled_from_every_non_terminal_state(self):
        for status in COMMERCIAL_ORDER[:-1]:
            assert check_commercial(status, CommercialStatus.CANCELLED) is not None

    @pytest.mark.parametrize(
        "terminal",
        [CommercialStatus.COMPLETED, CommercialStatus.REJECTED, CommercialStatus.CANCELLED],
    )
    def test_terminal_states_have_no_exit(self, terminal):
        assert COMMERCIAL_WORKFLOW.is_terminal(terminal.value)
        assert COMMERCIAL_WORKFLOW.next_states(terminal.value) == ()

    def test_accepting_is_guarded_by_an_accepted_offer(self):
        transition = check_commercial(CommercialStatus.PENDING, CommercialStatus.ACCEPTED)
        assert transition.guard == ACCEPTED_OFFER_GUARD
        assert transition.action == "ORDER_ACCEPTED"

    def test_completing_is_guarded_by_delivery(self):
        transition = check_commercial(CommercialStatus.IN_PROGRESS, CommercialStatus.COMPLETED)
        assert transition.guard == DELIVERED_GUARD


class TestDeliveryTable:
    @pytest.mark.parametrize(
        "current,target",
        list(zip(DELIVERY_ORDER, DELIVERY_ORDER[1:])),
    )
    def test_forward_steps_are_legal(self, current, target):
        assert check_delivery(current, target) is not None

    def test_no_skipping_ahead(self):
        assert check_delivery(DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT) is None
        assert check_delivery(DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED) is None

    def test_no_going_back(self):
        assert check_delivery(DeliveryStatus.IN_TRANSIT, DeliveryStatus.PICKED_UP_SOURCE) is None

    @pytest.mark.parametrize("status", DELIVERY_ORDER[:-1])
    def test_failed_and_cancelled_from_any_non_terminal(self, status):
        failed = check_delivery(status, DeliveryStatus.FAILED)
        cancelled = check_delivery(status, DeliveryStatus.CANCELLED)
        assert failed is not None and failed.shortcut
        assert cancelled is not None and cancelled.shortcut

    def test_leaving_pending_is_guarded_by_warehouses(self):
        transition = check_delivery(DeliveryStatus.PENDING, DeliveryStatus.PICKED_UP_SOURCE)
        assert transition.guard == SELF_PICKUP_WAREHOUSE_GUARD
        assert not transition.shortcut

    @pytest.mark.parametrize(
        "terminal",
        [DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED],
    )
    def test_terminal_states_have_no_exit(self, terminal):
        assert DELIVERY_WORKFLOW.next_states(terminal.value) == ()


class TestCrossDimensionChecks:
    @pytest.mark.parametrize(
        "status,allowed",
        [
            (CommercialStatus.PENDING, False),
            (CommercialStatus.ACCEPTED, True),
            (CommercialStatus.ACTION_NEEDED, True),
            (CommercialStatus.IN_PROGRESS, True),
            (CommercialStatus.COMPLETED, False),
            (CommercialStatus.REJECTED, False),
            (CommercialStatus.CANCELLED, False),
        ],
    )
    def test_commercial_allows_delivery(self, status, allowed):
        assert commercial_allows_delivery(status) is allowed

    @pytest.mark.parametrize("status", list(DeliveryStatus))
    def test_only_delivered_allows_completion(self, status):
        assert delivery_allows_completion(status) is (status == DeliveryStatus.DELIVERED)

    def test_missing_sides_reported_source_first(self):
        facts = WarehouseFacts(PickupMode.SELF, PickupMode.SELF, None, None)
        assert missing_warehouse_sides(facts) == ["source", "destination"]

    def test_delegate_sides_never_need_a_warehouse(self):
        facts = WarehouseFacts(PickupMode.DELEGATE, PickupMode.DELEGATE, None, None)
        assert missing_warehouse_sides(facts) == []

    def test_bound_side_is_not_missing(self):
        facts = WarehouseFacts(PickupMode.SELF, PickupMode.SELF, "wh-1", None)
        assert missing_warehouse_sides(facts) == ["destination"]


class TestReplay:
    def test_seeded_history_replays_to_last_status(self):
        result = replay_commercial(["Pending", "Accepted", "Action needed"])
        assert result.is_valid
        assert result.final_state == "Action needed"
        assert result.steps == 2

    def test_empty_history_is_the_initial_state(self):
        result = replay_delivery([])
        assert result.is_valid
        assert result.final_state == "Pending"

    def test_illegal_step_is_reported_by_index(self):
        result = replay_delivery(["Pending", "Picked Up Source", "Delivered"])
        assert not result.is_valid
        assert result.first_invalid_index == 2
        assert result.final_state == "Picked Up Source"

    def test_enum_members_are_accepted(self):
        result = replay_commercial([CommercialStatus.PENDING, CommercialStatus.CANCELLED])
        assert result.final_state == "Cancelled"


class TestAssignmentStatus:
    @pytest.mark.parametrize(
        "commercial,delivery,expected",
        [
            (CommercialStatus.ACCEPTED, DeliveryStatus.PENDING, AssignmentStatus.ASSIGNED),
            (CommercialStatus.ACCEPTED, DeliveryStatus.PICKED_UP_SOURCE, AssignmentStatus.IN_TRANSIT),
            (CommercialStatus.IN_PROGRESS, DeliveryStatus.IN_TRANSIT, AssignmentStatus.IN_TRANSIT),
            (CommercialStatus.ACCEPTED, DeliveryStatus.DELIVERED, AssignmentStatus.DELIVERED),
            (CommercialStatus.COMPLETED, DeliveryStatus.DELIVERED, AssignmentStatus.DELIVERED),
            (CommercialStatus.ACCEPTED, DeliveryStatus.FAILED, AssignmentStatus.CANCELLED),
            (CommercialStatus.CANCELLED, DeliveryStatus.PENDING, AssignmentStatus.CANCELLED),
        ],
    )
    def test_derived_from_request(self, commercial, delivery, expected):
        assert derive_assignment_status(commercial, delivery) == expected


class TestWorkflowValidation:
    def test_terminal_state_with_exit_is_rejected(self):
        with pytest.raises(ValueError, match="terminal"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(Transition("b", "a", "BACK"),),
                terminal_states=("b",),
            )

    def test_unknown_state_is_rejected(self):
        with pytest.raises(ValueError, match="unknown state"):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "z", "GO"),),
            )
