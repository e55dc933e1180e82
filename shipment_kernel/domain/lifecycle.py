"""
Request lifecycle tables (``shipment_kernel.domain.lifecycle``).

Responsibility
--------------
Defines the two independent status dimensions of a shipment request as
``Workflow`` tables, plus the pure checks the lifecycle service applies
before it mutates anything:

* ``check_commercial`` / ``check_delivery``: is the target reachable?
* ``missing_warehouse_sides``: which Self sides still lack a warehouse?
* ``commercial_allows_delivery``: has the commercial side reached Accepted?
* ``delivery_allows_completion``: may the order move to Completed?
* ``replay``: re-derive the current status from a history log.

Commercial::

    Pending -> Accepted -> Action needed -> In Progress -> Completed
    Pending | Accepted                     -> Rejected
    any non-terminal                       -> Cancelled

Delivery::

    Pending -> Picked Up Source -> Warehouse Source Received -> In Transit
      -> Warehouse Destination Received -> Picked Up Destination -> Delivered
    any non-terminal -> Failed | Cancelled

Architecture position
---------------------
**Kernel domain layer**: pure functions over value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from shipment_kernel.domain.values import (
    AssignmentStatus,
    CommercialStatus,
    DeliveryStatus,
    PickupMode,
    Side,
)
from shipment_kernel.domain.workflow import Guard, Transition, Workflow

ACCEPTED_OFFER_GUARD = Guard(
    name="accepted_offer",
    description="An offer on the request holds status Accepted",
)
COMMERCIAL_ACCEPTED_GUARD = Guard(
    name="commercial_accepted",
    description="Commercial status is Accepted, Action needed or In Progress",
)
SELF_PICKUP_WAREHOUSE_GUARD = Guard(
    name="self_pickup_warehouse",
    description="Every Self pickup side carries its warehouse id",
)
DELIVERED_GUARD = Guard(
    name="delivered",
    description="Delivery status has reached Delivered",
)

COMMERCIAL_ORDER: tuple[CommercialStatus, ...] = (
    CommercialStatus.PENDING,
    CommercialStatus.ACCEPTED,
    CommercialStatus.ACTION_NEEDED,
    CommercialStatus.IN_PROGRESS,
    CommercialStatus.COMPLETED,
)

DELIVERY_ORDER: tuple[DeliveryStatus, ...] = (
    DeliveryStatus.PENDING,
    DeliveryStatus.PICKED_UP_SOURCE,
    DeliveryStatus.WAREHOUSE_SOURCE_RECEIVED,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.WAREHOUSE_DESTINATION_RECEIVED,
    DeliveryStatus.PICKED_UP_DESTINATION,
    DeliveryStatus.DELIVERED,
)

# Commercial states from which delivery may progress.
DELIVERY_ENABLING_COMMERCIAL: frozenset[CommercialStatus] = frozenset({
    CommercialStatus.ACCEPTED,
    CommercialStatus.ACTION_NEEDED,
    CommercialStatus.IN_PROGRESS,
})


def _action(prefix: str, status: CommercialStatus | DeliveryStatus) -> str:
    return f"{prefix}_{status.name}"


_COMMERCIAL_GUARDS: dict[CommercialStatus, Guard] = {
    CommercialStatus.ACCEPTED: ACCEPTED_OFFER_GUARD,
    CommercialStatus.COMPLETED: DELIVERED_GUARD,
}


def _build_commercial() -> Workflow:
    transitions: list[Transition] = []
    for current, nxt in zip(COMMERCIAL_ORDER, COMMERCIAL_ORDER[1:]):
        transitions.append(Transition(
            from_state=current.value,
            to_state=nxt.value,
            action=_action("ORDER", nxt),
            guard=_COMMERCIAL_GUARDS.get(nxt),
        ))
    for current in (CommercialStatus.PENDING, CommercialStatus.ACCEPTED):
        transitions.append(Transition(
            from_state=current.value,
            to_state=CommercialStatus.REJECTED.value,
            action=_action("ORDER", CommercialStatus.REJECTED),
            shortcut=True,
        ))
    for current in COMMERCIAL_ORDER[:-1]:
        transitions.append(Transition(
            from_state=current.value,
            to_state=CommercialStatus.CANCELLED.value,
            action=_action("ORDER", CommercialStatus.CANCELLED),
            shortcut=True,
        ))
    return Workflow(
        name="commercial",
        description="Approval and negotiation phase of a shipment request",
        initial_state=CommercialStatus.PENDING.value,
        states=tuple(s.value for s in CommercialStatus),
        transitions=tuple(transitions),
        terminal_states=(
            CommercialStatus.COMPLETED.value,
            CommercialStatus.REJECTED.value,
            CommercialStatus.CANCELLED.value,
        ),
    )


def _build_delivery() -> Workflow:
    transitions: list[Transition] = []
    for current, nxt in zip(DELIVERY_ORDER, DELIVERY_ORDER[1:]):
        guard = (
            SELF_PICKUP_WAREHOUSE_GUARD
            if current == DeliveryStatus.PENDING
            else COMMERCIAL_ACCEPTED_GUARD
        )
        transitions.append(Transition(
            from_state=current.value,
            to_state=nxt.value,
            action=_action("DELIVERY", nxt),
            guard=guard,
        ))
    for current in DELIVERY_ORDER[:-1]:
        for escape in (DeliveryStatus.FAILED, DeliveryStatus.CANCELLED):
            transitions.append(Transition(
                from_state=current.value,
                to_state=escape.value,
                action=_action("DELIVERY", escape),
                shortcut=True,
            ))
    return Workflow(
        name="delivery",
        description="Physical fulfillment phase of a shipment request",
        initial_state=DeliveryStatus.PENDING.value,
        states=tuple(s.value for s in DeliveryStatus),
        transitions=tuple(transitions),
        terminal_states=(
            DeliveryStatus.DELIVERED.value,
            DeliveryStatus.FAILED.value,
            DeliveryStatus.CANCELLED.value,
        ),
    )


COMMERCIAL_WORKFLOW = _build_commercial()
DELIVERY_WORKFLOW = _build_delivery()


def check_commercial(
    current: CommercialStatus, target: CommercialStatus
) -> Transition | None:
    """Return the legal commercial transition, or None."""
    return COMMERCIAL_WORKFLOW.find(current.value, target.value)


def check_delivery(
    current: DeliveryStatus, target: DeliveryStatus
) -> Transition | None:
    """Return the legal delivery transition, or None."""
    return DELIVERY_WORKFLOW.find(current.value, target.value)


def commercial_allows_delivery(status: CommercialStatus) -> bool:
    return status in DELIVERY_ENABLING_COMMERCIAL


def delivery_allows_completion(status: DeliveryStatus) -> bool:
    """An order completes only once its goods are delivered."""
    return status == DeliveryStatus.DELIVERED


@dataclass(frozen=True)
class WarehouseFacts:
    """The pickup-mode / warehouse-binding facts of one request."""

    source_mode: PickupMode
    destination_mode: PickupMode
    source_warehouse_id: object | None
    destination_warehouse_id: object | None


def missing_warehouse_sides(facts: WarehouseFacts) -> list[str]:
    """Self sides that still lack a warehouse, in source-then-destination order."""
    missing: list[str] = []
    if facts.source_mode == PickupMode.SELF and facts.source_warehouse_id is None:
        missing.append(Side.SOURCE.value)
    if (
        facts.destination_mode == PickupMode.SELF
        and facts.destination_warehouse_id is None
    ):
        missing.append(Side.DESTINATION.value)
    return missing


@dataclass(frozen=True)
class ReplayResult:
    """Outcome of replaying a status history against a workflow."""

    final_state: str | None
    steps: int
    first_invalid_index: int | None = None

    @property
    def is_valid(self) -> bool:
        return self.first_invalid_index is None


def replay(workflow: Workflow, statuses: Sequence[str] | Iterable[str]) -> ReplayResult:
    """
    Re-derive the current status from a recorded history.

    The history may begin with a seed entry equal to the initial state (the
    creation event).  Every following entry must be a legal transition from
    the state before it; the first illegal step stops the replay and is
    reported through ``first_invalid_index``.
    """
    state = workflow.initial_state
    steps = 0
    for index, raw in enumerate(statuses):
        status = raw.value if hasattr(raw, "value") else raw
        if index == 0 and status == workflow.initial_state:
            continue
        if workflow.find(state, status) is None:
            return ReplayResult(final_state=state, steps=steps, first_invalid_index=index)
        state = status
        steps += 1
    return ReplayResult(final_state=state, steps=steps)


def derive_assignment_status(
    commercial: CommercialStatus,
    delivery: DeliveryStatus,
) -> AssignmentStatus:
    """
    Assignment status as seen from the owning request.

    Delivered (or a Completed order) -> Delivered; Failed/Cancelled delivery or
    a Rejected/Cancelled order -> Cancelled; any delivery progress past
    Pending -> In Transit; otherwise Assigned.
    """
    if delivery == DeliveryStatus.DELIVERED or commercial == CommercialStatus.COMPLETED:
        return AssignmentStatus.DELIVERED
    if delivery in (DeliveryStatus.FAILED, DeliveryStatus.CANCELLED) or commercial in (
        CommercialStatus.REJECTED,
        CommercialStatus.CANCELLED,
    ):
        return AssignmentStatus.CANCELLED
    if delivery != DeliveryStatus.PENDING:
        return AssignmentStatus.IN_TRANSIT
    return AssignmentStatus.ASSIGNED


def replay_commercial(statuses: Iterable[str]) -> ReplayResult:
    return replay(COMMERCIAL_WORKFLOW, statuses)


def replay_delivery(statuses: Iterable[str]) -> ReplayResult:
    return replay(DELIVERY_WORKFLOW, statuses)
