"""
LifecycleService: the request state machine.

Responsibility:
    Applies commercial and delivery transitions to a request after checking
    them against the tables in ``domain/lifecycle.py`` and the cross-dimension
    preconditions.  Every applied transition appends a status event and an
    ``ORDER_<TARGET>`` / ``DELIVERY_<TARGET>`` audit entry in the same
    transaction.  Terminal transitions close the request's open assignment
    and return its vehicle to Available.

Architecture position:
    Kernel > Services: imperative shell.  Also driven by OfferService
    (select_offer -> Accepted).

Invariants enforced:
    - Delivery moves forward only while commercial is Accepted, Action
      needed or In Progress.
    - A Self pickup side carries its warehouse id before delivery leaves
      Pending.  Failed and Cancelled are always reachable from a
      non-terminal delivery state.
    - Commercial Accepted requires an Accepted offer; Completed requires
      delivery Delivered, so the vehicle is never released while loaded.
    - Replaying either status history reproduces the stored field
      (``verify_history``).

Failure modes:
    - InvalidTransitionError, WarehouseRequiredError, PreconditionUnmetError,
      HistoryDriftError, RequestNotFoundError, InvalidStatusError.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from shipment_kernel.domain.dtos import RequestInfo
from shipment_kernel.domain.lifecycle import (
    COMMERCIAL_WORKFLOW,
    DELIVERY_WORKFLOW,
    WarehouseFacts,
    check_commercial,
    check_delivery,
    commercial_allows_delivery,
    delivery_allows_completion,
    missing_warehouse_sides,
    replay_commercial,
    replay_delivery,
)
from shipment_kernel.domain.values import (
    CommercialStatus,
    DeliveryStatus,
    OfferStatus,
    PickupMode,
    VehicleStatus,
)
from shipment_kernel.exceptions import (
    HistoryDriftError,
    InvalidStatusError,
    InvalidTransitionError,
    PreconditionUnmetError,
    WarehouseRequiredError,
)
from shipment_kernel.logging_config import get_logger
from shipment_kernel.models.assignment import Assignment
from shipment_kernel.models.audit_entry import AuditAction
from shipment_kernel.models.request import ShipmentRequest
from shipment_kernel.services.base import BaseService
from shipment_kernel.services.resource_service import compare_and_swap_vehicle_status

logger = get_logger("services.lifecycle")


def _parse(enum_cls, kind: str, value: Any):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidStatusError(kind, str(value)) from None


class LifecycleService(BaseService):
    """Commercial and delivery transitions."""

    # ------------------------------------------------------------------
    # Commercial
    # ------------------------------------------------------------------

    def transition_commercial(
        self,
        request_id: Any,
        target: CommercialStatus | str,
        actor_id: str,
        actor_role: str,
        note: str | None = None,
    ) -> RequestInfo:
        target = _parse(CommercialStatus, "commercial_status", target)
        request = self._get_request(request_id)
        self.apply_commercial(request, target, actor_id, actor_role, note)
        return RequestInfo.from_model(request)

    def apply_commercial(
        self,
        request: ShipmentRequest,
        target: CommercialStatus,
        actor_id: str,
        actor_role: str,
        note: str | None = None,
    ) -> None:
        """Transition an already-loaded request.  Used by OfferService."""
        current = CommercialStatus(request.commercial_status)
        transition = check_commercial(current, target)
        if transition is None:
            logger.warning(
                "transition_rejected",
                extra={
                    "request_id": str(request.id),
                    "dimension": "commercial",
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
            raise InvalidTransitionError(
                str(request.id), "commercial", current.value, target.value
            )

        if target == CommercialStatus.ACCEPTED and not any(
            OfferStatus(o.status) == OfferStatus.ACCEPTED for o in request.cost_offers
        ):
            raise PreconditionUnmetError(str(request.id), "no offer has been accepted")

        delivery = DeliveryStatus(request.delivery_status)
        if target == CommercialStatus.COMPLETED and not delivery_allows_completion(delivery):
            raise PreconditionUnmetError(
                str(request.id),
                f"order cannot complete while delivery status is {delivery.value}",
            )

        request.commercial_status = target.value
        self._touch(request)
        self._append_status_event(request, "commercial", target.value, actor_id, actor_role, note)
        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction(transition.action),
            resource_type="ShipmentRequest",
            resource_id=request.id,
            changes={
                "commercial_status": target,
                "previous_status": current,
                "note": note,
            },
        )
        logger.info(
            "commercial_transition_applied",
            extra={
                "request_id": str(request.id),
                "from_status": current.value,
                "to_status": target.value,
                "actor_id": actor_id,
            },
        )

        if COMMERCIAL_WORKFLOW.is_terminal(target.value):
            self._close_assignment(request, target.value, actor_id, actor_role)

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def transition_delivery(
        self,
        request_id: Any,
        target: DeliveryStatus | str,
        actor_id: str,
        actor_role: str,
        note: str | None = None,
    ) -> RequestInfo:
        target = _parse(DeliveryStatus, "delivery_status", target)
        request = self._get_request(request_id)
        current = DeliveryStatus(request.delivery_status)

        transition = check_delivery(current, target)
        if transition is None:
            logger.warning(
                "transition_rejected",
                extra={
                    "request_id": str(request.id),
                    "dimension": "delivery",
                    "from_status": current.value,
                    "to_status": target.value,
                },
            )
            raise InvalidTransitionError(
                str(request.id), "delivery", current.value, target.value
            )

        if not transition.shortcut:
            if current == DeliveryStatus.PENDING:
                missing = missing_warehouse_sides(WarehouseFacts(
                    source_mode=PickupMode(request.source_pickup_mode),
                    destination_mode=PickupMode(request.destination_pickup_mode),
                    source_warehouse_id=request.source_warehouse_id,
                    destination_warehouse_id=request.destination_warehouse_id,
                ))
                if missing:
                    logger.warning(
                        "warehouse_gate_blocked",
                        extra={"request_id": str(request.id), "sides": missing},
                    )
                    raise WarehouseRequiredError(str(request.id), missing)
            commercial = CommercialStatus(request.commercial_status)
            if not commercial_allows_delivery(commercial):
                raise PreconditionUnmetError(
                    str(request.id),
                    f"delivery cannot progress while commercial status is {commercial.value}",
                )

        request.delivery_status = target.value
        self._touch(request)
        self._append_status_event(request, "delivery", target.value, actor_id, actor_role, note)
        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction(transition.action),
            resource_type="ShipmentRequest",
            resource_id=request.id,
            changes={
                "delivery_status": target,
                "previous_status": current,
                "note": note,
            },
        )
        logger.info(
            "delivery_transition_applied",
            extra={
                "request_id": str(request.id),
                "from_status": current.value,
                "to_status": target.value,
                "actor_id": actor_id,
            },
        )

        if DELIVERY_WORKFLOW.is_terminal(target.value):
            self._close_assignment(request, target.value, actor_id, actor_role)

        return RequestInfo.from_model(request)

    # ------------------------------------------------------------------
    # Assignment release
    # ------------------------------------------------------------------

    def _close_assignment(
        self,
        request: ShipmentRequest,
        reason: str,
        actor_id: str,
        actor_role: str,
    ) -> None:
        assignment = self.session.execute(
            select(Assignment)
            .where(Assignment.request_id == request.id)
            .where(Assignment.closed_at.is_(None))
        ).scalar_one_or_none()
        if assignment is None:
            return

        assignment.closed_at = self.clock.now()
        assignment.closed_reason = reason
        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.ASSIGNMENT_CLOSED,
            resource_type="Assignment",
            resource_id=assignment.id,
            changes={"request_id": request.id, "closed_reason": reason},
        )

        if compare_and_swap_vehicle_status(
            self.session,
            assignment.vehicle_id,
            VehicleStatus.IN_USE,
            VehicleStatus.AVAILABLE,
            self.clock,
        ):
            self.auditor.record(
                actor_id=actor_id,
                actor_role=actor_role,
                action=AuditAction.VEHICLE_STATUS_CHANGED,
                resource_type="Vehicle",
                resource_id=assignment.vehicle_id,
                changes={
                    "status": VehicleStatus.AVAILABLE,
                    "previous_status": VehicleStatus.IN_USE,
                    "assignment_id": assignment.id,
                },
            )
        logger.info(
            "assignment_closed",
            extra={
                "request_id": str(request.id),
                "assignment_id": str(assignment.id),
                "vehicle_id": str(assignment.vehicle_id),
                "reason": reason,
            },
        )

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def verify_history(self, request_id: Any) -> bool:
        """
        Replay both status histories and compare with the stored fields.

        Raises:
            HistoryDriftError: the history contains an illegal step or
                replays to a status other than the stored one.
        """
        request = self._get_request(request_id, for_update=False)
        checks = (
            ("commercial", replay_commercial, request.commercial_status),
            ("delivery", replay_delivery, request.delivery_status),
        )
        for dimension, replay_fn, stored in checks:
            stored_value = stored.value if hasattr(stored, "value") else stored
            result = replay_fn([e.status for e in request.history(dimension)])
            if not result.is_valid or result.final_state != stored_value:
                logger.error(
                    "history_drift_detected",
                    extra={
                        "request_id": str(request.id),
                        "dimension": dimension,
                        "stored": stored_value,
                        "replayed": result.final_state,
                        "first_invalid_index": result.first_invalid_index,
                    },
                )
                raise HistoryDriftError(
                    str(request.id), dimension, stored_value, result.final_state
                )
        return True
