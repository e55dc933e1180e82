"""
MatcherService: binds warehouses, drivers and vehicles to requests.

Responsibility:
    - Warehouse binding for Self pickup / drop-off sides (set once, undone
      only while delivery is still Pending).
    - Driver + vehicle assignment for an Accepted request, guarded by
      geography and the vehicle's capacity/category rule, with an atomic
      Available -> InUse flip of the vehicle.
    - Candidate sets: the exact filters of ``domain/matching.py`` applied to
      the registry.  No ranking.

Architecture position:
    Kernel > Services: imperative shell.

Invariants enforced:
    - A side's warehouse id is written at most once; a second assign raises
      AlreadyAssignedError and leaves the stored id untouched.
    - Warehouse binding never changes delivery status.
    - A vehicle is InUse for at most one open assignment: the flip is a
      compare-and-swap UPDATE, so of two racing assignments exactly one wins.
    - One assignment per request.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any

from sqlalchemy import select

from shipment_kernel.domain.clock import Clock
from shipment_kernel.domain.dtos import (
    AssignmentInfo,
    DriverInfo,
    ItemInfo,
    RequestInfo,
    VehicleInfo,
    VehicleRuleInfo,
    WarehouseInfo,
)
from shipment_kernel.domain.matching import (
    driver_is_eligible,
    rule_violations,
    vehicle_is_eligible,
    warehouse_is_eligible,
)
from shipment_kernel.domain.values import (
    CommercialStatus,
    DeliveryKind,
    DeliveryStatus,
    PickupMode,
    Side,
    VehicleStatus,
    WarehouseStatus,
    same_country,
)
from shipment_kernel.exceptions import (
    AlreadyAssignedError,
    AssignmentExistsError,
    CapacityExceededError,
    CompanyMismatchError,
    CountryMismatchError,
    InvalidSideError,
    NoEligibleDriverError,
    NotAssignedError,
    NotSelfPickupError,
    PreconditionUnmetError,
    RequestNotAcceptedError,
    VehicleUnavailableError,
    WarehouseUnavailableError,
)
from shipment_kernel.logging_config import get_logger
from shipment_kernel.models.assignment import Assignment
from shipment_kernel.models.audit_entry import AuditAction
from shipment_kernel.models.resources import Driver, Vehicle, Warehouse
from shipment_kernel.services.auditor_service import AuditorService
from shipment_kernel.services.base import BaseService
from shipment_kernel.services.resource_service import (
    ResourceService,
    compare_and_swap_vehicle_status,
)

logger = get_logger("services.matcher")

DEFAULT_FAST_DELIVERY_MAX_DAYS = 2


def parse_side(side: Side | str) -> Side:
    try:
        return Side(side.value if isinstance(side, Side) else str(side).strip().lower())
    except ValueError:
        raise InvalidSideError(str(side)) from None


class MatcherService(BaseService):
    """Resource binding for accepted requests."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        fast_delivery_max_days: int = DEFAULT_FAST_DELIVERY_MAX_DAYS,
    ):
        super().__init__(session, clock, auditor)
        self.fast_delivery_max_days = fast_delivery_max_days
        self._resources = ResourceService(session, self.clock, self.auditor)

    # ------------------------------------------------------------------
    # Warehouses
    # ------------------------------------------------------------------

    def assign_warehouse(
        self,
        request_id: Any,
        company_id: str,
        warehouse_id: Any,
        side: Side | str,
        actor_id: str | None = None,
        actor_role: str = "company",
    ) -> RequestInfo:
        side = parse_side(side)
        request = self._get_request(request_id)

        mode = request.pickup_mode_for(side)
        if mode != PickupMode.SELF:
            raise NotSelfPickupError(str(request.id), side.value, mode.value)

        existing = request.warehouse_id_for(side)
        if existing is not None:
            raise AlreadyAssignedError(str(request.id), side.value, str(existing))

        warehouse = self._resources.load_warehouse(warehouse_id)
        if not same_country(warehouse.country, request.country_for(side)):
            raise CountryMismatchError(
                "Warehouse", str(warehouse.id), request.country_for(side), warehouse.country
            )
        if request.assigned_company_id is not None and request.assigned_company_id != company_id:
            raise CompanyMismatchError(
                str(request.id), company_id, "request is assigned to another company"
            )
        if warehouse.company_id is not None and warehouse.company_id != company_id:
            raise CompanyMismatchError(
                str(request.id), company_id, "warehouse belongs to another company"
            )
        if WarehouseStatus(warehouse.status) != WarehouseStatus.ACTIVE:
            raise WarehouseUnavailableError(str(warehouse.id), WarehouseStatus(warehouse.status).value)

        now = self.clock.now()
        if side == Side.SOURCE:
            request.source_warehouse_id = warehouse.id
            request.source_warehouse_assigned_at = now
            request.assigned_warehouse_id = warehouse.id
        else:
            request.destination_warehouse_id = warehouse.id
            request.destination_warehouse_assigned_at = now
        warehouse.last_assigned_at = now
        self._touch(request)

        self.auditor.record(
            actor_id=actor_id or company_id,
            actor_role=actor_role,
            action=AuditAction.WAREHOUSE_ASSIGNED,
            resource_type="ShipmentRequest",
            resource_id=request.id,
            changes={
                "side": side,
                "warehouse_id": warehouse.id,
                "company_id": company_id,
            },
        )
        logger.info(
            "warehouse_assigned",
            extra={
                "request_id": str(request.id),
                "warehouse_id": str(warehouse.id),
                "side": side.value,
            },
        )
        return RequestInfo.from_model(request)

    def unassign_warehouse(
        self,
        request_id: Any,
        company_id: str,
        side: Side | str,
        actor_id: str | None = None,
        actor_role: str = "company",
    ) -> RequestInfo:
        side = parse_side(side)
        request = self._get_request(request_id)

        delivery = DeliveryStatus(request.delivery_status)
        if delivery != DeliveryStatus.PENDING:
            raise PreconditionUnmetError(
                str(request.id),
                f"warehouse cannot be released once delivery is {delivery.value}",
            )
        existing = request.warehouse_id_for(side)
        if existing is None:
            raise NotAssignedError(str(request.id), side.value)
        if request.assigned_company_id is not None and request.assigned_company_id != company_id:
            raise CompanyMismatchError(
                str(request.id), company_id, "request is assigned to another company"
            )

        if side == Side.SOURCE:
            request.source_warehouse_id = None
            request.source_warehouse_assigned_at = None
            request.assigned_warehouse_id = None
        else:
            request.destination_warehouse_id = None
            request.destination_warehouse_assigned_at = None
        self._touch(request)

        self.auditor.record(
            actor_id=actor_id or company_id,
            actor_role=actor_role,
            action=AuditAction.WAREHOUSE_UNASSIGNED,
            resource_type="ShipmentRequest",
            resource_id=request.id,
            changes={"side": side, "warehouse_id": None, "previous_warehouse_id": existing},
        )
        logger.info(
            "warehouse_unassigned",
            extra={"request_id": str(request.id), "side": side.value},
        )
        return RequestInfo.from_model(request)

    # ------------------------------------------------------------------
    # Driver + vehicle
    # ------------------------------------------------------------------

    def create_assignment(
        self,
        request_id: Any,
        driver_id: Any,
        vehicle_id: Any,
        actor_id: str,
        actor_role: str,
        estimated_delivery: datetime | None = None,
    ) -> AssignmentInfo:
        request = self._get_request(request_id)
        commercial = CommercialStatus(request.commercial_status)
        if commercial != CommercialStatus.ACCEPTED:
            raise RequestNotAcceptedError(str(request.id), commercial.value)

        existing = self.session.execute(
            select(Assignment).where(Assignment.request_id == request.id)
        ).scalar_one_or_none()
        if existing is not None:
            raise AssignmentExistsError(str(request.id), str(existing.id))

        driver = self._resources.load_driver(driver_id)
        vehicle = self._resources.load_vehicle(vehicle_id)

        if not driver_is_eligible(driver.countries, request.source_country):
            raise NoEligibleDriverError(str(driver.id), request.source_country)

        if vehicle.rule is not None:
            violations = rule_violations(
                VehicleRuleInfo.from_model(vehicle.rule).to_facts(),
                [ItemInfo.from_model(i).to_facts() for i in request.items],
                DeliveryKind(request.delivery_kind),
                self.fast_delivery_max_days,
            )
            if violations:
                logger.warning(
                    "capacity_exceeded",
                    extra={
                        "request_id": str(request.id),
                        "vehicle_id": str(vehicle.id),
                        "violations": violations,
                    },
                )
                raise CapacityExceededError(str(vehicle.id), violations)

        if not same_country(vehicle.country, request.source_country):
            raise VehicleUnavailableError(
                str(vehicle.id),
                status=VehicleStatus(vehicle.status).value,
                reason=f"registered in {vehicle.country}, request ships from {request.source_country}",
            )

        if not compare_and_swap_vehicle_status(
            self.session,
            vehicle.id,
            VehicleStatus.AVAILABLE,
            VehicleStatus.IN_USE,
            self.clock,
        ):
            logger.warning(
                "vehicle_swap_lost",
                extra={"request_id": str(request.id), "vehicle_id": str(vehicle.id)},
            )
            raise VehicleUnavailableError(
                str(vehicle.id), status=VehicleStatus(vehicle.status).value
            )

        assignment = Assignment(
            request_id=request.id,
            driver_id=driver.id,
            vehicle_id=vehicle.id,
            created_at=self.clock.now(),
            created_by=actor_id,
            estimated_delivery=estimated_delivery,
        )
        self.session.add(assignment)
        self._touch(request)
        self.session.flush()

        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.ASSIGNMENT_CREATED,
            resource_type="Assignment",
            resource_id=assignment.id,
            changes={
                "request_id": request.id,
                "driver_id": driver.id,
                "vehicle_id": vehicle.id,
                "estimated_delivery": estimated_delivery,
            },
        )
        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.VEHICLE_STATUS_CHANGED,
            resource_type="Vehicle",
            resource_id=vehicle.id,
            changes={
                "status": VehicleStatus.IN_USE,
                "previous_status": VehicleStatus.AVAILABLE,
                "assignment_id": assignment.id,
            },
        )
        logger.info(
            "assignment_created",
            extra={
                "request_id": str(request.id),
                "assignment_id": str(assignment.id),
                "driver_id": str(driver.id),
                "vehicle_id": str(vehicle.id),
            },
        )
        return AssignmentInfo.from_model(assignment, request)

    # ------------------------------------------------------------------
    # Candidate sets
    # ------------------------------------------------------------------

    def candidate_drivers(self, request_id: Any) -> list[DriverInfo]:
        request = self._get_request(request_id, for_update=False)
        drivers = self.session.execute(
            select(Driver).order_by(Driver.created_at, Driver.id)
        ).scalars().all()
        matched = [
            DriverInfo.from_model(d) for d in drivers
            if driver_is_eligible(d.countries, request.source_country)
        ]
        logger.debug(
            "candidate_drivers",
            extra={"request_id": str(request.id), "country": request.source_country, "count": len(matched)},
        )
        return matched

    def candidate_vehicles(self, request_id: Any) -> list[VehicleInfo]:
        """
        Exactly the Available vehicles registered in the source country.

        Capacity is not a filter here: ``create_assignment`` raises
        CapacityExceededError.  Each candidate carries the reasons its rule
        would reject this request in ``rule_violations``.
        """
        request = self._get_request(request_id, for_update=False)
        items = [ItemInfo.from_model(i).to_facts() for i in request.items]
        kind = DeliveryKind(request.delivery_kind)
        vehicles = self.session.execute(
            select(Vehicle)
            .where(Vehicle.status == VehicleStatus.AVAILABLE.value)
            .order_by(Vehicle.created_at, Vehicle.id)
        ).scalars().all()

        matched: list[VehicleInfo] = []
        for vehicle in vehicles:
            if not vehicle_is_eligible(vehicle.status, vehicle.country, request.source_country):
                continue
            info = VehicleInfo.from_model(vehicle)
            if info.rule is not None:
                violations = rule_violations(
                    info.rule.to_facts(), items, kind, self.fast_delivery_max_days
                )
                info = replace(info, rule_violations=tuple(violations))
            matched.append(info)
        return matched

    def candidate_warehouses(
        self,
        request_id: Any,
        side: Side | str,
        company_id: str | None = None,
    ) -> list[WarehouseInfo]:
        """
        Active warehouses in the side's country.  Owned warehouses are
        limited to ``company_id`` (defaulting to the request's assigned
        company) when one is known.
        """
        side = parse_side(side)
        request = self._get_request(request_id, for_update=False)
        company = company_id or request.assigned_company_id
        warehouses = self.session.execute(
            select(Warehouse)
            .where(Warehouse.status == WarehouseStatus.ACTIVE.value)
            .order_by(Warehouse.created_at, Warehouse.id)
        ).scalars().all()
        return [
            WarehouseInfo.from_model(w) for w in warehouses
            if warehouse_is_eligible(
                w.status, w.country, w.company_id, request.country_for(side), company
            )
        ]
