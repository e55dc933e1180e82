"""
ResourceService: registry of drivers, vehicles and warehouses.

Responsibility:
    Registers the resources the matcher binds to requests, attaches vehicle
    rules, and lets an operator move a vehicle between Available,
    Maintenance and Retired.  Every mutation is audited.

Architecture position:
    Kernel > Services: imperative shell.

Invariants enforced:
    - InUse is entered only through MatcherService.create_assignment and left
      only when the lifecycle closes the assignment; operators cannot set or
      clear it.
    - Vehicle status flips are compare-and-swap UPDATEs
      (``compare_and_swap_vehicle_status``), so two writers can never both
      observe Available and both win.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from shipment_kernel.domain.clock import Clock
from shipment_kernel.domain.dtos import (
    DriverAddressInput,
    DriverInfo,
    VehicleInfo,
    VehicleRuleInput,
    WarehouseInfo,
)
from shipment_kernel.domain.values import (
    VehicleStatus,
    WarehouseStatus,
    coerce_uuid,
    parse_decimal,
    parse_dimensions,
)
from shipment_kernel.exceptions import (
    DriverNotFoundError,
    InvalidAddressError,
    InvalidStatusError,
    ValidationError,
    VehicleNotFoundError,
    VehicleUnavailableError,
    WarehouseNotFoundError,
)
from shipment_kernel.logging_config import get_logger
from shipment_kernel.models.assignment import Assignment
from shipment_kernel.models.audit_entry import AuditAction
from shipment_kernel.models.resources import (
    Driver,
    DriverAddress,
    Vehicle,
    VehicleRule,
    Warehouse,
)
from shipment_kernel.services.base import BaseService

logger = get_logger("services.resource")

# Statuses an operator may set directly.
OPERATOR_VEHICLE_STATUSES = frozenset({
    VehicleStatus.AVAILABLE,
    VehicleStatus.MAINTENANCE,
    VehicleStatus.RETIRED,
})


def compare_and_swap_vehicle_status(
    session: Session,
    vehicle_id: Any,
    expected: VehicleStatus,
    new: VehicleStatus,
    clock: Clock,
) -> bool:
    """
    Flip a vehicle's status only if it still holds ``expected``.

    Returns False when no row matched (another writer got there first).
    """
    result = session.execute(
        update(Vehicle)
        .where(Vehicle.id == vehicle_id)
        .where(Vehicle.status == expected.value)
        .values(status=new.value, updated_at=clock.now())
        .execution_options(synchronize_session=False)
    )
    swapped = result.rowcount == 1
    vehicle = session.get(Vehicle, vehicle_id)
    if vehicle is not None:
        session.refresh(vehicle, attribute_names=["status", "updated_at"])
    logger.debug(
        "vehicle_status_cas",
        extra={
            "vehicle_id": str(vehicle_id),
            "expected": expected.value,
            "new": new.value,
            "swapped": swapped,
        },
    )
    return swapped


class ResourceService(BaseService):
    """Registry operations.  Returns DTOs, never ORM entities."""

    def load_driver(self, driver_id: Any) -> Driver:
        key = coerce_uuid(driver_id)
        driver = self.session.get(Driver, key) if key is not None else None
        if driver is None:
            raise DriverNotFoundError(str(driver_id))
        return driver

    def load_vehicle(self, vehicle_id: Any) -> Vehicle:
        key = coerce_uuid(vehicle_id)
        vehicle = self.session.get(Vehicle, key) if key is not None else None
        if vehicle is None:
            raise VehicleNotFoundError(str(vehicle_id))
        return vehicle

    def load_warehouse(self, warehouse_id: Any) -> Warehouse:
        key = coerce_uuid(warehouse_id)
        warehouse = self.session.get(Warehouse, key) if key is not None else None
        if warehouse is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        return warehouse

    def register_driver(
        self,
        name: str,
        addresses: Sequence[DriverAddressInput],
        actor_id: str,
        actor_role: str = "operator",
        phone: str | None = None,
    ) -> DriverInfo:
        if not name or not name.strip():
            raise ValidationError("Driver name is required")
        if not addresses:
            raise InvalidAddressError("driver", "at least one address is required")
        for address in addresses:
            if not address.country or not address.country.strip():
                raise InvalidAddressError("driver", "country is required")

        now = self.clock.now()
        driver = Driver(
            name=name.strip(),
            phone=phone,
            created_at=now,
            updated_at=now,
            created_by=actor_id,
        )
        for position, address in enumerate(addresses):
            driver.addresses.append(DriverAddress(
                position=position,
                line=address.line,
                city=address.city,
                country=address.country.strip(),
            ))
        self.session.add(driver)
        self.session.flush()

        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.RESOURCE_REGISTERED,
            resource_type="Driver",
            resource_id=driver.id,
            changes={"name": driver.name, "countries": driver.countries},
        )
        logger.info(
            "driver_registered",
            extra={"driver_id": str(driver.id), "countries": driver.countries},
        )
        return DriverInfo.from_model(driver)

    def register_vehicle(
        self,
        name: str,
        plate_number: str,
        vehicle_type: str,
        country: str,
        actor_id: str,
        actor_role: str = "operator",
        rule: VehicleRuleInput | None = None,
    ) -> VehicleInfo:
        if not plate_number or not plate_number.strip():
            raise ValidationError("Vehicle plate number is required")
        if not country or not country.strip():
            raise InvalidAddressError("vehicle", "country is required")

        now = self.clock.now()
        vehicle = Vehicle(
            name=name,
            plate_number=plate_number.strip(),
            vehicle_type=vehicle_type,
            country=country.strip(),
            status=VehicleStatus.AVAILABLE.value,
            created_at=now,
            updated_at=now,
            created_by=actor_id,
        )
        self.session.add(vehicle)
        self.session.flush()

        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.RESOURCE_REGISTERED,
            resource_type="Vehicle",
            resource_id=vehicle.id,
            changes={
                "plate_number": vehicle.plate_number,
                "vehicle_type": vehicle_type,
                "country": vehicle.country,
                "status": VehicleStatus.AVAILABLE,
            },
        )
        logger.info(
            "vehicle_registered",
            extra={"vehicle_id": str(vehicle.id), "country": vehicle.country},
        )
        if rule is not None:
            return self.set_vehicle_rule(vehicle.id, rule, actor_id, actor_role)
        return VehicleInfo.from_model(vehicle)

    def register_warehouse(
        self,
        name: str,
        code: str,
        country: str,
        actor_id: str,
        actor_role: str = "operator",
        company_id: str | None = None,
        capacity: int = 0,
        current_stock: int = 0,
        state: str | None = None,
        location: str | None = None,
        status: WarehouseStatus | str = WarehouseStatus.ACTIVE,
    ) -> WarehouseInfo:
        if not code or not code.strip():
            raise ValidationError("Warehouse code is required")
        if not country or not country.strip():
            raise InvalidAddressError("warehouse", "country is required")
        if capacity < 0 or current_stock < 0:
            raise ValidationError("Warehouse capacity and stock must be non-negative")
        try:
            warehouse_status = WarehouseStatus(status)
        except ValueError:
            raise InvalidStatusError("warehouse_status", str(status)) from None

        now = self.clock.now()
        warehouse = Warehouse(
            name=name,
            code=code.strip(),
            company_id=company_id,
            country=country.strip(),
            state=state,
            location=location,
            capacity=capacity,
            current_stock=current_stock,
            status=warehouse_status.value,
            created_at=now,
            updated_at=now,
            created_by=actor_id,
        )
        self.session.add(warehouse)
        self.session.flush()

        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.RESOURCE_REGISTERED,
            resource_type="Warehouse",
            resource_id=warehouse.id,
            changes={
                "code": warehouse.code,
                "company_id": company_id,
                "country": warehouse.country,
                "status": warehouse_status,
            },
        )
        logger.info(
            "warehouse_registered",
            extra={"warehouse_id": str(warehouse.id), "country": warehouse.country},
        )
        return WarehouseInfo.from_model(warehouse)

    def set_vehicle_rule(
        self,
        vehicle_id: Any,
        rule: VehicleRuleInput,
        actor_id: str,
        actor_role: str = "operator",
    ) -> VehicleInfo:
        """Create or replace the vehicle's capacity/category rule."""
        vehicle = self.load_vehicle(vehicle_id)

        max_weight: Decimal | None = None
        if rule.max_weight is not None:
            max_weight = parse_decimal(rule.max_weight)
            if max_weight is None or max_weight <= 0:
                raise ValidationError(f"max_weight must be positive, got {rule.max_weight!r}")
        if rule.max_dimensions is not None and parse_dimensions(rule.max_dimensions) is None:
            raise ValidationError(f"max_dimensions must look like LxWxH, got {rule.max_dimensions!r}")
        if (
            rule.min_delivery_days is not None
            and rule.max_delivery_days is not None
            and rule.min_delivery_days > rule.max_delivery_days
        ):
            raise ValidationError("min_delivery_days exceeds max_delivery_days")

        now = self.clock.now()
        categories = [c.strip() for c in rule.allowed_categories if c and c.strip()]
        existing = vehicle.rule
        if existing is None:
            existing = VehicleRule(
                vehicle_id=vehicle.id,
                created_at=now,
                created_by=actor_id,
            )
            vehicle.rule = existing
        existing.max_weight = max_weight
        existing.max_dimensions = rule.max_dimensions
        existing.allowed_categories = categories
        existing.min_delivery_days = rule.min_delivery_days
        existing.max_delivery_days = rule.max_delivery_days
        existing.updated_at = now
        self.session.flush()

        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.VEHICLE_RULE_SET,
            resource_type="Vehicle",
            resource_id=vehicle.id,
            changes={
                "max_weight": max_weight,
                "max_dimensions": rule.max_dimensions,
                "allowed_categories": categories,
                "min_delivery_days": rule.min_delivery_days,
                "max_delivery_days": rule.max_delivery_days,
            },
        )
        logger.info("vehicle_rule_set", extra={"vehicle_id": str(vehicle.id)})
        return VehicleInfo.from_model(vehicle)

    def set_vehicle_status(
        self,
        vehicle_id: Any,
        status: VehicleStatus | str,
        actor_id: str,
        actor_role: str = "operator",
    ) -> VehicleInfo:
        """
        Operator maintenance / retire / return-to-service.

        Raises:
            InvalidStatusError: unknown status, or InUse requested directly.
            VehicleUnavailableError: the vehicle is bound to an open assignment,
                or its status changed underneath the caller.
        """
        try:
            target = VehicleStatus(status)
        except ValueError:
            raise InvalidStatusError("vehicle_status", str(status)) from None
        if target not in OPERATOR_VEHICLE_STATUSES:
            raise InvalidStatusError("vehicle_status", target.value)

        vehicle = self.load_vehicle(vehicle_id)
        current = VehicleStatus(vehicle.status)
        if current == target:
            return VehicleInfo.from_model(vehicle)

        open_assignment = self.session.execute(
            select(Assignment.id)
            .where(Assignment.vehicle_id == vehicle.id)
            .where(Assignment.closed_at.is_(None))
        ).first()
        if current == VehicleStatus.IN_USE or open_assignment is not None:
            raise VehicleUnavailableError(
                str(vehicle.id),
                status=current.value,
                reason="bound to an open assignment",
            )

        if not compare_and_swap_vehicle_status(
            self.session, vehicle.id, current, target, self.clock
        ):
            raise VehicleUnavailableError(
                str(vehicle.id),
                status=VehicleStatus(vehicle.status).value,
                reason="status changed concurrently",
            )

        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.VEHICLE_STATUS_CHANGED,
            resource_type="Vehicle",
            resource_id=vehicle.id,
            changes={"status": target, "previous_status": current},
        )
        logger.info(
            "vehicle_status_changed",
            extra={
                "vehicle_id": str(vehicle.id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return VehicleInfo.from_model(vehicle)
