"""
Module: shipment_kernel.selectors.resource_selector
Responsibility: Read-only lookups of drivers, vehicles, warehouses and
    assignments.
Architecture position: Kernel > Selectors.
"""

from typing import Any

from sqlalchemy import select

from shipment_kernel.domain.dtos import AssignmentInfo, VehicleInfo, WarehouseInfo
from shipment_kernel.domain.values import coerce_uuid
from shipment_kernel.exceptions import VehicleNotFoundError, WarehouseNotFoundError
from shipment_kernel.models.assignment import Assignment
from shipment_kernel.models.request import ShipmentRequest
from shipment_kernel.models.resources import Vehicle, Warehouse
from shipment_kernel.selectors.base import BaseSelector


class ResourceSelector(BaseSelector):
    def get_vehicle(self, vehicle_id: Any) -> VehicleInfo:
        key = coerce_uuid(vehicle_id)
        vehicle = self.session.get(Vehicle, key) if key is not None else None
        if vehicle is None:
            raise VehicleNotFoundError(str(vehicle_id))
        return VehicleInfo.from_model(vehicle)

    def get_warehouse(self, warehouse_id: Any) -> WarehouseInfo:
        key = coerce_uuid(warehouse_id)
        warehouse = self.session.get(Warehouse, key) if key is not None else None
        if warehouse is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        return WarehouseInfo.from_model(warehouse)

    def get_assignment(self, request_id: Any) -> AssignmentInfo | None:
        """The request's assignment, or None when it has none."""
        key = coerce_uuid(request_id)
        if key is None:
            return None
        row = self.session.execute(
            select(Assignment, ShipmentRequest)
            .join(ShipmentRequest, ShipmentRequest.id == Assignment.request_id)
            .where(Assignment.request_id == key)
        ).first()
        if row is None:
            return None
        assignment, request = row
        return AssignmentInfo.from_model(assignment, request)
