"""ORM models.  Importing this package registers every table on Base.metadata."""

from shipment_kernel.models.assignment import Assignment
from shipment_kernel.models.audit_entry import AuditAction, AuditEntry
from shipment_kernel.models.offer import CostOffer
from shipment_kernel.models.request import (
    CompanyExclusion,
    RequestItem,
    RequestStatusEvent,
    ShipmentRequest,
)
from shipment_kernel.models.resources import (
    Driver,
    DriverAddress,
    Vehicle,
    VehicleRule,
    Warehouse,
)
from shipment_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "Assignment",
    "AuditAction",
    "AuditEntry",
    "CompanyExclusion",
    "CostOffer",
    "Driver",
    "DriverAddress",
    "RequestItem",
    "RequestStatusEvent",
    "SequenceCounter",
    "ShipmentRequest",
    "Vehicle",
    "VehicleRule",
    "Warehouse",
]
