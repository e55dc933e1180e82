"""
DTOs: Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the engine boundary:
    inputs (AddressInput, ItemInput, VehicleRuleInput, AuditLogFilter) and
    outputs (RequestInfo, OfferInfo, StatusEventInfo, DriverInfo,
    VehicleInfo, WarehouseInfo, AssignmentInfo, AuditEntryInfo).

Architecture position:
    Kernel > Domain: pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers (never from domain logic).

Invariants enforced:
    - Callers never receive ORM entities; every public engine operation
      returns one of these frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from shipment_kernel.domain.lifecycle import derive_assignment_status
from shipment_kernel.domain.matching import ItemFacts, VehicleRuleFacts
from shipment_kernel.domain.values import (
    AssignmentStatus,
    CommercialStatus,
    DeliveryKind,
    DeliveryStatus,
    OfferStatus,
    PickupMode,
    VehicleStatus,
    WarehouseStatus,
)

if TYPE_CHECKING:
    from shipment_kernel.models.assignment import Assignment as AssignmentModel
    from shipment_kernel.models.audit_entry import AuditEntry as AuditEntryModel
    from shipment_kernel.models.offer import CostOffer as CostOfferModel
    from shipment_kernel.models.request import RequestItem as RequestItemModel
    from shipment_kernel.models.request import RequestStatusEvent as StatusEventModel
    from shipment_kernel.models.request import ShipmentRequest as ShipmentRequestModel
    from shipment_kernel.models.resources import Driver as DriverModel
    from shipment_kernel.models.resources import Vehicle as VehicleModel
    from shipment_kernel.models.resources import VehicleRule as VehicleRuleModel
    from shipment_kernel.models.resources import Warehouse as WarehouseModel


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AddressInput:
    """One end of a shipment: where, and how the client hands over / receives."""

    country: str
    pickup_mode: PickupMode = PickupMode.DELEGATE
    line: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None


@dataclass(frozen=True)
class ItemInput:
    """One item line of a new request.  ``weight`` is per unit, in kg."""

    name: str
    category: str
    weight: Decimal | str | int
    dimensions: str
    quantity: int = 1


@dataclass(frozen=True)
class DriverAddressInput:
    country: str
    line: str | None = None
    city: str | None = None


@dataclass(frozen=True)
class VehicleRuleInput:
    max_weight: Decimal | None = None
    max_dimensions: str | None = None
    allowed_categories: tuple[str, ...] = ()
    min_delivery_days: int | None = None
    max_delivery_days: int | None = None


@dataclass(frozen=True)
class AuditLogFilter:
    """
    Filters for listing the audit log.

    ``since`` is inclusive, ``until`` exclusive.  Results are newest first.
    """

    action: str | None = None
    actor_id: str | None = None
    actor_role: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = None


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemInfo:
    name: str
    category: str
    weight: Decimal
    dimensions: str
    quantity: int

    @classmethod
    def from_model(cls, model: RequestItemModel) -> ItemInfo:
        return cls(
            name=model.name,
            category=model.category,
            weight=Decimal(model.weight),
            dimensions=model.dimensions,
            quantity=model.quantity,
        )

    def to_facts(self) -> ItemFacts:
        return ItemFacts(
            name=self.name,
            category=self.category,
            weight=self.weight,
            dimensions=self.dimensions,
            quantity=self.quantity,
        )


@dataclass(frozen=True)
class OfferInfo:
    id: UUID
    request_id: UUID
    company_id: str
    cost: Decimal
    comment: str
    status: OfferStatus
    created_at: datetime
    decided_at: datetime | None = None
    decided_by: str | None = None

    @classmethod
    def from_model(cls, model: CostOfferModel) -> OfferInfo:
        return cls(
            id=model.id,
            request_id=model.request_id,
            company_id=model.company_id,
            cost=Decimal(model.cost),
            comment=model.comment or "",
            status=OfferStatus(model.status),
            created_at=model.created_at,
            decided_at=model.decided_at,
            decided_by=model.decided_by,
        )


@dataclass(frozen=True)
class StatusEventInfo:
    seq: int
    dimension: str
    status: str
    changed_at: datetime
    changed_by: str
    role: str
    note: str | None = None

    @classmethod
    def from_model(cls, model: StatusEventModel) -> StatusEventInfo:
        return cls(
            seq=model.seq,
            dimension=model.dimension,
            status=model.status,
            changed_at=model.changed_at,
            changed_by=model.changed_by,
            role=model.role,
            note=model.note,
        )


def _address(model: ShipmentRequestModel, prefix: str) -> AddressInput:
    return AddressInput(
        country=getattr(model, f"{prefix}_country"),
        pickup_mode=PickupMode(getattr(model, f"{prefix}_pickup_mode")),
        line=getattr(model, f"{prefix}_line"),
        city=getattr(model, f"{prefix}_city"),
        state=getattr(model, f"{prefix}_state"),
        postal_code=getattr(model, f"{prefix}_postal_code"),
        latitude=getattr(model, f"{prefix}_latitude"),
        longitude=getattr(model, f"{prefix}_longitude"),
    )


@dataclass(frozen=True)
class RequestInfo:
    """Read model of a shipment request."""

    id: UUID
    client_id: str
    source: AddressInput
    destination: AddressInput
    items: tuple[ItemInfo, ...]
    delivery_kind: DeliveryKind
    commercial_status: CommercialStatus
    delivery_status: DeliveryStatus
    primary_cost: Decimal | None
    assigned_company_id: str | None
    assigned_warehouse_id: UUID | None
    source_warehouse_id: UUID | None
    source_warehouse_assigned_at: datetime | None
    destination_warehouse_id: UUID | None
    destination_warehouse_assigned_at: datetime | None
    cost_offers: tuple[OfferInfo, ...]
    commercial_status_history: tuple[StatusEventInfo, ...]
    delivery_status_history: tuple[StatusEventInfo, ...]
    excluded_company_ids: frozenset[str]
    created_at: datetime
    updated_at: datetime
    version: int

    @property
    def accepted_offer(self) -> OfferInfo | None:
        for offer in self.cost_offers:
            if offer.status == OfferStatus.ACCEPTED:
                return offer
        return None

    @classmethod
    def from_model(cls, model: ShipmentRequestModel) -> RequestInfo:
        events = [StatusEventInfo.from_model(e) for e in model.status_events]
        return cls(
            id=model.id,
            client_id=model.client_id,
            source=_address(model, "source"),
            destination=_address(model, "destination"),
            items=tuple(ItemInfo.from_model(i) for i in model.items),
            delivery_kind=DeliveryKind(model.delivery_kind),
            commercial_status=CommercialStatus(model.commercial_status),
            delivery_status=DeliveryStatus(model.delivery_status),
            primary_cost=Decimal(model.primary_cost) if model.primary_cost is not None else None,
            assigned_company_id=model.assigned_company_id,
            assigned_warehouse_id=model.assigned_warehouse_id,
            source_warehouse_id=model.source_warehouse_id,
            source_warehouse_assigned_at=model.source_warehouse_assigned_at,
            destination_warehouse_id=model.destination_warehouse_id,
            destination_warehouse_assigned_at=model.destination_warehouse_assigned_at,
            cost_offers=tuple(OfferInfo.from_model(o) for o in model.cost_offers),
            commercial_status_history=tuple(e for e in events if e.dimension == "commercial"),
            delivery_status_history=tuple(e for e in events if e.dimension == "delivery"),
            excluded_company_ids=frozenset(model.excluded_company_ids),
            created_at=model.created_at,
            updated_at=model.updated_at,
            version=model.version,
        )


@dataclass(frozen=True)
class DriverInfo:
    id: UUID
    name: str
    countries: tuple[str, ...]
    phone: str | None = None

    @classmethod
    def from_model(cls, model: DriverModel) -> DriverInfo:
        return cls(
            id=model.id,
            name=model.name,
            countries=tuple(model.countries),
            phone=model.phone,
        )


@dataclass(frozen=True)
class VehicleRuleInfo:
    max_weight: Decimal | None
    max_dimensions: str | None
    allowed_categories: tuple[str, ...]
    min_delivery_days: int | None
    max_delivery_days: int | None

    @classmethod
    def from_model(cls, model: VehicleRuleModel) -> VehicleRuleInfo:
        return cls(
            max_weight=Decimal(model.max_weight) if model.max_weight is not None else None,
            max_dimensions=model.max_dimensions,
            allowed_categories=tuple(model.allowed_categories or ()),
            min_delivery_days=model.min_delivery_days,
            max_delivery_days=model.max_delivery_days,
        )

    def to_facts(self) -> VehicleRuleFacts:
        return VehicleRuleFacts(
            max_weight=self.max_weight,
            max_dimensions=self.max_dimensions,
            allowed_categories=self.allowed_categories,
            min_delivery_days=self.min_delivery_days,
            max_delivery_days=self.max_delivery_days,
        )


@dataclass(frozen=True)
class VehicleInfo:
    id: UUID
    name: str
    plate_number: str
    vehicle_type: str
    country: str
    status: VehicleStatus
    rule: VehicleRuleInfo | None = None
    # Reasons the rule rejects a given request; filled by candidate queries
    rule_violations: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, model: VehicleModel) -> VehicleInfo:
        return cls(
            id=model.id,
            name=model.name,
            plate_number=model.plate_number,
            vehicle_type=model.vehicle_type,
            country=model.country,
            status=VehicleStatus(model.status),
            rule=VehicleRuleInfo.from_model(model.rule) if model.rule is not None else None,
        )


@dataclass(frozen=True)
class WarehouseInfo:
    id: UUID
    name: str
    code: str
    company_id: str | None
    country: str
    capacity: int
    current_stock: int
    status: WarehouseStatus
    state: str | None = None
    location: str | None = None

    @property
    def free_capacity(self) -> int:
        return max(self.capacity - self.current_stock, 0)

    @classmethod
    def from_model(cls, model: WarehouseModel) -> WarehouseInfo:
        return cls(
            id=model.id,
            name=model.name,
            code=model.code,
            company_id=model.company_id,
            country=model.country,
            capacity=model.capacity,
            current_stock=model.current_stock,
            status=WarehouseStatus(model.status),
            state=model.state,
            location=model.location,
        )


@dataclass(frozen=True)
class AssignmentInfo:
    id: UUID
    request_id: UUID
    driver_id: UUID
    vehicle_id: UUID
    created_at: datetime
    status: AssignmentStatus
    estimated_delivery: datetime | None = None
    closed_at: datetime | None = None

    @classmethod
    def from_model(
        cls,
        model: AssignmentModel,
        request: ShipmentRequestModel,
    ) -> AssignmentInfo:
        return cls(
            id=model.id,
            request_id=model.request_id,
            driver_id=model.driver_id,
            vehicle_id=model.vehicle_id,
            created_at=model.created_at,
            status=derive_assignment_status(
                CommercialStatus(request.commercial_status),
                DeliveryStatus(request.delivery_status),
            ),
            estimated_delivery=model.estimated_delivery,
            closed_at=model.closed_at,
        )


@dataclass(frozen=True)
class AuditEntryInfo:
    id: UUID
    seq: int
    timestamp: datetime
    actor_id: str
    actor_role: str
    action: str
    resource_type: str
    resource_id: str
    changes: dict[str, Any] = field(default_factory=dict)
    hash: str = ""

    @classmethod
    def from_model(cls, model: AuditEntryModel) -> AuditEntryInfo:
        action = model.action.value if hasattr(model.action, "value") else model.action
        return cls(
            id=model.id,
            seq=model.seq,
            timestamp=model.occurred_at,
            actor_id=model.actor_id,
            actor_role=model.actor_role,
            action=action,
            resource_type=model.resource_type,
            resource_id=model.resource_id,
            changes=dict(model.changes or {}),
            hash=model.hash,
        )
