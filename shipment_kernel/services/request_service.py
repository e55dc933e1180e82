"""
RequestService: creation of shipment requests.

Responsibility:
    Validates a client's request (addresses, items, delivery kind) before any
    store access and persists it at commercial Pending / delivery Pending,
    seeding both status histories and recording REQUEST_CREATED.

Architecture position:
    Kernel > Services: imperative shell.

Failure modes:
    - InvalidItemsError: empty list, non-positive quantity or weight, missing
      name or category, malformed dimensions.
    - InvalidAddressError: missing country on either side.
    - InvalidStatusError: unknown pickup mode or delivery kind.
"""

from decimal import Decimal
from typing import Sequence

from shipment_kernel.domain.dtos import AddressInput, ItemInput, RequestInfo
from shipment_kernel.domain.values import (
    CommercialStatus,
    DeliveryKind,
    DeliveryStatus,
    PickupMode,
    Side,
    parse_decimal,
    parse_dimensions,
)
from shipment_kernel.exceptions import (
    InvalidAddressError,
    InvalidItemsError,
    InvalidStatusError,
)
from shipment_kernel.logging_config import get_logger
from shipment_kernel.models.audit_entry import AuditAction
from shipment_kernel.models.request import RequestItem, ShipmentRequest
from shipment_kernel.services.base import BaseService

logger = get_logger("services.request")


def _validated_items(items: Sequence[ItemInput]) -> list[tuple[ItemInput, Decimal]]:
    if not items:
        raise InvalidItemsError("at least one item is required")

    validated: list[tuple[ItemInput, Decimal]] = []
    for index, item in enumerate(items):
        if not item.name or not item.name.strip():
            raise InvalidItemsError("name is required", index)
        if not item.category or not item.category.strip():
            raise InvalidItemsError("category is required", index)
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
            raise InvalidItemsError(f"quantity must be a positive integer, got {item.quantity!r}", index)
        weight = parse_decimal(item.weight)
        if weight is None or weight <= 0:
            raise InvalidItemsError(f"weight must be a positive number, got {item.weight!r}", index)
        if parse_dimensions(item.dimensions) is None:
            raise InvalidItemsError(f"dimensions must look like LxWxH, got {item.dimensions!r}", index)
        validated.append((item, weight))
    return validated


def _validated_mode(side: Side, address: AddressInput) -> PickupMode:
    if address is None or not address.country or not address.country.strip():
        raise InvalidAddressError(side.value, "country is required")
    try:
        return PickupMode(address.pickup_mode)
    except ValueError:
        raise InvalidStatusError("pickup_mode", str(address.pickup_mode)) from None


class RequestService(BaseService):
    """Creates requests.  Mutations after creation belong to the other services."""

    def create_request(
        self,
        client_id: str,
        source: AddressInput,
        destination: AddressInput,
        items: Sequence[ItemInput],
        delivery_kind: DeliveryKind | str = DeliveryKind.NORMAL,
        actor_role: str = "client",
    ) -> RequestInfo:
        validated = _validated_items(items)
        source_mode = _validated_mode(Side.SOURCE, source)
        destination_mode = _validated_mode(Side.DESTINATION, destination)
        try:
            kind = DeliveryKind(delivery_kind)
        except ValueError:
            raise InvalidStatusError("delivery_kind", str(delivery_kind)) from None

        now = self.clock.now()
        request = ShipmentRequest(
            client_id=client_id,
            source_line=source.line,
            source_city=source.city,
            source_state=source.state,
            source_country=source.country.strip(),
            source_postal_code=source.postal_code,
            source_latitude=source.latitude,
            source_longitude=source.longitude,
            source_pickup_mode=source_mode.value,
            destination_line=destination.line,
            destination_city=destination.city,
            destination_state=destination.state,
            destination_country=destination.country.strip(),
            destination_postal_code=destination.postal_code,
            destination_latitude=destination.latitude,
            destination_longitude=destination.longitude,
            destination_pickup_mode=destination_mode.value,
            delivery_kind=kind.value,
            commercial_status=CommercialStatus.PENDING.value,
            delivery_status=DeliveryStatus.PENDING.value,
            created_at=now,
            updated_at=now,
            created_by=client_id,
        )
        for position, (item, weight) in enumerate(validated):
            request.items.append(RequestItem(
                position=position,
                name=item.name.strip(),
                category=item.category.strip(),
                weight=weight,
                dimensions=item.dimensions.strip(),
                quantity=item.quantity,
            ))
        self.session.add(request)
        self.session.flush()

        self._append_status_event(
            request, "commercial", CommercialStatus.PENDING.value, client_id, actor_role
        )
        self._append_status_event(
            request, "delivery", DeliveryStatus.PENDING.value, client_id, actor_role
        )

        self.auditor.record(
            actor_id=client_id,
            actor_role=actor_role,
            action=AuditAction.REQUEST_CREATED,
            resource_type="ShipmentRequest",
            resource_id=request.id,
            changes={
                "client_id": client_id,
                "source_country": request.source_country,
                "destination_country": request.destination_country,
                "source_pickup_mode": source_mode.value,
                "destination_pickup_mode": destination_mode.value,
                "delivery_kind": kind.value,
                "item_count": len(validated),
                "commercial_status": CommercialStatus.PENDING.value,
                "delivery_status": DeliveryStatus.PENDING.value,
            },
        )

        logger.info(
            "request_created",
            extra={
                "request_id": str(request.id),
                "client_id": client_id,
                "item_count": len(validated),
                "delivery_kind": kind.value,
            },
        )
        return RequestInfo.from_model(request)
