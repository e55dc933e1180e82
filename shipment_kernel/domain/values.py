"""
Enumerations and small value parsers shared across the kernel.

All status enums are ``str`` enums so they persist as readable strings and
compare equal to the raw column values read back from the store.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID


class CommercialStatus(str, Enum):
    """Approval / negotiation phase of a request."""

    PENDING = "Pending"
    ACCEPTED = "Accepted"
    ACTION_NEEDED = "Action needed"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class DeliveryStatus(str, Enum):
    """Physical fulfillment phase of a request."""

    PENDING = "Pending"
    PICKED_UP_SOURCE = "Picked Up Source"
    WAREHOUSE_SOURCE_RECEIVED = "Warehouse Source Received"
    IN_TRANSIT = "In Transit"
    WAREHOUSE_DESTINATION_RECEIVED = "Warehouse Destination Received"
    PICKED_UP_DESTINATION = "Picked Up Destination"
    DELIVERED = "Delivered"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class PickupMode(str, Enum):
    SELF = "Self"
    DELEGATE = "Delegate"


class DeliveryKind(str, Enum):
    NORMAL = "Normal"
    FAST = "Fast"


class Side(str, Enum):
    SOURCE = "source"
    DESTINATION = "destination"


class OfferStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


class VehicleStatus(str, Enum):
    AVAILABLE = "Available"
    IN_USE = "InUse"
    MAINTENANCE = "Maintenance"
    RETIRED = "Retired"


class WarehouseStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    MAINTENANCE = "Maintenance"


class AssignmentStatus(str, Enum):
    """Derived from the owning request; never stored."""

    ASSIGNED = "Assigned"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class ActorRole(str, Enum):
    CLIENT = "client"
    COMPANY = "company"
    OPERATOR = "operator"
    DRIVER = "driver"
    ADMIN = "admin"
    SYSTEM = "system"


_DIMENSIONS_RE = re.compile(
    r"^\s*(\d+(?:\.\d+)?)\s*[xX×*]\s*(\d+(?:\.\d+)?)\s*[xX×*]\s*(\d+(?:\.\d+)?)\s*(?:cm)?\s*$"
)


def parse_dimensions(text: str) -> tuple[Decimal, Decimal, Decimal] | None:
    """
    Parse "LxWxH" (optionally suffixed with "cm") into three Decimals.

    Returns None when the text does not look like a dimension triple.
    """
    if not text:
        return None
    match = _DIMENSIONS_RE.match(text)
    if match is None:
        return None
    return tuple(Decimal(part) for part in match.groups())  # type: ignore[return-value]


def parse_decimal(value) -> Decimal | None:
    """Coerce ints, strings and Decimals to Decimal; floats go through str()."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite():
        return None
    return result


def same_country(a: str | None, b: str | None) -> bool:
    """Country names compare trimmed and case-insensitively."""
    if not a or not b:
        return False
    return a.strip().casefold() == b.strip().casefold()


def coerce_uuid(value: Any) -> UUID | None:
    """Accept UUIDs or their string form; anything else is None."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None
