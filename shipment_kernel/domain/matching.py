"""
Resource matching rules (``shipment_kernel.domain.matching``).

Responsibility
--------------
Pure filters used by the Resource Matcher:

* a driver is a candidate iff at least one of their addresses is in the
  request's source country;
* a vehicle is a candidate iff it is Available and registered in the
  source country;
* a warehouse is a candidate for a side iff it is Active, in that side's
  country, and (when owned) owned by the acting company;
* a vehicle rule, when present, must accept every item and the request's
  delivery kind.

No ranking happens here.  Dispatch is human-in-the-loop: the caller picks
from the candidate set.

Architecture position
---------------------
**Kernel domain layer**: pure functions.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from shipment_kernel.domain.values import (
    DeliveryKind,
    VehicleStatus,
    WarehouseStatus,
    parse_dimensions,
    same_country,
)


@dataclass(frozen=True)
class ItemFacts:
    """What the capacity rules need to know about one item."""

    name: str
    category: str
    weight: Decimal
    dimensions: str
    quantity: int


@dataclass(frozen=True)
class VehicleRuleFacts:
    """Optional capacity/category rule attached to a vehicle."""

    max_weight: Decimal | None = None
    max_dimensions: str | None = None
    allowed_categories: tuple[str, ...] = ()
    min_delivery_days: int | None = None
    max_delivery_days: int | None = None


def driver_is_eligible(address_countries: Iterable[str], source_country: str) -> bool:
    return any(same_country(country, source_country) for country in address_countries)


def vehicle_is_eligible(status: VehicleStatus | str, country: str, source_country: str) -> bool:
    return VehicleStatus(status) == VehicleStatus.AVAILABLE and same_country(country, source_country)


def warehouse_is_eligible(
    status: WarehouseStatus | str,
    country: str,
    owner_company_id: str | None,
    side_country: str,
    company_id: str | None,
) -> bool:
    if WarehouseStatus(status) != WarehouseStatus.ACTIVE:
        return False
    if not same_country(country, side_country):
        return False
    if owner_company_id is not None and company_id is not None:
        return owner_company_id == company_id
    return True


def _fits_within(item_dims: str, max_dims: str) -> bool | None:
    """
    Compare dimension triples after sorting, so an item may be rotated.

    Returns None when either side cannot be parsed (the rule is skipped).
    """
    item = parse_dimensions(item_dims)
    limit = parse_dimensions(max_dims)
    if item is None or limit is None:
        return None
    return all(a <= b for a, b in zip(sorted(item), sorted(limit)))


def rule_violations(
    rule: VehicleRuleFacts,
    items: Sequence[ItemFacts],
    delivery_kind: DeliveryKind,
    fast_delivery_max_days: int,
) -> list[str]:
    """
    Check every item and the delivery kind against a vehicle rule.

    Returns a list of human-readable violations (empty when the rule accepts).
    Category comparison is case-insensitive; an empty ``allowed_categories``
    means any category is accepted.
    """
    violations: list[str] = []
    allowed = {c.strip().casefold() for c in rule.allowed_categories if c.strip()}

    for item in items:
        if rule.max_weight is not None and item.weight > rule.max_weight:
            violations.append(
                f"item '{item.name}' weighs {item.weight} kg, limit is {rule.max_weight} kg"
            )
        if allowed and item.category.strip().casefold() not in allowed:
            violations.append(
                f"item '{item.name}' category '{item.category}' is not allowed"
            )
        if rule.max_dimensions and _fits_within(item.dimensions, rule.max_dimensions) is False:
            violations.append(
                f"item '{item.name}' dimensions {item.dimensions} exceed {rule.max_dimensions}"
            )

    if (
        delivery_kind == DeliveryKind.FAST
        and rule.min_delivery_days is not None
        and rule.min_delivery_days > fast_delivery_max_days
    ):
        violations.append(
            f"fast delivery needs {fast_delivery_max_days} day(s) or less, "
            f"vehicle needs at least {rule.min_delivery_days}"
        )

    return violations
