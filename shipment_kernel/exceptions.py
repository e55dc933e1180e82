"""
Typed Exception Hierarchy for the Shipment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Calling UIs render precise messages for every failure of the lifecycle
engine ("this request already has a source warehouse", "vehicle is in use").
Matching on message strings is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.assign_warehouse(request_id, company_id, warehouse_id, "source")
    except AlreadyAssignedError as e:
        api_response(code=e.code, side=e.side, warehouse=e.existing_warehouse_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ShipmentKernelError (base)
    |
    +-- ValidationError                 (malformed input, rejected before reads)
    |   +-- InvalidItemsError
    |   +-- InvalidAddressError
    |   +-- InvalidCostError
    |   +-- InvalidSideError
    |   +-- InvalidStatusError
    |
    +-- PreconditionError               (state not in the required phase)
    |   +-- InvalidTransitionError
    |   +-- PreconditionUnmetError
    |   +-- WarehouseRequiredError
    |   +-- RequestNotOpenError
    |   +-- RequestNotAcceptedError
    |   +-- OfferLimitExceededError
    |   +-- OfferNotPendingError
    |   +-- CompanyExcludedError
    |   +-- NotSelfPickupError
    |   +-- CountryMismatchError
    |   +-- CompanyMismatchError
    |   +-- WarehouseUnavailableError
    |   +-- NotAssignedError
    |   +-- NoEligibleDriverError
    |   +-- CapacityExceededError
    |   +-- AssignmentExistsError
    |   +-- HistoryDriftError
    |
    +-- ConflictError                   (lost a race; surfaced for manual retry)
    |   +-- AlreadyAssignedError
    |   +-- VehicleUnavailableError
    |   +-- OptimisticLockError
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- OfferNotFoundError
    |   +-- DriverNotFoundError
    |   +-- VehicleNotFoundError
    |   +-- WarehouseNotFoundError
    |
    +-- StoreUnavailableError           (durability layer failure)
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityViolationError

===============================================================================
PROPAGATION POLICY
===============================================================================

- ValidationError / NotFoundError: returned to the caller, never retried.
- ConflictError: surfaced for manual retry; the engine never auto-retries a
  mutation that lost a race.
- StoreUnavailableError: idempotent reads are retried a bounded number of
  times by the selectors; mutations surface it immediately.
===============================================================================
"""

from typing import Any


class ShipmentKernelError(Exception):
    """
    Base exception for all shipment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SHIPMENT_KERNEL_ERROR"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ShipmentKernelError):
    """Base exception for malformed input."""

    code: str = "VALIDATION_ERROR"


class InvalidItemsError(ValidationError):
    """Item list of a new request is empty or contains a malformed item."""

    code: str = "INVALID_ITEMS"

    def __init__(self, reason: str, item_index: int | None = None):
        self.reason = reason
        self.item_index = item_index
        where = f" (item {item_index})" if item_index is not None else ""
        super().__init__(f"Invalid items{where}: {reason}")


class InvalidAddressError(ValidationError):
    """Source or destination address is incomplete."""

    code: str = "INVALID_ADDRESS"

    def __init__(self, side: str, reason: str):
        self.side = side
        self.reason = reason
        super().__init__(f"Invalid {side} address: {reason}")


class InvalidCostError(ValidationError):
    """Offer cost is not a positive decimal."""

    code: str = "INVALID_COST"

    def __init__(self, cost: Any):
        self.cost = str(cost)
        super().__init__(f"Offer cost must be a positive amount, got {cost!r}")


class InvalidSideError(ValidationError):
    """Side argument is not 'source' or 'destination'."""

    code: str = "INVALID_SIDE"

    def __init__(self, side: str):
        self.side = side
        super().__init__(f"Side must be 'source' or 'destination', got {side!r}")


class InvalidStatusError(ValidationError):
    """A status value is not a member of the expected enum."""

    code: str = "INVALID_STATUS"

    def __init__(self, kind: str, value: str):
        self.kind = kind
        self.value = value
        super().__init__(f"Unknown {kind} status: {value!r}")


# ---------------------------------------------------------------------------
# Precondition
# ---------------------------------------------------------------------------


class PreconditionError(ShipmentKernelError):
    """Base exception for operations attempted in the wrong phase."""

    code: str = "PRECONDITION_ERROR"


class InvalidTransitionError(PreconditionError):
    """Target status is not reachable from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, request_id: str, dimension: str, from_status: str, to_status: str):
        self.request_id = request_id
        self.dimension = dimension
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Request {request_id}: {dimension} status cannot move "
            f"from {from_status} to {to_status}"
        )


class PreconditionUnmetError(PreconditionError):
    """A transition guard is not satisfied."""

    code: str = "PRECONDITION_UNMET"

    def __init__(self, request_id: str, reason: str):
        self.request_id = request_id
        self.reason = reason
        super().__init__(f"Request {request_id}: {reason}")


class WarehouseRequiredError(PreconditionError):
    """Delivery cannot leave Pending while a Self side lacks its warehouse."""

    code: str = "WAREHOUSE_REQUIRED"

    def __init__(self, request_id: str, sides: list[str]):
        self.request_id = request_id
        self.sides = sides
        super().__init__(
            f"Request {request_id} requires a warehouse on: {', '.join(sides)}"
        )


class RequestNotOpenError(PreconditionError):
    """Request is no longer open for offers or selection."""

    code: str = "REQUEST_NOT_OPEN"

    def __init__(self, request_id: str, commercial_status: str, reason: str | None = None):
        self.request_id = request_id
        self.commercial_status = commercial_status
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Request {request_id} is not open (status {commercial_status}){detail}"
        )


class RequestNotAcceptedError(PreconditionError):
    """Assignment attempted on a request that is not Accepted."""

    code: str = "REQUEST_NOT_ACCEPTED"

    def __init__(self, request_id: str, commercial_status: str):
        self.request_id = request_id
        self.commercial_status = commercial_status
        super().__init__(
            f"Request {request_id} must be Accepted to assign resources "
            f"(status {commercial_status})"
        )


class OfferLimitExceededError(PreconditionError):
    """Company already holds the maximum number of live offers."""

    code: str = "OFFER_LIMIT_EXCEEDED"

    def __init__(self, request_id: str, company_id: str, limit: int):
        self.request_id = request_id
        self.company_id = company_id
        self.limit = limit
        super().__init__(
            f"Company {company_id} already holds {limit} open offers "
            f"on request {request_id}"
        )


class OfferNotPendingError(PreconditionError):
    """Offer has already been decided."""

    code: str = "OFFER_NOT_PENDING"

    def __init__(self, offer_id: str, status: str):
        self.offer_id = offer_id
        self.status = status
        super().__init__(f"Offer {offer_id} is {status}, not Pending")


class CompanyExcludedError(PreconditionError):
    """Company declined the request and may not bid on it."""

    code: str = "COMPANY_EXCLUDED"

    def __init__(self, request_id: str, company_id: str):
        self.request_id = request_id
        self.company_id = company_id
        super().__init__(f"Company {company_id} declined request {request_id}")


class NotSelfPickupError(PreconditionError):
    """Warehouse binding requested on a side that is not Self pickup."""

    code: str = "NOT_SELF_PICKUP"

    def __init__(self, request_id: str, side: str, pickup_mode: str):
        self.request_id = request_id
        self.side = side
        self.pickup_mode = pickup_mode
        super().__init__(
            f"Request {request_id}: {side} pickup mode is {pickup_mode}, not Self"
        )


class CountryMismatchError(PreconditionError):
    """Resource country differs from the request address country."""

    code: str = "COUNTRY_MISMATCH"

    def __init__(self, resource_type: str, resource_id: str, expected: str, actual: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{resource_type} {resource_id} is in {actual}, expected {expected}"
        )


class CompanyMismatchError(PreconditionError):
    """Acting company does not own the request or the resource."""

    code: str = "COMPANY_MISMATCH"

    def __init__(self, request_id: str, company_id: str, reason: str):
        self.request_id = request_id
        self.company_id = company_id
        self.reason = reason
        super().__init__(f"Company {company_id} on request {request_id}: {reason}")


class WarehouseUnavailableError(PreconditionError):
    """Warehouse is not active."""

    code: str = "WAREHOUSE_UNAVAILABLE"

    def __init__(self, warehouse_id: str, status: str):
        self.warehouse_id = warehouse_id
        self.status = status
        super().__init__(f"Warehouse {warehouse_id} is {status}")


class NotAssignedError(PreconditionError):
    """Unassign requested on a side with no warehouse bound."""

    code: str = "NOT_ASSIGNED"

    def __init__(self, request_id: str, side: str):
        self.request_id = request_id
        self.side = side
        super().__init__(f"Request {request_id} has no {side} warehouse")


class NoEligibleDriverError(PreconditionError):
    """Driver has no address in the request's source country."""

    code: str = "NO_ELIGIBLE_DRIVER"

    def __init__(self, driver_id: str, country: str):
        self.driver_id = driver_id
        self.country = country
        super().__init__(f"Driver {driver_id} has no address in {country}")


class CapacityExceededError(PreconditionError):
    """Vehicle rule rejects the request's items or delivery window."""

    code: str = "CAPACITY_EXCEEDED"

    def __init__(self, vehicle_id: str, violations: list[str]):
        self.vehicle_id = vehicle_id
        self.violations = violations
        super().__init__(
            f"Vehicle {vehicle_id} cannot carry this request: {'; '.join(violations)}"
        )


class AssignmentExistsError(PreconditionError):
    """Request already has an open assignment."""

    code: str = "ASSIGNMENT_EXISTS"

    def __init__(self, request_id: str, assignment_id: str):
        self.request_id = request_id
        self.assignment_id = assignment_id
        super().__init__(
            f"Request {request_id} already has assignment {assignment_id}"
        )


class HistoryDriftError(PreconditionError):
    """Replaying the status history does not reproduce the stored status."""

    code: str = "HISTORY_DRIFT"

    def __init__(self, request_id: str, dimension: str, stored: str, replayed: str | None):
        self.request_id = request_id
        self.dimension = dimension
        self.stored = stored
        self.replayed = replayed
        super().__init__(
            f"Request {request_id}: stored {dimension} status {stored} "
            f"but history replays to {replayed}"
        )


# ---------------------------------------------------------------------------
# Conflict
# ---------------------------------------------------------------------------


class ConflictError(ShipmentKernelError):
    """Base exception for mutations that lost a race."""

    code: str = "CONFLICT"


class AlreadyAssignedError(ConflictError):
    """Warehouse side already carries a warehouse id."""

    code: str = "ALREADY_ASSIGNED"

    def __init__(self, request_id: str, side: str, existing_warehouse_id: str):
        self.request_id = request_id
        self.side = side
        self.existing_warehouse_id = existing_warehouse_id
        super().__init__(
            f"Request {request_id} already has {side} warehouse {existing_warehouse_id}"
        )


class VehicleUnavailableError(ConflictError):
    """Vehicle is not Available (or lost the compare-and-swap)."""

    code: str = "VEHICLE_UNAVAILABLE"

    def __init__(self, vehicle_id: str, status: str | None = None, reason: str | None = None):
        self.vehicle_id = vehicle_id
        self.status = status
        self.reason = reason
        detail = reason or f"status {status}"
        super().__init__(f"Vehicle {vehicle_id} is unavailable: {detail}")


class OptimisticLockError(ConflictError):
    """Concurrent modification detected through the version counter."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}"
        )


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class NotFoundError(ShipmentKernelError):
    """Base exception for unknown ids."""

    code: str = "NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class OfferNotFoundError(NotFoundError):
    code: str = "OFFER_NOT_FOUND"

    def __init__(self, request_id: str, offer_id: str):
        self.request_id = request_id
        self.offer_id = offer_id
        super().__init__(f"Offer {offer_id} not found on request {request_id}")


class DriverNotFoundError(NotFoundError):
    code: str = "DRIVER_NOT_FOUND"

    def __init__(self, driver_id: str):
        self.driver_id = driver_id
        super().__init__(f"Driver not found: {driver_id}")


class VehicleNotFoundError(NotFoundError):
    code: str = "VEHICLE_NOT_FOUND"

    def __init__(self, vehicle_id: str):
        self.vehicle_id = vehicle_id
        super().__init__(f"Vehicle not found: {vehicle_id}")


class WarehouseNotFoundError(NotFoundError):
    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: str):
        self.warehouse_id = warehouse_id
        super().__init__(f"Warehouse not found: {warehouse_id}")


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class StoreUnavailableError(ShipmentKernelError):
    """The durability layer could not be reached."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, cause: str, attempts: int = 1):
        self.operation = operation
        self.cause = cause
        self.attempts = attempts
        super().__init__(
            f"Store unavailable during {operation} after {attempts} attempt(s): {cause}"
        )


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditError(ShipmentKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ImmutabilityViolationError(ShipmentKernelError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
