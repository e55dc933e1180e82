"""
BrokerageEngine: the public facade of the request lifecycle engine.

Responsibility:
    Exposes every engine operation, owns transaction boundaries and the
    per-request lock, binds log context, and maps store-level failures to
    the kernel's typed exceptions.  Callers receive frozen DTOs only.

Architecture position:
    Kernel > Services: outermost shell of the kernel.  Services and
    selectors below it never commit.

Invariants enforced:
    - One operation == one transaction: lock, open a fresh session, run the
      service, commit, release.  A caller blocked on the same request
      re-reads the committed state of the winner.
    - Locks are taken request first, then vehicle.
    - Any failure rolls back the mutation together with its audit entries.
    - Reads are retried on transient store errors; mutations never are.

Failure modes:
    - StaleDataError -> OptimisticLockError (another process changed the row).
    - OperationalError / InterfaceError on a mutation -> StoreUnavailableError.
    - Everything else propagates unchanged after rollback.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Sequence, TypeVar
from uuid import uuid4

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from shipment_kernel.domain.clock import Clock, SystemClock
from shipment_kernel.domain.dtos import (
    AddressInput,
    AssignmentInfo,
    AuditEntryInfo,
    AuditLogFilter,
    DriverAddressInput,
    DriverInfo,
    ItemInput,
    OfferInfo,
    RequestInfo,
    VehicleInfo,
    VehicleRuleInput,
    WarehouseInfo,
)
from shipment_kernel.domain.values import (
    CommercialStatus,
    DeliveryKind,
    DeliveryStatus,
    Side,
    VehicleStatus,
    WarehouseStatus,
    coerce_uuid,
)
from shipment_kernel.exceptions import (
    OptimisticLockError,
    ShipmentKernelError,
    StoreUnavailableError,
)
from shipment_kernel.logging_config import LogContext, get_logger
from shipment_kernel.selectors.audit_selector import DEFAULT_AUDIT_LIMIT, AuditSelector
from shipment_kernel.selectors.base import run_with_read_retry
from shipment_kernel.selectors.request_selector import RequestSelector
from shipment_kernel.selectors.resource_selector import ResourceSelector
from shipment_kernel.services.auditor_service import AuditorService, AuditTrace
from shipment_kernel.services.lifecycle_service import LifecycleService
from shipment_kernel.services.locking import RequestLockRegistry
from shipment_kernel.services.matcher_service import (
    DEFAULT_FAST_DELIVERY_MAX_DAYS,
    MatcherService,
)
from shipment_kernel.services.offer_service import (
    DEFAULT_OFFER_LIMIT,
    OfferService,
    rank_offers,
)
from shipment_kernel.services.request_service import RequestService
from shipment_kernel.services.resource_service import ResourceService

if TYPE_CHECKING:
    from shipment_config.schema import EngineConfig

logger = get_logger("services.engine")

T = TypeVar("T")


def _lock_key(value: Any) -> str | None:
    if value is None:
        return None
    key = coerce_uuid(value)
    return str(key) if key is not None else str(value)


class BrokerageEngine:
    """
    Request lifecycle and assignment engine.

    Usage:
        engine = BrokerageEngine.from_config(get_active_config())
        request = engine.create_request("client-1", source, destination, items)
        engine.submit_offer(request.id, "company-a", Decimal("120"))
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        locks: RequestLockRegistry | None = None,
        offer_limit: int = DEFAULT_OFFER_LIMIT,
        fast_delivery_max_days: int = DEFAULT_FAST_DELIVERY_MAX_DAYS,
        audit_list_limit: int = DEFAULT_AUDIT_LIMIT,
        read_retries: int = 3,
        retry_backoff_seconds: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._locks = locks or RequestLockRegistry()
        self.offer_limit = offer_limit
        self.fast_delivery_max_days = fast_delivery_max_days
        self.audit_list_limit = audit_list_limit
        self.read_retries = read_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        clock: Clock | None = None,
        create_schema: bool = True,
    ) -> BrokerageEngine:
        """Initialize the database engine from ``config`` and build a facade on it."""
        from shipment_kernel.db.engine import (
            create_tables,
            get_session_factory,
            init_engine_from_url,
        )
        from shipment_kernel.db.immutability import register_immutability_listeners
        from shipment_kernel.logging_config import configure_logging

        configure_logging(level=getattr(logging, config.log_level, logging.INFO))
        init_engine_from_url(config.database_url, echo=config.store.echo)
        register_immutability_listeners()
        if create_schema:
            create_tables()
        return cls(
            get_session_factory(),
            clock=clock,
            offer_limit=config.offer_limit,
            fast_delivery_max_days=config.fast_delivery_max_days,
            audit_list_limit=config.audit_list_limit,
            read_retries=config.read_retries,
            retry_backoff_seconds=config.retry_backoff_seconds,
        )

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _mutate(
        self,
        operation: str,
        work: Callable[[Session], T],
        actor_id: str | None = None,
        actor_role: str | None = None,
        request_id: Any = None,
        vehicle_id: Any = None,
    ) -> T:
        request_key = _lock_key(request_id)
        with LogContext.bind(
            correlation_id=str(uuid4()),
            request_id=request_key,
            actor_id=actor_id,
            actor_role=actor_role,
            operation=operation,
        ):
            t0 = time.monotonic()
            with self._locks.hold(request_key, _lock_key(vehicle_id)):
                session = self._session_factory()
                try:
                    result = work(session)
                    session.commit()
                except StaleDataError as exc:
                    session.rollback()
                    logger.warning("optimistic_lock_conflict", extra={"operation": operation})
                    raise OptimisticLockError("ShipmentRequest", request_key or "") from exc
                except (OperationalError, InterfaceError) as exc:
                    session.rollback()
                    logger.error("store_write_failed", extra={"operation": operation}, exc_info=True)
                    raise StoreUnavailableError(operation, str(exc.orig or exc)) from exc
                except ShipmentKernelError as exc:
                    session.rollback()
                    logger.info(
                        "operation_rejected",
                        extra={"operation": operation, "error_code": exc.code},
                    )
                    raise
                except Exception:
                    session.rollback()
                    logger.error("operation_failed", extra={"operation": operation}, exc_info=True)
                    raise
                finally:
                    session.close()

            logger.info(
                "operation_completed",
                extra={
                    "operation": operation,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _read(self, operation: str, work: Callable[[Session], T]) -> T:
        def attempt() -> T:
            session = self._session_factory()
            try:
                return work(session)
            finally:
                session.close()

        with LogContext.bind(operation=operation):
            return run_with_read_retry(
                operation,
                attempt,
                retries=self.read_retries,
                backoff_seconds=self.retry_backoff_seconds,
                sleep=self._sleep,
            )

    def _offers(self, session: Session) -> OfferService:
        return OfferService(session, self._clock, offer_limit=self.offer_limit)

    def _matcher(self, session: Session) -> MatcherService:
        return MatcherService(
            session, self._clock, fast_delivery_max_days=self.fast_delivery_max_days
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def create_request(
        self,
        client_id: str,
        source: AddressInput,
        destination: AddressInput,
        items: Sequence[ItemInput],
        delivery_kind: DeliveryKind | str = DeliveryKind.NORMAL,
    ) -> RequestInfo:
        return self._mutate(
            "create_request",
            lambda s: RequestService(s, self._clock).create_request(
                client_id, source, destination, items, delivery_kind
            ),
            actor_id=client_id,
            actor_role="client",
        )

    def get_request(self, request_id: Any) -> RequestInfo:
        return self._read("get_request", lambda s: RequestSelector(s).get(request_id))

    def list_requests(
        self,
        commercial_status: CommercialStatus | str | None = None,
        assigned_company_id: str | None = None,
        client_id: str | None = None,
    ) -> list[RequestInfo]:
        return self._read(
            "list_requests",
            lambda s: RequestSelector(s).list_requests(
                commercial_status, assigned_company_id, client_id
            ),
        )

    def company_queue(self, company_id: str) -> list[RequestInfo]:
        return self._read("company_queue", lambda s: RequestSelector(s).company_queue(company_id))

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition_commercial(
        self,
        request_id: Any,
        target: CommercialStatus | str,
        actor_id: str,
        actor_role: str,
        note: str | None = None,
    ) -> RequestInfo:
        return self._mutate(
            "transition_commercial",
            lambda s: LifecycleService(s, self._clock).transition_commercial(
                request_id, target, actor_id, actor_role, note
            ),
            actor_id=actor_id,
            actor_role=actor_role,
            request_id=request_id,
        )

    def transition_delivery(
        self,
        request_id: Any,
        target: DeliveryStatus | str,
        actor_id: str,
        actor_role: str,
        note: str | None = None,
    ) -> RequestInfo:
        return self._mutate(
            "transition_delivery",
            lambda s: LifecycleService(s, self._clock).transition_delivery(
                request_id, target, actor_id, actor_role, note
            ),
            actor_id=actor_id,
            actor_role=actor_role,
            request_id=request_id,
        )

    def verify_history(self, request_id: Any) -> bool:
        return self._read(
            "verify_history",
            lambda s: LifecycleService(s, self._clock).verify_history(request_id),
        )

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    def submit_offer(
        self,
        request_id: Any,
        company_id: str,
        cost: Any,
        comment: str = "",
    ) -> RequestInfo:
        return self._mutate(
            "submit_offer",
            lambda s: self._offers(s).submit_offer(request_id, company_id, cost, comment),
            actor_id=company_id,
            actor_role="company",
            request_id=request_id,
        )

    def select_offer(
        self,
        request_id: Any,
        offer_id: Any,
        actor_id: str,
        actor_role: str = "client",
    ) -> RequestInfo:
        return self._mutate(
            "select_offer",
            lambda s: self._offers(s).select_offer(request_id, offer_id, actor_id, actor_role),
            actor_id=actor_id,
            actor_role=actor_role,
            request_id=request_id,
        )

    def reject_offer(
        self,
        request_id: Any,
        offer_id: Any,
        actor_id: str,
        actor_role: str = "operator",
    ) -> RequestInfo:
        return self._mutate(
            "reject_offer",
            lambda s: self._offers(s).reject_offer(request_id, offer_id, actor_id, actor_role),
            actor_id=actor_id,
            actor_role=actor_role,
            request_id=request_id,
        )

    def reject_request(self, request_id: Any, company_id: str) -> RequestInfo:
        return self._mutate(
            "reject_request",
            lambda s: self._offers(s).reject_request(request_id, company_id),
            actor_id=company_id,
            actor_role="company",
            request_id=request_id,
        )

    def ranked_offers(self, request_id: Any) -> list[OfferInfo]:
        return rank_offers(self.get_request(request_id).cost_offers)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def assign_warehouse(
        self,
        request_id: Any,
        company_id: str,
        warehouse_id: Any,
        side: Side | str,
    ) -> RequestInfo:
        return self._mutate(
            "assign_warehouse",
            lambda s: self._matcher(s).assign_warehouse(request_id, company_id, warehouse_id, side),
            actor_id=company_id,
            actor_role="company",
            request_id=request_id,
        )

    def unassign_warehouse(
        self,
        request_id: Any,
        company_id: str,
        side: Side | str,
        actor_id: str | None = None,
    ) -> RequestInfo:
        return self._mutate(
            "unassign_warehouse",
            lambda s: self._matcher(s).unassign_warehouse(
                request_id, company_id, side, actor_id=actor_id
            ),
            actor_id=actor_id or company_id,
            actor_role="company",
            request_id=request_id,
        )

    def create_assignment(
        self,
        request_id: Any,
        driver_id: Any,
        vehicle_id: Any,
        actor_id: str,
        actor_role: str = "operator",
        estimated_delivery: datetime | None = None,
    ) -> AssignmentInfo:
        return self._mutate(
            "create_assignment",
            lambda s: self._matcher(s).create_assignment(
                request_id, driver_id, vehicle_id, actor_id, actor_role, estimated_delivery
            ),
            actor_id=actor_id,
            actor_role=actor_role,
            request_id=request_id,
            vehicle_id=vehicle_id,
        )

    def get_assignment(self, request_id: Any) -> AssignmentInfo | None:
        return self._read(
            "get_assignment", lambda s: ResourceSelector(s).get_assignment(request_id)
        )

    def candidate_drivers(self, request_id: Any) -> list[DriverInfo]:
        return self._read(
            "candidate_drivers", lambda s: self._matcher(s).candidate_drivers(request_id)
        )

    def candidate_vehicles(self, request_id: Any) -> list[VehicleInfo]:
        return self._read(
            "candidate_vehicles", lambda s: self._matcher(s).candidate_vehicles(request_id)
        )

    def candidate_warehouses(
        self,
        request_id: Any,
        side: Side | str,
        company_id: str | None = None,
    ) -> list[WarehouseInfo]:
        return self._read(
            "candidate_warehouses",
            lambda s: self._matcher(s).candidate_warehouses(request_id, side, company_id),
        )

    # ------------------------------------------------------------------
    # Resource registry
    # ------------------------------------------------------------------

    def register_driver(
        self,
        name: str,
        addresses: Sequence[DriverAddressInput],
        actor_id: str,
        actor_role: str = "operator",
        phone: str | None = None,
    ) -> DriverInfo:
        return self._mutate(
            "register_driver",
            lambda s: ResourceService(s, self._clock).register_driver(
                name, addresses, actor_id, actor_role, phone
            ),
            actor_id=actor_id,
            actor_role=actor_role,
        )

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
        return self._mutate(
            "register_vehicle",
            lambda s: ResourceService(s, self._clock).register_vehicle(
                name, plate_number, vehicle_type, country, actor_id, actor_role, rule
            ),
            actor_id=actor_id,
            actor_role=actor_role,
        )

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
        return self._mutate(
            "register_warehouse",
            lambda s: ResourceService(s, self._clock).register_warehouse(
                name,
                code,
                country,
                actor_id,
                actor_role,
                company_id=company_id,
                capacity=capacity,
                current_stock=current_stock,
                state=state,
                location=location,
                status=status,
            ),
            actor_id=actor_id,
            actor_role=actor_role,
        )

    def set_vehicle_rule(
        self,
        vehicle_id: Any,
        rule: VehicleRuleInput,
        actor_id: str,
        actor_role: str = "operator",
    ) -> VehicleInfo:
        return self._mutate(
            "set_vehicle_rule",
            lambda s: ResourceService(s, self._clock).set_vehicle_rule(
                vehicle_id, rule, actor_id, actor_role
            ),
            actor_id=actor_id,
            actor_role=actor_role,
            vehicle_id=vehicle_id,
        )

    def set_vehicle_status(
        self,
        vehicle_id: Any,
        status: VehicleStatus | str,
        actor_id: str,
        actor_role: str = "operator",
    ) -> VehicleInfo:
        return self._mutate(
            "set_vehicle_status",
            lambda s: ResourceService(s, self._clock).set_vehicle_status(
                vehicle_id, status, actor_id, actor_role
            ),
            actor_id=actor_id,
            actor_role=actor_role,
            vehicle_id=vehicle_id,
        )

    def get_vehicle(self, vehicle_id: Any) -> VehicleInfo:
        return self._read("get_vehicle", lambda s: ResourceSelector(s).get_vehicle(vehicle_id))

    def get_warehouse(self, warehouse_id: Any) -> WarehouseInfo:
        return self._read(
            "get_warehouse", lambda s: ResourceSelector(s).get_warehouse(warehouse_id)
        )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def list_audit_log(self, filters: AuditLogFilter | None = None) -> list[AuditEntryInfo]:
        return self._read(
            "list_audit_log",
            lambda s: AuditSelector(s).list_audit_log(filters, self.audit_list_limit),
        )

    def audit_trace(self, resource_type: str, resource_id: Any) -> AuditTrace:
        return self._read(
            "audit_trace",
            lambda s: AuditorService(s, self._clock).get_trace(resource_type, resource_id),
        )

    def validate_audit_chain(self) -> bool:
        return self._read(
            "validate_audit_chain",
            lambda s: AuditorService(s, self._clock).validate_chain(),
        )
