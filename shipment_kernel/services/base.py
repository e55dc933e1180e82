"""
BaseService: abstract base for all kernel services.

Responsibility:
    Common constructor and session-handling contract for every mutating
    service.  Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()``: never ``session.commit()``.

Architecture position:
    Kernel > Services: imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's transaction
      and never commit or roll back.  The BrokerageEngine facade (or a test
      harness) owns commit/rollback, which is what makes write-then-audit
      atomic.
"""

from abc import ABC
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from shipment_kernel.domain.clock import Clock, SystemClock
from shipment_kernel.domain.values import coerce_uuid
from shipment_kernel.exceptions import RequestNotFoundError
from shipment_kernel.models.request import RequestStatusEvent, ShipmentRequest
from shipment_kernel.services.auditor_service import AuditorService


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle.
        - Does NOT provide list queries: those belong in
          ``shipment_kernel/selectors/``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.auditor = auditor or AuditorService(session, self.clock)

    def _get_request(self, request_id: Any, for_update: bool = True) -> ShipmentRequest:
        """
        Load a request, row-locked where the dialect supports it.

        Raises:
            RequestNotFoundError: unknown or malformed id.
        """
        key = coerce_uuid(request_id)
        if key is None:
            raise RequestNotFoundError(str(request_id))
        stmt = select(ShipmentRequest).where(ShipmentRequest.id == key)
        if for_update:
            stmt = stmt.with_for_update()
        request = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    def _append_status_event(
        self,
        request: ShipmentRequest,
        dimension: str,
        status: str,
        actor_id: str,
        actor_role: str,
        note: str | None = None,
    ) -> RequestStatusEvent:
        # seq is per request; the request lock and version counter serialize writers
        next_seq = max((e.seq for e in request.status_events), default=0) + 1
        event = RequestStatusEvent(
            request_id=request.id,
            seq=next_seq,
            dimension=dimension,
            status=status,
            changed_at=self.clock.now(),
            changed_by=actor_id,
            role=actor_role,
            note=note,
        )
        request.status_events.append(event)
        return event

    def _touch(self, request: ShipmentRequest) -> None:
        request.updated_at = self.clock.now()
