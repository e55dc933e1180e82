"""
Module: shipment_kernel.selectors.request_selector
Responsibility: Read-only access to shipment requests: single lookup,
    filtered listing, and a company's work queue.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - A company's queue holds the commercial Pending requests it has not
      declined, plus the requests assigned to it that are not yet terminal.
      Excluded requests never appear, whatever their status.
"""

from typing import Any

from sqlalchemy import and_, exists, not_, or_, select

from shipment_kernel.domain.dtos import RequestInfo
from shipment_kernel.domain.values import CommercialStatus, coerce_uuid
from shipment_kernel.exceptions import RequestNotFoundError
from shipment_kernel.models.request import CompanyExclusion, ShipmentRequest
from shipment_kernel.selectors.base import BaseSelector

_TERMINAL_COMMERCIAL = (
    CommercialStatus.COMPLETED.value,
    CommercialStatus.REJECTED.value,
    CommercialStatus.CANCELLED.value,
)


class RequestSelector(BaseSelector):
    def get(self, request_id: Any) -> RequestInfo:
        key = coerce_uuid(request_id)
        request = self.session.get(ShipmentRequest, key) if key is not None else None
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return RequestInfo.from_model(request)

    def list_requests(
        self,
        commercial_status: CommercialStatus | str | None = None,
        assigned_company_id: str | None = None,
        client_id: str | None = None,
    ) -> list[RequestInfo]:
        """Requests matching every given filter, oldest first."""
        stmt = select(ShipmentRequest)
        if commercial_status is not None:
            stmt = stmt.where(
                ShipmentRequest.commercial_status == CommercialStatus(commercial_status).value
            )
        if assigned_company_id is not None:
            stmt = stmt.where(ShipmentRequest.assigned_company_id == assigned_company_id)
        if client_id is not None:
            stmt = stmt.where(ShipmentRequest.client_id == client_id)
        stmt = stmt.order_by(ShipmentRequest.created_at, ShipmentRequest.id)
        return [RequestInfo.from_model(r) for r in self.session.execute(stmt).scalars()]

    def company_queue(self, company_id: str) -> list[RequestInfo]:
        declined = exists().where(
            and_(
                CompanyExclusion.request_id == ShipmentRequest.id,
                CompanyExclusion.company_id == company_id,
            )
        )
        stmt = (
            select(ShipmentRequest)
            .where(not_(declined))
            .where(
                or_(
                    ShipmentRequest.commercial_status == CommercialStatus.PENDING.value,
                    and_(
                        ShipmentRequest.assigned_company_id == company_id,
                        ShipmentRequest.commercial_status.not_in(_TERMINAL_COMMERCIAL),
                    ),
                )
            )
            .order_by(ShipmentRequest.created_at, ShipmentRequest.id)
        )
        return [RequestInfo.from_model(r) for r in self.session.execute(stmt).scalars()]
