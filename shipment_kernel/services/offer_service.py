"""
OfferService: cost-offer negotiation between companies and a request.

Responsibility:
    Companies submit priced offers against open (commercial Pending)
    requests; the client or an operator selects one, which fixes the
    request's company and primary cost and drives commercial -> Accepted.
    Companies may also decline a request, removing it from their queue.

Architecture position:
    Kernel > Services: imperative shell.  Delegates the Accepted transition
    to LifecycleService so the state machine stays the only writer of
    commercial_status.

Invariants enforced:
    - At most ``offer_limit`` non-rejected offers per company per request.
    - At most one Accepted offer per request; selection happens under the
      per-request lock and re-checks for an Accepted offer.
    - An offer's status changes exactly once (ORM listener).
    - Losing offers are left Pending when another offer is selected.
"""

from __future__ import annotations

from typing import Any, Iterable

from shipment_kernel.domain.clock import Clock
from shipment_kernel.domain.dtos import OfferInfo, RequestInfo
from shipment_kernel.domain.values import (
    CommercialStatus,
    OfferStatus,
    coerce_uuid,
    parse_decimal,
)
from shipment_kernel.exceptions import (
    CompanyExcludedError,
    InvalidCostError,
    OfferLimitExceededError,
    OfferNotFoundError,
    OfferNotPendingError,
    RequestNotOpenError,
)
from shipment_kernel.logging_config import get_logger
from shipment_kernel.models.audit_entry import AuditAction
from shipment_kernel.models.offer import CostOffer
from shipment_kernel.models.request import CompanyExclusion, ShipmentRequest
from shipment_kernel.services.auditor_service import AuditorService
from shipment_kernel.services.base import BaseService
from shipment_kernel.services.lifecycle_service import LifecycleService

logger = get_logger("services.offer")

DEFAULT_OFFER_LIMIT = 3


def rank_offers(offers: Iterable[OfferInfo]) -> list[OfferInfo]:
    """Pending and Accepted offers, cheapest first, ties by submission time."""
    live = [o for o in offers if o.status != OfferStatus.REJECTED]
    return sorted(live, key=lambda o: (o.cost, o.created_at))


class OfferService(BaseService):
    """Offer submission, selection, rejection and company declines."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        offer_limit: int = DEFAULT_OFFER_LIMIT,
    ):
        super().__init__(session, clock, auditor)
        self.offer_limit = offer_limit
        self._lifecycle = LifecycleService(session, self.clock, self.auditor)

    def _require_open(self, request: ShipmentRequest, reason: str | None = None) -> None:
        status = CommercialStatus(request.commercial_status)
        if status != CommercialStatus.PENDING:
            raise RequestNotOpenError(str(request.id), status.value, reason)

    def _find_offer(self, request: ShipmentRequest, offer_id: Any) -> CostOffer:
        key = coerce_uuid(offer_id)
        for offer in request.cost_offers:
            if offer.id == key:
                return offer
        raise OfferNotFoundError(str(request.id), str(offer_id))

    def submit_offer(
        self,
        request_id: Any,
        company_id: str,
        cost: Any,
        comment: str = "",
        actor_id: str | None = None,
        actor_role: str = "company",
    ) -> RequestInfo:
        amount = parse_decimal(cost)
        if amount is None or amount <= 0:
            raise InvalidCostError(cost)

        request = self._get_request(request_id)
        self._require_open(request)
        if company_id in request.excluded_company_ids:
            raise CompanyExcludedError(str(request.id), company_id)

        live = [
            o for o in request.cost_offers
            if o.company_id == company_id and OfferStatus(o.status) != OfferStatus.REJECTED
        ]
        if len(live) >= self.offer_limit:
            logger.warning(
                "offer_limit_exceeded",
                extra={
                    "request_id": str(request.id),
                    "company_id": company_id,
                    "limit": self.offer_limit,
                },
            )
            raise OfferLimitExceededError(str(request.id), company_id, self.offer_limit)

        offer = CostOffer(
            request_id=request.id,
            position=max((o.position for o in request.cost_offers), default=-1) + 1,
            company_id=company_id,
            cost=amount,
            comment=comment or "",
            status=OfferStatus.PENDING.value,
            created_at=self.clock.now(),
        )
        request.cost_offers.append(offer)
        self._touch(request)
        self.session.flush()

        self.auditor.record(
            actor_id=actor_id or company_id,
            actor_role=actor_role,
            action=AuditAction.OFFER_SUBMITTED,
            resource_type="CostOffer",
            resource_id=offer.id,
            changes={
                "request_id": request.id,
                "company_id": company_id,
                "cost": amount,
                "comment": offer.comment,
            },
        )
        logger.info(
            "offer_submitted",
            extra={
                "request_id": str(request.id),
                "offer_id": str(offer.id),
                "company_id": company_id,
                "cost": str(amount),
            },
        )
        return RequestInfo.from_model(request)

    def select_offer(
        self,
        request_id: Any,
        offer_id: Any,
        actor_id: str,
        actor_role: str,
    ) -> RequestInfo:
        request = self._get_request(request_id)
        offer = self._find_offer(request, offer_id)
        self._require_open(request)
        if any(OfferStatus(o.status) == OfferStatus.ACCEPTED for o in request.cost_offers):
            raise RequestNotOpenError(
                str(request.id),
                CommercialStatus(request.commercial_status).value,
                "an offer has already been accepted",
            )
        if OfferStatus(offer.status) != OfferStatus.PENDING:
            raise OfferNotPendingError(str(offer.id), OfferStatus(offer.status).value)

        now = self.clock.now()
        offer.status = OfferStatus.ACCEPTED.value
        offer.decided_at = now
        offer.decided_by = actor_id
        request.assigned_company_id = offer.company_id
        request.primary_cost = offer.cost
        self._touch(request)

        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.COST_SET,
            resource_type="ShipmentRequest",
            resource_id=request.id,
            changes={
                "offer_id": offer.id,
                "assigned_company_id": offer.company_id,
                "primary_cost": offer.cost,
            },
        )
        logger.info(
            "offer_selected",
            extra={
                "request_id": str(request.id),
                "offer_id": str(offer.id),
                "company_id": offer.company_id,
            },
        )

        self._lifecycle.apply_commercial(
            request, CommercialStatus.ACCEPTED, actor_id, actor_role
        )
        return RequestInfo.from_model(request)

    def reject_offer(
        self,
        request_id: Any,
        offer_id: Any,
        actor_id: str,
        actor_role: str,
    ) -> RequestInfo:
        request = self._get_request(request_id)
        offer = self._find_offer(request, offer_id)
        if OfferStatus(offer.status) != OfferStatus.PENDING:
            raise OfferNotPendingError(str(offer.id), OfferStatus(offer.status).value)

        offer.status = OfferStatus.REJECTED.value
        offer.decided_at = self.clock.now()
        offer.decided_by = actor_id
        self._touch(request)

        self.auditor.record(
            actor_id=actor_id,
            actor_role=actor_role,
            action=AuditAction.OFFER_REJECTED,
            resource_type="CostOffer",
            resource_id=offer.id,
            changes={"request_id": request.id, "status": OfferStatus.REJECTED},
        )
        logger.info(
            "offer_rejected",
            extra={"request_id": str(request.id), "offer_id": str(offer.id)},
        )
        return RequestInfo.from_model(request)

    def reject_request(
        self,
        request_id: Any,
        company_id: str,
        actor_id: str | None = None,
        actor_role: str = "company",
    ) -> RequestInfo:
        """Add ``company_id`` to the request's exclusion set.  Idempotent."""
        request = self._get_request(request_id)
        if company_id in request.excluded_company_ids:
            return RequestInfo.from_model(request)

        request.exclusions.append(CompanyExclusion(
            request_id=request.id,
            company_id=company_id,
            created_at=self.clock.now(),
        ))
        self._touch(request)

        self.auditor.record(
            actor_id=actor_id or company_id,
            actor_role=actor_role,
            action=AuditAction.REQUEST_DECLINED_BY_COMPANY,
            resource_type="ShipmentRequest",
            resource_id=request.id,
            changes={"company_id": company_id},
        )
        logger.info(
            "request_declined_by_company",
            extra={"request_id": str(request.id), "company_id": company_id},
        )
        return RequestInfo.from_model(request)
