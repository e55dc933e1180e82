"""
Module: shipment_kernel.models.offer
Responsibility: ORM persistence for cost offers submitted by shipping
    companies against an open request.
Architecture position: Kernel > Models.

Invariants enforced:
    - cost > 0 (service validation).
    - status changes exactly once, Pending -> Accepted | Rejected (ORM
      listener in db/immutability.py).
    - At most one Accepted offer per request (OfferService under the
      per-request lock).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shipment_kernel.db.base import Base, UUIDString
from shipment_kernel.domain.values import OfferStatus


class CostOffer(Base):
    """A priced bid from one company on one request."""

    __tablename__ = "cost_offers"

    __table_args__ = (
        UniqueConstraint("request_id", "position", name="uq_offer_position"),
        Index("idx_offer_request_company", "request_id", "company_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shipment_requests.id"), nullable=False
    )
    # Submission order within the request
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cost: Mapped[Decimal] = mapped_column(nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[OfferStatus] = mapped_column(
        String(20),
        default=OfferStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    request: Mapped["ShipmentRequest"] = relationship(back_populates="cost_offers")  # noqa: F821

    def __repr__(self) -> str:
        return f"<CostOffer {self.id} {self.company_id} {self.cost} {OfferStatus(self.status).value}>"


__all__ = ["CostOffer", "OfferStatus"]
