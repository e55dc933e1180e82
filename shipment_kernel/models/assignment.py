"""
Module: shipment_kernel.models.assignment
Responsibility: ORM persistence for the binding of a driver and a vehicle to
    an accepted request.
Architecture position: Kernel > Models.

Invariants enforced:
    - One assignment per request (uq_assignment_request).
    - Created once by the MatcherService; afterwards only closed_at /
      closed_reason change, when the request completes or is cancelled.
    - Status is derived from the owning request, never stored.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shipment_kernel.db.base import Base, UUIDString


class Assignment(Base):
    __tablename__ = "assignments"

    __table_args__ = (
        UniqueConstraint("request_id", name="uq_assignment_request"),
        Index("idx_assignment_vehicle", "vehicle_id"),
        Index("idx_assignment_driver", "driver_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shipment_requests.id"), nullable=False
    )
    driver_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("drivers.id"), nullable=False
    )
    vehicle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vehicles.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    estimated_delivery: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Terminal status of the request that closed the assignment
    closed_reason: Mapped[str | None] = mapped_column(String(40), nullable=True)

    def __repr__(self) -> str:
        return f"<Assignment {self.id} request={self.request_id} vehicle={self.vehicle_id}>"
