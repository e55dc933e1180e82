"""
Module: shipment_kernel.models.request
Responsibility: ORM persistence for shipment requests, their ordered items,
    their append-only status history, and the per-company exclusion set.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - commercial_status / delivery_status are the source of truth; the status
      events are the derived append-only log written in the same transaction.
    - version is a SQLAlchemy version counter: concurrent writers of the same
      request row lose with StaleDataError instead of overwriting each other.
    - Requests are never deleted (ORM listener in db/immutability.py).

Audit relevance:
    Every mutation of a request is paired with an AuditEntry written by the
    AuditorService inside the same transaction.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shipment_kernel.db.base import Base, TrackedBase, UUIDString
from shipment_kernel.domain.values import (
    CommercialStatus,
    DeliveryKind,
    DeliveryStatus,
    PickupMode,
    Side,
)


class ShipmentRequest(TrackedBase):
    """
    A client's request to ship items from a source to a destination.

    Guarantees:
        - Created at commercial Pending / delivery Pending.
        - Mutated only by the lifecycle, offer and matcher services.
    """

    __tablename__ = "shipment_requests"

    __table_args__ = (
        Index("idx_request_commercial_status", "commercial_status"),
        Index("idx_request_assigned_company", "assigned_company_id"),
        Index("idx_request_client", "client_id"),
    )

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Source address
    source_line: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_country: Mapped[str] = mapped_column(String(100), nullable=False)
    source_postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    source_latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    source_longitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    source_pickup_mode: Mapped[PickupMode] = mapped_column(String(20), nullable=False)

    # Destination address
    destination_line: Mapped[str | None] = mapped_column(String(255), nullable=True)
    destination_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    destination_state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    destination_country: Mapped[str] = mapped_column(String(100), nullable=False)
    destination_postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    destination_latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    destination_longitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    destination_pickup_mode: Mapped[PickupMode] = mapped_column(String(20), nullable=False)

    delivery_kind: Mapped[DeliveryKind] = mapped_column(String(20), nullable=False)

    commercial_status: Mapped[CommercialStatus] = mapped_column(
        String(30),
        default=CommercialStatus.PENDING,
        nullable=False,
    )
    delivery_status: Mapped[DeliveryStatus] = mapped_column(
        String(40),
        default=DeliveryStatus.PENDING,
        nullable=False,
    )

    primary_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    assigned_company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Client-facing pickup location; mirrors source_warehouse_id
    assigned_warehouse_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    source_warehouse_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    source_warehouse_assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    destination_warehouse_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    destination_warehouse_assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    items: Mapped[list["RequestItem"]] = relationship(
        back_populates="request",
        order_by="RequestItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    cost_offers: Mapped[list["CostOffer"]] = relationship(  # noqa: F821
        back_populates="request",
        order_by="CostOffer.position",
        lazy="selectin",
    )
    status_events: Mapped[list["RequestStatusEvent"]] = relationship(
        back_populates="request",
        order_by="RequestStatusEvent.seq",
        lazy="selectin",
    )
    exclusions: Mapped[list["CompanyExclusion"]] = relationship(
        back_populates="request",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ShipmentRequest {self.id} "
            f"{CommercialStatus(self.commercial_status).value}/"
            f"{DeliveryStatus(self.delivery_status).value}>"
        )

    # Side accessors -------------------------------------------------------

    def country_for(self, side: Side) -> str:
        return self.source_country if side == Side.SOURCE else self.destination_country

    def pickup_mode_for(self, side: Side) -> PickupMode:
        mode = self.source_pickup_mode if side == Side.SOURCE else self.destination_pickup_mode
        return PickupMode(mode)

    def warehouse_id_for(self, side: Side) -> UUID | None:
        return self.source_warehouse_id if side == Side.SOURCE else self.destination_warehouse_id

    def history(self, dimension: str) -> list["RequestStatusEvent"]:
        return [e for e in self.status_events if e.dimension == dimension]

    @property
    def excluded_company_ids(self) -> set[str]:
        return {e.company_id for e in self.exclusions}


class RequestItem(Base):
    """One line of the request's ordered item list."""

    __tablename__ = "request_items"

    __table_args__ = (
        UniqueConstraint("request_id", "position", name="uq_request_item_position"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shipment_requests.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    # Per-unit weight in kilograms
    weight: Mapped[Decimal] = mapped_column(nullable=False)
    # "LxWxH" in centimetres
    dimensions: Mapped[str] = mapped_column(String(60), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    request: Mapped[ShipmentRequest] = relationship(back_populates="items")


class RequestStatusEvent(Base):
    """
    Append-only record of one status change on one dimension.

    ``seq`` orders events within a request across both dimensions.
    """

    __tablename__ = "request_status_events"

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_status_event_seq"),
        Index("idx_status_event_request", "request_id", "dimension"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shipment_requests.id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    # "commercial" or "delivery"
    dimension: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped[ShipmentRequest] = relationship(back_populates="status_events")


class CompanyExclusion(Base):
    """A company declined the request; it disappears from that company's queue."""

    __tablename__ = "company_exclusions"

    __table_args__ = (
        UniqueConstraint("request_id", "company_id", name="uq_company_exclusion"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("shipment_requests.id"), nullable=False
    )
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped[ShipmentRequest] = relationship(back_populates="exclusions")
