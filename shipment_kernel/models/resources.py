"""
Module: shipment_kernel.models.resources
Responsibility: ORM persistence for the resources a request is matched to:
    drivers (with their country-tagged addresses), vehicles (with an optional
    capacity/category rule), and warehouses.
Architecture position: Kernel > Models.

Invariants enforced:
    - Vehicle.status is the single source of truth for availability.  The
      Available -> InUse flip is a compare-and-swap UPDATE issued by the
      MatcherService; nothing recomputes availability from assignments.
    - At most one VehicleRule per vehicle.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shipment_kernel.db.base import Base, TrackedBase, UUIDString
from shipment_kernel.domain.values import VehicleStatus, WarehouseStatus


class Driver(TrackedBase):
    """A driver who can be bound to a request in any country they have an address in."""

    __tablename__ = "drivers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)

    addresses: Mapped[list["DriverAddress"]] = relationship(
        back_populates="driver",
        order_by="DriverAddress.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def countries(self) -> list[str]:
        return [a.country for a in self.addresses]


class DriverAddress(Base):
    """One of a driver's addresses, tagged by country."""

    __tablename__ = "driver_addresses"

    __table_args__ = (
        UniqueConstraint("driver_id", "position", name="uq_driver_address_position"),
        Index("idx_driver_address_country", "country"),
    )

    driver_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("drivers.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    line: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False)

    driver: Mapped[Driver] = relationship(back_populates="addresses")


class Vehicle(TrackedBase):
    """A vehicle registered in one country."""

    __tablename__ = "vehicles"

    __table_args__ = (
        UniqueConstraint("plate_number", name="uq_vehicle_plate"),
        Index("idx_vehicle_country_status", "country", "status"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    plate_number: Mapped[str] = mapped_column(String(40), nullable=False)
    vehicle_type: Mapped[str] = mapped_column(String(40), nullable=False)
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[VehicleStatus] = mapped_column(
        String(20),
        default=VehicleStatus.AVAILABLE,
        nullable=False,
    )

    rule: Mapped[Optional["VehicleRule"]] = relationship(
        back_populates="vehicle",
        uselist=False,
        lazy="selectin",
    )


class VehicleRule(TrackedBase):
    """Capacity and category limits for one vehicle."""

    __tablename__ = "vehicle_rules"

    __table_args__ = (
        UniqueConstraint("vehicle_id", name="uq_vehicle_rule_vehicle"),
    )

    vehicle_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vehicles.id"), nullable=False
    )
    max_weight: Mapped[Decimal | None] = mapped_column(nullable=True)
    max_dimensions: Mapped[str | None] = mapped_column(String(60), nullable=True)
    allowed_categories: Mapped[list | None] = mapped_column(JSON, nullable=True)
    min_delivery_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_delivery_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    vehicle: Mapped[Vehicle] = relationship(back_populates="rule")


class Warehouse(TrackedBase):
    """A warehouse that can serve as a Self pickup or drop-off point."""

    __tablename__ = "warehouses"

    __table_args__ = (
        UniqueConstraint("code", name="uq_warehouse_code"),
        Index("idx_warehouse_country", "country"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(40), nullable=False)
    # Owning shipping company; None for platform-operated warehouses
    company_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[WarehouseStatus] = mapped_column(
        String(20),
        default=WarehouseStatus.ACTIVE,
        nullable=False,
    )

    last_assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
