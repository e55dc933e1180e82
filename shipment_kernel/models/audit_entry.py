"""
Module: shipment_kernel.models.audit_entry
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.

Invariants enforced:
    - Audit entries are append-only; no UPDATE or DELETE (ORM listener).
    - hash = H(resource_type | resource_id | action | payload_hash | prev_hash).
      Validated by AuditorService.validate_chain().
    - seq is monotonically increasing, allocated by SequenceService.

Audit relevance:
    AuditEntry IS the audit trail.  Every mutation of the lifecycle engine --
    request creation, status transition, offer submission/decision, warehouse
    binding, assignment, resource registration: produces exactly one entry
    per logical mutation.  Once a write succeeds, this is the only place
    "who changed what, when" is retained.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from shipment_kernel.db.base import Base


class AuditAction(str, Enum):
    """Kinds of auditable mutation.

    Contract: adding a member requires a recording call site in a service.
    """

    # Request lifecycle
    REQUEST_CREATED = "REQUEST_CREATED"

    # Commercial transitions (ORDER_<TARGET>)
    ORDER_ACCEPTED = "ORDER_ACCEPTED"
    ORDER_ACTION_NEEDED = "ORDER_ACTION_NEEDED"
    ORDER_IN_PROGRESS = "ORDER_IN_PROGRESS"
    ORDER_COMPLETED = "ORDER_COMPLETED"
    ORDER_REJECTED = "ORDER_REJECTED"
    ORDER_CANCELLED = "ORDER_CANCELLED"

    # Delivery transitions (DELIVERY_<TARGET>)
    DELIVERY_PICKED_UP_SOURCE = "DELIVERY_PICKED_UP_SOURCE"
    DELIVERY_WAREHOUSE_SOURCE_RECEIVED = "DELIVERY_WAREHOUSE_SOURCE_RECEIVED"
    DELIVERY_IN_TRANSIT = "DELIVERY_IN_TRANSIT"
    DELIVERY_WAREHOUSE_DESTINATION_RECEIVED = "DELIVERY_WAREHOUSE_DESTINATION_RECEIVED"
    DELIVERY_PICKED_UP_DESTINATION = "DELIVERY_PICKED_UP_DESTINATION"
    DELIVERY_DELIVERED = "DELIVERY_DELIVERED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    DELIVERY_CANCELLED = "DELIVERY_CANCELLED"

    # Negotiation
    OFFER_SUBMITTED = "OFFER_SUBMITTED"
    OFFER_REJECTED = "OFFER_REJECTED"
    COST_SET = "COST_SET"
    REQUEST_DECLINED_BY_COMPANY = "REQUEST_DECLINED_BY_COMPANY"

    # Resource binding
    WAREHOUSE_ASSIGNED = "WAREHOUSE_ASSIGNED"
    WAREHOUSE_UNASSIGNED = "WAREHOUSE_UNASSIGNED"
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    ASSIGNMENT_CLOSED = "ASSIGNMENT_CLOSED"

    # Resource registry
    RESOURCE_REGISTERED = "RESOURCE_REGISTERED"
    VEHICLE_RULE_SET = "VEHICLE_RULE_SET"
    VEHICLE_STATUS_CHANGED = "VEHICLE_STATUS_CHANGED"


class AuditEntry(Base):
    """
    One immutable, attributed record of a single mutation.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis entry.
    """

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_resource", "resource_type", "resource_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_actor", "actor_id"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[AuditAction] = mapped_column(String(60), nullable=False)
    # e.g. "ShipmentRequest", "CostOffer", "Vehicle", "Assignment"
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # field -> new value
    changes: Mapped[dict] = mapped_column(JSON, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry #{self.seq} {AuditAction(self.action).value} on {self.resource_type}:{self.resource_id}>"
