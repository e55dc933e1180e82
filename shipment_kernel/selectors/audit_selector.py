"""
Module: shipment_kernel.selectors.audit_selector
Responsibility: Filtered, newest-first listing of the audit log.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - ``since`` is inclusive and ``until`` exclusive.
    - At most ``limit`` entries are returned (the filter's own limit, else the
      configured default).
"""

from sqlalchemy import select

from shipment_kernel.domain.dtos import AuditEntryInfo, AuditLogFilter
from shipment_kernel.models.audit_entry import AuditEntry
from shipment_kernel.selectors.base import BaseSelector

DEFAULT_AUDIT_LIMIT = 100


class AuditSelector(BaseSelector):
    def list_audit_log(
        self,
        filters: AuditLogFilter | None = None,
        default_limit: int = DEFAULT_AUDIT_LIMIT,
    ) -> list[AuditEntryInfo]:
        filters = filters or AuditLogFilter()
        stmt = select(AuditEntry)
        if filters.action is not None:
            action = filters.action.value if hasattr(filters.action, "value") else filters.action
            stmt = stmt.where(AuditEntry.action == action)
        if filters.actor_id is not None:
            stmt = stmt.where(AuditEntry.actor_id == filters.actor_id)
        if filters.actor_role is not None:
            stmt = stmt.where(AuditEntry.actor_role == filters.actor_role)
        if filters.resource_type is not None:
            stmt = stmt.where(AuditEntry.resource_type == filters.resource_type)
        if filters.resource_id is not None:
            stmt = stmt.where(AuditEntry.resource_id == str(filters.resource_id))
        if filters.since is not None:
            stmt = stmt.where(AuditEntry.occurred_at >= filters.since)
        if filters.until is not None:
            stmt = stmt.where(AuditEntry.occurred_at < filters.until)

        limit = filters.limit if filters.limit is not None else default_limit
        stmt = stmt.order_by(AuditEntry.seq.desc()).limit(max(limit, 0))
        return [AuditEntryInfo.from_model(e) for e in self.session.execute(stmt).scalars()]
