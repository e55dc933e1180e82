"""
AuditorService: tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Appends immutable, hash-chained audit entries for every mutation the
    engine performs and validates the chain for tamper detection.

Architecture position:
    Kernel > Services: imperative shell, called by RequestService,
    LifecycleService, OfferService, MatcherService and ResourceService.

Invariants enforced:
    - Write-then-audit: ``record()`` runs inside the caller's transaction, so
      the mutation and its entry commit or roll back together.
    - Chain integrity: ``hash = H(resource_type | resource_id | action |
      payload_hash | prev_hash)``.  The genesis entry has ``prev_hash`` None.
    - Sequence monotonicity via SequenceService.
    - Append-only: AuditEntry rows are protected by ORM listeners.

Failure modes:
    - AuditChainBrokenError from ``validate_chain()``.
    - SQLAlchemy errors propagate from ``record()``; the facade rolls back the
      whole operation.
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from shipment_kernel.domain.clock import Clock, SystemClock
from shipment_kernel.domain.dtos import AuditEntryInfo
from shipment_kernel.exceptions import AuditChainBrokenError
from shipment_kernel.logging_config import get_logger
from shipment_kernel.models.audit_entry import AuditAction, AuditEntry
from shipment_kernel.services.sequence_service import SequenceService
from shipment_kernel.utils.hashing import hash_audit_entry, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTrace:
    """All audit entries of one resource, oldest first."""

    resource_type: str
    resource_id: str
    entries: tuple[AuditEntryInfo, ...]

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)


def _action_value(action: AuditAction | str) -> str:
    return action.value if isinstance(action, AuditAction) else action


class AuditorService:
    """
    Creates and validates audit entries.

    Non-goals:
        - Does NOT call ``session.commit()``: caller controls boundaries.
        - Does NOT retry; a failed append aborts the caller's operation.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEntry.hash)
            .order_by(AuditEntry.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        actor_id: str,
        actor_role: str,
        action: AuditAction,
        resource_type: str,
        resource_id: Any,
        changes: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """
        Append one entry to the chain.

        Pending writes of the caller are flushed first so the entry never
        precedes the mutation it describes.  The sequence allocation locks the
        counter before the previous hash is read, which serializes concurrent
        appenders.
        """
        self._session.flush()

        seq = self._sequence_service.next_value(SequenceService.AUDIT_ENTRY)
        prev_hash = self._get_last_hash()

        occurred_at = self._clock.now()
        payload = to_json_safe(changes or {})
        payload_hash = hash_payload(payload)
        entry_hash = hash_audit_entry(
            resource_type=resource_type,
            resource_id=str(resource_id),
            action=action.value,
            actor_id=actor_id,
            actor_role=actor_role,
            occurred_at=occurred_at,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        entry = AuditEntry(
            seq=seq,
            occurred_at=occurred_at,
            actor_id=actor_id,
            actor_role=actor_role,
            action=action.value,
            resource_type=resource_type,
            resource_id=str(resource_id),
            changes=payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_recorded",
            extra={
                "seq": seq,
                "action": action.value,
                "resource_type": resource_type,
                "resource_id": str(resource_id),
                "actor_id": actor_id,
            },
        )
        return entry

    def validate_chain(self) -> bool:
        """
        Walk every entry in seq order.

        Raises:
            AuditChainBrokenError: on the first entry whose stored hash
                differs from the recomputed one, or whose prev_hash does not
                link to its predecessor.
        """
        entries = self._session.execute(
            select(AuditEntry).order_by(AuditEntry.seq)
        ).scalars().all()

        previous_hash: str | None = None
        for entry in entries:
            if entry.prev_hash != previous_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "reason": "prev_hash_mismatch"},
                )
                raise AuditChainBrokenError(
                    entry.seq,
                    previous_hash or "None",
                    entry.prev_hash or "None",
                )

            expected = hash_audit_entry(
                resource_type=entry.resource_type,
                resource_id=entry.resource_id,
                action=_action_value(entry.action),
                actor_id=entry.actor_id,
                actor_role=entry.actor_role,
                occurred_at=entry.occurred_at,
                payload_hash=hash_payload(entry.changes or {}),
                prev_hash=entry.prev_hash,
            )
            if entry.hash != expected or entry.payload_hash != hash_payload(entry.changes or {}):
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "reason": "hash_mismatch"},
                )
                raise AuditChainBrokenError(entry.seq, expected, entry.hash)

            previous_hash = entry.hash

        logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
        return True

    def get_trace(self, resource_type: str, resource_id: Any) -> AuditTrace:
        entries = self._session.execute(
            select(AuditEntry)
            .where(AuditEntry.resource_type == resource_type)
            .where(AuditEntry.resource_id == str(resource_id))
            .order_by(AuditEntry.seq)
        ).scalars().all()
        return AuditTrace(
            resource_type=resource_type,
            resource_id=str(resource_id),
            entries=tuple(AuditEntryInfo.from_model(e) for e in entries),
        )
