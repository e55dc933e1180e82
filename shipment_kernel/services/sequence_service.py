"""
SequenceService: monotonic sequence allocation via counter rows.

Responsibility:
    Provides strictly monotonically increasing sequence numbers for audit
    entries.  Each named sequence is one row of ``sequence_counters``.

Architecture position:
    Kernel > Services: imperative shell infrastructure.
    Called by AuditorService.

Invariants enforced:
    - Allocation is a single ``UPDATE ... SET current_value = current_value + 1``
      followed by a read of the new value.  The UPDATE takes the row (SQLite:
      database) write lock, so every later read in the same transaction,
      including the auditor's read of the previous hash, happens after
      concurrent allocators have committed.  The aggregate-max-plus-one
      pattern is never used.
    - Transactional: a rolled-back allocation is returned to the counter.

Failure modes:
    - AuditError when the counter row is missing (ensure_sequences() was
      never run for this database).
"""

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.orm import Mapped, Session, mapped_column

from shipment_kernel.db.base import Base
from shipment_kernel.exceptions import AuditError
from shipment_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One named counter."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()``: caller controls boundaries.
    """

    AUDIT_ENTRY = "audit_entry"

    WELL_KNOWN = (AUDIT_ENTRY,)

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Allocate the next value of ``sequence_name``.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for this sequence.
            - The counter row stays write-locked until the caller's
              transaction ends.
        """
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise AuditError(f"Sequence '{sequence_name}' is not initialized")

        value = self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if the sequence does not exist."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def ensure_sequences(self) -> None:
        """Create any missing well-known counter rows at zero."""
        for name in self.WELL_KNOWN:
            if self.current_value(name) is None:
                self._session.add(SequenceCounter(name=name, current_value=0))
                logger.info("sequence_initialized", extra={"sequence_name": name})
        self._session.flush()
