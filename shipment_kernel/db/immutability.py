"""
ORM-Level Append-Only Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Audit entries are the only record of "who changed what, when".  Status
history rows are the replay log that must reproduce the stored status.
Neither may be edited after the fact, and requests are never physically
deleted (terminal requests are retained for audit).

SQLAlchemy fires mapper events before UPDATE/DELETE reaches the database.
The listeners below intercept them:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                 | Rule
--------------------|--------------------------------|-------------------------------
AuditEntry          | ALWAYS                         | no UPDATE, no DELETE
RequestStatusEvent  | ALWAYS                         | no UPDATE, no DELETE
CostOffer           | Once status left Pending       | status changes exactly once;
                    |                                | cost/company never change
ShipmentRequest     | ALWAYS (delete only)           | never physically deleted

===============================================================================
USAGE
===============================================================================

    from shipment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent

To temporarily disable (TESTS ONLY - simulating tampering):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from shipment_kernel.exceptions import ImmutabilityViolationError
from shipment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_audit_entry_update(mapper, connection, target):
    _block("AuditEntry", target, "UPDATE", "Audit entries are immutable and cannot be modified")


def _check_audit_entry_delete(mapper, connection, target):
    _block("AuditEntry", target, "DELETE", "Audit entries cannot be deleted")


def _check_status_event_update(mapper, connection, target):
    _block("RequestStatusEvent", target, "UPDATE", "Status history is append-only")


def _check_status_event_delete(mapper, connection, target):
    _block("RequestStatusEvent", target, "DELETE", "Status history is append-only")


def _check_request_delete(mapper, connection, target):
    _block("ShipmentRequest", target, "DELETE", "Requests are retained for audit")


def _check_cost_offer_update(mapper, connection, target):
    """
    Allow exactly one decision per offer.

    The only permitted change is status Pending -> Accepted/Rejected together
    with the decision metadata.  Cost, company and comment are frozen.
    """
    from shipment_kernel.models.offer import OfferStatus

    state = inspect(target)
    for frozen in ("cost", "company_id", "comment", "request_id"):
        if state.attrs[frozen].history.has_changes():
            _block("CostOffer", target, "UPDATE", f"Field '{frozen}' cannot change")

    status_history = state.attrs["status"].history
    if not status_history.has_changes():
        return
    previous = status_history.deleted[0] if status_history.deleted else None
    if previous is not None and OfferStatus(previous) != OfferStatus.PENDING:
        _block(
            "CostOffer",
            target,
            "UPDATE",
            f"Offer already decided ({OfferStatus(previous).value})",
        )


def _listeners():
    from shipment_kernel.models.audit_entry import AuditEntry
    from shipment_kernel.models.offer import CostOffer
    from shipment_kernel.models.request import RequestStatusEvent, ShipmentRequest

    return (
        (AuditEntry, "before_update", _check_audit_entry_update),
        (AuditEntry, "before_delete", _check_audit_entry_delete),
        (RequestStatusEvent, "before_update", _check_status_event_update),
        (RequestStatusEvent, "before_delete", _check_status_event_delete),
        (ShipmentRequest, "before_delete", _check_request_delete),
        (CostOffer, "before_update", _check_cost_offer_update),
    )


def register_immutability_listeners() -> None:
    """
    Register all append-only enforcement listeners (idempotent).

    Call after all models are imported but before any database operations.
    """
    for target, identifier, fn in _listeners():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove all append-only listeners.  FOR TESTING ONLY."""
    for target, identifier, fn in _listeners():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
    logger.debug("immutability_listeners_unregistered")
