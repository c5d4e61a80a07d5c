"""
ORM-level immutability enforcement for the import tables.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below check the rules and raise
ImmutabilityViolationError, which aborts the flush:

Entity               | When immutable                        | Rule
---------------------|---------------------------------------|------------------------------
ImportAuditLogModel  | ALWAYS                                | append-only trail
ImportBatchModel     | status failed / cancelled             | terminal, frozen
ImportBatchModel     | status committed                      | only rollback may change it,
                     |                                       | and only to cancelled
ImportBatchModel     | ALWAYS (delete)                       | retained for audit

Status changes made by the staging store's compare-and-swap UPDATE are
bulk statements and are decided by the state machine, which has no edge out
of failed or cancelled.

Usage:

    from kunde_ingestion.models.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from kunde_kernel.exceptions import ImmutabilityViolationError
from kunde_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_FROZEN = ("failed", "cancelled")
_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_audit_log_update(mapper, connection, target):
    _blocked(
        "ImportAuditLog", target.id, "UPDATE",
        "Audit entries are immutable and cannot be modified",
    )


def _check_audit_log_delete(mapper, connection, target):
    _blocked("ImportAuditLog", target.id, "DELETE", "Audit entries cannot be deleted")


def _changed_columns(target) -> list[str]:
    insp = inspect(target)
    changed = []
    for attr in insp.mapper.column_attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if insp.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


def _check_batch_update(mapper, connection, target):
    """
    Block changes to frozen batches.

    Logic:
        1. status changing FROM failed/cancelled: block.
        2. status changing FROM committed to anything but cancelled: block.
        3. status unchanged and failed/cancelled/committed: block any column change.
    """
    status_history = get_history(target, "status")

    if status_history.deleted:
        old_status = status_history.deleted[0]
        new_status = status_history.added[0] if status_history.added else None
        if old_status in _FROZEN:
            _blocked(
                "ImportBatch", target.id, "UPDATE",
                f"Batch is {old_status} and can no longer be modified",
                field="status",
            )
        if old_status == "committed" and new_status != "cancelled":
            _blocked(
                "ImportBatch", target.id, "UPDATE",
                "A committed batch can only be rolled back",
                field="status",
            )
        return

    if target.status in _FROZEN or target.status == "committed":
        changed = _changed_columns(target)
        if changed:
            _blocked(
                "ImportBatch", target.id, "UPDATE",
                f"Cannot modify field '{changed[0]}' on {target.status} batch",
                field=changed[0],
            )


def _check_batch_delete(mapper, connection, target):
    _blocked("ImportBatch", target.id, "DELETE", "Import batches are retained for audit")


def register_immutability_listeners():
    """Register all immutability listeners. Idempotent."""
    from kunde_ingestion.models.audit import ImportAuditLogModel
    from kunde_ingestion.models.staging import ImportBatchModel

    for target, name, fn in _listeners(ImportAuditLogModel, ImportBatchModel):
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def _listeners(audit_model, batch_model):
    return (
        (audit_model, "before_update", _check_audit_log_update),
        (audit_model, "before_delete", _check_audit_log_delete),
        (batch_model, "before_update", _check_batch_update),
        (batch_model, "before_delete", _check_batch_delete),
    )


def unregister_immutability_listeners():
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that need to violate the rules on purpose.
    """
    from kunde_ingestion.models.audit import ImportAuditLogModel
    from kunde_ingestion.models.staging import ImportBatchModel

    for target, name, fn in _listeners(ImportAuditLogModel, ImportBatchModel):
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
