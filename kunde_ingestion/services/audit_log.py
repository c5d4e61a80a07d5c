"""
ImportAuditLog -- append-only, hash-chained trail of batch state changes.

Responsibility:
    Writes one ``ImportAuditLogModel`` entry per batch state change (upload,
    parse, map, confirm_mapping, validate, commit, rollback, cancel, fail)
    carrying before/after state, affected entity ids and free-form details.
    Validates the chain for tamper detection.

Invariants enforced:
    - seq strictly increasing across the table.
    - hash = H(batch_id | action | payload_hash | prev_hash); the first entry
      has prev_hash None.
    - Entries are never modified or deleted (ORM listeners in
      kunde_ingestion.models.immutability).

Failure modes:
    - AuditChainBrokenError from validate_chain() on a recomputed hash
      mismatch or a broken prev_hash link.
    - IntegrityError on a concurrent seq race; the caller's transaction
      rolls back and the request can be retried.

Non-goals:
    - Does NOT call ``session.commit()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from kunde_ingestion.domain.types import AuditAction
from kunde_ingestion.models.audit import ImportAuditLogModel
from kunde_ingestion.models.staging import to_json_safe
from kunde_kernel.domain.clock import Clock, SystemClock
from kunde_kernel.exceptions import AuditChainBrokenError
from kunde_kernel.logging_config import get_logger
from kunde_kernel.utils.hashing import hash_audit_entry, hash_payload

logger = get_logger("ingestion.audit_log")


@dataclass(frozen=True)
class AuditEntry:
    """Read view of one audit log row."""

    seq: int
    batch_id: UUID
    action: AuditAction
    actor_id: UUID
    occurred_at: datetime
    previous_state: dict[str, Any] | None
    new_state: dict[str, Any] | None
    affected_entity_ids: tuple[str, ...]
    details: dict[str, Any] | None
    hash: str


def _payload(
    previous_state: dict[str, Any] | None,
    new_state: dict[str, Any] | None,
    affected_entity_ids: Sequence[str],
    details: dict[str, Any] | None,
) -> dict[str, Any]:
    return {
        "previous_state": previous_state,
        "new_state": new_state,
        "affected_entity_ids": list(affected_entity_ids),
        "details": details,
    }


class ImportAuditLog:
    """Creates and validates hash-chained audit entries for import batches."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _last_entry(self) -> ImportAuditLogModel | None:
        return self._session.execute(
            select(ImportAuditLogModel).order_by(ImportAuditLogModel.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _next_seq(self) -> int:
        current = self._session.execute(select(func.max(ImportAuditLogModel.seq))).scalar()
        return (current or 0) + 1

    def record(
        self,
        tenant_id: UUID,
        batch_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        previous_state: dict[str, Any] | None = None,
        new_state: dict[str, Any] | None = None,
        affected_entity_ids: Sequence[UUID | str] = (),
        details: dict[str, Any] | None = None,
    ) -> ImportAuditLogModel:
        """
        Append one entry to the chain.

        Postconditions:
            - The entry is flushed with ``seq`` one above the current maximum
              and ``prev_hash`` equal to the hash of the current last entry.
        """
        seq = self._next_seq()
        last = self._last_entry()
        prev_hash = last.hash if last else None

        previous_state = to_json_safe(previous_state)
        new_state = to_json_safe(new_state)
        details = to_json_safe(details)
        affected = [str(e) for e in affected_entity_ids]

        payload_hash = hash_payload(_payload(previous_state, new_state, affected, details))
        entry_hash = hash_audit_entry(
            batch_id=str(batch_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        entry = ImportAuditLogModel(
            seq=seq,
            tenant_id=tenant_id,
            batch_id=batch_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            previous_state=previous_state,
            new_state=new_state,
            affected_entity_ids=affected or None,
            details=details,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "batch_id": str(batch_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return entry

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def entries_for_batch(self, batch_id: UUID) -> list[AuditEntry]:
        """All entries of one batch in chain order."""
        models = self._session.execute(
            select(ImportAuditLogModel)
            .where(ImportAuditLogModel.batch_id == batch_id)
            .order_by(ImportAuditLogModel.seq)
        ).scalars().all()
        return [
            AuditEntry(
                seq=m.seq,
                batch_id=m.batch_id,
                action=AuditAction(m.action),
                actor_id=m.actor_id,
                occurred_at=m.occurred_at,
                previous_state=m.previous_state,
                new_state=m.new_state,
                affected_entity_ids=tuple(m.affected_entity_ids or ()),
                details=m.details,
                hash=m.hash,
            )
            for m in models
        ]

    def latest_for_batch(self, batch_id: UUID, action: AuditAction) -> AuditEntry | None:
        entries = [e for e in self.entries_for_batch(batch_id) if e.action == action]
        return entries[-1] if entries else None

    # -------------------------------------------------------------------------
    # Chain validation
    # -------------------------------------------------------------------------

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If a stored hash or link does not match.
        """
        entries = self._session.execute(
            select(ImportAuditLogModel).order_by(ImportAuditLogModel.seq)
        ).scalars().all()

        if not entries:
            return True

        if entries[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": entries[0].seq})
            raise AuditChainBrokenError(str(entries[0].id), "None", entries[0].prev_hash)

        for i, entry in enumerate(entries):
            payload_hash = hash_payload(
                _payload(
                    entry.previous_state,
                    entry.new_state,
                    entry.affected_entity_ids or (),
                    entry.details,
                )
            )
            if payload_hash != entry.payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(str(entry.id), payload_hash, entry.payload_hash)

            expected_hash = hash_audit_entry(
                batch_id=str(entry.batch_id),
                action=entry.action,
                payload_hash=entry.payload_hash,
                prev_hash=entry.prev_hash,
            )
            if entry.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                raise AuditChainBrokenError(str(entry.id), expected_hash, entry.hash)

            if i > 0:
                expected_prev = entries[i - 1].hash
                if entry.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": entry.seq})
                    raise AuditChainBrokenError(
                        str(entry.id), expected_prev, entry.prev_hash or "None"
                    )

        logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
        return True
