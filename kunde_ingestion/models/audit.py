"""
Module: kunde_ingestion.models.audit
Responsibility: ORM persistence for the import audit trail.
Architecture position: Ingestion > Models.  May import from kunde_kernel.db only.

Invariants enforced:
    - Audit entries are append-only; no UPDATE or DELETE (ORM listeners in
      kunde_ingestion.models.immutability).
    - Hash chain integrity: hash = H(batch_id | action | payload_hash |
      prev_hash).  Validated by ImportAuditLog.validate_chain().
    - seq is monotonically increasing across the table.

Audit relevance:
    Every batch state change writes one entry carrying the before and after
    state.  Commit entries carry the pre-update snapshot of every entity the
    commit overwrote; rollback restores from those snapshots.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from kunde_kernel.db.base import Base, UTCDateTime, UUIDString


class ImportAuditLogModel(Base):
    """
    One append-only audit entry for an import batch.

    Guarantees:
        - seq is unique and increasing.
        - prev_hash is None only for the first entry of the table.
    """

    __tablename__ = "import_audit_log"

    __table_args__ = (
        Index("ix_import_audit_log_batch", "batch_id", "seq"),
        Index("ix_import_audit_log_tenant", "tenant_id", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    batch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    previous_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    affected_entity_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<ImportAuditLog #{self.seq} {self.action} batch={self.batch_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
