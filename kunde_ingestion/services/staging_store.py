"""
StagingStore -- sole owner of batch, staging row and validation error state.

Responsibility:
    Creates batches and their rows, reads them back tenant-scoped, and
    applies every status change as an optimistic compare-and-swap on
    ``import_batches.status``.  The state machine decides; this module
    persists.

Architecture position:
    Ingestion > Services.  Called by ImportService and CommitService.  Never
    touches the target entity table.

Invariants enforced:
    - A status change is a single ``UPDATE ... WHERE id = :id AND status =
      :expected``.  Zero affected rows means another request moved the batch
      first; BatchConflictError is raised and nothing is written.
    - Fields that change together with a terminal status (committed_at,
      rolled_back_at, error_message, ...) are written in the same UPDATE, so
      the immutability listeners never see a later change to a frozen batch.
    - mapped_data is written only by the map stage; target_entity_id only by
      commit.

Failure modes:
    - BatchNotFoundError: unknown batch id or another tenant's batch.
    - BatchImmutableError: stage invoked on a failed or cancelled batch, or a
      changed request on a committed one.
    - BatchConflictError: predecessor state not reached, stage already
      running, or lost compare-and-swap race.
    - InvalidTransitionError: edge not in the transition table.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from kunde_ingestion.domain.state_machine import (
    AlreadyPast,
    Rejected,
    RejectReason,
    Stage,
    Transitioned,
    TransitionResult,
    begin_stage,
    finish_stage,
    is_terminal,
    transition,
)
from kunde_ingestion.domain.types import BatchStatus, Severity
from kunde_ingestion.models.staging import (
    ImportBatchModel,
    ImportStagingRowModel,
    ImportValidationErrorModel,
    to_json_safe,
)
from kunde_ingestion.validation.validator import BatchValidation
from kunde_kernel.domain.clock import Clock, SystemClock
from kunde_kernel.exceptions import (
    BatchConflictError,
    BatchImmutableError,
    BatchNotFoundError,
    InvalidTransitionError,
)
from kunde_kernel.logging_config import get_logger

logger = get_logger("ingestion.staging_store")


def raise_for_rejection(batch_id: UUID, result: Rejected) -> None:
    """Translate a rejected transition into the matching typed error."""
    status = result.status.value
    if result.reason == RejectReason.FROZEN:
        raise BatchImmutableError(str(batch_id), status)
    if result.reason == RejectReason.NOT_ALLOWED:
        raise InvalidTransitionError(str(batch_id), status, result.target.value)
    raise BatchConflictError(
        str(batch_id),
        status,
        tuple(s.value for s in result.expected),
        f"Batch {batch_id} is '{status}' ({result.reason.value}); "
        f"expected one of {', '.join(s.value for s in result.expected)}",
    )


class StagingStore:
    """Persistence for import batches, staging rows and validation errors."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def create_batch(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        file_name: str,
        file_size_bytes: int,
        file_hash: str,
        selected_sheet: str | None = None,
    ) -> ImportBatchModel:
        batch = ImportBatchModel(
            tenant_id=tenant_id,
            file_name=file_name,
            file_size_bytes=file_size_bytes,
            file_hash=file_hash,
            selected_sheet=selected_sheet,
            status=BatchStatus.UPLOADED.value,
            created_by_id=actor_id,
        )
        self._session.add(batch)
        self._session.flush()
        logger.info(
            "batch_created",
            extra={"batch_id": str(batch.id), "file_name": file_name, "file_size": file_size_bytes},
        )
        return batch

    def get_batch(self, batch_id: UUID, tenant_id: UUID | None = None) -> ImportBatchModel:
        batch = self._session.get(ImportBatchModel, batch_id)
        if batch is None or (tenant_id is not None and batch.tenant_id != tenant_id):
            raise BatchNotFoundError(str(batch_id))
        return batch

    def list_batches(
        self,
        tenant_id: UUID,
        status: BatchStatus | None = None,
        limit: int | None = None,
    ) -> list[ImportBatchModel]:
        stmt = select(ImportBatchModel).where(ImportBatchModel.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(ImportBatchModel.status == status.value)
        stmt = stmt.order_by(ImportBatchModel.created_at.desc(), ImportBatchModel.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.scalars(stmt))

    # -------------------------------------------------------------------------
    # Status changes
    # -------------------------------------------------------------------------

    def compare_and_set(
        self,
        batch: ImportBatchModel,
        expected: BatchStatus,
        target: BatchStatus,
        actor_id: UUID,
        **values: Any,
    ) -> None:
        """
        Move ``batch`` from ``expected`` to ``target`` in one guarded UPDATE.

        ``values`` are further batch columns written in the same statement.
        With ``expected == target`` this is a guarded field update.

        Raises:
            BatchConflictError: The persisted status was no longer ``expected``.
        """
        values = {k: to_json_safe(v) if isinstance(v, (dict, list)) else v for k, v in values.items()}
        result = self._session.execute(
            update(ImportBatchModel)
            .where(
                ImportBatchModel.id == batch.id,
                ImportBatchModel.status == expected.value,
            )
            .values(status=target.value, updated_by_id=actor_id, **values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            self._session.refresh(batch)
            logger.warning(
                "batch_transition_conflict",
                extra={
                    "batch_id": str(batch.id),
                    "expected": expected.value,
                    "actual": batch.status,
                    "target": target.value,
                },
            )
            raise BatchConflictError(str(batch.id), batch.status, expected.value)

        self._session.refresh(batch)
        logger.info(
            "batch_transitioned" if expected != target else "batch_updated",
            extra={
                "batch_id": str(batch.id),
                "from_status": expected.value,
                "to_status": target.value,
            },
        )

    def apply(
        self,
        batch: ImportBatchModel,
        result: TransitionResult,
        actor_id: UUID,
        **values: Any,
    ) -> bool:
        """
        Persist a state machine decision.

        Returns True when the status changed, False for ``AlreadyPast``.
        """
        if isinstance(result, Rejected):
            raise_for_rejection(batch.id, result)
        if isinstance(result, AlreadyPast):
            return False
        assert isinstance(result, Transitioned)
        self.compare_and_set(batch, result.from_status, result.to_status, actor_id, **values)
        return True

    def begin(
        self,
        batch: ImportBatchModel,
        stage: Stage,
        actor_id: UUID,
        rerun: bool = False,
    ) -> bool:
        """
        Enter ``stage``'s working state.

        Returns False when the batch is already at or past the stage target
        and the request does not ask for a re-run.  A re-run request on a
        batch that can no longer re-enter the stage is rejected.
        """
        current = BatchStatus(batch.status)
        result = begin_stage(current, stage, rerun)
        if isinstance(result, AlreadyPast) and rerun:
            if is_terminal(current):
                raise BatchImmutableError(str(batch.id), current.value)
            raise BatchConflictError(
                str(batch.id),
                current.value,
                tuple(s.value for s in stage.entry),
                f"Batch {batch.id} is '{current.value}' and can no longer repeat {stage.name}",
            )
        return self.apply(batch, result, actor_id)

    def finish(self, batch: ImportBatchModel, stage: Stage, actor_id: UUID, **values: Any) -> None:
        self.apply(batch, finish_stage(BatchStatus(batch.status), stage), actor_id, **values)

    def move(self, batch: ImportBatchModel, target: BatchStatus, actor_id: UUID, **values: Any) -> None:
        """Single-edge transition (fail, cancel, rollback)."""
        self.apply(batch, transition(BatchStatus(batch.status), target), actor_id, **values)

    def fail(
        self,
        batch: ImportBatchModel,
        actor_id: UUID,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.move(
            batch,
            BatchStatus.FAILED,
            actor_id,
            error_message=message,
            error_details=details,
        )
        logger.error(
            "batch_failed",
            extra={"batch_id": str(batch.id), "error_msg": message},
        )

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def add_rows(
        self,
        batch: ImportBatchModel,
        rows: Sequence[dict[str, Any]],
        row_numbers: Sequence[int],
        actor_id: UUID,
    ) -> int:
        models = [
            ImportStagingRowModel(
                batch_id=batch.id,
                tenant_id=batch.tenant_id,
                row_number=number,
                raw_data=to_json_safe(dict(row)),
                created_by_id=actor_id,
            )
            for number, row in zip(row_numbers, rows)
        ]
        self._session.add_all(models)
        self._session.flush()
        logger.debug("rows_staged", extra={"batch_id": str(batch.id), "row_count": len(models)})
        return len(models)

    def rows(self, batch_id: UUID, limit: int | None = None) -> list[ImportStagingRowModel]:
        stmt = (
            select(ImportStagingRowModel)
            .where(ImportStagingRowModel.batch_id == batch_id)
            .order_by(ImportStagingRowModel.row_number)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.scalars(stmt))

    def row_count(self, batch_id: UUID) -> int:
        return self._session.execute(
            select(func.count())
            .select_from(ImportStagingRowModel)
            .where(ImportStagingRowModel.batch_id == batch_id)
        ).scalar_one()

    def write_mapped(
        self,
        rows: Iterable[ImportStagingRowModel],
        results: dict[int, tuple[dict[str, Any], tuple[str, ...]]],
        actor_id: UUID,
    ) -> int:
        """Store mapped data; clears any earlier validation outcome of the row."""
        count = 0
        for row in rows:
            mapped, notes = results[row.row_number]
            row.mapped_data = to_json_safe(mapped)
            row.mapping_notes = list(notes) or None
            row.validation_status = "pending"
            row.completeness_score = None
            row.duplicate_of_row = None
            row.duplicate_of_entity_id = None
            row.duplicate_info = None
            row.updated_by_id = actor_id
            row.errors.clear()
            count += 1
        self._session.flush()
        return count

    def write_validation(
        self,
        batch: ImportBatchModel,
        validation: BatchValidation,
        actor_id: UUID,
    ) -> None:
        """Replace row statuses and validation errors with a fresh result."""
        by_number = {r.row_number: r for r in validation.rows}
        for row in self.rows(batch.id):
            outcome = by_number.get(row.row_number)
            row.errors.clear()
            if outcome is None:
                row.validation_status = "pending"
                continue
            row.validation_status = outcome.status.value
            row.completeness_score = outcome.completeness_score
            row.duplicate_of_row = outcome.duplicate_of_row
            row.duplicate_of_entity_id = outcome.duplicate_of_entity_id
            row.duplicate_info = to_json_safe(outcome.duplicate_info)
            row.updated_by_id = actor_id
            for position, issue in enumerate(outcome.issues):
                row.errors.append(
                    ImportValidationErrorModel.from_issue(issue, row, position, actor_id)
                )
        self._session.flush()
        logger.info(
            "validation_stored",
            extra={
                "batch_id": str(batch.id),
                "valid": validation.valid_count,
                "warning": validation.warning_count,
                "invalid": validation.error_count,
            },
        )

    def errors(
        self,
        batch_id: UUID,
        severity: Severity | None = None,
    ) -> list[ImportValidationErrorModel]:
        stmt = select(ImportValidationErrorModel).where(
            ImportValidationErrorModel.batch_id == batch_id
        )
        if severity is not None:
            stmt = stmt.where(ImportValidationErrorModel.severity == severity.value)
        stmt = stmt.order_by(
            ImportValidationErrorModel.row_number, ImportValidationErrorModel.position
        )
        return list(self._session.scalars(stmt))

    def delete_rows(self, batch: ImportBatchModel) -> int:
        """Remove staging rows and errors; the batch itself is retained."""
        batch_id = batch.id
        self._session.execute(
            delete(ImportValidationErrorModel)
            .where(ImportValidationErrorModel.batch_id == batch_id)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(
            delete(ImportStagingRowModel)
            .where(ImportStagingRowModel.batch_id == batch_id)
            .execution_options(synchronize_session=False)
        )
        for obj in list(self._session.identity_map.values()):
            if isinstance(obj, (ImportStagingRowModel, ImportValidationErrorModel)) and obj.batch_id == batch_id:
                self._session.expunge(obj)
        self._session.expire(batch, ["rows"])
        logger.info("rows_deleted", extra={"batch_id": str(batch_id), "row_count": result.rowcount})
        return result.rowcount
