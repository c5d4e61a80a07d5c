"""
Commit service: validated staging rows -> kunde entities, and rollback.

Promotes the rows of a validated batch through the entity repository with a
SAVEPOINT per row inside one SAVEPOINT for the whole batch.  Every row gets
an outcome (created / updated / skipped / error) and, when it produced one,
the entity id written back to its staging row.

Contract:
    - Dry run and real commit share ``_resolve``: the same row resolution
      decides the action of every row.  A dry run stops before any
      repository write, staging row update or status change.
    - Row-scoped failures (storage constraint violations, conversion errors,
      a vanished update target) roll back that row's SAVEPOINT, are recorded
      as a CommitError on the row, and the batch continues.
    - Systemic failures (StorageUnavailableError, connection-level
      SQLAlchemy errors) roll back the batch SAVEPOINT, move the batch to
      ``failed`` with the error recorded, and return ``success=False``.
    - Before-update snapshots of every overwritten entity are stored in the
      commit audit entry; rollback restores from them.
    - Enrichment hooks run after a row's creation with a timeout; failures
      are logged and counted, never raised.

Failure modes:
    - BatchConflictError / BatchImmutableError from the state machine.
    - RollbackNotAllowedError for rollback of a batch that is not committed
      (including a second rollback).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from kunde_config import get_active_config
from kunde_config.schema import PipelineConfig
from kunde_ingestion.domain.mapping_config import MappingConfig, MappingOptions
from kunde_ingestion.domain.state_machine import (
    COMMIT,
    AlreadyPast,
    Rejected,
    begin_stage,
)
from kunde_ingestion.domain.types import (
    AuditAction,
    BatchStatus,
    CommitError,
    CommitResult,
    DuplicateAction,
    RollbackResult,
    RowAction,
    RowOutcome,
    RowStatus,
)
from kunde_ingestion.enrichment.hooks import EnrichmentHook, EnrichmentRunner
from kunde_ingestion.models.staging import (
    ImportBatchModel,
    ImportStagingRowModel,
    ImportValidationErrorModel,
    to_json_safe,
)
from kunde_ingestion.repositories.base import EntityRepository
from kunde_ingestion.repositories.kunde import SqlKundeRepository
from kunde_ingestion.services.audit_log import ImportAuditLog
from kunde_ingestion.services.staging_store import StagingStore, raise_for_rejection
from kunde_ingestion.validation.validator import BatchValidator, RowValidation
from kunde_kernel.domain.clock import Clock, SystemClock
from kunde_kernel.exceptions import (
    EntityNotFoundError,
    KundeKernelError,
    RollbackNotAllowedError,
    StorageUnavailableError,
)
from kunde_kernel.logging_config import LogContext, get_logger

logger = get_logger("ingestion.commit_service")

ROW_ERRORS = (IntegrityError, ValueError, EntityNotFoundError)
SYSTEMIC_ERRORS = (StorageUnavailableError, OperationalError, InterfaceError)

_COMMIT_ELIGIBLE = frozenset({RowStatus.VALID.value, RowStatus.WARNING.value})


# -----------------------------------------------------------------------------
# Row resolution
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class _Plan:
    """Resolved action for one row before anything is written."""

    row: ImportStagingRowModel
    data: dict[str, Any]
    action: RowAction
    target_id: UUID | None = None
    reason: str | None = None
    error_code: str | None = None


class _SystemicFailure(Exception):
    def __init__(self, row_number: int, cause: Exception):
        self.row_number = row_number
        self.cause = cause
        super().__init__(str(cause))


def _row_key(row_id: UUID | str) -> str:
    return str(row_id)


def _error_code(exc: Exception) -> str:
    if isinstance(exc, KundeKernelError):
        return exc.code
    if isinstance(exc, IntegrityError):
        return "CONSTRAINT_VIOLATION"
    if isinstance(exc, (OperationalError, InterfaceError)):
        return "STORAGE_UNAVAILABLE"
    if isinstance(exc, ValueError):
        return "INVALID_VALUE"
    return "COMMIT_ERROR"


def _options(batch: ImportBatchModel) -> MappingOptions:
    if batch.validation_options:
        return MappingOptions.from_dict(batch.validation_options)
    return MappingConfig.from_dict(batch.mapping_config or {}).options


def _resolve(
    row: ImportStagingRowModel,
    data: dict[str, Any],
    status: str,
    duplicate_of_row: int | None,
    duplicate_of_entity_id: UUID | None,
    options: MappingOptions,
    excluded: frozenset[str],
    produced: Mapping[int, UUID | None],
) -> _Plan:
    """
    Decide one row's action.

    ``produced`` maps earlier row numbers to the entity they created or
    updated (None when the entity is only planned, as in a dry run); rows
    that produced nothing are absent.
    """
    if _row_key(row.id) in excluded:
        return _Plan(row, data, RowAction.SKIPPED, reason="excluded")
    if status not in _COMMIT_ELIGIBLE:
        return _Plan(row, data, RowAction.SKIPPED, reason=f"status_{status}")

    duplicate = duplicate_of_entity_id is not None or (
        duplicate_of_row is not None and duplicate_of_row in produced
    )
    if not duplicate:
        return _Plan(row, data, RowAction.CREATED)

    if options.duplicate_action == DuplicateAction.SKIP:
        return _Plan(row, data, RowAction.SKIPPED, reason="duplicate")
    if options.duplicate_action == DuplicateAction.ERROR:
        return _Plan(
            row, data, RowAction.ERROR,
            reason="Raden er et duplikat og duplikathandling er 'error'",
            error_code="DUPLICATE_ENTRY",
        )

    target = duplicate_of_entity_id
    if target is None and duplicate_of_row is not None:
        target = produced[duplicate_of_row]
    return _Plan(row, data, RowAction.UPDATED, target_id=target, reason="duplicate")


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------


class CommitService:
    """Commits validated batches to the kunde store and reverts them."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        repository: EntityRepository | None = None,
        enrichment: EnrichmentRunner | None = None,
        config: PipelineConfig | None = None,
        enrichment_hooks: Sequence[EnrichmentHook] = (),
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._repository = repository
        if enrichment is None:
            settings = self._config.imports
            enrichment = EnrichmentRunner(
                enrichment_hooks,
                timeout_seconds=settings.enrichment_timeout_seconds,
                max_workers=settings.worker_pool_size,
            )
        self._enrichment = enrichment
        self._staging = StagingStore(session, self._clock)
        self._audit = ImportAuditLog(session, self._clock)

    @property
    def enrichment(self) -> EnrichmentRunner:
        return self._enrichment

    def _repo(self, batch: ImportBatchModel) -> EntityRepository:
        if self._repository is not None:
            return self._repository
        return SqlKundeRepository(self._session, batch_id=batch.id)

    # -------------------------------------------------------------------------
    # Commit
    # -------------------------------------------------------------------------

    def commit(
        self,
        batch_id: UUID,
        actor_id: UUID,
        dry_run: bool = False,
        excluded_row_ids: Iterable[UUID | str] = (),
        row_edits: Mapping[UUID | str, Mapping[str, Any]] | None = None,
        tenant_id: UUID | None = None,
    ) -> CommitResult:
        """
        Commit (or preview) a validated batch.

        ``excluded_row_ids`` and the keys of ``row_edits`` are staging row
        ids.  Edited rows are merged over their mapped data and re-validated
        before resolution; a real commit stores the edit on the row.

        Committing a batch that is already committed returns the stored
        outcome without writing anything.
        """
        with LogContext.bind(correlation_id=batch_id, actor_id=actor_id, producer="ingestion"):
            started = self._clock.now()
            batch = self._staging.get_batch(batch_id, tenant_id)
            decision = begin_stage(BatchStatus(batch.status), COMMIT)
            if isinstance(decision, Rejected):
                raise_for_rejection(batch.id, decision)
            if isinstance(decision, AlreadyPast):
                return self._stored_result(batch, dry_run)

            excluded = frozenset(_row_key(r) for r in excluded_row_ids)
            edits = {_row_key(k): dict(v) for k, v in (row_edits or {}).items()}
            options = _options(batch)
            rows = self._staging.rows(batch.id)
            repo = self._repo(batch)

            logger.info(
                "batch_commit_started",
                extra={
                    "dry_run": dry_run,
                    "row_count": len(rows),
                    "excluded": len(excluded),
                    "edited": len(edits),
                },
            )

            if dry_run:
                plans = self._plan_all(batch, rows, edits, excluded, options, repo, actor_id=None)
                return self._result(batch, plans, {}, [], started, dry_run=True)

            self._staging.begin(batch, COMMIT, actor_id)
            outer = self._session.begin_nested()
            try:
                plans = self._plan_all(batch, rows, edits, excluded, options, repo, actor_id=actor_id)
                applied, snapshots, errors, enrichment_failures = self._apply(
                    batch, plans, repo, actor_id
                )
            except _SystemicFailure as failure:
                outer.rollback()
                return self._fail(batch, actor_id, failure, started)
            outer.commit()

            result = self._result(batch, plans, applied, errors, started, dry_run=False)
            summary = {
                "created": result.created,
                "updated": result.updated,
                "skipped": result.skipped,
                "failed": result.failed,
                "enrichment_failures": enrichment_failures,
                "duration_ms": result.duration_ms,
            }
            previous = {"status": BatchStatus.VALIDATED.value, "entities": snapshots}
            self._staging.finish(
                batch,
                COMMIT,
                actor_id,
                committed_at=result.completed_at,
                committed_by=actor_id,
                commit_summary=summary,
            )
            self._audit.record(
                batch.tenant_id,
                batch.id,
                AuditAction.COMMIT,
                actor_id,
                previous_state=previous,
                new_state={
                    "status": batch.status,
                    "created_ids": [str(i) for i in result.created_ids],
                    "updated_ids": [str(i) for i in result.updated_ids],
                },
                affected_entity_ids=list(result.created_ids) + list(result.updated_ids),
                details=summary,
            )
            logger.info("batch_committed", extra={"commit_summary": summary})
            return result

    def _plan_all(
        self,
        batch: ImportBatchModel,
        rows: list[ImportStagingRowModel],
        edits: dict[str, dict[str, Any]],
        excluded: frozenset[str],
        options: MappingOptions,
        repo: EntityRepository,
        actor_id: UUID | None,
    ) -> list[_Plan]:
        """Resolve every row; edits are stored only when ``actor_id`` is given."""
        revalidated = self._revalidate(batch, rows, edits, repo)
        if actor_id is not None and revalidated:
            self._store_edits(rows, edits, revalidated, actor_id)

        plans: list[_Plan] = []
        produced: dict[int, UUID | None] = {}
        for row in rows:
            key = _row_key(row.id)
            if key in revalidated:
                data, validation = revalidated[key]
                status = validation.status.value
                dup_row, dup_entity = None, validation.duplicate_of_entity_id
            else:
                data = dict(row.mapped_data or {})
                status = row.validation_status
                dup_row, dup_entity = row.duplicate_of_row, row.duplicate_of_entity_id
            plan = _resolve(row, data, status, dup_row, dup_entity, options, excluded, produced)
            plans.append(plan)
            if plan.action == RowAction.CREATED:
                produced[row.row_number] = None
            elif plan.action == RowAction.UPDATED:
                produced[row.row_number] = plan.target_id
        return plans

    def _revalidate(
        self,
        batch: ImportBatchModel,
        rows: list[ImportStagingRowModel],
        edits: dict[str, dict[str, Any]],
        repo: EntityRepository,
    ) -> dict[str, tuple[dict[str, Any], RowValidation]]:
        """
        Merge edits over mapped data and validate the edited rows.

        Edited rows are checked on their own against the configured rules and
        existing entities; their in-batch duplicate flag is cleared.
        """
        edited = [r for r in rows if _row_key(r.id) in edits]
        if not edited:
            return {}
        config = MappingConfig.from_dict(batch.mapping_config or {}).with_options(_options(batch))
        merged = {
            r.row_number: {**(r.mapped_data or {}), **edits[_row_key(r.id)]} for r in edited
        }
        outcome = BatchValidator(config, clock=self._clock).validate(
            sorted(merged.items()), repo.list_existing(batch.tenant_id)
        )
        by_number = {v.row_number: v for v in outcome.rows}
        return {
            _row_key(r.id): (merged[r.row_number], by_number[r.row_number])
            for r in edited
        }

    def _store_edits(
        self,
        rows: list[ImportStagingRowModel],
        edits: dict[str, dict[str, Any]],
        revalidated: dict[str, tuple[dict[str, Any], RowValidation]],
        actor_id: UUID,
    ) -> None:
        for row in rows:
            key = _row_key(row.id)
            if key not in revalidated:
                continue
            data, validation = revalidated[key]
            row.mapped_data = to_json_safe(data)
            row.validation_status = validation.status.value
            row.duplicate_of_row = None
            row.duplicate_of_entity_id = validation.duplicate_of_entity_id
            row.duplicate_info = validation.duplicate_info
            row.completeness_score = validation.completeness_score
            row.updated_by_id = actor_id
            row.errors.clear()
            for position, issue in enumerate(validation.issues):
                row.errors.append(
                    ImportValidationErrorModel.from_issue(issue, row, position, actor_id)
                )
            logger.info("row_edited", extra={"row_number": row.row_number, "fields": sorted(edits[key])})
        self._session.flush()

    def _apply(
        self,
        batch: ImportBatchModel,
        plans: list[_Plan],
        repo: EntityRepository,
        actor_id: UUID,
    ) -> tuple[dict[str, RowOutcome], dict[str, Any], list[CommitError], int]:
        """Write every planned row; one SAVEPOINT per row."""
        applied: dict[str, RowOutcome] = {}
        snapshots: dict[str, Any] = {}
        errors: list[CommitError] = []
        enrichment_failures = 0
        produced: dict[int, UUID] = {}
        tenant_id = batch.tenant_id

        for plan in plans:
            row = plan.row
            key = _row_key(row.id)

            if plan.action in (RowAction.SKIPPED, RowAction.ERROR):
                if plan.action == RowAction.ERROR:
                    error = CommitError(row.row_number, row.id, plan.reason or "", plan.error_code or "COMMIT_ERROR")
                    errors.append(error)
                    row.commit_error = error.to_dict()
                row.action_taken = plan.action.value
                row.target_entity_id = None
                applied[key] = RowOutcome(row.id, row.row_number, plan.action, reason=plan.reason)
                continue

            target = plan.target_id
            if plan.action == RowAction.UPDATED and target is None:
                target = produced.get(row.duplicate_of_row) if row.duplicate_of_row else None

            savepoint = self._session.begin_nested()
            try:
                if plan.action == RowAction.UPDATED and target is not None:
                    snapshot = repo.snapshot(tenant_id, target)
                    if snapshot is None:
                        raise EntityNotFoundError("Kunde", str(target))
                    repo.update(tenant_id, target, plan.data, actor_id)
                    snapshots.setdefault(str(target), snapshot)
                    action, entity_id = RowAction.UPDATED, target
                else:
                    entity_id = repo.create(tenant_id, plan.data, actor_id)
                    action = RowAction.CREATED
                savepoint.commit()
            except ROW_ERRORS as exc:
                savepoint.rollback()
                error = CommitError(
                    row.row_number,
                    row.id,
                    str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
                    _error_code(exc),
                    {"error_type": type(exc).__name__},
                )
                errors.append(error)
                row.action_taken = RowAction.ERROR.value
                row.target_entity_id = None
                row.commit_error = error.to_dict()
                applied[key] = RowOutcome(row.id, row.row_number, RowAction.ERROR, reason=error.error)
                logger.warning(
                    "row_commit_failed",
                    extra={
                        "row_number": row.row_number,
                        "error_type": type(exc).__name__,
                        "error_msg": error.error,
                    },
                )
                continue
            except SYSTEMIC_ERRORS as exc:
                savepoint.rollback()
                logger.error(
                    "batch_commit_aborted",
                    extra={"row_number": row.row_number, "error_type": type(exc).__name__},
                )
                raise _SystemicFailure(row.row_number, exc) from exc

            produced[row.row_number] = entity_id
            row.action_taken = action.value
            row.target_entity_id = entity_id
            row.commit_error = None
            applied[key] = RowOutcome(row.id, row.row_number, action, entity_id, plan.reason)
            logger.debug(
                "row_committed",
                extra={"row_number": row.row_number, "action": action.value, "entity_id": str(entity_id)},
            )

            if action == RowAction.CREATED and self._enrichment.enabled:
                enrichment_failures += len(self._enrichment.run(entity_id, plan.data))

        self._session.flush()
        return applied, snapshots, errors, enrichment_failures

    def _fail(
        self,
        batch: ImportBatchModel,
        actor_id: UUID,
        failure: _SystemicFailure,
        started,
    ) -> CommitResult:
        cause = failure.cause
        message = f"Commit aborted at row {failure.row_number}: {type(cause).__name__}"
        details = {
            "row_number": failure.row_number,
            "error_type": type(cause).__name__,
            "error": str(cause).splitlines()[0] if str(cause) else "",
            "code": _error_code(cause),
        }
        self._staging.fail(batch, actor_id, message, details)
        self._audit.record(
            batch.tenant_id,
            batch.id,
            AuditAction.FAIL,
            actor_id,
            previous_state={"status": BatchStatus.COMMITTING.value},
            new_state={"status": batch.status},
            details=details,
        )
        completed = self._clock.now()
        rows = self._staging.rows(batch.id)
        return CommitResult(
            batch_id=batch.id,
            success=False,
            dry_run=False,
            total_processed=len(rows),
            created=0,
            updated=0,
            skipped=0,
            failed=0,
            started_at=started,
            completed_at=completed,
            duration_ms=int((completed - started).total_seconds() * 1000),
            error_message=message,
        )

    def _result(
        self,
        batch: ImportBatchModel,
        plans: list[_Plan],
        applied: dict[str, RowOutcome],
        errors: list[CommitError],
        started,
        dry_run: bool,
    ) -> CommitResult:
        outcomes: list[RowOutcome] = []
        for plan in plans:
            outcome = applied.get(_row_key(plan.row.id))
            if outcome is None:
                outcome = RowOutcome(
                    plan.row.id, plan.row.row_number, plan.action, plan.target_id, plan.reason
                )
            outcomes.append(outcome)
        if dry_run:
            errors = [
                CommitError(p.row.row_number, p.row.id, p.reason or "", p.error_code or "COMMIT_ERROR")
                for p in plans
                if p.action == RowAction.ERROR
            ]
        completed = self._clock.now()
        return self._build_result(batch.id, outcomes, errors, started, completed, dry_run)

    @staticmethod
    def _build_result(
        batch_id: UUID,
        outcomes: list[RowOutcome],
        errors: list[CommitError],
        started,
        completed,
        dry_run: bool,
    ) -> CommitResult:
        def count(action: RowAction) -> int:
            return sum(1 for o in outcomes if o.action == action)

        return CommitResult(
            batch_id=batch_id,
            success=True,
            dry_run=dry_run,
            total_processed=len(outcomes),
            created=count(RowAction.CREATED),
            updated=count(RowAction.UPDATED),
            skipped=count(RowAction.SKIPPED),
            failed=count(RowAction.ERROR),
            created_ids=tuple(o.entity_id for o in outcomes if o.action == RowAction.CREATED and o.entity_id),
            updated_ids=tuple(
                dict.fromkeys(
                    o.entity_id for o in outcomes if o.action == RowAction.UPDATED and o.entity_id
                )
            ),
            errors=tuple(errors),
            outcomes=tuple(outcomes),
            started_at=started,
            completed_at=completed,
            duration_ms=int((completed - started).total_seconds() * 1000) if started and completed else 0,
        )

    def _stored_result(self, batch: ImportBatchModel, dry_run: bool) -> CommitResult:
        """Outcome of an earlier commit, rebuilt from the staging rows."""
        outcomes: list[RowOutcome] = []
        errors: list[CommitError] = []
        for row in self._staging.rows(batch.id):
            if row.action_taken is None:
                continue
            action = RowAction(row.action_taken)
            outcomes.append(RowOutcome(row.id, row.row_number, action, row.target_entity_id))
            if row.commit_error:
                errors.append(
                    CommitError(
                        row.row_number,
                        row.id,
                        row.commit_error.get("error", ""),
                        row.commit_error.get("code", "COMMIT_ERROR"),
                        row.commit_error.get("details"),
                    )
                )
        logger.info("batch_commit_replayed", extra={"status": batch.status})
        return self._build_result(
            batch.id, outcomes, errors, batch.committed_at, batch.committed_at, dry_run
        )

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def rollback(self, batch_id: UUID, actor_id: UUID, tenant_id: UUID | None = None) -> RollbackResult:
        """
        Revert a committed batch.

        Created entities are deleted; updated entities are restored from the
        snapshots in the commit audit entry.  The batch moves to
        ``cancelled`` with rolled_back_at / rolled_back_by set.
        """
        with LogContext.bind(correlation_id=batch_id, actor_id=actor_id, producer="ingestion"):
            batch = self._staging.get_batch(batch_id, tenant_id)
            if batch.status != BatchStatus.COMMITTED.value:
                reason = "batch has already been rolled back" if batch.rolled_back_at else None
                logger.warning("rollback_rejected", extra={"status": batch.status})
                raise RollbackNotAllowedError(str(batch.id), batch.status, reason)

            commit_entry = self._audit.latest_for_batch(batch.id, AuditAction.COMMIT)
            snapshots: dict[str, Any] = {}
            if commit_entry is not None and commit_entry.previous_state:
                snapshots = dict(commit_entry.previous_state.get("entities") or {})

            rows = self._staging.rows(batch.id)
            created = [
                r.target_entity_id for r in rows
                if r.action_taken == RowAction.CREATED.value and r.target_entity_id
            ]
            created_set = {str(e) for e in created}
            updated = list(
                dict.fromkeys(
                    r.target_entity_id for r in rows
                    if r.action_taken == RowAction.UPDATED.value and r.target_entity_id
                )
            )

            repo = self._repo(batch)
            warnings: list[str] = []
            restored = 0
            deleted = 0
            savepoint = self._session.begin_nested()
            try:
                for entity_id in updated:
                    if str(entity_id) in created_set:
                        continue
                    snapshot = snapshots.get(str(entity_id))
                    if snapshot is None:
                        warnings.append(f"no snapshot for updated entity {entity_id}")
                        continue
                    try:
                        repo.restore(batch.tenant_id, entity_id, snapshot, actor_id)
                        restored += 1
                    except EntityNotFoundError:
                        warnings.append(f"updated entity {entity_id} no longer exists")
                for entity_id in created:
                    if repo.delete(batch.tenant_id, entity_id):
                        deleted += 1
                    else:
                        warnings.append(f"created entity {entity_id} was already deleted")
            except Exception:
                savepoint.rollback()
                logger.error("batch_rollback_failed", exc_info=True)
                raise
            savepoint.commit()

            completed = self._clock.now()
            self._staging.move(
                batch,
                BatchStatus.CANCELLED,
                actor_id,
                rolled_back_at=completed,
                rolled_back_by=actor_id,
            )
            details = f"{deleted} kunder slettet, {restored} kunder gjenopprettet"
            self._audit.record(
                batch.tenant_id,
                batch.id,
                AuditAction.ROLLBACK,
                actor_id,
                previous_state={"status": BatchStatus.COMMITTED.value},
                new_state={"status": batch.status},
                affected_entity_ids=[*created, *updated],
                details={"deleted": deleted, "restored": restored, "warnings": warnings},
            )
            for warning in warnings:
                logger.warning("rollback_warning", extra={"warning": warning})
            logger.info("batch_rolled_back", extra={"deleted": deleted, "restored": restored})
            return RollbackResult(
                batch_id=batch.id,
                success=True,
                records_reverted=deleted + restored,
                records_deleted=deleted,
                records_restored=restored,
                details=details,
                completed_at=completed,
                warnings=tuple(warnings),
            )
