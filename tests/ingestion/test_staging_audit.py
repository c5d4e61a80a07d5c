"""
Tests for the staging store and the hash-chained import audit log.

Covers tenant-scoped reads, guarded status changes, row storage and chain
validation including tamper detection.
"""

from uuid import uuid4

import pytest
from sqlalchemy import update

from kunde_ingestion.domain.state_machine import MAP, PARSE
from kunde_ingestion.domain.types import AuditAction, BatchStatus
from kunde_ingestion.models.audit import ImportAuditLogModel
from kunde_ingestion.services.audit_log import ImportAuditLog
from kunde_ingestion.services.staging_store import StagingStore
from kunde_kernel.exceptions import (
    AuditChainBrokenError,
    BatchConflictError,
    BatchImmutableError,
    BatchNotFoundError,
    InvalidTransitionError,
)
from kunde_kernel.utils.hashing import hash_audit_entry


@pytest.fixture
def store(session, deterministic_clock):
    return StagingStore(session, deterministic_clock)


@pytest.fixture
def audit(session, deterministic_clock):
    return ImportAuditLog(session, deterministic_clock)


@pytest.fixture
def batch(store, test_tenant_id, test_actor_id):
    return store.create_batch(test_tenant_id, test_actor_id, "kunder.csv", 120, "a" * 64)


def _parsed(store, batch, actor_id, rows=({"Navn": "A"}, {"Navn": "B"})):
    store.begin(batch, PARSE, actor_id)
    store.add_rows(batch, list(rows), list(range(1, len(rows) + 1)), actor_id)
    store.finish(batch, PARSE, actor_id, headers=["Navn"], row_count=len(rows))


class TestBatchReads:
    def test_created_as_uploaded(self, batch, test_tenant_id):
        assert batch.status == BatchStatus.UPLOADED.value
        dto = batch.to_dto()
        assert dto.tenant_id == test_tenant_id
        assert dto.status == BatchStatus.UPLOADED

    def test_tenant_scoped_lookup(self, store, batch, test_tenant_id):
        assert store.get_batch(batch.id, test_tenant_id) is batch
        with pytest.raises(BatchNotFoundError):
            store.get_batch(batch.id, uuid4())
        with pytest.raises(BatchNotFoundError):
            store.get_batch(uuid4())

    def test_list_filters_tenant_and_status(self, store, batch, test_tenant_id, test_actor_id):
        store.create_batch(uuid4(), test_actor_id, "annen.csv", 1, "b" * 64)
        second = store.create_batch(test_tenant_id, test_actor_id, "andre.csv", 1, "c" * 64)
        store.move(second, BatchStatus.CANCELLED, test_actor_id)

        assert {b.id for b in store.list_batches(test_tenant_id)} == {batch.id, second.id}
        cancelled = store.list_batches(test_tenant_id, BatchStatus.CANCELLED)
        assert [b.id for b in cancelled] == [second.id]
        assert len(store.list_batches(test_tenant_id, limit=1)) == 1


class TestStatusChanges:
    def test_stage_begin_and_finish(self, store, batch, test_actor_id):
        assert store.begin(batch, PARSE, test_actor_id) is True
        assert batch.status == BatchStatus.PARSING.value
        store.finish(batch, PARSE, test_actor_id, row_count=7)
        assert batch.status == BatchStatus.PARSED.value
        assert batch.row_count == 7
        assert batch.updated_by_id == test_actor_id

    def test_stage_already_past_is_noop(self, store, batch, test_actor_id):
        _parsed(store, batch, test_actor_id)
        assert store.begin(batch, PARSE, test_actor_id) is False
        assert batch.status == BatchStatus.PARSED.value

    def test_stage_in_progress_conflicts(self, store, batch, test_actor_id):
        store.begin(batch, PARSE, test_actor_id)
        with pytest.raises(BatchConflictError) as exc_info:
            store.begin(batch, PARSE, test_actor_id)
        assert exc_info.value.current_status == BatchStatus.PARSING.value

    def test_rerun_beyond_entry_conflicts(self, store, batch, test_actor_id):
        _parsed(store, batch, test_actor_id)
        with pytest.raises(BatchConflictError):
            store.begin(batch, PARSE, test_actor_id, rerun=True)

    def test_map_needs_parsed_batch(self, store, batch, test_actor_id):
        with pytest.raises(BatchConflictError):
            store.begin(batch, MAP, test_actor_id)

    def test_edge_not_in_table(self, store, batch, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            store.move(batch, BatchStatus.COMMITTED, test_actor_id)

    def test_frozen_batch(self, store, batch, test_actor_id):
        store.fail(batch, test_actor_id, "ødelagt fil", {"code": "INPUT_FILE_INVALID"})
        assert batch.status == BatchStatus.FAILED.value
        assert batch.error_message == "ødelagt fil"
        assert batch.error_details == {"code": "INPUT_FILE_INVALID"}
        with pytest.raises(BatchImmutableError):
            store.begin(batch, PARSE, test_actor_id)
        with pytest.raises(BatchImmutableError):
            store.move(batch, BatchStatus.CANCELLED, test_actor_id)

    def test_lost_compare_and_swap(self, store, batch, test_actor_id, captured_logs):
        with pytest.raises(BatchConflictError) as exc_info:
            store.compare_and_set(batch, BatchStatus.PARSED, BatchStatus.MAPPING, test_actor_id)
        assert exc_info.value.current_status == BatchStatus.UPLOADED.value
        assert batch.status == BatchStatus.UPLOADED.value
        assert any(r["message"] == "batch_transition_conflict" for r in captured_logs())

    def test_guarded_field_update(self, store, batch, test_actor_id):
        store.compare_and_set(
            batch, BatchStatus.UPLOADED, BatchStatus.UPLOADED, test_actor_id,
            format_change={"detected": False},
        )
        assert batch.status == BatchStatus.UPLOADED.value
        assert batch.format_change == {"detected": False}


class TestRows:
    def test_rows_in_row_number_order(self, store, batch, test_actor_id):
        store.add_rows(batch, [{"Navn": "C"}, {"Navn": "A"}], [5, 2], test_actor_id)
        rows = store.rows(batch.id)
        assert [r.row_number for r in rows] == [2, 5]
        assert rows[0].raw_data == {"Navn": "A"}
        assert rows[0].validation_status == "pending"
        assert store.row_count(batch.id) == 2
        assert len(store.rows(batch.id, limit=1)) == 1

    def test_write_mapped(self, store, batch, test_actor_id):
        _parsed(store, batch, test_actor_id)
        rows = store.rows(batch.id)
        results = {1: ({"navn": "A"}, ()), 2: ({"navn": "B"}, ("navn: note",))}
        assert store.write_mapped(rows, results, test_actor_id) == 2
        assert rows[0].mapped_data == {"navn": "A"}
        assert rows[0].mapping_notes is None
        assert rows[1].mapping_notes == ["navn: note"]

    def test_delete_rows_keeps_batch(self, store, batch, test_actor_id, session):
        _parsed(store, batch, test_actor_id)
        assert store.delete_rows(batch) == 2
        assert store.rows(batch.id) == []
        assert store.get_batch(batch.id) is batch


class TestAuditChain:
    def test_first_entry_is_genesis(self, audit, test_tenant_id, test_actor_id):
        batch_id = uuid4()
        entry = audit.record(
            test_tenant_id, batch_id, AuditAction.UPLOAD, test_actor_id,
            new_state={"status": "uploaded"},
        )
        assert entry.seq == 1
        assert entry.is_genesis
        assert entry.hash == hash_audit_entry(
            batch_id=str(batch_id),
            action="upload",
            payload_hash=entry.payload_hash,
            prev_hash=None,
        )

    def test_entries_link(self, audit, test_tenant_id, test_actor_id, deterministic_clock):
        batch_id = uuid4()
        first = audit.record(test_tenant_id, batch_id, AuditAction.UPLOAD, test_actor_id)
        second = audit.record(
            test_tenant_id, batch_id, AuditAction.PARSE, test_actor_id,
            previous_state={"status": "uploaded"},
            new_state={"status": "parsed"},
            affected_entity_ids=[batch_id],
        )
        assert second.seq == first.seq + 1
        assert second.prev_hash == first.hash
        assert second.affected_entity_ids == [str(batch_id)]
        assert second.occurred_at == deterministic_clock.now()
        assert audit.validate_chain() is True

    def test_entries_for_batch(self, audit, test_tenant_id, test_actor_id):
        batch_id, other = uuid4(), uuid4()
        audit.record(test_tenant_id, batch_id, AuditAction.UPLOAD, test_actor_id)
        audit.record(test_tenant_id, other, AuditAction.UPLOAD, test_actor_id)
        audit.record(
            test_tenant_id, batch_id, AuditAction.FAIL, test_actor_id,
            details={"code": "INPUT_FILE_INVALID"},
        )
        entries = audit.entries_for_batch(batch_id)
        assert [e.action for e in entries] == [AuditAction.UPLOAD, AuditAction.FAIL]
        latest = audit.latest_for_batch(batch_id, AuditAction.FAIL)
        assert latest.details == {"code": "INPUT_FILE_INVALID"}
        assert audit.latest_for_batch(batch_id, AuditAction.COMMIT) is None

    def test_empty_chain_is_valid(self, audit):
        assert audit.validate_chain() is True

    def test_tampered_payload_detected(self, audit, session, test_tenant_id, test_actor_id, captured_logs):
        batch_id = uuid4()
        audit.record(test_tenant_id, batch_id, AuditAction.UPLOAD, test_actor_id, details={"rows": 3})
        entry = audit.record(test_tenant_id, batch_id, AuditAction.PARSE, test_actor_id, details={"rows": 3})

        # Bulk UPDATE bypasses the ORM listeners, as raw SQL would.
        session.execute(
            update(ImportAuditLogModel)
            .where(ImportAuditLogModel.id == entry.id)
            .values(details={"rows": 300})
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError):
            audit.validate_chain()
        assert any(r["message"] == "audit_chain_broken" for r in captured_logs())

    def test_broken_link_detected(self, audit, session, test_tenant_id, test_actor_id):
        batch_id = uuid4()
        audit.record(test_tenant_id, batch_id, AuditAction.UPLOAD, test_actor_id)
        entry = audit.record(test_tenant_id, batch_id, AuditAction.PARSE, test_actor_id)
        session.execute(
            update(ImportAuditLogModel)
            .where(ImportAuditLogModel.id == entry.id)
            .values(prev_hash="0" * 64)
        )
        session.expire_all()

        with pytest.raises(AuditChainBrokenError):
            audit.validate_chain()
