"""Tests for the batch status transition table and stage checks."""

import pytest

from kunde_ingestion.domain.state_machine import (
    COMMIT,
    MAP,
    PARSE,
    TRANSITIONS,
    VALIDATE,
    AlreadyPast,
    Rejected,
    RejectReason,
    Transitioned,
    begin_stage,
    finish_stage,
    is_at_or_past,
    transition,
)
from kunde_ingestion.domain.types import BatchStatus as S


class TestTransitionTable:
    def test_frozen_states_have_no_exits(self):
        assert TRANSITIONS[S.FAILED] == frozenset()
        assert TRANSITIONS[S.CANCELLED] == frozenset()

    def test_committed_only_to_cancelled(self):
        assert TRANSITIONS[S.COMMITTED] == frozenset({S.CANCELLED})

    @pytest.mark.parametrize("status", [s for s in S if s not in (S.COMMITTED, S.FAILED, S.CANCELLED)])
    def test_non_terminal_can_fail(self, status):
        assert isinstance(transition(status, S.FAILED), Transitioned)

    def test_rollback_edge(self):
        assert transition(S.COMMITTED, S.CANCELLED) == Transitioned(S.COMMITTED, S.CANCELLED)

    def test_not_allowed_lists_expected(self):
        result = transition(S.COMMITTED, S.MAPPING)
        assert isinstance(result, Rejected)
        assert result.reason == RejectReason.NOT_ALLOWED
        assert result.expected == (S.CANCELLED,)

    def test_frozen_rejected(self):
        result = transition(S.FAILED, S.PARSING)
        assert isinstance(result, Rejected)
        assert result.reason == RejectReason.FROZEN

    def test_progression_order(self):
        assert is_at_or_past(S.VALIDATED, S.MAPPED)
        assert not is_at_or_past(S.PARSED, S.MAPPED)
        assert not is_at_or_past(S.FAILED, S.PARSED)


class TestBeginStage:
    def test_starts_from_predecessor(self):
        assert begin_stage(S.UPLOADED, PARSE) == Transitioned(S.UPLOADED, S.PARSING)
        assert begin_stage(S.PARSED, MAP) == Transitioned(S.PARSED, S.MAPPING)
        assert begin_stage(S.VALIDATED, COMMIT) == Transitioned(S.VALIDATED, S.COMMITTING)

    def test_predecessor_missing(self):
        result = begin_stage(S.PARSED, VALIDATE)
        assert isinstance(result, Rejected)
        assert result.reason == RejectReason.PREDECESSOR_MISSING
        assert set(result.expected) == {S.MAPPED, S.VALIDATED}

    def test_in_progress(self):
        result = begin_stage(S.VALIDATING, VALIDATE)
        assert isinstance(result, Rejected)
        assert result.reason == RejectReason.IN_PROGRESS

    def test_already_past_is_noop(self):
        assert begin_stage(S.MAPPED, MAP) == AlreadyPast(S.MAPPED, S.MAPPED)
        assert isinstance(begin_stage(S.COMMITTED, VALIDATE), AlreadyPast)

    def test_rerun_from_entry_state(self):
        assert begin_stage(S.MAPPED, MAP, rerun=True) == Transitioned(S.MAPPED, S.MAPPING)
        assert begin_stage(S.VALIDATED, VALIDATE, rerun=True) == Transitioned(S.VALIDATED, S.VALIDATING)

    def test_rerun_ignored_after_commit(self):
        assert isinstance(begin_stage(S.COMMITTED, MAP, rerun=True), AlreadyPast)

    def test_frozen(self):
        result = begin_stage(S.CANCELLED, MAP, rerun=True)
        assert isinstance(result, Rejected)
        assert result.reason == RejectReason.FROZEN


class TestFinishStage:
    def test_working_to_target(self):
        assert finish_stage(S.MAPPING, MAP) == Transitioned(S.MAPPING, S.MAPPED)

    def test_wrong_state(self):
        result = finish_stage(S.PARSED, MAP)
        assert isinstance(result, Rejected)
        assert result.expected == (S.MAPPING,)
