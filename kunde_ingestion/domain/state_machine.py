"""
Batch state machine -- explicit transition table and result-returning checks.

Contract:
    Every status change of an ``ImportBatch`` is decided here.  Callers get a
    tagged result (``Transitioned``, ``AlreadyPast`` or ``Rejected``) and
    branch on its type; nothing outside this module compares status strings.

Architecture:
    Pure domain.  The staging store applies a ``Transitioned`` result with a
    compare-and-swap on the persisted status; services raise the typed
    errors from ``kunde_kernel.exceptions`` for ``Rejected`` results.

Lifecycle::

    uploaded -> parsing -> parsed -> mapping -> mapped -> validating
        -> validated -> committing -> committed

    failed / cancelled reachable from any non-terminal state.
    mapped/validated -> mapping         (operator re-maps)
    validated -> validating             (re-validate with new options)
    committed -> cancelled              (rollback only)

Invariants:
    - failed and cancelled have no outgoing transitions.
    - committed only leaves through rollback.
    - A stage invoked on a batch at or past its target is a no-op.
    - A stage invoked before its predecessor state is reached is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from kunde_ingestion.domain.types import BatchStatus

S = BatchStatus

_PROGRESSION: tuple[BatchStatus, ...] = (
    S.UPLOADED,
    S.PARSING,
    S.PARSED,
    S.MAPPING,
    S.MAPPED,
    S.VALIDATING,
    S.VALIDATED,
    S.COMMITTING,
    S.COMMITTED,
)
_RANK: dict[BatchStatus, int] = {status: i for i, status in enumerate(_PROGRESSION)}

TERMINAL_STATES: frozenset[BatchStatus] = frozenset({S.COMMITTED, S.FAILED, S.CANCELLED})
FROZEN_STATES: frozenset[BatchStatus] = frozenset({S.FAILED, S.CANCELLED})

_ABORT = frozenset({S.FAILED, S.CANCELLED})

TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    S.UPLOADED: frozenset({S.PARSING}) | _ABORT,
    S.PARSING: frozenset({S.PARSED}) | _ABORT,
    S.PARSED: frozenset({S.MAPPING}) | _ABORT,
    S.MAPPING: frozenset({S.MAPPED}) | _ABORT,
    S.MAPPED: frozenset({S.MAPPING, S.VALIDATING}) | _ABORT,
    S.VALIDATING: frozenset({S.VALIDATED}) | _ABORT,
    S.VALIDATED: frozenset({S.MAPPING, S.VALIDATING, S.COMMITTING}) | _ABORT,
    S.COMMITTING: frozenset({S.COMMITTED, S.FAILED}),
    S.COMMITTED: frozenset({S.CANCELLED}),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

assert set(TRANSITIONS) == set(BatchStatus), "transition table must cover every status"


# -----------------------------------------------------------------------------
# Result types
# -----------------------------------------------------------------------------


class RejectReason(str, Enum):
    NOT_ALLOWED = "not_allowed"  # edge not in the table
    PREDECESSOR_MISSING = "predecessor_missing"  # stage invoked too early
    IN_PROGRESS = "in_progress"  # another invocation holds the working state
    FROZEN = "frozen"  # failed / cancelled


@dataclass(frozen=True)
class Transitioned:
    """The change is allowed; apply it."""

    from_status: BatchStatus
    to_status: BatchStatus


@dataclass(frozen=True)
class AlreadyPast:
    """Batch is at or beyond the requested target; nothing to do."""

    status: BatchStatus
    target: BatchStatus


@dataclass(frozen=True)
class Rejected:
    status: BatchStatus
    target: BatchStatus
    reason: RejectReason
    expected: tuple[BatchStatus, ...] = ()


TransitionResult = Transitioned | AlreadyPast | Rejected


def is_terminal(status: BatchStatus) -> bool:
    return status in TERMINAL_STATES


def is_at_or_past(status: BatchStatus, target: BatchStatus) -> bool:
    """True when ``status`` is on the main progression at or after ``target``."""
    if status not in _RANK or target not in _RANK:
        return False
    return _RANK[status] >= _RANK[target]


def transition(current: BatchStatus, target: BatchStatus) -> TransitionResult:
    """Check a single edge of the table."""
    if current in FROZEN_STATES:
        return Rejected(current, target, RejectReason.FROZEN)
    if target in TRANSITIONS[current]:
        return Transitioned(current, target)
    return Rejected(
        current,
        target,
        RejectReason.NOT_ALLOWED,
        tuple(sorted(TRANSITIONS[current], key=lambda s: s.value)),
    )


# -----------------------------------------------------------------------------
# Stages
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Stage:
    """A pipeline stage owns one working state and one target state."""

    name: str
    entry: frozenset[BatchStatus]
    working: BatchStatus
    target: BatchStatus


PARSE = Stage("parse", frozenset({S.UPLOADED}), S.PARSING, S.PARSED)
MAP = Stage("map", frozenset({S.PARSED, S.MAPPED, S.VALIDATED}), S.MAPPING, S.MAPPED)
VALIDATE = Stage("validate", frozenset({S.MAPPED, S.VALIDATED}), S.VALIDATING, S.VALIDATED)
COMMIT = Stage("commit", frozenset({S.VALIDATED}), S.COMMITTING, S.COMMITTED)

STAGES: dict[str, Stage] = {s.name: s for s in (PARSE, MAP, VALIDATE, COMMIT)}


def begin_stage(current: BatchStatus, stage: Stage, rerun: bool = False) -> TransitionResult:
    """
    Decide whether ``stage`` may start on a batch in ``current``.

    ``rerun`` asks to repeat a stage whose target was already reached (new
    mapping config or new validation options).  It is honoured only from the
    stage's entry states, never after commit has started.
    """
    if current in FROZEN_STATES:
        return Rejected(current, stage.working, RejectReason.FROZEN)

    if current in stage.entry and (rerun or not is_at_or_past(current, stage.target)):
        return transition(current, stage.working)

    if is_at_or_past(current, stage.target):
        return AlreadyPast(current, stage.target)

    if current == stage.working:
        return Rejected(current, stage.working, RejectReason.IN_PROGRESS, tuple(stage.entry))

    return Rejected(
        current,
        stage.working,
        RejectReason.PREDECESSOR_MISSING,
        tuple(sorted(stage.entry, key=lambda s: _RANK.get(s, 99))),
    )


def finish_stage(current: BatchStatus, stage: Stage) -> TransitionResult:
    """Check the working -> target edge at the end of a stage."""
    if current != stage.working:
        return Rejected(current, stage.target, RejectReason.NOT_ALLOWED, (stage.working,))
    return transition(current, stage.target)
