"""
Enrichment hooks -- optional per-row calls made during commit.

Contract:
    An ``EnrichmentHook`` receives the entity id and the committed field
    values of one row.  The runner calls every hook with a timeout; a hook
    that raises or runs past the timeout is logged and reported, never
    raised, so the row's creation stands.

    Hooks run on a bounded worker pool.  A timed-out call keeps running in
    its worker until it returns; the runner does not wait for it.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable
from uuid import UUID

from kunde_kernel.logging_config import get_logger

logger = get_logger("ingestion.enrichment")


@runtime_checkable
class EnrichmentHook(Protocol):
    """External enrichment (e.g. geocoding) invoked for a committed row."""

    name: str

    def enrich(self, entity_id: UUID, data: Mapping[str, Any]) -> None:
        ...


@dataclass(frozen=True)
class EnrichmentFailure:
    hook: str
    entity_id: UUID
    reason: str  # "timeout" | "error"
    message: str


class EnrichmentRunner:
    """Runs hooks with a per-call timeout; failures are soft."""

    def __init__(
        self,
        hooks: Sequence[EnrichmentHook] = (),
        timeout_seconds: float = 5.0,
        max_workers: int = 4,
    ):
        self._hooks = tuple(hooks)
        self._timeout = timeout_seconds
        self._max_workers = max(1, max_workers)
        self._pool: ThreadPoolExecutor | None = None

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def enabled(self) -> bool:
        return bool(self._hooks)

    def _executor(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="enrichment"
            )
        return self._pool

    def run(self, entity_id: UUID, data: Mapping[str, Any]) -> list[EnrichmentFailure]:
        failures: list[EnrichmentFailure] = []
        for hook in self._hooks:
            hook_name = getattr(hook, "name", type(hook).__name__)
            future = self._executor().submit(hook.enrich, entity_id, dict(data))
            try:
                future.result(timeout=self._timeout)
            except FutureTimeout:
                future.cancel()
                logger.warning(
                    "enrichment_timeout",
                    extra={
                        "hook": hook_name,
                        "entity_id": str(entity_id),
                        "timeout_seconds": self._timeout,
                    },
                )
                failures.append(
                    EnrichmentFailure(hook_name, entity_id, "timeout", f"timed out after {self._timeout}s")
                )
            except Exception as exc:
                logger.warning(
                    "enrichment_failed",
                    extra={
                        "hook": hook_name,
                        "entity_id": str(entity_id),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                failures.append(EnrichmentFailure(hook_name, entity_id, "error", str(exc)))
        return failures

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False)
            self._pool = None
