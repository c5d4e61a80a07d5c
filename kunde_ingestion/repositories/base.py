"""
Entity repository protocol -- the narrow interface to the permanent store.

The import pipeline never touches the target entity table directly.  The
commit engine writes through ``EntityRepository`` and the validator reads
existing records for duplicate checks through ``list_existing``.  A SQL
implementation for the ``kunde`` table lives in ``repositories.kunde``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class ExistingKunde:
    """Lightweight view of a stored entity, used for duplicate matching."""

    entity_id: UUID
    navn: str | None = None
    adresse: str | None = None
    postnummer: str | None = None
    epost: str | None = None
    telefon: str | None = None
    ekstern_id: str | None = None
    org_nummer: str | None = None

    def as_mapping(self) -> dict[str, Any]:
        return {
            "navn": self.navn,
            "adresse": self.adresse,
            "postnummer": self.postnummer,
            "epost": self.epost,
            "telefon": self.telefon,
            "ekstern_id": self.ekstern_id,
            "org_nummer": self.org_nummer,
        }


@runtime_checkable
class EntityRepository(Protocol):
    """Create/update/delete plus lookups for the target entity."""

    def find_by_external_key(self, tenant_id: UUID, ekstern_id: str) -> ExistingKunde | None:
        ...

    def list_existing(self, tenant_id: UUID) -> Sequence[ExistingKunde]:
        ...

    def snapshot(self, tenant_id: UUID, entity_id: UUID) -> dict[str, Any] | None:
        """Full field state of one entity, JSON-serializable."""
        ...

    def create(self, tenant_id: UUID, data: dict[str, Any], actor_id: UUID) -> UUID:
        ...

    def update(
        self, tenant_id: UUID, entity_id: UUID, data: dict[str, Any], actor_id: UUID
    ) -> None:
        ...

    def restore(
        self, tenant_id: UUID, entity_id: UUID, snapshot: dict[str, Any], actor_id: UUID
    ) -> None:
        """Put every field back to ``snapshot``."""
        ...

    def delete(self, tenant_id: UUID, entity_id: UUID) -> bool:
        ...
