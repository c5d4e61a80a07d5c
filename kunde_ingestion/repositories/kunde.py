"""
SqlKundeRepository -- EntityRepository over the ``kunde`` table.

Contract:
    Writes flush so storage constraint violations surface inside the
    caller's per-row savepoint; nothing here commits.

    ``update`` overwrites only the fields the import row carries a value
    for; ``restore`` puts every field back from a ``snapshot``.

Failure modes:
    - EntityNotFoundError from update/restore for an unknown entity id.
    - sqlalchemy IntegrityError propagates from create/update (unique
      org_nummer per tenant).
"""

from __future__ import annotations

from datetime import date
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from kunde_ingestion.domain.mapping_config import CUSTOM_FIELD_PREFIX, ENTITY_FIELDS
from kunde_ingestion.models.kunde import DATE_COLUMNS, KundeModel
from kunde_ingestion.repositories.base import ExistingKunde
from kunde_kernel.exceptions import EntityNotFoundError
from kunde_kernel.logging_config import get_logger

logger = get_logger("ingestion.kunde_repository")

SNAPSHOT_FIELDS: tuple[str, ...] = ENTITY_FIELDS + ("custom_fields",)


def _to_column_value(name: str, value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if name in DATE_COLUMNS:
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value)[:10])
    if name == "kontroll_intervall_mnd":
        return int(float(value))
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _from_column_value(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def split_custom_fields(data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate entity columns from ``custom.*`` fields."""
    columns: dict[str, Any] = {}
    custom: dict[str, Any] = {}
    for key, value in data.items():
        if key.startswith(CUSTOM_FIELD_PREFIX):
            custom[key[len(CUSTOM_FIELD_PREFIX):]] = value
        elif key in ENTITY_FIELDS:
            columns[key] = value
    return columns, custom


class SqlKundeRepository:
    """EntityRepository implementation backed by KundeModel."""

    def __init__(self, session: Session, batch_id: UUID | None = None):
        self._session = session
        self._batch_id = batch_id

    def _get(self, tenant_id: UUID, entity_id: UUID) -> KundeModel | None:
        model = self._session.get(KundeModel, entity_id)
        if model is None or model.tenant_id != tenant_id:
            return None
        return model

    @staticmethod
    def _existing(model: KundeModel) -> ExistingKunde:
        return ExistingKunde(
            entity_id=model.id,
            navn=model.navn,
            adresse=model.adresse,
            postnummer=model.postnummer,
            epost=model.epost,
            telefon=model.telefon,
            ekstern_id=model.ekstern_id,
            org_nummer=model.org_nummer,
        )

    def find_by_external_key(self, tenant_id: UUID, ekstern_id: str) -> ExistingKunde | None:
        model = self._session.scalars(
            select(KundeModel)
            .where(KundeModel.tenant_id == tenant_id, KundeModel.ekstern_id == ekstern_id)
            .limit(1)
        ).first()
        return self._existing(model) if model else None

    def list_existing(self, tenant_id: UUID) -> Sequence[ExistingKunde]:
        models = self._session.scalars(
            select(KundeModel).where(KundeModel.tenant_id == tenant_id).order_by(KundeModel.navn)
        ).all()
        return [self._existing(m) for m in models]

    def snapshot(self, tenant_id: UUID, entity_id: UUID) -> dict[str, Any] | None:
        model = self._get(tenant_id, entity_id)
        if model is None:
            return None
        return {
            name: _from_column_value(getattr(model, name))
            for name in SNAPSHOT_FIELDS
        }

    def create(self, tenant_id: UUID, data: dict[str, Any], actor_id: UUID) -> UUID:
        columns, custom = split_custom_fields(data)
        model = KundeModel(
            tenant_id=tenant_id,
            created_by_id=actor_id,
            import_batch_id=self._batch_id,
            custom_fields=custom or None,
            **{name: _to_column_value(name, value) for name, value in columns.items()},
        )
        self._session.add(model)
        self._session.flush()
        logger.debug("kunde_created", extra={"entity_id": str(model.id)})
        return model.id

    def update(
        self, tenant_id: UUID, entity_id: UUID, data: dict[str, Any], actor_id: UUID
    ) -> None:
        model = self._get(tenant_id, entity_id)
        if model is None:
            raise EntityNotFoundError("Kunde", str(entity_id))
        columns, custom = split_custom_fields(data)
        for name, value in columns.items():
            converted = _to_column_value(name, value)
            if converted is not None:
                setattr(model, name, converted)
        if custom:
            merged = dict(model.custom_fields or {})
            merged.update(custom)
            model.custom_fields = merged
        model.updated_by_id = actor_id
        self._session.flush()

    def restore(
        self, tenant_id: UUID, entity_id: UUID, snapshot: dict[str, Any], actor_id: UUID
    ) -> None:
        model = self._get(tenant_id, entity_id)
        if model is None:
            raise EntityNotFoundError("Kunde", str(entity_id))
        for name in ENTITY_FIELDS:
            value = snapshot.get(name)
            setattr(model, name, None if value is None else _to_column_value(name, value))
        model.custom_fields = snapshot.get("custom_fields")
        model.updated_by_id = actor_id
        self._session.flush()

    def delete(self, tenant_id: UUID, entity_id: UUID) -> bool:
        model = self._get(tenant_id, entity_id)
        if model is None:
            return False
        self._session.delete(model)
        self._session.flush()
        return True
