"""
TemplateStore -- per-tenant mapping templates and column history.

Contract:
    Templates are keyed by tenant + exact column fingerprint and carry
    provenance (AI-suggested vs human-confirmed) and usage statistics.
    ``find_by_fingerprint`` goes through an injected bounded TTL store;
    ``save`` and ``delete`` invalidate the tenant's entries.

    Column history records every header structure seen by a tenant
    (first/last seen, batch count) for format-change detection.

Failure modes:
    - TemplateNotFoundError: unknown template id or another tenant's template.
    - MappingConfigError: a new template would reuse a name already taken by
      a template with a different fingerprint.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from kunde_ingestion.detection.fingerprint import ColumnFingerprint, fingerprint
from kunde_ingestion.detection.format_change import ColumnHistoryEntry, TemplateRef
from kunde_ingestion.domain.mapping_config import MappingConfig
from kunde_ingestion.models.staging import ImportColumnHistoryModel, ImportMappingTemplateModel
from kunde_kernel.domain.clock import Clock, SystemClock
from kunde_kernel.exceptions import MappingConfigError, TemplateNotFoundError
from kunde_kernel.logging_config import get_logger
from kunde_kernel.utils.ttl_store import TTLStore

logger = get_logger("ingestion.template_store")


@dataclass(frozen=True)
class MappingTemplate:
    template_id: UUID
    tenant_id: UUID
    name: str
    fingerprint: str
    set_fingerprint: str
    source_columns: tuple[str, ...]
    config: MappingConfig
    description: str | None = None
    is_default: bool = False
    ai_suggested: bool = False
    ai_confidence_score: float | None = None
    human_confirmed: bool = False
    confirmed_by: UUID | None = None
    confirmed_at: datetime | None = None
    use_count: int = 0
    last_used_at: datetime | None = None

    def to_ref(self) -> TemplateRef:
        return TemplateRef(
            template_id=self.template_id,
            name=self.name,
            fingerprint=self.fingerprint,
            set_fingerprint=self.set_fingerprint,
            columns=self.source_columns,
            last_used_at=self.last_used_at,
        )


def _to_template(model: ImportMappingTemplateModel) -> MappingTemplate:
    return MappingTemplate(
        template_id=model.id,
        tenant_id=model.tenant_id,
        name=model.name,
        fingerprint=model.source_column_fingerprint,
        set_fingerprint=model.source_set_fingerprint,
        source_columns=tuple(model.source_columns or ()),
        config=MappingConfig.from_dict(model.mapping_config),
        description=model.description,
        is_default=model.is_default,
        ai_suggested=model.ai_suggested,
        ai_confidence_score=model.ai_confidence_score,
        human_confirmed=model.human_confirmed,
        confirmed_by=model.confirmed_by,
        confirmed_at=model.confirmed_at,
        use_count=model.use_count,
        last_used_at=model.last_used_at,
    )


def _ai_provenance(config: MappingConfig) -> tuple[bool, float | None]:
    scores = [m.confidence for m in config.mappings if m.ai_suggested and m.confidence is not None]
    suggested = any(m.ai_suggested for m in config.mappings)
    if not scores:
        return suggested, None
    return suggested, round(sum(scores) / len(scores), 4)


class TemplateStore:
    """Mapping templates and column history for one session."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cache: TTLStore[MappingTemplate] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._cache: TTLStore[MappingTemplate] = (
            cache if cache is not None else TTLStore(clock=self._clock)
        )

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    def _model(self, tenant_id: UUID, template_id: UUID) -> ImportMappingTemplateModel:
        model = self._session.get(ImportMappingTemplateModel, template_id)
        if model is None or model.tenant_id != tenant_id:
            raise TemplateNotFoundError(str(template_id))
        return model

    def list_templates(self, tenant_id: UUID) -> list[MappingTemplate]:
        models = self._session.scalars(
            select(ImportMappingTemplateModel)
            .where(ImportMappingTemplateModel.tenant_id == tenant_id)
            .order_by(ImportMappingTemplateModel.name)
        ).all()
        return [_to_template(m) for m in models]

    def get(self, tenant_id: UUID, template_id: UUID) -> MappingTemplate:
        return _to_template(self._model(tenant_id, template_id))

    def refs(self, tenant_id: UUID) -> list[TemplateRef]:
        return [t.to_ref() for t in self.list_templates(tenant_id)]

    def find_by_fingerprint(self, tenant_id: UUID, column_fingerprint: str) -> MappingTemplate | None:
        key = (tenant_id, column_fingerprint)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        model = self._session.scalars(
            select(ImportMappingTemplateModel)
            .where(
                ImportMappingTemplateModel.tenant_id == tenant_id,
                ImportMappingTemplateModel.source_column_fingerprint == column_fingerprint,
            )
            .order_by(
                ImportMappingTemplateModel.is_default.desc(),
                ImportMappingTemplateModel.name,
            )
            .limit(1)
        ).first()
        if model is None:
            return None
        template = _to_template(model)
        self._cache.set(key, template)
        return template

    def _invalidate(self, tenant_id: UUID) -> None:
        self._cache.invalidate_where(lambda key: key[0] == tenant_id)

    def save(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        name: str,
        headers: Sequence[str],
        config: MappingConfig,
        description: str | None = None,
        is_default: bool = False,
        human_confirmed: bool = False,
    ) -> MappingTemplate:
        """
        Create or update the template for ``headers``' exact fingerprint.

        An existing template with the same fingerprint is updated in place
        and keeps its name and usage statistics.
        """
        fp = fingerprint(headers)
        now = self._clock.now()
        ai_suggested, ai_score = _ai_provenance(config)

        model = self._session.scalars(
            select(ImportMappingTemplateModel)
            .where(
                ImportMappingTemplateModel.tenant_id == tenant_id,
                ImportMappingTemplateModel.source_column_fingerprint == fp.exact,
            )
            .limit(1)
        ).first()

        if model is None:
            taken = self._session.scalars(
                select(ImportMappingTemplateModel.id).where(
                    ImportMappingTemplateModel.tenant_id == tenant_id,
                    ImportMappingTemplateModel.name == name,
                )
            ).first()
            if taken is not None:
                raise MappingConfigError([f"template name already in use: {name}"])
            model = ImportMappingTemplateModel(
                tenant_id=tenant_id,
                name=name,
                source_column_fingerprint=fp.exact,
                source_set_fingerprint=fp.set,
                source_columns=list(headers),
                mapping_config=config.to_dict(),
                created_by_id=actor_id,
            )
            self._session.add(model)
            action = "created"
        else:
            model.source_columns = list(headers)
            model.source_set_fingerprint = fp.set
            model.mapping_config = config.to_dict()
            model.updated_by_id = actor_id
            action = "updated"

        if description is not None:
            model.description = description
        model.is_default = is_default or model.is_default
        model.ai_suggested = ai_suggested
        model.ai_confidence_score = ai_score
        if human_confirmed:
            model.human_confirmed = True
            model.confirmed_by = actor_id
            model.confirmed_at = now

        self._session.flush()
        self._invalidate(tenant_id)
        logger.info(
            "template_saved",
            extra={
                "template_id": str(model.id),
                "fingerprint": fp.exact,
                "action": action,
                "human_confirmed": model.human_confirmed,
            },
        )
        return _to_template(model)

    def delete(self, tenant_id: UUID, template_id: UUID) -> None:
        model = self._model(tenant_id, template_id)
        self._session.delete(model)
        self._session.flush()
        self._invalidate(tenant_id)
        logger.info("template_deleted", extra={"template_id": str(template_id)})

    def mark_used(self, tenant_id: UUID, template_id: UUID) -> MappingTemplate:
        model = self._model(tenant_id, template_id)
        model.use_count = (model.use_count or 0) + 1
        model.last_used_at = self._clock.now()
        self._session.flush()
        self._invalidate(tenant_id)
        return _to_template(model)

    # -------------------------------------------------------------------------
    # Column history
    # -------------------------------------------------------------------------

    def history(self, tenant_id: UUID) -> list[ColumnHistoryEntry]:
        models = self._session.scalars(
            select(ImportColumnHistoryModel)
            .where(ImportColumnHistoryModel.tenant_id == tenant_id)
            .order_by(ImportColumnHistoryModel.last_seen_at.desc())
        ).all()
        return [
            ColumnHistoryEntry(
                fingerprint=m.fingerprint,
                set_fingerprint=m.set_fingerprint,
                columns=tuple(m.columns or ()),
                last_seen_at=m.last_seen_at,
                batch_count=m.batch_count,
            )
            for m in models
        ]

    def record_columns(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        fp: ColumnFingerprint,
        headers: Sequence[str],
    ) -> ColumnHistoryEntry:
        """Upsert the history row for ``fp``; bumps batch_count on a repeat."""
        now = self._clock.now()
        model = self._session.scalars(
            select(ImportColumnHistoryModel).where(
                ImportColumnHistoryModel.tenant_id == tenant_id,
                ImportColumnHistoryModel.fingerprint == fp.exact,
            )
        ).first()
        if model is None:
            model = ImportColumnHistoryModel(
                tenant_id=tenant_id,
                fingerprint=fp.exact,
                set_fingerprint=fp.set,
                columns=list(headers),
                first_seen_at=now,
                last_seen_at=now,
                batch_count=1,
                created_by_id=actor_id,
            )
            self._session.add(model)
        else:
            model.last_seen_at = now
            model.batch_count = (model.batch_count or 0) + 1
            model.updated_by_id = actor_id
        self._session.flush()
        return ColumnHistoryEntry(
            fingerprint=model.fingerprint,
            set_fingerprint=model.set_fingerprint,
            columns=tuple(model.columns),
            last_seen_at=model.last_seen_at,
            batch_count=model.batch_count,
        )
