"""
Target entity table for committed customers.

The import pipeline writes here only through
``kunde_ingestion.repositories.kunde.SqlKundeRepository``.  Organization
number is unique per tenant when present; the storage layer enforces it, so
a row that passes validation can still fail at commit.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import JSON, Date, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from kunde_kernel.db.base import TrackedBase, UUIDString

DATE_COLUMNS: tuple[str, ...] = (
    "siste_kontroll",
    "neste_kontroll",
    "siste_el_kontroll",
    "neste_el_kontroll",
    "siste_brann_kontroll",
    "neste_brann_kontroll",
)


class KundeModel(TrackedBase):
    __tablename__ = "kunde"

    __table_args__ = (
        UniqueConstraint("tenant_id", "org_nummer", name="uq_kunde_tenant_org_nummer"),
        Index("ix_kunde_tenant_navn", "tenant_id", "navn"),
        Index("ix_kunde_tenant_ekstern_id", "tenant_id", "ekstern_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    navn: Mapped[str] = mapped_column(String(300), nullable=False)
    adresse: Mapped[str | None] = mapped_column(String(300), nullable=True)
    postnummer: Mapped[str | None] = mapped_column(String(10), nullable=True)
    poststed: Mapped[str | None] = mapped_column(String(100), nullable=True)
    telefon: Mapped[str | None] = mapped_column(String(50), nullable=True)
    epost: Mapped[str | None] = mapped_column(String(300), nullable=True)
    kontaktperson: Mapped[str | None] = mapped_column(String(200), nullable=True)
    kategori: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notater: Mapped[str | None] = mapped_column(Text, nullable=True)
    org_nummer: Mapped[str | None] = mapped_column(String(20), nullable=True)
    ekstern_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    siste_kontroll: Mapped[date | None] = mapped_column(Date, nullable=True)
    neste_kontroll: Mapped[date | None] = mapped_column(Date, nullable=True)
    siste_el_kontroll: Mapped[date | None] = mapped_column(Date, nullable=True)
    neste_el_kontroll: Mapped[date | None] = mapped_column(Date, nullable=True)
    siste_brann_kontroll: Mapped[date | None] = mapped_column(Date, nullable=True)
    neste_brann_kontroll: Mapped[date | None] = mapped_column(Date, nullable=True)
    el_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    brann_system: Mapped[str | None] = mapped_column(String(100), nullable=True)
    kontroll_intervall_mnd: Mapped[int | None] = mapped_column(Integer, nullable=True)

    custom_fields: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    import_batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<Kunde {self.navn}>"
