"""Entity repository protocol and the SQL implementation for the kunde table."""

from kunde_ingestion.repositories.base import EntityRepository, ExistingKunde
from kunde_ingestion.repositories.kunde import SqlKundeRepository

__all__ = ["EntityRepository", "ExistingKunde", "SqlKundeRepository"]
