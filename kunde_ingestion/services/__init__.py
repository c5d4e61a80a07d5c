"""Ingestion services: import pipeline, commit/rollback, staging, templates and audit log."""

from kunde_ingestion.services.audit_log import AuditEntry, ImportAuditLog
from kunde_ingestion.services.commit_service import CommitService
from kunde_ingestion.services.import_service import ImportService
from kunde_ingestion.services.staging_store import StagingStore, raise_for_rejection
from kunde_ingestion.services.template_store import MappingTemplate, TemplateStore

__all__ = [
    "AuditEntry",
    "CommitService",
    "ImportAuditLog",
    "ImportService",
    "MappingTemplate",
    "StagingStore",
    "TemplateStore",
    "raise_for_rejection",
]
