"""Customer import ORM models (staging, templates, audit log, target entity)."""

from kunde_ingestion.models.audit import ImportAuditLogModel
from kunde_ingestion.models.kunde import KundeModel
from kunde_ingestion.models.staging import (
    ImportBatchModel,
    ImportColumnHistoryModel,
    ImportMappingTemplateModel,
    ImportStagingRowModel,
    ImportValidationErrorModel,
)

__all__ = [
    "ImportAuditLogModel",
    "ImportBatchModel",
    "ImportColumnHistoryModel",
    "ImportMappingTemplateModel",
    "ImportStagingRowModel",
    "ImportValidationErrorModel",
    "KundeModel",
]
