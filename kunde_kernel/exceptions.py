"""
Typed exception hierarchy for the customer import kernel.

Every error a caller may need to react to has its own class with a static
machine-readable ``code`` and the structured data of the failure stored as
attributes.  Callers catch by type and read attributes; they never parse
messages.

Row-scoped problems found while validating or committing (a bad postnummer,
a uniqueness violation on one row) are NOT exceptions: they are recorded as
data on the staging row.  The classes below cover batch-level and systemic
failures only.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    KundeKernelError (base)
    |
    +-- BatchError
    |   +-- BatchNotFoundError
    |   +-- BatchConflictError
    |   |   +-- InvalidTransitionError
    |   |   +-- BatchImmutableError
    |   +-- RollbackNotAllowedError
    |
    +-- InputError
    |   +-- InputFileError
    |   +-- UnsupportedFileTypeError
    |   +-- FileTooLargeError
    |
    +-- MappingError
    |   +-- MappingConfigError
    |   +-- MappingConfirmationRequiredError
    |   +-- TemplateNotFoundError
    |
    +-- StorageError
    |   +-- StorageUnavailableError
    |   +-- EntityNotFoundError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|------------------------------------
Batch        | BATCH_NOT_FOUND               | Batch id unknown for the tenant
             | CONFLICT                      | Stage invoked out of order
             | INVALID_TRANSITION            | Status change not in the table
             | BATCH_IMMUTABLE               | Batch is failed or cancelled
             | ROLLBACK_NOT_ALLOWED          | Rollback of a non-committed batch
-------------|-------------------------------|------------------------------------
Input        | INPUT_FILE_INVALID            | Unreadable file or encoding
             | UNSUPPORTED_FILE_TYPE         | Extension not csv/xlsx
             | FILE_TOO_LARGE                | Size above configured maximum
-------------|-------------------------------|------------------------------------
Mapping      | MAPPING_CONFIG_INVALID        | Unknown column, duplicate target
             | MAPPING_CONFIRMATION_REQUIRED | Format changed, no confirmation
             | TEMPLATE_NOT_FOUND            | Template id unknown
-------------|-------------------------------|------------------------------------
Storage      | STORAGE_UNAVAILABLE           | Entity store outage
             | ENTITY_NOT_FOUND              | Entity id unknown
-------------|-------------------------------|------------------------------------
Audit        | AUDIT_CHAIN_BROKEN            | Hash chain validation failed
-------------|-------------------------------|------------------------------------
Immutability | IMMUTABILITY_VIOLATION        | Update/delete of immutable record
"""


class KundeKernelError(Exception):
    """
    Base exception for all customer import errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "KUNDE_KERNEL_ERROR"


# Batch-related exceptions


class BatchError(KundeKernelError):
    """Base exception for batch lifecycle errors."""

    code: str = "BATCH_ERROR"


class BatchNotFoundError(BatchError):
    """Batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = str(batch_id)
        super().__init__(f"Import batch not found: {batch_id}")


class BatchConflictError(BatchError):
    """
    A stage was invoked on a batch that is not in its predecessor state.

    The batch is left unchanged.  Retrying the same request after the
    predecessor stage has run is safe.
    """

    code: str = "CONFLICT"

    def __init__(
        self,
        batch_id: str,
        current_status: str,
        expected: tuple[str, ...] | str,
        message: str | None = None,
    ):
        self.batch_id = str(batch_id)
        self.current_status = current_status
        self.expected = (expected,) if isinstance(expected, str) else tuple(expected)
        super().__init__(
            message
            or (
                f"Batch {batch_id} is '{current_status}', "
                f"expected one of {', '.join(self.expected)}"
            )
        )


class InvalidTransitionError(BatchConflictError):
    """Requested status change is not part of the batch state machine."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, batch_id: str, from_status: str, to_status: str):
        self.to_status = to_status
        super().__init__(
            batch_id,
            from_status,
            (),
            f"Invalid transition for batch {batch_id}: {from_status} -> {to_status}",
        )


class BatchImmutableError(BatchConflictError):
    """Batch is in a terminal state and cannot be changed."""

    code: str = "BATCH_IMMUTABLE"

    def __init__(self, batch_id: str, status: str):
        super().__init__(
            batch_id,
            status,
            (),
            f"Batch {batch_id} is {status} and can no longer be modified",
        )


class RollbackNotAllowedError(BatchError):
    """Rollback requested for a batch that is not committed."""

    code: str = "ROLLBACK_NOT_ALLOWED"

    def __init__(self, batch_id: str, status: str, reason: str | None = None):
        self.batch_id = str(batch_id)
        self.status = status
        self.reason = reason or f"status is {status}, not committed"
        super().__init__(f"Cannot roll back batch {batch_id}: {self.reason}")


# Input-related exceptions


class InputError(KundeKernelError):
    """Base exception for unreadable or unacceptable input files."""

    code: str = "INPUT_ERROR"


class InputFileError(InputError):
    """File could not be parsed (corrupt workbook, bad encoding, no headers)."""

    code: str = "INPUT_FILE_INVALID"

    def __init__(self, file_name: str, reason: str):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Could not read {file_name}: {reason}")


class UnsupportedFileTypeError(InputError):
    """File extension is not one of the supported spreadsheet formats."""

    code: str = "UNSUPPORTED_FILE_TYPE"

    def __init__(self, file_name: str, supported: tuple[str, ...]):
        self.file_name = file_name
        self.supported = supported
        super().__init__(
            f"Unsupported file type for {file_name}; "
            f"supported: {', '.join(supported)}"
        )


class FileTooLargeError(InputError):
    """File exceeds the configured maximum size."""

    code: str = "FILE_TOO_LARGE"

    def __init__(self, file_name: str, size: int, max_size: int):
        self.file_name = file_name
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"File {file_name} is {size} bytes; maximum is {max_size} bytes"
        )


# Mapping-related exceptions


class MappingError(KundeKernelError):
    """Base exception for column mapping errors."""

    code: str = "MAPPING_ERROR"


class MappingConfigError(MappingError):
    """Mapping configuration cannot be applied to the batch headers."""

    code: str = "MAPPING_CONFIG_INVALID"

    def __init__(self, problems: list[str] | tuple[str, ...]):
        self.problems = tuple(problems)
        super().__init__("Invalid mapping: " + "; ".join(self.problems))


class MappingConfirmationRequiredError(MappingError):
    """
    Batch has ``requires_remapping`` set and the mapping was never confirmed.

    Raised when validation is requested before an operator has confirmed
    the column mapping of a changed file format.
    """

    code: str = "MAPPING_CONFIRMATION_REQUIRED"

    def __init__(self, batch_id: str):
        self.batch_id = str(batch_id)
        super().__init__(
            f"Batch {batch_id} has a changed column format; "
            "the mapping must be confirmed before validation"
        )


class TemplateNotFoundError(MappingError):
    """Mapping template with given ID was not found."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = str(template_id)
        super().__init__(f"Mapping template not found: {template_id}")


# Storage-related exceptions


class StorageError(KundeKernelError):
    """Base exception for entity store errors."""

    code: str = "STORAGE_ERROR"


class StorageUnavailableError(StorageError):
    """Entity store cannot be reached. Aborts the current stage."""

    code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Storage unavailable: {reason}")


class EntityNotFoundError(StorageError):
    """Target entity with given ID was not found."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


# Audit-related exceptions


class AuditError(KundeKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_entry_id: str, expected_hash: str, actual_hash: str):
        self.audit_entry_id = str(audit_entry_id)
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_entry_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Immutability-related exceptions


class ImmutabilityError(KundeKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Audit log entries are append-only; failed and cancelled batches are
    frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
