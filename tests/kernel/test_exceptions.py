"""Tests for the exception hierarchy and its machine-readable codes."""

import pytest

from kunde_kernel.exceptions import (
    AuditChainBrokenError,
    BatchConflictError,
    BatchImmutableError,
    BatchNotFoundError,
    EntityNotFoundError,
    FileTooLargeError,
    ImmutabilityViolationError,
    InputFileError,
    InvalidTransitionError,
    KundeKernelError,
    MappingConfigError,
    MappingConfirmationRequiredError,
    RollbackNotAllowedError,
    StorageUnavailableError,
    TemplateNotFoundError,
    UnsupportedFileTypeError,
)


class TestCodes:
    @pytest.mark.parametrize(
        "exc, code",
        [
            (BatchNotFoundError("b1"), "BATCH_NOT_FOUND"),
            (BatchConflictError("b1", "parsed", "mapped"), "CONFLICT"),
            (InvalidTransitionError("b1", "committed", "mapping"), "INVALID_TRANSITION"),
            (BatchImmutableError("b1", "failed"), "BATCH_IMMUTABLE"),
            (RollbackNotAllowedError("b1", "validated"), "ROLLBACK_NOT_ALLOWED"),
            (InputFileError("a.csv", "file is empty"), "INPUT_FILE_INVALID"),
            (UnsupportedFileTypeError("a.pdf", (".csv",)), "UNSUPPORTED_FILE_TYPE"),
            (FileTooLargeError("a.csv", 20, 10), "FILE_TOO_LARGE"),
            (MappingConfigError(["navn is not mapped"]), "MAPPING_CONFIG_INVALID"),
            (MappingConfirmationRequiredError("b1"), "MAPPING_CONFIRMATION_REQUIRED"),
            (TemplateNotFoundError("t1"), "TEMPLATE_NOT_FOUND"),
            (StorageUnavailableError("down"), "STORAGE_UNAVAILABLE"),
            (EntityNotFoundError("Kunde", "k1"), "ENTITY_NOT_FOUND"),
            (AuditChainBrokenError("a1", "x", "y"), "AUDIT_CHAIN_BROKEN"),
            (ImmutabilityViolationError("ImportBatch", "b1", "frozen"), "IMMUTABILITY_VIOLATION"),
        ],
    )
    def test_code_and_base_class(self, exc, code):
        assert exc.code == code
        assert isinstance(exc, KundeKernelError)


class TestStructuredFields:
    def test_conflict_expected_is_tuple(self):
        exc = BatchConflictError("b1", "parsed", "mapped")
        assert exc.expected == ("mapped",)
        assert exc.current_status == "parsed"
        assert "parsed" in str(exc)

    def test_transition_and_immutable_are_conflicts(self):
        assert isinstance(InvalidTransitionError("b1", "a", "b"), BatchConflictError)
        assert isinstance(BatchImmutableError("b1", "cancelled"), BatchConflictError)

    def test_rollback_default_reason(self):
        exc = RollbackNotAllowedError("b1", "validated")
        assert exc.reason == "status is validated, not committed"
        custom = RollbackNotAllowedError("b1", "cancelled", "batch has already been rolled back")
        assert custom.reason == "batch has already been rolled back"

    def test_mapping_problems_joined(self):
        exc = MappingConfigError(["first", "second"])
        assert exc.problems == ("first", "second")
        assert "first; second" in str(exc)
