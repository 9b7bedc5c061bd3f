"""
Typed exceptions for the fiscal document engine.

Every error carries a machine-readable ``code``, an ``http_status`` used by
the API layer, and a ``details`` dict with structured context. Callers catch
by type, never by message text.

    FiscalError
    |
    +-- DocumentNotFound                  404
    +-- ValidationFailure                 400
    +-- ChronologyViolation               409
    +-- AlreadyCertified                  409
    +-- InvalidCancellationTarget         409
    +-- InvalidLiquidation                409
    +-- ImmutableFieldMutationAttempt     409
    |   +-- CertifiedDeletionForbidden
    +-- ConfigurationError                422
    |   +-- SeriesNotFound
    |   +-- InvalidDocumentType
    |   +-- SeriesInactive
    |   +-- SeriesAccessDenied            403
    |   +-- RegisterNotFound
    +-- SideEffectPostingFailure          (never leaves the coordinator)
"""

from __future__ import annotations


class FiscalError(Exception):
    """Base class for every engine error."""

    code = "FISCAL_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class DocumentNotFound(FiscalError):
    code = "DOCUMENT_NOT_FOUND"
    http_status = 404


class ValidationFailure(FiscalError):
    """400-level input problem (bad amounts, unknown enum values, missing fields)."""

    code = "VALIDATION_FAILED"
    http_status = 400


class ChronologyViolation(FiscalError):
    """Candidate date precedes the latest certified document of the same series and type."""

    code = "CHRONOLOGY_VIOLATION"
    http_status = 409


class AlreadyCertified(FiscalError):
    code = "ALREADY_CERTIFIED"
    http_status = 409


class InvalidCancellationTarget(FiscalError):
    code = "INVALID_CANCELLATION_TARGET"
    http_status = 409


class InvalidLiquidation(FiscalError):
    code = "INVALID_LIQUIDATION"
    http_status = 409


class ImmutableFieldMutationAttempt(FiscalError):
    """Core financial fields of a certified document cannot change."""

    code = "IMMUTABLE_FIELD_MUTATION"
    http_status = 409


class CertifiedDeletionForbidden(ImmutableFieldMutationAttempt):
    code = "CERTIFIED_DELETION_FORBIDDEN"


class ConfigurationError(FiscalError):
    code = "CONFIGURATION_ERROR"
    http_status = 422


class SeriesNotFound(ConfigurationError):
    code = "SERIES_NOT_FOUND"


class InvalidDocumentType(ConfigurationError):
    code = "INVALID_DOCUMENT_TYPE"


class SeriesInactive(ConfigurationError):
    code = "SERIES_INACTIVE"


class SeriesAccessDenied(ConfigurationError):
    code = "SERIES_ACCESS_DENIED"
    http_status = 403


class RegisterNotFound(ConfigurationError):
    code = "REGISTER_NOT_FOUND"


class SideEffectPostingFailure(FiscalError):
    """
    Cash, stock or client-account posting failed after the document was
    committed. Recorded on the document for reconciliation.
    """

    code = "SIDE_EFFECT_POSTING_FAILURE"
    http_status = 202
