# Overview: Certification state machine, chronology gate and document fingerprint.

"""
Certification Engine

WHY: Certification legally seals a document: it receives its permanent
number and fingerprint and its financial content is frozen.

LIFECYCLE:
- DRAFT -> CERTIFIED (status PENDING, or PAID for documents settled on issue)
- CERTIFIED -> PARTIAL -> PAID through liquidation receipts
- any non-cancelled state -> CANCELLED through rectification

DESIGN PRINCIPLES:
- Validate -> commit transition -> best-effort side effects, in that order
- ChronologyViolation and AlreadyCertified abort before any numbering,
  hashing or posting happens
- Number allocation and the document write share one transaction; side
  effects run only after it committed, so the counter is never held
  across posting I/O
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import DocumentSeries, FiscalDocument
from ..document_types import (
    Action,
    DocumentFlow,
    DocumentStatus,
    IntegrationStatus,
    PAID_ON_ISSUE_TYPES,
    SETTLED_TYPES,
    parse_document_type,
)
from ..errors import (
    AlreadyCertified,
    ChronologyViolation,
    ValidationFailure,
)
from faturacao.time_utils import utcnow
from . import posting_service, sequence_service
from .chain_service import get_document, lock_document
from .concurrency import begin_write, run_with_retry
from .series_service import check_access, get_series

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    """
    Outcome of a committed transition.

    Rejected transitions raise instead; a result always means the state
    change is durable. warnings lists side effects left for reconciliation.
    """
    document: FiscalDocument
    related: list[FiscalDocument] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "document": self.document.to_dict(),
            "related": [d.to_dict() for d in self.related],
            "warnings": self.warnings,
        }


# =============================================================================
# FINGERPRINT
# =============================================================================

def _fingerprint_payload(document: FiscalDocument) -> str:
    processed = document.processed_at.strftime("%Y-%m-%dT%H:%M:%S") if document.processed_at else ""
    return ";".join([
        document.issue_date.isoformat(),
        processed,
        document.number or "",
        f"{document.total_cents / 100:.2f}",
        document.party_ref or "",
        document.previous_hash or "",
    ])


def fingerprint(document: FiscalDocument) -> str:
    """HMAC-SHA256 over the sealed fields, chained to the previous hash."""
    secret = current_app.config["HASH_SECRET"].encode("utf-8")
    return hmac.new(secret, _fingerprint_payload(document).encode("utf-8"), hashlib.sha256).hexdigest()


def verify_hash(document: FiscalDocument) -> bool:
    if not document.hash:
        return False
    return hmac.compare_digest(document.hash, fingerprint(document))


def _previous_hash(series_id: int, document_type: str, exclude_id: str | None) -> str | None:
    query = db.session.query(FiscalDocument.hash).filter(
        FiscalDocument.series_id == series_id,
        FiscalDocument.document_type == document_type,
        FiscalDocument.is_certified.is_(True),
        FiscalDocument.hash.isnot(None),
    )
    if exclude_id:
        query = query.filter(FiscalDocument.id != exclude_id)
    row = query.order_by(
        FiscalDocument.fiscal_year.desc(),
        FiscalDocument.sequence.desc(),
        FiscalDocument.processed_at.desc(),
    ).first()
    return row[0] if row else None


# =============================================================================
# CHRONOLOGY
# =============================================================================

def latest_certified_date(series_id: int, document_type) -> date | None:
    document_type = parse_document_type(document_type)
    return db.session.query(func.max(FiscalDocument.issue_date)).filter(
        FiscalDocument.series_id == series_id,
        FiscalDocument.document_type == document_type.value,
        FiscalDocument.is_certified.is_(True),
    ).scalar()


def check_chronology(series: DocumentSeries, document_type, issue_date: date) -> None:
    """
    Reject a date earlier than the latest certified document of the same
    series and type. Equal dates are allowed. Manual series are exempt.
    """
    if series.is_manual:
        return
    latest = latest_certified_date(series.id, document_type)
    if latest is not None and issue_date < latest:
        logger.info(
            "Chronology rejection in series %s type %s: %s < %s",
            series.code, parse_document_type(document_type).value, issue_date, latest,
        )
        raise ChronologyViolation(
            f"Document date {issue_date.isoformat()} is earlier than the last certified "
            f"document of this type ({latest.isoformat()})",
            details={
                "series_id": series.id,
                "document_type": parse_document_type(document_type).value,
                "issue_date": issue_date.isoformat(),
                "latest_certified_date": latest.isoformat(),
            },
        )


# =============================================================================
# SEALING
# =============================================================================

def apply_issue_status(document: FiscalDocument) -> None:
    doc_type = parse_document_type(document.document_type)
    if doc_type in PAID_ON_ISSUE_TYPES:
        document.paid_cents = document.total_cents
    if doc_type in SETTLED_TYPES:
        document.status = DocumentStatus.PAID.value
    else:
        document.status = DocumentStatus.PENDING.value


def seal(document: FiscalDocument, series: DocumentSeries) -> FiscalDocument:
    """
    Number, fingerprint and freeze a document inside the current transaction.

    Shared by certification, liquidation receipts and corrective documents.
    The caller has already run check_chronology and commits afterwards.
    """
    previous = _previous_hash(series.id, document.document_type, document.id)
    sequence, number = sequence_service.allocate(series, document.document_type)

    document.series_id = series.id
    document.sequence = sequence
    document.fiscal_year = series.fiscal_year
    document.number = number
    document.processed_at = utcnow().replace(microsecond=0)
    document.previous_hash = previous
    document.hash = fingerprint(document)
    document.is_certified = True
    document.integration_status = IntegrationStatus.VALIDATED.value
    apply_issue_status(document)
    document.effects_status = posting_service.initial_effects_status(document)
    return document


def _certify_manual(document: FiscalDocument, series: DocumentSeries) -> None:
    if not document.number or not document.number.strip():
        raise ValidationFailure(
            "Manual series documents need the number printed on the paper original",
            details={"document_id": document.id},
        )
    document.series_id = series.id
    document.fiscal_year = series.fiscal_year
    document.processed_at = utcnow().replace(microsecond=0)
    document.is_certified = True
    document.integration_status = IntegrationStatus.VALIDATED.value
    apply_issue_status(document)
    document.effects_status = posting_service.initial_effects_status(document)


def _certify_purchase(document: FiscalDocument, external_number: str | None) -> None:
    number = (external_number or document.number or "").strip()
    if not number:
        raise ValidationFailure(
            "Purchase documents need the supplier document number",
            details={"document_id": document.id},
        )
    document.number = number
    document.processed_at = utcnow().replace(microsecond=0)
    document.hash = fingerprint(document)
    document.is_certified = True
    document.integration_status = IntegrationStatus.VALIDATED.value
    apply_issue_status(document)
    document.effects_status = posting_service.initial_effects_status(document)


def _validate_certifiable(document: FiscalDocument) -> None:
    if document.is_certified:
        raise AlreadyCertified(
            f"Document {document.number} is already certified",
            details={"document_id": document.id, "number": document.number},
        )
    if document.status == DocumentStatus.CANCELLED.value:
        raise ValidationFailure("Cancelled documents cannot be certified", details={"document_id": document.id})
    if not document.lines:
        raise ValidationFailure("Cannot certify a document with no lines", details={"document_id": document.id})
    if document.total_cents < 0:
        raise ValidationFailure("Document total cannot be negative", details={"document_id": document.id})


def certify(
    document_id: str,
    action=Action.CERTIFY,
    operator_ref: str | None = None,
    external_number: str | None = None,
) -> TransitionResult:
    """
    Certify a draft.

    Args:
        document_id: Draft to certify
        action: must be CERTIFY
        operator_ref: user issuing the document (checked against the series ACL)
        external_number: supplier number, purchases only

    Raises:
        AlreadyCertified, ChronologyViolation, SeriesNotFound,
        SeriesInactive, SeriesAccessDenied, ValidationFailure
    """
    if str(getattr(action, "value", action)).upper() != Action.CERTIFY.value:
        raise ValidationFailure(f"Unsupported action for certification: {action}")

    def _op():
        begin_write()
        document = lock_document(document_id)
        _validate_certifiable(document)

        if document.flow == DocumentFlow.PURCHASES.value:
            _certify_purchase(document, external_number)
        else:
            series = get_series(document.series_id)
            check_access(series, operator_ref)
            if series.is_manual:
                _certify_manual(document, series)
            else:
                check_chronology(series, document.document_type, document.issue_date)
                seal(document, series)

        if operator_ref and not document.operator_ref:
            document.operator_ref = operator_ref
        db.session.commit()
        return document.id

    certified_id = run_with_retry(_op)
    document = get_document(certified_id)
    logger.info("Certified document %s (%s)", document.number, document.id)

    warning = posting_service.apply_certification_effects(certified_id)
    db.session.refresh(document)
    return TransitionResult(document=document, warnings=[warning] if warning else [])
