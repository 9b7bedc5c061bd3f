# Overview: Cancellation of documents through corrective credit/debit notes.

"""
Rectification Policy

WHY: A certified document is never deleted or edited. Its financial effect
is neutralized by a corrective document that copies it and points back at
it, and the original only changes status.

RULES:
- Credit note (NC) for a sale; debit note (ND) when the source is itself a
  credit note. A credit note of a credit note is never issued
- The corrective is born certified: numbered, fingerprinted, PAID
- The source keeps number, hash and lines; only status, cancellation
  reason and cancellation time change
- Receipts carry no corrective: the settled invoice is re-opened and the
  receipt's postings are reversed
- Drafts, proformas, quotes and purchase orders are only marked CANCELLED
- Purchase documents have their postings reversed; supplier numbering is
  external, so no corrective is allocated
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import FiscalDocument, FiscalDocumentLine
from ..document_types import (
    DocumentFlow,
    DocumentStatus,
    DocumentType,
    NON_FISCAL_TYPES,
    corrective_type_for,
    parse_document_type,
)
from ..errors import InvalidCancellationTarget, ValidationFailure
from faturacao.time_utils import parse_iso_date, today, utcnow
from . import posting_service
from .certification_service import TransitionResult, check_chronology, seal
from .chain_service import get_document, lock_document
from .concurrency import begin_write, run_with_retry
from .series_service import check_access, get_series

logger = logging.getLogger(__name__)


def _build_corrective(source: FiscalDocument, reason: str, issue_date, operator_ref: str | None) -> FiscalDocument:
    corrective_type = corrective_type_for(source.document_type)
    note = f"Anulação do documento {source.number}. Motivo: {reason}"
    corrective = FiscalDocument(
        flow=source.flow,
        document_type=corrective_type.value,
        series_id=source.series_id,
        issue_date=issue_date,
        due_date=issue_date,
        accounting_date=issue_date,
        currency=source.currency,
        exchange_rate=source.exchange_rate,
        party_ref=source.party_ref,
        party_name=source.party_name,
        party_tax_id=source.party_tax_id,
        subtotal_cents=source.subtotal_cents,
        global_discount_bps=source.global_discount_bps,
        discount_cents=source.discount_cents,
        tax_cents=source.tax_cents,
        withholding_cents=source.withholding_cents,
        total_cents=source.total_cents,
        paid_cents=source.total_cents,
        payment_method=source.payment_method,
        cash_register_id=source.cash_register_id,
        warehouse_ref=source.warehouse_ref,
        status=DocumentStatus.DRAFT.value,
        notes=f"{source.notes}\n{note}" if source.notes else note,
        source="MANUAL",
        operator_ref=operator_ref,
        source_document_id=source.id,
    )
    for line in source.lines:
        corrective.lines.append(FiscalDocumentLine(
            position=line.position,
            item_type=line.item_type,
            product_ref=line.product_ref,
            description=line.description,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            discount_bps=line.discount_bps,
            tax_rate_bps=line.tax_rate_bps,
            line_total_cents=line.line_total_cents,
            tax_cents=line.tax_cents,
        ))
    return corrective


def _mark_cancelled(document: FiscalDocument, reason: str) -> None:
    document.status = DocumentStatus.CANCELLED.value
    document.cancellation_reason = reason
    document.cancelled_at = utcnow()


def _reopen_invoice(receipt: FiscalDocument) -> FiscalDocument | None:
    if not receipt.source_document_id:
        return None
    invoice = lock_document(receipt.source_document_id)
    if invoice.status == DocumentStatus.CANCELLED.value:
        return invoice
    invoice.paid_cents = max(invoice.paid_cents - receipt.total_cents, 0)
    if invoice.paid_cents == 0:
        invoice.status = DocumentStatus.PENDING.value
    elif invoice.paid_cents < invoice.total_cents:
        invoice.status = DocumentStatus.PARTIAL.value
    return invoice


def cancel(
    document_id: str,
    reason: str,
    operator_ref: str | None = None,
    issue_date=None,
) -> TransitionResult:
    """
    Cancel a document.

    Returns:
        TransitionResult whose document is the cancelled source; related
        holds the corrective document (when one is issued) or the re-opened
        invoice (receipt annulment).

    Raises:
        InvalidCancellationTarget: the document is already cancelled
        ChronologyViolation: corrective date earlier than the last one of its type
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailure("reason is required")
    corrective_date = parse_iso_date(issue_date) or today()

    def _op():
        begin_write()
        source = lock_document(document_id)
        if source.status == DocumentStatus.CANCELLED.value:
            raise InvalidCancellationTarget(
                f"Document {source.number or source.id} is already cancelled",
                details={"document_id": source.id, "cancellation_reason": source.cancellation_reason},
            )

        doc_type = parse_document_type(source.document_type)
        related_ids: list[str] = []
        reverse = False

        if not source.is_certified or doc_type in NON_FISCAL_TYPES:
            pass
        elif source.flow == DocumentFlow.PURCHASES.value:
            reverse = True
        elif doc_type == DocumentType.RECEIPT:
            invoice = _reopen_invoice(source)
            if invoice is not None:
                related_ids.append(invoice.id)
            reverse = True
        else:
            series = get_series(source.series_id)
            check_access(series, operator_ref)
            corrective_type = corrective_type_for(doc_type)
            check_chronology(series, corrective_type, corrective_date)

            corrective = _build_corrective(source, reason, corrective_date, operator_ref)
            db.session.add(corrective)
            seal(corrective, series)
            db.session.flush()
            related_ids.append(corrective.id)

        _mark_cancelled(source, reason)
        db.session.commit()
        return related_ids, reverse

    related_ids, reverse = run_with_retry(_op)
    logger.info("Cancelled document %s: %s", document_id, reason)

    warnings = []
    if reverse:
        warning = posting_service.reverse_effects(document_id, reason)
        if warning:
            warnings.append(warning)
    else:
        # Correctives are the only new documents with effects to post.
        for related_id in related_ids:
            warning = posting_service.apply_certification_effects(related_id)
            if warning:
                warnings.append(warning)

    source = get_document(document_id)
    db.session.refresh(source)
    related = [get_document(r) for r in related_ids]
    for doc in related:
        db.session.refresh(doc)
    return TransitionResult(document=source, related=related, warnings=warnings)
