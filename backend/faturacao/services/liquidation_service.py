# Overview: Receipt issuance against certified invoices.

"""
Liquidation

WHY: Payments against an invoice are recorded by issuing a receipt (RC).
The receipt is always numbered and fingerprinted at birth, whatever the
series kind, and points back at the invoice it settles.

INVARIANTS:
- Only certified, non-cancelled plain invoices (FT) are liquidated
- paid_cents never exceeds total_cents
- status becomes PAID when paid_cents reaches total_cents, else PARTIAL
"""

from __future__ import annotations

import logging
from datetime import date

from ..extensions import db
from ..models import FiscalDocument, FiscalDocumentLine
from ..document_types import DocumentFlow, DocumentStatus, DocumentType, PaymentMethod, parse_payment_method
from ..errors import InvalidLiquidation, ValidationFailure
from faturacao.time_utils import parse_iso_date, today
from . import posting_service
from .certification_service import TransitionResult, check_chronology, seal
from .chain_service import get_document, lock_document
from .concurrency import begin_write, run_with_retry
from .register_service import get_register
from .series_service import check_access, get_series

logger = logging.getLogger(__name__)


def _validate_source(invoice: FiscalDocument, amount_cents: int) -> None:
    if invoice.flow != DocumentFlow.SALES.value:
        raise InvalidLiquidation(
            "Supplier documents are settled outside the receipt flow",
            details={"document_id": invoice.id},
        )
    if invoice.document_type != DocumentType.INVOICE.value:
        raise InvalidLiquidation(
            f"Only invoices (FT) can be liquidated, not {invoice.document_type}",
            details={"document_id": invoice.id, "document_type": invoice.document_type},
        )
    if invoice.status == DocumentStatus.CANCELLED.value:
        raise InvalidLiquidation(
            f"Invoice {invoice.number} is cancelled",
            details={"document_id": invoice.id},
        )
    if not invoice.is_certified:
        raise InvalidLiquidation(
            "Draft invoices cannot be liquidated",
            details={"document_id": invoice.id},
        )
    if amount_cents > invoice.outstanding_cents:
        raise InvalidLiquidation(
            f"Amount exceeds the outstanding balance of {invoice.number}",
            details={
                "document_id": invoice.id,
                "amount_cents": amount_cents,
                "outstanding_cents": invoice.outstanding_cents,
            },
        )


def _build_receipt(
    invoice: FiscalDocument,
    amount_cents: int,
    method: PaymentMethod,
    register_id: int | None,
    value_date: date,
    doc_date: date,
    operator_ref: str | None,
) -> FiscalDocument:
    receipt = FiscalDocument(
        flow=invoice.flow,
        document_type=DocumentType.RECEIPT.value,
        series_id=invoice.series_id,
        issue_date=doc_date,
        due_date=doc_date,
        accounting_date=value_date,
        currency=invoice.currency,
        exchange_rate=invoice.exchange_rate,
        party_ref=invoice.party_ref,
        party_name=invoice.party_name,
        party_tax_id=invoice.party_tax_id,
        subtotal_cents=amount_cents,
        total_cents=amount_cents,
        paid_cents=amount_cents,
        payment_method=method.value,
        cash_register_id=register_id,
        status=DocumentStatus.DRAFT.value,
        source=invoice.source,
        operator_ref=operator_ref,
        source_document_id=invoice.id,
    )
    receipt.lines.append(FiscalDocumentLine(
        position=1,
        item_type="SERVICE",
        description=f"Pagamento Ref: {invoice.number}",
        quantity=1,
        unit_price_cents=amount_cents,
        line_total_cents=amount_cents,
        tax_cents=0,
    ))
    return receipt


def liquidate(
    invoice_id: str,
    amount_cents: int,
    method,
    register_id: int | None = None,
    value_date=None,
    doc_date=None,
    operator_ref: str | None = None,
) -> TransitionResult:
    """
    Record a payment against an invoice by issuing a receipt.

    Args:
        invoice_id: Certified FT being paid
        amount_cents: Amount paid (> 0, <= outstanding)
        method: Payment method
        register_id: Cash register receiving the money (optional)
        value_date: Accounting (value) date, defaults to doc_date
        doc_date: Receipt issue date, defaults to today

    Returns:
        TransitionResult with the updated invoice as document and the
        receipt in related.
    """
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise InvalidLiquidation("amount_cents must be a positive integer", details={"amount_cents": amount_cents})
    method = parse_payment_method(method)
    if method is None:
        raise ValidationFailure("payment method is required")
    doc_date = parse_iso_date(doc_date) or today()
    value_date = parse_iso_date(value_date) or doc_date
    if register_id is not None:
        get_register(register_id)

    def _op():
        begin_write()
        invoice = lock_document(invoice_id)
        _validate_source(invoice, amount_cents)

        series = get_series(invoice.series_id)
        check_access(series, operator_ref)
        check_chronology(series, DocumentType.RECEIPT, doc_date)

        receipt = _build_receipt(invoice, amount_cents, method, register_id, value_date, doc_date, operator_ref)
        db.session.add(receipt)
        seal(receipt, series)

        invoice.paid_cents = invoice.paid_cents + amount_cents
        if invoice.paid_cents >= invoice.total_cents:
            invoice.status = DocumentStatus.PAID.value
        else:
            invoice.status = DocumentStatus.PARTIAL.value

        db.session.commit()
        return receipt.id

    receipt_id = run_with_retry(_op)
    receipt = get_document(receipt_id)
    logger.info("Issued receipt %s for invoice %s", receipt.number, invoice_id)

    warning = posting_service.apply_certification_effects(receipt_id)
    invoice = get_document(invoice_id)
    db.session.refresh(invoice)
    db.session.refresh(receipt)
    return TransitionResult(document=invoice, related=[receipt], warnings=[warning] if warning else [])
