# Overview: Draft management and the single entry point for document actions.

"""
Document Service

WHY: Callers hand the engine a candidate document plus an intended action.
Drafts are free-form and editable; everything past DRAFT goes through the
certification, liquidation and rectification services.

DESIGN PRINCIPLES:
- Totals are always recomputed server-side from the lines
- Engine-owned fields (number, hash, status, paid amount) never come from
  a payload
- A certified document cannot be edited or deleted, only cancelled
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from ..extensions import db
from ..models import FiscalDocument, FiscalDocumentLine
from ..document_types import (
    Action,
    DocumentFlow,
    DocumentStatus,
    DocumentType,
    ItemType,
    PURCHASE_TYPES,
    parse_document_type,
    parse_flow,
    parse_payment_method,
)
from ..errors import (
    CertifiedDeletionForbidden,
    ImmutableFieldMutationAttempt,
    ValidationFailure,
)
from ..validation import (
    DOCUMENT_HEADER_POLICY,
    DOCUMENT_LINE_POLICY,
    enforce_rules_document_header,
    enforce_rules_document_line,
    validate_payload,
)
from faturacao.time_utils import today
from .certification_service import TransitionResult, certify
from .chain_service import get_document, lock_document
from .liquidation_service import liquidate
from .rectification_service import cancel
from .register_service import get_register
from .series_service import check_access, get_series

logger = logging.getLogger(__name__)

HUNDRED_PERCENT_BPS = Decimal(10_000)

# Issued only through liquidation or cancellation.
ENGINE_ISSUED_TYPES = frozenset({
    DocumentType.RECEIPT,
    DocumentType.CREDIT_NOTE,
    DocumentType.DEBIT_NOTE,
})


# =============================================================================
# TOTALS
# =============================================================================

def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_line_amounts(quantity, unit_price_cents: int, discount_bps: int, tax_rate_bps: int) -> tuple[int, int]:
    """(net line total, line tax) in cents; net is after the line discount, before tax."""
    gross = Decimal(quantity) * Decimal(unit_price_cents)
    net = gross * (HUNDRED_PERCENT_BPS - Decimal(discount_bps)) / HUNDRED_PERCENT_BPS
    net_cents = _round_cents(net)
    tax_cents = _round_cents(Decimal(net_cents) * Decimal(tax_rate_bps) / HUNDRED_PERCENT_BPS)
    return net_cents, tax_cents


def recompute_totals(document: FiscalDocument) -> None:
    """
    subtotal = sum of net line totals
    discount = subtotal * global discount
    tax      = line taxes reduced by the same global discount
    total    = subtotal - discount + tax - withholding
    """
    subtotal = 0
    line_tax = 0
    for line in document.lines:
        net, tax = compute_line_amounts(line.quantity, line.unit_price_cents, line.discount_bps, line.tax_rate_bps)
        line.line_total_cents = net
        line.tax_cents = tax
        subtotal += net
        line_tax += tax

    global_bps = Decimal(document.global_discount_bps or 0)
    discount = _round_cents(Decimal(subtotal) * global_bps / HUNDRED_PERCENT_BPS)
    tax = _round_cents(Decimal(line_tax) * (HUNDRED_PERCENT_BPS - global_bps) / HUNDRED_PERCENT_BPS)
    total = subtotal - discount + tax - (document.withholding_cents or 0)
    if total < 0:
        raise ValidationFailure(
            "Withholding cannot exceed the document total",
            details={"withholding_cents": document.withholding_cents, "total_before_withholding": total + document.withholding_cents},
        )

    document.subtotal_cents = subtotal
    document.discount_cents = discount
    document.tax_cents = tax
    document.total_cents = total


# =============================================================================
# PAYLOAD HANDLING
# =============================================================================

def _build_lines(raw_lines) -> list[FiscalDocumentLine]:
    if raw_lines is None:
        return []
    if not isinstance(raw_lines, list):
        raise ValidationFailure("lines must be a list")

    lines = []
    for position, raw in enumerate(raw_lines, start=1):
        try:
            patch = validate_payload(model=FiscalDocumentLine, payload=raw, policy=DOCUMENT_LINE_POLICY, partial=False)
            enforce_rules_document_line(patch)
        except ValidationFailure as exc:
            raise ValidationFailure(f"Line {position}: {exc.message}", details={"line": position, **exc.details})

        item_type = str(patch.pop("item_type", None) or "").upper()
        if not item_type:
            item_type = ItemType.PRODUCT.value if patch.get("product_ref") else ItemType.SERVICE.value
        try:
            item_type = ItemType(item_type).value
        except ValueError:
            raise ValidationFailure(f"Line {position}: unknown item_type {item_type}", details={"line": position})

        lines.append(FiscalDocumentLine(
            position=position,
            item_type=item_type,
            discount_bps=patch.pop("discount_bps", None) or 0,
            tax_rate_bps=patch.pop("tax_rate_bps", None) or 0,
            **patch,
        ))
    return lines


def _apply_header(document: FiscalDocument, patch: dict) -> None:
    if "flow" in patch:
        patch["flow"] = parse_flow(patch["flow"]).value
    if "document_type" in patch:
        patch["document_type"] = parse_document_type(patch["document_type"]).value
    if "payment_method" in patch:
        method = parse_payment_method(patch["payment_method"])
        patch["payment_method"] = method.value if method else None
    if patch.get("currency"):
        patch["currency"] = patch["currency"].upper()
    for key, value in patch.items():
        setattr(document, key, value)


def _validate_draft(document: FiscalDocument, operator_ref: str | None) -> None:
    """Cross-field rules checked against the merged draft state."""
    doc_type = parse_document_type(document.document_type)
    flow = parse_flow(document.flow)

    if doc_type in ENGINE_ISSUED_TYPES and flow == DocumentFlow.SALES:
        raise ValidationFailure(
            f"{doc_type.value} documents are issued through liquidation or cancellation",
            details={"document_type": doc_type.value},
        )

    if flow == DocumentFlow.PURCHASES:
        if doc_type not in PURCHASE_TYPES:
            raise ValidationFailure(
                f"{doc_type.value} is not a purchase document type",
                details={"document_type": doc_type.value, "allowed": sorted(t.value for t in PURCHASE_TYPES)},
            )
    else:
        if document.series_id is None:
            raise ValidationFailure("series_id is required for sales documents")
        series = get_series(document.series_id)
        check_access(series, operator_ref)
        if document.number and not series.is_manual:
            raise ValidationFailure(
                "Document numbers are assigned on certification",
                details={"series_id": series.id, "number": document.number},
            )

    if document.series_id is not None and flow == DocumentFlow.PURCHASES:
        get_series(document.series_id)
    if document.cash_register_id is not None:
        get_register(document.cash_register_id)
    if document.source_document_id:
        get_document(document.source_document_id)


# =============================================================================
# DRAFT OPERATIONS
# =============================================================================

def create_draft(payload: dict) -> FiscalDocument:
    """
    Create a DRAFT document.

    Payload holds header fields (see DOCUMENT_HEADER_POLICY) plus
    "lines": [{description, quantity, unit_price_cents, discount_bps,
    tax_rate_bps, item_type, product_ref}, ...].
    """
    if not isinstance(payload, dict):
        raise ValidationFailure("Invalid JSON payload")
    payload = dict(payload)
    raw_lines = payload.pop("lines", None)

    patch = validate_payload(model=FiscalDocument, payload=payload, policy=DOCUMENT_HEADER_POLICY, partial=False)
    enforce_rules_document_header(patch)

    document = FiscalDocument(
        flow=DocumentFlow.SALES.value,
        currency=current_app.config.get("DEFAULT_CURRENCY", "AOA"),
        exchange_rate=Decimal(1),
        global_discount_bps=0,
        withholding_cents=0,
        status=DocumentStatus.DRAFT.value,
        is_certified=False,
        source="MANUAL",
    )
    _apply_header(document, patch)
    if document.issue_date is None:
        document.issue_date = today()
    if document.accounting_date is None:
        document.accounting_date = document.issue_date

    for line in _build_lines(raw_lines):
        document.lines.append(line)
    recompute_totals(document)
    _validate_draft(document, document.operator_ref)

    db.session.add(document)
    db.session.commit()
    logger.debug("Created draft %s (%s)", document.id, document.document_type)
    return document


def update_draft(document_id: str, payload: dict) -> FiscalDocument:
    """
    Patch a draft's header and, when "lines" is present, replace its lines.

    Raises:
        ImmutableFieldMutationAttempt: the document is certified
    """
    if not isinstance(payload, dict):
        raise ValidationFailure("Invalid JSON payload")
    payload = dict(payload)
    raw_lines = payload.pop("lines", None)
    replace_lines = raw_lines is not None

    document = lock_document(document_id)
    try:
        if document.is_certified:
            raise ImmutableFieldMutationAttempt(
                f"Document {document.number} is certified and can no longer be edited",
                details={"document_id": document.id, "fields": sorted(payload) + (["lines"] if replace_lines else [])},
            )
        if document.status == DocumentStatus.CANCELLED.value:
            raise ValidationFailure("Cancelled drafts cannot be edited", details={"document_id": document.id})

        patch = validate_payload(model=FiscalDocument, payload=payload, policy=DOCUMENT_HEADER_POLICY, partial=True)
        merged = {
            "issue_date": patch.get("issue_date", document.issue_date),
            "due_date": patch.get("due_date", document.due_date),
        }
        enforce_rules_document_header({**patch, **merged})

        new_lines = _build_lines(raw_lines) if replace_lines else None
        _apply_header(document, patch)
        if new_lines is not None:
            document.lines.clear()
            document.lines.extend(new_lines)
        recompute_totals(document)
        _validate_draft(document, patch.get("operator_ref", document.operator_ref))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return document


def create_derived_draft(
    source_id: str,
    document_type,
    operator_ref: str | None = None,
    issue_date=None,
) -> FiscalDocument:
    """
    New draft copied from an existing document (e.g. a delivery guide or an
    invoice from a proforma). Payment method and cash register are not
    copied: the derived document settles on its own terms.
    """
    doc_type = parse_document_type(document_type)
    source = get_document(source_id)
    if source.status == DocumentStatus.CANCELLED.value:
        raise ValidationFailure(
            f"Cannot derive from cancelled document {source.number or source.id}",
            details={"source_document_id": source.id},
        )

    payload = {
        "flow": source.flow,
        "document_type": doc_type.value,
        "series_id": source.series_id,
        "currency": source.currency,
        "exchange_rate": str(source.exchange_rate),
        "party_ref": source.party_ref,
        "party_name": source.party_name,
        "party_tax_id": source.party_tax_id,
        "global_discount_bps": source.global_discount_bps,
        "withholding_cents": source.withholding_cents,
        "warehouse_ref": source.warehouse_ref,
        "source": source.source,
        "operator_ref": operator_ref,
        "source_document_id": source.id,
        "lines": [
            {
                "item_type": line.item_type,
                "product_ref": line.product_ref,
                "description": line.description,
                "quantity": str(line.quantity),
                "unit_price_cents": line.unit_price_cents,
                "discount_bps": line.discount_bps,
                "tax_rate_bps": line.tax_rate_bps,
            }
            for line in source.lines
        ],
    }
    if issue_date is not None:
        payload["issue_date"] = issue_date
    return create_draft(payload)


def delete_document(document_id: str) -> None:
    """Physically delete an uncertified document."""
    document = get_document(document_id)
    if document.is_certified:
        raise CertifiedDeletionForbidden(
            f"Document {document.number} is certified; cancel it instead",
            details={"document_id": document.id, "number": document.number},
        )
    if document.derived_documents:
        raise ValidationFailure(
            "Other documents derive from this draft",
            details={"document_id": document.id, "derived": [d.id for d in document.derived_documents]},
        )
    try:
        db.session.delete(document)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.debug("Deleted draft %s", document_id)


def list_documents(
    series_id: int | None = None,
    document_type=None,
    status: str | None = None,
    flow=None,
    limit: int = 100,
    offset: int = 0,
) -> list[FiscalDocument]:
    query = db.session.query(FiscalDocument)
    if series_id is not None:
        query = query.filter(FiscalDocument.series_id == series_id)
    if document_type:
        query = query.filter(FiscalDocument.document_type == parse_document_type(document_type).value)
    if status:
        query = query.filter(FiscalDocument.status == str(status).upper())
    if flow:
        query = query.filter(FiscalDocument.flow == parse_flow(flow).value)
    return (
        query.order_by(FiscalDocument.issue_date.desc(), FiscalDocument.created_at.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


# =============================================================================
# ACTIONS
# =============================================================================

def submit(document_id: str, action, **kwargs) -> TransitionResult:
    """
    Apply CERTIFY, LIQUIDATE or CANCEL to a document.

    kwargs are forwarded to the matching operation:
    - CERTIFY: operator_ref, external_number
    - LIQUIDATE: amount_cents, method, register_id, value_date, doc_date, operator_ref
    - CANCEL: reason, operator_ref, issue_date
    """
    try:
        action = Action(str(getattr(action, "value", action)).strip().upper())
    except ValueError:
        raise ValidationFailure(
            f"Unknown action: {action}",
            details={"action": action, "allowed": [a.value for a in Action]},
        )

    if action == Action.CERTIFY:
        return certify(document_id, action=action, **kwargs)
    if action == Action.LIQUIDATE:
        return liquidate(document_id, **kwargs)
    return cancel(document_id, **kwargs)
