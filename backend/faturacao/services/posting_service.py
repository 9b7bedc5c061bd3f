# Overview: Side-effect coordinator for cash, stock and client-account postings.

"""
Side-Effect Coordinator

WHY: A certified document moves money through a cash register, goods
through a warehouse and the client's current account. Those bookkeeping
effects must happen exactly once per document, and must never undo the
certification itself if they fail.

DESIGN PRINCIPLES:
- Runs AFTER the certification transaction committed, in its own
  transaction, so a storage problem never stalls numbering
- Claim-then-post: the document's effects_status is moved to POSTED by a
  conditional UPDATE in the same transaction as the postings. A second
  call finds nothing to claim and posts nothing
- All postings of one document commit together or not at all
- Failures are logged and recorded (effects_status=FAILED, effects_error)
  for reconciliation; the caller receives a warning, not an exception
- Ledgers are append-only: corrections are opposite-kind rows
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import CashRegisterPosting, ClientAccountPosting, FiscalDocument, StockPosting
from ..document_types import (
    DocumentFlow,
    DocumentStatus,
    DocumentType,
    EffectsStatus,
    NON_FISCAL_TYPES,
    PAID_ON_ISSUE_TYPES,
    PaymentMethod,
    STOCK_ENTRY_TYPES,
    STOCK_EXIT_TYPES,
    parse_document_type,
)
from ..errors import FiscalError, SideEffectPostingFailure
from faturacao.time_utils import utcnow
from . import register_service
from .chain_service import get_document
from .concurrency import begin_write, run_with_retry

logger = logging.getLogger(__name__)


LEDGER_CASH = "CASH"
LEDGER_STOCK = "STOCK"
LEDGER_CLIENT = "CLIENT"


@dataclass(frozen=True)
class PlannedPosting:
    ledger: str
    kind: str
    amount_cents: int = 0
    quantity: Decimal | None = None
    cash_register_id: int | None = None
    product_ref: str | None = None
    warehouse_ref: str | None = None
    party_ref: str | None = None
    description: str | None = None


# =============================================================================
# PLANNING (pure)
# =============================================================================

def _plan_cash(document: FiscalDocument, doc_type: DocumentType, purchase: bool) -> list[PlannedPosting]:
    if not document.cash_register_id or not document.payment_method:
        return []
    if document.payment_method == PaymentMethod.CREDIT_ACCOUNT.value:
        return []
    if document.total_cents <= 0 or doc_type in NON_FISCAL_TYPES:
        return []

    refund = doc_type == DocumentType.CREDIT_NOTE
    money_in = refund if purchase else not refund
    label = "Compra" if purchase else "Venda"
    return [PlannedPosting(
        ledger=LEDGER_CASH,
        kind="ENTRY" if money_in else "EXIT",
        amount_cents=document.total_cents,
        cash_register_id=document.cash_register_id,
        description=f"{label} {doc_type.value} {document.number}",
    )]


def _plan_stock(document: FiscalDocument, doc_type: DocumentType, purchase: bool) -> list[PlannedPosting]:
    if purchase:
        if doc_type in (DocumentType.RECEIPT,):
            return []
        kind = "EXIT" if doc_type == DocumentType.CREDIT_NOTE else "ENTRY"
        note = f"Entrada automática compra {document.number}"
    elif doc_type in STOCK_EXIT_TYPES:
        kind, note = "EXIT", f"Baixa automática {document.number}"
    elif doc_type in STOCK_ENTRY_TYPES:
        kind, note = "ENTRY", f"Devolução {document.number}"
    else:
        return []

    return [
        PlannedPosting(
            ledger=LEDGER_STOCK,
            kind=kind,
            quantity=line.quantity,
            product_ref=line.product_ref,
            warehouse_ref=document.warehouse_ref,
            description=line.description,
        )
        for line in document.lines
        if line.is_physical
    ]


def _plan_client(document: FiscalDocument, doc_type: DocumentType) -> list[PlannedPosting]:
    if not document.party_ref or document.total_cents <= 0:
        return []

    def _posting(kind: str, description: str) -> PlannedPosting:
        return PlannedPosting(
            ledger=LEDGER_CLIENT,
            kind=kind,
            amount_cents=document.total_cents,
            party_ref=document.party_ref,
            description=f"{description} {document.number}",
        )

    if doc_type in (DocumentType.INVOICE, DocumentType.DEBIT_NOTE):
        return [_posting("DEBIT", f"Emissão {doc_type.value}")]
    if doc_type == DocumentType.CREDIT_NOTE:
        return [_posting("CREDIT", f"Emissão {doc_type.value}")]
    if doc_type in PAID_ON_ISSUE_TYPES:
        return [
            _posting("DEBIT", f"Emissão {doc_type.value}"),
            _posting("CREDIT", f"Pagamento imediato {doc_type.value}"),
        ]
    if doc_type == DocumentType.RECEIPT:
        return [_posting("CREDIT", "Pagamento")]
    return []


def plan_effects(document: FiscalDocument) -> list[PlannedPosting]:
    """
    Every posting certification of this document implies. No writes.

    A document cancelled after certification keeps its plan: its corrective
    document posts the opposite rows, so a late retry must still post these.
    """
    if document.status == DocumentStatus.CANCELLED.value and not document.is_certified:
        return []
    doc_type = parse_document_type(document.document_type)
    purchase = document.flow == DocumentFlow.PURCHASES.value

    planned = _plan_cash(document, doc_type, purchase)
    planned += _plan_stock(document, doc_type, purchase)
    if not purchase:
        planned += _plan_client(document, doc_type)
    return planned


def initial_effects_status(document: FiscalDocument) -> str:
    return EffectsStatus.PENDING.value if plan_effects(document) else EffectsStatus.NONE.value


# =============================================================================
# POSTING
# =============================================================================

def _write_posting(document: FiscalDocument, posting: PlannedPosting, origin: str) -> None:
    if posting.ledger == LEDGER_CASH:
        delta = posting.amount_cents if posting.kind == "ENTRY" else -posting.amount_cents
        try:
            register_service.adjust_balance(posting.cash_register_id, delta)
        except FiscalError as exc:
            raise SideEffectPostingFailure(
                f"Cash register posting failed for {document.number}: {exc.message}",
                details={"document_id": document.id, "cash_register_id": posting.cash_register_id},
            )
        db.session.add(CashRegisterPosting(
            cash_register_id=posting.cash_register_id,
            document_id=document.id,
            document_number=document.number,
            kind=posting.kind,
            amount_cents=posting.amount_cents,
            payment_method=document.payment_method,
            origin=origin,
            description=posting.description,
        ))
    elif posting.ledger == LEDGER_STOCK:
        db.session.add(StockPosting(
            document_id=document.id,
            document_number=document.number,
            kind=posting.kind,
            product_ref=posting.product_ref,
            description=posting.description,
            quantity=posting.quantity,
            warehouse_ref=posting.warehouse_ref,
            note=f"Via {document.document_type} {document.number}",
        ))
    elif posting.ledger == LEDGER_CLIENT:
        db.session.add(ClientAccountPosting(
            party_ref=posting.party_ref,
            document_id=document.id,
            document_number=document.number,
            kind=posting.kind,
            amount_cents=posting.amount_cents,
            description=posting.description,
        ))
    else:
        raise SideEffectPostingFailure(f"Unknown ledger {posting.ledger}")


def _claim(document_id: str, from_statuses: tuple[str, ...], to_status: str) -> bool:
    result = db.session.execute(
        update(FiscalDocument)
        .where(
            FiscalDocument.id == document_id,
            FiscalDocument.effects_status.in_(from_statuses),
        )
        .values(effects_status=to_status, effects_error=None, effects_posted_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _record_failure(document_id: str, exc: Exception) -> None:
    db.session.rollback()
    db.session.execute(
        update(FiscalDocument)
        .where(
            FiscalDocument.id == document_id,
            FiscalDocument.effects_status.in_((EffectsStatus.PENDING.value, EffectsStatus.FAILED.value)),
        )
        .values(effects_status=EffectsStatus.FAILED.value, effects_error=str(exc)[:2000])
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def apply_certification_effects(document_id: str) -> str | None:
    """
    Post cash, stock and client-account effects of a certified document.

    Returns None when everything was posted (or nothing was due), or a
    warning string when posting failed and the gap was recorded.
    """
    def _op():
        begin_write()
        if not _claim(document_id, (EffectsStatus.PENDING.value, EffectsStatus.FAILED.value), EffectsStatus.POSTED.value):
            db.session.rollback()
            return 0

        document = db.session.query(FiscalDocument).filter_by(id=document_id).populate_existing().one()
        origin = "PURCHASES" if document.flow == DocumentFlow.PURCHASES.value else "SALES"
        planned = plan_effects(document)
        for posting in planned:
            _write_posting(document, posting, origin)
        db.session.commit()
        return len(planned)

    try:
        posted = run_with_retry(_op)
    except (FiscalError, SQLAlchemyError) as exc:
        logger.warning("Side effects failed for document %s: %s", document_id, exc)
        _record_failure(document_id, exc)
        return f"Side effects pending reconciliation: {exc}"

    if posted:
        logger.info("Posted %s side effects for document %s", posted, document_id)
    return None


def reverse_effects(document_id: str, reason: str | None = None) -> str | None:
    """
    Undo what a document posted by appending opposite-kind rows.

    Used where no corrective document carries the reversal (receipt and
    purchase annulment). Effects never posted (PENDING/FAILED) are simply
    dropped. Reversal happens at most once (POSTED -> REVERSED).
    """
    def _op():
        begin_write()
        if _claim(document_id, (EffectsStatus.PENDING.value, EffectsStatus.FAILED.value), EffectsStatus.NONE.value):
            db.session.commit()
            return 0
        if not _claim(document_id, (EffectsStatus.POSTED.value,), EffectsStatus.REVERSED.value):
            db.session.rollback()
            return 0

        document = get_document(document_id)
        note = f"Anulação {document.number}" + (f": {reason}" if reason else "")
        count = 0

        for cash in db.session.query(CashRegisterPosting).filter_by(document_id=document_id).all():
            opposite = "EXIT" if cash.kind == "ENTRY" else "ENTRY"
            delta = cash.amount_cents if opposite == "ENTRY" else -cash.amount_cents
            register_service.adjust_balance(cash.cash_register_id, delta)
            db.session.add(CashRegisterPosting(
                cash_register_id=cash.cash_register_id,
                document_id=document_id,
                document_number=document.number,
                kind=opposite,
                amount_cents=cash.amount_cents,
                payment_method=cash.payment_method,
                origin=cash.origin,
                description=note,
            ))
            count += 1

        for stock in db.session.query(StockPosting).filter_by(document_id=document_id).all():
            db.session.add(StockPosting(
                document_id=document_id,
                document_number=document.number,
                kind="EXIT" if stock.kind == "ENTRY" else "ENTRY",
                product_ref=stock.product_ref,
                description=stock.description,
                quantity=stock.quantity,
                warehouse_ref=stock.warehouse_ref,
                note=note,
            ))
            count += 1

        for client in db.session.query(ClientAccountPosting).filter_by(document_id=document_id).all():
            db.session.add(ClientAccountPosting(
                party_ref=client.party_ref,
                document_id=document_id,
                document_number=document.number,
                kind="DEBIT" if client.kind == "CREDIT" else "CREDIT",
                amount_cents=client.amount_cents,
                description=note,
            ))
            count += 1

        db.session.commit()
        return count

    try:
        reversed_count = run_with_retry(_op)
    except (FiscalError, SQLAlchemyError) as exc:
        db.session.rollback()
        logger.warning("Reversal of side effects failed for document %s: %s", document_id, exc)
        db.session.execute(
            update(FiscalDocument)
            .where(FiscalDocument.id == document_id)
            .values(effects_error=f"Reversal failed: {exc}"[:2000])
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return f"Reversal pending reconciliation: {exc}"

    if reversed_count:
        logger.info("Reversed %s postings of document %s", reversed_count, document_id)
    return None


# =============================================================================
# RECONCILIATION
# =============================================================================

def list_integration_gaps() -> list[FiscalDocument]:
    return (
        db.session.query(FiscalDocument)
        .filter(FiscalDocument.effects_status == EffectsStatus.FAILED.value)
        .order_by(FiscalDocument.processed_at)
        .all()
    )


def retry_effects(document_id: str) -> str | None:
    """Re-attempt a FAILED posting. POSTED documents are left untouched."""
    get_document(document_id)
    return apply_certification_effects(document_id)
