# Overview: Document retrieval and parent/child chain traversal.

"""
Document Chain Index

Documents form a forest through source_document_id: receipts and credit
notes point at their invoice, a debit note at the credit note it cancels,
a delivery guide at the invoice it ships. Nothing here writes.
"""

from __future__ import annotations

from ..extensions import db
from ..models import FiscalDocument
from ..document_types import DocumentType, parse_document_type
from ..errors import DocumentNotFound
from .concurrency import lock_for_update


def get_document(document_id: str) -> FiscalDocument:
    document = db.session.get(FiscalDocument, document_id) if document_id else None
    if not document:
        raise DocumentNotFound(f"Document {document_id} not found", details={"document_id": document_id})
    return document


def lock_document(document_id: str) -> FiscalDocument:
    document = lock_for_update(
        db.session.query(FiscalDocument).filter_by(id=document_id)
    ).populate_existing().first()
    if not document:
        raise DocumentNotFound(f"Document {document_id} not found", details={"document_id": document_id})
    return document


def list_by_series_and_type(series_id: int, document_type, certified_only: bool = False) -> list[FiscalDocument]:
    document_type = parse_document_type(document_type)
    query = db.session.query(FiscalDocument).filter(
        FiscalDocument.series_id == series_id,
        FiscalDocument.document_type == document_type.value,
    )
    if certified_only:
        query = query.filter(FiscalDocument.is_certified.is_(True))
    return query.order_by(FiscalDocument.issue_date, FiscalDocument.sequence).all()


def source_of(document: FiscalDocument) -> FiscalDocument | None:
    if not document.source_document_id:
        return None
    return db.session.get(FiscalDocument, document.source_document_id)


def children_of(document_id: str, document_type=None) -> list[FiscalDocument]:
    query = db.session.query(FiscalDocument).filter(FiscalDocument.source_document_id == document_id)
    if document_type is not None:
        query = query.filter(FiscalDocument.document_type == parse_document_type(document_type).value)
    return query.order_by(FiscalDocument.created_at, FiscalDocument.id).all()


def receipts_for(invoice_id: str) -> list[FiscalDocument]:
    return children_of(invoice_id, DocumentType.RECEIPT)


def correctives_for(document_id: str) -> list[FiscalDocument]:
    return [
        d for d in children_of(document_id)
        if d.document_type in (DocumentType.CREDIT_NOTE.value, DocumentType.DEBIT_NOTE.value)
    ]


def root_of(document: FiscalDocument) -> FiscalDocument:
    seen = {document.id}
    current = document
    while current.source_document_id:
        parent = source_of(current)
        if parent is None or parent.id in seen:
            break
        seen.add(parent.id)
        current = parent
    return current


def descendants(document_id: str) -> list[FiscalDocument]:
    """Every document derived, directly or transitively, from document_id."""
    found: list[FiscalDocument] = []
    seen = {document_id}
    frontier = [document_id]
    while frontier:
        children = (
            db.session.query(FiscalDocument)
            .filter(FiscalDocument.source_document_id.in_(frontier))
            .order_by(FiscalDocument.created_at, FiscalDocument.id)
            .all()
        )
        frontier = []
        for child in children:
            if child.id in seen:
                continue
            seen.add(child.id)
            found.append(child)
            frontier.append(child.id)
    return found


def chain_tree(document_id: str) -> dict:
    """Nested view of the whole chain the document belongs to, from its root."""
    root = root_of(get_document(document_id))
    nodes = [root] + descendants(root.id)

    by_parent: dict[str | None, list[FiscalDocument]] = {}
    for node in nodes[1:]:
        by_parent.setdefault(node.source_document_id, []).append(node)

    def _node(doc: FiscalDocument) -> dict:
        return {
            "id": doc.id,
            "document_type": doc.document_type,
            "number": doc.number,
            "status": doc.status,
            "total_cents": doc.total_cents,
            "children": [_node(c) for c in by_parent.get(doc.id, [])],
        }

    return _node(root)
