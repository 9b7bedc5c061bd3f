from __future__ import annotations

import uuid

from sqlalchemy import event, inspect, select

from ..extensions import db
from ..errors import CertifiedDeletionForbidden, ImmutableFieldMutationAttempt
from faturacao.time_utils import to_iso_date, to_utc_z


def _new_document_id() -> str:
    return str(uuid.uuid4())


# Columns sealed by certification. After is_certified has been committed as
# True only status, paid_cents, cancellation fields, notes on correctives
# and the side-effect bookkeeping may still change.
FROZEN_COLUMNS = (
    "flow",
    "document_type",
    "series_id",
    "number",
    "sequence",
    "fiscal_year",
    "issue_date",
    "due_date",
    "accounting_date",
    "currency",
    "exchange_rate",
    "party_ref",
    "party_name",
    "party_tax_id",
    "subtotal_cents",
    "global_discount_bps",
    "discount_cents",
    "tax_cents",
    "withholding_cents",
    "total_cents",
    "payment_method",
    "cash_register_id",
    "warehouse_ref",
    "hash",
    "previous_hash",
    "processed_at",
    "source_document_id",
    "is_certified",
)


class FiscalDocument(db.Model):
    """
    Any sales- or purchase-flow document: invoice, receipt, credit/debit
    note, proforma, quote, delivery guide, POS sale.

    LIFECYCLE:
    1. DRAFT: editable, deletable, no number (manual series excepted)
    2. PENDING / PAID: certified; number and hash assigned, content frozen
    3. PARTIAL / PAID: after liquidation receipts are issued against it
    4. CANCELLED: neutralized by a corrective document; never deleted

    DESIGN PRINCIPLES:
    - Certified documents are never physically deleted
    - Derived documents point back through source_document_id
    - Side effects (cash, stock, client account) are tracked by
      effects_status so they are applied at most once
    """
    __tablename__ = "fiscal_documents"
    __table_args__ = (
        db.UniqueConstraint("series_id", "document_type", "fiscal_year", "sequence", name="uq_fiscal_documents_sequence"),
        db.Index("ix_fiscal_documents_series_type_certified", "series_id", "document_type", "is_certified"),
        db.Index("ix_fiscal_documents_number", "number"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_document_id)
    flow = db.Column(db.String(16), nullable=False, default="SALES")  # SALES, PURCHASES
    document_type = db.Column(db.String(8), nullable=False, index=True)
    series_id = db.Column(db.Integer, db.ForeignKey("document_series.id"), nullable=True, index=True)

    # Human-readable number (e.g. "FT A 2024/37"); null until certified
    number = db.Column(db.String(64), nullable=True)
    sequence = db.Column(db.Integer, nullable=True)
    fiscal_year = db.Column(db.Integer, nullable=True)

    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    accounting_date = db.Column(db.Date, nullable=True)

    currency = db.Column(db.String(3), nullable=False, default="AOA")
    exchange_rate = db.Column(db.Numeric(18, 6), nullable=False, default=1)

    # Client/supplier snapshot at time of issue
    party_ref = db.Column(db.String(64), nullable=True, index=True)
    party_name = db.Column(db.String(255), nullable=True)
    party_tax_id = db.Column(db.String(32), nullable=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    global_discount_bps = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    withholding_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)
    warehouse_ref = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)  # DRAFT, PENDING, PARTIAL, PAID, CANCELLED
    is_certified = db.Column(db.Boolean, nullable=False, default=False)
    hash = db.Column(db.String(64), nullable=True)
    previous_hash = db.Column(db.String(64), nullable=True)
    integration_status = db.Column(db.String(16), nullable=False, default="EMITTED")
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Side-effect bookkeeping (NONE, PENDING, POSTED, FAILED)
    effects_status = db.Column(db.String(16), nullable=False, default="NONE", index=True)
    effects_error = db.Column(db.Text, nullable=True)
    effects_posted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(16), nullable=False, default="MANUAL")  # MANUAL, POS
    operator_ref = db.Column(db.String(64), nullable=True)

    # Back-reference to the document this one derives from
    source_document_id = db.Column(db.String(36), db.ForeignKey("fiscal_documents.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    series = db.relationship("DocumentSeries", backref=db.backref("documents", lazy=True))
    cash_register = db.relationship("CashRegister")
    source_document = db.relationship("FiscalDocument", remote_side=[id], backref=db.backref("derived_documents", lazy=True))
    lines = db.relationship(
        "FiscalDocumentLine",
        backref="document",
        lazy=True,
        order_by="FiscalDocumentLine.position",
        cascade="all, delete-orphan",
    )

    @property
    def outstanding_cents(self) -> int:
        return max(self.total_cents - self.paid_cents, 0)

    @property
    def hash_control(self) -> str | None:
        """Characters 1, 11, 21 and 31 of the fingerprint, as printed on paper."""
        if not self.hash:
            return None
        return "".join(self.hash[i] for i in (0, 10, 20, 30) if i < len(self.hash))

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "flow": self.flow,
            "document_type": self.document_type,
            "series_id": self.series_id,
            "number": self.number,
            "sequence": self.sequence,
            "fiscal_year": self.fiscal_year,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "accounting_date": to_iso_date(self.accounting_date),
            "currency": self.currency,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "party_ref": self.party_ref,
            "party_name": self.party_name,
            "party_tax_id": self.party_tax_id,
            "subtotal_cents": self.subtotal_cents,
            "global_discount_bps": self.global_discount_bps,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "withholding_cents": self.withholding_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "payment_method": self.payment_method,
            "cash_register_id": self.cash_register_id,
            "warehouse_ref": self.warehouse_ref,
            "status": self.status,
            "is_certified": self.is_certified,
            "hash": self.hash,
            "hash_control": self.hash_control,
            "integration_status": self.integration_status,
            "processed_at": to_utc_z(self.processed_at),
            "effects_status": self.effects_status,
            "effects_error": self.effects_error,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "notes": self.notes,
            "source": self.source,
            "operator_ref": self.operator_ref,
            "source_document_id": self.source_document_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class FiscalDocumentLine(db.Model):
    """
    Line item. line_total_cents is net of the line discount and before tax.
    """
    __tablename__ = "fiscal_document_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), db.ForeignKey("fiscal_documents.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    item_type = db.Column(db.String(16), nullable=False, default="SERVICE")  # PRODUCT, SERVICE
    product_ref = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    line_total_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    @property
    def is_physical(self) -> bool:
        return self.item_type == "PRODUCT" and bool(self.product_ref)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "item_type": self.item_type,
            "product_ref": self.product_ref,
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "discount_bps": self.discount_bps,
            "tax_rate_bps": self.tax_rate_bps,
            "line_total_cents": self.line_total_cents,
            "tax_cents": self.tax_cents,
        }


# =============================================================================
# IMMUTABILITY ENFORCEMENT
# =============================================================================
# Storage-level guard: the services never mutate sealed columns, these
# listeners catch anything that tries to.

def _persisted_is_certified(connection, document_id) -> bool:
    table = FiscalDocument.__table__
    return bool(connection.execute(
        select(table.c.is_certified).where(table.c.id == document_id)
    ).scalar())


def _stored_id(target) -> str:
    return inspect(target).identity[0]


def _was_certified(connection, target) -> bool:
    """Flag as stored before this flush. Expired instances read it from the row."""
    history = inspect(target).attrs.is_certified.history
    if history.deleted:
        return bool(history.deleted[0])
    if history.unchanged:
        return bool(history.unchanged[0])
    return _persisted_is_certified(connection, _stored_id(target))


@event.listens_for(FiscalDocument, "before_update")
def prevent_certified_mutation(mapper, connection, target):
    if not _was_certified(connection, target):
        return

    state = inspect(target)
    changed = [
        name for name in FROZEN_COLUMNS
        if state.attrs[name].history.has_changes()
    ]
    if changed:
        raise ImmutableFieldMutationAttempt(
            f"Document {_stored_id(target)} is certified; fields {', '.join(changed)} are frozen",
            details={"document_id": _stored_id(target), "fields": changed},
        )


@event.listens_for(FiscalDocument, "before_delete")
def prevent_certified_delete(mapper, connection, target):
    if _was_certified(connection, target):
        raise CertifiedDeletionForbidden(
            f"Document {_stored_id(target)} is certified and cannot be deleted",
            details={"document_id": _stored_id(target)},
        )


@event.listens_for(FiscalDocumentLine, "before_update")
def prevent_certified_line_update(mapper, connection, target):
    if _persisted_is_certified(connection, target.document_id):
        raise ImmutableFieldMutationAttempt(
            "Lines of a certified document are frozen",
            details={"document_id": target.document_id, "line_id": target.id},
        )


@event.listens_for(FiscalDocumentLine, "before_delete")
def prevent_certified_line_delete(mapper, connection, target):
    if _persisted_is_certified(connection, target.document_id):
        raise ImmutableFieldMutationAttempt(
            "Lines of a certified document cannot be removed",
            details={"document_id": target.document_id, "line_id": target.id},
        )
