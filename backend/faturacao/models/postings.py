from __future__ import annotations

from ..extensions import db
from faturacao.time_utils import to_utc_z

"""
Append-only side-effect ledgers.

Rows are written once by posting_service and never updated or deleted.
Corrections are new rows with the opposite kind, tagged with the number of
the corrective document.
"""


class CashRegisterPosting(db.Model):
    __tablename__ = "cash_register_postings"
    __table_args__ = (
        db.Index("ix_cash_postings_register_occurred", "cash_register_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    document_id = db.Column(db.String(36), db.ForeignKey("fiscal_documents.id"), nullable=False, index=True)
    document_number = db.Column(db.String(64), nullable=True)

    kind = db.Column(db.String(8), nullable=False)  # ENTRY, EXIT
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)
    origin = db.Column(db.String(16), nullable=False, default="SALES")  # SALES, PURCHASES
    description = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_id": self.cash_register_id,
            "document_id": self.document_id,
            "document_number": self.document_number,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "origin": self.origin,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class StockPosting(db.Model):
    __tablename__ = "stock_postings"
    __table_args__ = (
        db.Index("ix_stock_postings_product_warehouse", "product_ref", "warehouse_ref"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), db.ForeignKey("fiscal_documents.id"), nullable=False, index=True)
    document_number = db.Column(db.String(64), nullable=True)

    kind = db.Column(db.String(8), nullable=False)  # ENTRY, EXIT
    product_ref = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    warehouse_ref = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "document_number": self.document_number,
            "kind": self.kind,
            "product_ref": self.product_ref,
            "description": self.description,
            "quantity": str(self.quantity),
            "warehouse_ref": self.warehouse_ref,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class ClientAccountPosting(db.Model):
    """Client current-account movement (DEBIT raises what the client owes)."""
    __tablename__ = "client_account_postings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    party_ref = db.Column(db.String(64), nullable=False, index=True)
    document_id = db.Column(db.String(36), db.ForeignKey("fiscal_documents.id"), nullable=False, index=True)
    document_number = db.Column(db.String(64), nullable=True)

    kind = db.Column(db.String(8), nullable=False)  # DEBIT, CREDIT
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "party_ref": self.party_ref,
            "document_id": self.document_id,
            "document_number": self.document_number,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
        }
