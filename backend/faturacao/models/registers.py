from __future__ import annotations

from ..extensions import db
from faturacao.time_utils import to_utc_z


class CashRegister(db.Model):
    """
    Cash register (caixa) whose balance follows certified documents.

    WHY: Sales paid on issue, receipts and purchase payments move money in
    and out of a register. balance_cents is only ever changed with a single
    UPDATE ... SET balance_cents = balance_cents + :delta.
    """
    __tablename__ = "cash_registers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="OPEN")  # OPEN, CLOSED, SUSPENDED
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    operator_ref = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "opening_balance_cents": self.opening_balance_cents,
            "balance_cents": self.balance_cents,
            "operator_ref": self.operator_ref,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
