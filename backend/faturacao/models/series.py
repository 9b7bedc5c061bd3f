from __future__ import annotations

from ..extensions import db
from faturacao.time_utils import to_utc_z


class DocumentSeries(db.Model):
    """
    Named numbering scope (e.g. "Série Geral 2024", code "A").

    WHY: Certified numbers are unique per (series, document type, year).
    Each series carries its own counters in SeriesSequence.

    KINDS:
    - NORMAL: certifying series; numbers and fingerprints are allocated
    - POS: same rules as NORMAL, used by point-of-sale terminals
    - MANUAL: recovery of paper documents; the number typed by the operator
      is kept, no fingerprint, no chronology check
    """
    __tablename__ = "document_series"
    __table_args__ = (
        db.UniqueConstraint("code", "fiscal_year", name="uq_document_series_code_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    fiscal_year = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(16), nullable=False, default="NORMAL")  # NORMAL, MANUAL, POS
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Printed on documents
    bank_details = db.Column(db.Text, nullable=True)
    footer_text = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def is_manual(self) -> bool:
        return self.kind == "MANUAL"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "fiscal_year": self.fiscal_year,
            "kind": self.kind,
            "is_active": self.is_active,
            "bank_details": self.bank_details,
            "footer_text": self.footer_text,
            "allowed_user_refs": sorted(a.user_ref for a in self.access_entries),
            "sequences": {
                f"{s.document_type}/{s.year}": s.last_number for s in self.sequences
            },
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SeriesUserAccess(db.Model):
    """Users allowed to issue documents in a series. No rows = unrestricted."""
    __tablename__ = "series_user_access"
    __table_args__ = (
        db.UniqueConstraint("series_id", "user_ref", name="uq_series_user_access"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    series_id = db.Column(db.Integer, db.ForeignKey("document_series.id"), nullable=False, index=True)
    user_ref = db.Column(db.String(64), nullable=False)

    series = db.relationship("DocumentSeries", backref=db.backref("access_entries", lazy=True, cascade="all, delete-orphan"))


class SeriesSequence(db.Model):
    """
    Last issued sequence per (series, document type, year).

    INVARIANT: last_number never decreases. It is only ever changed by a
    conditional UPDATE (compare-and-swap) in sequence_service.
    """
    __tablename__ = "series_sequences"
    __table_args__ = (
        db.UniqueConstraint("series_id", "document_type", "year", name="uq_series_sequences_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    series_id = db.Column(db.Integer, db.ForeignKey("document_series.id"), nullable=False, index=True)
    document_type = db.Column(db.String(8), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    series = db.relationship("DocumentSeries", backref=db.backref("sequences", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "series_id": self.series_id,
            "document_type": self.document_type,
            "year": self.year,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }
