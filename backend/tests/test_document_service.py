# Overview: Pytest coverage for draft management and action dispatch.

from datetime import date
from decimal import Decimal

import pytest

from faturacao.errors import (
    CertifiedDeletionForbidden,
    DocumentNotFound,
    ImmutableFieldMutationAttempt,
    InvalidDocumentType,
    RegisterNotFound,
    SeriesNotFound,
    ValidationFailure,
)
from faturacao.models import FiscalDocument, FiscalDocumentLine
from faturacao.services import document_service
from faturacao.services.certification_service import certify


class TestTotals:
    def test_line_discount_tax_and_global_discount(self, db_session, series, make_draft, line):
        doc = make_draft(
            series,
            global_discount_bps=500,
            lines=[line("Produto", quantity="2", unit_price_cents=50000, discount_bps=1000, tax_rate_bps=1400)],
        )

        assert doc.lines[0].line_total_cents == 90000
        assert doc.lines[0].tax_cents == 12600
        assert doc.subtotal_cents == 90000
        assert doc.discount_cents == 4500
        assert doc.tax_cents == 11970
        assert doc.total_cents == 97470

    def test_half_up_rounding(self):
        assert document_service.compute_line_amounts(Decimal("3"), 3333, 0, 1400) == (9999, 1400)
        assert document_service.compute_line_amounts(Decimal("1"), 5, 1000, 0) == (5, 0)

    def test_withholding_reduces_total(self, db_session, series, make_draft):
        doc = make_draft(series, withholding_cents=6500)
        assert doc.total_cents == 100000 - 6500

    def test_withholding_cannot_exceed_total(self, db_session, series, make_draft):
        with pytest.raises(ValidationFailure):
            make_draft(series, withholding_cents=100001)


class TestCreateDraft:
    def test_defaults(self, db_session, series, make_draft):
        doc = make_draft(series)

        assert doc.status == "DRAFT"
        assert doc.is_certified is False
        assert doc.number is None
        assert doc.currency == "AOA"
        assert doc.flow == "SALES"
        assert doc.accounting_date == date(2024, 6, 10)
        assert doc.effects_status == "NONE"

    def test_engine_owned_fields_rejected(self, db_session, series, make_draft):
        with pytest.raises(ValidationFailure):
            make_draft(series, hash="abc")
        with pytest.raises(ValidationFailure):
            make_draft(series, status="PAID")

    def test_number_rejected_on_normal_series(self, db_session, series, make_draft):
        with pytest.raises(ValidationFailure):
            make_draft(series, number="FT A 2024/99")

    def test_sales_need_series(self, db_session, make_draft):
        with pytest.raises(ValidationFailure):
            make_draft()

    def test_unknown_series_and_register(self, db_session, series, make_draft):
        with pytest.raises(SeriesNotFound):
            make_draft(series_id=9999)
        with pytest.raises(RegisterNotFound):
            make_draft(series, cash_register_id=9999)

    def test_unknown_type(self, db_session, series, make_draft):
        with pytest.raises(InvalidDocumentType):
            make_draft(series, document_type="ZZ")

    def test_receipts_and_notes_only_through_actions(self, db_session, series, make_draft):
        for doc_type in ("RC", "NC", "ND"):
            with pytest.raises(ValidationFailure):
                make_draft(series, document_type=doc_type)

    def test_purchase_types_limited(self, db_session, make_draft):
        with pytest.raises(ValidationFailure):
            make_draft(flow="PURCHASES", document_type="GE")

    @pytest.mark.parametrize("bad_line", [
        {"description": "x", "quantity": "0", "unit_price_cents": 100},
        {"description": "x", "quantity": "1", "unit_price_cents": -1},
        {"description": "x", "quantity": "1", "unit_price_cents": 10.5},
        {"description": "x", "quantity": "1", "unit_price_cents": 100, "tax_rate_bps": 10001},
        {"description": "", "quantity": "1", "unit_price_cents": 100},
        {"quantity": "1", "unit_price_cents": 100},
        {"description": "x", "quantity": "1", "unit_price_cents": 100, "line_total_cents": 1},
    ])
    def test_invalid_lines(self, db_session, series, make_draft, bad_line):
        with pytest.raises(ValidationFailure):
            make_draft(series, lines=[bad_line])
        assert db_session.query(FiscalDocument).count() == 0

    def test_unknown_payment_method(self, db_session, series, make_draft):
        with pytest.raises(ValidationFailure):
            make_draft(series, payment_method="BITCOIN")


class TestUpdateDraft:
    def test_patch_header_and_replace_lines(self, db_session, series, make_draft, line):
        doc = make_draft(series)

        updated = document_service.update_draft(doc.id, {
            "party_name": "Outro Cliente",
            "lines": [line("A", unit_price_cents=1000), line("B", quantity="2", unit_price_cents=500)],
        })

        assert updated.party_name == "Outro Cliente"
        assert [l.position for l in updated.lines] == [1, 2]
        assert updated.total_cents == 2000
        assert db_session.query(FiscalDocumentLine).count() == 2

    def test_certified_document_is_immutable(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document

        with pytest.raises(ImmutableFieldMutationAttempt):
            document_service.update_draft(doc.id, {"party_name": "Outro"})

        db_session.refresh(doc)
        assert doc.party_name == "Cliente Exemplo"

    def test_invalid_patch_leaves_draft_unchanged(self, db_session, series, make_draft):
        doc = make_draft(series)
        with pytest.raises(ValidationFailure):
            document_service.update_draft(doc.id, {"due_date": "2024-01-01"})
        db_session.refresh(doc)
        assert doc.due_date is None


class TestDerivedDraft:
    def test_delivery_guide_from_invoice(self, db_session, series, make_draft, register):
        invoice = certify(make_draft(
            series, warehouse_ref="ARM-01", payment_method="CASH", cash_register_id=register.id,
        ).id).document

        guide = document_service.create_derived_draft(invoice.id, "GE", issue_date="2024-06-11")

        assert guide.document_type == "GE"
        assert guide.status == "DRAFT"
        assert guide.source_document_id == invoice.id
        assert guide.party_ref == invoice.party_ref
        assert guide.warehouse_ref == "ARM-01"
        assert guide.cash_register_id is None
        assert guide.total_cents == invoice.total_cents
        assert len(guide.lines) == len(invoice.lines)

    def test_not_from_cancelled_source(self, db_session, series, make_draft):
        draft = make_draft(series)
        document_service.submit(draft.id, "CANCEL", reason="erro")
        with pytest.raises(ValidationFailure):
            document_service.create_derived_draft(draft.id, "GE")


class TestDelete:
    def test_draft_deleted(self, db_session, series, make_draft):
        doc = make_draft(series)
        document_service.delete_document(doc.id)
        assert db_session.query(FiscalDocument).count() == 0
        assert db_session.query(FiscalDocumentLine).count() == 0

    def test_certified_forbidden(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document
        with pytest.raises(CertifiedDeletionForbidden):
            document_service.delete_document(doc.id)
        assert db_session.get(FiscalDocument, doc.id) is not None

    def test_unknown(self, db_session):
        with pytest.raises(DocumentNotFound):
            document_service.delete_document("missing")


class TestSubmit:
    def test_dispatches_every_action(self, db_session, series, make_draft):
        draft = make_draft(series)

        certified = document_service.submit(draft.id, "certify")
        assert certified.document.number == "FT A 2024/1"

        paid = document_service.submit(draft.id, "LIQUIDATE", amount_cents=100000, method="CASH")
        assert paid.document.status == "PAID"

        cancelled = document_service.submit(draft.id, "CANCEL", reason="erro")
        assert cancelled.document.status == "CANCELLED"
        assert cancelled.related[0].document_type == "NC"

    def test_unknown_action(self, db_session, series, make_draft):
        with pytest.raises(ValidationFailure):
            document_service.submit(make_draft(series).id, "APPROVE")

    def test_list_filters(self, db_session, series, make_draft):
        make_draft(series)
        certify(make_draft(series, document_type="FR").id)

        assert len(document_service.list_documents(series_id=series.id)) == 2
        assert [d.document_type for d in document_service.list_documents(status="DRAFT")] == ["FT"]
        assert [d.document_type for d in document_service.list_documents(document_type="FR")] == ["FR"]
