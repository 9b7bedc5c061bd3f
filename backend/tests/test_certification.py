# Overview: Pytest coverage for certification, chronology, fingerprints and immutability.

"""
Certification Engine Tests

Covers:
- Normal series: number + hash assigned, status by document type
- Chronology gate per (series, type)
- Manual series and purchase documents
- Immutability of certified documents at the storage layer
"""

from datetime import date

import pytest

from faturacao.extensions import db
from faturacao.errors import (
    AlreadyCertified,
    ChronologyViolation,
    ImmutableFieldMutationAttempt,
    SeriesAccessDenied,
    SeriesInactive,
    ValidationFailure,
)
from faturacao.models import CashRegisterPosting, FiscalDocument, SeriesSequence
from faturacao.services import certification_service, series_service
from faturacao.services.certification_service import certify, verify_hash


class TestNormalSeries:
    def test_certify_assigns_number_and_hash(self, db_session, series, make_draft):
        draft = make_draft(series)

        result = certify(draft.id)
        doc = result.document

        assert doc.is_certified is True
        assert doc.number == "FT A 2024/1"
        assert doc.sequence == 1
        assert doc.fiscal_year == 2024
        assert doc.hash and len(doc.hash) == 64
        assert doc.integration_status == "VALIDATED"
        assert doc.processed_at is not None
        assert doc.status == "PENDING"
        assert result.warnings == []

    def test_numbers_increase_and_hashes_chain(self, db_session, series, make_draft):
        first = certify(make_draft(series).id).document
        second = certify(make_draft(series).id).document

        assert (first.sequence, second.sequence) == (1, 2)
        assert first.previous_hash is None
        assert second.previous_hash == first.hash
        assert verify_hash(first) and verify_hash(second)

    def test_hash_control_characters(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document
        assert doc.hash_control == doc.hash[0] + doc.hash[10] + doc.hash[20] + doc.hash[30]

    def test_tampered_total_fails_verification(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document
        doc.total_cents += 1  # in memory only
        assert verify_hash(doc) is False
        db_session.rollback()

    @pytest.mark.parametrize("doc_type,expected_status,paid", [
        ("FT", "PENDING", 0),
        ("FR", "PAID", 100000),
        ("VD", "PAID", 100000),
        ("GE", "PENDING", 0),
        ("PP", "PENDING", 0),
    ])
    def test_status_on_issue(self, db_session, series, make_draft, doc_type, expected_status, paid):
        doc = certify(make_draft(series, document_type=doc_type).id).document
        assert doc.status == expected_status
        assert doc.paid_cents == paid

    def test_already_certified_rejected(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document

        with pytest.raises(AlreadyCertified):
            certify(doc.id)

        assert db_session.query(SeriesSequence).filter_by(document_type="FT").one().last_number == 1

    def test_document_without_lines_rejected(self, db_session, series, make_draft):
        draft = make_draft(series, lines=[])
        with pytest.raises(ValidationFailure):
            certify(draft.id)

    def test_unsupported_action(self, db_session, series, make_draft):
        with pytest.raises(ValidationFailure):
            certify(make_draft(series).id, action="LIQUIDATE")


class TestChronology:
    def test_earlier_date_rejected_later_accepted(self, db_session, series, make_draft):
        certify(make_draft(series, issue_date=date(2024, 6, 10)).id)

        earlier = make_draft(series, issue_date=date(2024, 6, 5))
        with pytest.raises(ChronologyViolation) as exc_info:
            certify(earlier.id)
        assert exc_info.value.details["latest_certified_date"] == "2024-06-10"

        later = certify(make_draft(series, issue_date=date(2024, 6, 15)).id).document
        assert later.sequence == 2

    def test_rejection_allocates_nothing(self, db_session, series, make_draft, register):
        certify(make_draft(series, issue_date=date(2024, 6, 10)).id)
        earlier = make_draft(
            series,
            document_type="FT",
            issue_date=date(2024, 6, 5),
            payment_method="CASH",
            cash_register_id=register.id,
        )

        with pytest.raises(ChronologyViolation):
            certify(earlier.id)

        db_session.expire_all()
        refreshed = db_session.get(FiscalDocument, earlier.id)
        assert refreshed.is_certified is False
        assert refreshed.number is None
        assert refreshed.hash is None
        assert db_session.query(SeriesSequence).filter_by(document_type="FT").one().last_number == 1
        assert db_session.query(CashRegisterPosting).count() == 0

    def test_same_date_allowed(self, db_session, series, make_draft):
        certify(make_draft(series, issue_date=date(2024, 6, 10)).id)
        doc = certify(make_draft(series, issue_date=date(2024, 6, 10)).id).document
        assert doc.sequence == 2

    def test_scoped_per_type(self, db_session, series, make_draft):
        certify(make_draft(series, document_type="FT", issue_date=date(2024, 6, 10)).id)
        doc = certify(make_draft(series, document_type="FR", issue_date=date(2024, 6, 5)).id).document
        assert doc.number == "FR A 2024/1"

    def test_latest_certified_date(self, db_session, series, make_draft):
        assert certification_service.latest_certified_date(series.id, "FT") is None
        certify(make_draft(series, issue_date=date(2024, 6, 10)).id)
        make_draft(series, issue_date=date(2024, 7, 1))  # drafts do not count
        assert certification_service.latest_certified_date(series.id, "FT") == date(2024, 6, 10)


class TestManualSeries:
    def test_keeps_paper_number_without_hash(self, db_session, manual_series, make_draft):
        draft = make_draft(manual_series, number="FT M 2024/15")

        doc = certify(draft.id).document

        assert doc.is_certified is True
        assert doc.number == "FT M 2024/15"
        assert doc.hash is None
        assert doc.sequence is None
        assert doc.processed_at is not None

    def test_number_required(self, db_session, manual_series, make_draft):
        with pytest.raises(ValidationFailure):
            certify(make_draft(manual_series).id)

    def test_exempt_from_chronology(self, db_session, manual_series, make_draft):
        certify(make_draft(manual_series, number="FT M 2024/2", issue_date=date(2024, 6, 10)).id)
        doc = certify(make_draft(manual_series, number="FT M 2024/1", issue_date=date(2024, 6, 5)).id).document
        assert doc.is_certified is True


class TestPurchases:
    def test_keeps_supplier_number(self, db_session, make_draft):
        draft = make_draft(flow="PURCHASES", party_ref="FORN-01")

        doc = certify(draft.id, external_number="FT 2024/0099").document

        assert doc.number == "FT 2024/0099"
        assert doc.sequence is None
        assert doc.is_certified is True
        assert verify_hash(doc)

    def test_supplier_number_required(self, db_session, make_draft):
        draft = make_draft(flow="PURCHASES", party_ref="FORN-01")
        with pytest.raises(ValidationFailure):
            certify(draft.id)


class TestSeriesAccess:
    def test_operator_outside_acl_rejected(self, db_session, series, make_draft):
        series_service.grant_access(series.id, "u1")
        draft = make_draft(series)

        with pytest.raises(SeriesAccessDenied):
            certify(draft.id, operator_ref="u2")
        doc = certify(draft.id, operator_ref="u1").document
        assert doc.operator_ref == "u1"

    def test_inactive_series_rejected(self, db_session, series, make_draft):
        draft = make_draft(series)
        series_service.deactivate_series(series.id)
        with pytest.raises(SeriesInactive):
            certify(draft.id)


class TestImmutability:
    def test_frozen_header_fields(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document

        doc.total_cents = 1
        with pytest.raises(ImmutableFieldMutationAttempt):
            db_session.commit()
        db_session.rollback()

        doc.number = "FT A 2024/99"
        with pytest.raises(ImmutableFieldMutationAttempt):
            db_session.commit()
        db_session.rollback()

        assert db.session.get(FiscalDocument, doc.id).number == "FT A 2024/1"

    def test_frozen_after_commit_expires_instance(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document
        db_session.commit()

        doc.total_cents = 1
        doc.number = "FT A 2024/99"
        with pytest.raises(ImmutableFieldMutationAttempt):
            db_session.commit()
        db_session.rollback()

        db_session.expire_all()
        stored = db_session.get(FiscalDocument, doc.id)
        assert (stored.number, stored.total_cents) == ("FT A 2024/1", 100000)
        assert verify_hash(stored)

    def test_delete_after_rollback_refused(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document
        db_session.rollback()

        db_session.delete(doc)
        with pytest.raises(ImmutableFieldMutationAttempt):
            db_session.commit()
        db_session.rollback()
        assert db_session.get(FiscalDocument, doc.id) is not None

    def test_frozen_lines(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document

        doc.lines[0].unit_price_cents = 1
        with pytest.raises(ImmutableFieldMutationAttempt):
            db_session.commit()
        db_session.rollback()

    def test_status_still_writable(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document
        doc.status = "PARTIAL"
        doc.paid_cents = 10
        db_session.commit()
        assert doc.status == "PARTIAL"

    def test_storage_refuses_delete(self, db_session, series, make_draft):
        doc = certify(make_draft(series).id).document

        db_session.delete(doc)
        with pytest.raises(ImmutableFieldMutationAttempt):
            db_session.commit()
        db_session.rollback()
        assert db_session.get(FiscalDocument, doc.id) is not None
