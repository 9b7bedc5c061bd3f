# Overview: Pytest coverage for sequence allocation, number parsing and legacy bootstrap.

"""
Sequence Allocator Tests

Numbers within a (series, type, year) scope are unique and strictly
increasing, and bootstrapping from legacy numbers never lets a locally
issued number collide with an imported one.
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from faturacao.errors import InvalidDocumentType, SeriesNotFound, ValidationFailure
from faturacao.models import SeriesSequence
from faturacao.services import sequence_service
from faturacao.services.concurrency import begin_write


class TestNumberFormat:
    def test_format(self):
        assert sequence_service.format_document_number("FT", "A", 2024, 37) == "FT A 2024/37"

    def test_parse_full_number(self):
        parsed = sequence_service.parse_document_number("FT A 2024/37")
        assert parsed.sequence == 37
        assert parsed.prefix == "FT"
        assert parsed.series_code == "A"
        assert parsed.year == 2024

    def test_parse_trailing_sequence_only(self):
        parsed = sequence_service.parse_document_number("LEGACY-XYZ/0042")
        assert parsed.sequence == 42
        assert parsed.prefix is None

    @pytest.mark.parametrize("value", [None, "", "FT A 2024", "no sequence here"])
    def test_parse_without_sequence(self, value):
        assert sequence_service.parse_document_number(value) is None


class TestAllocate:
    def test_first_number_is_one(self, db_session, series):
        begin_write()
        sequence, number = sequence_service.allocate(series, "FT")
        db_session.commit()

        assert sequence == 1
        assert number == "FT A 2024/1"

    def test_strictly_increasing_per_type(self, db_session, series):
        issued = []
        for _ in range(3):
            begin_write()
            issued.append(sequence_service.allocate(series, "FT")[0])
            db_session.commit()
        begin_write()
        receipt_seq, receipt_number = sequence_service.allocate(series, "RC")
        db_session.commit()

        assert issued == [1, 2, 3]
        assert (receipt_seq, receipt_number) == (1, "RC A 2024/1")
        assert sequence_service.current_sequence(series.id, "FT", 2024) == 3

    def test_unknown_type_rejected(self, db_session, series):
        with pytest.raises(InvalidDocumentType):
            sequence_service.allocate(series, "XX")

    def test_lost_compare_and_swap_raises_stale(self, db_session, series):
        begin_write()
        sequence_service.allocate(series, "FT")
        db_session.commit()

        begin_write()
        with pytest.raises(StaleDataError):
            sequence_service._compare_and_swap(series.id, "FT", 2024, expected=0, new_value=1)
        db_session.rollback()

        assert sequence_service.current_sequence(series.id, "FT", 2024) == 1


class TestBootstrap:
    def test_legacy_number_fast_forwards_counter(self, db_session, series):
        summary = sequence_service.bootstrap_from_numbers(series.id, [("FT", "FT A 2024/37")])

        assert summary["ingested"] == 1
        assert summary["sequences"] == {"FT/2024": 37}

        begin_write()
        sequence, number = sequence_service.allocate(series, "FT", 2024)
        db_session.commit()
        assert sequence == 38
        assert number == "FT A 2024/38"

    def test_type_inferred_from_prefix(self, db_session, series):
        sequence_service.bootstrap_from_numbers(series.id, [(None, "RC A 2024/5")])
        assert sequence_service.current_sequence(series.id, "RC", 2024) == 5

    def test_never_moves_backwards(self, db_session, series):
        sequence_service.bootstrap_from_numbers(series.id, [("FT", "FT A 2024/37")])
        summary = sequence_service.bootstrap_from_numbers(series.id, [("FT", "FT A 2024/12")])

        assert summary["sequences"] == {"FT/2024": 37}
        assert sequence_service.current_sequence(series.id, "FT", 2024) == 37

    def test_highest_number_wins(self, db_session, series):
        records = [("FT", "FT A 2024/3"), ("FT", "FT A 2024/41"), ("FT", "FT A 2024/17")]
        sequence_service.bootstrap_from_numbers(series.id, records)
        assert sequence_service.current_sequence(series.id, "FT", 2024) == 41

    def test_other_series_and_garbage_skipped(self, db_session, series):
        summary = sequence_service.bootstrap_from_numbers(
            series.id, [("FT", "FT B 2024/90"), ("FT", "not a number")],
        )

        assert summary["ingested"] == 0
        assert {s["reason"] for s in summary["skipped"]} == {"different series code", "no trailing sequence"}
        assert db_session.query(SeriesSequence).count() == 0

    def test_unknown_series(self, db_session):
        with pytest.raises(SeriesNotFound):
            sequence_service.bootstrap_from_numbers(9999, [("FT", "FT A 2024/1")])

    def test_negative_sequence_rejected(self, db_session, series):
        begin_write()
        with pytest.raises(ValidationFailure):
            sequence_service.fast_forward(series, "FT", -1)
        db_session.rollback()
