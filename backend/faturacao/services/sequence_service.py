# Overview: Per (series, document type, year) sequence allocation and legacy fast-forward.

"""
Sequence Allocator

WHY: Certified numbers must be unique and strictly increasing within a
(series, document type, year) scope, even when several terminals certify
in the same series at once.

DESIGN PRINCIPLES:
- The counter row is changed only by a conditional UPDATE that succeeds
  when last_number still equals the value read (compare-and-swap)
- A lost race raises StaleDataError; run_with_retry re-runs the whole
  enclosing transaction with fresh state
- Allocation joins the caller's transaction so the counter and the
  document that consumes it commit together
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import DocumentSeries, SeriesSequence
from ..document_types import DOCUMENT_PREFIXES, DocumentType, document_prefix, parse_document_type
from ..errors import InvalidDocumentType, ValidationFailure
from .concurrency import begin_write, run_with_retry
from .series_service import get_series

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(
    r"^(?P<prefix>[A-Z]{2})\s+(?:(?P<series>\S+)\s+)?(?P<year>\d{4})/(?P<sequence>\d+)$"
)
_TRAILING_SEQUENCE_RE = re.compile(r"/\s*(?P<sequence>\d+)\s*$")

_TYPES_BY_PREFIX = {prefix: doc_type for doc_type, prefix in DOCUMENT_PREFIXES.items()}


@dataclass(frozen=True)
class ParsedNumber:
    sequence: int
    prefix: str | None = None
    series_code: str | None = None
    year: int | None = None


def format_document_number(prefix: str, series_code: str, year: int, sequence: int) -> str:
    return f"{prefix} {series_code} {year}/{sequence}"


def parse_document_number(number: str | None) -> ParsedNumber | None:
    """
    Extract the sequence (and, when present, prefix, series code and year)
    from a formatted number such as "FT A 2024/37".

    Anything ending in "/<digits>" yields at least the sequence; strings
    without a trailing sequence return None.
    """
    if not number:
        return None
    text = number.strip()

    match = _NUMBER_RE.match(text)
    if match:
        return ParsedNumber(
            sequence=int(match.group("sequence")),
            prefix=match.group("prefix"),
            series_code=match.group("series"),
            year=int(match.group("year")),
        )

    match = _TRAILING_SEQUENCE_RE.search(text)
    if match:
        return ParsedNumber(sequence=int(match.group("sequence")))
    return None


def _ensure_sequence_row(series_id: int, document_type: str, year: int) -> None:
    exists = db.session.execute(
        select(SeriesSequence.id).where(
            SeriesSequence.series_id == series_id,
            SeriesSequence.document_type == document_type,
            SeriesSequence.year == year,
        )
    ).scalar()
    if exists:
        return

    try:
        with db.session.begin_nested():
            db.session.add(SeriesSequence(
                series_id=series_id,
                document_type=document_type,
                year=year,
                last_number=0,
            ))
    except IntegrityError:
        # Another transaction created the row first; its counter is used below.
        logger.debug("Sequence row %s/%s/%s created concurrently", series_id, document_type, year)


def current_sequence(series_id: int, document_type, year: int) -> int:
    document_type = parse_document_type(document_type)
    value = db.session.execute(
        select(SeriesSequence.last_number).where(
            SeriesSequence.series_id == series_id,
            SeriesSequence.document_type == document_type.value,
            SeriesSequence.year == year,
        )
    ).scalar()
    return value or 0


def _compare_and_swap(series_id: int, document_type: str, year: int, expected: int, new_value: int) -> None:
    result = db.session.execute(
        update(SeriesSequence)
        .where(
            SeriesSequence.series_id == series_id,
            SeriesSequence.document_type == document_type,
            SeriesSequence.year == year,
            SeriesSequence.last_number == expected,
        )
        .values(last_number=new_value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleDataError(
            f"Sequence {series_id}/{document_type}/{year} moved past {expected}"
        )


def allocate(series: DocumentSeries, document_type, year: int | None = None) -> tuple[int, str]:
    """
    Reserve the next sequence number for (series, document_type, year).

    Runs inside the caller's transaction; the caller commits. Returns
    (sequence, formatted number).

    Raises:
        InvalidDocumentType: type unknown or without a prefix
        StaleDataError: another caller advanced the counter first
    """
    document_type = parse_document_type(document_type)
    prefix = document_prefix(document_type)
    year = year or series.fiscal_year

    _ensure_sequence_row(series.id, document_type.value, year)
    current = current_sequence(series.id, document_type, year)
    next_number = current + 1
    _compare_and_swap(series.id, document_type.value, year, current, next_number)

    return next_number, format_document_number(prefix, series.code, year, next_number)


def fast_forward(series: DocumentSeries, document_type, sequence: int, year: int | None = None) -> int:
    """
    Move the counter to max(current, sequence). Never moves it backwards.

    Runs inside the caller's transaction. Returns the resulting counter.
    """
    document_type = parse_document_type(document_type)
    year = year or series.fiscal_year
    if sequence < 0:
        raise ValidationFailure("sequence must be >= 0")

    _ensure_sequence_row(series.id, document_type.value, year)
    current = current_sequence(series.id, document_type, year)
    if current >= sequence:
        return current

    _compare_and_swap(series.id, document_type.value, year, current, sequence)
    return sequence


def _resolve_record_type(record_type, parsed: ParsedNumber) -> DocumentType:
    if record_type:
        return parse_document_type(record_type)
    if parsed.prefix and parsed.prefix in _TYPES_BY_PREFIX:
        return _TYPES_BY_PREFIX[parsed.prefix]
    raise InvalidDocumentType(
        "Cannot infer document type from number",
        details={"prefix": parsed.prefix},
    )


def bootstrap_from_numbers(series_id: int, records) -> dict:
    """
    Fast-forward a series' counters from externally issued numbers.

    WHY: When documents are imported from another system, locally issued
    numbers must continue after the highest imported sequence.

    Args:
        series_id: Series receiving the counters
        records: iterable of (document_type | None, formatted_number)

    Returns:
        {"ingested": n, "skipped": [...], "sequences": {"FT/2024": 37}}
    """
    records = list(records)

    def _op():
        begin_write()
        series = get_series(series_id)
        ingested = 0
        skipped = []
        sequences: dict[str, int] = {}

        for record_type, number in records:
            parsed = parse_document_number(number)
            if parsed is None:
                skipped.append({"number": number, "reason": "no trailing sequence"})
                continue
            if parsed.series_code and parsed.series_code != series.code:
                skipped.append({"number": number, "reason": "different series code"})
                continue

            document_type = _resolve_record_type(record_type, parsed)
            year = parsed.year or series.fiscal_year
            value = fast_forward(series, document_type, parsed.sequence, year=year)
            sequences[f"{document_type.value}/{year}"] = value
            ingested += 1

        db.session.commit()
        return {"ingested": ingested, "skipped": skipped, "sequences": sequences}

    summary = run_with_retry(_op)
    logger.info(
        "Bootstrapped series %s from %s external numbers (%s skipped)",
        series_id, summary["ingested"], len(summary["skipped"]),
    )
    return summary
