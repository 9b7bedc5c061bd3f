# Overview: Series configuration and access control.

from __future__ import annotations

from ..extensions import db
from ..models import DocumentSeries, SeriesUserAccess
from ..document_types import SeriesKind
from ..errors import SeriesAccessDenied, SeriesInactive, SeriesNotFound, ValidationFailure


def create_series(
    code: str,
    fiscal_year: int,
    name: str | None = None,
    kind: str = "NORMAL",
    bank_details: str | None = None,
    footer_text: str | None = None,
    allowed_user_refs: list[str] | None = None,
) -> DocumentSeries:
    """Create a numbering series. Counters start at 0 for every type."""
    code = (code or "").strip()
    if not code:
        raise ValidationFailure("code is required")
    if " " in code:
        raise ValidationFailure("code cannot contain spaces")
    try:
        kind = SeriesKind(str(kind).upper()).value
    except ValueError:
        raise ValidationFailure(f"Unknown series kind: {kind}")

    existing = db.session.query(DocumentSeries).filter_by(code=code, fiscal_year=fiscal_year).first()
    if existing:
        raise ValidationFailure(f"Series '{code}' already exists for {fiscal_year}")

    series = DocumentSeries(
        code=code,
        name=name or f"Série {code} {fiscal_year}",
        fiscal_year=fiscal_year,
        kind=kind,
        is_active=True,
        bank_details=bank_details,
        footer_text=footer_text,
    )
    db.session.add(series)
    db.session.flush()

    for user_ref in allowed_user_refs or []:
        db.session.add(SeriesUserAccess(series_id=series.id, user_ref=str(user_ref)))

    db.session.commit()
    return series


def get_series(series_id) -> DocumentSeries:
    series = db.session.get(DocumentSeries, series_id) if series_id is not None else None
    if not series:
        raise SeriesNotFound(f"Series {series_id} not found", details={"series_id": series_id})
    return series


def list_series(include_inactive: bool = False) -> list[DocumentSeries]:
    query = db.session.query(DocumentSeries)
    if not include_inactive:
        query = query.filter(DocumentSeries.is_active.is_(True))
    return query.order_by(DocumentSeries.fiscal_year.desc(), DocumentSeries.code).all()


def list_series_for_user(user_ref: str) -> list[DocumentSeries]:
    """Active series the user may issue in (unrestricted series included)."""
    return [s for s in list_series() if user_can_issue(s, user_ref)]


def user_can_issue(series: DocumentSeries, user_ref: str | None) -> bool:
    allowed = {a.user_ref for a in series.access_entries}
    if not allowed:
        return True
    return user_ref is not None and str(user_ref) in allowed


def check_access(series: DocumentSeries, user_ref: str | None) -> None:
    """
    Validate a series can be used by user_ref.

    user_ref=None means a system caller (imports, reconciliation) and only
    the active flag is checked.
    """
    if not series.is_active:
        raise SeriesInactive(f"Series {series.code} is inactive", details={"series_id": series.id})
    if user_ref is None:
        return
    if not user_can_issue(series, user_ref):
        raise SeriesAccessDenied(
            f"User {user_ref} may not issue documents in series {series.code}",
            details={"series_id": series.id, "user_ref": user_ref},
        )


def grant_access(series_id: int, user_ref: str) -> DocumentSeries:
    series = get_series(series_id)
    if not any(a.user_ref == str(user_ref) for a in series.access_entries):
        db.session.add(SeriesUserAccess(series_id=series.id, user_ref=str(user_ref)))
        db.session.commit()
    return series


def revoke_access(series_id: int, user_ref: str) -> DocumentSeries:
    series = get_series(series_id)
    db.session.query(SeriesUserAccess).filter_by(series_id=series.id, user_ref=str(user_ref)).delete()
    db.session.commit()
    return series


def deactivate_series(series_id: int) -> DocumentSeries:
    series = get_series(series_id)
    series.is_active = False
    db.session.commit()
    return series
