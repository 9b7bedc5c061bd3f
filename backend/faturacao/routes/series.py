# Overview: Flask API routes for numbering series; parses input and returns JSON responses.

"""
Series Management API Routes

WHY: Series scope document numbering (per type and year) and who may issue
in them. Counters are never set directly; the only way to move one forward
outside certification is bootstrapping from legacy numbers.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import FiscalError
from ..services import sequence_service, series_service


series_bp = Blueprint("series", __name__, url_prefix="/api/series")


def _json_error(exc: FiscalError):
    return jsonify(exc.to_dict()), exc.http_status


@series_bp.post("")
def create_series_route():
    """
    Request body:
    {
        "code": "A",
        "fiscal_year": 2024,
        "name": "Série Geral",          (optional)
        "kind": "NORMAL",               (NORMAL | MANUAL | POS)
        "allowed_user_refs": ["u1"],    (optional, empty = unrestricted)
        "bank_details": "...",          (optional)
        "footer_text": "..."            (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    code = data.get("code")
    fiscal_year = data.get("fiscal_year")

    if not code or fiscal_year is None:
        return jsonify({"error": "code and fiscal_year required"}), 400
    if not isinstance(fiscal_year, int) or isinstance(fiscal_year, bool):
        return jsonify({"error": "fiscal_year must be an integer"}), 400

    try:
        series = series_service.create_series(
            code=code,
            fiscal_year=fiscal_year,
            name=data.get("name"),
            kind=data.get("kind", "NORMAL"),
            bank_details=data.get("bank_details"),
            footer_text=data.get("footer_text"),
            allowed_user_refs=data.get("allowed_user_refs"),
        )
        return jsonify({"series": series.to_dict()}), 201
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to create series")
        return jsonify({"error": "Internal server error"}), 500


@series_bp.get("")
def list_series_route():
    """List active series; ?user_ref=u1 narrows to the series that user may issue in."""
    user_ref = request.args.get("user_ref")
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"

    if user_ref:
        rows = series_service.list_series_for_user(user_ref)
    else:
        rows = series_service.list_series(include_inactive=include_inactive)
    return jsonify({"items": [s.to_dict() for s in rows], "count": len(rows)})


@series_bp.get("/<int:series_id>")
def get_series_route(series_id):
    try:
        series = series_service.get_series(series_id)
        return jsonify({"series": series.to_dict()})
    except FiscalError as e:
        return _json_error(e)


@series_bp.post("/<int:series_id>/access")
def series_access_route(series_id):
    """
    Request body:
    {"user_ref": "u1", "grant": true}   (grant=false revokes)
    """
    data = request.get_json(silent=True) or {}
    user_ref = data.get("user_ref")
    if not user_ref:
        return jsonify({"error": "user_ref required"}), 400

    try:
        if data.get("grant", True):
            series = series_service.grant_access(series_id, user_ref)
        else:
            series = series_service.revoke_access(series_id, user_ref)
        return jsonify({"series": series.to_dict()})
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to change access for series %s", series_id)
        return jsonify({"error": "Internal server error"}), 500


@series_bp.post("/<int:series_id>/deactivate")
def deactivate_series_route(series_id):
    try:
        series = series_service.deactivate_series(series_id)
        return jsonify({"series": series.to_dict()})
    except FiscalError as e:
        return _json_error(e)


@series_bp.post("/<int:series_id>/bootstrap")
def bootstrap_series_route(series_id):
    """
    Fast-forward counters from numbers issued outside this system.

    Request body:
    {"records": [{"document_type": "FT", "number": "FT A 2024/37"}, ...]}
    document_type may be omitted when the number carries its prefix.
    """
    data = request.get_json(silent=True) or {}
    records = data.get("records")
    if not isinstance(records, list):
        return jsonify({"error": "records must be a list"}), 400

    try:
        pairs = [(r.get("document_type"), r.get("number")) for r in records if isinstance(r, dict)]
        summary = sequence_service.bootstrap_from_numbers(series_id, pairs)
        return jsonify(summary)
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to bootstrap series %s", series_id)
        return jsonify({"error": "Internal server error"}), 500
