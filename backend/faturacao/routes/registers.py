# Overview: Flask API routes for cash registers; parses input and returns JSON responses.

"""
Cash Register API Routes

Registers are created here; their balances only move through document
postings (certification, liquidation, cancellation).
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import FiscalError
from ..services import register_service


registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")


def _json_error(exc: FiscalError):
    return jsonify(exc.to_dict()), exc.http_status


@registers_bp.post("")
def create_register_route():
    """
    Request body:
    {"name": "Caixa 1", "opening_balance_cents": 0, "operator_ref": "u1"}
    """
    data = request.get_json(silent=True) or {}
    if not data.get("name"):
        return jsonify({"error": "name required"}), 400

    try:
        register = register_service.create_register(
            name=data["name"],
            opening_balance_cents=data.get("opening_balance_cents", 0),
            operator_ref=data.get("operator_ref"),
        )
        return jsonify({"register": register.to_dict()}), 201
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to create register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/<int:register_id>")
def get_register_route(register_id):
    try:
        register_service.get_balance(register_id)
        register = register_service.get_register(register_id)
        return jsonify({"register": register.to_dict()})
    except FiscalError as e:
        return _json_error(e)


@registers_bp.get("/<int:register_id>/postings")
def list_register_postings_route(register_id):
    limit = request.args.get("limit", 100, type=int)
    offset = request.args.get("offset", 0, type=int)
    try:
        rows = register_service.list_postings(register_id, limit=limit, offset=offset)
    except FiscalError as e:
        return _json_error(e)
    return jsonify({"items": [p.to_dict() for p in rows], "count": len(rows), "limit": limit, "offset": offset})
