# Overview: Flask API routes for fiscal documents; parses input and returns JSON responses.

"""
Fiscal Document API Routes

WHY: Front ends (back office forms, POS terminals) submit drafts and then
ask for one of three actions: certify, liquidate, cancel.

DESIGN:
- Draft CRUD while uncertified; DELETE of a certified document is refused
- Every action answers with {"document", "related", "warnings"}
- warnings lists side effects that did not post and await reconciliation
- Engine errors map to their HTTP status; anything else is a logged 500
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import FiscalError
from ..services import chain_service, document_service, posting_service
from ..services.certification_service import verify_hash


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


def _json_error(exc: FiscalError):
    return jsonify(exc.to_dict()), exc.http_status


def _transition_response(result):
    status = 202 if result.warnings else 200
    return jsonify(result.to_dict()), status


# =============================================================================
# DRAFTS
# =============================================================================

@documents_bp.post("")
def create_document_route():
    """
    Create a draft document.

    Request body:
    {
        "document_type": "FT",
        "series_id": 1,
        "issue_date": "2024-06-10",
        "party_ref": "CLI-001",
        "party_name": "Cliente Exemplo",
        "payment_method": "CASH",
        "cash_register_id": 1,
        "lines": [{"description": "Produto", "quantity": "2", "unit_price_cents": 50000, "tax_rate_bps": 1400}]
    }
    """
    try:
        document = document_service.create_draft(request.get_json(silent=True))
        return jsonify({"document": document.to_dict()}), 201
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to create document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("")
def list_documents_route():
    series_id = request.args.get("series_id", type=int)
    doc_type = request.args.get("type")
    status = request.args.get("status")
    flow = request.args.get("flow")
    limit = request.args.get("limit", 100, type=int)
    offset = request.args.get("offset", 0, type=int)

    try:
        rows = document_service.list_documents(
            series_id=series_id,
            document_type=doc_type,
            status=status,
            flow=flow,
            limit=limit,
            offset=offset,
        )
    except FiscalError as e:
        return _json_error(e)

    return jsonify({
        "items": [d.to_dict(include_lines=False) for d in rows],
        "count": len(rows),
        "limit": limit,
        "offset": offset,
    })


@documents_bp.get("/<document_id>")
def get_document_route(document_id):
    try:
        document = chain_service.get_document(document_id)
        return jsonify({"document": document.to_dict()})
    except FiscalError as e:
        return _json_error(e)


@documents_bp.patch("/<document_id>")
def update_document_route(document_id):
    try:
        document = document_service.update_draft(document_id, request.get_json(silent=True))
        return jsonify({"document": document.to_dict()})
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to update document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.delete("/<document_id>")
def delete_document_route(document_id):
    try:
        document_service.delete_document(document_id)
        return jsonify({"deleted": document_id})
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to delete document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<document_id>/derive")
def derive_document_route(document_id):
    """
    Request body:
    {"document_type": "GE", "operator_ref": "u1", "issue_date": "2024-06-11"}
    """
    data = request.get_json(silent=True) or {}
    if not data.get("document_type"):
        return jsonify({"error": "document_type required"}), 400

    try:
        document = document_service.create_derived_draft(
            document_id,
            data["document_type"],
            operator_ref=data.get("operator_ref"),
            issue_date=data.get("issue_date"),
        )
        return jsonify({"document": document.to_dict()}), 201
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to derive document from %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ACTIONS
# =============================================================================

@documents_bp.post("/<document_id>/certify")
def certify_document_route(document_id):
    """
    Request body (all optional):
    {"operator_ref": "u1", "external_number": "FT 2024/0099"}
    """
    data = request.get_json(silent=True) or {}
    try:
        result = document_service.submit(
            document_id,
            "CERTIFY",
            operator_ref=data.get("operator_ref"),
            external_number=data.get("external_number"),
        )
        return _transition_response(result)
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to certify document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<document_id>/liquidate")
def liquidate_document_route(document_id):
    """
    Request body:
    {
        "amount_cents": 40000,
        "method": "CASH",
        "register_id": 1,         (optional)
        "value_date": "2024-06-12", (optional)
        "doc_date": "2024-06-12",   (optional)
        "operator_ref": "u1"        (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    if "amount_cents" not in data or not data.get("method"):
        return jsonify({"error": "amount_cents and method required"}), 400

    try:
        result = document_service.submit(
            document_id,
            "LIQUIDATE",
            amount_cents=data["amount_cents"],
            method=data["method"],
            register_id=data.get("register_id"),
            value_date=data.get("value_date"),
            doc_date=data.get("doc_date"),
            operator_ref=data.get("operator_ref"),
        )
        return _transition_response(result)
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to liquidate document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<document_id>/cancel")
def cancel_document_route(document_id):
    """
    Request body:
    {"reason": "erro", "operator_ref": "u1", "issue_date": "2024-06-12"}
    """
    data = request.get_json(silent=True) or {}
    if not (data.get("reason") or "").strip():
        return jsonify({"error": "reason required"}), 400

    try:
        result = document_service.submit(
            document_id,
            "CANCEL",
            reason=data["reason"],
            operator_ref=data.get("operator_ref"),
            issue_date=data.get("issue_date"),
        )
        return _transition_response(result)
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to cancel document %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<document_id>/retry-effects")
def retry_effects_route(document_id):
    try:
        warning = posting_service.retry_effects(document_id)
        document = chain_service.get_document(document_id)
        body = {"document": document.to_dict(), "warnings": [warning] if warning else []}
        return jsonify(body), 202 if warning else 200
    except FiscalError as e:
        return _json_error(e)
    except Exception:
        current_app.logger.exception("Failed to retry effects for %s", document_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TRACEABILITY
# =============================================================================

@documents_bp.get("/<document_id>/chain")
def document_chain_route(document_id):
    """Whole document tree, from the root document down to every derived one."""
    try:
        document = chain_service.get_document(document_id)
        root = chain_service.root_of(document)
        return jsonify({"document_id": document.id, "root_id": root.id, "chain": chain_service.chain_tree(root.id)})
    except FiscalError as e:
        return _json_error(e)


@documents_bp.get("/<document_id>/verify")
def verify_document_route(document_id):
    try:
        document = chain_service.get_document(document_id)
    except FiscalError as e:
        return _json_error(e)

    return jsonify({
        "document_id": document.id,
        "number": document.number,
        "hash": document.hash,
        "hash_control": document.hash_control,
        "valid": verify_hash(document),
    })
