# backend/faturacao/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports the reconciliation backlog
(certified documents whose side effects failed to post).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import DocumentSeries, FiscalDocument
from ..document_types import EffectsStatus
from faturacao.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        series_count = db.session.query(DocumentSeries).count()
        document_count = db.session.query(FiscalDocument).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "series": series_count,
                "documents": document_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_side_effects_health() -> dict:
    """Degraded while certified documents wait for side-effect reconciliation."""
    start_time = time.time()
    try:
        failed = db.session.query(FiscalDocument).filter_by(
            effects_status=EffectsStatus.FAILED.value
        ).count()
        pending = db.session.query(FiscalDocument).filter_by(
            effects_status=EffectsStatus.PENDING.value
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "degraded" if failed else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "failed": failed,
                "pending": pending,
            }
        }
        if failed:
            result["warning"] = f"{failed} documents have side effects pending reconciliation"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Side-effect health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Side-effect check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (reconciliation backlog)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    effects_health = check_side_effects_health()

    all_checks = [database_health, effects_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "side_effects": effects_health,
        }
    }

    return response, http_status
