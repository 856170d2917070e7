# backend/partnerbooks/routes/system.py
"""
System health endpoint.

Reports database connectivity, uptime and the deployed version.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from partnerbooks.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

_STARTED_AT = time.monotonic()


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
        }
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unreachable
    """
    database = check_database_health()
    healthy = database["status"] == "healthy"

    response = {
        "status": "ok" if healthy else "unhealthy",
        "uptime_seconds": round(time.monotonic() - _STARTED_AT, 1),
        "timestamp": to_utc_z(utcnow()),
        "db": database,
        "version": current_app.config["APP_VERSION"],
    }
    return response, 200 if healthy else 503
