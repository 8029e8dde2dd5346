"""
Health Check Route
Verifies the API is running and the database answers
"""
from flask import Blueprint, jsonify
from sqlalchemy import text

from qistmarket.models import db
from qistmarket.logger_config import app_logger

bp = Blueprint("health", __name__)


@bp.route("/health", methods=["GET"])
def health():
    """
    GET /api/health
    Health check endpoint - no authentication required
    """
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        db.session.rollback()
        app_logger.warning(f"Health check database query failed: {e}")
        database = "unavailable"

    status_code = 200 if database == "ok" else 503
    return jsonify({
        "success": database == "ok",
        "data": {"status": "ok" if database == "ok" else "degraded", "database": database,
                 "service": "qistmarket backend"},
    }), status_code
