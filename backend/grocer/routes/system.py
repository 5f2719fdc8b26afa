# backend/grocer/routes/system.py
"""System health and version endpoints."""

import os
import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    status = "ok" if database["status"] == "healthy" else "degraded"
    return {
        "status": status,
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, 200 if status == "ok" else 503


@system_bp.get("/version")
def version():
    return {
        "name": "grocer",
        "version": APP_VERSION,
        "database_dialect": db.engine.dialect.name,
    }
