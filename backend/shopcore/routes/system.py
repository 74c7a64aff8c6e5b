# backend/shopcore/routes/system.py
"""
System health and version endpoints.

Health checks the database and reports whether the background sweeps have
work waiting, for deployment debugging.
"""

import time
from datetime import timedelta

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import CartItem, Payment, Tenant
from ..models.orders import PAYMENT_PENDING
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        tenant_count = db.session.query(Tenant).filter(Tenant.is_active.is_(True)).count()
        pending_payments = db.session.query(Payment).filter(Payment.status == PAYMENT_PENDING).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "active_tenants": tenant_count,
                "pending_payments": pending_payments,
            }
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_sweep_backlog() -> dict:
    """
    Work the cron sweeps have not picked up yet.

    "degraded" means PENDING payments are older than the expiry timeout,
    i.e. `flask orders expire-stale` is not running.
    """
    now = utcnow()
    cutoff = now - timedelta(minutes=int(current_app.config.get("PENDING_ORDER_TIMEOUT_MINUTES", 60)))
    try:
        stale_payments = (
            db.session.query(Payment)
            .filter(Payment.status == PAYMENT_PENDING, Payment.created_at < cutoff)
            .count()
        )
        expired_cart_lines = db.session.query(CartItem).filter(CartItem.expires_at <= now).count()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Sweep backlog check failed")
        return {"status": "unknown"}

    return {
        "status": "degraded" if stale_payments else "healthy",
        "details": {
            "stale_pending_payments": stale_payments,
            "expired_cart_lines": expired_cart_lines,
        },
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (sweeps behind)
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    backlog = check_sweep_backlog() if database_health["status"] == "healthy" else {"status": "unknown"}

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    elif backlog["status"] == "degraded":
        overall_status = "degraded"
        http_status = 200
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
            "sweeps": backlog,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Does NOT expose secret keys, database credentials or internal paths.
    """
    import sys

    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
