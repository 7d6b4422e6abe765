# backend/storeledger/routes/system.py
"""
System health endpoint.

Reports database connectivity and whether the ledger caches look sane, for
load balancers and deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Payable, Payment, CoinWallet, CoinTransaction
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        payable_count = db.session.query(Payable).count()
        payment_count = db.session.query(Payment).count()
        wallet_count = db.session.query(CoinWallet).count()
        coin_txn_count = db.session.query(CoinTransaction).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "payables": payable_count,
                "payments": payment_count,
                "coin_wallets": wallet_count,
                "coin_transactions": coin_txn_count,
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


def check_wallet_cache_health() -> dict:
    """
    Spot-check the wallet cache: no wallet may show negative coins.

    A full replay is left to `flask ledger reconcile-wallets`.
    """
    start_time = time.time()
    try:
        negative = db.session.query(CoinWallet).filter(
            (CoinWallet.available_coins < 0)
            | (CoinWallet.total_coins_used > CoinWallet.total_coins_earned)
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        if negative:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"{negative} wallet(s) need reconciliation",
            }

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Wallet cache health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Wallet cache error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    wallet_health = check_wallet_cache_health()

    all_checks = [database_health, wallet_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
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
            "wallet_cache": wallet_health,
        }
    }

    return response, http_status
