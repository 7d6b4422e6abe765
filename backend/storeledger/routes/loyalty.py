# Overview: Flask API routes for the loyalty coin ledger; parses input and returns JSON responses.

# backend/storeledger/routes/loyalty.py
"""
Loyalty Coin API Routes

WHY: Checkout credits and spends coins; the admin console shows wallets,
pages through history, adjusts balances by hand and edits program settings.

DESIGN:
- Every balance change appends a coin transaction; wallets are a cache
- History is paged newest first with an id cursor (?before=<last id>)
- Settings are validated as a whole before anything is saved
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import loyalty_service
from ..validation import LedgerError, coerce_int


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")

MAX_PAGE_SIZE = 200


# =============================================================================
# WALLETS & HISTORY
# =============================================================================

@loyalty_bp.get("/wallets/<int:user_id>")
def get_wallet_route(user_id: int):
    """Wallet totals; a user with no transactions reads as all zeros."""
    try:
        return jsonify({"wallet": loyalty_service.get_wallet_summary(user_id)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/wallets/<int:user_id>/transactions")
def list_transactions_route(user_id: int):
    """
    One page of a user's coin transactions, newest first.

    Query params:
    - limit: page size (default 50, max 200)
    - before: only transactions with id < before (the previous page's next_before)
    """
    try:
        limit = min(max(request.args.get("limit", 50, type=int), 1), MAX_PAGE_SIZE)
        before = request.args.get("before", type=int)

        txns = loyalty_service.list_transactions(user_id, limit=limit, before=before)
        next_before = txns[-1].id if len(txns) == limit else None

        return jsonify({
            "user_id": user_id,
            "transactions": [t.to_dict() for t in txns],
            "next_before": next_before
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list coin transactions")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

@loyalty_bp.post("/earn")
def earn_route():
    """
    Credit coins for a completed order.

    Request body:
    {
        "user_id": 42,
        "base_amount_cents": 250000,
        "payable_id": 12,  (optional)
        "description": "..."  (optional)
    }

    Returns:
        201: Coins credited
        200: Nothing earned (program disabled, below minimum, or rounds to 0)
    """
    try:
        data = request.get_json(silent=True) or {}

        user_id = coerce_int(data.get("user_id"), "user_id")

        txn = loyalty_service.record_earn(
            user_id=user_id,
            base_amount_cents=data.get("base_amount_cents"),
            payable_id=data.get("payable_id"),
            description=data.get("description"),
        )

        wallet = loyalty_service.get_wallet_summary(user_id)
        if txn is None:
            return jsonify({"transaction": None, "wallet": wallet}), 200

        return jsonify({"transaction": txn.to_dict(), "wallet": wallet}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record coin earn")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/redeem")
def redeem_route():
    """
    Spend coins at checkout.

    Request body:
    {
        "user_id": 42,
        "coins": 30,
        "payable_id": 12,  (optional, the order the coins are spent on)
        "description": "..."  (optional)
    }

    Returns:
        201: Coins redeemed
        400: Not a whole positive number, or below the redemption minimum
        409: Insufficient balance (shortfall in body) or program disabled
    """
    try:
        data = request.get_json(silent=True) or {}

        txn = loyalty_service.redeem(
            user_id=data.get("user_id"),
            coins=data.get("coins"),
            payable_id=data.get("payable_id"),
            description=data.get("description"),
        )

        wallet = loyalty_service.get_wallet_summary(txn.user_id)
        return jsonify({"transaction": txn.to_dict(), "wallet": wallet}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to redeem coins")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/adjust")
def adjust_route():
    """
    Admin add/remove of coins.

    Request body:
    {
        "user_id": 42,
        "coins": 50,
        "direction": "add",  (add or remove)
        "reason": "Goodwill credit for late delivery",
        "admin_user_id": 1  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        txn = loyalty_service.manual_adjust(
            user_id=data.get("user_id"),
            coins=data.get("coins"),
            direction=data.get("direction"),
            reason=data.get("reason"),
            admin_user_id=data.get("admin_user_id"),
        )

        wallet = loyalty_service.get_wallet_summary(txn.user_id)
        return jsonify({"transaction": txn.to_dict(), "wallet": wallet}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust coins")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/bonus")
def bonus_route():
    """
    Credit fixed bonus coins for a referral or an offer.

    Request body:
    {
        "user_id": 42,
        "coins": 100,
        "reference_type": "referral",  (referral or offer)
        "reference_id": "57",  (optional, referred user or offer code)
        "description": "..."  (optional)
    }

    Returns:
        201: Coins credited
        200: Program disabled, nothing credited
    """
    try:
        data = request.get_json(silent=True) or {}

        user_id = coerce_int(data.get("user_id"), "user_id")

        txn = loyalty_service.credit_bonus(
            user_id=user_id,
            coins=data.get("coins"),
            reference_type=data.get("reference_type"),
            reference_id=data.get("reference_id"),
            description=data.get("description"),
        )

        wallet = loyalty_service.get_wallet_summary(user_id)
        if txn is None:
            return jsonify({"transaction": None, "wallet": wallet}), 200

        return jsonify({"transaction": txn.to_dict(), "wallet": wallet}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to credit bonus coins")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/stats")
def stats_route():
    """Program-wide totals. Query param: active_days (default 30)."""
    try:
        active_days = max(request.args.get("active_days", 30, type=int), 1)
        return jsonify({"stats": loyalty_service.get_loyalty_stats(active_days)}), 200

    except Exception:
        current_app.logger.exception("Failed to load loyalty stats")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SETTINGS
# =============================================================================

@loyalty_bp.get("/settings")
def get_settings_route():
    try:
        return jsonify({"settings": loyalty_service.get_loyalty_config().to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to load loyalty settings")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.put("/settings")
def update_settings_route():
    """
    Partial update of loyalty settings.

    Request body: any of is_enabled, coins_per_unit, global_multiplier,
    min_coins_to_redeem, max_coins_per_order, min_order_amount_cents,
    is_festive_active, festive_multiplier, festive_start, festive_end; plus optional
    updated_by_user_id. Unknown keys are rejected.
    """
    try:
        data = dict(request.get_json(silent=True) or {})
        user_id = data.pop("updated_by_user_id", None)

        config = loyalty_service.update_loyalty_settings(data, user_id=user_id)
        return jsonify({"settings": config.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update loyalty settings")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RECONCILIATION
# =============================================================================

@loyalty_bp.post("/reconcile")
def reconcile_wallets_route():
    """
    Replay coin transactions against cached wallets.

    Request body (optional):
    {
        "repair": true,  (default false: report only)
        "user_id": 42  (default: every user)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        repair = bool(data.get("repair", False))

        if data.get("user_id") is not None:
            report = loyalty_service.reconcile_wallet(data["user_id"], repair=repair)
            return jsonify({"reports": [report]}), 200

        drifted = loyalty_service.reconcile_wallets(repair=repair)
        return jsonify({
            "drifted_count": len(drifted),
            "reports": drifted
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reconcile wallets")
        return jsonify({"error": "Internal server error"}), 500
