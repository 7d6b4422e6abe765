# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/storeledger/routes/payments.py
"""
Payment Processing API Routes

WHY: Clerks record money received against sales orders and money paid
against purchase invoices, and correct mistakes by editing or deleting.

DESIGN:
- Record, edit, delete payments (status re-derived on every change)
- Overpayment rejected with the remaining balance in the response
- Reconcile cached payable status against live payments
- All mutations logged to the payment_events trail
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import payment_service
from ..validation import LedgerError


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

# Body keys PUT /<id> may change; absent keys are left alone
EDITABLE_FIELDS = (
    "amount_cents",
    "payment_date",
    "method",
    "counterparty_id",
    "transaction_reference",
    "bank_name",
    "cheque_number",
    "cheque_date",
    "notes",
)


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
def record_payment_route():
    """
    Record a payment against a payable.

    Request body:
    {
        "payable_id": 12,
        "amount_cents": 40000,
        "direction": "received",  (received for sales orders, paid for purchase invoices)
        "method": "upi",
        "payment_date": "2026-10-18",
        "counterparty_id": 3,  (optional)
        "transaction_reference": "UPI-88812",  (optional)
        "bank_name": "...", "cheque_number": "...", "cheque_date": "...",  (optional)
        "notes": "...",  (optional)
        "user_id": 7  (optional, clerk recording the payment)
    }

    METHODS: cash, card, upi, online, cheque, bank_transfer

    Returns:
        201: Payment created, with the payable's updated summary
        400: Invalid input (amount, date, method, direction)
        404: Payable or counterparty not found
        409: Overpayment (remaining_cents in body) or concurrent update
    """
    try:
        data = request.get_json(silent=True) or {}

        payment = payment_service.record_payment(
            payable_id=data.get("payable_id"),
            amount_cents=data.get("amount_cents"),
            direction=data.get("direction"),
            method=data.get("method"),
            payment_date=data.get("payment_date"),
            counterparty_id=data.get("counterparty_id"),
            transaction_reference=data.get("transaction_reference"),
            bank_name=data.get("bank_name"),
            cheque_number=data.get("cheque_number"),
            cheque_date=data.get("cheque_date"),
            notes=data.get("notes"),
            user_id=data.get("user_id"),
        )

        summary = payment_service.get_payment_summary(payment.payable_id)

        return jsonify({
            "payment": payment.to_dict(),
            "summary": summary
        }), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("")
def list_payments_route():
    """
    List payments, most recent payment date first.

    Query params:
    - payable_id: Filter by payable
    - direction: received or paid
    - method: Filter by payment method
    - limit: Max payments (default: 100)
    """
    try:
        payments = payment_service.list_payments(
            payable_id=request.args.get("payable_id", type=int),
            direction=request.args.get("direction"),
            method=request.args.get("method"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    """Get payment details including its event history."""
    try:
        payment = payment_service.get_payment(payment_id)
        events = payment_service.get_payment_events(payment_id=payment_id)

        return jsonify({
            "payment": payment.to_dict(),
            "events": [e.to_dict() for e in events]
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT EDITS & DELETES
# =============================================================================

@payments_bp.put("/<int:payment_id>")
def edit_payment_route(payment_id: int):
    """
    Edit a payment.

    Request body: any of amount_cents, payment_date, method, counterparty_id,
    transaction_reference, bank_name, cheque_number, cheque_date, notes, plus
    optional user_id. direction and payable_id cannot be changed.

    The payment itself is excluded from the paid total when checking for
    overpayment, so it can be raised up to the payable's remaining balance.
    """
    try:
        data = request.get_json(silent=True) or {}

        if "direction" in data or "payable_id" in data:
            return jsonify({
                "error": "invalid_input",
                "message": "direction and payable_id cannot be changed; delete and re-record instead",
            }), 400

        changes = {key: data[key] for key in EDITABLE_FIELDS if key in data}
        payment = payment_service.edit_payment(
            payment_id,
            user_id=data.get("user_id"),
            **changes,
        )

        summary = payment_service.get_payment_summary(payment.payable_id)

        return jsonify({
            "payment": payment.to_dict(),
            "summary": summary
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.delete("/<int:payment_id>")
def delete_payment_route(payment_id: int):
    """
    Delete a payment; the payable status and counterparty balance are recomputed.

    Request body (optional):
    {
        "reason": "Entered against the wrong order",
        "user_id": 7
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        payable_id = payment_service.get_payment(payment_id).payable_id
        payment_service.delete_payment(
            payment_id,
            user_id=data.get("user_id"),
            reason=data.get("reason"),
        )

        summary = payment_service.get_payment_summary(payable_id)

        return jsonify({
            "deleted_payment_id": payment_id,
            "summary": summary
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RECONCILIATION
# =============================================================================

@payments_bp.post("/reconcile")
def reconcile_payables_route():
    """
    Replay payments against cached payable status.

    Request body (optional):
    {
        "repair": true,  (default false: report only)
        "payable_id": 12  (default: every payable)
    }

    Returns drifted payables only when reconciling all of them.
    """
    try:
        data = request.get_json(silent=True) or {}
        repair = bool(data.get("repair", False))

        if data.get("payable_id") is not None:
            report = payment_service.reconcile_payable(data["payable_id"], repair=repair)
            return jsonify({"reports": [report]}), 200

        drifted = payment_service.reconcile_payables(repair=repair)
        return jsonify({
            "drifted_count": len(drifted),
            "reports": drifted
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to reconcile payables")
        return jsonify({"error": "Internal server error"}), 500
