# Overview: Flask API routes for payables and counterparties; parses input and returns JSON responses.

# backend/storeledger/routes/payables.py
"""
Payables & Counterparties API Routes

WHY: Sales orders and purchase invoices are the documents payments settle.
Checkout and invoice entry create them here; the payment screens read them.

DESIGN:
- Create customers and suppliers (outstanding balance starts at 0)
- Create payables against an optional counterparty
- Payable detail with its live payment summary and event trail
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import payable_service, payment_service
from ..validation import LedgerError


payables_bp = Blueprint("payables", __name__, url_prefix="/api/payables")


# =============================================================================
# COUNTERPARTIES
# =============================================================================

def _create_counterparty(kind: str):
    try:
        data = request.get_json(silent=True) or {}

        counterparty = payable_service.create_counterparty(
            kind=kind,
            name=data.get("name"),
            email=data.get("email"),
            phone=data.get("phone"),
        )
        return jsonify({kind: counterparty.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create %s", kind)
        return jsonify({"error": "Internal server error"}), 500


@payables_bp.post("/customers")
def create_customer_route():
    """
    Create a customer.

    Request body:
    {
        "name": "Asha Traders",
        "email": "asha@example.com",  (optional)
        "phone": "+91 98450 00000"  (optional)
    }
    """
    return _create_counterparty(payable_service.COUNTERPARTY_CUSTOMER)


@payables_bp.post("/suppliers")
def create_supplier_route():
    """Create a supplier. Same body as customers."""
    return _create_counterparty(payable_service.COUNTERPARTY_SUPPLIER)


@payables_bp.get("/counterparties/<kind>/<int:counterparty_id>")
def get_counterparty_route(kind: str, counterparty_id: int):
    """
    Get a customer or supplier with its cached outstanding balance.

    Query params:
    - verify: "true" to also replay history and report drift (no repair)
    """
    try:
        counterparty = payable_service.get_counterparty(kind, counterparty_id)
        response = {"counterparty": counterparty.to_dict()}

        if request.args.get("verify", "false").lower() == "true":
            response["reconciliation"] = payment_service.reconcile_counterparty_balance(
                kind, counterparty_id, repair=False
            )

        return jsonify(response), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load counterparty")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYABLES
# =============================================================================

@payables_bp.post("")
def create_payable_route():
    """
    Create a sales order or purchase invoice payable.

    Request body:
    {
        "kind": "sales_order",
        "reference_number": "SO-1001",
        "total_amount_cents": 100000,
        "counterparty_id": 3  (optional; customer for sales_order, supplier for purchase_invoice)
    }

    Returns:
        201: Payable created
        400: Invalid input or duplicate reference
        404: Counterparty not found
    """
    try:
        data = request.get_json(silent=True) or {}

        payable = payable_service.create_payable(
            kind=data.get("kind"),
            reference_number=data.get("reference_number"),
            total_amount_cents=data.get("total_amount_cents"),
            counterparty_id=data.get("counterparty_id"),
        )
        return jsonify({"payable": payable.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create payable")
        return jsonify({"error": "Internal server error"}), 500


@payables_bp.get("")
def list_payables_route():
    """
    List payables, newest first.

    Query params:
    - kind: sales_order or purchase_invoice
    - payment_status: pending, partial, paid
    - counterparty_id: requires kind
    - limit: default 100
    """
    try:
        payables = payable_service.list_payables(
            kind=request.args.get("kind"),
            payment_status=request.args.get("payment_status"),
            counterparty_id=request.args.get("counterparty_id", type=int),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"payables": [p.to_dict() for p in payables]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list payables")
        return jsonify({"error": "Internal server error"}), 500


@payables_bp.get("/<int:payable_id>")
def get_payable_route(payable_id: int):
    """Get a payable with its cached payment fields."""
    try:
        payable = payable_service.get_payable(payable_id)
        return jsonify({"payable": payable.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load payable")
        return jsonify({"error": "Internal server error"}), 500


@payables_bp.get("/<int:payable_id>/payments")
def get_payable_payments_route(payable_id: int):
    """
    Payment summary for a payable, computed from the live payment set.

    Returns:
    - total_amount_cents / total_paid_cents / remaining_cents
    - payment_status
    - payments: live payments, oldest first
    - events: CREATED / EDITED / DELETED trail, oldest first
    """
    try:
        summary = payment_service.get_payment_summary(payable_id)
        events = payment_service.get_payment_events(payable_id=payable_id)
        summary["events"] = [e.to_dict() for e in events]
        return jsonify(summary), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load payable payments")
        return jsonify({"error": "Internal server error"}), 500
