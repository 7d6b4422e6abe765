# Overview: Service-layer operations for payables and counterparties; order and invoice entry.

"""
Payable & Counterparty Service

Order checkout and purchase-invoice entry create payables here. The payment
engine only ever reads payables and writes their derived payment fields.

Creating a payable with a counterparty raises that counterparty's cached
outstanding balance by the payable total; payments bring it back down.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Customer, Supplier, Payable
from ..models.payables import (
    PAYABLE_KIND_SALES_ORDER,
    PAYABLE_KIND_PURCHASE_INVOICE,
    PAYABLE_KINDS,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
)
from ..validation import (
    LedgerValidationError,
    NotFoundError,
    coerce_int,
    require_choice,
    require_non_empty,
    require_non_negative_cents,
)
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


COUNTERPARTY_CUSTOMER = "customer"
COUNTERPARTY_SUPPLIER = "supplier"

COUNTERPARTY_MODELS = {
    COUNTERPARTY_CUSTOMER: Customer,
    COUNTERPARTY_SUPPLIER: Supplier,
}

DIRECTION_RECEIVED = "received"
DIRECTION_PAID = "paid"
VALID_DIRECTIONS = [DIRECTION_RECEIVED, DIRECTION_PAID]

# Money flows in on sales orders and out on purchase invoices
DIRECTION_FOR_KIND = {
    PAYABLE_KIND_SALES_ORDER: DIRECTION_RECEIVED,
    PAYABLE_KIND_PURCHASE_INVOICE: DIRECTION_PAID,
}

COUNTERPARTY_FOR_KIND = {
    PAYABLE_KIND_SALES_ORDER: COUNTERPARTY_CUSTOMER,
    PAYABLE_KIND_PURCHASE_INVOICE: COUNTERPARTY_SUPPLIER,
}

COUNTERPARTY_FOR_DIRECTION = {
    DIRECTION_RECEIVED: COUNTERPARTY_CUSTOMER,
    DIRECTION_PAID: COUNTERPARTY_SUPPLIER,
}


# =============================================================================
# COUNTERPARTIES
# =============================================================================

def create_counterparty(
    kind: str,
    name: str,
    email: str | None = None,
    phone: str | None = None,
) -> Customer | Supplier:
    """
    Create a customer or supplier.

    The outstanding balance starts at zero and only moves through payables
    and payments, so it stays recomputable from them.
    """
    require_choice(kind, "counterparty kind", COUNTERPARTY_MODELS)
    name = require_non_empty(name, "name")

    model = COUNTERPARTY_MODELS[kind]
    counterparty = model(
        name=name,
        email=email,
        phone=phone,
        outstanding_balance_cents=0,
    )
    db.session.add(counterparty)
    db.session.commit()
    return counterparty


def get_counterparty(kind: str, counterparty_id: int, *, for_update: bool = False) -> Customer | Supplier:
    require_choice(kind, "counterparty kind", COUNTERPARTY_MODELS)
    query = db.session.query(COUNTERPARTY_MODELS[kind]).filter_by(id=counterparty_id)
    if for_update:
        query = lock_for_update(query)
    counterparty = query.first()
    if not counterparty:
        raise NotFoundError(f"{kind.capitalize()} {counterparty_id} not found")
    return counterparty


# =============================================================================
# PAYABLES
# =============================================================================

def create_payable(
    kind: str,
    reference_number: str,
    total_amount_cents: int,
    counterparty_id: int | None = None,
) -> Payable:
    """
    Create a sales order or purchase invoice payable.

    Args:
        kind: sales_order or purchase_invoice
        reference_number: Order / invoice number (unique per kind)
        total_amount_cents: Amount owed (>= 0)
        counterparty_id: Customer (sales_order) or supplier (purchase_invoice)

    Raises:
        LedgerValidationError: Unknown kind, empty or duplicate reference
        InvalidAmountError: Negative or oversized total
        NotFoundError: Counterparty does not exist
    """
    require_choice(kind, "payable kind", PAYABLE_KINDS)
    reference_number = require_non_empty(reference_number, "reference_number")
    total = require_non_negative_cents(total_amount_cents, "total_amount_cents")
    if counterparty_id is not None:
        counterparty_id = coerce_int(counterparty_id, "counterparty_id")

    def _op():
        duplicate = db.session.query(Payable.id).filter_by(
            kind=kind, reference_number=reference_number
        ).first()
        if duplicate:
            raise LedgerValidationError(f"{kind} {reference_number} already exists")

        counterparty_kind = COUNTERPARTY_FOR_KIND[kind]
        payable = Payable(
            kind=kind,
            reference_number=reference_number,
            total_amount_cents=total,
            amount_paid_cents=0,
            # Nothing owed is already settled
            payment_status=PAYMENT_STATUS_PAID if total == 0 else PAYMENT_STATUS_PENDING,
        )

        if counterparty_id is not None:
            counterparty = get_counterparty(counterparty_kind, counterparty_id, for_update=True)
            counterparty.outstanding_balance_cents += total
            if counterparty_kind == COUNTERPARTY_CUSTOMER:
                payable.customer_id = counterparty.id
            else:
                payable.supplier_id = counterparty.id

        db.session.add(payable)
        db.session.commit()
        logger.info("Created %s %s total=%s", kind, reference_number, total)
        return payable

    return run_with_retry(_op)


def get_payable(payable_id: int, *, for_update: bool = False) -> Payable:
    query = db.session.query(Payable).filter_by(id=payable_id)
    if for_update:
        query = lock_for_update(query)
    payable = query.first()
    if not payable:
        raise NotFoundError(f"Payable {payable_id} not found")
    return payable


def list_payables(
    kind: str | None = None,
    payment_status: str | None = None,
    counterparty_id: int | None = None,
    limit: int = 100,
) -> list[Payable]:
    """List payables, newest first. counterparty_id requires kind."""
    query = db.session.query(Payable)

    if kind:
        require_choice(kind, "payable kind", PAYABLE_KINDS)
        query = query.filter_by(kind=kind)
        if counterparty_id is not None:
            if COUNTERPARTY_FOR_KIND[kind] == COUNTERPARTY_CUSTOMER:
                query = query.filter_by(customer_id=counterparty_id)
            else:
                query = query.filter_by(supplier_id=counterparty_id)

    if payment_status:
        query = query.filter_by(payment_status=payment_status)

    return query.order_by(Payable.id.desc()).limit(limit).all()
