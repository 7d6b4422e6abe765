# Overview: Service-layer operations for payment reconciliation; encapsulates business logic and database work.

"""
Payment Reconciliation Service

WHY: Record money received against sales orders and paid against purchase
invoices without ever letting the paid total exceed what is owed.

DESIGN PRINCIPLES:
- Payments are separate from payables (many-to-one relationship)
- Partial payments: a payable can be settled over several payments
- payment_status is derived, never set: it is recomputed from the live
  payment set on every mutation, so deletes and edits cannot leave it stale
- Overpayment is rejected with the computed remaining balance, never clamped
- Every mutation runs as one locked read-compute-write unit and is logged
  to the append-only payment_events table in the same transaction
"""

from __future__ import annotations

import logging
from datetime import date

from ..extensions import db
from ..models import Payable, Payment, PaymentEvent
from ..models.payables import (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PAID,
)
from ..time_utils import utcnow, parse_iso_date
from ..validation import (
    LedgerValidationError,
    NotFoundError,
    OverpaymentRejectedError,
    coerce_int,
    parse_payment_date,
    require_choice,
    require_positive_cents,
)
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .payable_service import (
    COUNTERPARTY_CUSTOMER,
    COUNTERPARTY_FOR_DIRECTION,
    DIRECTION_FOR_KIND,
    VALID_DIRECTIONS,
    get_counterparty,
    get_payable,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_UPI = "upi"
METHOD_ONLINE = "online"
METHOD_CHEQUE = "cheque"
METHOD_BANK_TRANSFER = "bank_transfer"

VALID_METHODS = [
    METHOD_CASH,
    METHOD_CARD,
    METHOD_UPI,
    METHOD_ONLINE,
    METHOD_CHEQUE,
    METHOD_BANK_TRANSFER,
]

EVENT_CREATED = "CREATED"
EVENT_EDITED = "EDITED"
EVENT_DELETED = "DELETED"

# Marks an edit_payment keyword the caller did not pass
_UNSET = object()


# =============================================================================
# DERIVED STATUS
# =============================================================================

def derive_payment_status(paid_sum: int, total_amount: int) -> str:
    """
    Tri-state payment status of a payable.

    - paid: paid_sum >= total_amount (a zero-total payable counts as paid)
    - partial: 0 < paid_sum < total_amount
    - pending: paid_sum == 0
    """
    if paid_sum >= total_amount:
        return PAYMENT_STATUS_PAID
    if paid_sum > 0:
        return PAYMENT_STATUS_PARTIAL
    return PAYMENT_STATUS_PENDING


def get_paid_sum(payable_id: int, exclude_payment_id: int | None = None) -> int:
    """Sum of live payment amounts for a payable, optionally excluding one payment."""
    query = db.session.query(
        db.func.coalesce(db.func.sum(Payment.amount_cents), 0)
    ).filter(Payment.payable_id == payable_id)

    if exclude_payment_id is not None:
        query = query.filter(Payment.id != exclude_payment_id)

    return int(query.scalar() or 0)


def generate_payment_number() -> str:
    """Next PAY-NNNNNN number, allocated inside the current transaction."""
    return next_document_number(document_type="payment", prefix="PAY")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def record_payment(
    payable_id: int,
    amount_cents: int,
    direction: str,
    method: str,
    payment_date: date | str,
    counterparty_id: int | None = None,
    transaction_reference: str | None = None,
    bank_name: str | None = None,
    cheque_number: str | None = None,
    cheque_date: date | str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Payment:
    """
    Record a payment against a sales order or purchase invoice.

    Args:
        payable_id: Payable being settled
        amount_cents: Amount (> 0, in cents)
        direction: received (sales_order) or paid (purchase_invoice)
        method: cash, card, upi, online, cheque, bank_transfer
        payment_date: Date of payment, not after today
        counterparty_id: Customer (received) or supplier (paid), optional
        transaction_reference / bank_name / cheque_number / cheque_date / notes:
            tender details, optional
        user_id: Clerk recording the payment (optional)

    Returns:
        Payment record

    Raises:
        InvalidAmountError: amount not a positive whole number of cents
        InvalidDateError: payment_date in the future
        NotFoundError: payable or counterparty does not exist
        OverpaymentRejectedError: amount exceeds remaining balance
        ConcurrencyConflictError: retries exhausted under contention
    """
    payable_id = coerce_int(payable_id, "payable_id")
    amount = require_positive_cents(amount_cents)
    require_choice(direction, "direction", VALID_DIRECTIONS)
    require_choice(method, "method", VALID_METHODS)
    paid_on = parse_payment_date(payment_date)
    cheque_on = _parse_optional_date(cheque_date, "cheque_date")
    if counterparty_id is not None:
        counterparty_id = coerce_int(counterparty_id, "counterparty_id")

    def _op():
        payable = get_payable(payable_id, for_update=True)
        _check_direction(payable, direction)

        counterparty = None
        if counterparty_id is not None:
            counterparty = get_counterparty(
                COUNTERPARTY_FOR_DIRECTION[direction], counterparty_id, for_update=True
            )

        already_paid = get_paid_sum(payable.id)
        remaining = payable.total_amount_cents - already_paid
        if amount > remaining:
            raise OverpaymentRejectedError(max(remaining, 0), amount)

        payment = Payment(
            payment_number=generate_payment_number(),
            direction=direction,
            payable_id=payable.id,
            amount_cents=amount,
            method=method,
            payment_date=paid_on,
            transaction_reference=transaction_reference,
            bank_name=bank_name,
            cheque_number=cheque_number,
            cheque_date=cheque_on,
            notes=notes,
            created_by_user_id=user_id,
            created_at=utcnow(),
        )
        _assign_counterparty(payment, counterparty_id)
        db.session.add(payment)
        db.session.flush()  # Get payment ID

        previous_status, new_status = _update_payable_payment_status(payable)

        if counterparty is not None:
            payment.balance_applied_cents = _decrement_outstanding(counterparty, amount)

        _log_payment_event(
            event_type=EVENT_CREATED,
            payment_id=payment.id,
            payment_number=payment.payment_number,
            payable_id=payment.payable_id,
            amount_cents=amount,
            previous_status=previous_status,
            new_status=new_status,
            user_id=user_id,
        )

        db.session.commit()
        logger.info(
            "Recorded payment %s amount=%s on payable %s (%s -> %s)",
            payment.payment_number, amount, payable.id, previous_status, new_status,
        )
        return payment

    return run_with_retry(_op)


# =============================================================================
# PAYMENT EDITS
# =============================================================================

def edit_payment(
    payment_id: int,
    *,
    amount_cents=_UNSET,
    payment_date=_UNSET,
    method=_UNSET,
    counterparty_id=_UNSET,
    transaction_reference=_UNSET,
    bank_name=_UNSET,
    cheque_number=_UNSET,
    cheque_date=_UNSET,
    notes=_UNSET,
    user_id: int | None = None,
) -> Payment:
    """
    Edit a payment, re-validating it as if it were being recorded now.

    The payment being edited is excluded from the "already paid" sum, so it
    may be raised up to the remaining balance as if it did not exist yet.
    direction and payable are fixed once recorded. Passing
    counterparty_id=None detaches the counterparty.

    Raises:
        Same as record_payment; NotFoundError if the payment does not exist.
    """
    new_amount = require_positive_cents(amount_cents) if amount_cents is not _UNSET else _UNSET
    new_method = require_choice(method, "method", VALID_METHODS) if method is not _UNSET else _UNSET
    new_date = parse_payment_date(payment_date) if payment_date is not _UNSET else _UNSET
    new_cheque_date = (
        _parse_optional_date(cheque_date, "cheque_date") if cheque_date is not _UNSET else _UNSET
    )
    new_counterparty_id = counterparty_id
    if counterparty_id is not _UNSET and counterparty_id is not None:
        new_counterparty_id = coerce_int(counterparty_id, "counterparty_id")

    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found")

        payable = get_payable(payment.payable_id, for_update=True)

        old_amount = payment.amount_cents
        old_counterparty_id = payment.counterparty_id
        amount = old_amount if new_amount is _UNSET else new_amount
        target_counterparty_id = (
            old_counterparty_id if new_counterparty_id is _UNSET else new_counterparty_id
        )

        already_paid = get_paid_sum(payable.id, exclude_payment_id=payment.id)
        remaining = payable.total_amount_cents - already_paid
        if amount > remaining:
            raise OverpaymentRejectedError(max(remaining, 0), amount)

        counterparty_kind = COUNTERPARTY_FOR_DIRECTION[payment.direction]
        target_counterparty = None
        if target_counterparty_id is not None:
            target_counterparty = get_counterparty(
                counterparty_kind, target_counterparty_id, for_update=True
            )

        balance_changed = amount != old_amount or target_counterparty_id != old_counterparty_id
        if balance_changed:
            # Undo what the old version did, then apply the new version
            if old_counterparty_id is not None:
                old_counterparty = get_counterparty(
                    counterparty_kind, old_counterparty_id, for_update=True
                )
                old_counterparty.outstanding_balance_cents += payment.balance_applied_cents
            payment.balance_applied_cents = 0
            if target_counterparty is not None:
                payment.balance_applied_cents = _decrement_outstanding(target_counterparty, amount)

        payment.amount_cents = amount
        _assign_counterparty(payment, target_counterparty_id)
        if new_method is not _UNSET:
            payment.method = new_method
        if new_date is not _UNSET:
            payment.payment_date = new_date
        if new_cheque_date is not _UNSET:
            payment.cheque_date = new_cheque_date
        if transaction_reference is not _UNSET:
            payment.transaction_reference = transaction_reference
        if bank_name is not _UNSET:
            payment.bank_name = bank_name
        if cheque_number is not _UNSET:
            payment.cheque_number = cheque_number
        if notes is not _UNSET:
            payment.notes = notes
        payment.updated_at = utcnow()
        db.session.flush()

        previous_status, new_status = _update_payable_payment_status(payable)

        _log_payment_event(
            event_type=EVENT_EDITED,
            payment_id=payment.id,
            payment_number=payment.payment_number,
            payable_id=payment.payable_id,
            amount_cents=amount - old_amount,
            previous_status=previous_status,
            new_status=new_status,
            user_id=user_id,
        )

        db.session.commit()
        logger.info(
            "Edited payment %s amount %s -> %s on payable %s (%s -> %s)",
            payment.payment_number, old_amount, amount, payable.id, previous_status, new_status,
        )
        return payment

    return run_with_retry(_op)


# =============================================================================
# PAYMENT DELETES
# =============================================================================

def delete_payment(payment_id: int, user_id: int | None = None, reason: str | None = None) -> None:
    """
    Delete a payment and recompute everything it fed into.

    The payable's status is recomputed from the remaining payments and the
    counterparty gets back the part of the amount this payment took off its
    outstanding balance.

    Raises:
        NotFoundError: payment does not exist
    """
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found")

        payable = get_payable(payment.payable_id, for_update=True)

        if payment.counterparty_id is not None:
            counterparty = get_counterparty(
                COUNTERPARTY_FOR_DIRECTION[payment.direction],
                payment.counterparty_id,
                for_update=True,
            )
            counterparty.outstanding_balance_cents += payment.balance_applied_cents

        # Capture before the row goes away
        deleted_id = payment.id
        payment_number = payment.payment_number
        amount = payment.amount_cents

        db.session.delete(payment)
        db.session.flush()

        previous_status, new_status = _update_payable_payment_status(payable)

        _log_payment_event(
            event_type=EVENT_DELETED,
            payment_id=deleted_id,
            payment_number=payment_number,
            payable_id=payable.id,
            amount_cents=-amount,
            previous_status=previous_status,
            new_status=new_status,
            user_id=user_id,
            note=reason,
        )

        db.session.commit()
        logger.info(
            "Deleted payment %s amount=%s on payable %s (%s -> %s)",
            payment_number, amount, payable.id, previous_status, new_status,
        )

    run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.query(Payment).filter_by(id=payment_id).first()
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def list_payments(
    payable_id: int | None = None,
    direction: str | None = None,
    method: str | None = None,
    limit: int = 100,
) -> list[Payment]:
    """List payments, most recent payment date first."""
    query = db.session.query(Payment)

    if payable_id is not None:
        query = query.filter_by(payable_id=payable_id)
    if direction:
        query = query.filter_by(direction=direction)
    if method:
        query = query.filter_by(method=method)

    return query.order_by(Payment.payment_date.desc(), Payment.id.desc()).limit(limit).all()


def get_remaining_balance(payable_id: int) -> int:
    """Amount still owed on a payable, in cents."""
    payable = get_payable(payable_id)
    return payable.total_amount_cents - get_paid_sum(payable.id)


def get_payment_summary(payable_id: int) -> dict:
    """
    Get payment summary for a payable, computed from the live payment set.

    Returns:
        - total_amount_cents: Amount owed
        - total_paid_cents: Sum of live payments
        - remaining_cents: Amount still owed
        - payment_status: pending, partial, paid
        - payments: List of payment records
    """
    payable = get_payable(payable_id)
    paid = get_paid_sum(payable.id)
    payments = (
        db.session.query(Payment)
        .filter_by(payable_id=payable.id)
        .order_by(Payment.payment_date, Payment.id)
        .all()
    )
    return {
        "payable_id": payable.id,
        "kind": payable.kind,
        "reference_number": payable.reference_number,
        "total_amount_cents": payable.total_amount_cents,
        "total_paid_cents": paid,
        "remaining_cents": payable.total_amount_cents - paid,
        "payment_status": derive_payment_status(paid, payable.total_amount_cents),
        "payments": [p.to_dict() for p in payments],
    }


def get_payment_events(payable_id: int | None = None, payment_id: int | None = None) -> list[PaymentEvent]:
    """Audit trail of payment mutations, oldest first."""
    query = db.session.query(PaymentEvent)
    if payable_id is not None:
        query = query.filter_by(payable_id=payable_id)
    if payment_id is not None:
        query = query.filter_by(payment_id=payment_id)
    return query.order_by(PaymentEvent.id).all()


# =============================================================================
# RECONCILIATION
# =============================================================================

def reconcile_payable(payable_id: int, repair: bool = False) -> dict:
    """
    Replay a payable's payments and compare with its cached fields.

    With repair=True a drifted payable is rewritten from the replay.

    Returns:
        Report dict with cached vs derived values and in_sync / repaired flags.
    """
    def _op():
        payable = get_payable(payable_id, for_update=repair)
        paid = get_paid_sum(payable.id)
        derived_status = derive_payment_status(paid, payable.total_amount_cents)

        report = {
            "payable_id": payable.id,
            "cached_paid_cents": payable.amount_paid_cents,
            "derived_paid_cents": paid,
            "cached_status": payable.payment_status,
            "derived_status": derived_status,
            "in_sync": (
                payable.amount_paid_cents == paid
                and payable.payment_status == derived_status
            ),
            "repaired": False,
        }

        if not report["in_sync"]:
            logger.warning(
                "Payable %s drifted: cached %s/%s, derived %s/%s",
                payable.id, payable.amount_paid_cents, payable.payment_status,
                paid, derived_status,
            )
            if repair:
                _update_payable_payment_status(payable)
                db.session.commit()
                report["repaired"] = True

        return report

    return run_with_retry(_op)


def reconcile_payables(repair: bool = False) -> list[dict]:
    """Reconcile every payable; returns reports for the drifted ones only."""
    payable_ids = [row.id for row in db.session.query(Payable.id).order_by(Payable.id).all()]
    drifted = []
    for payable_id in payable_ids:
        report = reconcile_payable(payable_id, repair=repair)
        if not report["in_sync"]:
            drifted.append(report)
    return drifted


def reconcile_counterparty_balance(kind: str, counterparty_id: int, repair: bool = False) -> dict:
    """
    Recompute a counterparty's outstanding balance from its history.

    derived = sum of its payable totals - sum of live payments carrying it,
    floored at 0. The stored value is a cache that payments decrement with a
    floor, so payments that carry a counterparty other than the payable's can
    make the two differ; this is how such drift is surfaced and repaired.
    """
    def _op():
        counterparty = get_counterparty(kind, counterparty_id, for_update=repair)

        if kind == COUNTERPARTY_CUSTOMER:
            payable_filter = Payable.customer_id == counterparty.id
            payment_filter = Payment.customer_id == counterparty.id
        else:
            payable_filter = Payable.supplier_id == counterparty.id
            payment_filter = Payment.supplier_id == counterparty.id

        owed = db.session.query(
            db.func.coalesce(db.func.sum(Payable.total_amount_cents), 0)
        ).filter(payable_filter).scalar() or 0
        paid = db.session.query(
            db.func.coalesce(db.func.sum(Payment.amount_cents), 0)
        ).filter(payment_filter).scalar() or 0
        derived = max(0, int(owed) - int(paid))

        report = {
            "kind": kind,
            "counterparty_id": counterparty.id,
            "cached_balance_cents": counterparty.outstanding_balance_cents,
            "derived_balance_cents": derived,
            "in_sync": counterparty.outstanding_balance_cents == derived,
            "repaired": False,
        }

        if not report["in_sync"]:
            logger.warning(
                "%s %s outstanding balance drifted: cached %s, derived %s",
                kind, counterparty.id, counterparty.outstanding_balance_cents, derived,
            )
            if repair:
                counterparty.outstanding_balance_cents = derived
                db.session.commit()
                report["repaired"] = True

        return report

    return run_with_retry(_op)


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _check_direction(payable: Payable, direction: str) -> None:
    expected = DIRECTION_FOR_KIND[payable.kind]
    if direction != expected:
        raise LedgerValidationError(
            f"A {payable.kind} only accepts '{expected}' payments, got '{direction}'"
        )


def _assign_counterparty(payment: Payment, counterparty_id: int | None) -> None:
    if COUNTERPARTY_FOR_DIRECTION[payment.direction] == COUNTERPARTY_CUSTOMER:
        payment.customer_id = counterparty_id
        payment.supplier_id = None
    else:
        payment.supplier_id = counterparty_id
        payment.customer_id = None


def _decrement_outstanding(counterparty, amount_cents: int) -> int:
    """Decrement floored at 0; returns how much was actually taken off."""
    applied = min(amount_cents, counterparty.outstanding_balance_cents)
    counterparty.outstanding_balance_cents -= applied
    return applied


def _parse_optional_date(value, field: str) -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError):
        raise LedgerValidationError(f"{field} must be YYYY-MM-DD")


def _update_payable_payment_status(payable: Payable) -> tuple[str, str]:
    """
    Recompute a payable's paid total and status from its live payments.

    WHY: Recomputing from scratch (never adjusting incrementally) means
    edits, deletes and retried writes all land on the same answer.
    last_payment_at always changes so the versioned UPDATE is emitted even
    when the status itself does not move.
    """
    previous_status = payable.payment_status
    paid = get_paid_sum(payable.id)
    payable.amount_paid_cents = paid
    payable.payment_status = derive_payment_status(paid, payable.total_amount_cents)
    payable.last_payment_at = utcnow()
    return previous_status, payable.payment_status


def _log_payment_event(
    *,
    event_type: str,
    payment_id: int,
    payment_number: str,
    payable_id: int,
    amount_cents: int,
    previous_status: str,
    new_status: str,
    user_id: int | None = None,
    note: str | None = None,
) -> PaymentEvent:
    """Append an immutable payment event inside the current transaction."""
    event = PaymentEvent(
        event_type=event_type,
        payment_id=payment_id,
        payment_number=payment_number,
        payable_id=payable_id,
        amount_cents=amount_cents,
        previous_status=previous_status,
        new_status=new_status,
        actor_user_id=user_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.flush()
    return event

