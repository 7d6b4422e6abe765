from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_iso_date


class Payment(db.Model):
    """
    Money received from a customer or paid to a supplier against a payable.

    Only payment_service creates, edits and deletes these rows. customer_id is
    set for received payments, supplier_id for paid payments; the other stays
    NULL.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("payment_number", name="uq_payments_payment_number"),
        db.Index("ix_payments_payable_date", "payable_id", "payment_date"),
        db.Index("ix_payments_direction_method", "direction", "method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number from document_sequences (e.g., "PAY-000042")
    payment_number = db.Column(db.String(32), nullable=False)

    direction = db.Column(db.String(16), nullable=False)  # received, paid
    payable_id = db.Column(db.Integer, db.ForeignKey("payables.id"), nullable=False, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    # Part of amount_cents actually taken off the counterparty balance (the
    # decrement is floored at 0); edits and deletes give back exactly this
    balance_applied_cents = db.Column(db.Integer, nullable=False, default=0)
    method = db.Column(db.String(32), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)

    # Tender details captured by the payment form
    transaction_reference = db.Column(db.String(128), nullable=True)
    bank_name = db.Column(db.String(128), nullable=True)
    cheque_number = db.Column(db.String(64), nullable=True)
    cheque_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payable = db.relationship("Payable", backref=db.backref("payments", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def counterparty_id(self) -> int | None:
        return self.customer_id if self.customer_id is not None else self.supplier_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_number": self.payment_number,
            "direction": self.direction,
            "payable_id": self.payable_id,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "counterparty_id": self.counterparty_id,
            "amount_cents": self.amount_cents,
            "balance_applied_cents": self.balance_applied_cents,
            "method": self.method,
            "payment_date": to_iso_date(self.payment_date),
            "transaction_reference": self.transaction_reference,
            "bank_name": self.bank_name,
            "cheque_number": self.cheque_number,
            "cheque_date": to_iso_date(self.cheque_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class PaymentEvent(db.Model):
    """
    Append-only audit trail of payment mutations.

    EVENT TYPES:
    - CREATED: payment recorded (amount_cents = +amount)
    - EDITED: payment changed (amount_cents = new - old)
    - DELETED: payment removed (amount_cents = -amount)

    payment_id is a plain integer so events outlive deleted payments.
    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "payment_events"
    __table_args__ = (
        db.Index("ix_payment_events_payable_occurred", "payable_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(16), nullable=False, index=True)

    payment_id = db.Column(db.Integer, nullable=False, index=True)
    payment_number = db.Column(db.String(32), nullable=False)
    payable_id = db.Column(db.Integer, db.ForeignKey("payables.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    previous_status = db.Column(db.String(16), nullable=False)
    new_status = db.Column(db.String(16), nullable=False)

    actor_user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "payment_id": self.payment_id,
            "payment_number": self.payment_number,
            "payable_id": self.payable_id,
            "amount_cents": self.amount_cents,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "actor_user_id": self.actor_user_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
