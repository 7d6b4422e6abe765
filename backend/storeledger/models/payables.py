from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PAYABLE_KIND_SALES_ORDER = "sales_order"
PAYABLE_KIND_PURCHASE_INVOICE = "purchase_invoice"
PAYABLE_KINDS = [PAYABLE_KIND_SALES_ORDER, PAYABLE_KIND_PURCHASE_INVOICE]

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"


class Payable(db.Model):
    """
    A sales order or purchase invoice that money is owed against.

    payment_status and amount_paid_cents are caches of the live payment set
    and are only written by payment_service. last_payment_at is touched on
    every payment mutation so the versioned UPDATE always runs and two
    concurrent writers cannot both commit against the same version.
    """
    __tablename__ = "payables"
    __table_args__ = (
        db.UniqueConstraint("kind", "reference_number", name="uq_payables_kind_reference"),
        db.Index("ix_payables_kind_status", "kind", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(32), nullable=False)

    # Order number or supplier invoice number
    reference_number = db.Column(db.String(64), nullable=False)

    total_amount_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    last_payment_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("payables", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("payables", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def counterparty_id(self) -> int | None:
        if self.kind == PAYABLE_KIND_SALES_ORDER:
            return self.customer_id
        return self.supplier_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "reference_number": self.reference_number,
            "total_amount_cents": self.total_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "remaining_cents": self.total_amount_cents - self.amount_paid_cents,
            "payment_status": self.payment_status,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "counterparty_id": self.counterparty_id,
            "last_payment_at": to_utc_z(self.last_payment_at) if self.last_payment_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
