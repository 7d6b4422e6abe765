from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def _counterparty_dict(obj, kind: str) -> dict:
    return {
        "id": obj.id,
        "kind": kind,
        "name": obj.name,
        "email": obj.email,
        "phone": obj.phone,
        "is_active": obj.is_active,
        "outstanding_balance_cents": obj.outstanding_balance_cents,
        "created_at": to_utc_z(obj.created_at),
        "updated_at": to_utc_z(obj.updated_at),
        "version_id": obj.version_id,
    }


class Customer(db.Model):
    """
    Counterparty for money received against sales orders.

    outstanding_balance_cents is a cached projection of what the customer
    still owes. Payment history is authoritative; it can be recomputed with
    payment_service.reconcile_counterparty_balance.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )
    KIND = "customer"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    outstanding_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return _counterparty_dict(self, self.KIND)


class Supplier(db.Model):
    """
    Counterparty for money paid against purchase invoices.

    outstanding_balance_cents is what the store still owes the supplier.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )
    KIND = "supplier"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    outstanding_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return _counterparty_dict(self, self.KIND)
