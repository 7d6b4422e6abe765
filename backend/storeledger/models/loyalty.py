from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z


class CoinWallet(db.Model):
    """
    Loyalty coin wallet for a user (one per user_id).

    All three totals are a derived cache of coin_transactions; the ledger is
    authoritative and loyalty_service.reconcile_wallet replays it.
    """
    __tablename__ = "coin_wallets"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_coin_wallets_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False)

    total_coins_earned = db.Column(db.Integer, nullable=False, default=0)
    total_coins_used = db.Column(db.Integer, nullable=False, default=0)
    available_coins = db.Column(db.Integer, nullable=False, default=0)

    last_updated = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "total_coins_earned": self.total_coins_earned,
            "total_coins_used": self.total_coins_used,
            "available_coins": self.available_coins,
            "last_updated": to_utc_z(self.last_updated) if self.last_updated else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class CoinTransaction(db.Model):
    """
    Append-only ledger of loyalty coin movements.

    TRANSACTION TYPES:
    - earned: Coins earned from an order, referral or offer (positive)
    - redeemed: Coins spent at checkout (negative)
    - manual_add: Admin adjustment (positive)
    - manual_remove: Admin adjustment (negative)

    IMMUTABLE: Records are never updated or deleted. Corrections are made by
    appending an opposite manual entry.
    """
    __tablename__ = "coin_transactions"
    __table_args__ = (
        db.Index("ix_coin_txns_user_id_desc", "user_id", "id"),
        db.Index("ix_coin_txns_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    coins_amount = db.Column(db.Integer, nullable=False)  # Signed

    description = db.Column(db.String(255), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    # What the movement is for: ("order", payable id), ("referral", referred user), ("offer", offer code)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.String(64), nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "transaction_type": self.transaction_type,
            "coins_amount": self.coins_amount,
            "description": self.description,
            "admin_notes": self.admin_notes,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltySettings(db.Model):
    """
    Singleton row (id=1) holding loyalty program configuration.

    Read through loyalty_service.get_loyalty_config(), which returns an
    immutable LoyaltyConfig snapshot.
    """
    __tablename__ = "loyalty_settings"

    id = db.Column(db.Integer, primary_key=True)
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    coins_per_unit = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal("0.10"))
    global_multiplier = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal("1"))
    min_coins_to_redeem = db.Column(db.Integer, nullable=False, default=10)
    max_coins_per_order = db.Column(db.Integer, nullable=True)
    min_order_amount_cents = db.Column(db.Integer, nullable=True)

    is_festive_active = db.Column(db.Boolean, nullable=False, default=False)
    festive_multiplier = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal("1"))
    festive_start = db.Column(db.DateTime(timezone=True), nullable=True)
    festive_end = db.Column(db.DateTime(timezone=True), nullable=True)

    updated_by_user_id = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
