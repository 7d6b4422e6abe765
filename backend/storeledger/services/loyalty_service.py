# Overview: Service-layer operations for the loyalty coin ledger; encapsulates business logic and database work.

"""
Loyalty Coin Ledger Service

WHY: Customers earn coins on orders and spend them at checkout; admins can
add or remove coins by hand. Balances must never go negative and must always
equal earned - used.

DESIGN PRINCIPLES:
- coin_transactions is the system of record (append-only, signed amounts)
- CoinWallet is a cache: every movement, automated or manual, goes through
  the same fold rule, so no transaction type can forget to update it
- Wallets are created lazily on a user's first transaction
- Each operation locks the wallet row and runs under bounded retry
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Iterator

from ..extensions import db
from ..models import CoinTransaction, CoinWallet, LoyaltySettings
from ..time_utils import utcnow, to_utc_z, parse_iso_datetime
from ..validation import (
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerValidationError,
    LoyaltyDisabledError,
    NotFoundError,
    coerce_int,
    parse_decimal,
    require_choice,
    require_non_empty,
    require_non_negative_cents,
    require_whole_coins,
)
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSACTION TYPES (CONSTANTS)
# =============================================================================

TXN_EARNED = "earned"
TXN_REDEEMED = "redeemed"
TXN_MANUAL_ADD = "manual_add"
TXN_MANUAL_REMOVE = "manual_remove"

CREDIT_TYPES = {TXN_EARNED, TXN_MANUAL_ADD}
DEBIT_TYPES = {TXN_REDEEMED, TXN_MANUAL_REMOVE}

REFERENCE_ORDER = "order"
REFERENCE_REFERRAL = "referral"
REFERENCE_OFFER = "offer"
VALID_BONUS_REFERENCES = [REFERENCE_REFERRAL, REFERENCE_OFFER]

ADJUST_ADD = "add"
ADJUST_REMOVE = "remove"
VALID_ADJUST_DIRECTIONS = [ADJUST_ADD, ADJUST_REMOVE]

SETTINGS_ROW_ID = 1


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class LoyaltyConfig:
    """
    Immutable snapshot of loyalty settings used by earn and redeem.

    - is_enabled: False makes earning a no-op and refuses redemption
    - coins_per_unit: coins earned per whole currency unit spent
    - global_multiplier: applied to every earn
    - min_coins_to_redeem: smallest redemption allowed
    - max_coins_per_order: cap on coins from one earn event (None = no cap)
    - min_order_amount_cents: orders below this earn nothing (None = no minimum)
    - is_festive_active: festive switch; off means festive_multiplier never applies
    - festive_multiplier: extra multiplier while the switch is on and inside the window
    - festive_start / festive_end: window bounds (UTC-naive), either may be open
    """
    is_enabled: bool = True
    coins_per_unit: Decimal = Decimal("0.10")
    global_multiplier: Decimal = Decimal("1")
    min_coins_to_redeem: int = 10
    max_coins_per_order: int | None = None
    min_order_amount_cents: int | None = None
    is_festive_active: bool = False
    festive_multiplier: Decimal = Decimal("1")
    festive_start: datetime | None = None
    festive_end: datetime | None = None

    def is_festive(self, at: datetime) -> bool:
        if not self.is_festive_active:
            return False
        at = _naive_utc(at)
        if self.festive_start is not None and at < self.festive_start:
            return False
        if self.festive_end is not None and at > self.festive_end:
            return False
        return True

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("coins_per_unit", "global_multiplier", "festive_multiplier"):
            data[key] = str(data[key])
        data["festive_start"] = to_utc_z(self.festive_start)
        data["festive_end"] = to_utc_z(self.festive_end)
        return data


@dataclass(frozen=True)
class WalletTotals:
    earned: int
    used: int

    @property
    def available(self) -> int:
        return max(0, self.earned - self.used)


def get_loyalty_config() -> LoyaltyConfig:
    """Snapshot of the settings row, or defaults when none has been saved."""
    row = db.session.query(LoyaltySettings).filter_by(id=SETTINGS_ROW_ID).first()
    if row is None:
        return LoyaltyConfig()
    return LoyaltyConfig(
        is_enabled=bool(row.is_enabled),
        coins_per_unit=Decimal(row.coins_per_unit),
        global_multiplier=Decimal(row.global_multiplier),
        min_coins_to_redeem=int(row.min_coins_to_redeem),
        max_coins_per_order=row.max_coins_per_order,
        min_order_amount_cents=row.min_order_amount_cents,
        is_festive_active=bool(row.is_festive_active),
        festive_multiplier=Decimal(row.festive_multiplier),
        festive_start=_naive_utc(row.festive_start),
        festive_end=_naive_utc(row.festive_end),
    )


def update_loyalty_settings(updates: dict, user_id: int | None = None) -> LoyaltyConfig:
    """
    Validate and persist a partial settings update.

    Unknown keys are rejected rather than ignored. Returns the new snapshot.
    """
    allowed = set(LoyaltyConfig.__dataclass_fields__)
    unknown = set(updates) - allowed
    if unknown:
        raise LedgerValidationError(f"Unknown loyalty settings: {sorted(unknown)}")

    cleaned = {}
    for key, value in updates.items():
        if key in ("is_enabled", "is_festive_active"):
            if not isinstance(value, bool):
                raise LedgerValidationError(f"{key} must be true or false")
            cleaned[key] = value
        elif key in ("coins_per_unit", "global_multiplier", "festive_multiplier"):
            cleaned[key] = parse_decimal(value, key, minimum=Decimal("0"))
        elif key == "min_coins_to_redeem":
            cleaned[key] = coerce_int(value, key)
            if cleaned[key] < 0:
                raise LedgerValidationError(f"{key} cannot be negative")
        elif key == "max_coins_per_order":
            cleaned[key] = None if value is None else require_whole_coins(value, key)
        elif key == "min_order_amount_cents":
            cleaned[key] = None if value is None else require_non_negative_cents(value, key)
        else:
            cleaned[key] = _parse_optional_datetime(value, key)

    def _op():
        row = lock_for_update(
            db.session.query(LoyaltySettings).filter_by(id=SETTINGS_ROW_ID)
        ).first()
        if row is None:
            row = LoyaltySettings(id=SETTINGS_ROW_ID)
            db.session.add(row)

        for key, value in cleaned.items():
            setattr(row, key, value)
        row.updated_by_user_id = user_id

        start, end = _naive_utc(row.festive_start), _naive_utc(row.festive_end)
        if start and end and start > end:
            raise LedgerValidationError("festive_start must be before festive_end")

        db.session.commit()
        logger.info("Loyalty settings updated: %s", sorted(cleaned))
        return get_loyalty_config()

    return run_with_retry(_op)


# =============================================================================
# FOLD RULE
# =============================================================================

def fold_transactions(transactions: Iterable[CoinTransaction]) -> WalletTotals:
    """
    Reduce a user's transactions to wallet totals.

    earned = sum of amounts for earned/manual_add
    used   = sum of |amounts| for redeemed/manual_remove
    """
    earned = 0
    used = 0
    for txn in transactions:
        if txn.transaction_type in CREDIT_TYPES:
            earned += abs(txn.coins_amount)
        elif txn.transaction_type in DEBIT_TYPES:
            used += abs(txn.coins_amount)
        else:
            raise ValueError(f"Unknown coin transaction type: {txn.transaction_type}")
    return WalletTotals(earned=earned, used=used)


def _fold_into_wallet(wallet: CoinWallet, txn: CoinTransaction) -> None:
    """Incremental form of fold_transactions for one new transaction."""
    totals = fold_transactions([txn])
    wallet.total_coins_earned += totals.earned
    wallet.total_coins_used += totals.used
    wallet.available_coins = max(0, wallet.total_coins_earned - wallet.total_coins_used)
    wallet.last_updated = utcnow()


# =============================================================================
# EARN CALCULATION
# =============================================================================

def calculate_earn_coins(config: LoyaltyConfig, base_amount_cents: int, at: datetime | None = None) -> int:
    """
    Coins earned for an order amount.

    coins = floor(units * coins_per_unit * global_multiplier * festive),
    capped at max_coins_per_order. Zero when disabled or below the minimum
    order amount.
    """
    if not config.is_enabled or base_amount_cents <= 0:
        return 0
    if config.min_order_amount_cents is not None and base_amount_cents < config.min_order_amount_cents:
        return 0

    at = _naive_utc(at) if at is not None else utcnow()
    festive = config.festive_multiplier if config.is_festive(at) else Decimal("1")
    units = Decimal(base_amount_cents) / Decimal(100)
    coins = math.floor(units * config.coins_per_unit * config.global_multiplier * festive)

    if config.max_coins_per_order is not None and coins > config.max_coins_per_order:
        coins = config.max_coins_per_order
    return max(0, int(coins))


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

def record_earn(
    user_id: int,
    base_amount_cents: int,
    payable_id: int | None = None,
    description: str | None = None,
    at: datetime | None = None,
) -> CoinTransaction | None:
    """
    Credit coins for a completed order.

    Returns None (and writes nothing) when the program is disabled or the
    order earns no coins.
    """
    user_id = coerce_int(user_id, "user_id")
    base_amount = require_non_negative_cents(base_amount_cents, "base_amount_cents")

    config = get_loyalty_config()
    coins = calculate_earn_coins(config, base_amount, at)
    if coins <= 0:
        logger.debug("No coins earned for user %s on amount %s", user_id, base_amount)
        return None

    def _op():
        wallet = _get_or_create_wallet(user_id)
        txn = CoinTransaction(
            user_id=user_id,
            transaction_type=TXN_EARNED,
            coins_amount=coins,
            description=description or f"Earned {coins} coins on purchase",
            reference_type=REFERENCE_ORDER if payable_id is not None else None,
            reference_id=str(payable_id) if payable_id is not None else None,
            created_at=utcnow(),
        )
        return _append(wallet, txn)

    return run_with_retry(_op)


def credit_bonus(
    user_id: int,
    coins: int,
    reference_type: str,
    reference_id: str | int | None = None,
    description: str | None = None,
) -> CoinTransaction | None:
    """
    Credit a fixed number of bonus coins for a referral or an offer.

    Bonus coins are an `earned` entry like order coins, but the amount is
    given rather than calculated, so multipliers and the per-order cap do
    not apply. Returns None (and writes nothing) when the program is disabled.

    Raises:
        InvalidAmountError: not a positive whole number of coins
        LedgerValidationError: unknown reference_type
    """
    user_id = coerce_int(user_id, "user_id")
    coins = require_whole_coins(coins)
    require_choice(reference_type, "reference_type", VALID_BONUS_REFERENCES)
    reference = None if reference_id is None else str(reference_id)

    if not get_loyalty_config().is_enabled:
        logger.debug("Loyalty disabled; no %s bonus for user %s", reference_type, user_id)
        return None

    def _op():
        wallet = _get_or_create_wallet(user_id)
        txn = CoinTransaction(
            user_id=user_id,
            transaction_type=TXN_EARNED,
            coins_amount=coins,
            description=description or f"Earned {coins} bonus coins from {reference_type}",
            reference_type=reference_type,
            reference_id=reference,
            created_at=utcnow(),
        )
        return _append(wallet, txn)

    return run_with_retry(_op)


def redeem(
    user_id: int,
    coins: int,
    payable_id: int | None = None,
    description: str | None = None,
) -> CoinTransaction:
    """
    Spend coins from a wallet.

    Raises:
        InvalidAmountError: not a positive whole number or below min_coins_to_redeem
        LoyaltyDisabledError: program switched off
        InsufficientBalanceError: more than available (carries the shortfall);
            a user without a wallet has 0 available
    """
    user_id = coerce_int(user_id, "user_id")
    coins = require_whole_coins(coins)

    config = get_loyalty_config()
    if not config.is_enabled:
        raise LoyaltyDisabledError("Loyalty program is disabled")
    if coins < config.min_coins_to_redeem:
        raise InvalidAmountError(
            f"Minimum {config.min_coins_to_redeem} coins required to redeem"
        )

    def _op():
        wallet = _get_wallet_for_update(user_id)
        available = wallet.available_coins if wallet is not None else 0
        if available < coins:
            raise InsufficientBalanceError(available, coins)

        txn = CoinTransaction(
            user_id=user_id,
            transaction_type=TXN_REDEEMED,
            coins_amount=-coins,
            description=description or f"Redeemed {coins} coins",
            reference_type=REFERENCE_ORDER if payable_id is not None else None,
            reference_id=str(payable_id) if payable_id is not None else None,
            created_at=utcnow(),
        )
        return _append(wallet, txn)

    return run_with_retry(_op)


def manual_adjust(
    user_id: int,
    coins: int,
    direction: str,
    reason: str,
    admin_user_id: int | None = None,
) -> CoinTransaction:
    """
    Admin add/remove of coins.

    "add" is folded like an earn and "remove" like a redemption, so
    available = earned - used holds for manual and automated movements alike.

    Raises:
        InvalidAmountError: fractional or non-positive coins
        LedgerValidationError: empty reason or unknown direction
        InsufficientBalanceError: remove beyond available coins
    """
    user_id = coerce_int(user_id, "user_id")
    coins = require_whole_coins(coins)
    require_choice(direction, "direction", VALID_ADJUST_DIRECTIONS)
    reason = require_non_empty(reason, "reason")

    def _op():
        if direction == ADJUST_ADD:
            wallet = _get_or_create_wallet(user_id)
        else:
            wallet = _get_wallet_for_update(user_id)
            available = wallet.available_coins if wallet is not None else 0
            if available < coins:
                raise InsufficientBalanceError(available, coins)

        signed = coins if direction == ADJUST_ADD else -coins
        txn = CoinTransaction(
            user_id=user_id,
            transaction_type=TXN_MANUAL_ADD if direction == ADJUST_ADD else TXN_MANUAL_REMOVE,
            coins_amount=signed,
            description=reason,
            admin_notes=f"Manual adjustment by admin: {reason}",
            actor_user_id=admin_user_id,
            created_at=utcnow(),
        )
        return _append(wallet, txn)

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_wallet(user_id: int) -> CoinWallet:
    wallet = db.session.query(CoinWallet).filter_by(user_id=user_id).first()
    if wallet is None:
        raise NotFoundError(f"No coin wallet for user {user_id}")
    return wallet


def get_wallet_summary(user_id: int) -> dict:
    """Wallet totals for display; a user without a wallet reads as all zeros."""
    wallet = db.session.query(CoinWallet).filter_by(user_id=user_id).first()
    if wallet is None:
        return {
            "user_id": user_id,
            "total_coins_earned": 0,
            "total_coins_used": 0,
            "available_coins": 0,
            "last_updated": None,
        }
    return wallet.to_dict()


def iter_transactions(
    user_id: int,
    limit: int | None = None,
    before: int | None = None,
    page_size: int = 50,
) -> Iterator[CoinTransaction]:
    """
    Lazily yield a user's transactions, newest first.

    Pages are fetched on demand with keyset pagination on id, so the
    sequence can be resumed by passing the last seen id as `before`.
    """
    remaining = limit
    cursor = before
    while remaining is None or remaining > 0:
        batch_size = page_size if remaining is None else min(page_size, remaining)
        query = db.session.query(CoinTransaction).filter_by(user_id=user_id)
        if cursor is not None:
            query = query.filter(CoinTransaction.id < cursor)
        batch = query.order_by(CoinTransaction.id.desc()).limit(batch_size).all()
        if not batch:
            return
        for txn in batch:
            yield txn
        cursor = batch[-1].id
        if remaining is not None:
            remaining -= len(batch)
        if len(batch) < batch_size:
            return


def list_transactions(user_id: int, limit: int = 50, before: int | None = None) -> list[CoinTransaction]:
    """One page of history for the admin view."""
    return list(iter_transactions(user_id, limit=limit, before=before))


def get_loyalty_stats(active_days: int = 30) -> dict:
    """
    Program-wide totals for the admin dashboard.

    Coin totals are summed from the wallet caches; active users are those
    with any transaction in the last `active_days` days.
    """
    wallet_totals = db.session.query(
        db.func.count(CoinWallet.id),
        db.func.coalesce(db.func.sum(CoinWallet.total_coins_earned), 0),
        db.func.coalesce(db.func.sum(CoinWallet.total_coins_used), 0),
        db.func.coalesce(db.func.sum(CoinWallet.available_coins), 0),
    ).one()

    since = utcnow() - timedelta(days=active_days)
    active_users = (
        db.session.query(db.func.count(db.distinct(CoinTransaction.user_id)))
        .filter(CoinTransaction.created_at >= since)
        .scalar()
    )
    by_type = dict(
        db.session.query(CoinTransaction.transaction_type, db.func.count(CoinTransaction.id))
        .group_by(CoinTransaction.transaction_type)
        .all()
    )

    return {
        "total_users": int(wallet_totals[0]),
        "total_coins_issued": int(wallet_totals[1]),
        "total_coins_redeemed": int(wallet_totals[2]),
        "total_coins_available": int(wallet_totals[3]),
        "active_users": int(active_users or 0),
        "active_days": active_days,
        "total_transactions": sum(by_type.values()),
        "transactions_by_type": by_type,
    }


# =============================================================================
# RECONCILIATION
# =============================================================================

def reconcile_wallet(user_id: int, repair: bool = False) -> dict:
    """
    Replay a user's ledger and compare with the cached wallet.

    With repair=True a drifted wallet is rewritten from the replay. A
    missing wallet for a user with transactions counts as drift.
    """
    def _op():
        wallet = (
            _get_wallet_for_update(user_id)
            if repair
            else db.session.query(CoinWallet).filter_by(user_id=user_id).first()
        )
        txns = (
            db.session.query(CoinTransaction)
            .filter_by(user_id=user_id)
            .order_by(CoinTransaction.id)
            .all()
        )
        totals = fold_transactions(txns)

        cached = (
            (wallet.total_coins_earned, wallet.total_coins_used, wallet.available_coins)
            if wallet is not None
            else (0, 0, 0)
        )
        derived = (totals.earned, totals.used, totals.available)
        missing_wallet = wallet is None and bool(txns)

        report = {
            "user_id": user_id,
            "cached": dict(zip(("earned", "used", "available"), cached)),
            "derived": dict(zip(("earned", "used", "available"), derived)),
            "transaction_count": len(txns),
            "in_sync": cached == derived and not missing_wallet,
            "repaired": False,
        }

        if not report["in_sync"]:
            logger.warning("Wallet for user %s drifted: cached %s, derived %s", user_id, cached, derived)
            if repair:
                if wallet is None:
                    wallet = CoinWallet(user_id=user_id)
                    db.session.add(wallet)
                wallet.total_coins_earned = totals.earned
                wallet.total_coins_used = totals.used
                wallet.available_coins = totals.available
                wallet.last_updated = utcnow()
                db.session.commit()
                report["repaired"] = True

        return report

    return run_with_retry(_op)


def reconcile_wallets(repair: bool = False) -> list[dict]:
    """Reconcile every user with a wallet or a transaction; returns drifted reports."""
    wallet_users = {row.user_id for row in db.session.query(CoinWallet.user_id).all()}
    txn_users = {row.user_id for row in db.session.query(CoinTransaction.user_id).distinct().all()}
    drifted = []
    for user_id in sorted(wallet_users | txn_users):
        report = reconcile_wallet(user_id, repair=repair)
        if not report["in_sync"]:
            drifted.append(report)
    return drifted


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _get_wallet_for_update(user_id: int) -> CoinWallet | None:
    return lock_for_update(db.session.query(CoinWallet).filter_by(user_id=user_id)).first()


def _get_or_create_wallet(user_id: int) -> CoinWallet:
    """
    Locked wallet for user_id, created on first use.

    Two first transactions racing to create the wallet hit
    uq_coin_wallets_user; the loser's IntegrityError is retried and it then
    finds the winner's row.
    """
    wallet = _get_wallet_for_update(user_id)
    if wallet is None:
        wallet = CoinWallet(
            user_id=user_id,
            total_coins_earned=0,
            total_coins_used=0,
            available_coins=0,
        )
        db.session.add(wallet)
        db.session.flush()
    return wallet


def _append(wallet: CoinWallet, txn: CoinTransaction) -> CoinTransaction:
    db.session.add(txn)
    _fold_into_wallet(wallet, txn)
    db.session.commit()
    logger.info(
        "Coin %s of %s for user %s; available now %s",
        txn.transaction_type, txn.coins_amount, txn.user_id, wallet.available_coins,
    )
    return txn


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _parse_optional_datetime(value, field: str) -> datetime | None:
    """UTC-naive datetime from a datetime (aware or naive) or an ISO-8601 string."""
    if value is None or isinstance(value, datetime):
        return _naive_utc(value)
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError, AttributeError):
        raise LedgerValidationError(f"{field} must be an ISO-8601 datetime")
