"""
Loyalty coin ledger tests.

Covers the fold rule, earn calculation, redemption, manual adjustments,
settings validation, paged history and wallet reconciliation.
"""

import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storeledger.extensions import db
from storeledger.models import CoinTransaction, CoinWallet
from storeledger.services import loyalty_service
from storeledger.services.loyalty_service import LoyaltyConfig, calculate_earn_coins
from storeledger.validation import (
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerValidationError,
    LoyaltyDisabledError,
    NotFoundError,
)


USER_ID = 42


def _txn_count(user_id=USER_ID):
    return db.session.query(CoinTransaction).filter_by(user_id=user_id).count()


# =============================================================================
# EARN CALCULATION
# =============================================================================

class TestCalculateEarnCoins:
    def test_default_rate(self):
        # 2500.00 at 0.10 coins per unit
        assert calculate_earn_coins(LoyaltyConfig(), 250000) == 250

    def test_floors_fractional_coins(self):
        assert calculate_earn_coins(LoyaltyConfig(), 1999) == 1

    def test_multipliers_and_cap(self):
        config = LoyaltyConfig(global_multiplier=Decimal("2"), max_coins_per_order=300)
        assert calculate_earn_coins(config, 100000) == 200
        assert calculate_earn_coins(config, 500000) == 300

    def test_disabled_or_below_minimum_earns_nothing(self):
        assert calculate_earn_coins(LoyaltyConfig(is_enabled=False), 100000) == 0
        config = LoyaltyConfig(min_order_amount_cents=50000)
        assert calculate_earn_coins(config, 49999) == 0
        assert calculate_earn_coins(config, 50000) == 50

    def test_festive_window(self):
        config = LoyaltyConfig(
            is_festive_active=True,
            festive_multiplier=Decimal("1.5"),
            festive_start=datetime(2026, 10, 20),
            festive_end=datetime(2026, 11, 5),
        )
        assert calculate_earn_coins(config, 100000, at=datetime(2026, 10, 25)) == 150
        assert calculate_earn_coins(config, 100000, at=datetime(2026, 10, 19)) == 100
        assert calculate_earn_coins(config, 100000, at=datetime(2026, 11, 6)) == 100

    def test_open_ended_festive_window(self):
        config = LoyaltyConfig(
            is_festive_active=True, festive_multiplier=Decimal("3"), festive_start=datetime(2026, 1, 1)
        )
        assert calculate_earn_coins(config, 10000, at=datetime(2030, 1, 1)) == 30
        assert calculate_earn_coins(config, 10000, at=datetime(2025, 12, 31)) == 10

    def test_festive_multiplier_needs_switch(self):
        staged = LoyaltyConfig(festive_multiplier=Decimal("2"))
        assert calculate_earn_coins(staged, 100000) == 100
        assert calculate_earn_coins(replace(staged, is_festive_active=True), 100000) == 200

    def test_aware_timestamp_compared_in_utc(self):
        config = LoyaltyConfig(
            is_festive_active=True,
            festive_multiplier=Decimal("2"),
            festive_start=datetime(2026, 10, 20),
        )
        # 20 Oct 02:00 in UTC+05:30 is still 19 Oct in UTC
        ist = timezone(timedelta(hours=5, minutes=30))
        assert calculate_earn_coins(config, 100000, at=datetime(2026, 10, 20, 2, 0, tzinfo=ist)) == 100
        assert calculate_earn_coins(config, 100000, at=datetime(2026, 10, 20, 6, 0, tzinfo=ist)) == 200


# =============================================================================
# FOLD RULE
# =============================================================================

def test_fold_transactions_sums_by_type():
    txns = [
        CoinTransaction(transaction_type="earned", coins_amount=100),
        CoinTransaction(transaction_type="manual_add", coins_amount=50),
        CoinTransaction(transaction_type="redeemed", coins_amount=-30),
        CoinTransaction(transaction_type="manual_remove", coins_amount=-20),
    ]
    totals = loyalty_service.fold_transactions(txns)
    assert (totals.earned, totals.used, totals.available) == (150, 50, 100)


def test_fold_rejects_unknown_type():
    with pytest.raises(ValueError):
        loyalty_service.fold_transactions([CoinTransaction(transaction_type="bogus", coins_amount=1)])


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

def test_adjust_redeem_and_insufficient_balance(db_session):
    loyalty_service.manual_adjust(USER_ID, 50, "add", "bonus")
    assert loyalty_service.get_wallet(USER_ID).available_coins == 50

    loyalty_service.redeem(USER_ID, 30)
    assert loyalty_service.get_wallet(USER_ID).available_coins == 20

    with pytest.raises(InsufficientBalanceError) as exc_info:
        loyalty_service.redeem(USER_ID, 30)
    assert exc_info.value.shortfall == 10
    assert exc_info.value.available == 20

    wallet = loyalty_service.get_wallet(USER_ID)
    assert (wallet.total_coins_earned, wallet.total_coins_used, wallet.available_coins) == (50, 30, 20)
    assert _txn_count() == 2


def test_fractional_manual_adjust_writes_nothing(db_session):
    with pytest.raises(InvalidAmountError):
        loyalty_service.manual_adjust(USER_ID, 2.5, "add", "bonus")

    assert _txn_count() == 0
    assert db.session.query(CoinWallet).count() == 0


@pytest.mark.parametrize("coins", [0, -10, "2.5", None])
def test_invalid_manual_adjust_amounts(db_session, coins):
    with pytest.raises(InvalidAmountError):
        loyalty_service.manual_adjust(USER_ID, coins, "add", "bonus")
    assert _txn_count() == 0


def test_manual_adjust_requires_reason_and_direction(db_session):
    with pytest.raises(LedgerValidationError):
        loyalty_service.manual_adjust(USER_ID, 10, "add", "   ")
    with pytest.raises(LedgerValidationError):
        loyalty_service.manual_adjust(USER_ID, 10, "sideways", "bonus")
    assert _txn_count() == 0


def test_manual_adjust_records_admin_notes(db_session):
    txn = loyalty_service.manual_adjust(USER_ID, 25, "add", "Late delivery", admin_user_id=1)
    assert txn.transaction_type == "manual_add"
    assert txn.coins_amount == 25
    assert txn.admin_notes == "Manual adjustment by admin: Late delivery"
    assert txn.actor_user_id == 1


def test_manual_remove_beyond_available(db_session):
    loyalty_service.manual_adjust(USER_ID, 10, "add", "bonus")
    with pytest.raises(InsufficientBalanceError) as exc_info:
        loyalty_service.manual_adjust(USER_ID, 15, "remove", "correction")
    assert exc_info.value.shortfall == 5

    txn = loyalty_service.manual_adjust(USER_ID, 10, "remove", "correction")
    assert txn.coins_amount == -10
    assert loyalty_service.get_wallet(USER_ID).available_coins == 0


def test_manual_remove_without_wallet(db_session):
    with pytest.raises(InsufficientBalanceError) as exc_info:
        loyalty_service.manual_adjust(USER_ID, 5, "remove", "correction")
    assert exc_info.value.available == 0


def test_record_earn_creates_wallet_lazily(db_session):
    assert loyalty_service.get_wallet_summary(USER_ID)["available_coins"] == 0
    with pytest.raises(NotFoundError):
        loyalty_service.get_wallet(USER_ID)

    txn = loyalty_service.record_earn(USER_ID, 250000, payable_id=None)

    assert txn.transaction_type == "earned"
    assert txn.coins_amount == 250
    wallet = loyalty_service.get_wallet(USER_ID)
    assert wallet.total_coins_earned == 250
    assert wallet.available_coins == 250
    assert wallet.last_updated is not None


def test_record_earn_noop_when_nothing_earned(db_session):
    assert loyalty_service.record_earn(USER_ID, 500) is None
    assert _txn_count() == 0
    assert db.session.query(CoinWallet).count() == 0


def test_redeem_below_minimum(db_session):
    loyalty_service.manual_adjust(USER_ID, 100, "add", "bonus")
    with pytest.raises(InvalidAmountError):
        loyalty_service.redeem(USER_ID, 5)


def test_redeem_without_wallet_is_insufficient(db_session):
    with pytest.raises(InsufficientBalanceError) as exc_info:
        loyalty_service.redeem(USER_ID, 20)
    assert exc_info.value.shortfall == 20


def test_disabled_program(db_session):
    loyalty_service.manual_adjust(USER_ID, 100, "add", "bonus")
    loyalty_service.update_loyalty_settings({"is_enabled": False})

    assert loyalty_service.record_earn(USER_ID, 100000) is None
    with pytest.raises(LoyaltyDisabledError):
        loyalty_service.redeem(USER_ID, 20)

    # Admin adjustments still work while the program is off
    loyalty_service.manual_adjust(USER_ID, 5, "remove", "cleanup")
    assert loyalty_service.get_wallet(USER_ID).available_coins == 95


# =============================================================================
# SETTINGS
# =============================================================================

def test_settings_default_when_unsaved(db_session):
    assert loyalty_service.get_loyalty_config() == LoyaltyConfig()


def test_update_settings_round_trip(db_session):
    config = loyalty_service.update_loyalty_settings({
        "coins_per_unit": "0.25",
        "max_coins_per_order": 500,
        "is_festive_active": True,
        "festive_multiplier": 2,
        "festive_start": "2026-10-20T00:00:00Z",
        "festive_end": "2026-11-05T23:59:59+05:30",
    }, user_id=1)

    assert config.coins_per_unit == Decimal("0.25")
    assert config.max_coins_per_order == 500
    assert config.is_festive_active is True
    assert config.festive_start == datetime(2026, 10, 20)
    assert config.festive_end == datetime(2026, 11, 5, 18, 29, 59)
    assert loyalty_service.get_loyalty_config() == config

    # Untouched fields keep their values
    config = loyalty_service.update_loyalty_settings({"min_coins_to_redeem": 20})
    assert config.min_coins_to_redeem == 20
    assert config.coins_per_unit == Decimal("0.25")


@pytest.mark.parametrize("updates", [
    {"surprise": 1},
    {"is_enabled": "yes"},
    {"is_festive_active": 1},
    {"coins_per_unit": "-0.1"},
    {"coins_per_unit": "abc"},
    {"min_coins_to_redeem": -1},
    {"max_coins_per_order": 0},
    {"festive_start": "not a date"},
    {"festive_start": "2026-12-01T00:00:00", "festive_end": "2026-11-01T00:00:00"},
])
def test_invalid_settings_rejected(db_session, updates):
    with pytest.raises(LedgerValidationError):
        loyalty_service.update_loyalty_settings(updates)
    assert loyalty_service.get_loyalty_config() == LoyaltyConfig()


# =============================================================================
# HISTORY
# =============================================================================

def test_transactions_newest_first_and_resumable(db_session):
    for i in range(1, 8):
        loyalty_service.manual_adjust(USER_ID, i, "add", f"grant {i}")
    loyalty_service.manual_adjust(USER_ID + 1, 99, "add", "someone else")

    first_page = loyalty_service.list_transactions(USER_ID, limit=3)
    assert [t.coins_amount for t in first_page] == [7, 6, 5]

    second_page = loyalty_service.list_transactions(USER_ID, limit=3, before=first_page[-1].id)
    assert [t.coins_amount for t in second_page] == [4, 3, 2]

    # Small pages force several fetches
    lazy = loyalty_service.iter_transactions(USER_ID, page_size=2)
    assert [t.coins_amount for t in lazy] == [7, 6, 5, 4, 3, 2, 1]

    assert list(loyalty_service.iter_transactions(USER_ID, limit=0)) == []


def test_iter_transactions_is_lazy(db_session):
    loyalty_service.manual_adjust(USER_ID, 1, "add", "first")
    lazy = loyalty_service.iter_transactions(USER_ID)

    # Nothing is fetched until iteration starts
    loyalty_service.manual_adjust(USER_ID, 2, "add", "second")
    assert [t.coins_amount for t in lazy] == [2, 1]


# =============================================================================
# RECONCILIATION
# =============================================================================

def test_reconcile_wallet_repairs_drift(db_session):
    loyalty_service.manual_adjust(USER_ID, 50, "add", "bonus")
    loyalty_service.redeem(USER_ID, 20)
    assert loyalty_service.reconcile_wallets() == []

    wallet = loyalty_service.get_wallet(USER_ID)
    wallet.available_coins = 999
    db.session.commit()

    drifted = loyalty_service.reconcile_wallets()
    assert len(drifted) == 1
    assert drifted[0]["derived"] == {"earned": 50, "used": 20, "available": 30}

    report = loyalty_service.reconcile_wallet(USER_ID, repair=True)
    assert report["repaired"] is True
    assert loyalty_service.get_wallet(USER_ID).available_coins == 30
    assert loyalty_service.reconcile_wallets() == []


def test_reconcile_recreates_missing_wallet(db_session):
    loyalty_service.manual_adjust(USER_ID, 40, "add", "bonus")
    db.session.query(CoinWallet).delete()
    db.session.commit()

    report = loyalty_service.reconcile_wallet(USER_ID)
    assert report["in_sync"] is False

    loyalty_service.reconcile_wallets(repair=True)
    assert loyalty_service.get_wallet(USER_ID).available_coins == 40


def test_staged_festive_multiplier_waits_for_switch(db_session):
    loyalty_service.update_loyalty_settings({"coins_per_unit": "1", "festive_multiplier": "2"})
    assert loyalty_service.record_earn(USER_ID, 100000).coins_amount == 1000

    loyalty_service.update_loyalty_settings({"is_festive_active": True})
    assert loyalty_service.record_earn(USER_ID, 100000).coins_amount == 2000


def test_aware_festive_bounds_are_stored_as_utc(db_session):
    loyalty_service.update_loyalty_settings({"festive_end": "2026-12-31T00:00:00Z"})

    ist = timezone(timedelta(hours=5, minutes=30))
    config = loyalty_service.update_loyalty_settings({
        "is_festive_active": True,
        "festive_multiplier": "2",
        "festive_start": datetime(2026, 1, 1, 5, 30, tzinfo=ist),
    })
    assert config.festive_start == datetime(2026, 1, 1)

    with pytest.raises(LedgerValidationError):
        loyalty_service.update_loyalty_settings({"festive_start": datetime(2027, 1, 1, tzinfo=timezone.utc)})

    txn = loyalty_service.record_earn(USER_ID, 100000, at=datetime(2026, 6, 1, tzinfo=timezone.utc))
    assert txn.coins_amount == 200


# =============================================================================
# BONUS CREDITS
# =============================================================================

def test_referral_and_offer_bonuses(db_session):
    referral = loyalty_service.credit_bonus(USER_ID, 50, "referral", reference_id=77)
    offer = loyalty_service.credit_bonus(USER_ID, 120, "offer", reference_id="DIWALI26", description="Diwali offer")

    assert referral.transaction_type == "earned"
    assert (referral.reference_type, referral.reference_id) == ("referral", "77")
    assert referral.description == "Earned 50 bonus coins from referral"
    assert (offer.reference_type, offer.reference_id) == ("offer", "DIWALI26")

    wallet = loyalty_service.get_wallet(USER_ID)
    assert (wallet.total_coins_earned, wallet.available_coins) == (170, 170)
    assert loyalty_service.reconcile_wallet(USER_ID)["in_sync"] is True


def test_bonus_ignores_multipliers_and_cap(db_session):
    loyalty_service.update_loyalty_settings({
        "global_multiplier": "3", "max_coins_per_order": 10, "is_festive_active": True, "festive_multiplier": "2",
    })
    assert loyalty_service.credit_bonus(USER_ID, 100, "offer").coins_amount == 100


def test_bonus_validation_and_disabled_program(db_session):
    with pytest.raises(LedgerValidationError):
        loyalty_service.credit_bonus(USER_ID, 50, "birthday")
    with pytest.raises(InvalidAmountError):
        loyalty_service.credit_bonus(USER_ID, 2.5, "offer")

    loyalty_service.update_loyalty_settings({"is_enabled": False})
    assert loyalty_service.credit_bonus(USER_ID, 50, "referral") is None
    assert _txn_count() == 0


def test_order_earn_and_redeem_reference_the_order(db_session):
    loyalty_service.update_loyalty_settings({"coins_per_unit": "1"})
    earned = loyalty_service.record_earn(USER_ID, 5000, payable_id=12)
    spent = loyalty_service.redeem(USER_ID, 20, payable_id=13)

    assert (earned.reference_type, earned.reference_id) == ("order", "12")
    assert spent.to_dict()["reference_id"] == "13"
    assert loyalty_service.manual_adjust(USER_ID, 1, "add", "x").reference_type is None


# =============================================================================
# STATS
# =============================================================================

def test_loyalty_stats(db_session):
    assert loyalty_service.get_loyalty_stats()["total_users"] == 0

    loyalty_service.manual_adjust(USER_ID, 100, "add", "bonus")
    loyalty_service.redeem(USER_ID, 40)
    loyalty_service.credit_bonus(USER_ID + 1, 50, "referral")

    stats = loyalty_service.get_loyalty_stats()
    assert stats["total_users"] == 2
    assert stats["total_coins_issued"] == 150
    assert stats["total_coins_redeemed"] == 40
    assert stats["total_coins_available"] == 110
    assert stats["active_users"] == 2
    assert stats["total_transactions"] == 3
    assert stats["transactions_by_type"] == {"manual_add": 1, "redeemed": 1, "earned": 1}


# =============================================================================
# MIXED SEQUENCES
# =============================================================================

@pytest.mark.parametrize("seed", [7, 2026, 31337])
def test_wallet_invariants_hold_over_random_sequences(db_session, seed):
    rng = random.Random(seed)
    users = [USER_ID, USER_ID + 1]
    expected = {user: 0 for user in users}

    for _ in range(120):
        user = rng.choice(users)
        op = rng.choice(["earn", "bonus", "redeem", "add", "remove"])
        coins = rng.randint(1, 80)

        if op == "earn":
            base = rng.randint(0, 200000)
            txn = loyalty_service.record_earn(user, base)
            expected[user] += txn.coins_amount if txn else 0
        elif op == "bonus":
            loyalty_service.credit_bonus(user, coins, rng.choice(["referral", "offer"]))
            expected[user] += coins
        elif op == "add":
            loyalty_service.manual_adjust(user, coins, "add", "grant")
            expected[user] += coins
        else:
            coins = max(coins, 10)
            try:
                if op == "redeem":
                    loyalty_service.redeem(user, coins)
                else:
                    loyalty_service.manual_adjust(user, coins, "remove", "correction")
            except InsufficientBalanceError as exc:
                assert coins > expected[user]
                assert exc.shortfall == coins - expected[user]
            else:
                assert coins <= expected[user]
                expected[user] -= coins

        summary = loyalty_service.get_wallet_summary(user)
        earned, used = summary["total_coins_earned"], summary["total_coins_used"]
        assert summary["available_coins"] == max(0, earned - used) >= 0
        assert summary["available_coins"] == expected[user]
        assert loyalty_service.reconcile_wallet(user)["in_sync"] is True
