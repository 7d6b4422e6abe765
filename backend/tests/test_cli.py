"""
CLI command tests (flask ledger ...).
"""

from storeledger.extensions import db
from storeledger.services import loyalty_service, payable_service, payment_service


def test_reconcile_payables_dry_run_then_fix(app, db_session, today):
    payable = payable_service.create_payable("sales_order", "SO-CLI", 1000)
    payment_service.record_payment(
        payable_id=payable.id, amount_cents=400, direction="received",
        method="cash", payment_date=today,
    )
    payable.payment_status = "pending"
    db.session.commit()

    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "reconcile-payables"])
    assert result.exit_code == 0
    assert "1 payable(s) drifted" in result.output
    assert payable.payment_status == "pending"

    result = runner.invoke(args=["ledger", "reconcile-payables", "--fix"])
    assert result.exit_code == 0
    assert "Repaired 1 payable(s)" in result.output
    db.session.expire_all()
    assert payable.payment_status == "partial"


def test_reconcile_wallets_and_balances_clean(app, db_session, customer):
    loyalty_service.manual_adjust(11, 20, "add", "bonus")
    payable_service.create_payable("sales_order", "SO-CLI-2", 500, counterparty_id=customer.id)

    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "reconcile-wallets"])
    assert "PASS All wallets match" in result.output

    result = runner.invoke(args=["ledger", "reconcile-balances"])
    assert "PASS All outstanding balances match" in result.output


def test_show_loyalty_settings(app, db_session):
    result = app.test_cli_runner().invoke(args=["ledger", "show-loyalty-settings"])
    assert result.exit_code == 0
    assert "coins_per_unit" in result.output
    assert "min_coins_to_redeem" in result.output
    assert "is_festive_active" in result.output


def test_show_loyalty_stats(app, db_session):
    loyalty_service.manual_adjust(11, 20, "add", "bonus")
    loyalty_service.credit_bonus(12, 30, "offer", reference_id="WELCOME")

    result = app.test_cli_runner().invoke(args=["ledger", "show-loyalty-stats", "--active-days", "7"])
    assert result.exit_code == 0
    rows = dict(line.split(None, 1) for line in result.output.splitlines() if line.startswith("  "))
    assert rows["total_users"] == "2"
    assert rows["total_coins_issued"] == "50"
