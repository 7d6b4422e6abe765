"""
Concurrency tests against a file-backed SQLite database.

Each worker thread runs in its own app context (and so its own session),
mirroring two clerks submitting at the same moment.
"""
import os
import tempfile
import threading
import unittest

from storeledger import create_app
from storeledger.extensions import db
from storeledger.models import CoinTransaction, Payment
from storeledger.services import loyalty_service, payable_service, payment_service
from storeledger.time_utils import business_today
from storeledger.validation import InsufficientBalanceError, OverpaymentRejectedError


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LEDGER_RETRY_ATTEMPTS": 5,
            "LEDGER_RETRY_BACKOFF": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            payable = payable_service.create_payable("sales_order", "SO-RACE", 1000)
            self.payable_id = payable.id
            self.today = business_today()

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_concurrently(self, target, args_list):
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(args_list))

        def worker(*args):
            with self.app.app_context():
                try:
                    barrier.wait()
                    outcome = target(*args)
                    with lock:
                        results.append(("ok", outcome))
                except Exception as exc:
                    with lock:
                        results.append(("error", exc))
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_concurrent_payments_cannot_overpay(self):
        def pay(amount):
            payment = payment_service.record_payment(
                payable_id=self.payable_id,
                amount_cents=amount,
                direction="received",
                method="cash",
                payment_date=self.today,
            )
            return payment.id

        results = self._run_concurrently(pay, [(700,), (700,)])

        successes = [r for r in results if r[0] == "ok"]
        failures = [r[1] for r in results if r[0] == "error"]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], OverpaymentRejectedError)
        self.assertEqual(failures[0].remaining_cents, 300)

        with self.app.app_context():
            payable = payable_service.get_payable(self.payable_id)
            self.assertEqual(payable.payment_status, "partial")
            self.assertEqual(payable.amount_paid_cents, 700)
            self.assertEqual(db.session.query(Payment).count(), 1)

    def _seed_payment(self, amount):
        with self.app.app_context():
            return payment_service.record_payment(
                payable_id=self.payable_id,
                amount_cents=amount,
                direction="received",
                method="cash",
                payment_date=self.today,
            ).id

    def _record(self, amount):
        return payment_service.record_payment(
            payable_id=self.payable_id,
            amount_cents=amount,
            direction="received",
            method="upi",
            payment_date=self.today,
        ).id

    def _assert_payable_consistent(self):
        with self.app.app_context():
            payable = payable_service.get_payable(self.payable_id)
            paid = payment_service.get_paid_sum(self.payable_id)
            self.assertLessEqual(paid, payable.total_amount_cents)
            self.assertEqual(payable.amount_paid_cents, paid)
            self.assertEqual(payable.payment_status, payment_service.derive_payment_status(paid, 1000))
            return payable.payment_status, paid

    def test_edit_racing_a_new_payment_cannot_overpay(self):
        payment_id = self._seed_payment(600)

        # Each fits alone (900 excluding itself, 600 + 300), together they would reach 1200
        def run(action):
            if action == "edit":
                return payment_service.edit_payment(payment_id, amount_cents=900).id
            return self._record(300)

        results = self._run_concurrently(run, [("edit",), ("record",)])

        failures = [r[1] for r in results if r[0] == "error"]
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], OverpaymentRejectedError)

        # Whichever lands first, the other is rejected and 900 is paid
        _, paid = self._assert_payable_consistent()
        self.assertEqual(paid, 900)

    def test_delete_racing_a_new_payment(self):
        payment_id = self._seed_payment(600)

        def run(action):
            if action == "delete":
                return payment_service.delete_payment(payment_id)
            return self._record(400)

        results = self._run_concurrently(run, [("delete",), ("record",)])

        self.assertEqual([r[0] for r in results], ["ok", "ok"])
        status, paid = self._assert_payable_consistent()
        self.assertEqual(paid, 400)
        self.assertEqual(status, "partial")
        with self.app.app_context():
            self.assertEqual(payment_service.reconcile_payables(), [])

    def test_concurrent_redemptions_never_go_negative(self):
        with self.app.app_context():
            loyalty_service.manual_adjust(7, 50, "add", "seed")

        results = self._run_concurrently(loyalty_service.redeem, [(7, 30), (7, 30)])

        successes = [r for r in results if r[0] == "ok"]
        failures = [r[1] for r in results if r[0] == "error"]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientBalanceError)
        self.assertEqual(failures[0].shortfall, 10)

        with self.app.app_context():
            wallet = loyalty_service.get_wallet(7)
            self.assertEqual(wallet.available_coins, 20)
            self.assertEqual(wallet.total_coins_used, 30)
            self.assertEqual(db.session.query(CoinTransaction).filter_by(user_id=7).count(), 2)

    def test_first_transactions_race_to_create_wallet(self):
        results = self._run_concurrently(
            loyalty_service.manual_adjust,
            [(9, 10, "add", "race a"), (9, 15, "add", "race b")],
        )

        self.assertEqual([r[0] for r in results], ["ok", "ok"])
        with self.app.app_context():
            self.assertEqual(loyalty_service.get_wallet(9).available_coins, 25)
            self.assertEqual(loyalty_service.reconcile_wallet(9)["in_sync"], True)


if __name__ == "__main__":
    unittest.main()
