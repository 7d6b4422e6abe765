"""Ledger core: payables, payments, payment events, coin wallets and settings, document sequences

Revision ID: 20261018_ledger_core
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_ledger_core"
down_revision = None
branch_labels = None
depends_on = None


def _counterparty_table(name: str):
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("outstanding_balance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table(name, schema=None) as batch_op:
        batch_op.create_index(f"ix_{name}_active_name", ["is_active", "name"], unique=False)


def upgrade():
    _counterparty_table("customers")
    _counterparty_table("suppliers")

    op.create_table(
        "payables",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("reference_number", sa.String(64), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("amount_paid_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("last_payment_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("kind", "reference_number", name="uq_payables_kind_reference"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("payables", schema=None) as batch_op:
        batch_op.create_index("ix_payables_kind_status", ["kind", "payment_status"], unique=False)
        batch_op.create_index("ix_payables_payment_status", ["payment_status"], unique=False)
        batch_op.create_index("ix_payables_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_payables_supplier_id", ["supplier_id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_number", sa.String(32), nullable=False),
        sa.Column("direction", sa.String(16), nullable=False),
        sa.Column("payable_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("supplier_id", sa.Integer(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("balance_applied_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("transaction_reference", sa.String(128), nullable=True),
        sa.Column("bank_name", sa.String(128), nullable=True),
        sa.Column("cheque_number", sa.String(64), nullable=True),
        sa.Column("cheque_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["payable_id"], ["payables.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_number", name="uq_payments_payment_number"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_payable_date", ["payable_id", "payment_date"], unique=False)
        batch_op.create_index("ix_payments_direction_method", ["direction", "method"], unique=False)
        batch_op.create_index("ix_payments_payable_id", ["payable_id"], unique=False)
        batch_op.create_index("ix_payments_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_payments_supplier_id", ["supplier_id"], unique=False)

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(16), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("payment_number", sa.String(32), nullable=False),
        sa.Column("payable_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("previous_status", sa.String(16), nullable=False),
        sa.Column("new_status", sa.String(16), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["payable_id"], ["payables.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("payment_events", schema=None) as batch_op:
        batch_op.create_index("ix_payment_events_payable_occurred", ["payable_id", "occurred_at"], unique=False)
        batch_op.create_index("ix_payment_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_payment_events_payment_id", ["payment_id"], unique=False)

    op.create_table(
        "coin_wallets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("total_coins_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_coins_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("available_coins", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_coin_wallets_user"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "coin_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("coins_amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("coin_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_coin_txns_user_id_desc", ["user_id", "id"], unique=False)
        batch_op.create_index("ix_coin_transactions_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_coin_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_coin_txns_reference", ["reference_type", "reference_id"], unique=False)

    op.create_table(
        "loyalty_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("coins_per_unit", sa.Numeric(10, 4), nullable=False, server_default="0.10"),
        sa.Column("global_multiplier", sa.Numeric(10, 4), nullable=False, server_default="1"),
        sa.Column("min_coins_to_redeem", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("max_coins_per_order", sa.Integer(), nullable=True),
        sa.Column("min_order_amount_cents", sa.Integer(), nullable=True),
        sa.Column("is_festive_active", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("festive_multiplier", sa.Numeric(10, 4), nullable=False, server_default="1"),
        sa.Column("festive_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("festive_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("document_sequences")
    op.drop_table("loyalty_settings")

    with op.batch_alter_table("coin_transactions", schema=None) as batch_op:
        batch_op.drop_index("ix_coin_txns_reference")
        batch_op.drop_index("ix_coin_transactions_transaction_type")
        batch_op.drop_index("ix_coin_transactions_user_id")
        batch_op.drop_index("ix_coin_txns_user_id_desc")
    op.drop_table("coin_transactions")

    op.drop_table("coin_wallets")

    with op.batch_alter_table("payment_events", schema=None) as batch_op:
        batch_op.drop_index("ix_payment_events_payment_id")
        batch_op.drop_index("ix_payment_events_event_type")
        batch_op.drop_index("ix_payment_events_payable_occurred")
    op.drop_table("payment_events")

    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.drop_index("ix_payments_supplier_id")
        batch_op.drop_index("ix_payments_customer_id")
        batch_op.drop_index("ix_payments_payable_id")
        batch_op.drop_index("ix_payments_direction_method")
        batch_op.drop_index("ix_payments_payable_date")
    op.drop_table("payments")

    with op.batch_alter_table("payables", schema=None) as batch_op:
        batch_op.drop_index("ix_payables_supplier_id")
        batch_op.drop_index("ix_payables_customer_id")
        batch_op.drop_index("ix_payables_payment_status")
        batch_op.drop_index("ix_payables_kind_status")
    op.drop_table("payables")

    for name in ("suppliers", "customers"):
        with op.batch_alter_table(name, schema=None) as batch_op:
            batch_op.drop_index(f"ix_{name}_active_name")
        op.drop_table(name)
