"""ledger baseline: users, positions, transactions, realized_pnl_history, import_staging

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "5c1e7a9d2b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _amount(name: str, nullable: bool = False, default: str | None = None) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(18, 3),
        nullable=nullable,
        server_default=sa.text(default) if default is not None else None,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("supabase_user_id", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("accounting_mode", sa.String(length=16), nullable=False, server_default="aggregated"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_supabase_user_id", "users", ["supabase_user_id"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "positions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("strategy", sa.String(length=64), nullable=False),
        _amount("total_shares", default="0"),
        _amount("average_cost"),
        _amount("current_market_price", nullable=True),
        _amount("realized_pnl", default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("opened_date", sa.Date(), nullable=False),
        sa.Column("closed_date", sa.Date(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_positions_id", "positions", ["id"])
    op.create_index("ix_positions_user_id", "positions", ["user_id"])
    op.create_index(
        "ux_positions_active_owner_symbol_strategy",
        "positions",
        ["user_id", "symbol", "strategy"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("side", sa.String(length=8), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        _amount("quantity"),
        _amount("price"),
        _amount("trade_value"),
        _amount("fees", default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("strategy", sa.String(length=64), nullable=True),
        sa.Column("position_id", sa.Integer(), sa.ForeignKey("positions.id"), nullable=True),
        sa.Column("broker_fill_id", sa.String(length=64), nullable=True),
        sa.Column("broker_order_id", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "broker_fill_id", name="uq_transactions_user_fill"),
    )
    op.create_index("ix_transactions_id", "transactions", ["id"])
    op.create_index("ix_transactions_user_id", "transactions", ["user_id"])
    op.create_index("ix_transactions_symbol", "transactions", ["symbol"])
    op.create_index("ix_transactions_position_id", "transactions", ["position_id"])

    op.create_table(
        "realized_pnl_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position_id", sa.Integer(), sa.ForeignKey("positions.id"), nullable=False),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("sale_date", sa.Date(), nullable=False),
        _amount("quantity"),
        _amount("average_cost"),
        _amount("total_cost"),
        _amount("sale_price"),
        _amount("total_proceeds"),
        _amount("realized_pnl"),
        sa.Column("entry_date", sa.Date(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        _amount("fees", default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_realized_pnl_history_id", "realized_pnl_history", ["id"])
    op.create_index("ix_realized_pnl_history_user_id", "realized_pnl_history", ["user_id"])
    op.create_index("ix_realized_pnl_history_position_id", "realized_pnl_history", ["position_id"])
    op.create_index("ix_realized_pnl_history_transaction_id", "realized_pnl_history", ["transaction_id"])

    op.create_table(
        "import_staging",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("import_batch_id", sa.String(length=64), nullable=False),
        sa.Column("import_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="imported"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("broker_fill_id", sa.String(length=64), nullable=True),
        sa.Column("broker_order_id", sa.String(length=64), nullable=True),
        sa.Column("symbol", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("side", sa.String(length=8), nullable=False),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        _amount("quantity"),
        _amount("price"),
        _amount("trade_value"),
        _amount("fees", default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("strategy", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_import_staging_id", "import_staging", ["id"])
    op.create_index("ix_import_staging_user_id", "import_staging", ["user_id"])
    op.create_index("ix_import_staging_import_batch_id", "import_staging", ["import_batch_id"])
    op.create_index(
        "ix_import_staging_dedup",
        "import_staging",
        ["user_id", "symbol", "transaction_date", "side", "quantity", "price"],
    )


def downgrade() -> None:
    op.drop_index("ix_import_staging_dedup", table_name="import_staging")
    op.drop_index("ix_import_staging_import_batch_id", table_name="import_staging")
    op.drop_index("ix_import_staging_user_id", table_name="import_staging")
    op.drop_index("ix_import_staging_id", table_name="import_staging")
    op.drop_table("import_staging")

    op.drop_index("ix_realized_pnl_history_transaction_id", table_name="realized_pnl_history")
    op.drop_index("ix_realized_pnl_history_position_id", table_name="realized_pnl_history")
    op.drop_index("ix_realized_pnl_history_user_id", table_name="realized_pnl_history")
    op.drop_index("ix_realized_pnl_history_id", table_name="realized_pnl_history")
    op.drop_table("realized_pnl_history")

    op.drop_index("ix_transactions_position_id", table_name="transactions")
    op.drop_index("ix_transactions_symbol", table_name="transactions")
    op.drop_index("ix_transactions_user_id", table_name="transactions")
    op.drop_index("ix_transactions_id", table_name="transactions")
    op.drop_table("transactions")

    op.drop_index("ux_positions_active_owner_symbol_strategy", table_name="positions")
    op.drop_index("ix_positions_user_id", table_name="positions")
    op.drop_index("ix_positions_id", table_name="positions")
    op.drop_table("positions")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_supabase_user_id", table_name="users")
    op.drop_index("ix_users_id", table_name="users")
    op.drop_table("users")
