"""Initial schema for tracked wallets and consensus signals.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Tracked wallets table
    op.create_table(
        "wallets",
        sa.Column("address", sa.String(66), nullable=False),
        sa.Column("added_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_pnl", sa.Numeric(30, 6), nullable=False),
        sa.Column("total_trades", sa.Integer(), nullable=False),
        sa.Column("winning_trades", sa.Integer(), nullable=False),
        sa.Column("cooldowns", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )

    # Consensus signals table
    op.create_table(
        "signals",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("instrument", sa.String(32), nullable=False),
        sa.Column("direction", sa.String(5), nullable=False),
        sa.Column("status", sa.String(4), nullable=False),
        sa.Column("entry_price", sa.Numeric(30, 4), nullable=False),
        sa.Column("current_price", sa.Numeric(30, 4), nullable=False),
        sa.Column("pnl", sa.Numeric(30, 2), nullable=False),
        sa.Column("roi", sa.Numeric(20, 2), nullable=False),
        sa.Column("leverage", sa.Numeric(10, 2), nullable=False),
        sa.Column("margin", sa.Numeric(30, 2), nullable=False),
        sa.Column("size", sa.Numeric(30, 4), nullable=False),
        sa.Column("stop_loss_level", sa.Numeric(30, 4), nullable=False),
        sa.Column("take_profit_levels", sa.JSON(), nullable=False),
        sa.Column("contributing_wallet_addresses", sa.JSON(), nullable=False),
        sa.Column("cluster_fills", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_signals_status", "signals", ["status"])
    op.create_index("idx_signals_created_at", "signals", ["created_at"])
    op.create_index("idx_signals_instrument_direction", "signals", ["instrument", "direction"])


def downgrade() -> None:
    op.drop_index("idx_signals_instrument_direction", table_name="signals")
    op.drop_index("idx_signals_created_at", table_name="signals")
    op.drop_index("idx_signals_status", table_name="signals")
    op.drop_table("signals")
    op.drop_table("wallets")
