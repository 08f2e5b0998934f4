"""Market index schema - coin_price, market_index, base_price

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # One closed 5m candle per (symbol, ts_ms)
    op.create_table(
        "coin_price",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("symbol", sa.String(), nullable=False),
        sa.Column("ts_ms", sa.BigInteger(), nullable=False),
        sa.Column("open", sa.Float(), nullable=False),
        sa.Column("high", sa.Float(), nullable=False),
        sa.Column("low", sa.Float(), nullable=False),
        sa.Column("close", sa.Float(), nullable=False),
        sa.Column("volume", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_coin_price_symbol_ts", "coin_price", ["symbol", "ts_ms"], unique=True)
    op.create_index("idx_coin_price_ts", "coin_price", ["ts_ms"])

    # One index point per 5m slot
    op.create_table(
        "market_index",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("ts_ms", sa.BigInteger(), nullable=False),
        sa.Column("index_value", sa.Float(), nullable=False),
        sa.Column("total_volume", sa.Float(), nullable=False, server_default="0"),
        sa.Column("coin_count", sa.Integer(), nullable=False),
        sa.Column("up_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("down_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("adr", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_market_index_ts", "market_index", ["ts_ms"], unique=True)

    # Reference price per symbol, written once
    op.create_table(
        "base_price",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("symbol", sa.String(), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("symbol", name="uq_base_price_symbol"),
    )


def downgrade() -> None:
    op.drop_table("base_price")
    op.drop_index("idx_market_index_ts", table_name="market_index")
    op.drop_table("market_index")
    op.drop_index("idx_coin_price_ts", table_name="coin_price")
    op.drop_index("idx_coin_price_symbol_ts", table_name="coin_price")
    op.drop_table("coin_price")
