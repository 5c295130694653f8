"""Initial schema for tracked addresses and their transactions.

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
    op.create_table(
        "addresses",
        sa.Column("public_key", sa.String(128), nullable=False),
        sa.Column("balance", sa.Numeric(24, 8), nullable=False),
        sa.Column("last_txn_hash", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("public_key"),
    )

    # Composite key: one on-chain transaction may touch several tracked addresses.
    op.create_table(
        "transactions",
        sa.Column("txn_hash", sa.String(64), nullable=False),
        sa.Column("public_key", sa.String(128), nullable=False),
        sa.Column("amount", sa.Numeric(24, 8), nullable=False),
        sa.Column("fee", sa.Numeric(24, 8), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("txn_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("txn_hash", "public_key"),
    )
    op.create_index(
        "idx_transactions_public_key_ts",
        "transactions",
        ["public_key", "txn_timestamp"],
    )


def downgrade() -> None:
    op.drop_index("idx_transactions_public_key_ts", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("addresses")
