"""Create users and blocks tables

Revision ID: 4c1e9a7b2d30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "4c1e9a7b2d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("graffiti", sa.String(100), nullable=True),
        sa.Column("discord", sa.String(100), nullable=True),
        sa.Column("telegram", sa.String(100), nullable=True),
        sa.Column("country_code", sa.String(3), nullable=False),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("graffiti", name="uq_users_graffiti"),
        sa.UniqueConstraint("discord", name="uq_users_discord"),
        sa.UniqueConstraint("telegram", name="uq_users_telegram"),
        sa.CheckConstraint(
            "total_points >= 0", name="ck_users_total_points_non_negative"
        ),
    )
    op.create_index("ix_users_total_points_desc", "users", ["total_points"])

    op.create_table(
        "blocks",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("hash", sa.String(64), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("previous_block_hash", sa.String(64), nullable=True),
        sa.Column("main", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("graffiti", sa.String(100), nullable=False),
        sa.Column("network_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("transactions_count", sa.Integer(), server_default="0"),
        sa.Column("difficulty", sa.Integer(), nullable=True),
        sa.Column("size", sa.Integer(), nullable=True),
        sa.UniqueConstraint(
            "hash", "network_version",
            name="uq_blocks_on_hash_and_network_version",
        ),
    )
    op.create_index(
        "ix_blocks_graffiti_main_network",
        "blocks",
        ["graffiti", "main", "network_version"],
    )
    op.create_index("ix_blocks_sequence", "blocks", ["sequence"])


def downgrade() -> None:
    op.drop_index("ix_blocks_sequence", table_name="blocks")
    op.drop_index("ix_blocks_graffiti_main_network", table_name="blocks")
    op.drop_table("blocks")
    op.drop_index("ix_users_total_points_desc", table_name="users")
    op.drop_table("users")
