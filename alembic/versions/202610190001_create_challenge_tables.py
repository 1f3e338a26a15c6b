"""create daily challenge and attempt tables"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "202610190001_create_challenge_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "daily_challenges",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("challenge_date", sa.Date(), nullable=False),
        sa.Column("tier", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("start_actor_id", sa.BigInteger(), nullable=False),
        sa.Column("start_actor_name", sa.String(length=255), nullable=False),
        sa.Column("start_actor_profile_path", sa.String(length=512), nullable=True),
        sa.Column("end_actor_id", sa.BigInteger(), nullable=False),
        sa.Column("end_actor_name", sa.String(length=255), nullable=False),
        sa.Column("end_actor_profile_path", sa.String(length=512), nullable=True),
        sa.Column("hints_used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("start_hint_payload", sa.Text(), nullable=True),
        sa.Column("end_hint_payload", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=True,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("challenge_date", "tier", name="uq_daily_challenges_date_tier"),
    )
    op.create_index(
        "ix_daily_challenges_challenge_date", "daily_challenges", ["challenge_date"], unique=False
    )
    op.create_index(
        "ix_daily_challenges_status_tier", "daily_challenges", ["status", "tier"], unique=False
    )

    op.create_table(
        "game_attempts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("challenge_id", sa.String(length=36), nullable=False),
        sa.Column("moves", sa.Integer(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("connections", sa.JSON(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_game_attempts_challenge_id", "game_attempts", ["challenge_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_game_attempts_challenge_id", table_name="game_attempts")
    op.drop_table("game_attempts")
    op.drop_index("ix_daily_challenges_status_tier", table_name="daily_challenges")
    op.drop_index("ix_daily_challenges_challenge_date", table_name="daily_challenges")
    op.drop_table("daily_challenges")
