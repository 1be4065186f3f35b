from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "challenges",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("creator_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("minimum_bet", sa.Integer(), nullable=False),
        sa.Column("deadline", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("is_global", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("group_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("proof_image_url", sa.Text(), nullable=True),
        sa.Column("proof_description", sa.Text(), nullable=True),
        sa.Column("proof_submitted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("voting_ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("total_yes_bets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_no_bets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), nullable=True),
        sa.Column("completion_votes", postgresql.JSONB(), nullable=False, server_default=sa.text("'{\"yes\": 0, \"no\": 0}'::jsonb")),
        sa.Column("settlement_error", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("minimum_bet > 0", name="ck_challenge_minimum_bet_positive"),
        sa.CheckConstraint("total_yes_bets >= 0 AND total_no_bets >= 0", name="ck_challenge_totals_non_negative"),
        sa.CheckConstraint("(is_global AND group_id IS NULL) OR (NOT is_global AND group_id IS NOT NULL)", name="ck_challenge_scope"),
    )
    op.create_index("ix_challenges_creator_id", "challenges", ["creator_id"])
    op.create_index("ix_challenges_group_id", "challenges", ["group_id"])
    op.create_index("ix_challenges_status", "challenges", ["status"])

    op.create_table(
        "bets",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("bet_type", sa.String(length=8), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("payout", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "challenge_id", name="uq_bet_once_per_user"),
        sa.CheckConstraint("amount > 0", name="ck_bet_amount_positive"),
        sa.CheckConstraint("bet_type IN ('yes', 'no')", name="ck_bet_type"),
    )
    op.create_index("ix_bets_user_id", "bets", ["user_id"])
    op.create_index("ix_bets_challenge_id", "bets", ["challenge_id"])

    op.create_table(
        "completion_votes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("challenge_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("vote", sa.String(length=8), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("challenge_id", "user_id", name="uq_vote_once_per_voter"),
    )
    op.create_index("ix_completion_votes_challenge_id", "completion_votes", ["challenge_id"])
    op.create_index("ix_completion_votes_user_id", "completion_votes", ["user_id"])

    op.create_table(
        "credit_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("related_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("type IN ('reward', 'bet', 'payout', 'penalty', 'purchase')", name="ck_ledger_type"),
        sa.CheckConstraint(
            "(type IN ('bet', 'penalty') AND amount < 0) OR (type IN ('reward', 'payout', 'purchase') AND amount > 0)",
            name="ck_ledger_amount_sign",
        ),
    )
    op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"])
    op.create_index("ix_credit_transactions_related_type", "credit_transactions", ["related_id", "type"])

def downgrade() -> None:
    op.drop_index("ix_credit_transactions_related_type", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_user_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_index("ix_completion_votes_user_id", table_name="completion_votes")
    op.drop_index("ix_completion_votes_challenge_id", table_name="completion_votes")
    op.drop_table("completion_votes")
    op.drop_index("ix_bets_challenge_id", table_name="bets")
    op.drop_index("ix_bets_user_id", table_name="bets")
    op.drop_table("bets")
    op.drop_index("ix_challenges_status", table_name="challenges")
    op.drop_index("ix_challenges_group_id", table_name="challenges")
    op.drop_index("ix_challenges_creator_id", table_name="challenges")
    op.drop_table("challenges")
