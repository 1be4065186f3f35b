from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, Text, JSON, Uuid, UniqueConstraint, CheckConstraint
from sqlalchemy.dialects.postgresql import JSONB
from betpool.db import Base, UTCDateTime, utcnow

class Challenge(Base):
    """
    A wager pool on whether the creator completes a task by the deadline.
    Status only moves forward: active -> voting -> completed (or active -> completed on expiry).
    """
    __tablename__ = "challenges"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    creator_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text())
    minimum_bet: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    group_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", index=True)  # active|voting|completed
    proof_image_url: Mapped[str | None] = mapped_column(Text(), nullable=True)
    proof_description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    proof_submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    voting_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Running sums, only ever changed with SQL-side increments
    total_yes_bets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_no_bets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_completed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    completion_votes: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=lambda: {"yes": 0, "no": 0}
    )
    settlement_error: Mapped[str | None] = mapped_column(Text(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("minimum_bet > 0", name="ck_challenge_minimum_bet_positive"),
        CheckConstraint("total_yes_bets >= 0 AND total_no_bets >= 0", name="ck_challenge_totals_non_negative"),
        CheckConstraint("(is_global AND group_id IS NULL) OR (NOT is_global AND group_id IS NOT NULL)", name="ck_challenge_scope"),
    )

    @property
    def total_pool(self) -> int:
        return int(self.total_yes_bets or 0) + int(self.total_no_bets or 0)

class Bet(Base):
    __tablename__ = "bets"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    challenge_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("challenges.id", ondelete="CASCADE"), index=True, nullable=False)
    bet_type: Mapped[str] = mapped_column(String(8), nullable=False)  # yes|no
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    payout: Mapped[int | None] = mapped_column(Integer, nullable=True)  # set once at settlement
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_bet_once_per_user"),
        CheckConstraint("amount > 0", name="ck_bet_amount_positive"),
        CheckConstraint("bet_type IN ('yes', 'no')", name="ck_bet_type"),
    )
