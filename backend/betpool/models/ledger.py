from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Index, Uuid, CheckConstraint
from betpool.db import Base, UTCDateTime, utcnow

LEDGER_TYPES = ("reward", "bet", "payout", "penalty", "purchase")

class LedgerEntry(Base):
    """
    Append-only credit movements per user. Balance = Σ(amount) for the user.
    Sign convention:
      - BET, PENALTY               => negative (debit)
      - REWARD, PAYOUT, PURCHASE   => positive (credit)
    Refunds of voided pools are PAYOUT entries with a "Bet refund" description.
    related_id points at the challenge (or task) the movement belongs to.
    """
    __tablename__ = "credit_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    related_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_credit_transactions_related_type", "related_id", "type"),
        CheckConstraint("type IN ('reward', 'bet', 'payout', 'penalty', 'purchase')", name="ck_ledger_type"),
        CheckConstraint(
            "(type IN ('bet', 'penalty') AND amount < 0) OR (type IN ('reward', 'payout', 'purchase') AND amount > 0)",
            name="ck_ledger_amount_sign",
        ),
    )
