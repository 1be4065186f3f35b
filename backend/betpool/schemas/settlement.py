from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal
from uuid import UUID

class PayoutLine(BaseModel):
    user_id: UUID
    bet_id: UUID | None = None  # None for the creator bonus
    amount: int
    kind: Literal["winnings", "creator_bonus", "refund"]

class SettlementPlan(BaseModel):
    """Pure result of the pari-mutuel computation; nothing has been written yet."""
    outcome: Literal["payout", "refund"]
    winning_side: Literal["yes", "no"]
    winner_total: int      # W
    losing_pool: int       # L
    creator_bonus: int     # B
    distributable: int     # P = L - B
    lines: list[PayoutLine] = Field(default_factory=list)
    bet_payouts: dict[UUID, int] = Field(default_factory=dict)

    @property
    def paid_winnings(self) -> int:
        return sum(l.amount for l in self.lines if l.kind == "winnings")

    @property
    def residual(self) -> int:
        """Flooring leftovers, left unallocated."""
        if self.outcome != "payout":
            return 0
        return self.winner_total + self.distributable - self.paid_winnings

class SettlementReport(BaseModel):
    status: Literal["payout", "refund", "already_settled"]
    winning_side: Literal["yes", "no"] | None = None
    creator_bonus: int = 0
    total_paid: int = 0
    residual: int = 0
    paid_user_ids: list[UUID] = Field(default_factory=list)
    failed_user_ids: list[UUID] = Field(default_factory=list)
