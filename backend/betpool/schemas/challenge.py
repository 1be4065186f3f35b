from __future__ import annotations
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal
from uuid import UUID
from datetime import datetime, timezone
from betpool.schemas.settlement import SettlementReport

Side = Literal["yes", "no"]
ChallengeStatus = Literal["active", "voting", "completed"]
Phase = Literal["betting", "proof_window", "voting", "voting_closed", "expired", "completed"]

class ChallengeCreate(BaseModel):
    title: str = Field(min_length=3, max_length=120)
    description: str | None = None
    minimum_bet: int = Field(ge=1, default=1)
    deadline: datetime
    is_global: bool = False
    group_id: UUID | None = None

    @field_validator("deadline")
    @classmethod
    def deadline_utc(cls, v: datetime) -> datetime:
        # Offset-less timestamps are taken as UTC, same as the database column
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def one_scope(self):
        if self.is_global == (self.group_id is not None):
            raise ValueError("a challenge belongs to exactly one of: a group (group_id) or the global feed (is_global)")
        return self

class CompletionVotes(BaseModel):
    yes: int = 0
    no: int = 0

class BetPublic(BaseModel):
    id: UUID
    user_id: UUID
    challenge_id: UUID
    bet_type: Side
    amount: int
    payout: int | None = None
    created_at: datetime

class ChallengePublic(BaseModel):
    id: UUID
    creator_id: UUID
    title: str
    description: str | None
    minimum_bet: int
    deadline: datetime
    is_global: bool
    group_id: UUID | None
    status: ChallengeStatus
    proof_image_url: str | None = None
    proof_description: str | None = None
    proof_submitted_at: datetime | None = None
    voting_ends_at: datetime | None = None
    total_yes_bets: int
    total_no_bets: int
    total_pool: int
    is_completed: bool | None = None
    completion_votes: CompletionVotes
    created_at: datetime
    # Viewer-relative fields
    phase: Phase
    is_creator: bool
    viewer_bet: BetPublic | None = None
    viewer_vote: Side | None = None

class BetCreate(BaseModel):
    bet_type: Side
    amount: int = Field(gt=0)

class ProofSubmit(BaseModel):
    image_url: str = Field(min_length=1, description="Opaque reference returned by the upload service")
    description: str | None = None

class VoteCreate(BaseModel):
    vote: Side

class VotePublic(BaseModel):
    challenge_id: UUID
    user_id: UUID
    vote: Side

class FinalizeOutcome(BaseModel):
    challenge_id: UUID
    action: Literal["finalized", "expired", "already_completed", "noop"]
    status: ChallengeStatus
    is_completed: bool | None = None
    completion_votes: CompletionVotes = Field(default_factory=CompletionVotes)
    settlement: SettlementReport | None = None
    settlement_error: str | None = None

class SweepReport(BaseModel):
    checked: int = 0
    finalized: list[UUID] = Field(default_factory=list)
    expired: list[UUID] = Field(default_factory=list)
    failed: list[UUID] = Field(default_factory=list)
