from __future__ import annotations
from datetime import datetime
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from betpool.auth_deps import get_caller
from betpool.config import Settings, get_settings
from betpool.db import get_session, store_errors, utcnow
from betpool.models.challenge import Bet, Challenge
from betpool.models.vote import Vote
from betpool.schemas.auth import Caller
from betpool.schemas.challenge import (
    BetCreate,
    BetPublic,
    ChallengeCreate,
    ChallengePublic,
    CompletionVotes,
    FinalizeOutcome,
    ProofSubmit,
    VoteCreate,
    VotePublic,
)
from betpool.services import challenges as svc
from betpool.services.phases import challenge_phase
from betpool.services.sweeper import reconcile, reconcile_all

router = APIRouter(prefix="/challenges", tags=["challenges"])

def bet_public(b: Bet) -> BetPublic:
    return BetPublic(
        id=b.id, user_id=b.user_id, challenge_id=b.challenge_id, bet_type=b.bet_type,
        amount=int(b.amount), payout=b.payout, created_at=b.created_at,
    )

def to_public(ch: Challenge, caller: Caller, now: datetime, cfg: Settings, my_bet: Bet | None, my_vote: Vote | None) -> ChallengePublic:
    return ChallengePublic(
        id=ch.id, creator_id=ch.creator_id, title=ch.title, description=ch.description,
        minimum_bet=ch.minimum_bet, deadline=ch.deadline, is_global=ch.is_global, group_id=ch.group_id,
        status=ch.status,
        proof_image_url=ch.proof_image_url, proof_description=ch.proof_description,
        proof_submitted_at=ch.proof_submitted_at, voting_ends_at=ch.voting_ends_at,
        total_yes_bets=int(ch.total_yes_bets or 0), total_no_bets=int(ch.total_no_bets or 0),
        total_pool=ch.total_pool,
        is_completed=ch.is_completed,
        completion_votes=CompletionVotes(**(ch.completion_votes or {})),
        created_at=ch.created_at,
        phase=challenge_phase(ch, now, cfg.proof_submission_hours),
        is_creator=(ch.creator_id == caller.user_id),
        viewer_bet=bet_public(my_bet) if my_bet else None,
        viewer_vote=my_vote.vote if my_vote else None,
    )

async def hydrate_many(
    session: AsyncSession, rows: list[Challenge], caller: Caller, now: datetime, cfg: Settings
) -> list[ChallengePublic]:
    bets, votes = await svc.viewer_state(session, [c.id for c in rows], caller.user_id)
    return [to_public(c, caller, now, cfg, bets.get(c.id), votes.get(c.id)) for c in rows]

async def hydrate_public(session: AsyncSession, ch: Challenge, caller: Caller, now: datetime, cfg: Settings) -> ChallengePublic:
    [out] = await hydrate_many(session, [ch], caller, now, cfg)
    return out

@router.post("", response_model=ChallengePublic, status_code=201)
async def create_challenge(
    payload: ChallengeCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
    cfg: Settings = Depends(get_settings),
):
    now = utcnow()
    ch = await svc.create_challenge(session, caller, payload, now=now, cfg=cfg)
    with store_errors():
        return await hydrate_public(session, ch, caller, now, cfg)

@router.get("", response_model=list[ChallengePublic])
async def list_active(
    group_id: UUID | None = Query(default=None),
    global_: int = Query(default=0, ge=0, le=1, alias="global"),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
    cfg: Settings = Depends(get_settings),
):
    now = utcnow()
    with store_errors():
        if global_:
            await reconcile_all(session, scope="global", now=now, cfg=cfg)
        elif group_id:
            await reconcile_all(session, scope="group", scope_id=group_id, now=now, cfg=cfg)
        else:
            await reconcile_all(session, scope="all", now=now, cfg=cfg)
        rows = await svc.list_active(session, group_id=group_id, is_global=bool(global_), now=now)
        return await hydrate_many(session, rows, caller, now, cfg)

@router.get("/mine", response_model=list[ChallengePublic])
async def list_mine(
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
    cfg: Settings = Depends(get_settings),
):
    """Challenges I created or bet on, in any status."""
    now = utcnow()
    with store_errors():
        await reconcile_all(session, scope="user", scope_id=caller.user_id, now=now, cfg=cfg)
        rows = await svc.list_for_user(session, caller.user_id)
        return await hydrate_many(session, rows, caller, now, cfg)

@router.get("/history", response_model=list[ChallengePublic])
async def list_history(
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
    cfg: Settings = Depends(get_settings),
):
    now = utcnow()
    with store_errors():
        await reconcile_all(session, scope="user", scope_id=caller.user_id, now=now, cfg=cfg)
        rows = await svc.list_for_user(session, caller.user_id, completed_only=True)
        return await hydrate_many(session, rows, caller, now, cfg)

@router.get("/{challenge_id}", response_model=ChallengePublic)
async def get_challenge(
    challenge_id: UUID,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
    cfg: Settings = Depends(get_settings),
):
    now = utcnow()
    with store_errors():
        await reconcile(session, challenge_id, now=now, cfg=cfg)
        ch = await svc.get_challenge(session, challenge_id, refresh=True)
        return await hydrate_public(session, ch, caller, now, cfg)

@router.post("/{challenge_id}/reconcile", response_model=FinalizeOutcome)
async def reconcile_challenge(
    challenge_id: UUID,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
    cfg: Settings = Depends(get_settings),
):
    """Manual refresh of one challenge; any member may trigger it."""
    with store_errors():
        return await reconcile(session, challenge_id, cfg=cfg)

@router.get("/{challenge_id}/bets", response_model=list[BetPublic])
async def list_bets(challenge_id: UUID, session: AsyncSession = Depends(get_session), caller: Caller = Depends(get_caller)):
    with store_errors():
        await svc.get_challenge(session, challenge_id)
        return [bet_public(b) for b in await svc.list_bets(session, challenge_id)]

@router.post("/{challenge_id}/bets", response_model=BetPublic, status_code=201)
async def place_bet(
    challenge_id: UUID,
    payload: BetCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
    cfg: Settings = Depends(get_settings),
):
    bet = await svc.place_bet(session, caller, challenge_id, payload.bet_type, payload.amount, cfg=cfg)
    return bet_public(bet)

@router.post("/{challenge_id}/proof", response_model=ChallengePublic)
async def submit_proof(
    challenge_id: UUID,
    payload: ProofSubmit,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
    cfg: Settings = Depends(get_settings),
):
    now = utcnow()
    ch = await svc.submit_proof(session, caller, challenge_id, payload.image_url, payload.description, now=now, cfg=cfg)
    with store_errors():
        return await hydrate_public(session, ch, caller, now, cfg)

@router.post("/{challenge_id}/votes", response_model=VotePublic)
async def cast_vote(
    challenge_id: UUID,
    payload: VoteCreate,
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    v = await svc.cast_vote(session, caller, challenge_id, payload.vote)
    return VotePublic(challenge_id=v.challenge_id, user_id=v.user_id, vote=v.vote)
