from __future__ import annotations
from datetime import datetime
from uuid import UUID
from sqlalchemy import select, update, or_, exists
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from betpool.config import Settings, settings as default_settings
from betpool.db import store_errors, utcnow
from betpool.errors import (
    BelowMinimumError,
    ChallengeNotFound,
    DuplicateBetError,
    InvalidChallengeError,
    NotCreatorError,
    NotEligibleError,
    PhaseError,
    SettlementPartialFailure,
)
from betpool.models.challenge import Bet, Challenge
from betpool.models.vote import Vote
from betpool.schemas.auth import Caller
from betpool.schemas.challenge import ChallengeCreate, CompletionVotes, FinalizeOutcome
from betpool.services import ledger
from betpool.services.phases import challenge_phase, voting_deadline
from betpool.services.settlement import settle_challenge

log = structlog.get_logger()

# ---------- reads ----------

async def get_challenge(session: AsyncSession, challenge_id: UUID, *, refresh: bool = False) -> Challenge:
    ch = await session.get(Challenge, challenge_id, populate_existing=refresh)
    if not ch:
        raise ChallengeNotFound()
    return ch

async def get_user_bet(session: AsyncSession, challenge_id: UUID, user_id: UUID) -> Bet | None:
    return await session.scalar(select(Bet).where(Bet.challenge_id == challenge_id, Bet.user_id == user_id))

async def list_bets(session: AsyncSession, challenge_id: UUID) -> list[Bet]:
    return (await session.execute(
        select(Bet).where(Bet.challenge_id == challenge_id).order_by(Bet.created_at.asc())
    )).scalars().all()

async def list_active(
    session: AsyncSession,
    *,
    group_id: UUID | None = None,
    is_global: bool = False,
    now: datetime | None = None,
) -> list[Challenge]:
    """Challenges still taking bets, newest first."""
    now = now or utcnow()
    q = select(Challenge).where(Challenge.status == "active", Challenge.deadline > now)
    if is_global:
        q = q.where(Challenge.is_global.is_(True))
    elif group_id:
        q = q.where(Challenge.group_id == group_id)
    return (await session.execute(q.order_by(Challenge.created_at.desc()))).scalars().all()

async def viewer_state(
    session: AsyncSession, challenge_ids: list[UUID], user_id: UUID
) -> tuple[dict[UUID, Bet], dict[UUID, Vote]]:
    """The viewer's bet and vote across a page of challenges, in two queries whatever the page size."""
    if not challenge_ids:
        return {}, {}
    bets = (await session.execute(
        select(Bet).where(Bet.user_id == user_id, Bet.challenge_id.in_(challenge_ids))
    )).scalars().all()
    votes = (await session.execute(
        select(Vote).where(Vote.user_id == user_id, Vote.challenge_id.in_(challenge_ids))
    )).scalars().all()
    return {b.challenge_id: b for b in bets}, {v.challenge_id: v for v in votes}

def involving_user(user_id: UUID):
    """Where-clause: challenges the user created or bet on."""
    return or_(
        Challenge.creator_id == user_id,
        exists().where(Bet.challenge_id == Challenge.id, Bet.user_id == user_id),
    )

async def list_for_user(session: AsyncSession, user_id: UUID, *, completed_only: bool = False) -> list[Challenge]:
    q = select(Challenge).where(involving_user(user_id))
    if completed_only:
        q = q.where(Challenge.status == "completed")
    return (await session.execute(q.order_by(Challenge.created_at.desc()))).scalars().all()

# ---------- create ----------

async def create_challenge(
    session: AsyncSession,
    caller: Caller,
    payload: ChallengeCreate,
    *,
    now: datetime | None = None,
    cfg: Settings = default_settings,
) -> Challenge:
    now = now or utcnow()
    if payload.deadline <= now:
        raise InvalidChallengeError("Deadline must be in the future")
    if payload.is_global == (payload.group_id is not None):
        raise InvalidChallengeError("A challenge is either global or belongs to one group")
    floor = cfg.min_global_bet if payload.is_global else cfg.min_group_bet
    if payload.minimum_bet < floor:
        scope = "global" if payload.is_global else "group"
        raise BelowMinimumError(f"Minimum bet for {scope} challenges is {floor}")

    with store_errors():
        ch = Challenge(
            creator_id=caller.user_id,
            title=payload.title,
            description=payload.description,
            minimum_bet=payload.minimum_bet,
            deadline=payload.deadline,
            is_global=payload.is_global,
            group_id=payload.group_id,
            status="active",
            total_yes_bets=0,
            total_no_bets=0,
            completion_votes={"yes": 0, "no": 0},
        )
        session.add(ch)
        await session.commit()
        await session.refresh(ch)
    log.info("challenge_created", challenge_id=str(ch.id), creator_id=str(caller.user_id), deadline=ch.deadline.isoformat())
    return ch

# ---------- bets ----------

async def place_bet(
    session: AsyncSession,
    caller: Caller,
    challenge_id: UUID,
    side: str,
    amount: int,
    *,
    now: datetime | None = None,
    cfg: Settings = default_settings,
) -> Bet:
    """
    Debit, insert the bet and bump the side total in one transaction.
    Validation failures are raised before anything is written.
    """
    now = now or utcnow()
    if side not in ("yes", "no"):
        raise ValueError("side must be 'yes' or 'no'")

    with store_errors():
        ch = await get_challenge(session, challenge_id, refresh=True)
        if challenge_phase(ch, now, cfg.proof_submission_hours) != "betting":
            raise PhaseError("Challenge is no longer accepting bets")
        if amount < ch.minimum_bet:
            raise BelowMinimumError(f"Minimum bet is {ch.minimum_bet}")
        if await get_user_bet(session, ch.id, caller.user_id):
            raise DuplicateBetError()

        try:
            await ledger.debit(
                session,
                user_id=caller.user_id,
                amount=amount,
                type="bet",
                description=f"Bet on challenge: {side}",
                related_id=ch.id,
            )
            bet = Bet(user_id=caller.user_id, challenge_id=ch.id, bet_type=side, amount=amount)
            session.add(bet)
            await session.flush()

            column = Challenge.total_yes_bets if side == "yes" else Challenge.total_no_bets
            res = await session.execute(
                update(Challenge)
                .where(Challenge.id == ch.id, Challenge.status == "active", Challenge.deadline > now)
                .values({column: column + amount})
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise PhaseError("Challenge is no longer accepting bets")
            await session.commit()
        except IntegrityError:
            # Lost the race against a concurrent bet by the same user
            await session.rollback()
            raise DuplicateBetError()
        except Exception:
            await session.rollback()
            raise

    log.info("bet_placed", challenge_id=str(ch.id), user_id=str(caller.user_id), side=side, amount=amount)
    return bet

# ---------- proof ----------

async def submit_proof(
    session: AsyncSession,
    caller: Caller,
    challenge_id: UUID,
    image_url: str,
    description: str | None = None,
    *,
    now: datetime | None = None,
    cfg: Settings = default_settings,
) -> Challenge:
    """Write-once proof; opens the voting window."""
    now = now or utcnow()
    with store_errors():
        ch = await get_challenge(session, challenge_id, refresh=True)
        if ch.creator_id != caller.user_id:
            raise NotCreatorError("Only the challenge creator can submit proof")
        if ch.proof_submitted_at is not None:
            raise PhaseError("Proof has already been submitted")
        phase = challenge_phase(ch, now, cfg.proof_submission_hours)
        if phase != "proof_window":
            if phase == "betting":
                raise PhaseError("Proof can only be submitted after the deadline")
            raise PhaseError(f"Proof must be submitted within {cfg.proof_submission_hours:g} hours of the deadline")

        res = await session.execute(
            update(Challenge)
            .where(Challenge.id == ch.id, Challenge.status == "active", Challenge.proof_submitted_at.is_(None))
            .values(
                proof_image_url=image_url,
                proof_description=description,
                proof_submitted_at=now,
                voting_ends_at=voting_deadline(now, cfg.voting_duration_hours),
                status="voting",
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            await session.rollback()
            raise PhaseError("Proof has already been submitted")
        await session.commit()
        await session.refresh(ch)

    log.info("proof_submitted", challenge_id=str(ch.id), voting_ends_at=ch.voting_ends_at.isoformat())
    return ch

# ---------- votes ----------

def _upsert(session: AsyncSession):
    return pg_insert if session.get_bind().dialect.name == "postgresql" else sqlite_insert

async def cast_vote(
    session: AsyncSession,
    caller: Caller,
    challenge_id: UUID,
    choice: str,
    *,
    now: datetime | None = None,
) -> Vote:
    """Upsert the caller's vote; resubmitting replaces the previous choice."""
    now = now or utcnow()
    if choice not in ("yes", "no"):
        raise ValueError("vote must be 'yes' or 'no'")

    with store_errors():
        ch = await get_challenge(session, challenge_id, refresh=True)
        if ch.creator_id == caller.user_id:
            raise NotEligibleError("The creator cannot vote on their own challenge")
        if not await get_user_bet(session, ch.id, caller.user_id):
            raise NotEligibleError("You must have bet on this challenge to vote")
        if ch.status != "voting":
            raise PhaseError("Voting is not open for this challenge")
        if ch.voting_ends_at is None or now >= ch.voting_ends_at:
            raise PhaseError("Voting period has ended")

        insert = _upsert(session)
        stmt = insert(Vote).values(challenge_id=ch.id, user_id=caller.user_id, vote=choice, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Vote.challenge_id, Vote.user_id],
            set_={"vote": choice, "updated_at": now},
        )
        await session.execute(stmt)
        await session.commit()
        v = await session.scalar(
            select(Vote)
            .where(Vote.challenge_id == ch.id, Vote.user_id == caller.user_id)
            .execution_options(populate_existing=True)
        )

    log.info("vote_cast", challenge_id=str(ch.id), user_id=str(caller.user_id), vote=choice)
    return v

async def tally_votes(session: AsyncSession, challenge_id: UUID) -> CompletionVotes:
    votes = (await session.execute(select(Vote.vote).where(Vote.challenge_id == challenge_id))).scalars().all()
    return CompletionVotes(yes=sum(1 for v in votes if v == "yes"), no=sum(1 for v in votes if v == "no"))

# ---------- terminal transitions ----------

def _outcome(ch: Challenge, action: str, **kw) -> FinalizeOutcome:
    return FinalizeOutcome(
        challenge_id=ch.id,
        action=action,
        status=ch.status,
        is_completed=ch.is_completed,
        completion_votes=CompletionVotes(**(ch.completion_votes or {})),
        settlement_error=ch.settlement_error,
        **kw,
    )

async def _close(
    session: AsyncSession,
    ch: Challenge,
    *,
    from_status: str,
    action: str,
    now: datetime,
    cfg: Settings,
) -> FinalizeOutcome:
    """
    Claim the terminal transition, then settle.

    The claim is a conditional update (only if status is still from_status), so
    of two racing callers exactly one proceeds; the other sees zero rows and
    no-ops. Settlement runs in a savepoint: if it blows up the challenge is
    still completed, with is_completed=False and the error kept on the row.
    """
    challenge_id, creator_id = ch.id, ch.creator_id
    claim = update(Challenge).where(Challenge.id == challenge_id, Challenge.status == from_status)
    if from_status == "active":
        claim = claim.where(Challenge.proof_submitted_at.is_(None))
    res = await session.execute(
        claim.values(status="completed", completed_at=now).execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        await session.rollback()
        await session.refresh(ch)
        log.info("finalize_noop", challenge_id=str(challenge_id), status=ch.status)
        return _outcome(ch, "already_completed")

    void = action == "expired"
    votes = CompletionVotes() if void else await tally_votes(session, challenge_id)
    # Ties count as failure
    is_completed = False if void else votes.yes > votes.no

    report = None
    error: str | None = None
    try:
        async with session.begin_nested():
            report = await settle_challenge(
                session,
                challenge_id=challenge_id,
                creator_id=creator_id,
                is_completed=is_completed,
                bonus_rate=cfg.creator_bonus_rate,
                void=void,
            )
    except Exception as e:
        log.exception("settlement_failed", challenge_id=str(challenge_id))
        is_completed = False
        error = f"settlement_failed: {e}"

    if report is not None and report.failed_user_ids:
        failure = SettlementPartialFailure(report.failed_user_ids)
        log.error(
            "settlement_partial_failure",
            challenge_id=str(challenge_id),
            failed_user_ids=[str(u) for u in failure.failed_user_ids],
        )
        error = f"{failure.kind}: {failure.message} ({', '.join(str(u) for u in failure.failed_user_ids)})"

    await session.execute(
        update(Challenge)
        .where(Challenge.id == challenge_id)
        .values(is_completed=is_completed, completion_votes=votes.model_dump(), settlement_error=error)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    await session.refresh(ch)

    log.info(
        "challenge_finalized",
        challenge_id=str(challenge_id),
        action=action,
        is_completed=is_completed,
        yes_votes=votes.yes,
        no_votes=votes.no,
        settlement=report.status if report else None,
    )
    return _outcome(ch, action, settlement=report)

async def finalize(
    session: AsyncSession,
    challenge_id: UUID,
    *,
    now: datetime | None = None,
    cfg: Settings = default_settings,
) -> FinalizeOutcome:
    """Close voting, tally and settle. Idempotent: completed challenges are a no-op."""
    now = now or utcnow()
    with store_errors():
        ch = await get_challenge(session, challenge_id, refresh=True)
        if ch.status == "completed":
            return _outcome(ch, "already_completed")
        if ch.status != "voting":
            raise PhaseError("Challenge has no proof to vote on")
        return await _close(session, ch, from_status="voting", action="finalized", now=now, cfg=cfg)

async def expire(
    session: AsyncSession,
    challenge_id: UUID,
    *,
    now: datetime | None = None,
    cfg: Settings = default_settings,
) -> FinalizeOutcome:
    """Proof window elapsed without proof: fail the challenge and refund every bet."""
    now = now or utcnow()
    with store_errors():
        ch = await get_challenge(session, challenge_id, refresh=True)
        if ch.status == "completed":
            return _outcome(ch, "already_completed")
        if challenge_phase(ch, now, cfg.proof_submission_hours) != "expired":
            raise PhaseError("Proof window has not elapsed")
        return await _close(session, ch, from_status="active", action="expired", now=now, cfg=cfg)
