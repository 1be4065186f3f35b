import asyncio
import uuid
from datetime import datetime, timedelta, timezone
import pytest
from pydantic import ValidationError
from sqlalchemy import select

from betpool.errors import (
    BelowMinimumError,
    ChallengeNotFound,
    DuplicateBetError,
    InsufficientFundsError,
    InvalidChallengeError,
    PhaseError,
)
from betpool.models.challenge import Bet
from betpool.models.ledger import LedgerEntry
from betpool.schemas.challenge import ChallengeCreate
from betpool.services import challenges as svc
from betpool.services.ledger import ledger_balance
from conftest import NOW, DEADLINE


async def _bets(session, challenge_id):
    return (await session.execute(select(Bet).where(Bet.challenge_id == challenge_id))).scalars().all()


@pytest.mark.asyncio
async def test_place_bet_debits_and_bumps_side_total(session, cfg, make_caller, fund, new_challenge):
    creator, alice = make_caller(), make_caller()
    ch = await new_challenge(creator.user_id, minimum_bet=5)
    await fund(alice.user_id, 50)

    bet = await svc.place_bet(session, alice, ch.id, "yes", 20, now=NOW, cfg=cfg)
    assert bet.amount == 20 and bet.bet_type == "yes" and bet.payout is None

    fresh = await svc.get_challenge(session, ch.id, refresh=True)
    assert (fresh.total_yes_bets, fresh.total_no_bets, fresh.total_pool) == (20, 0, 20)
    assert await ledger_balance(session, alice.user_id) == 30

    debit = await session.scalar(select(LedgerEntry).where(LedgerEntry.user_id == alice.user_id, LedgerEntry.type == "bet"))
    assert debit.amount == -20
    assert debit.related_id == ch.id
    assert debit.description == "Bet on challenge: yes"


@pytest.mark.asyncio
async def test_second_bet_by_same_user_is_rejected(session, cfg, make_caller, fund, new_challenge):
    creator, alice = make_caller(), make_caller()
    ch = await new_challenge(creator.user_id)
    await fund(alice.user_id, 50)
    await svc.place_bet(session, alice, ch.id, "yes", 10, now=NOW, cfg=cfg)

    with pytest.raises(DuplicateBetError):
        await svc.place_bet(session, alice, ch.id, "no", 10, now=NOW, cfg=cfg)

    # first bet untouched, no second debit
    assert [(b.bet_type, b.amount) for b in await _bets(session, ch.id)] == [("yes", 10)]
    fresh = await svc.get_challenge(session, ch.id, refresh=True)
    assert (fresh.total_yes_bets, fresh.total_no_bets) == (10, 0)
    assert await ledger_balance(session, alice.user_id) == 40


@pytest.mark.asyncio
async def test_insufficient_funds_writes_nothing(session, cfg, make_caller, fund, new_challenge):
    creator, bob = make_caller(), make_caller()
    ch = await new_challenge(creator.user_id)
    await fund(bob.user_id, 5)

    with pytest.raises(InsufficientFundsError):
        await svc.place_bet(session, bob, ch.id, "no", 10, now=NOW, cfg=cfg)

    assert await _bets(session, ch.id) == []
    fresh = await svc.get_challenge(session, ch.id, refresh=True)
    assert fresh.total_no_bets == 0
    assert await ledger_balance(session, bob.user_id) == 5


@pytest.mark.asyncio
async def test_balance_never_goes_negative_across_challenges(session, cfg, make_caller, fund, new_challenge):
    creator, bob = make_caller(), make_caller()
    first = await new_challenge(creator.user_id)
    second = await new_challenge(creator.user_id)
    await fund(bob.user_id, 30)

    await svc.place_bet(session, bob, first.id, "yes", 20, now=NOW, cfg=cfg)
    with pytest.raises(InsufficientFundsError):
        await svc.place_bet(session, bob, second.id, "yes", 20, now=NOW, cfg=cfg)
    assert await ledger_balance(session, bob.user_id) == 10


@pytest.mark.asyncio
async def test_bet_below_minimum(session, cfg, make_caller, fund, new_challenge):
    creator, alice = make_caller(), make_caller()
    ch = await new_challenge(creator.user_id, minimum_bet=5)
    await fund(alice.user_id, 50)
    with pytest.raises(BelowMinimumError):
        await svc.place_bet(session, alice, ch.id, "yes", 4, now=NOW, cfg=cfg)
    assert await ledger_balance(session, alice.user_id) == 50


@pytest.mark.asyncio
@pytest.mark.parametrize("at", [DEADLINE, DEADLINE + timedelta(hours=1), DEADLINE + timedelta(days=2)])
async def test_no_bets_from_the_deadline_on(at, session, cfg, make_caller, fund, new_challenge):
    creator, alice = make_caller(), make_caller()
    ch = await new_challenge(creator.user_id)
    await fund(alice.user_id, 50)
    with pytest.raises(PhaseError):
        await svc.place_bet(session, alice, ch.id, "yes", 10, now=at, cfg=cfg)
    assert await ledger_balance(session, alice.user_id) == 50


@pytest.mark.asyncio
async def test_bet_on_unknown_challenge(session, cfg, make_caller, fund):
    alice = make_caller()
    await fund(alice.user_id, 50)
    with pytest.raises(ChallengeNotFound):
        await svc.place_bet(session, alice, uuid.uuid4(), "yes", 10, now=NOW, cfg=cfg)


@pytest.mark.asyncio
async def test_creator_may_bet_on_own_challenge(session, cfg, make_caller, fund, new_challenge):
    creator = make_caller()
    ch = await new_challenge(creator.user_id)
    await fund(creator.user_id, 10)
    bet = await svc.place_bet(session, creator, ch.id, "yes", 10, now=NOW, cfg=cfg)
    assert bet.user_id == creator.user_id


# ---------- create ----------

@pytest.mark.asyncio
async def test_create_group_challenge(session, cfg, make_caller):
    creator = make_caller()
    group_id = uuid.uuid4()
    payload = ChallengeCreate(title="Read 50 pages", deadline=NOW + timedelta(days=1), group_id=group_id)
    ch = await svc.create_challenge(session, creator, payload, now=NOW, cfg=cfg)

    assert ch.status == "active"
    assert ch.creator_id == creator.user_id
    assert ch.group_id == group_id and ch.is_global is False
    assert (ch.total_yes_bets, ch.total_no_bets) == (0, 0)
    assert ch.completion_votes == {"yes": 0, "no": 0}
    assert ch.is_completed is None and ch.proof_submitted_at is None and ch.voting_ends_at is None


@pytest.mark.asyncio
async def test_create_rejects_past_deadline(session, cfg, make_caller):
    payload = ChallengeCreate(title="Too late", deadline=NOW, group_id=uuid.uuid4())
    with pytest.raises(InvalidChallengeError):
        await svc.create_challenge(session, make_caller(), payload, now=NOW, cfg=cfg)


@pytest.mark.asyncio
async def test_global_challenges_have_a_higher_floor(session, cfg, make_caller):
    low = ChallengeCreate(title="Cold shower", deadline=NOW + timedelta(hours=5), is_global=True, minimum_bet=10)
    with pytest.raises(BelowMinimumError):
        await svc.create_challenge(session, make_caller(), low, now=NOW, cfg=cfg)

    ok = ChallengeCreate(title="Cold shower", deadline=NOW + timedelta(hours=5), is_global=True, minimum_bet=20)
    ch = await svc.create_challenge(session, make_caller(), ok, now=NOW, cfg=cfg)
    assert ch.is_global is True and ch.group_id is None


def test_challenge_needs_exactly_one_scope():
    with pytest.raises(ValidationError):
        ChallengeCreate(title="Nowhere", deadline=NOW + timedelta(hours=5))
    with pytest.raises(ValidationError):
        ChallengeCreate(title="Everywhere", deadline=NOW + timedelta(hours=5), is_global=True, group_id=uuid.uuid4())


# ---------- concurrency ----------

@pytest.mark.asyncio
async def test_concurrent_bets_by_one_user_keep_exactly_one(session_factory, cfg, make_caller, fund, new_challenge):
    creator, alice = make_caller(), make_caller()
    ch = await new_challenge(creator.user_id)
    await fund(alice.user_id, 50)

    async def attempt(side):
        async with session_factory() as s:
            return await svc.place_bet(s, alice, ch.id, side, 10, now=NOW, cfg=cfg)

    results = await asyncio.gather(attempt("yes"), attempt("no"), return_exceptions=True)

    placed = [r for r in results if isinstance(r, Bet)]
    rejected = [r for r in results if isinstance(r, DuplicateBetError)]
    assert len(placed) == 1 and len(rejected) == 1

    async with session_factory() as s:
        bets = await _bets(s, ch.id)
        assert [(b.bet_type, b.amount) for b in bets] == [(placed[0].bet_type, 10)]
        debits = (await s.execute(
            select(LedgerEntry).where(LedgerEntry.user_id == alice.user_id, LedgerEntry.type == "bet")
        )).scalars().all()
        assert len(debits) == 1
        assert await ledger_balance(s, alice.user_id) == 40
        fresh = await svc.get_challenge(s, ch.id, refresh=True)
        assert fresh.total_pool == 10


@pytest.mark.asyncio
async def test_unique_constraint_rejects_bet_the_precheck_missed(monkeypatch, session, cfg, make_caller, fund, new_challenge):
    creator, alice = make_caller(), make_caller()
    ch = await new_challenge(creator.user_id)
    await fund(alice.user_id, 50)
    await svc.place_bet(session, alice, ch.id, "yes", 10, now=NOW, cfg=cfg)

    # a racing request read "no bet yet" before the first one committed
    async def nothing_yet(*args, **kwargs):
        return None

    monkeypatch.setattr(svc, "get_user_bet", nothing_yet)
    with pytest.raises(DuplicateBetError):
        await svc.place_bet(session, alice, ch.id, "no", 10, now=NOW, cfg=cfg)

    # the second debit was rolled back with the failed insert
    assert await ledger_balance(session, alice.user_id) == 40
    assert [(b.bet_type, b.amount) for b in await _bets(session, ch.id)] == [("yes", 10)]
    fresh = await svc.get_challenge(session, ch.id, refresh=True)
    assert (fresh.total_yes_bets, fresh.total_no_bets) == (10, 0)


@pytest.mark.asyncio
async def test_concurrent_bets_keep_totals_equal_to_stored_bets(session_factory, cfg, make_caller, fund, new_challenge):
    creator = make_caller()
    ch = await new_challenge(creator.user_id)
    stakes = [(make_caller(), "yes" if i % 2 else "no", 3 + i) for i in range(8)]
    for caller, _, amount in stakes:
        await fund(caller.user_id, amount)

    async def attempt(caller, side, amount):
        async with session_factory() as s:
            return await svc.place_bet(s, caller, ch.id, side, amount, now=NOW, cfg=cfg)

    await asyncio.gather(*(attempt(c, side, amount) for c, side, amount in stakes))

    async with session_factory() as s:
        bets = await _bets(s, ch.id)
        fresh = await svc.get_challenge(s, ch.id, refresh=True)
        assert len(bets) == len(stakes)
        assert fresh.total_yes_bets == sum(b.amount for b in bets if b.bet_type == "yes")
        assert fresh.total_no_bets == sum(b.amount for b in bets if b.bet_type == "no")
        assert fresh.total_pool == sum(amount for _, _, amount in stakes)
        for caller, _, _ in stakes:
            assert await ledger_balance(s, caller.user_id) == 0


# ---------- input normalization ----------

def test_offsetless_deadline_is_read_as_utc():
    naive = ChallengeCreate(title="Naive", deadline="2099-01-01T12:00:00", group_id=uuid.uuid4())
    assert naive.deadline == datetime(2099, 1, 1, 12, 0, tzinfo=timezone.utc)
    shifted = ChallengeCreate(title="Shifted", deadline="2099-01-01T12:00:00+02:00", group_id=uuid.uuid4())
    assert shifted.deadline == datetime(2099, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert shifted.deadline.utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_create_with_offsetless_deadline(session, cfg, make_caller):
    payload = ChallengeCreate(title="Naive deadline", deadline=(NOW + timedelta(days=1)).replace(tzinfo=None), group_id=uuid.uuid4())
    ch = await svc.create_challenge(session, make_caller(), payload, now=NOW, cfg=cfg)
    assert ch.deadline == NOW + timedelta(days=1)
