from __future__ import annotations
from decimal import Decimal, ROUND_FLOOR
from typing import Iterable
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from betpool.models.challenge import Bet
from betpool.schemas.settlement import PayoutLine, SettlementPlan, SettlementReport
from betpool.services import ledger

log = structlog.get_logger()

DESCRIPTIONS = {
    "winnings": "Winning bet payout",
    "creator_bonus": "Creator bonus",
    "refund": "Bet refund",
}

# ---------- compute ----------

def creator_bonus(losing_pool: int, rate: Decimal | float | str) -> int:
    """floor(rate × L) in exact decimal arithmetic; floats go through str() so 0.3 stays 0.3."""
    return int((Decimal(str(rate)) * losing_pool).to_integral_value(rounding=ROUND_FLOOR))

def _refund_plan(bets: list, winning_side: str, winner_total: int, losing_pool: int) -> SettlementPlan:
    lines = [PayoutLine(user_id=b.user_id, bet_id=b.id, amount=int(b.amount), kind="refund") for b in bets]
    return SettlementPlan(
        outcome="refund",
        winning_side=winning_side,
        winner_total=winner_total,
        losing_pool=losing_pool,
        creator_bonus=0,
        distributable=0,
        lines=lines,
        bet_payouts={b.id: int(b.amount) for b in bets},
    )

def compute_settlement(
    bets: Iterable,
    *,
    creator_id: UUID,
    is_completed: bool,
    bonus_rate: Decimal,
    void: bool = False,
) -> SettlementPlan:
    """
    Pari-mutuel split of a challenge pool.

    Winners get their stake back plus a pro-rata share of the losing pool
    after the creator bonus: payout = floor(w + (w / W) × (L − B)).
    A pool with no winners or nothing to win (W == 0 or L == 0) is void and
    every stake is refunded as-is; `void=True` forces that outcome.

    Args:
        bets: objects with id, user_id, bet_type and amount
        creator_id: challenge creator; earns B = floor(rate × L) when holding a winning bet
        is_completed: verdict (True = task done, yes-bettors win)
        bonus_rate: creator share of the losing pool

    Examples:
        >>> plan = compute_settlement([yes10, no10], creator_id=someone_else, is_completed=True, bonus_rate=Decimal("0.1"))
        >>> [(l.kind, l.amount) for l in plan.lines]
        [('winnings', 20)]
    """
    bets = list(bets)
    yes_total = sum(int(b.amount) for b in bets if b.bet_type == "yes")
    no_total = sum(int(b.amount) for b in bets if b.bet_type == "no")

    winning_side = "yes" if is_completed else "no"
    if is_completed:
        winner_total, losing_pool = yes_total, no_total
    else:
        winner_total, losing_pool = no_total, yes_total

    if void or winner_total == 0 or losing_pool == 0:
        return _refund_plan(bets, winning_side, winner_total, losing_pool)

    winners = [b for b in bets if b.bet_type == winning_side]
    creator_won = any(b.user_id == creator_id for b in winners)
    bonus = creator_bonus(losing_pool, bonus_rate) if creator_won else 0
    distributable = losing_pool - bonus

    lines: list[PayoutLine] = []
    bet_payouts: dict[UUID, int] = {}
    for b in bets:
        w = int(b.amount)
        if b.bet_type != winning_side:
            bet_payouts[b.id] = 0
            continue
        # floor(w + w*P/W) == w + floor(w*P/W) for integer w
        amount = w + (w * distributable) // winner_total
        bet_payouts[b.id] = amount
        lines.append(PayoutLine(user_id=b.user_id, bet_id=b.id, amount=amount, kind="winnings"))

    if bonus > 0:
        lines.append(PayoutLine(user_id=creator_id, bet_id=None, amount=bonus, kind="creator_bonus"))

    return SettlementPlan(
        outcome="payout",
        winning_side=winning_side,
        winner_total=winner_total,
        losing_pool=losing_pool,
        creator_bonus=bonus,
        distributable=distributable,
        lines=lines,
        bet_payouts=bet_payouts,
    )

# ---------- apply ----------

async def settle_challenge(
    session: AsyncSession,
    *,
    challenge_id: UUID,
    creator_id: UUID,
    is_completed: bool,
    bonus_rate: Decimal,
    void: bool = False,
) -> SettlementReport:
    """
    Compute and write payouts for a challenge, at most once.

    Each ledger credit runs in its own savepoint: a failed write is logged,
    reported in failed_user_ids and the remaining users are still paid.
    The bet's payout annotation is left null for unpaid lines so they can be
    found and corrected by hand; re-running is blocked by the payout guard.
    Caller owns the outer transaction.
    """
    if await ledger.payout_recorded(session, challenge_id):
        log.info("settlement_skipped_already_paid", challenge_id=str(challenge_id))
        return SettlementReport(status="already_settled")

    bets = (await session.execute(
        select(Bet).where(Bet.challenge_id == challenge_id).order_by(Bet.created_at.asc(), Bet.id.asc())
    )).scalars().all()

    plan = compute_settlement(bets, creator_id=creator_id, is_completed=is_completed, bonus_rate=bonus_rate, void=void)

    paid: list[UUID] = []
    failed: list[UUID] = []
    failed_bets: set[UUID] = set()
    total_paid = 0
    for line in plan.lines:
        try:
            async with session.begin_nested():
                await ledger.credit(
                    session,
                    user_id=line.user_id,
                    amount=line.amount,
                    type="payout",
                    description=DESCRIPTIONS[line.kind],
                    related_id=challenge_id,
                )
        except Exception as e:
            log.error(
                "settlement_write_failed",
                challenge_id=str(challenge_id),
                user_id=str(line.user_id),
                kind=line.kind,
                amount=line.amount,
                error=str(e),
            )
            failed.append(line.user_id)
            if line.bet_id is not None:
                failed_bets.add(line.bet_id)
            continue
        paid.append(line.user_id)
        total_paid += line.amount

    # Re-select: a rolled back savepoint may have expired the loaded rows
    bets = (await session.execute(select(Bet).where(Bet.challenge_id == challenge_id))).scalars().all()
    for b in bets:
        if b.payout is None and b.id not in failed_bets:
            b.payout = plan.bet_payouts.get(b.id, 0)
    await session.flush()

    log.info(
        "settlement_applied",
        challenge_id=str(challenge_id),
        outcome=plan.outcome,
        winning_side=plan.winning_side,
        winner_total=plan.winner_total,
        losing_pool=plan.losing_pool,
        creator_bonus=plan.creator_bonus,
        residual=plan.residual,
        failed=len(failed),
    )
    return SettlementReport(
        status=plan.outcome,
        winning_side=plan.winning_side,
        creator_bonus=plan.creator_bonus,
        total_paid=total_paid,
        residual=plan.residual,
        paid_user_ids=paid,
        failed_user_ids=failed,
    )
