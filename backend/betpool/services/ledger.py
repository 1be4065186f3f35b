from __future__ import annotations
from uuid import UUID
from sqlalchemy import select, func, exists
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from betpool.db import advisory_xact_lock
from betpool.errors import InsufficientFundsError
from betpool.models.ledger import LedgerEntry

log = structlog.get_logger()

CREDIT_TYPES = ("reward", "payout", "purchase")
DEBIT_TYPES = ("bet", "penalty")

async def ledger_balance(session: AsyncSession, user_id: UUID) -> int:
    total = await session.scalar(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(LedgerEntry.user_id == user_id)
    )
    return int(total or 0)

async def ledger_entries(session: AsyncSession, user_id: UUID, limit: int = 50) -> list[LedgerEntry]:
    return (await session.execute(
        select(LedgerEntry)
        .where(LedgerEntry.user_id == user_id)
        .order_by(LedgerEntry.created_at.desc())
        .limit(limit)
    )).scalars().all()

async def _advisory_lock_ledger(session: AsyncSession, user_id: UUID):
    """Prevent double-spend races across concurrent requests."""
    await advisory_xact_lock(session, f"ledger:{user_id}")

async def credit(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    type: str,
    description: str,
    related_id: UUID | None = None,
) -> LedgerEntry:
    """Append a positive movement. Caller owns the transaction."""
    if amount <= 0:
        raise ValueError("amount must be > 0")
    if type not in CREDIT_TYPES:
        raise ValueError(f"{type} is not a credit type")
    e = LedgerEntry(user_id=user_id, amount=int(amount), type=type, description=description, related_id=related_id)
    session.add(e)
    await session.flush()
    return e

async def debit(
    session: AsyncSession,
    *,
    user_id: UUID,
    amount: int,
    type: str,
    description: str,
    related_id: UUID | None = None,
) -> LedgerEntry:
    """
    Balance check and debit under a per-user lock held until the transaction ends.
    Raises InsufficientFundsError if the balance is too low.
    """
    if amount <= 0:
        raise ValueError("amount must be > 0")
    if type not in DEBIT_TYPES:
        raise ValueError(f"{type} is not a debit type")

    await _advisory_lock_ledger(session, user_id)

    bal = await ledger_balance(session, user_id)
    if bal < amount:
        raise InsufficientFundsError(f"Insufficient credits: need {amount}, have {bal}")

    e = LedgerEntry(user_id=user_id, amount=-int(amount), type=type, description=description, related_id=related_id)
    session.add(e)
    await session.flush()
    return e

async def payout_recorded(session: AsyncSession, related_id: UUID) -> bool:
    """True once any payout (winnings, bonus or refund) references this challenge."""
    return bool(await session.scalar(
        select(exists().where(LedgerEntry.related_id == related_id, LedgerEntry.type == "payout"))
    ))
