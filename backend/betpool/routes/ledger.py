from __future__ import annotations
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from betpool.auth_deps import get_caller
from betpool.config import settings
from betpool.db import get_session, store_errors
from betpool.schemas.auth import Caller
from betpool.schemas.ledger import LedgerEntryPublic, LedgerSnapshot
from betpool.services.ledger import ledger_balance, ledger_entries

router = APIRouter(tags=["ledger"])

@router.get("/ledger", response_model=LedgerSnapshot)
async def get_ledger(
    limit: int = Query(default=settings.ledger_history_limit, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    with store_errors():
        bal = await ledger_balance(session, caller.user_id)
        rows = await ledger_entries(session, caller.user_id, limit=limit)
    return LedgerSnapshot(
        user_id=caller.user_id,
        balance=bal,
        entries=[
            LedgerEntryPublic(
                id=r.id, amount=int(r.amount), type=r.type, description=r.description,
                related_id=r.related_id, created_at=r.created_at,
            ) for r in rows
        ],
    )
