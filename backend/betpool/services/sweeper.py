from __future__ import annotations
from datetime import datetime, timedelta
from typing import Literal
from uuid import UUID
from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from betpool.config import Settings, settings as default_settings
from betpool.db import store_errors, utcnow
from betpool.models.challenge import Challenge
from betpool.schemas.challenge import FinalizeOutcome, SweepReport
from betpool.services import challenges as challenge_service
from betpool.services.phases import challenge_phase

log = structlog.get_logger()

ScopeKind = Literal["all", "group", "global", "user"]

# Sweep policy: every route that lists challenges calls reconcile_all() for the
# scope it is about to read, and the single-challenge read calls reconcile().
# There is no scheduler to rely on; jobs/reconcile_challenges.py runs the same
# sweep for deployments that want one.

async def reconcile(
    session: AsyncSession,
    challenge_id: UUID,
    *,
    now: datetime | None = None,
    cfg: Settings = default_settings,
) -> FinalizeOutcome:
    """Drive one challenge through any clock-based transition it has missed. Safe to call redundantly."""
    now = now or utcnow()
    with store_errors():
        ch = await challenge_service.get_challenge(session, challenge_id, refresh=True)
        phase = challenge_phase(ch, now, cfg.proof_submission_hours)
        if phase == "voting_closed":
            return await challenge_service.finalize(session, ch.id, now=now, cfg=cfg)
        if phase == "expired":
            return await challenge_service.expire(session, ch.id, now=now, cfg=cfg)
    return FinalizeOutcome(
        challenge_id=ch.id,
        action="noop",
        status=ch.status,
        is_completed=ch.is_completed,
        completion_votes=ch.completion_votes or {"yes": 0, "no": 0},
        settlement_error=ch.settlement_error,
    )

def _candidates(now: datetime, cfg: Settings):
    expired_before = now - timedelta(hours=cfg.proof_submission_hours)
    return or_(
        and_(Challenge.status == "voting", Challenge.voting_ends_at <= now),
        and_(
            Challenge.status == "active",
            Challenge.proof_submitted_at.is_(None),
            Challenge.deadline <= expired_before,
        ),
    )

async def reconcile_all(
    session: AsyncSession,
    *,
    scope: ScopeKind = "all",
    scope_id: UUID | None = None,
    now: datetime | None = None,
    cfg: Settings = default_settings,
    limit: int = 200,
) -> SweepReport:
    """
    Reconcile every overdue challenge in a scope, one transaction per row.
    A failing challenge is logged and skipped; the rest are still swept.

    scope: "group" (scope_id = group id), "global", "user" (scope_id = user id,
    challenges they created or bet on) or "all".
    """
    now = now or utcnow()
    q = select(Challenge.id).where(_candidates(now, cfg))
    if scope == "group":
        q = q.where(Challenge.group_id == scope_id)
    elif scope == "global":
        q = q.where(Challenge.is_global.is_(True))
    elif scope == "user":
        q = q.where(challenge_service.involving_user(scope_id))
    with store_errors():
        ids = (await session.execute(q.order_by(Challenge.deadline.asc()).limit(limit))).scalars().all()
        # Release the read transaction before per-row work
        await session.commit()

    report = SweepReport(checked=len(ids))
    for cid in ids:
        try:
            outcome = await reconcile(session, cid, now=now, cfg=cfg)
        except Exception as e:
            await session.rollback()
            log.error("sweep_failed", challenge_id=str(cid), error=str(e), error_type=type(e).__name__)
            report.failed.append(cid)
            continue
        if outcome.action == "finalized":
            report.finalized.append(cid)
        elif outcome.action == "expired":
            report.expired.append(cid)

    if ids:
        log.info(
            "sweep_done",
            scope=scope,
            checked=report.checked,
            finalized=len(report.finalized),
            expired=len(report.expired),
            failed=len(report.failed),
        )
    return report
