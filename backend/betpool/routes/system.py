from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from datetime import datetime, timezone
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from betpool.config import Settings, get_settings, settings
from betpool.db import get_session, store_errors

router = APIRouter(tags=["system"])

@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "env": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
    }

@router.get("/ready")
async def ready(session: AsyncSession = Depends(get_session)):
    """503 (store_unavailable) when the database cannot be reached."""
    with store_errors():
        await session.execute(text("SELECT 1"))
    return {"status": "ready"}

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
    }

@router.get("/rules")
async def rules(cfg: Settings = Depends(get_settings)):
    """Engine constants clients need to render bet forms and countdowns."""
    return {
        "creator_bonus_rate": str(cfg.creator_bonus_rate),
        "min_group_bet": cfg.min_group_bet,
        "min_global_bet": cfg.min_global_bet,
        "proof_submission_hours": cfg.proof_submission_hours,
        "voting_duration_hours": cfg.voting_duration_hours,
        "max_daily_tasks": cfg.max_daily_tasks,
    }
