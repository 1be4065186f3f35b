from __future__ import annotations
import asyncio
from rq import Queue
from redis import Redis
import structlog
from betpool.config import settings
from betpool.db import SessionLocal
from betpool.services.sweeper import reconcile_all

log = structlog.get_logger()

async def _run(limit: int) -> dict:
    async with SessionLocal() as session:
        report = await reconcile_all(session, scope="all", limit=limit)
    return report.model_dump(mode="json")

def reconcile_challenges(limit: int = 500) -> dict:
    # RQ entry point (sync); run the async sweep
    return asyncio.run(_run(limit))

def enqueue_sweep(redis_url: str | None = None, limit: int = 500):
    """Queue a sweep on the default queue; for cron/rq-scheduler driven deployments."""
    q = Queue("default", connection=Redis.from_url(redis_url or settings.redis_url))
    job = q.enqueue(reconcile_challenges, limit)
    log.info("sweep_enqueued", job_id=job.id)
    return job
