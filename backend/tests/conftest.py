from __future__ import annotations
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from betpool.config import Settings, get_settings
from betpool.db import Base, get_session
from betpool.main import app
from betpool.models.challenge import Challenge
import betpool.models.vote  # noqa: F401  register tables
import betpool.models.ledger  # noqa: F401
from betpool.schemas.auth import Caller
from betpool.security import make_access_token
from betpool.services import ledger
from betpool.services.challenges import place_bet, submit_proof

NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)
DEADLINE = NOW + timedelta(hours=1)

@pytest.fixture
def cfg() -> Settings:
    return Settings(
        creator_bonus_rate=Decimal("0.10"),
        min_group_bet=1,
        min_global_bet=20,
        proof_submission_hours=3,
        voting_duration_hours=2,
    )

@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'betpool.db'}", connect_args={"timeout": 30})

    # Let SQLAlchemy own BEGIN so SAVEPOINTs behave like on PostgreSQL.
    # IMMEDIATE takes the write lock up front, so concurrent sessions queue
    # behind each other instead of failing on a stale snapshot.
    @event.listens_for(eng.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(eng.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()

@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)

@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s

@pytest_asyncio.fixture
async def client(session_factory, cfg):
    async def _get_session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_settings] = lambda: cfg
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

@pytest.fixture
def make_caller():
    def _make() -> Caller:
        return Caller(user_id=uuid.uuid4())
    return _make

@pytest.fixture
def auth_headers():
    def _headers(caller: Caller) -> dict:
        return {"Authorization": f"Bearer {make_access_token(str(caller.user_id))}"}
    return _headers

@pytest.fixture
def fund(session_factory):
    """Grant reward credits so a user can bet."""
    async def _fund(user_id: uuid.UUID, amount: int) -> None:
        async with session_factory() as s:
            await ledger.credit(s, user_id=user_id, amount=amount, type="reward", description="Daily login reward")
            await s.commit()
    return _fund

@pytest.fixture
def new_challenge(session_factory):
    """Insert a challenge row directly, so deadlines can sit in the past."""
    async def _new(creator_id: uuid.UUID, *, deadline: datetime | None = None, minimum_bet: int = 1, **kw) -> Challenge:
        group_id = kw.pop("group_id", None)
        is_global = kw.pop("is_global", False)
        if not is_global and group_id is None:
            group_id = uuid.uuid4()
        async with session_factory() as s:
            ch = Challenge(
                creator_id=creator_id,
                title=kw.pop("title", "Run 5k before Friday"),
                description=kw.pop("description", None),
                minimum_bet=minimum_bet,
                deadline=deadline or DEADLINE,
                is_global=is_global,
                group_id=group_id,
                status="active",
                total_yes_bets=0,
                total_no_bets=0,
                completion_votes={"yes": 0, "no": 0},
                **kw,
            )
            s.add(ch)
            await s.commit()
            await s.refresh(ch)
            return ch
    return _new

@pytest.fixture
def place(session_factory, fund, cfg):
    """Fund a caller with exactly the stake and place the bet an hour before the deadline."""
    async def _place(ch: Challenge, caller: Caller, side: str, amount: int):
        await fund(caller.user_id, amount)
        async with session_factory() as s:
            return await place_bet(s, caller, ch.id, side, amount, now=ch.deadline - timedelta(hours=1), cfg=cfg)
    return _place

@pytest.fixture
def prove(session_factory, cfg):
    """Submit proof one hour after the deadline; voting then runs for cfg.voting_duration_hours."""
    async def _prove(ch: Challenge) -> Challenge:
        async with session_factory() as s:
            caller = Caller(user_id=ch.creator_id)
            return await submit_proof(s, caller, ch.id, "proofs/run.jpg", "Strava screenshot", now=ch.deadline + timedelta(hours=1), cfg=cfg)
    return _prove
