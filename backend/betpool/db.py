from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime, timezone as dt_tz
from typing import AsyncGenerator, Iterator
from sqlalchemy import DateTime, text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator
from betpool.config import settings
from betpool.errors import StoreUnavailable

class Base(DeclarativeBase):
    pass

class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC (SQLite drops tzinfo)."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt_tz.utc)
        return value.astimezone(dt_tz.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt_tz.utc)
        return value.astimezone(dt_tz.utc)

def utcnow() -> datetime:
    return datetime.now(dt_tz.utc)

engine = create_async_engine(settings.database_url, future=True, echo=settings.sql_echo, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

async def advisory_xact_lock(session: AsyncSession, key: str) -> None:
    """Transaction-scoped lock on an arbitrary key (PostgreSQL only; other backends serialize writes themselves)."""
    if session.get_bind().dialect.name != "postgresql":
        return
    await session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:k))"), {"k": key})

@contextmanager
def store_errors() -> Iterator[None]:
    # Transient connectivity problems surface as StoreUnavailable
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailable(str(e.orig) if e.orig is not None else str(e)) from e
