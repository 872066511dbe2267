import os
import asyncio
from typing import AsyncContextManager, Callable, Optional
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
)
from contextlib import asynccontextmanager

Gated = Callable[[], AsyncContextManager[None]]

# applied to every new SQLite connection; the coupon table sees short bursts
# of concurrent writes from the stall and the online checkout
SQLITE_PRAGMAS = (
    "journal_mode=WAL",
    "busy_timeout=5000",
    "synchronous=NORMAL",
)

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    # hosted providers hand out postgres:// URLs
    ("postgres://", "postgresql+asyncpg://"),
)


def normalize_async_url(url: str) -> str:
    for plain, driver in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _pool_options(db_url: str) -> dict:
    if not db_url.startswith("postgresql+asyncpg://"):
        return {}
    return {
        "pool_size": _env_int("DB_POOL_SIZE", 10),
        "max_overflow": _env_int("DB_MAX_OVERFLOW", 10),
        "pool_timeout": _env_int("DB_POOL_TIMEOUT", 30),
    }


def _install_sqlite_pragmas(sync_engine: Engine) -> None:
    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        for pragma in SQLITE_PRAGMAS:
            cur.execute(f"PRAGMA {pragma};")
        cur.close()


# caps concurrent DB work at the pool size so requests queue here instead of
# timing out inside the pool
@asynccontextmanager
async def _gated(sem: asyncio.Semaphore):
    await sem.acquire()
    try:
        yield
    finally:
        sem.release()


def make_async_engine(
    database_url: str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession], Gated]:
    """Engine, session factory and DB gate for one database URL."""
    db_url = normalize_async_url(database_url)
    pool = _pool_options(db_url)
    engine = create_async_engine(
        db_url, future=True, pool_pre_ping=True, **pool
    )
    if db_url.startswith("sqlite+aiosqlite://"):
        _install_sqlite_pragmas(engine.sync_engine)

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    pool_size: Optional[int] = pool.get("pool_size")
    db_gate = asyncio.Semaphore(
        max(1, _env_int("DB_GATE_LIMIT", pool_size or 10))
    )

    def gated():
        return _gated(db_gate)

    return engine, SessionAsync, gated
