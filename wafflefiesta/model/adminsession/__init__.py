import os
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ...infra.sql import Gated

BACKEND = os.getenv("ADMIN_SESSION_BACKEND", "redis").lower()  # 'redis'|'sql'

if BACKEND == "sql":
    from ._sql import AdminSessionStore as _AdminSessionStore
else:
    from ._redis import AdminSessionStore as _AdminSessionStore


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = 12 * 3600,
              gated: Gated = None):
    if BACKEND == "sql":
        if db is None:
            raise RuntimeError(
                "AdminSessionStore(sql) requires db=AsyncSession"
            )
        if gated is None:
            raise RuntimeError(
                "AdminSessionStore(sql) requires gated=Gated"
            )
        return _AdminSessionStore(db=db, ttl_seconds=ttl_seconds,
                                  gated=gated)
    else:
        if r is None:
            raise RuntimeError(
                "AdminSessionStore(redis) requires r=redis.Redis"
            )
        return _AdminSessionStore(r=r, ttl_seconds=ttl_seconds)


AdminSessionStore = _AdminSessionStore
__all__ = ["AdminSessionStore", "new_store", "BACKEND"]
