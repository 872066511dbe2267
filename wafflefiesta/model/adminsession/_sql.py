from __future__ import annotations
from typing import Optional
import secrets
import time
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, AsyncConnection

from ...infra.sql import Gated


SQL_CREATE_ADMIN_SESSIONS = r"""
CREATE TABLE IF NOT EXISTS admin_sessions (
  token      TEXT PRIMARY KEY,
  user_id    TEXT NOT NULL,
  created_at DOUBLE PRECISION NOT NULL,
  expires_at DOUBLE PRECISION NOT NULL
);
"""


async def create_schema(db_or_conn: AsyncSession | AsyncConnection):
    await db_or_conn.execute(text(SQL_CREATE_ADMIN_SESSIONS))


class AdminSessionStore:
    def __init__(
        self, *, db: AsyncSession, ttl_seconds: int, gated: Gated
    ) -> None:
        self.db = db
        self.ttl = ttl_seconds
        self.gated = gated

    async def create(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        now = time.time()
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(text("""
                  INSERT INTO admin_sessions(
                    token, user_id, created_at, expires_at
                  ) VALUES (:token, :user_id, :created_at, :expires_at)
                """), {
                    "token": token,
                    "user_id": user_id,
                    "created_at": now,
                    "expires_at": now + self.ttl,
                })
        return token

    async def get(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(text("""
                  SELECT user_id, expires_at FROM admin_sessions
                  WHERE token=:token
                """), {"token": token})).mappings().first()
                if row is None:
                    return None
                if float(row["expires_at"]) <= time.time():
                    # housekeeping: drop the expired row on sight
                    await self.db.execute(
                        text("DELETE FROM admin_sessions WHERE token=:token"),
                        {"token": token},
                    )
                    return None
                return row["user_id"]

    async def revoke(self, token: Optional[str]) -> None:
        if not token:
            return
        async with self.gated():
            async with self.db.begin():
                await self.db.execute(
                    text("DELETE FROM admin_sessions WHERE token=:token"),
                    {"token": token},
                )
