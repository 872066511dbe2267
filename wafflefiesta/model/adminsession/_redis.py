from __future__ import annotations
from typing import Optional
import secrets
import redis.asyncio as redis


# ---- keys
def k_sess(token: str) -> str: return f"adminsess:{token}"


class AdminSessionStore:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def create(self, user_id: str) -> str:
        token = secrets.token_urlsafe(32)
        await self.r.set(k_sess(token), user_id, ex=self.ttl)
        return token

    async def get(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        # decode_responses=True on the client, so this is already a str
        return await self.r.get(k_sess(token))

    async def revoke(self, token: Optional[str]) -> None:
        if token:
            await self.r.delete(k_sess(token))
