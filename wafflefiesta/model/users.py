from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.security import check_password_hash, generate_password_hash

from ..errors import DuplicateError, ValidationError
from ..helpers import now_ts
from ..infra.sql import Gated
from .orm import AdminUser, ROLE_ADMIN, UserRole

logger = logging.getLogger(__name__)


class UserStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def create_admin(self, email: str, password: str) -> AdminUser:
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationError("Email and password are required")
        user = AdminUser(
            id=uuid.uuid4().hex,
            email=email,
            password_hash=generate_password_hash(password),
            created_at=now_ts(),
        )
        try:
            async with self.gated():
                async with self.db.begin():
                    self.db.add(user)
                    await self.db.flush()
                    self.db.add(UserRole(user_id=user.id, role=ROLE_ADMIN))
        except IntegrityError:
            raise DuplicateError(f"User {email} already exists")
        logger.info("created admin user %s", email)
        return user

    async def authenticate(
        self, email: str, password: str
    ) -> Optional[AdminUser]:
        if not isinstance(email, (str, type(None))) or \
                not isinstance(password, (str, type(None))):
            raise ValidationError("Email and password must be text")
        email = (email or "").strip().lower()
        async with self.gated():
            async with self.db.begin():
                user = (await self.db.execute(
                    select(AdminUser).where(AdminUser.email == email)
                )).scalars().first()
        if user is None or not check_password_hash(
                user.password_hash, password or ""):
            return None
        return user

    async def has_role(self, user_id: str, role: str = ROLE_ADMIN) -> bool:
        async with self.gated():
            async with self.db.begin():
                row = (await self.db.execute(
                    select(UserRole.id).where(
                        UserRole.user_id == user_id, UserRole.role == role,
                    )
                )).first()
        return row is not None

    async def revoke_admin(self, email: str) -> bool:
        email = (email or "").strip().lower()
        async with self.gated():
            async with self.db.begin():
                rows = (await self.db.execute(
                    select(UserRole)
                    .join(AdminUser, AdminUser.id == UserRole.user_id)
                    .where(
                        AdminUser.email == email, UserRole.role == ROLE_ADMIN,
                    )
                )).scalars().all()
                for r in rows:
                    await self.db.delete(r)
        if rows:
            logger.info("revoked admin role from %s", email)
        return bool(rows)
