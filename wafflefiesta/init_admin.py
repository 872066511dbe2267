"""
Seed or revoke dashboard admins.

  DATABASE_URL=sqlite:///./waffle.db wafflefiesta-admin create staff@example.com
  DATABASE_URL=sqlite:///./waffle.db wafflefiesta-admin revoke staff@example.com

The password is read from ADMIN_PASSWORD or prompted for.
"""
import argparse
import asyncio
import getpass
import os
import sys

from .config import database_url
from .errors import CouponError
from .infra.sql import make_async_engine
from .model.orm import Base
from .model.users import UserStore


async def run(command: str, email: str, password: str | None) -> int:
    engine, SessionAsync, gated = make_async_engine(database_url())
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with SessionAsync() as db:
            users = UserStore(db=db, gated=gated)
            if command == "create":
                user = await users.create_admin(email, password or "")
                print(f"✅ admin {user.email} created")
                return 0
            if await users.revoke_admin(email):
                print(f"✅ admin role revoked from {email}")
                return 0
            print(f"no admin role found for {email}", file=sys.stderr)
            return 1
    finally:
        await engine.dispose()


def main():
    ap = argparse.ArgumentParser(description="Manage dashboard admins")
    ap.add_argument("command", choices=["create", "revoke"])
    ap.add_argument("email")
    args = ap.parse_args()

    password = None
    if args.command == "create":
        password = os.environ.get("ADMIN_PASSWORD") or getpass.getpass()

    try:
        rc = asyncio.run(run(args.command, args.email, password))
    except CouponError as e:
        print(f"!! {e.message}", file=sys.stderr)
        rc = 1
    sys.exit(rc)


if __name__ == "__main__":
    main()
