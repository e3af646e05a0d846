from __future__ import annotations

import argparse
import asyncio
import os
import sys
from uuid import uuid4

from slotshare.core.config import get_settings
from slotshare.domain.state import UserRole
from slotshare.persistence.db import Database
from slotshare.persistence.repos import users as users_repo
from slotshare.services.auth.passwords import hash_password


def _build_parser() -> argparse.ArgumentParser:
    # Fall back to environment variables so deploy pipelines need no flags.
    parser = argparse.ArgumentParser(description="Create or promote a platform admin user")
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"), help="Admin email")
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"), help="Admin password")
    parser.add_argument("--name", default=os.environ.get("ADMIN_NAME", "SlotShare Admin"), help="Display name")
    return parser


async def _create_admin(args: argparse.Namespace) -> int:
    if not args.email or not args.password:
        raise ValueError("--email and --password (or ADMIN_EMAIL/ADMIN_PASSWORD) are required")
    if len(args.password) < 6:
        raise ValueError("Password must be at least 6 characters long")
    settings = get_settings()
    database = Database(settings=settings)
    try:
        password_hash = hash_password(args.password, rounds=settings.bcrypt_rounds)
        async with database.transaction() as session:
            user = await users_repo.get_user_by_email(session, args.email)
            if user is None:
                user = await users_repo.create_user(
                    session,
                    user_id=uuid4().hex,
                    email=args.email,
                    password_hash=password_hash,
                    role=UserRole.ADMIN.value,
                    name=args.name,
                )
                action = "created"
            else:
                # Existing accounts are promoted; their password is reset to the given one.
                user.role = UserRole.ADMIN.value
                user.password_hash = password_hash
                user.is_active = True
                action = "promoted"
    finally:
        await database.dispose()

    print(f"Admin user {action}:")
    print(f"  user_id: {user.id}")
    print(f"  email: {user.email}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_admin(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_admin failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
