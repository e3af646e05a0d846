from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slotshare.domain.models import User


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def lock_user(session: AsyncSession, user_id: str) -> User | None:
    # Row lock serializes concurrent assignment attempts for the same user.
    # SQLite ignores FOR UPDATE; its BEGIN IMMEDIATE already serializes writers.
    result = await session.execute(select(User).where(User.id == user_id).with_for_update())
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    *,
    user_id: str,
    email: str,
    password_hash: str,
    role: str,
    name: str | None = None,
) -> User:
    user = User(
        id=user_id,
        email=email.strip().lower(),
        name=name,
        password_hash=password_hash,
        role=role,
        is_active=True,
    )
    session.add(user)
    return user
