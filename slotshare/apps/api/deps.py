from __future__ import annotations

from typing import AsyncGenerator, Awaitable, Callable

from fastapi import Depends, Header, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from slotshare.core.config import Settings
from slotshare.domain.state import normalize_role, role_allows
from slotshare.persistence.db import Database
from slotshare.persistence.repos import users as users_repo
from slotshare.services.auth.tokens import TokenError, decode_access_token
from slotshare.services.subscriptions import SubscriptionService


class Principal(BaseModel):
    # Capture the authenticated identity used for ownership checks and RBAC.
    user_id: str
    email: str
    role: str


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    # Use 403 for authenticated principals lacking permissions.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str:
    if not header_value:
        raise _auth_error("Missing or invalid bearer token")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_subscription_service(request: Request) -> SubscriptionService:
    return request.app.state.subscription_service


async def get_db(database: Database = Depends(get_database)) -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with database.session() as session:
        yield session


async def get_current_principal(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
    database: Database = Depends(get_database),
) -> Principal:
    token = _parse_bearer_token(authorization)
    try:
        claims = decode_access_token(token, settings=settings)
    except TokenError as exc:
        raise _auth_error(str(exc)) from exc
    # Reload the user so disabled accounts and role changes apply immediately.
    # The lookup session closes here so it holds no connection while the handler writes.
    async with database.session() as session:
        user = await users_repo.get_user(session, claims["sub"])
    if user is None or not user.is_active:
        raise _auth_error("User is not active")
    return Principal(user_id=user.id, email=user.email, role=normalize_role(user.role).value)


def require_role(minimum_role: str) -> Callable[..., Awaitable[Principal]]:
    # Enforce role-based access using the authenticated principal.
    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not role_allows(role=principal.role, minimum_role=minimum_role):
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return dependency
