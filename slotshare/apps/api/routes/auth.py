from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from slotshare.apps.api.deps import get_app_settings, get_database, get_db
from slotshare.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from slotshare.apps.api.response import CamelModel, SuccessEnvelope, success_response
from slotshare.apps.api.schemas import UserOut, user_out
from slotshare.core.config import Settings
from slotshare.core.errors import ConflictError
from slotshare.domain.state import UserRole
from slotshare.persistence.db import Database
from slotshare.persistence.repos import users as users_repo
from slotshare.services.auth.passwords import hash_password, verify_password
from slotshare.services.auth.tokens import issue_access_token
from slotshare.services.subscriptions import validate_email


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class RegisterBody(CamelModel):
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=6, max_length=128)
    name: str | None = Field(default=None, max_length=100)


class LoginBody(CamelModel):
    email: str = Field(min_length=1, max_length=254)
    password: str = Field(min_length=1, max_length=128)


class AuthOut(CamelModel):
    user: UserOut
    access_token: str


@router.post("/register", response_model=SuccessEnvelope[AuthOut], status_code=201)
async def register(
    request: Request,
    payload: RegisterBody,
    database: Database = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    validate_email(payload.email)
    password_hash = await asyncio.to_thread(hash_password, payload.password, rounds=settings.bcrypt_rounds)
    async with database.transaction() as session:
        if await users_repo.get_user_by_email(session, payload.email) is not None:
            raise ConflictError("A user with this email already exists")
        user = await users_repo.create_user(
            session,
            user_id=uuid4().hex,
            email=payload.email,
            password_hash=password_hash,
            role=UserRole.USER.value,
            name=payload.name,
        )
    logger.info("user_registered user_id=%s", user.id)
    token = issue_access_token(user_id=user.id, role=user.role, settings=settings)
    data = AuthOut(user=user_out(user), access_token=token)
    return success_response(request=request, data=data, message="User registered successfully")


@router.post("/login", response_model=SuccessEnvelope[AuthOut])
async def login(
    request: Request,
    payload: LoginBody,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> dict:
    user = await users_repo.get_user_by_email(db, payload.email)
    valid = user is not None and user.is_active and await asyncio.to_thread(
        verify_password, payload.password, user.password_hash
    )
    if user is None or not valid:
        # Same response for unknown email and wrong password.
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "Invalid email or password"},
        )
    token = issue_access_token(user_id=user.id, role=user.role, settings=settings)
    data = AuthOut(user=user_out(user), access_token=token)
    return success_response(request=request, data=data, message="Login successful")
