"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt as pyjwt
import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.auth.jwt import create_access_token, create_refresh_token, verify_token
from learnhub.auth.schemas import (
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    SignupRequest,
    TokenResponse,
    UserResponse,
)
from learnhub.auth.service import (
    authenticate_user,
    get_refresh_token,
    get_user_by_id,
    hash_token,
    register_user,
    revoke_all_tokens,
    revoke_refresh_token,
    rotate_refresh_token,
    store_refresh_token,
)
from learnhub.config import get_settings
from learnhub.database import get_session
from learnhub.db.models import User
from learnhub.errors import AuthenticationError, ServiceError, raise_http

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


async def _issue_tokens(db: AsyncSession, user: User) -> TokenResponse:
    """Create access + refresh tokens and store the refresh token hash."""
    settings = get_settings()
    token_id = str(uuid.uuid4())
    access_token = create_access_token(user.id, user.email)
    refresh_token = create_refresh_token(user.id, user.email, token_id=token_id)

    await store_refresh_token(
        db,
        user_id=user.id,
        token_id=token_id,
        token_hash=hash_token(refresh_token),
        expires_at=datetime.now(UTC) + timedelta(days=settings.jwt_refresh_token_expire_days),
    )
    await db.commit()

    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/signup", response_model=TokenResponse, status_code=201)
async def signup(
    body: SignupRequest,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Register with name, email and password."""
    try:
        user = await register_user(db, name=body.name, email=body.email, password=body.password)
    except ServiceError as e:
        await db.rollback()
        raise_http(e)
    return await _issue_tokens(db, user)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Login with email + password."""
    try:
        user = await authenticate_user(db, body.email, body.password)
    except AuthenticationError as e:
        # Persist the failed-attempt counter
        await db.commit()
        raise_http(e)
    except ServiceError as e:
        raise_http(e)
    return await _issue_tokens(db, user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Rotate refresh token."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except pyjwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    jti = payload.get("jti")
    if not jti:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    old_token = await get_refresh_token(db, jti)
    if old_token is None or old_token.token_hash != hash_token(body.refresh_token):
        raise HTTPException(status_code=401, detail="Refresh token not found")
    if old_token.is_revoked:
        # Possible token reuse: revoke all tokens for this user
        await revoke_all_tokens(db, old_token.user_id)
        await db.commit()
        logger.warning("refresh_token_reuse", user_id=old_token.user_id, jti=jti)
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")

    user = await get_user_by_id(db, old_token.user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")

    settings = get_settings()
    new_token_id = str(uuid.uuid4())
    new_access = create_access_token(user.id, user.email)
    new_refresh = create_refresh_token(user.id, user.email, token_id=new_token_id)

    await rotate_refresh_token(
        db,
        old_token=old_token,
        new_token_id=new_token_id,
        new_token_hash=hash_token(new_refresh),
        new_expires_at=datetime.now(UTC) + timedelta(days=settings.jwt_refresh_token_expire_days),
    )
    await db.commit()

    return TokenResponse(
        access_token=new_access,
        refresh_token=new_refresh,
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/logout")
async def logout(
    body: LogoutRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Revoke a refresh token."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except pyjwt.InvalidTokenError:
        logger.info("logout_with_invalid_token")
    else:
        jti = payload.get("jti")
        if jti:
            await revoke_refresh_token(db, jti)
            await db.commit()

    return {"status": "logged_out"}


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)) -> UserResponse:
    """Return the authenticated user."""
    return UserResponse.model_validate(user)
