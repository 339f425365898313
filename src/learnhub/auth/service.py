"""
Authentication business logic.

Handles user creation, credential checks, account lockout, and refresh tokens.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select, update

from learnhub.auth.password import (
    PasswordStrengthError,
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from learnhub.config import get_settings
from learnhub.db.models import PaymentMethod, RefreshToken, User
from learnhub.errors import (
    AccountLockedError,
    AuthenticationError,
    ConflictError,
    PermissionDeniedError,
    ValidationFailedError,
)
from learnhub.subscriptions.service import activate_subscription, ensure_free_plan

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    """Fetch a user by email (case-insensitive)."""
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower().strip()))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


async def register_user(db: AsyncSession, name: str, email: str, password: str) -> User:
    """
    Create an account and give it an active Free subscription.

    Both rows are flushed in the caller's transaction so a failure leaves
    neither behind.

    Raises:
        ValidationFailedError: blank name or weak password.
        ConflictError: email already registered.
    """
    name = name.strip()
    if not name:
        msg = "Name is required"
        raise ValidationFailedError(msg)
    try:
        validate_password_strength(password)
    except PasswordStrengthError as e:
        raise ValidationFailedError(str(e)) from e

    if await get_user_by_email(db, email) is not None:
        msg = "Email already registered"
        raise ConflictError(msg)

    user = User(
        name=name,
        email=email.lower().strip(),
        password_hash=hash_password(password),
        created_at=datetime.now(UTC),
        last_login=datetime.now(UTC),
        login_count=1,
    )
    db.add(user)
    await db.flush()

    free_plan = await ensure_free_plan(db)
    await activate_subscription(db, user.id, free_plan, payment_method=PaymentMethod.FREE.value)

    logger.info("user_created", user_id=user.id, email=user.email)
    return user


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


async def authenticate_user(db: AsyncSession, email: str, password: str) -> User:
    """
    Authenticate a user with email + password.

    Failed attempts are counted on the user row; reaching the configured
    threshold locks the account for the configured duration. The caller must
    commit even when this raises so the counter persists.

    Raises:
        AuthenticationError: unknown email or wrong password.
        AccountLockedError: too many failed attempts.
        PermissionDeniedError: account deactivated.
    """
    settings = get_settings()
    now = datetime.now(UTC)

    user = await get_user_by_email(db, email)
    if user is None:
        msg = "Invalid email or password"
        raise AuthenticationError(msg)

    if user.locked_until is not None:
        if user.locked_until > now:
            msg = "Account temporarily locked. Try again later."
            raise AccountLockedError(msg)
        # Lock expired: start counting afresh
        user.locked_until = None
        user.failed_login_attempts = 0

    if not user.is_active:
        msg = "Account is deactivated"
        raise PermissionDeniedError(msg)

    if not verify_password(password, user.password_hash):
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        if user.failed_login_attempts >= settings.account_lockout_threshold:
            user.locked_until = now + timedelta(minutes=settings.account_lockout_duration_minutes)
            logger.warning("account_locked", user_id=user.id, attempts=user.failed_login_attempts)
        await db.flush()
        msg = "Invalid email or password"
        raise AuthenticationError(msg)

    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login = now
    user.login_count = (user.login_count or 0) + 1

    if check_needs_rehash(user.password_hash):
        user.password_hash = hash_password(password)
        logger.info("password_rehashed", user_id=user.id)

    await db.flush()
    return user


# ---------------------------------------------------------------------------
# Password change
# ---------------------------------------------------------------------------


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    """
    Replace the user's password and revoke every refresh token.

    Raises:
        ValidationFailedError: wrong current password or weak new password.
    """
    if not current_password or not new_password:
        msg = "Current password and new password are required"
        raise ValidationFailedError(msg)
    if not verify_password(current_password, user.password_hash):
        msg = "Current password is incorrect"
        raise ValidationFailedError(msg)
    try:
        validate_password_strength(new_password)
    except PasswordStrengthError as e:
        raise ValidationFailedError(str(e)) from e

    user.password_hash = hash_password(new_password)
    await revoke_all_tokens(db, user.id)
    await db.flush()
    logger.info("password_changed", user_id=user.id)


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


async def store_refresh_token(
    db: AsyncSession,
    user_id: int,
    token_id: str,
    token_hash: str,
    expires_at: datetime,
) -> RefreshToken:
    """Store a refresh token hash in the database."""
    token = RefreshToken(
        id=token_id,
        user_id=user_id,
        token_hash=token_hash,
        issued_at=datetime.now(UTC),
        expires_at=expires_at,
    )
    db.add(token)
    await db.flush()
    return token


async def get_refresh_token(db: AsyncSession, token_id: str) -> RefreshToken | None:
    """Look up a refresh token by its JTI."""
    result = await db.execute(select(RefreshToken).where(RefreshToken.id == token_id))
    return result.scalar_one_or_none()


async def rotate_refresh_token(
    db: AsyncSession,
    old_token: RefreshToken,
    new_token_id: str,
    new_token_hash: str,
    new_expires_at: datetime,
) -> RefreshToken:
    """Revoke old token and create a new one (rotation)."""
    old_token.is_revoked = True
    old_token.revoked_at = datetime.now(UTC)
    old_token.replaced_by = new_token_id

    return await store_refresh_token(
        db,
        user_id=old_token.user_id,
        token_id=new_token_id,
        token_hash=new_token_hash,
        expires_at=new_expires_at,
    )


async def revoke_refresh_token(db: AsyncSession, token_id: str) -> bool:
    """Revoke a specific refresh token. Returns True if found."""
    token = await get_refresh_token(db, token_id)
    if token is None:
        return False
    token.is_revoked = True
    token.revoked_at = datetime.now(UTC)
    await db.flush()
    return True


async def revoke_all_tokens(db: AsyncSession, user_id: int) -> int:
    """Revoke all refresh tokens for a user. Returns count revoked."""
    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=datetime.now(UTC))
    )
    await db.flush()
    return result.rowcount  # type: ignore[attr-defined, no-any-return]
