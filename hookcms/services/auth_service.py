"""
Auth Service

JWT access/refresh tokens (python-jose) with refresh-token rotation.
Refresh tokens and revoked access tokens are stored as sha256 hashes only.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.config import settings
from hookcms.exceptions import (
    DuplicateResourceError,
    InvalidCredentialsError,
    InvalidTokenError,
    RegistrationDisabledError,
    ValidationError,
)
from hookcms.models.auth import RefreshToken, RevokedToken
from hookcms.models.user import Role, User
from hookcms.services.guard import UserGuard
from hookcms.services.options_service import OptionsService
from hookcms.utils.dates import utcnow
from hookcms.utils.password import hash_password, validate_password_strength, verify_password

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _naive_utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


def encode_token(payload: dict[str, Any], secret: str, expires_delta: timedelta) -> tuple[str, int]:
    """Sign ``payload`` and return ``(token, exp)`` with ``exp`` in epoch seconds."""
    now = int(time.time())
    exp = now + int(expires_delta.total_seconds())
    claims = {**payload, "iat": now, "exp": exp, "jti": uuid.uuid4().hex}
    return jwt.encode(claims, secret, algorithm=settings.jwt_algorithm), exp


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug("Access token rejected: %s", e)
        raise InvalidTokenError() from e


def decode_refresh_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_refresh_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise InvalidTokenError("Invalid or expired refresh token") from e


class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def purge_expired_tokens(self) -> None:
        now = utcnow()
        await self.db.execute(delete(RefreshToken).where(RefreshToken.expires_at < now))
        await self.db.execute(delete(RevokedToken).where(RevokedToken.expires_at < now))

    async def build_payload(self, user: User) -> dict[str, Any]:
        capabilities = await UserGuard(self.db, user).get_capabilities()
        return {
            "sub": str(user.id),
            "email": user.email,
            "locale": user.locale,
            "roles": user.role_slugs,
            "capabilities": sorted(capabilities),
        }

    async def issue_tokens(self, user: User) -> dict[str, Any]:
        payload = await self.build_payload(user)
        access_token, access_exp = encode_token(
            payload, settings.jwt_secret, timedelta(minutes=settings.access_token_expire_minutes)
        )
        refresh_token, refresh_exp = encode_token(
            payload, settings.jwt_refresh_secret, timedelta(days=settings.refresh_token_expire_days)
        )

        self.db.add(
            RefreshToken(user_id=user.id, token_hash=hash_token(refresh_token), expires_at=_naive_utc(refresh_exp))
        )
        await self.db.commit()

        return {
            "accessToken": access_token,
            "refreshToken": refresh_token,
            "expiresIn": max(0, access_exp - int(time.time())),
            "expiresAt": datetime.fromtimestamp(access_exp, tz=timezone.utc).isoformat(),
        }

    # ── Flows ─────────────────────────────────────────────────────────────────

    async def login(self, email: str, password: str) -> dict[str, Any]:
        await self.purge_expired_tokens()
        result = await self.db.execute(select(User).where(User.email == email, User.deleted_at.is_(None)))
        user = result.scalar_one_or_none()
        if user is None or not verify_password(password, user.password):
            logger.warning("Failed login for %s", email)
            raise InvalidCredentialsError()

        logger.info("User %s logged in", user.id)
        return await self.issue_tokens(user)

    async def refresh(self, refresh_token: str | None) -> dict[str, Any]:
        if not refresh_token:
            raise ValidationError("Missing refresh token", field="refreshToken")

        await self.purge_expired_tokens()
        result = await self.db.execute(select(RefreshToken).where(RefreshToken.token_hash == hash_token(refresh_token)))
        record = result.scalar_one_or_none()
        if record is None or record.expires_at < utcnow():
            raise InvalidTokenError("Invalid or expired refresh token")

        payload = decode_refresh_token(refresh_token)
        user = await self.db.get(User, int(payload["sub"]))
        if user is None or user.deleted_at is not None:
            raise InvalidTokenError("User not found")

        await self.db.delete(record)
        return await self.issue_tokens(user)

    async def logout(self, access_token: str) -> None:
        payload = decode_access_token(access_token)
        await self.purge_expired_tokens()

        token_hash = hash_token(access_token)
        existing = await self.db.execute(select(RevokedToken.id).where(RevokedToken.token_hash == token_hash))
        if existing.first() is None:
            self.db.add(RevokedToken(token_hash=token_hash, expires_at=_naive_utc(int(payload["exp"]))))
        await self.db.execute(delete(RefreshToken).where(RefreshToken.user_id == int(payload["sub"])))
        await self.db.commit()
        logger.info("User %s logged out", payload["sub"])

    async def is_token_revoked(self, access_token: str) -> bool:
        result = await self.db.execute(select(RevokedToken.id).where(RevokedToken.token_hash == hash_token(access_token)))
        return result.first() is not None

    async def registrations_allowed(self) -> bool:
        value = await OptionsService.get_option(self.db, "allow_registrations")
        if value is None or value == "":
            return settings.allow_registrations
        return value is True or str(value).lower() in ("true", "1", "yes")

    async def assign_default_roles(self, user: User) -> None:
        if not settings.default_roles:
            return
        result = await self.db.execute(select(Role).where(Role.slug.in_(settings.default_roles)))
        user.roles = list(result.scalars().all())

    async def register(
        self, email: str, password: str, locale: str | None = None, username: str | None = None
    ) -> tuple[User, dict[str, Any]]:
        await self.purge_expired_tokens()
        if not await self.registrations_allowed():
            raise RegistrationDisabledError("Automatic registration of new users is disabled")

        errors = validate_password_strength(password)
        if errors:
            raise ValidationError(errors[0], field="password", details={"errors": errors})

        existing = await self.db.execute(select(User.id).where(User.email == email))
        if existing.first() is not None:
            raise DuplicateResourceError("User", "email", email)

        user = User(
            email=email, username=username, password=hash_password(password), locale=locale or "en_US", capabilities=[]
        )
        await self.assign_default_roles(user)
        self.db.add(user)
        await self.db.flush()

        logger.info("Registered user %s", user.id)
        return user, await self.issue_tokens(user)
