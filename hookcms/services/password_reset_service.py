"""
Password Reset Service

Reset tokens are random hex strings. Only a bcrypt hash is stored on the
user, together with a short sha256 prefix used to find candidate rows
without scanning every user.
"""

import hashlib
import logging
import secrets
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.exceptions import InvalidTokenError, ValidationError
from hookcms.models.user import User
from hookcms.utils.dates import utcnow
from hookcms.utils.password import hash_password, validate_password_strength, verify_password

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_MINUTES = 60
PREFIX_LENGTH = 16
GENERIC_MESSAGE = "If this email exists, a reset link has been sent"
INVALID_MESSAGE = "Invalid or expired reset token"


def token_prefix(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()[:PREFIX_LENGTH]


class PasswordResetService:
    """Service for handling password reset operations"""

    @staticmethod
    def generate_reset_token() -> str:
        return secrets.token_hex(32)

    @staticmethod
    async def create_reset_token(db: AsyncSession, email: str) -> tuple[User, str]:
        """
        Create a reset token for the user with ``email``.

        Returns:
            (user, token): the plain token, to be sent by email

        Raises:
            ValidationError: with a generic message when no such user exists
        """
        result = await db.execute(select(User).where(User.email == email, User.deleted_at.is_(None)))
        user = result.scalar_one_or_none()
        if user is None:
            raise ValidationError(GENERIC_MESSAGE)

        token = PasswordResetService.generate_reset_token()
        user.reset_token = hash_password(token)
        user.reset_token_prefix = token_prefix(token)
        user.reset_token_expires_at = utcnow() + timedelta(minutes=TOKEN_EXPIRY_MINUTES)
        await db.commit()

        logger.info("Password reset requested for user %s", user.id)
        return user, token

    @staticmethod
    async def validate_reset_token(db: AsyncSession, token: str) -> User:
        if not token:
            raise InvalidTokenError(INVALID_MESSAGE)

        result = await db.execute(select(User).where(User.reset_token_prefix == token_prefix(token)))
        now = utcnow()
        for user in result.scalars().all():
            if not verify_password(token, user.reset_token):
                continue
            if user.reset_token_expires_at is None or user.reset_token_expires_at < now:
                raise InvalidTokenError(INVALID_MESSAGE)
            return user

        raise InvalidTokenError(INVALID_MESSAGE)

    @staticmethod
    async def reset_password(db: AsyncSession, token: str, new_password: str) -> User:
        errors = validate_password_strength(new_password)
        if errors:
            raise ValidationError(errors[0], field="password", details={"errors": errors})

        user = await PasswordResetService.validate_reset_token(db, token)
        user.password = hash_password(new_password)
        user.reset_token = None
        user.reset_token_prefix = None
        user.reset_token_expires_at = None
        await db.commit()

        logger.info("Password reset completed for user %s", user.id)
        return user

    @staticmethod
    async def clear_expired_tokens(db: AsyncSession) -> int:
        result = await db.execute(
            update(User)
            .where(User.reset_token_expires_at.is_not(None), User.reset_token_expires_at < utcnow())
            .values(reset_token=None, reset_token_prefix=None, reset_token_expires_at=None)
        )
        await db.commit()
        return result.rowcount or 0
