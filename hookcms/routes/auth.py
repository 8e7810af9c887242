"""
Authentication Routes

Login, logout, refresh-token rotation, registration and password reset.
Everything except logout is public and rate limited.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.auth import get_bearer_token
from hookcms.config import settings
from hookcms.database import get_db
from hookcms.exceptions import CMSError, InvalidTokenError
from hookcms.middleware.rate_limit import limiter
from hookcms.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ValidateResetTokenRequest,
)
from hookcms.services.auth_service import AuthService
from hookcms.services.email_service import EmailService
from hookcms.services.password_reset_service import PasswordResetService

router = APIRouter(tags=["Authentication"])
logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If this email exists in our system, a password reset link will be sent."


def _request_origin(request: Request) -> str | None:
    origin = request.headers.get("origin")
    if origin:
        return origin
    referer = request.headers.get("referer")
    if referer:
        return "/".join(referer.split("/")[:3])
    return None


@router.post("/login")
@limiter.limit(settings.auth_rate_limit)
async def login(request: Request, credentials: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Exchange email and password for an access/refresh token pair."""
    return await AuthService(db).login(credentials.email, credentials.password)


@router.post("/logout", response_model=MessageResponse)
async def logout(token: str = Depends(get_bearer_token), db: AsyncSession = Depends(get_db)):
    """Revoke the current access token and every refresh token of its user."""
    await AuthService(db).logout(token)
    return MessageResponse(message="Logged out successfully")


@router.post("/refresh")
@limiter.limit(settings.auth_rate_limit)
async def refresh(request: Request, body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Rotate a refresh token: the presented token is consumed and a new pair issued."""
    return await AuthService(db).refresh(body.refresh_token)


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.auth_rate_limit)
async def register(request: Request, body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    user, tokens = await AuthService(db).register(
        body.email, body.password, locale=body.locale, username=body.username
    )

    try:
        await EmailService(db).send_welcome_email(user.email, user.username)
    except CMSError as e:
        logger.warning("Welcome email for user %s not sent: %s", user.id, e.message)

    return tokens


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit("3/hour")
async def forgot_password(request: Request, body: ForgotPasswordRequest, db: AsyncSession = Depends(get_db)):
    """
    Request a password reset link.

    The response is the same whether or not the email exists.
    """
    try:
        user, token = await PasswordResetService.create_reset_token(db, body.email)
        await EmailService(db).send_password_reset_email(
            user.email, token, username=user.username, origin=body.origin or _request_origin(request)
        )
    except CMSError as e:
        logger.info("Password reset not sent for %s: %s", body.email, e.message)

    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(settings.auth_rate_limit)
async def reset_password(request: Request, body: ResetPasswordRequest, db: AsyncSession = Depends(get_db)):
    await PasswordResetService.reset_password(db, body.token, body.password)
    return MessageResponse(message="Password has been reset successfully")


@router.post("/validate-reset-token")
async def validate_reset_token(body: ValidateResetTokenRequest, db: AsyncSession = Depends(get_db)):
    try:
        await PasswordResetService.validate_reset_token(db, body.token)
    except InvalidTokenError as e:
        e.details = {**(e.details or {}), "valid": False}
        raise
    return {"valid": True}
