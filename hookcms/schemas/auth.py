"""
Authentication Schemas

Request and response models for login, registration, token refresh and
password reset.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email address")
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email address")
    password: str = Field(..., min_length=1, max_length=128)
    username: str | None = Field(None, min_length=3, max_length=191)
    locale: str | None = Field(None, max_length=20)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str | None = Field(None, alias="refreshToken")


class ForgotPasswordRequest(BaseModel):
    """Schema for requesting a reset link"""

    email: EmailStr = Field(..., description="User's email address")
    origin: str | None = Field(None, description="Base URL used to build the reset link")


class ResetPasswordRequest(BaseModel):
    """Schema for confirming a password reset with its token"""

    token: str = Field(..., min_length=1, description="Password reset token")
    password: str = Field(..., min_length=1, max_length=128, description="New password")


class ValidateResetTokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    message: str
    success: bool = True
