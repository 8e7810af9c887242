from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from hookcms.database import Base
from hookcms.utils.dates import utcnow


class RefreshToken(Base):
    """Only the sha256 of a refresh token is stored."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_hash = Column(String(64), unique=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, default=utcnow, nullable=False)


class AuthProvider(Base):
    """OAuth provider; client_id and secret_env_key name environment variables."""

    __tablename__ = "auth_providers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(191), nullable=True)
    slug = Column(String(100), unique=True, nullable=False)
    client_id = Column(String(191), nullable=False)
    secret_env_key = Column(String(191), nullable=False)
    scope = Column(JSON, nullable=True)
    auth_url = Column(String(1024), nullable=False)
    token_url = Column(String(1024), nullable=False)
    user_info_url = Column(String(1024), nullable=False)
    redirect_uri = Column(String(1024), nullable=False)
    active = Column(Boolean, default=False, nullable=False)
    response_params = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class UserProvider(Base):
    __tablename__ = "user_providers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_slug = Column(String(100), nullable=False)
    provider_user_id = Column(String(191), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("provider_slug", "provider_user_id", name="uq_user_providers_sub"),)


class OAuthState(Base):
    __tablename__ = "oauth_states"

    id = Column(Integer, primary_key=True, autoincrement=True)
    state_hash = Column(String(64), unique=True, nullable=False)
    provider_slug = Column(String(100), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
