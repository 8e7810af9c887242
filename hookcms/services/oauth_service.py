"""
OAuth Service

Authorization-code login against the providers configured in the
``auth_providers`` table. Provider rows store the *names* of the environment
variables holding the client id and secret, never the values themselves.
"""

from __future__ import annotations

import hashlib
import logging
import os
import secrets
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.exceptions import AuthenticationError, RegistrationDisabledError, ValidationError
from hookcms.models.auth import AuthProvider, OAuthState, UserProvider
from hookcms.models.user import User
from hookcms.services.auth_service import AuthService
from hookcms.utils.dates import utcnow
from hookcms.utils.password import hash_password

logger = logging.getLogger(__name__)

STATE_EXPIRY = timedelta(minutes=10)


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


class OAuthService:
    def __init__(self, db: AsyncSession, http_client: httpx.AsyncClient | None = None):
        self.db = db
        self.http_client = http_client

    async def list_providers(self) -> list[dict[str, str]]:
        result = await self.db.execute(
            select(AuthProvider.name, AuthProvider.slug).where(AuthProvider.active.is_(True)).order_by(AuthProvider.name)
        )
        return [{"name": name, "slug": slug} for name, slug in result.all()]

    async def get_provider(self, slug: str) -> AuthProvider:
        result = await self.db.execute(
            select(AuthProvider).where(AuthProvider.slug == slug, AuthProvider.active.is_(True))
        )
        provider = result.scalar_one_or_none()
        if provider is None:
            raise ValidationError("Provider not supported or inactive", field="provider")
        return provider

    async def build_login_url(self, slug: str) -> str:
        provider = await self.get_provider(slug)
        state = secrets.token_hex(32)
        self.db.add(OAuthState(state_hash=_hash(state), provider_slug=slug, expires_at=utcnow() + STATE_EXPIRY))
        await self.db.commit()

        query = {
            "client_id": os.environ.get(provider.client_id, ""),
            "redirect_uri": provider.redirect_uri,
            "response_type": "code",
            "scope": " ".join(provider.scope or []),
            "state": state,
            **(provider.response_params or {}),
        }
        return f"{provider.auth_url}?{urlencode(query)}"

    async def consume_state(self, slug: str, state: str) -> None:
        now = utcnow()
        result = await self.db.execute(
            select(OAuthState).where(
                OAuthState.state_hash == _hash(state),
                OAuthState.provider_slug == slug,
                OAuthState.expires_at > now,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise ValidationError("Invalid or expired state parameter", field="state")

        await self.db.delete(record)
        await self.db.execute(delete(OAuthState).where(OAuthState.expires_at < now))
        await self.db.commit()

    async def _fetch_profile(self, provider: AuthProvider, code: str) -> dict[str, Any]:
        client = self.http_client or httpx.AsyncClient(timeout=10.0)
        try:
            token_response = await client.post(
                provider.token_url,
                data={
                    "client_id": os.environ.get(provider.client_id, ""),
                    "client_secret": os.environ.get(provider.secret_env_key, ""),
                    "redirect_uri": provider.redirect_uri,
                    "code": code,
                    "grant_type": "authorization_code",
                },
                headers={"Accept": "application/json"},
            )
            access_token = token_response.json().get("access_token")
            if not access_token:
                raise AuthenticationError("Failed to get access token")

            profile_response = await client.get(
                provider.user_info_url, headers={"Authorization": f"Bearer {access_token}"}
            )
            return profile_response.json()
        except httpx.RequestError as e:
            logger.error("OAuth request to %s failed: %s", provider.slug, e)
            raise AuthenticationError(f"OAuth provider request failed: {e}") from e
        finally:
            if self.http_client is None:
                await client.aclose()

    async def resolve_user(self, slug: str, profile: dict[str, Any]) -> User:
        """Find the user by provider link, then by email, creating one when registrations allow it."""
        subject = str(profile.get("sub") or profile.get("id") or "")
        email = profile.get("email")
        if not subject:
            raise AuthenticationError("Provider did not return a user id")

        result = await self.db.execute(
            select(UserProvider).where(UserProvider.provider_slug == slug, UserProvider.provider_user_id == subject)
        )
        link = result.scalar_one_or_none()
        if link is not None:
            user = await self.db.get(User, link.user_id)
            if user is not None:
                return user

        user = None
        if email:
            result = await self.db.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()

        if user is None:
            auth = AuthService(self.db)
            if not await auth.registrations_allowed():
                raise RegistrationDisabledError("Automatic registration of new users is disabled")
            if not email:
                raise AuthenticationError("Provider did not return an email address")
            user = User(
                email=email,
                password=hash_password(secrets.token_hex(16)),
                first_name=profile.get("given_name"),
                last_name=profile.get("family_name"),
                picture=profile.get("picture"),
                email_verified_at=utcnow() if profile.get("email_verified") else None,
                capabilities=[],
            )
            await auth.assign_default_roles(user)
            self.db.add(user)
            await self.db.flush()
            logger.info("Created user %s from %s login", user.id, slug)

        self.db.add(UserProvider(user_id=user.id, provider_slug=slug, provider_user_id=subject))
        await self.db.flush()
        return user

    async def handle_callback(self, slug: str, code: str | None, state: str | None) -> dict[str, Any]:
        if not code:
            raise ValidationError("Missing code", field="code")
        if not state:
            raise ValidationError("Missing state parameter", field="state")

        await self.consume_state(slug, state)
        provider = await self.get_provider(slug)
        profile = await self._fetch_profile(provider, code)
        user = await self.resolve_user(slug, profile)
        return await AuthService(self.db).issue_tokens(user)
