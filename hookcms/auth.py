"""
Request authentication and the per-request hook kernel.

``get_current_user`` validates the bearer JWT and rejects revoked tokens.
``get_hooks`` builds and initializes a :class:`~hookcms.hooks.Hooks` for the
authenticated user; ``require_capabilities`` wraps it with a guard check.
"""

import logging
from collections.abc import Iterable, Mapping

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.context import get_app_context
from hookcms.database import get_db
from hookcms.exceptions import AuthenticationError, AuthorizationError, InvalidTokenError, ResourceNotFoundError
from hookcms.hooks import Hooks
from hookcms.models.user import User
from hookcms.services.auth_service import AuthService, decode_access_token

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


async def get_bearer_token(token: str | None = Depends(oauth2_scheme)) -> str:
    if not token:
        raise AuthenticationError("Not authenticated")
    return token


async def get_current_user(
    token: str = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    payload = decode_access_token(token)
    if await AuthService(db).is_token_revoked(token):
        raise InvalidTokenError("Token has been revoked")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise InvalidTokenError() from None

    user = await db.get(User, user_id)
    if user is None or user.deleted_at is not None or user.status != "active":
        logger.warning("Token for unknown or inactive user %s", user_id)
        raise InvalidTokenError("User not found")
    return user


async def get_hooks(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Hooks:
    hooks = Hooks(get_app_context(request), db, user)
    await hooks.init()
    return hooks


def require_capabilities(
    can_one_of: Iterable[str] | Mapping[str, str] | None = None,
    can_all_of: Iterable[str] | Mapping[str, str] | None = None,
):
    """Dependency factory: the current user must hold the given capabilities."""

    async def dependency(hooks: Hooks = Depends(get_hooks)) -> Hooks:
        if not await hooks.guard.user(can_one_of=can_one_of, can_all_of=can_all_of):
            required = list(can_all_of or []) + list(can_one_of or [])
            raise AuthorizationError(required_capabilities=required)
        return hooks

    return dependency


async def authorize_post_type(hooks: Hooks, post_type_slug: str, action: str) -> dict:
    """
    Resolve a post type the user may ``action`` ("read", "create", "update", "delete").

    Post types declaring capabilities are checked against their mapping;
    those without fall back to the global capability of the same name.
    A post type the user cannot see at all is a 403; an unknown slug is a 404.
    """
    post_type = await hooks.post_types.get_post_type(post_type_slug)
    if post_type is None:
        if hooks.post_types.is_restricted(post_type_slug) or hooks.post_types.get_post_type_entry(post_type_slug):
            raise AuthorizationError(required_capabilities=[action])
        raise ResourceNotFoundError("Post type", post_type_slug)

    if post_type.get("capabilities"):
        allowed = action in (post_type.get("resolved_capabilities") or [])
    else:
        allowed = bool(await hooks.guard.user(can_one_of=[action]))
    if not allowed:
        raise AuthorizationError(required_capabilities=[action])
    return post_type
