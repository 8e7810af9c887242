"""
User Service

CRUD for user accounts and their role assignments.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.exceptions import DuplicateResourceError, ResourceNotFoundError, ValidationError
from hookcms.models.user import Role, User
from hookcms.utils.dates import utcnow
from hookcms.utils.password import hash_password, validate_password_strength

logger = logging.getLogger(__name__)

SEARCH_COLUMNS = (User.username, User.email, User.first_name, User.last_name)
ORDER_COLUMNS = {"id": User.id, "email": User.email, "username": User.username, "created_at": User.created_at}


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "picture": user.picture,
        "locale": user.locale,
        "status": user.status,
        "roles": sorted(role.slug for role in user.roles),
        "email_verified_at": user.email_verified_at.isoformat() if user.email_verified_at else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "updated_at": user.updated_at.isoformat() if user.updated_at else None,
        "deleted_at": user.deleted_at.isoformat() if user.deleted_at else None,
    }


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_users(
        self,
        search: str | None = None,
        status: str | None = None,
        only_user_id: int | None = None,
        trashed: bool = False,
        limit: int = 10,
        offset: int = 0,
        order_by: str = "id",
        order: str = "desc",
    ) -> dict[str, Any]:
        query = select(User)
        if only_user_id is not None:
            query = query.where(User.id == only_user_id)
        if status:
            query = query.where(User.status == status)
        if search:
            query = query.where(or_(*(column.like(f"%{search}%") for column in SEARCH_COLUMNS)))
        query = query.where(User.deleted_at.is_not(None) if trashed else User.deleted_at.is_(None))

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        column = ORDER_COLUMNS.get(order_by, User.id)
        query = query.order_by(column.asc() if order.lower() == "asc" else column.desc())
        users = (await self.db.execute(query.limit(limit).offset(offset))).scalars().all()

        return {"items": [serialize_user(user) for user in users], "total": total, "limit": limit, "offset": offset}

    async def find_user(self, id_or_username: int | str) -> User | None:
        if str(id_or_username).isdigit():
            condition = or_(User.id == int(id_or_username), User.username == str(id_or_username))
        else:
            condition = User.username == str(id_or_username)
        result = await self.db.execute(select(User).where(condition).order_by(User.id))
        return result.scalars().first()

    async def get_user(self, id_or_username: int | str) -> User:
        user = await self.find_user(id_or_username)
        if user is None:
            raise ResourceNotFoundError("User", id_or_username)
        return user

    async def _roles(self, slugs: list[str]) -> list[Role]:
        if not slugs:
            return []
        roles = list((await self.db.execute(select(Role).where(Role.slug.in_(slugs)))).scalars().all())
        unknown = set(slugs) - {role.slug for role in roles}
        if unknown:
            raise ValidationError(f"Unknown roles: {', '.join(sorted(unknown))}", field="roles")
        return roles

    async def _ensure_unique(self, email: str | None, username: str | None, exclude_id: int | None = None) -> None:
        for field, value in (("email", email), ("username", username)):
            if not value:
                continue
            query = select(User.id).where(getattr(User, field) == value)
            if exclude_id is not None:
                query = query.where(User.id != exclude_id)
            if (await self.db.execute(query)).first() is not None:
                raise DuplicateResourceError("User", field, value)

    @staticmethod
    def _check_password(password: str) -> None:
        errors = validate_password_strength(password)
        if errors:
            raise ValidationError(errors[0], field="password", details={"errors": errors})

    async def create_user(self, data: dict[str, Any]) -> User:
        self._check_password(data["password"])
        await self._ensure_unique(data["email"], data.get("username"))

        user = User(
            email=data["email"],
            username=data.get("username"),
            password=hash_password(data["password"]),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            locale=data.get("locale") or "en_US",
            roles=await self._roles(data.get("roles") or []),
            capabilities=[],
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("Created user %s", user.id)
        return user

    async def update_user(self, id_or_username: int | str, data: dict[str, Any]) -> User:
        user = await self.get_user(id_or_username)
        await self._ensure_unique(data.get("email"), data.get("username"), exclude_id=user.id)

        if data.get("password"):
            self._check_password(data["password"])
            user.password = hash_password(data["password"])
        for field in ("email", "username", "first_name", "last_name", "locale", "status"):
            if data.get(field) is not None:
                setattr(user, field, data[field])
        if data.get("roles") is not None:
            user.roles = await self._roles(data["roles"])

        await self.db.commit()
        await self.db.refresh(user)
        return user

    @staticmethod
    def get_roles(user: User) -> list[dict[str, Any]]:
        return [{"id": role.id, "name": role.name, "slug": role.slug} for role in sorted(user.roles, key=lambda r: r.id)]

    async def set_roles(self, id_or_username: int | str, slugs: list[str]) -> list[dict[str, Any]]:
        """Replace the user's roles with ``slugs``; an empty list clears them."""
        user = await self.get_user(id_or_username)
        user.roles = await self._roles(slugs)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("Set roles of user %s to %s", user.id, sorted(slugs))
        return self.get_roles(user)

    async def delete_user(self, id_or_username: int | str, force: bool = False) -> None:
        user = await self.get_user(id_or_username)
        if force:
            await self.db.delete(user)
        else:
            user.deleted_at = utcnow()
        await self.db.commit()
        logger.info("Deleted user %s (force=%s)", user.id, force)
