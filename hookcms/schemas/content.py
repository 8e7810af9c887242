"""
Content Schemas

Payloads for post types, fields, taxonomies, options, users and roles.
Post and term bodies are free-form dictionaries because their fields are
defined at runtime by the post type registry.
"""

from typing import Any

from pydantic import BaseModel, EmailStr, Field


class PostTypeCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=100)
    name_singular: str | None = None
    name_plural: str | None = None
    description: str | None = None
    icon: str | None = None
    show_in_menu: bool = True
    badge: int = 0
    position: int = 0
    capabilities: dict[str, str] | None = None


class PostTypeUpdate(BaseModel):
    name_singular: str | None = None
    name_plural: str | None = None
    description: str | None = None
    icon: str | None = None
    show_in_menu: bool | None = None
    badge: int | None = None
    position: int | None = None
    capabilities: dict[str, str] | None = None


class FieldCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=100)
    name: str | None = None
    type: str = "text"
    options: dict[str, Any] | list[Any] | None = None
    conditions: dict[str, Any] | list[Any] | None = None
    required: bool = False
    revisions: bool = False
    order: int = 1000


class TaxonomyCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=100)
    name_singular: str | None = None
    name_plural: str | None = None
    description: str | None = None
    icon: str | None = None
    show_in_menu: bool = True
    position: int = 0
    capabilities: dict[str, str] | None = None


class OptionUpdate(BaseModel):
    value: Any = None
    autoload: bool = True


class UserCreate(BaseModel):
    email: EmailStr = Field(..., description="A valid email address.")
    password: str = Field(..., min_length=1, max_length=128)
    username: str | None = Field(None, min_length=3, max_length=191)
    first_name: str | None = None
    last_name: str | None = None
    locale: str | None = None
    roles: list[str] = Field(default_factory=list)


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    password: str | None = Field(None, min_length=1, max_length=128)
    username: str | None = Field(None, min_length=3, max_length=191)
    first_name: str | None = None
    last_name: str | None = None
    locale: str | None = None
    status: str | None = None
    roles: list[str] | None = None


class RoleCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=100)
    name: str | None = None
    description: str | None = None
    capabilities: list[str] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    capabilities: list[str] | None = None


class TaxonomyUpdate(BaseModel):
    name_singular: str | None = None
    name_plural: str | None = None
    description: str | None = None
    icon: str | None = None
    show_in_menu: bool | None = None
    position: int | None = None
    capabilities: dict[str, str] | None = None


class UserRolesUpdate(BaseModel):
    roles: list[str] = Field(default_factory=list)


class VersionChange(BaseModel):
    version: str = Field(..., min_length=1)
