"""
Idempotent seed data: roles, the capability tree, default options and the
built-in ``jobs`` post type. Safe to run on every startup.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.config import settings
from hookcms.hooks.jobs import JOBS_POST_TYPE
from hookcms.models.option import Option
from hookcms.models.post import PostType
from hookcms.models.user import Capability, CapabilityInheritance, Role

logger = logging.getLogger(__name__)

ROLES = [
    ("administrator", "Administrator"),
    ("user", "User"),
    ("guest", "Guest"),
]

GLOBAL_CAPABILITIES = ["read", "create", "update", "delete"]

# group -> (singular, plural)
CRUD_GROUPS = {
    "post_types": ("post_type", "post_types"),
    "posts": ("post", "posts"),
    "pages": ("page", "pages"),
    "attachments": ("attachment", "attachments"),
    "comments": ("comment", "comments"),
    "options": ("option", "options"),
    "users": ("user", "users"),
    "taxonomies": ("taxonomy", "taxonomies"),
    "terms": ("term", "terms"),
    "menus": ("menu", "menus"),
    "jobs": ("job", "jobs"),
    "roles": ("role", "roles"),
}

EXTENSION_GROUPS = {
    "plugins": ("plugin", "plugins"),
    "themes": ("theme", "themes"),
}

STANDALONE = ["manage_dashboard"]

DEFAULT_OPTIONS = {
    "theme": "",
    "active_plugins": "[]",
    "2fa": "false",
    "site_name": settings.app_name,
    "site_url": settings.app_url,
    "allow_registrations": "true" if settings.allow_registrations else "false",
    "smtp_host": "",
    "smtp_port": "587",
    "smtp_secure": "false",
    "smtp_user": "",
    "smtp_password": "",
    "smtp_from": "",
    "smtp_from_name": settings.app_name,
}

JOBS_ICON = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 24 24" fill="none" stroke="currentColor" '
    'stroke-width="2"><circle cx="12" cy="12" r="10"/><path d="M12 6v6l4 2"/></svg>'
)


def _label(slug: str) -> str:
    return slug.replace("_", " ").capitalize()


def capability_tree() -> dict[str, list[str]]:
    """``manage_<group>`` -> the capabilities it implies."""
    tree: dict[str, list[str]] = {}
    for group, (one, many) in CRUD_GROUPS.items():
        tree[f"manage_{group}"] = [f"read_{one}", f"create_{many}", f"edit_{one}", f"edit_{many}", f"delete_{many}"]
    for group, (one, many) in EXTENSION_GROUPS.items():
        tree[f"manage_{group}"] = [
            f"read_{one}",
            f"upload_{many}",
            f"activate_{many}",
            f"deactivate_{many}",
            f"delete_{many}",
        ]
    return tree


async def seed_capabilities(db: AsyncSession) -> dict[str, Capability]:
    tree = capability_tree()
    slugs = GLOBAL_CAPABILITIES + STANDALONE + [cap for parent, children in tree.items() for cap in (parent, *children)]

    existing = {cap.slug: cap for cap in (await db.execute(select(Capability))).scalars().all()}
    for slug in slugs:
        if slug not in existing:
            existing[slug] = Capability(slug=slug, name=_label(slug))
            db.add(existing[slug])
    await db.flush()

    links = {
        (row.parent_capability_id, row.child_capability_id)
        for row in (await db.execute(select(CapabilityInheritance))).scalars().all()
    }
    for parent, children in tree.items():
        for child in children:
            key = (existing[parent].id, existing[child].id)
            if key not in links:
                db.add(CapabilityInheritance(parent_capability_id=key[0], child_capability_id=key[1]))
                links.add(key)
    return existing


async def seed_roles(db: AsyncSession, capabilities: dict[str, Capability]) -> None:
    roles = {role.slug: role for role in (await db.execute(select(Role))).scalars().all()}
    for slug, name in ROLES:
        if slug not in roles:
            roles[slug] = Role(slug=slug, name=name, capabilities=[])
            db.add(roles[slug])

    admin = roles["administrator"]
    owned = {cap.slug for cap in admin.capabilities}
    admin.capabilities.extend(cap for slug, cap in capabilities.items() if slug not in owned)

    guest = roles["guest"]
    if not any(cap.slug == "read" for cap in guest.capabilities):
        guest.capabilities.append(capabilities["read"])


async def seed_options(db: AsyncSession) -> None:
    names = set((await db.execute(select(Option.name))).scalars().all())
    for name, value in DEFAULT_OPTIONS.items():
        if name not in names:
            db.add(Option(name=name, value=value, autoload=not name.startswith("smtp_password")))


async def seed_post_types(db: AsyncSession) -> None:
    result = await db.execute(select(PostType.id).where(PostType.slug == JOBS_POST_TYPE))
    if result.first() is None:
        db.add(
            PostType(
                slug=JOBS_POST_TYPE,
                name_singular="Job",
                name_plural="Jobs",
                description="Background jobs",
                icon=JOBS_ICON,
                show_in_menu=False,
                position=9000,
                capabilities={"read": "read_job", "create": "create_jobs", "update": "edit_jobs", "delete": "delete_jobs"},
            )
        )


async def run_seeds(db: AsyncSession) -> None:
    capabilities = await seed_capabilities(db)
    await seed_roles(db, capabilities)
    await seed_options(db)
    await seed_post_types(db)
    await db.commit()
    logger.info("Seed data ensured (%d capabilities)", len(capabilities))
