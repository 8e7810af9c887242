"""
Per-request hook kernel.

A :class:`Hooks` instance is built for each authenticated request. It owns
the action/filter registry plus the post type, taxonomy, admin menu,
control and email provider registries, all scoped to the current user's
capabilities. ``init()`` loads the database-backed registries, boots the
active theme and plugins, then fires the ``init`` action.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.hooks.admin_menu import AdminMenu
from hookcms.hooks.controls import Controls
from hookcms.hooks.email_providers import EmailProviders
from hookcms.hooks.post_types import PostTypes
from hookcms.hooks.registry import HookRegistry
from hookcms.hooks.taxonomies import Taxonomies
from hookcms.services.guard import UserGuard

if TYPE_CHECKING:
    from hookcms.context import AppContext
    from hookcms.extensions.base import PluginBase
    from hookcms.models.user import User

logger = logging.getLogger(__name__)


class Hooks(HookRegistry):
    def __init__(self, context: AppContext, db: AsyncSession, user: User | None = None) -> None:
        super().__init__()
        self.context = context
        self.db = db
        self.user = user
        self.guard = UserGuard(db, user)

        self.admin_menu = AdminMenu(self)
        self.controls = Controls(self)
        self.post_types = PostTypes(self)
        self.taxonomies = Taxonomies(self)
        self.email_providers = EmailProviders(db, self)

        self.plugins: dict[str, PluginBase] = {}
        self.themes: dict[str, PluginBase] = {}
        self.initialized = False

    @property
    def jobs(self):
        return self.context.jobs

    @property
    def scheduler(self):
        return self.context.scheduler

    async def init(self) -> Hooks:
        if self.initialized:
            return self
        self.initialized = True

        await self.email_providers.init()
        await self.post_types.load()
        await self.taxonomies.load()

        loaded = await self.context.extensions.load_active(self)
        self.themes = loaded["themes"]
        self.plugins = loaded["plugins"]
        logger.debug("Hooks ready: %d plugin(s), %d theme(s)", len(self.plugins), len(self.themes))

        await self.do_action("init", self)
        return self

    async def send_email(self, **kwargs: Any) -> bool:
        from hookcms.services.email_service import EmailService

        return await EmailService(self.db, self.email_providers).send_email(**kwargs)

    async def get_attachment_url(self, id_or_slug: int | str) -> str | None:
        from hookcms.services.upload_service import UploadService

        return await UploadService(self).get_attachment_url(id_or_slug)


__all__ = ["Hooks", "HookRegistry"]
