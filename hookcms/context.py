"""
Process-wide application context.

Holds what outlives a single request: the session factory, the SSE
broadcaster, the jobs registry, the extension loader and the scheduler.
Created once in the application lifespan and stored on ``app.state``.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import Request

from hookcms.config import settings
from hookcms.database import AsyncSessionLocal
from hookcms.extensions.loader import ExtensionLoader
from hookcms.hooks.jobs import Jobs
from hookcms.services.scheduler import SchedulerService
from hookcms.services.sse_manager import SSEBroadcaster, sse_broadcaster


class AppContext:
    def __init__(
        self,
        session_factory=AsyncSessionLocal,
        broadcaster: SSEBroadcaster | None = None,
        content_dir: Path | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.broadcaster = broadcaster or sse_broadcaster
        self.content_dir = Path(content_dir or settings.content_dir)
        self.extensions = ExtensionLoader(self.content_dir)
        self.jobs = Jobs(session_factory, self.broadcaster)
        self.scheduler = SchedulerService(session_factory, self.jobs)

    @property
    def uploads_dir(self) -> Path:
        return self.content_dir / "uploads"


def get_app_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        context = AppContext()
        request.app.state.context = context
    return context
