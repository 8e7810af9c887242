"""
Background jobs.

A job is a post of type ``jobs`` whose slug is its uuid; its state lives in
post_meta. The registry is process-wide: it opens its own sessions so a
:class:`Job` handle stays usable after the request that created it ends.

Every state change is published to the SSE broadcaster as a ``job_update``
event. Jobs leave ``active_jobs`` once they complete, fail or are cancelled.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, insert, select, update

from hookcms.models.post import Post, PostMeta, post_authors
from hookcms.services.sse_manager import SSEBroadcaster
from hookcms.utils.dates import utcnow

logger = logging.getLogger(__name__)

JOBS_POST_TYPE = "jobs"
DEFAULT_TIMEOUT_MS = 300000
TERMINAL_STATUSES = ("completed", "failed", "cancelled")


def _parse_json(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except ValueError:
        return value


def job_from_rows(post: Post, meta: dict[str, str]) -> dict[str, Any]:
    return {
        "id": post.id,
        "job_id": meta.get("job_id") or post.slug,
        "name": meta.get("name"),
        "description": meta.get("description"),
        "type": meta.get("type"),
        "status": meta.get("status") or "pending",
        "progress": int(meta.get("progress") or 0),
        "icon_svg": meta.get("icon_svg"),
        "metadata": _parse_json(meta.get("metadata"), {}),
        "error_message": meta.get("error_message") or None,
        "result": _parse_json(meta.get("result"), None),
        "source": meta.get("source") or "system",
        "show_notification": meta.get("show_notification") == "true",
        "timeout": int(meta.get("timeout") or DEFAULT_TIMEOUT_MS),
        "started_at": meta.get("started_at") or None,
        "completed_at": meta.get("completed_at") or None,
        "created_at": post.created_at.isoformat() if post.created_at else None,
        "updated_at": post.updated_at.isoformat() if post.updated_at else None,
    }


class Job:
    """Handle for one job; mutators persist, broadcast and return ``self``."""

    def __init__(self, registry: Jobs, data: dict[str, Any]) -> None:
        self._registry = registry
        self._timeout_task: asyncio.Task | None = None
        self.__dict__.update(data)

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in self.__dict__.items() if not key.startswith("_")}

    def _stop_timer(self) -> None:
        task = self._timeout_task
        self._timeout_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire(self) -> None:
        await asyncio.sleep(self.timeout / 1000)
        if self.status == "running":
            logger.warning("Job %s timed out after %sms", self.job_id, self.timeout)
            await self.fail(f"Job timed out after {self.timeout / 1000:g} seconds")

    async def start(self) -> Job:
        self.status = "running"
        self.started_at = utcnow().isoformat()
        await self._registry._update_meta(self.id, {"status": "running", "started_at": self.started_at})

        if self.timeout and self.timeout > 0:
            self._timeout_task = asyncio.create_task(self._expire())

        await self._registry._broadcast(self)
        return self

    async def update_progress(self, progress: int | float, metadata: dict[str, Any] | None = None) -> Job:
        self.progress = int(min(100, max(0, progress)))
        values: dict[str, Any] = {"progress": str(self.progress)}
        if metadata:
            self.metadata = {**(self.metadata or {}), **metadata}
            values["metadata"] = json.dumps(self.metadata)
        await self._registry._update_meta(self.id, values)
        await self._registry._broadcast(self)
        return self

    async def complete(self, result: Any = None) -> Job:
        self._stop_timer()
        self.status = "completed"
        self.progress = 100
        self.completed_at = utcnow().isoformat()
        values = {"status": "completed", "progress": "100", "completed_at": self.completed_at}
        if result is not None:
            self.result = result
            values["result"] = json.dumps(result, default=str)
        await self._finish(values)
        return self

    async def fail(self, error_message: str) -> Job:
        self._stop_timer()
        self.status = "failed"
        self.error_message = error_message
        self.completed_at = utcnow().isoformat()
        await self._finish({"status": "failed", "error_message": error_message, "completed_at": self.completed_at})
        return self

    async def cancel(self) -> Job:
        self._stop_timer()
        self.status = "cancelled"
        self.completed_at = utcnow().isoformat()
        await self._finish({"status": "cancelled", "completed_at": self.completed_at})
        return self

    async def _finish(self, values: dict[str, str]) -> None:
        await self._registry._update_meta(self.id, values)
        await self._registry._broadcast(self)
        self._registry.active_jobs.pop(self.job_id, None)


class Jobs:
    def __init__(self, session_factory, broadcaster: SSEBroadcaster | None = None) -> None:
        self.session_factory = session_factory
        self.broadcaster = broadcaster
        self.active_jobs: dict[str, Job] = {}

    async def create_job(
        self,
        name: str,
        job_type: str,
        description: str | None = None,
        icon_svg: str | None = None,
        metadata: dict[str, Any] | None = None,
        source: str = "system",
        created_by: int | None = None,
        show_notification: bool = False,
        timeout: int = DEFAULT_TIMEOUT_MS,
    ) -> Job:
        job_id = str(uuid.uuid4())
        meta = {
            "job_id": job_id,
            "name": name,
            "description": description or "",
            "type": job_type,
            "status": "pending",
            "progress": "0",
            "icon_svg": icon_svg or "",
            "metadata": json.dumps(metadata or {}),
            "source": source,
            "error_message": "",
            "result": "",
            "show_notification": "true" if show_notification else "false",
            "timeout": str(timeout),
        }

        async with self.session_factory() as db:
            post = Post(post_type_slug=JOBS_POST_TYPE, slug=job_id, status="publish")
            db.add(post)
            await db.flush()
            db.add_all(PostMeta(post_id=post.id, field_slug=slug, value=value) for slug, value in meta.items())
            if created_by:
                await db.execute(insert(post_authors).values(post_id=post.id, user_id=created_by))
            data = job_from_rows(post, meta)
            await db.commit()

        data["created_by"] = created_by
        job = Job(self, data)
        self.active_jobs[job_id] = job
        logger.info("Job created: %s (%s)", name, job_id, extra={"job_id": job_id})
        await self._broadcast(job)
        return job

    async def _update_meta(self, post_id: int, values: dict[str, str]) -> None:
        async with self.session_factory() as db:
            existing = await db.execute(
                select(PostMeta).where(PostMeta.post_id == post_id, PostMeta.field_slug.in_(list(values)))
            )
            rows = {row.field_slug: row for row in existing.scalars().all()}
            for slug, value in values.items():
                if slug in rows:
                    rows[slug].value = value
                else:
                    db.add(PostMeta(post_id=post_id, field_slug=slug, value=value))
            await db.execute(update(Post).where(Post.id == post_id).values(updated_at=utcnow()))
            await db.commit()

    async def _broadcast(self, job: Job) -> None:
        if self.broadcaster is None:
            return
        await self.broadcaster.publish("job_update", {"job": job.to_dict()})

    # ── Queries ───────────────────────────────────────────────────────────────

    async def get_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        source: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        query = select(Post).where(Post.post_type_slug == JOBS_POST_TYPE)
        for slug, value in (("status", status), ("type", job_type), ("source", source)):
            if value is not None:
                query = query.where(
                    Post.id.in_(select(PostMeta.post_id).where(PostMeta.field_slug == slug, PostMeta.value == value))
                )
        query = query.order_by(Post.created_at.desc(), Post.id.desc()).limit(limit).offset(offset)

        async with self.session_factory() as db:
            posts = (await db.execute(query)).scalars().all()
            if not posts:
                return []
            meta_rows = await db.execute(select(PostMeta).where(PostMeta.post_id.in_([post.id for post in posts])))
            meta_by_post: dict[int, dict[str, str]] = {}
            for row in meta_rows.scalars().all():
                meta_by_post.setdefault(row.post_id, {})[row.field_slug] = row.value

        return [job_from_rows(post, meta_by_post.get(post.id, {})) for post in posts]

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        async with self.session_factory() as db:
            post = (
                await db.execute(select(Post).where(Post.post_type_slug == JOBS_POST_TYPE, Post.slug == job_id))
            ).scalar_one_or_none()
            if post is None:
                return None
            rows = await db.execute(select(PostMeta).where(PostMeta.post_id == post.id))
            meta = {row.field_slug: row.value for row in rows.scalars().all()}
        return job_from_rows(post, meta)

    async def cleanup_old_jobs(self, days: int = 30) -> int:
        """Delete finished jobs older than ``days``; running and pending jobs are kept."""
        cutoff = utcnow() - timedelta(days=days)
        async with self.session_factory() as db:
            finished = select(PostMeta.post_id).where(
                PostMeta.field_slug == "status", PostMeta.value.in_(TERMINAL_STATUSES)
            )
            ids = (
                (
                    await db.execute(
                        select(Post.id).where(
                            Post.post_type_slug == JOBS_POST_TYPE,
                            Post.created_at < cutoff,
                            Post.id.in_(finished),
                        )
                    )
                )
                .scalars()
                .all()
            )
            if ids:
                await db.execute(delete(PostMeta).where(PostMeta.post_id.in_(ids)))
                await db.execute(delete(post_authors).where(post_authors.c.post_id.in_(ids)))
                await db.execute(delete(Post).where(Post.id.in_(ids)))
                await db.commit()

        if ids:
            logger.info("Cleaned up %d old jobs", len(ids))
        return len(ids)
