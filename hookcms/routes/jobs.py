"""
Jobs Routes

    GET    /api/v1/jobs          list jobs (status, type, source filters)
    GET    /api/v1/jobs/stream   Server-Sent Events feed of job updates
    GET    /api/v1/jobs/{id}     one job by its job_id
    POST   /api/v1/jobs          create a job
    DELETE /api/v1/jobs/cleanup  delete finished jobs older than ``days_old``

Event format on the stream:
    data: {"type": "job_update", "data": {"job": {...}}, "timestamp": "..."}\n\n
"""

import asyncio
import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from hookcms.auth import require_capabilities
from hookcms.config import settings
from hookcms.exceptions import ResourceNotFoundError
from hookcms.hooks import Hooks
from hookcms.hooks.jobs import DEFAULT_TIMEOUT_MS
from hookcms.schemas.jobs import JobCreate
from hookcms.services.sse_manager import SSEBroadcaster

router = APIRouter(tags=["Jobs"])
logger = logging.getLogger(__name__)

can_read = require_capabilities(can_one_of=["manage_jobs", "read_job"])


# ── Streaming helper ──────────────────────────────────────────────────────────


async def _event_stream(request: Request, broadcaster: SSEBroadcaster):
    """Yield SSE-formatted job events with a keepalive comment while idle."""
    queue = await broadcaster.subscribe()
    try:
        connected = json.dumps({"type": "connected", "data": {}, "timestamp": datetime.now(timezone.utc).isoformat()})
        yield f"data: {connected}\n\n"

        while True:
            if await request.is_disconnected():
                logger.debug("Jobs stream client disconnected")
                break

            try:
                event = await asyncio.wait_for(queue.get(), timeout=float(settings.sse_keepalive_interval))
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if event.get("type") == "job_update":
                yield f"data: {json.dumps(event, default=str)}\n\n"
    finally:
        await broadcaster.unsubscribe(queue)


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.get("/")
async def list_jobs(
    job_status: str | None = Query(None, alias="status"),
    job_type: str | None = Query(None, alias="type"),
    source: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    hooks: Hooks = Depends(can_read),
):
    jobs = await hooks.jobs.get_jobs(status=job_status, job_type=job_type, source=source, limit=limit, offset=offset)
    return {"success": True, "data": jobs}


@router.get("/stream")
async def stream_jobs(request: Request, hooks: Hooks = Depends(can_read)) -> StreamingResponse:
    return StreamingResponse(
        _event_stream(request, hooks.context.broadcaster),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.delete("/cleanup")
async def cleanup_jobs(
    days_old: int = Query(30, ge=0, alias="daysOld"),
    hooks: Hooks = Depends(require_capabilities(can_one_of=["manage_jobs", "delete_jobs"])),
):
    deleted = await hooks.jobs.cleanup_old_jobs(days_old)
    return {"success": True, "message": f"Deleted {deleted} old jobs", "deleted": deleted}


@router.get("/{job_id}")
async def get_job(job_id: str, hooks: Hooks = Depends(can_read)):
    job = await hooks.jobs.get_job(job_id)
    if job is None:
        raise ResourceNotFoundError("Job", job_id)
    return {"success": True, "data": job}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_job(
    body: JobCreate,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["manage_jobs", "create_jobs"])),
):
    job = await hooks.jobs.create_job(
        name=body.name,
        job_type=body.job_type,
        description=body.description,
        icon_svg=body.icon_svg,
        metadata=body.metadata,
        source=body.source,
        created_by=hooks.user.id,
        show_notification=body.show_notification,
        timeout=body.timeout or DEFAULT_TIMEOUT_MS,
    )
    return {"success": True, "data": job.to_dict()}
