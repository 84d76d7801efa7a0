"""ARQ job definitions."""

import uuid
from datetime import timedelta
from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from cctv_magic.core.config import get_settings
from cctv_magic.core.logging import bind_job_context, get_logger
from cctv_magic.db.init import init_db
from cctv_magic.models.failed_job import FailedJob
from cctv_magic.services import reconciler
from cctv_magic.services.sora import SoraClient
from cctv_magic.storage.base import get_storage

log = get_logger(__name__)


async def _run_with_dlq(job_name: str, job_id: str | None, args: list[Any], ctx: dict[str, Any], coro) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            args=args,
            reason=str(e)[:2000],
            attempts=ctx.get("job_try", 1),
        ).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


def _job_id(ctx: dict[str, Any]) -> str | None:
    return ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None


async def poll_video_status(ctx: dict[str, Any], video_id: str) -> str | None:
    """Poll the provider until the video is terminal or attempts run out."""
    settings = get_settings()
    job_id = _job_id(ctx)
    bind_job_context(job="poll_video_status", video_id=video_id)

    async def _run() -> str | None:
        log.info("job_start")
        video = await reconciler.poll_video(
            video_id,
            ctx["video_provider"],
            ctx["storage"],
            max_attempts=settings.video_poll_max_attempts,
            interval=settings.video_poll_interval_seconds,
        )
        status = video.status if video else None
        log.info("job_done", status=status)
        return status

    return await _run_with_dlq("poll_video_status", job_id, [video_id], ctx, _run())


async def sweep_stale_videos(ctx: dict[str, Any]) -> int:
    """Cron job: settle videos pending past the stale threshold."""
    settings = get_settings()
    bind_job_context(job="sweep_stale_videos")

    async def _run() -> int:
        return await reconciler.sweep_stale_videos(
            ctx["video_provider"],
            ctx["storage"],
            older_than=timedelta(minutes=settings.video_stale_after_minutes),
        )

    return await _run_with_dlq("sweep_stale_videos", _job_id(ctx), [], ctx, _run())


async def startup(ctx: dict) -> None:
    settings = get_settings()
    await init_db()
    ctx["video_provider"] = SoraClient(
        settings.openai_api_key,
        base_url=settings.openai_api_url,
        timeout=settings.openai_timeout_seconds,
    )
    ctx["storage"] = get_storage()


async def shutdown(ctx: dict) -> None:
    provider = ctx.get("video_provider")
    if provider is not None:
        await provider.aclose()


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
