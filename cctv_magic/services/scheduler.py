"""Start server-side polling for a submitted video."""

import asyncio
from typing import Any

from cctv_magic.core.logging import get_logger
from cctv_magic.services.sora import SoraClient
from cctv_magic.storage.base import StorageBackend

log = get_logger(__name__)

POLL_JOB_NAME = "poll_video_status"


class PollScheduler:
    """
    Enqueue the arq ``poll_video_status`` job when a Redis pool is available,
    else run the poll loop as a detached task in this process.
    """

    def __init__(
        self,
        provider: SoraClient,
        storage: StorageBackend,
        max_attempts: int,
        interval: float,
        arq_pool: Any | None = None,
    ) -> None:
        self.provider = provider
        self.storage = storage
        self.max_attempts = max_attempts
        self.interval = interval
        self.arq_pool = arq_pool
        self._tasks: set[asyncio.Task] = set()

    async def schedule(self, video_id: str) -> None:
        if self.arq_pool is not None:
            try:
                await self.arq_pool.enqueue_job(POLL_JOB_NAME, video_id, _job_id=f"poll:{video_id}")
                log.info("video_poll_enqueued", video_id=video_id)
                return
            except Exception:
                log.exception("video_poll_enqueue_failed", video_id=video_id)
        self._spawn(video_id)

    def _spawn(self, video_id: str) -> None:
        from cctv_magic.services.reconciler import poll_video

        task = asyncio.create_task(
            poll_video(video_id, self.provider, self.storage, self.max_attempts, self.interval)
        )
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        log.info("video_poll_started_in_process", video_id=video_id)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("video_poll_task_failed", error=str(task.exception()))

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
