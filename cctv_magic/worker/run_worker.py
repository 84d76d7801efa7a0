"""Run ARQ worker. Usage: python -m cctv_magic.worker.run_worker"""

import asyncio

from arq import run_worker
from arq.cron import cron

from cctv_magic.core.config import get_settings
from cctv_magic.core.logging import configure_logging
from cctv_magic.worker.tasks import get_redis_settings, poll_video_status, shutdown, startup, sweep_stale_videos


class WorkerSettings:
    functions = [poll_video_status]
    cron_jobs = [
        cron(sweep_stale_videos, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}, second=0),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()


def main() -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug)
    # Poll loop must fit inside one job run
    job_timeout = int(settings.video_poll_max_attempts * settings.video_poll_interval_seconds) + 120
    run_worker(WorkerSettings, job_timeout=job_timeout)


if __name__ == "__main__":
    main()
