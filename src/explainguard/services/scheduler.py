from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .stats import RuntimeStats

log = logging.getLogger("explainguard.scheduler")

JobHandler = Callable[[str], Awaitable[None]]


class AsyncioScheduler:
    """In-process timers: one sleeping task per scheduled job.

    Jobs are fire-and-forget and are lost on restart; the periodic sweep
    picks up whatever a lost timer would have reinstated.
    """

    def __init__(self, stats: Optional[RuntimeStats] = None) -> None:
        self._stats = stats or RuntimeStats()
        self._handlers: dict[str, JobHandler] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def register(self, job: str, handler: JobHandler) -> None:
        self._handlers[job] = handler

    def pending(self) -> int:
        return len(self._tasks)

    async def schedule(self, job: str, item_id: str, run_at: datetime) -> None:
        if job not in self._handlers:
            raise KeyError(f"no handler registered for job {job!r}")
        delay = max(0.0, (run_at - datetime.now(timezone.utc)).total_seconds())
        task = asyncio.create_task(self._run(job, item_id, delay), name=f"explainguard-{job}-{item_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._stats.timers_scheduled += 1

    async def _run(self, job: str, item_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self._handlers[job](item_id)
            self._stats.timers_fired += 1
        except Exception:
            self._stats.timers_failed += 1
            log.exception("Scheduled job %s for %s failed", job, item_id)

    async def stop(self) -> None:
        tasks = list(self._tasks)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.info("Scheduler stopped (%d pending timers dropped)", len(tasks))
