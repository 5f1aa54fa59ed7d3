"""Interval-driven background tasks.

The heartbeat, the stats resync and the snapshot schedule each subclass
``PeriodicWorker`` and implement ``_work``.  A cycle that raises is logged
and counted; the loop keeps going, so one bad snapshot write never stops
the heartbeats.
"""

from __future__ import annotations

import abc
import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicWorker(abc.ABC):
    """Runs ``_work`` every ``interval`` seconds between ``start`` and ``stop``.

    With ``run_immediately`` the first cycle fires as soon as the task is
    scheduled; otherwise it waits one interval.
    """

    def __init__(self, *, interval: float, run_immediately: bool = False) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval
        self._run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None
        self._cycles = 0
        self._failures = 0
        self._last_run: datetime | None = None

    @property
    def worker_name(self) -> str:
        return type(self).__name__

    @property
    def is_running(self) -> bool:
        return self._task is not None

    @abc.abstractmethod
    async def _work(self) -> None:
        ...

    async def start(self) -> None:
        if self._task is not None:
            logger.warning("%s already started; ignoring", self.worker_name)
            return
        self._task = asyncio.create_task(self._run_forever(), name=self.worker_name)
        logger.info("%s every %.1fs", self.worker_name, self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info(
            "%s stopped after %d cycles (%d failed)",
            self.worker_name,
            self._cycles,
            self._failures,
        )

    async def run_once(self) -> None:
        """One cycle with failure accounting; used by the loop and by tests."""
        try:
            await self._work()
        except asyncio.CancelledError:
            raise
        except Exception:
            self._failures += 1
            logger.exception("%s cycle failed (%d so far)", self.worker_name, self._failures)
            return
        self._cycles += 1
        self._last_run = datetime.now(timezone.utc)

    async def _run_forever(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def health_check(self) -> dict[str, Any]:
        return {
            "worker": self.worker_name,
            "running": self.is_running,
            "cycles": self._cycles,
            "error_count": self._failures,
            "last_work_at": self._last_run.isoformat() if self._last_run else None,
        }
