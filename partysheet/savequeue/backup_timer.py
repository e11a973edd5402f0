"""Periodic session backups while the GM is editing.

Every ``check_interval`` seconds the timer looks at the save queue; if there
have been edits and at least ``interval`` seconds passed since the last
session backup, it asks the server for one. The first backup is requested
shortly after start.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .queue import SaveQueue
from .transport import TransportError

logger = logging.getLogger(__name__)

SESSION_INTERVAL = 600.0
CHECK_INTERVAL = 60.0
INITIAL_DELAY = 5.0


class SessionBackupTimer:
    def __init__(
        self,
        queue: SaveQueue,
        create_backup: Callable[[str], Awaitable[dict[str, Any]]],
        interval: float = SESSION_INTERVAL,
        check_interval: float = CHECK_INTERVAL,
        initial_delay: float = INITIAL_DELAY,
    ) -> None:
        self.queue = queue
        self._create_backup = create_backup
        self.interval = interval
        self.check_interval = check_interval
        self.initial_delay = initial_delay
        self.last_backup: float | None = None
        self._task: asyncio.Task | None = None

    async def backup_now(self) -> bool:
        try:
            result = await self._create_backup("session")
        except TransportError as e:
            logger.warning("Session backup error: %s", e)
            return False
        if not result.get("success"):
            logger.warning("Session backup failed: %s", result.get("error"))
            return False
        self.last_backup = asyncio.get_running_loop().time()
        self.queue.edits_since_backup = False
        logger.info("Session backup created: %s", result.get("backup_name"))
        return True

    def due(self, now: float) -> bool:
        if not self.queue.edits_since_backup:
            return False
        return self.last_backup is None or now - self.last_backup >= self.interval

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        await self.backup_now()
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.check_interval)
            if self.due(loop.time()):
                await self.backup_now()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
