from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from .categories import ResourceCategory
from .connection import ConnectionManager
from .state import utc_now


AUTH_RETRY_SECONDS = 5


@dataclass
class ScheduledFetchTask:
    category: ResourceCategory
    interval_seconds: float
    last_issued_at: Optional[datetime] = None


class PollingScheduler:
    """Issues each category's fetch on its own interval while the connection is up."""

    def __init__(
        self,
        connection: ConnectionManager,
        issue_fetch: Callable[[ResourceCategory], None],
        logger,
        auth_retry_seconds: float = AUTH_RETRY_SECONDS,
    ):
        self.connection = connection
        self.issue_fetch = issue_fetch
        self.logger = logger
        self.auth_retry_seconds = auth_retry_seconds
        self.tasks: Dict[ResourceCategory, ScheduledFetchTask] = {}
        self._loops: Dict[ResourceCategory, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not loop.done() for loop in self._loops.values())

    def start(self, tasks: Iterable[ScheduledFetchTask]) -> None:
        self.stop()
        for task in tasks:
            self.tasks[task.category] = task
            self._loops[task.category] = asyncio.create_task(
                self.run_checker(task),
                name=f"lemmybot-poll-{task.category.value}",
            )
        self.logger.info("Polling started categories=%s", ",".join(c.value for c in self._loops))

    def stop(self) -> None:
        for loop in self._loops.values():
            loop.cancel()
        self._loops.clear()

    async def run_checker(self, task: ScheduledFetchTask) -> None:
        connection = self.connection
        while True:
            if not connection.connected:
                # Reconnection is the connection manager's job; this loop ends here
                # and is restarted once the connection comes back.
                connection.schedule_reconnect()
                return
            if connection.credentials is not None and not connection.authenticated:
                self.logger.info("Waiting for login category=%s retry_seconds=%s", task.category.value, self.auth_retry_seconds)
                connection.login()
                await asyncio.sleep(self.auth_retry_seconds)
                continue
            try:
                self.issue_fetch(task.category)
            except Exception as e:
                self.logger.warning("Fetch request failed category=%s error=%s", task.category.value, e)
            else:
                task.last_issued_at = utc_now()
            await asyncio.sleep(task.interval_seconds)
