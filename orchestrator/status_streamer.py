"""
Status Streamer - Server-sent task snapshots

Publishes the state of a task to a subscribed client as SSE frames. The
stream polls the TaskStore on a fixed interval and pushes the full task on
every tick. It closes when the task reaches a terminal status or when the
connection lifetime cap is hit, whichever comes first.
"""

import asyncio
import json
import logging
import time
from typing import AsyncIterator, Awaitable, Callable

from orchestrator.task_store import TaskStore

logger = logging.getLogger(__name__)

STREAM_INTERVAL_SECONDS = 1.0
STREAM_LIFETIME_SECONDS = 30.0


def sse_frame(data: str) -> str:
    return f"data: {data}\n\n"


class StatusStreamer:
    """Polling SSE publisher for task snapshots"""

    def __init__(
        self,
        task_store: TaskStore,
        interval: float = STREAM_INTERVAL_SECONDS,
        max_lifetime: float = STREAM_LIFETIME_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize streamer.

        Args:
            task_store: Task persistence to poll
            interval: Seconds between snapshots
            max_lifetime: Seconds after which a stream is closed regardless
                of task status
            clock: Monotonic time source
            sleep: Awaitable sleep (tests substitute a fast one)
        """
        self.task_store = task_store
        self.interval = interval
        self.max_lifetime = max_lifetime
        self._clock = clock
        self._sleep = sleep

    async def stream(self, task_id: str) -> AsyncIterator[str]:
        """
        Yield SSE frames for one task.

        The first frame acknowledges the subscription. A task id that does
        not exist produces no snapshot frames; the stream simply runs until
        the lifetime cap.

        Args:
            task_id: Task to follow

        Yields:
            "data: <json>\\n\\n" frames
        """
        yield sse_frame(json.dumps({"status": "connected"}))

        started = self._clock()
        ticks = 0
        while self._clock() - started < self.max_lifetime:
            task = self.task_store.get(task_id)
            if task is not None:
                ticks += 1
                yield sse_frame(task.to_json())
                if task.is_terminal:
                    logger.debug(f"[STREAM] Task {task_id} reached {task.status}, closing after {ticks} snapshots")
                    return
            await self._sleep(self.interval)

        logger.debug(f"[STREAM] Stream for task {task_id} hit the {self.max_lifetime}s lifetime cap")
