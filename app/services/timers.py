import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

TickHandler = Callable[[int], Awaitable[bool]]


class SessionTimerManager:
    """
    Owns one repeating tick task per tracking record.

    Every path that deactivates a record or pauses its outside timer must call
    `stop`; a tick whose handler reports there is nothing left to do ends on
    its own, so an orphaned task cannot outlive its record.
    """

    def __init__(self, interval_seconds: float = 1.0):
        self.interval_seconds = interval_seconds
        self._tasks: Dict[int, asyncio.Task] = {}

    def start(self, record_id: int, handler: TickHandler, interval_seconds: Optional[float] = None):
        """Replace any tick for the record with a new one calling `handler` every interval."""
        self.stop(record_id)
        interval = interval_seconds if interval_seconds is not None else self.interval_seconds
        task = asyncio.create_task(self._run(record_id, handler, interval), name=f"location-tick-{record_id}")
        self._tasks[record_id] = task
        logger.debug("Started tick for location status %s every %ss", record_id, interval)

    def stop(self, record_id: int):
        task = self._tasks.pop(record_id, None)
        if task is None:
            return
        # A handler stopping its own tick just lets the loop finish
        if task is not asyncio.current_task():
            task.cancel()
        logger.debug("Stopped tick for location status %s", record_id)

    def is_running(self, record_id: int) -> bool:
        task = self._tasks.get(record_id)
        return task is not None and not task.done()

    def active_ids(self) -> List[int]:
        return [record_id for record_id, task in self._tasks.items() if not task.done()]

    async def shutdown(self):
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Cancelled %d location tick(s)", len(tasks))

    async def _run(self, record_id: int, handler: TickHandler, interval: float):
        try:
            while True:
                await asyncio.sleep(interval)
                try:
                    keep_going = await handler(record_id)
                except Exception:
                    logger.exception("Tick for location status %s failed", record_id)
                    keep_going = True
                if not keep_going:
                    break
        finally:
            if self._tasks.get(record_id) is asyncio.current_task():
                del self._tasks[record_id]
