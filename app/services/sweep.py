import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from app.services.location_tracking import LocationMonitor

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    events_checked: int = 0
    records_processed: int = 0
    events_torn_down: int = 0


class SweepScheduler:
    """
    Periodic event-wide pass over tracked participants.

    Per-record ticks do the real-time work; the sweep catches records whose
    tick was lost (for example across a restart) and releases tracking for
    events that have completed.
    """

    def __init__(self, monitor: LocationMonitor, interval_seconds: float = 120.0):
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> SweepSummary:
        summary = SweepSummary()

        for event_id in await self.monitor.active_event_ids():
            try:
                summary.records_processed += await self.monitor.check_stale_participants(event_id)
                summary.events_checked += 1
            except Exception:
                logger.exception("Stale participant check failed for event %s", event_id)

        for event_id in await self.monitor.completed_event_ids_with_tracking():
            try:
                await self.monitor.teardown(event_id)
                summary.events_torn_down += 1
            except Exception:
                logger.exception("Tracking teardown failed for completed event %s", event_id)

        if summary.events_checked or summary.events_torn_down:
            logger.info(
                "Location sweep: %d active event(s) checked, %d participant(s) re-evaluated, %d event(s) torn down",
                summary.events_checked, summary.records_processed, summary.events_torn_down,
            )
        return summary

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="location-sweep")
        logger.info("Location sweep started (every %ss)", self.interval_seconds)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Location sweep stopped")

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Location sweep pass failed")
