"""
Geofence attendance monitor.

Keeps one ParticipantLocationStatus per (event, participant), feeds location
fixes and clock ticks through the decision logic in `app.services.geofence`,
persists the result and keeps the per-record ticks in step with the outside
timer. Writes are version-checked (see ParticipantLocationStatus.version), so
a tick, a sweep and a location update racing on one record never overwrite
each other; the loser reloads or gives up.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, distinct
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings, settings
from app.database import AsyncSessionLocal, utcnow
from app.models.attendance import (
    AttendanceLog, ATTENDANCE_CHECKED_IN, ATTENDANCE_ABSENT, ATTENDANCE_CHECKED_OUT, ATTENDANCE_REGISTERED,
)
from app.models.events import Event, EVENT_STATUS_ACTIVE, EVENT_STATUS_COMPLETED
from app.models.location_tracking import (
    ParticipantLocationStatus,
    STATUS_INSIDE, STATUS_OUTSIDE, STATUS_WARNING, STATUS_ABSENT,
    ALERT_LEFT_GEOFENCE, ALERT_RETURNED,
)
from app.services.exceptions import LocationTrackingError, NotFoundError
from app.services.geofence import Effect, LocationFix, Tick, evaluate, is_stale, max_time_outside_seconds
from app.services.timers import SessionTimerManager

logger = logging.getLogger(__name__)

# Attendance states hidden from the live dashboard
HIDDEN_ATTENDANCE_STATUSES = (ATTENDANCE_CHECKED_OUT, ATTENDANCE_REGISTERED)


@dataclass
class TrackedParticipant:
    record: ParticipantLocationStatus
    current_time_outside: int
    attendance_status: Optional[str] = None


class LocationMonitor:
    """Public entry point for geofence monitoring."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        timers: Optional[SessionTimerManager] = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = config
        self.timers = timers or SessionTimerManager(config.TICK_INTERVAL_SECONDS)
        self.clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _evaluate(self, record, event, signal, now) -> List[Effect]:
        return evaluate(
            record,
            event,
            signal,
            now,
            stale_grace_seconds=self.settings.LOCATION_STALE_GRACE_SECONDS,
            default_max_minutes=self.settings.DEFAULT_MAX_TIME_OUTSIDE_MINUTES,
        )

    async def _get_event(self, db: AsyncSession, event_id: int) -> Event:
        event = await db.get(Event, event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    async def _find_status(self, db: AsyncSession, event_id: int, participant_id: int) -> Optional[ParticipantLocationStatus]:
        result = await db.execute(
            select(ParticipantLocationStatus).where(
                and_(
                    ParticipantLocationStatus.event_id == event_id,
                    ParticipantLocationStatus.participant_id == participant_id,
                )
            )
        )
        return result.scalars().first()

    async def _mark_attendance_absent(self, db: AsyncSession, record: ParticipantLocationStatus, event: Event, now: datetime):
        attendance = await db.get(AttendanceLog, record.attendance_log_id)
        if attendance is None:
            logger.warning(
                "Attendance log %s for location status %s is missing; nothing to mark absent",
                record.attendance_log_id, record.id,
            )
            return
        if attendance.status != ATTENDANCE_CHECKED_IN:
            logger.info(
                "Attendance log %s is %s, leaving it unchanged",
                attendance.id, attendance.status,
            )
            return

        minutes = max_time_outside_seconds(event, self.settings.DEFAULT_MAX_TIME_OUTSIDE_MINUTES) // 60
        attendance.status = ATTENDANCE_ABSENT
        attendance.check_out_time = now
        attendance.notes = f"Automatically marked absent: outside the event area for more than {minutes} minute(s)"

    async def _persist(self, db: AsyncSession, record: ParticipantLocationStatus, event: Event, effects: List[Effect], now: datetime):
        """
        Commit an evaluated record. Raises StaleDataError if another writer got
        there first; the absence write is logged loudly when it fails.
        """
        if Effect.MARK_ABSENT not in effects:
            await db.commit()
            return

        try:
            await self._mark_attendance_absent(db, record, event, now)
            await db.commit()
        except StaleDataError:
            raise
        except SQLAlchemyError:
            logger.error(
                "Failed to persist absence of participant %s in event %s; attendance may still show them present",
                record.participant_id, record.event_id,
                exc_info=True,
            )
            raise
        logger.info(
            "Participant %s exceeded the time outside limit for event %s and was marked absent",
            record.participant_id, record.event_id,
        )

    def _apply_timer_effects(self, record: ParticipantLocationStatus, effects: List[Effect]):
        if Effect.STOP_TICK in effects:
            self.timers.stop(record.id)
        if Effect.START_TICK in effects:
            self.timers.start(record.id, self.run_tick)

    def _log_new_alerts(self, record: ParticipantLocationStatus, alerts_before: int):
        for alert in record.alerts[alerts_before:]:
            if alert.type == ALERT_LEFT_GEOFENCE:
                logger.info(
                    "Participant %s left the geofence of event %s (%sm from center)",
                    record.participant_id, record.event_id, record.distance_from_center,
                )
            elif alert.type == ALERT_RETURNED:
                logger.info(
                    "Participant %s returned to the geofence of event %s after %ss outside",
                    record.participant_id, record.event_id, record.total_time_outside,
                )

    # ------------------------------------------------------------------
    # Write path (mobile client)
    # ------------------------------------------------------------------

    async def initialize(self, event_id: int, participant_id: int, attendance_log_id: int) -> ParticipantLocationStatus:
        """
        Start or resume tracking for a check-in.

        A new attendance log means a new session and resets the outside timer;
        the same log (app reopened mid-session) keeps every field as it was.
        """
        for attempt in range(self.settings.INGEST_MAX_ATTEMPTS):
            async with self.session_factory() as db:
                await self._get_event(db, event_id)
                now = self.clock()
                record = await self._find_status(db, event_id, participant_id)

                if record is None:
                    record = ParticipantLocationStatus.baseline(event_id, participant_id, attendance_log_id, now)
                    db.add(record)
                    logger.info("Location tracking started for participant %s in event %s", participant_id, event_id)
                elif record.attendance_log_id != attendance_log_id:
                    record.reset_timer()
                    record.attendance_log_id = attendance_log_id
                    record.last_location_update = now
                    record.is_active = True
                    logger.info(
                        "New check-in session %s for participant %s in event %s; outside timer reset",
                        attendance_log_id, participant_id, event_id,
                    )
                else:
                    record.is_active = True
                    logger.info("Location tracking resumed for participant %s in event %s", participant_id, event_id)

                try:
                    await db.commit()
                except (IntegrityError, StaleDataError):
                    # Someone else created or touched the record meanwhile
                    await db.rollback()
                    logger.debug("Initialize for participant %s in event %s raced, retrying", participant_id, event_id)
                    continue

            if record.timer_active:
                self.timers.start(record.id, self.run_tick)
            return record

        raise LocationTrackingError(
            f"Could not initialize tracking for participant {participant_id} in event {event_id}"
        )

    async def ingest(
        self,
        event_id: int,
        participant_id: int,
        latitude: float,
        longitude: float,
        accuracy: float = 0.0,
        battery_level: Optional[float] = None,
    ) -> Optional[ParticipantLocationStatus]:
        """
        Apply a location fix. Returns None when the update is ignored: the event
        is completed, the record is no longer active, or a concurrent path
        deactivated it while this update was being evaluated.
        """
        if battery_level is not None:
            logger.debug("Participant %s in event %s reports battery at %s%%", participant_id, event_id, battery_level)

        for attempt in range(1, self.settings.INGEST_MAX_ATTEMPTS + 1):
            async with self.session_factory() as db:
                event = await self._get_event(db, event_id)
                if event.status == EVENT_STATUS_COMPLETED:
                    logger.debug("Ignoring location update for completed event %s", event_id)
                    return None

                record = await self._find_status(db, event_id, participant_id)
                if record is None:
                    raise NotFoundError("Location status not found. Please initialize tracking first.")
                if not record.is_active:
                    logger.debug(
                        "Ignoring location update for inactive tracking of participant %s in event %s",
                        participant_id, event_id,
                    )
                    return None

                now = self.clock()
                record_id = record.id
                alerts_before = len(record.alerts)
                effects = self._evaluate(record, event, LocationFix(latitude, longitude, accuracy or 0.0), now)
                try:
                    await self._persist(db, record, event, effects, now)
                except StaleDataError:
                    await db.rollback()
                    logger.debug(
                        "Location update for status %s lost a write race (attempt %d)",
                        record_id, attempt,
                    )
                    continue

            self._log_new_alerts(record, alerts_before)
            self._apply_timer_effects(record, effects)
            return record

        logger.warning(
            "Dropping location update for participant %s in event %s after %d conflicting writes",
            participant_id, event_id, self.settings.INGEST_MAX_ATTEMPTS,
        )
        return None

    async def stop(self, event_id: int, participant_id: int) -> ParticipantLocationStatus:
        """Stop tracking; accumulated time outside is kept."""
        for attempt in range(self.settings.INGEST_MAX_ATTEMPTS):
            async with self.session_factory() as db:
                record = await self._find_status(db, event_id, participant_id)
                if record is None:
                    raise NotFoundError("Location status not found")

                record.pause_timer(self.clock())
                record.is_active = False
                try:
                    await db.commit()
                except StaleDataError:
                    await db.rollback()
                    continue

            self.timers.stop(record.id)
            logger.info("Location tracking stopped for participant %s in event %s", participant_id, event_id)
            return record

        raise LocationTrackingError(
            f"Could not stop tracking for participant {participant_id} in event {event_id}"
        )

    # ------------------------------------------------------------------
    # Organizer operations
    # ------------------------------------------------------------------

    async def acknowledge(self, record_id: int, alert_id: int) -> ParticipantLocationStatus:
        async with self.session_factory() as db:
            record = await db.get(ParticipantLocationStatus, record_id)
            if record is None:
                raise NotFoundError("Location status not found")

            alert = next((a for a in record.alerts if a.id == alert_id), None)
            if alert is None:
                raise NotFoundError("Alert not found")

            alert.acknowledged = True
            await db.commit()
            return record

    async def query_event_status(self, event_id: int) -> Dict[str, Any]:
        """
        Dashboard view of an event: every tracked participant that is checked in
        (or was marked absent), refreshed so running timers are current.
        """
        await self.check_stale_participants(event_id)

        async with self.session_factory() as db:
            result = await db.execute(
                select(ParticipantLocationStatus, AttendanceLog.status)
                .join(AttendanceLog, ParticipantLocationStatus.attendance_log_id == AttendanceLog.id)
                .where(
                    and_(
                        ParticipantLocationStatus.event_id == event_id,
                        AttendanceLog.status.notin_(HIDDEN_ATTENDANCE_STATUSES),
                    )
                )
                .order_by(ParticipantLocationStatus.participant_id)
            )
            rows = result.all()

        now = self.clock()
        participants = [
            TrackedParticipant(
                record=record,
                current_time_outside=record.current_time_outside(now),
                attendance_status=attendance_status,
            )
            for record, attendance_status in rows
        ]
        return {"participants": participants, "summary": summarize(participants)}

    async def get_participant_status(self, event_id: int, participant_id: int) -> TrackedParticipant:
        async with self.session_factory() as db:
            record = await self._find_status(db, event_id, participant_id)
            if record is None:
                raise NotFoundError("Location status not found")
            record_id = record.id

        await self._refresh_record(record_id)

        async with self.session_factory() as db:
            record = await db.get(ParticipantLocationStatus, record_id)
            attendance = await db.get(AttendanceLog, record.attendance_log_id)

        return TrackedParticipant(
            record=record,
            current_time_outside=record.current_time_outside(self.clock()),
            attendance_status=attendance.status if attendance else None,
        )

    async def list_alerts(self, event_id: int, acknowledged: Optional[bool] = None) -> List[Dict[str, Any]]:
        """Alerts of an event, newest first, optionally filtered by acknowledgement."""
        async with self.session_factory() as db:
            await self._get_event(db, event_id)
            result = await db.execute(
                select(ParticipantLocationStatus).where(ParticipantLocationStatus.event_id == event_id)
            )
            records = result.scalars().all()

        now = self.clock()
        alerts = []
        for record in records:
            time_outside = record.current_time_outside(now)
            for alert in record.alerts:
                if acknowledged is not None and alert.acknowledged != acknowledged:
                    continue
                alerts.append({
                    "alert_id": alert.id,
                    "status_id": record.id,
                    "participant_id": record.participant_id,
                    "type": alert.type,
                    "timestamp": alert.timestamp,
                    "acknowledged": alert.acknowledged,
                    "current_status": record.status,
                    "is_within_geofence": record.is_within_geofence,
                    "current_time_outside": time_outside,
                })

        alerts.sort(key=lambda a: (a["timestamp"], a["alert_id"]), reverse=True)
        return alerts

    async def teardown(self, event_id: int) -> int:
        """Deactivate every record of a finished event and release their ticks."""
        for attempt in range(self.settings.INGEST_MAX_ATTEMPTS):
            async with self.session_factory() as db:
                await self._get_event(db, event_id)
                result = await db.execute(
                    select(ParticipantLocationStatus).where(
                        and_(
                            ParticipantLocationStatus.event_id == event_id,
                            ParticipantLocationStatus.is_active == True,
                        )
                    )
                )
                records = result.scalars().all()

                now = self.clock()
                for record in records:
                    record.pause_timer(now)
                    record.is_active = False
                try:
                    await db.commit()
                except StaleDataError:
                    await db.rollback()
                    continue

            for record in records:
                self.timers.stop(record.id)
            logger.info("Location tracking torn down for event %s (%d participant(s))", event_id, len(records))
            return len(records)

        raise LocationTrackingError(f"Could not tear down tracking for event {event_id}")

    # ------------------------------------------------------------------
    # Background re-evaluation (ticks and sweep)
    # ------------------------------------------------------------------

    async def run_tick(self, record_id: int) -> bool:
        """
        One timer tick for a record. Returns False once the record no longer
        needs ticking, which ends its tick task.
        """
        async with self.session_factory() as db:
            record = await db.get(ParticipantLocationStatus, record_id)
            if record is None or not record.is_active or not record.timer_active:
                self.timers.stop(record_id)
                return False

            event = await db.get(Event, record.event_id)
            if event is None:
                self.timers.stop(record_id)
                return False

            now = self.clock()
            effects = self._evaluate(record, event, Tick(), now)
            try:
                await self._persist(db, record, event, effects, now)
            except StaleDataError:
                await db.rollback()
                logger.debug("Tick for location status %s lost a write race", record_id)
                return True

        self._apply_timer_effects(record, effects)
        return record.is_active and record.timer_active

    async def _refresh_record(self, record_id: int) -> bool:
        """Re-evaluate an active record that is stale or timing; True if it was re-evaluated."""
        async with self.session_factory() as db:
            record = await db.get(ParticipantLocationStatus, record_id)
            if record is None or not record.is_active:
                return False

            now = self.clock()
            if not (record.timer_active or is_stale(record, now, self.settings.LOCATION_STALE_GRACE_SECONDS)):
                return False

            event = await db.get(Event, record.event_id)
            if event is None:
                return False

            effects = self._evaluate(record, event, Tick(), now)
            try:
                await self._persist(db, record, event, effects, now)
            except StaleDataError:
                await db.rollback()
                logger.debug("Refresh of location status %s lost a write race", record_id)
                return False

        self._apply_timer_effects(record, effects)
        # Recover ticks lost to a restart
        if record.is_active and record.timer_active and not self.timers.is_running(record.id):
            self.timers.start(record.id, self.run_tick)
        return True

    async def check_stale_participants(self, event_id: int) -> int:
        """
        Re-evaluate every active record of an event that is stale or has a
        running timer. Failures are logged per record and do not stop the pass.
        """
        async with self.session_factory() as db:
            await self._get_event(db, event_id)
            result = await db.execute(
                select(ParticipantLocationStatus.id).where(
                    and_(
                        ParticipantLocationStatus.event_id == event_id,
                        ParticipantLocationStatus.is_active == True,
                    )
                )
            )
            record_ids = result.scalars().all()

        processed = 0
        for record_id in record_ids:
            try:
                if await self._refresh_record(record_id):
                    processed += 1
            except Exception:
                logger.exception("Failed to re-evaluate location status %s", record_id)
        return processed

    async def active_event_ids(self) -> List[int]:
        async with self.session_factory() as db:
            result = await db.execute(select(Event.id).where(Event.status == EVENT_STATUS_ACTIVE))
            return list(result.scalars().all())

    async def completed_event_ids_with_tracking(self) -> List[int]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(distinct(Event.id))
                .join(ParticipantLocationStatus, ParticipantLocationStatus.event_id == Event.id)
                .where(
                    and_(
                        Event.status == EVENT_STATUS_COMPLETED,
                        ParticipantLocationStatus.is_active == True,
                    )
                )
            )
            return list(result.scalars().all())


def summarize(participants: List[TrackedParticipant]) -> Dict[str, int]:
    records = [p.record for p in participants]
    return {
        "total_participants": len(records),
        "inside_geofence": sum(1 for r in records if r.is_within_geofence),
        "outside_geofence": sum(1 for r in records if not r.is_within_geofence),
        "inside": sum(1 for r in records if r.status == STATUS_INSIDE),
        "outside": sum(1 for r in records if r.status == STATUS_OUTSIDE),
        "warning": sum(1 for r in records if r.status == STATUS_WARNING),
        "absent": sum(1 for r in records if r.status == STATUS_ABSENT),
    }
