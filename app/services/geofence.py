"""
Decision logic for geofence attendance monitoring.

`evaluate` takes a tracking record, the event it belongs to and one signal
(a new location fix or a clock tick) and moves the record to its next state in
memory. It never touches the database or the scheduler; instead it returns the
side effects the caller has to carry out.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Union

from app.models.location_tracking import (
    ParticipantLocationStatus,
    STATUS_INSIDE, STATUS_OUTSIDE, STATUS_ABSENT,
    TIMER_REASON_OUTSIDE, TIMER_REASON_STALE,
    ALERT_LEFT_GEOFENCE, ALERT_RETURNED, ALERT_EXCEEDED_LIMIT,
)
from app.services.gps import is_within_geofence

DEFAULT_STALE_GRACE_SECONDS = 180
DEFAULT_MAX_TIME_OUTSIDE_MINUTES = 15


class Effect(str, Enum):
    START_TICK = "start_tick"
    STOP_TICK = "stop_tick"
    MARK_ABSENT = "mark_absent"


@dataclass(frozen=True)
class LocationFix:
    latitude: float
    longitude: float
    accuracy: float = 0.0


@dataclass(frozen=True)
class Tick:
    """A clock signal with no new location."""


Signal = Union[LocationFix, Tick]


def max_time_outside_seconds(event, default_minutes: int = DEFAULT_MAX_TIME_OUTSIDE_MINUTES) -> int:
    """Time budget of an event in seconds; unset or zero falls back to the default."""
    minutes = event.max_time_outside or default_minutes
    return int(minutes * 60)


def is_stale(record: ParticipantLocationStatus, now: datetime, stale_grace_seconds: int = DEFAULT_STALE_GRACE_SECONDS) -> bool:
    return now - record.last_location_update > timedelta(seconds=stale_grace_seconds)


def _add(effects: List[Effect], effect: Effect):
    if effect not in effects:
        effects.append(effect)


def _apply_fix(record: ParticipantLocationStatus, event, fix: LocationFix, now: datetime, effects: List[Effect]):
    first_fix = not record.has_real_fix()
    was_within = record.is_within_geofence
    within, distance = is_within_geofence(
        fix.latitude,
        fix.longitude,
        event.geofence_latitude,
        event.geofence_longitude,
        event.geofence_radius,
    )

    record.current_latitude = fix.latitude
    record.current_longitude = fix.longitude
    record.current_accuracy = fix.accuracy or 0.0
    record.current_location_at = now
    record.distance_from_center = int(round(distance)) if math.isfinite(distance) else None
    record.is_within_geofence = within
    record.last_location_update = now

    # A real fix ends a silent period; its time stays counted
    resumed_from_stale = record.timer_active and record.timer_reason == TIMER_REASON_STALE
    if resumed_from_stale:
        record.pause_timer(now)

    if within:
        if record.timer_active:
            record.pause_timer(now)
            _add(effects, Effect.STOP_TICK)
        elif resumed_from_stale:
            _add(effects, Effect.STOP_TICK)
        # Also raised when the timer was already paused by a stop
        if not first_fix and not was_within and not resumed_from_stale:
            record.add_alert(ALERT_RETURNED, now)
    else:
        if not record.timer_active:
            record.start_timer(now, TIMER_REASON_OUTSIDE)
            _add(effects, Effect.START_TICK)
        if was_within and not first_fix:
            record.add_alert(ALERT_LEFT_GEOFENCE, now)


def evaluate(
    record: ParticipantLocationStatus,
    event,
    signal: Signal,
    now: datetime,
    stale_grace_seconds: int = DEFAULT_STALE_GRACE_SECONDS,
    default_max_minutes: int = DEFAULT_MAX_TIME_OUTSIDE_MINUTES,
) -> List[Effect]:
    """
    Advance a tracking record by one signal.

    Args:
        record: The participant's location status; mutated in place
        event: Anything exposing geofence_latitude, geofence_longitude,
            geofence_radius and max_time_outside
        signal: LocationFix or Tick
        now: Evaluation time (naive UTC)
        stale_grace_seconds: Silence tolerated before the participant counts as stale
        default_max_minutes: Budget used when the event has none

    Returns:
        Effects to carry out, in order
    """
    effects: List[Effect] = []
    if not record.is_active:
        return effects

    if isinstance(signal, LocationFix):
        _apply_fix(record, event, signal, now, effects)

    if record.timer_active:
        total = record.current_time_outside(now)
    elif is_stale(record, now, stale_grace_seconds):
        # Anchor after the grace window so the silence is not overcounted
        anchor = record.last_location_update + timedelta(seconds=stale_grace_seconds)
        record.start_timer(now, TIMER_REASON_STALE, anchor=anchor)
        total = record.current_time_outside(now)
        _add(effects, Effect.START_TICK)
    else:
        total = record.total_time_outside

    limit = max_time_outside_seconds(event, default_max_minutes)
    if total >= limit and not record.has_unacknowledged_alert(ALERT_EXCEEDED_LIMIT):
        record.pause_timer(now)
        record.status = STATUS_ABSENT
        record.add_alert(ALERT_EXCEEDED_LIMIT, now)
        record.is_active = False
        if Effect.START_TICK in effects:
            effects.remove(Effect.START_TICK)
        _add(effects, Effect.STOP_TICK)
        _add(effects, Effect.MARK_ABSENT)
        return effects

    # A stale participant keeps the inside label while the stale timer runs
    record.status = STATUS_INSIDE if record.is_within_geofence else STATUS_OUTSIDE
    return effects
