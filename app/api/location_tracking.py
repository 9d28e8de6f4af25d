from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import and_

from app.database import get_db
from app.schemas.location_tracking import (
    InitializeTrackingRequest, LocationUpdateRequest, StopTrackingRequest, AcknowledgeAlertRequest,
    LocationStatusResponse, LocationUpdateResponse, EventLocationStatusResponse, EventAlert, TeardownResponse,
)
from app.models.attendance import AttendanceLog, ATTENDANCE_CHECKED_IN
from app.middleware.authentication import CurrentUser, get_current_user, RoleChecker, ORGANIZER_ROLES
from app.services.exceptions import NotFoundError
from app.services.location_tracking import LocationMonitor

router = APIRouter(prefix="/location-tracking")

# Role-based access control
allow_event_monitoring = RoleChecker(ORGANIZER_ROLES)


def get_monitor(request: Request) -> LocationMonitor:
    return request.app.state.monitor


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


@router.post("/initialize", response_model=LocationStatusResponse)
async def initialize_location_tracking(
    payload: InitializeTrackingRequest,
    db: AsyncSession = Depends(get_db),
    monitor: LocationMonitor = Depends(get_monitor),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Start (or resume) geofence monitoring for a checked-in participant.
    """
    # The attendance log must belong to this participant and be checked in
    result = await db.execute(
        select(AttendanceLog).where(
            and_(
                AttendanceLog.id == payload.attendance_log_id,
                AttendanceLog.event_id == payload.event_id,
                AttendanceLog.participant_id == payload.participant_id,
                AttendanceLog.status == ATTENDANCE_CHECKED_IN,
            )
        )
    )
    if result.scalars().first() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Valid attendance log not found"
        )

    try:
        record = await monitor.initialize(payload.event_id, payload.participant_id, payload.attendance_log_id)
    except NotFoundError as exc:
        raise _not_found(exc)

    return LocationStatusResponse.from_record(
        record, record.current_time_outside(monitor.clock()), ATTENDANCE_CHECKED_IN
    )


@router.post("/update-location", response_model=LocationUpdateResponse)
async def update_location(
    payload: LocationUpdateRequest,
    monitor: LocationMonitor = Depends(get_monitor),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Report a location fix from the participant's device.

    Updates for completed events or stopped tracking are accepted but ignored,
    since the device cannot do anything about them.
    """
    try:
        record = await monitor.ingest(
            payload.event_id,
            payload.participant_id,
            payload.latitude,
            payload.longitude,
            payload.accuracy,
            payload.battery_level,
        )
    except NotFoundError as exc:
        raise _not_found(exc)

    if record is None:
        return LocationUpdateResponse(accepted=False, message="Location tracking is not active")

    return LocationUpdateResponse(
        accepted=True,
        location_status=LocationStatusResponse.from_record(record, record.current_time_outside(monitor.clock())),
        message="Location updated successfully",
    )


@router.post("/stop", response_model=LocationStatusResponse)
async def stop_location_tracking(
    payload: StopTrackingRequest,
    monitor: LocationMonitor = Depends(get_monitor),
    current_user: CurrentUser = Depends(get_current_user)
):
    """
    Stop monitoring a participant (called when checking out).
    """
    try:
        record = await monitor.stop(payload.event_id, payload.participant_id)
    except NotFoundError as exc:
        raise _not_found(exc)

    return LocationStatusResponse.from_record(record, record.total_time_outside)


@router.post("/acknowledge-alert", response_model=LocationStatusResponse)
async def acknowledge_alert(
    payload: AcknowledgeAlertRequest,
    monitor: LocationMonitor = Depends(get_monitor),
    current_user: CurrentUser = Depends(allow_event_monitoring)
):
    try:
        record = await monitor.acknowledge(payload.status_id, payload.alert_id)
    except NotFoundError as exc:
        raise _not_found(exc)

    return LocationStatusResponse.from_record(record, record.current_time_outside(monitor.clock()))


@router.get("/event/{event_id}/status", response_model=EventLocationStatusResponse)
async def get_event_location_status(
    event_id: int = Path(..., gt=0),
    monitor: LocationMonitor = Depends(get_monitor),
    current_user: CurrentUser = Depends(allow_event_monitoring)
):
    """
    Live location status of every checked-in participant of an event.
    """
    try:
        report = await monitor.query_event_status(event_id)
    except NotFoundError as exc:
        raise _not_found(exc)

    return {
        "participants": [
            LocationStatusResponse.from_record(p.record, p.current_time_outside, p.attendance_status)
            for p in report["participants"]
        ],
        "summary": report["summary"],
    }


@router.get("/participant/{participant_id}/event/{event_id}/status", response_model=LocationStatusResponse)
async def get_participant_location_status(
    participant_id: int = Path(..., gt=0),
    event_id: int = Path(..., gt=0),
    monitor: LocationMonitor = Depends(get_monitor),
    current_user: CurrentUser = Depends(get_current_user)
):
    try:
        tracked = await monitor.get_participant_status(event_id, participant_id)
    except NotFoundError as exc:
        raise _not_found(exc)

    return LocationStatusResponse.from_record(tracked.record, tracked.current_time_outside, tracked.attendance_status)


@router.get("/event/{event_id}/alerts", response_model=List[EventAlert])
async def get_event_alerts(
    event_id: int = Path(..., gt=0),
    acknowledged: Optional[bool] = Query(None),
    monitor: LocationMonitor = Depends(get_monitor),
    current_user: CurrentUser = Depends(allow_event_monitoring)
):
    """
    Alerts raised for an event, newest first.
    """
    try:
        return await monitor.list_alerts(event_id, acknowledged)
    except NotFoundError as exc:
        raise _not_found(exc)


@router.post("/event/{event_id}/teardown", response_model=TeardownResponse)
async def teardown_event_tracking(
    event_id: int = Path(..., gt=0),
    monitor: LocationMonitor = Depends(get_monitor),
    current_user: CurrentUser = Depends(allow_event_monitoring)
):
    """
    Release tracking for every participant of an event that has ended.
    """
    try:
        deactivated = await monitor.teardown(event_id)
    except NotFoundError as exc:
        raise _not_found(exc)

    return TeardownResponse(event_id=event_id, deactivated=deactivated)
