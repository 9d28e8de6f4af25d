"""Tests for the location tracking HTTP endpoints."""

import pytest
from jose import jwt

from app.models.attendance import ATTENDANCE_CHECKED_OUT, ATTENDANCE_REGISTERED
from app.models.events import EVENT_STATUS_COMPLETED

from conftest import INSIDE, OUTSIDE, check_in, make_token, set_attendance_status, set_event_status

PARTICIPANT = 7
BASE = "/api/location-tracking"


async def initialize(client, headers, event, attendance):
    return await client.post(
        f"{BASE}/initialize",
        json={"event_id": event.id, "participant_id": PARTICIPANT, "attendance_log_id": attendance.id},
        headers=headers,
    )


async def update(client, headers, event, point, **extra):
    payload = {
        "event_id": event.id,
        "participant_id": PARTICIPANT,
        "latitude": point[0],
        "longitude": point[1],
        "accuracy": 8,
    }
    payload.update(extra)
    return await client.post(f"{BASE}/update-location", json=payload, headers=headers)


async def test_root(client):
    """Test the root endpoint."""
    response = await client.get("/")
    assert response.status_code == 200
    assert "message" in response.json()


async def test_requires_token(client, event, attendance):
    """Test that requests without a bearer token are rejected."""
    response = await client.post(
        f"{BASE}/initialize",
        json={"event_id": event.id, "participant_id": PARTICIPANT, "attendance_log_id": attendance.id},
    )
    assert response.status_code == 401


async def test_rejects_expired_token(client, event, attendance):
    """Test that an expired token is rejected."""
    headers = {"Authorization": f"Bearer {make_token(PARTICIPANT, 'participant', expires_in=-60)}"}
    response = await initialize(client, headers, event, attendance)
    assert response.status_code == 401


async def test_rejects_tampered_token(client, event, attendance):
    """Test that a token signed with another key is rejected."""
    forged = jwt.encode({"sub": str(PARTICIPANT), "exp": 4102444800}, "not-the-server-key", algorithm="HS256")
    response = await initialize(client, {"Authorization": f"Bearer {forged}"}, event, attendance)
    assert response.status_code == 401


async def test_initialize(client, participant_headers, event, attendance):
    """Test starting tracking for a checked-in participant."""
    response = await initialize(client, participant_headers, event, attendance)

    assert response.status_code == 200
    body = response.json()
    assert body["participant_id"] == PARTICIPANT
    assert body["status"] == "outside"
    assert body["is_active"] is True
    assert body["attendance_status"] == "checked-in"
    assert body["current_location"]["latitude"] == 0
    assert body["outside_timer"]["is_active"] is False
    assert body["alerts_sent"] == []


async def test_initialize_requires_check_in(client, participant_headers, event, session_factory):
    """Test that tracking needs a checked-in attendance log."""
    log = await check_in(session_factory, event.id, PARTICIPANT, status=ATTENDANCE_REGISTERED)

    response = await initialize(client, participant_headers, event, log)

    assert response.status_code == 404
    assert response.json()["detail"] == "Valid attendance log not found"


async def test_update_location_flow(client, participant_headers, event, attendance, clock):
    """Test fixes inside then outside through the API."""
    await initialize(client, participant_headers, event, attendance)

    first = await update(client, participant_headers, event, INSIDE, battery_level=80)
    assert first.status_code == 200
    assert first.json()["accepted"] is True
    assert first.json()["location_status"]["status"] == "inside"
    assert first.json()["location_status"]["alerts_sent"] == []

    clock.advance(12)
    second = await update(client, participant_headers, event, OUTSIDE)
    status = second.json()["location_status"]
    assert status["status"] == "outside"
    assert status["is_within_geofence"] is False
    assert status["distance_from_center"] == 200
    assert status["outside_timer"]["is_active"] is True
    assert status["outside_timer"]["reason"] == "outside"
    assert [a["type"] for a in status["alerts_sent"]] == ["left_geofence"]


@pytest.mark.parametrize(
    "field, value",
    [
        ("latitude", 91),
        ("longitude", -181),
        ("accuracy", -1),
        ("battery_level", 101),
    ],
)
async def test_update_location_validation(client, participant_headers, event, attendance, field, value):
    """Test that out-of-range readings are rejected."""
    await initialize(client, participant_headers, event, attendance)

    response = await update(client, participant_headers, event, INSIDE, **{field: value})

    assert response.status_code == 422


async def test_update_location_not_initialized(client, participant_headers, event):
    """Test that a fix before initialization is a 404."""
    response = await update(client, participant_headers, event, INSIDE)
    assert response.status_code == 404


async def test_update_location_completed_event(client, participant_headers, event, attendance, session_factory):
    """Test that fixes for a completed event are acknowledged but ignored."""
    await initialize(client, participant_headers, event, attendance)
    await set_event_status(session_factory, event.id, EVENT_STATUS_COMPLETED)

    response = await update(client, participant_headers, event, OUTSIDE)

    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert response.json()["location_status"] is None


async def test_stop(client, participant_headers, event, attendance, clock):
    """Test stopping tracking keeps the time outside."""
    await initialize(client, participant_headers, event, attendance)
    await update(client, participant_headers, event, OUTSIDE)
    clock.advance(20)

    response = await client.post(
        f"{BASE}/stop",
        json={"event_id": event.id, "participant_id": PARTICIPANT},
        headers=participant_headers,
    )

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert response.json()["outside_timer"]["total_time_outside"] == 20


async def test_stop_unknown(client, participant_headers, event):
    """Test that stopping an untracked participant is a 404."""
    response = await client.post(
        f"{BASE}/stop",
        json={"event_id": event.id, "participant_id": PARTICIPANT},
        headers=participant_headers,
    )
    assert response.status_code == 404


async def test_event_status_requires_organizer(client, participant_headers, event):
    """Test that participants cannot see the event dashboard."""
    response = await client.get(f"{BASE}/event/{event.id}/status", headers=participant_headers)
    assert response.status_code == 403


async def test_event_status(client, participant_headers, organizer_headers, event, attendance, clock):
    """Test the event dashboard with one participant outside."""
    await initialize(client, participant_headers, event, attendance)
    await update(client, participant_headers, event, OUTSIDE)
    clock.advance(40)

    response = await client.get(f"{BASE}/event/{event.id}/status", headers=organizer_headers)

    assert response.status_code == 200
    body = response.json()
    assert len(body["participants"]) == 1
    assert body["participants"][0]["current_time_outside"] == 40
    assert body["participants"][0]["attendance_status"] == "checked-in"
    assert body["summary"]["total_participants"] == 1
    assert body["summary"]["outside"] == 1


async def test_event_status_unknown_event(client, organizer_headers):
    """Test the dashboard of a missing event is a 404."""
    response = await client.get(f"{BASE}/event/999/status", headers=organizer_headers)
    assert response.status_code == 404


async def test_participant_status(client, participant_headers, event, attendance, clock):
    """Test a participant reading their own status."""
    await initialize(client, participant_headers, event, attendance)
    await update(client, participant_headers, event, OUTSIDE)
    clock.advance(5)

    response = await client.get(
        f"{BASE}/participant/{PARTICIPANT}/event/{event.id}/status",
        headers=participant_headers,
    )

    assert response.status_code == 200
    assert response.json()["current_time_outside"] == 5


async def test_alerts_and_acknowledge(client, participant_headers, organizer_headers, event, attendance, clock):
    """Test listing alerts and acknowledging one."""
    await initialize(client, participant_headers, event, attendance)
    await update(client, participant_headers, event, INSIDE)
    clock.advance(5)
    left = await update(client, participant_headers, event, OUTSIDE)
    status = left.json()["location_status"]

    alerts = await client.get(f"{BASE}/event/{event.id}/alerts", headers=organizer_headers)
    assert alerts.status_code == 200
    assert [a["type"] for a in alerts.json()] == ["left_geofence"]
    assert alerts.json()[0]["acknowledged"] is False

    response = await client.post(
        f"{BASE}/acknowledge-alert",
        json={"status_id": status["id"], "alert_id": status["alerts_sent"][0]["id"]},
        headers=organizer_headers,
    )
    assert response.status_code == 200
    assert response.json()["alerts_sent"][0]["acknowledged"] is True

    pending = await client.get(
        f"{BASE}/event/{event.id}/alerts",
        params={"acknowledged": "false"},
        headers=organizer_headers,
    )
    assert pending.json() == []


async def test_acknowledge_requires_organizer(client, participant_headers, event, attendance):
    """Test that participants cannot acknowledge alerts."""
    response = await client.post(
        f"{BASE}/acknowledge-alert",
        json={"status_id": 1, "alert_id": 1},
        headers=participant_headers,
    )
    assert response.status_code == 403


async def test_acknowledge_unknown_alert(client, participant_headers, organizer_headers, event, attendance):
    """Test acknowledging a missing alert is a 404."""
    created = await initialize(client, participant_headers, event, attendance)

    response = await client.post(
        f"{BASE}/acknowledge-alert",
        json={"status_id": created.json()["id"], "alert_id": 4242},
        headers=organizer_headers,
    )
    assert response.status_code == 404


async def test_teardown(client, participant_headers, organizer_headers, event, attendance):
    """Test releasing tracking for an event."""
    await initialize(client, participant_headers, event, attendance)

    response = await client.post(f"{BASE}/event/{event.id}/teardown", headers=organizer_headers)

    assert response.status_code == 200
    assert response.json() == {"event_id": event.id, "deactivated": 1}

    followup = await update(client, participant_headers, event, INSIDE)
    assert followup.json()["accepted"] is False


async def test_request_id_header(client):
    """Test that every response carries a request id."""
    response = await client.get("/")
    assert response.headers.get("X-Request-ID")


async def test_request_id_is_echoed(client):
    """Test that a client-supplied request id is returned unchanged."""
    response = await client.get("/", headers={"X-Request-ID": "device-42"})
    assert response.headers["X-Request-ID"] == "device-42"


async def test_initialize_after_re_check_in(client, participant_headers, event, attendance, session_factory, clock):
    """Test that checking back in to the same event resets the outside timer."""
    await initialize(client, participant_headers, event, attendance)
    await update(client, participant_headers, event, OUTSIDE)
    clock.advance(30)
    await client.post(
        f"{BASE}/stop",
        json={"event_id": event.id, "participant_id": PARTICIPANT},
        headers=participant_headers,
    )
    await set_attendance_status(session_factory, attendance.id, ATTENDANCE_CHECKED_OUT)
    new_log = await check_in(session_factory, event.id, PARTICIPANT)

    response = await initialize(client, participant_headers, event, new_log)

    assert response.status_code == 200
    body = response.json()
    assert body["attendance_log_id"] == new_log.id
    assert body["outside_timer"]["total_time_outside"] == 0
    assert body["is_active"] is True

    stale = await initialize(client, participant_headers, event, attendance)
    assert stale.status_code == 404
