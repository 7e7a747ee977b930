# backend/tests/routes/test_booking_routes.py
"""
HTTP tests for /api/v1/bookings.

Requests run against the real clock, so slots come from future_slot();
studio hours are 09:00-21:00 UTC through the test environment.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi import status

from tests._utils.studio_helpers import auth_headers, future_slot

BASE = "/api/v1/bookings"


def booking_body(service, start, end=None, **extra):
    body = {"service_id": service.id, "start_at": start.isoformat()}
    if end is not None:
        body["end_at"] = end.isoformat()
    body.update(extra)
    return body


class TestCreateBookingRoute:
    def test_create_returns_201_with_client_details(self, client, client_user, hourly_service):
        start, end = future_slot(hours=2)

        response = client.post(
            BASE, json=booking_body(hourly_service, start, end), headers=auth_headers(client_user)
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["status"] == "pending"
        assert Decimal(data["total_price"]) == Decimal("100")
        assert data["user_name"] == "Artist One"
        assert data["user_email"] == "artist@example.com"

    def test_requires_authentication(self, client, hourly_service):
        start, end = future_slot()
        response = client.post(BASE, json=booking_body(hourly_service, start, end))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"]["code"] == "UNAUTHENTICATED"

    def test_garbage_token_rejected(self, client, hourly_service):
        start, end = future_slot()
        response = client.post(
            BASE,
            json=booking_body(hourly_service, start, end),
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_overlap_is_409_with_reason(self, client, client_user, other_user, hourly_service):
        start, end = future_slot(hour=10, hours=1)
        first = client.post(
            BASE, json=booking_body(hourly_service, start, end), headers=auth_headers(client_user)
        )
        assert first.status_code == status.HTTP_201_CREATED

        response = client.post(
            BASE,
            json=booking_body(
                hourly_service, start + timedelta(minutes=30), end + timedelta(minutes=30)
            ),
            headers=auth_headers(other_user),
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        detail = response.json()["detail"]
        assert detail["code"] == "BOOKING_CONFLICT"
        assert detail["details"]["reason"] == "conflict"
        assert detail["details"]["conflicting_booking_id"] == first.json()["id"]

    def test_naive_datetime_rejected(self, client, client_user, hourly_service):
        start, _ = future_slot()
        body = {"service_id": hourly_service.id, "start_at": start.replace(tzinfo=None).isoformat()}
        response = client.post(BASE, json=body, headers=auth_headers(client_user))
        assert response.status_code == 422

    def test_unknown_field_rejected(self, client, client_user, hourly_service):
        start, end = future_slot()
        body = booking_body(hourly_service, start, end, status="confirmed")
        response = client.post(BASE, json=body, headers=auth_headers(client_user))
        assert response.status_code == 422

    def test_unknown_license_is_400(
        self, client, client_user, production_service, beat_license_rules
    ):
        start, end = future_slot()
        response = client.post(
            BASE,
            json=booking_body(production_service, start, end, beat_license="platinum"),
            headers=auth_headers(client_user),
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestReadRoutes:
    def test_availability_and_quote_are_public(self, client, make_booking, client_user,
                                               hourly_service):
        start, end = future_slot(hour=14)
        existing = make_booking(client_user, hourly_service, start, end)

        response = client.post(
            f"{BASE}/availability",
            json={"start_at": start.isoformat(), "end_at": end.isoformat()},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "available": False,
            "reason": "conflict",
            "message": "This time slot is already booked",
            "conflicting_booking_id": existing.id,
        }

        quote = client.post(
            f"{BASE}/quote", json={"service_id": hourly_service.id, "duration_minutes": 180}
        )
        assert quote.status_code == status.HTTP_200_OK
        assert Decimal(quote.json()["total_price"]) == Decimal("125")
        assert quote.json()["currency"] == "usd"

    def test_calendar_snapshot_is_anonymous(self, client, make_booking, client_user,
                                            hourly_service):
        start, end = future_slot(hour=15)
        make_booking(client_user, hourly_service, start, end)

        response = client.post(
            f"{BASE}/calendar",
            json={
                "window_start": (start - timedelta(hours=6)).isoformat(),
                "window_end": (end + timedelta(hours=6)).isoformat(),
            },
        )

        assert response.status_code == status.HTTP_200_OK
        slots = response.json()
        assert len(slots) == 1
        assert set(slots[0]) == {"start_at", "end_at", "status"}

    def test_owner_reads_other_client_forbidden(
        self, client, make_booking, client_user, other_user, hourly_service
    ):
        start, end = future_slot()
        booking = make_booking(client_user, hourly_service, start, end)

        own = client.get(f"{BASE}/{booking.id}", headers=auth_headers(client_user))
        other = client.get(f"{BASE}/{booking.id}", headers=auth_headers(other_user))

        assert own.status_code == status.HTTP_200_OK
        assert other.status_code == status.HTTP_403_FORBIDDEN

    def test_malformed_booking_id_is_422(self, client, client_user):
        response = client.get(f"{BASE}/not-a-ulid", headers=auth_headers(client_user))
        assert response.status_code == 422

    def test_list_all_users_requires_admin(
        self, client, make_booking, client_user, other_user, admin_user, hourly_service
    ):
        start, end = future_slot()
        make_booking(client_user, hourly_service, start, end)
        make_booking(
            other_user, hourly_service, start + timedelta(hours=2), end + timedelta(hours=2)
        )

        mine = client.get(BASE, headers=auth_headers(client_user))
        everyone = client.get(BASE, params={"all_users": True}, headers=auth_headers(admin_user))
        refused = client.get(BASE, params={"all_users": True}, headers=auth_headers(client_user))

        assert len(mine.json()) == 1
        assert len(everyone.json()) == 2
        assert refused.status_code == status.HTTP_403_FORBIDDEN

    def test_changes_since_returns_server_time(
        self, client, make_booking, client_user, hourly_service
    ):
        since = datetime.now(timezone.utc) - timedelta(minutes=1)
        start, end = future_slot()
        booking = make_booking(client_user, hourly_service, start, end)

        response = client.get(
            f"{BASE}/changes",
            params={"since": since.isoformat()},
            headers=auth_headers(client_user),
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [item["id"] for item in data["items"]] == [booking.id]
        assert data["server_time"]


class TestAdminRoutes:
    def test_reject_with_reason(self, client, make_booking, client_user, admin_user,
                                hourly_service):
        start, end = future_slot()
        booking = make_booking(client_user, hourly_service, start, end)

        response = client.post(
            f"{BASE}/{booking.id}/reject",
            json={"reason": "Engineer unavailable"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "rejected"
        assert "Engineer unavailable" in response.json()["notes"]

    def test_client_cannot_reject(self, client, make_booking, client_user, hourly_service):
        start, end = future_slot()
        booking = make_booking(client_user, hourly_service, start, end)
        response = client.post(f"{BASE}/{booking.id}/reject", headers=auth_headers(client_user))
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_invalid_transition_is_412(
        self, client, make_booking, client_user, admin_user, hourly_service
    ):
        start, end = future_slot()
        booking = make_booking(client_user, hourly_service, start, end, status="completed")
        response = client.post(f"{BASE}/{booking.id}/cancel", headers=auth_headers(admin_user))
        assert response.status_code == status.HTTP_412_PRECONDITION_FAILED
        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"

    def test_confirm_free_then_complete(
        self, client, make_booking, client_user, admin_user, consultation_service
    ):
        start, _ = future_slot()
        booking = make_booking(
            client_user,
            consultation_service,
            start,
            start + timedelta(minutes=15),
            total_price=Decimal("0"),
        )
        confirmed = client.post(f"{BASE}/{booking.id}/confirm", headers=auth_headers(admin_user))
        completed = client.post(f"{BASE}/{booking.id}/complete", headers=auth_headers(admin_user))

        assert confirmed.json()["status"] == "confirmed"
        assert completed.json()["status"] == "completed"

    def test_overlaps_report(
        self, client, make_booking, client_user, other_user, admin_user, hourly_service
    ):
        start, end = future_slot(hours=2)
        first = make_booking(client_user, hourly_service, start, end)
        second = make_booking(
            other_user, hourly_service, start + timedelta(hours=1), end + timedelta(hours=1)
        )

        response = client.get(f"{BASE}/overlaps", headers=auth_headers(admin_user))

        assert response.status_code == status.HTTP_200_OK
        pairs = response.json()
        assert [(p["first_booking_id"], p["second_booking_id"]) for p in pairs] == [
            (first.id, second.id)
        ]

    def test_session_details_by_owner(self, client, make_booking, client_user, hourly_service):
        start, end = future_slot()
        booking = make_booking(client_user, hourly_service, start, end)
        response = client.patch(
            f"{BASE}/{booking.id}/session-details",
            json={"session_details": {"bpm": 92, "files": ["stems.zip"]}},
            headers=auth_headers(client_user),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["session_details"] == {"bpm": 92, "files": ["stems.zip"]}


def test_live_channel_receives_http_changes(
    client, channel, make_booking, client_user, admin_user, hourly_service
):
    start, end = future_slot()
    booking = make_booking(client_user, hourly_service, start, end)
    with channel.subscribe(user_id=client_user.id) as subscription:
        client.post(f"{BASE}/{booking.id}/reject", headers=auth_headers(admin_user))
        event = subscription.get(timeout=1)
    assert event is not None
    assert (event.booking_id, event.status) == (booking.id, "rejected")


def test_health_and_metrics(client):
    health = client.get("/health")
    assert health.status_code == status.HTTP_200_OK
    assert health.json()["database"] == "ok"

    metrics = client.get("/metrics")
    assert metrics.status_code == status.HTTP_200_OK
