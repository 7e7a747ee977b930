# backend/tests/routes/test_payment_routes.py
import json

import pytest
from fastapi import status

from studiobook.core.exceptions import PaymentGatewayException
from tests._utils.studio_helpers import auth_headers, future_slot

BASE = "/api/v1/payments"


@pytest.fixture
def pending_booking(make_booking, client_user, hourly_service):
    start, end = future_slot(days=5, hour=11)
    return make_booking(client_user, hourly_service, start, end)


def start_deposit(client, gateway, user, booking, amount="40.00"):
    response = client.post(
        f"{BASE}/intents",
        json={"bookingId": booking.id, "amount": amount, "currency": "usd"},
        headers=auth_headers(user),
    )
    assert response.status_code == status.HTTP_200_OK, response.text
    gateway.authorize(response.json()["paymentIntentId"])
    return response.json()


def read_booking(client, user, booking):
    return client.get(f"/api/v1/bookings/{booking.id}", headers=auth_headers(user)).json()


def test_create_intent_returns_camel_case_fields(client, gateway, client_user, pending_booking):
    response = client.post(
        f"{BASE}/intents",
        json={"bookingId": pending_booking.id, "amount": "40.00"},
        headers=auth_headers(client_user),
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["paymentIntentId"] == "pi_test_1"
    assert data["clientSecret"] == "pi_test_1_secret"
    assert read_booking(client, client_user, pending_booking)["status"] == "pending_payment"


def test_create_intent_rejects_amount_over_total(client, client_user, pending_booking):
    response = client.post(
        f"{BASE}/intents",
        json={"bookingId": pending_booking.id, "amount": "100.01"},
        headers=auth_headers(client_user),
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["code"] == "INVALID_INPUT"


def test_create_intent_requires_authentication(client, pending_booking):
    response = client.post(
        f"{BASE}/intents", json={"bookingId": pending_booking.id, "amount": "40"}
    )
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_gateway_failure_is_502(client, gateway, client_user, pending_booking):
    gateway.fail_on["create_intent"] = PaymentGatewayException("Stripe is down")
    response = client.post(
        f"{BASE}/intents",
        json={"bookingId": pending_booking.id, "amount": "40"},
        headers=auth_headers(client_user),
    )
    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert read_booking(client, client_user, pending_booking)["status"] == "pending"


def test_deposit_capture_confirms_booking(
    client, gateway, client_user, admin_user, pending_booking
):
    start_deposit(client, gateway, client_user, pending_booking)

    response = client.post(
        f"{BASE}/capture-deposit",
        json={"bookingId": pending_booking.id},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["success"] is True
    booking = read_booking(client, client_user, pending_booking)
    assert booking["status"] == "confirmed"
    assert booking["deposit_captured"] is True


def test_client_cannot_capture(client, gateway, client_user, pending_booking):
    start_deposit(client, gateway, client_user, pending_booking)
    response = client.post(
        f"{BASE}/capture-deposit",
        json={"bookingId": pending_booking.id},
        headers=auth_headers(client_user),
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert "capture_intent" not in gateway.calls


def test_refund_after_capture(client, gateway, client_user, admin_user, pending_booking):
    start_deposit(client, gateway, client_user, pending_booking)
    client.post(
        f"{BASE}/capture-deposit",
        json={"bookingId": pending_booking.id},
        headers=auth_headers(admin_user),
    )

    response = client.post(
        f"{BASE}/refund-deposit",
        json={"bookingId": pending_booking.id, "reason": "requested_by_customer"},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == status.HTTP_200_OK
    booking = read_booking(client, client_user, pending_booking)
    assert booking["status"] == "refunded"
    assert booking["refund_reason"] == "requested_by_customer"


def test_pending_refund_is_412_and_booking_stays_confirmed(
    client, gateway, client_user, admin_user, pending_booking
):
    start_deposit(client, gateway, client_user, pending_booking)
    client.post(
        f"{BASE}/capture-deposit",
        json={"bookingId": pending_booking.id},
        headers=auth_headers(admin_user),
    )
    gateway.refund_status = "pending"

    response = client.post(
        f"{BASE}/refund-deposit",
        json={"bookingId": pending_booking.id},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == status.HTTP_412_PRECONDITION_FAILED
    assert response.json()["detail"]["code"] == "REFUND_PENDING"
    booking = read_booking(client, client_user, pending_booking)
    assert (booking["status"], booking["refund_status"]) == ("confirmed", "pending")


def test_refund_before_capture_is_412(client, gateway, client_user, admin_user, pending_booking):
    start_deposit(client, gateway, client_user, pending_booking)
    response = client.post(
        f"{BASE}/refund-deposit",
        json={"bookingId": pending_booking.id},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == status.HTTP_412_PRECONDITION_FAILED


def test_final_payment_completes_booking(
    client, gateway, client_user, admin_user, pending_booking
):
    start_deposit(client, gateway, client_user, pending_booking)
    client.post(
        f"{BASE}/capture-deposit",
        json={"bookingId": pending_booking.id},
        headers=auth_headers(admin_user),
    )

    final = client.post(
        f"{BASE}/final-intents",
        json={"bookingId": pending_booking.id, "amount": "60.00"},
        headers=auth_headers(admin_user),
    )
    assert final.status_code == status.HTTP_200_OK
    gateway.authorize(final.json()["paymentIntentId"])

    captured = client.post(
        f"{BASE}/capture-final",
        json={"bookingId": pending_booking.id},
        headers=auth_headers(admin_user),
    )
    completed = client.post(
        f"/api/v1/bookings/{pending_booking.id}/complete", headers=auth_headers(admin_user)
    )

    assert captured.json()["success"] is True
    assert completed.json()["status"] == "completed"

    events = client.get(
        f"/api/v1/bookings/{pending_booking.id}/payment-events",
        headers=auth_headers(admin_user),
    ).json()
    assert [e["event_type"] for e in events] == [
        "deposit_intent_created",
        "deposit_captured",
        "final_intent_created",
        "final_payment_captured",
    ]


class TestWebhookRoute:
    @staticmethod
    def body(event_type, obj):
        return json.dumps({"id": "evt_http", "type": event_type, "data": {"object": obj}})

    def test_signed_event_is_recorded(self, client, gateway, client_user, pending_booking):
        intent = start_deposit(client, gateway, client_user, pending_booking)

        response = client.post(
            f"{BASE}/webhook",
            content=self.body(
                "payment_intent.amount_capturable_updated",
                {"id": intent["paymentIntentId"], "status": "requires_capture"},
            ),
            headers={"Stripe-Signature": "valid-signature"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "received": True,
            "handled": True,
            "event_type": "payment_intent.amount_capturable_updated",
        }
        booking = read_booking(client, client_user, pending_booking)
        assert booking["payment_status"] == "requires_capture"
        assert booking["status"] == "pending_payment"

    def test_unsupported_event_acknowledged(self, client):
        response = client.post(
            f"{BASE}/webhook",
            content=self.body("customer.created", {"id": "cus_1"}),
            headers={"Stripe-Signature": "valid-signature"},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["handled"] is False

    def test_bad_signature_is_400(self, client):
        response = client.post(
            f"{BASE}/webhook",
            content=self.body("payment_intent.succeeded", {"id": "pi_x"}),
            headers={"Stripe-Signature": "forged"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_missing_signature_is_400(self, client):
        response = client.post(
            f"{BASE}/webhook", content=self.body("payment_intent.succeeded", {"id": "pi_x"})
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
