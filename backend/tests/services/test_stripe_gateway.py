# backend/tests/services/test_stripe_gateway.py
"""Stripe adapter tests; every Stripe API call is patched."""

from unittest.mock import patch

import pytest
import stripe

from studiobook.core.exceptions import PaymentGatewayException, ValidationException
from studiobook.services.payment_gateway import StripePaymentGateway, intent_from_stripe


@pytest.fixture
def stripe_gateway() -> StripePaymentGateway:
    return StripePaymentGateway(
        api_key="sk_test_123", webhook_secret="whsec_test_secret", timeout_seconds=5
    )


def stripe_intent(**overrides):
    data = {
        "id": "pi_123",
        "status": "requires_capture",
        "amount": 4000,
        "currency": "usd",
        "client_secret": "pi_123_secret_abc",
        "latest_charge": "ch_123",
        "metadata": {"booking_id": "bk-1"},
    }
    data.update(overrides)
    return data


@patch("stripe.PaymentIntent.create")
def test_create_intent_uses_manual_capture(mock_create, stripe_gateway):
    mock_create.return_value = stripe_intent(status="requires_payment_method")

    intent = stripe_gateway.create_intent(
        4000, "usd", {"booking_id": "bk-1"}, idempotency_key="deposit-intent-bk-1"
    )

    assert intent.id == "pi_123"
    assert intent.client_secret == "pi_123_secret_abc"
    kwargs = mock_create.call_args.kwargs
    assert kwargs["capture_method"] == "manual"
    assert kwargs["amount"] == 4000
    assert kwargs["metadata"] == {"booking_id": "bk-1"}
    assert kwargs["idempotency_key"] == "deposit-intent-bk-1"


@patch("stripe.PaymentIntent.create")
def test_stripe_error_becomes_gateway_exception(mock_create, stripe_gateway):
    mock_create.side_effect = stripe.CardError("Your card was declined.", None, "card_declined")

    with pytest.raises(PaymentGatewayException) as exc_info:
        stripe_gateway.create_intent(4000, "usd", {"booking_id": "bk-1"})

    assert exc_info.value.details["operation"] == "create_intent"
    assert exc_info.value.details["booking_id"] == "bk-1"


@patch("stripe.PaymentIntent.capture")
def test_capture_intent(mock_capture, stripe_gateway):
    mock_capture.return_value = stripe_intent(status="succeeded")

    intent = stripe_gateway.capture_intent("pi_123", idempotency_key="capture-deposit-bk-1")

    assert intent.status == "succeeded"
    mock_capture.assert_called_once_with("pi_123", idempotency_key="capture-deposit-bk-1")


@patch("stripe.PaymentIntent.retrieve")
def test_retrieve_intent_network_error(mock_retrieve, stripe_gateway):
    mock_retrieve.side_effect = stripe.APIConnectionError("timed out")

    with pytest.raises(PaymentGatewayException):
        stripe_gateway.retrieve_intent("pi_123")


@patch("stripe.Refund.create")
def test_create_refund(mock_refund, stripe_gateway):
    mock_refund.return_value = {"id": "re_1", "status": "pending", "amount": 4000, "charge": "ch_1"}

    refund = stripe_gateway.create_refund(
        "ch_1", reason="requested_by_customer", metadata={"booking_id": "bk-1"}
    )

    assert (refund.id, refund.status, refund.charge_id) == ("re_1", "pending", "ch_1")
    assert mock_refund.call_args.kwargs["charge"] == "ch_1"


@patch("stripe.Refund.retrieve")
def test_retrieve_refund_with_expanded_charge(mock_retrieve, stripe_gateway):
    mock_retrieve.return_value = {"id": "re_1", "status": "failed", "charge": {"id": "ch_9"}}

    refund = stripe_gateway.retrieve_refund("re_1")

    assert (refund.status, refund.charge_id) == ("failed", "ch_9")
    mock_retrieve.assert_called_once_with("re_1")


def test_unconfigured_gateway_refuses_calls():
    gateway = StripePaymentGateway(api_key="", webhook_secret="")
    assert gateway.configured is False
    with pytest.raises(PaymentGatewayException):
        gateway.retrieve_intent("pi_123")
    with pytest.raises(PaymentGatewayException):
        gateway.construct_webhook_event(b"{}", "sig")


@patch("stripe.Webhook.construct_event")
def test_construct_webhook_event(mock_construct, stripe_gateway):
    mock_construct.return_value = {
        "id": "evt_1",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_123", "status": "succeeded"}},
    }

    event = stripe_gateway.construct_webhook_event(b"payload", "signature")

    assert event.type == "payment_intent.succeeded"
    assert event.data_object["id"] == "pi_123"
    mock_construct.assert_called_once_with(b"payload", "signature", "whsec_test_secret")


@patch("stripe.Webhook.construct_event")
def test_invalid_signature_is_validation_error(mock_construct, stripe_gateway):
    mock_construct.side_effect = stripe.SignatureVerificationError("Invalid", "sig")

    with pytest.raises(ValidationException):
        stripe_gateway.construct_webhook_event(b"payload", "sig")


@patch("stripe.Webhook.construct_event")
def test_malformed_payload_is_validation_error(mock_construct, stripe_gateway):
    mock_construct.side_effect = ValueError("bad json")

    with pytest.raises(ValidationException):
        stripe_gateway.construct_webhook_event(b"not json", "sig")


def test_intent_from_stripe_handles_expanded_charge():
    intent = intent_from_stripe(stripe_intent(latest_charge={"id": "ch_expanded"}, metadata=None))
    assert intent.latest_charge == "ch_expanded"
    assert intent.metadata == {}
