# backend/tests/_utils/studio_helpers.py
"""Shared test doubles and time helpers."""

from datetime import datetime, timedelta, timezone
import itertools
import json
from typing import Any, Dict, Mapping, Optional

from studiobook.auth import create_access_token
from studiobook.core.exceptions import PaymentGatewayException, ValidationException
from studiobook.models.user import User
from studiobook.services.availability_service import StudioHours
from studiobook.services.payment_gateway import (
    GatewayEvent,
    GatewayIntent,
    GatewayRefund,
    PaymentGateway,
)

# Fixed evaluation instant for service-level tests; bookings in these tests
# are placed on 2024-06-01.
NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)
UTC_STUDIO_HOURS = StudioHours(open_hour=9, close_hour=21, timezone="UTC")


def at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    """Instant on 2024-06-<day> in UTC."""
    return datetime(2024, 6, day, hour, minute, tzinfo=timezone.utc)


class FakeGateway(PaymentGateway):
    """
    In-memory PaymentGateway.

    Intents start in ``requires_payment_method``; ``authorize`` simulates the
    client completing payment so the intent becomes capturable.
    ``fail_on`` maps an operation name to the exception raised next time.
    """

    def __init__(self) -> None:
        self.intents: Dict[str, GatewayIntent] = {}
        self.refunds: Dict[str, GatewayRefund] = {}
        self.calls: list = []
        self.fail_on: Dict[str, Exception] = {}
        self.refund_status = "succeeded"
        self.capture_status = "succeeded"
        self._ids = itertools.count(1)

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        exc = self.fail_on.pop(operation, None)
        if exc is not None:
            raise exc

    def _replace(self, intent_id: str, **changes: Any) -> GatewayIntent:
        current = self.intents[intent_id]
        data = {**current.__dict__, **changes}
        self.intents[intent_id] = GatewayIntent(**data)
        return self.intents[intent_id]

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Mapping[str, str],
        *,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        self._maybe_fail("create_intent")
        intent_id = f"pi_test_{next(self._ids)}"
        intent = GatewayIntent(
            id=intent_id,
            status="requires_payment_method",
            amount_cents=amount_cents,
            currency=currency,
            client_secret=f"{intent_id}_secret",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def authorize(self, intent_id: str) -> GatewayIntent:
        return self._replace(
            intent_id, status="requires_capture", latest_charge=f"ch_{intent_id}"
        )

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        self._maybe_fail("retrieve_intent")
        if intent_id not in self.intents:
            raise PaymentGatewayException("No such payment intent", details={"id": intent_id})
        return self.intents[intent_id]

    def capture_intent(
        self, intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> GatewayIntent:
        self._maybe_fail("capture_intent")
        return self._replace(intent_id, status=self.capture_status)

    def create_refund(
        self,
        charge_id: str,
        *,
        reason: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        self._maybe_fail("create_refund")
        refund = GatewayRefund(
            id=f"re_test_{next(self._ids)}", status=self.refund_status, charge_id=charge_id
        )
        self.refunds[refund.id] = refund
        return refund

    def settle_refund(self, refund_id: str, status: str) -> GatewayRefund:
        """Simulate the gateway finishing (or failing) an asynchronous refund."""
        current = self.refunds[refund_id]
        self.refunds[refund_id] = GatewayRefund(
            id=current.id, status=status, charge_id=current.charge_id
        )
        return self.refunds[refund_id]

    def retrieve_refund(self, refund_id: str) -> GatewayRefund:
        self._maybe_fail("retrieve_refund")
        if refund_id not in self.refunds:
            raise PaymentGatewayException("No such refund", details={"id": refund_id})
        return self.refunds[refund_id]

    def construct_webhook_event(self, payload: bytes, signature: str) -> GatewayEvent:
        self._maybe_fail("construct_webhook_event")
        if signature != "valid-signature":
            raise ValidationException("Invalid webhook signature")
        event = json.loads(payload)
        return GatewayEvent(
            id=event["id"], type=event["type"], data_object=event["data"]["object"]
        )


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token({"sub": user.id})
    return {"Authorization": f"Bearer {token}"}


def future_slot(days: int = 3, hour: int = 10, hours: int = 1):
    """A slot inside studio hours relative to the real clock, for HTTP tests."""
    day = (datetime.now(timezone.utc) + timedelta(days=days)).date()
    start = datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)
    return start, start + timedelta(hours=hours)
