# backend/studiobook/services/payment_gateway.py
"""
Payment gateway interface and its Stripe implementation.

The coordinator only talks to ``PaymentGateway``; ``StripePaymentGateway``
uses manual-capture PaymentIntents so the deposit is authorized when the
client pays and captured when an administrator confirms the booking.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Mapping, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import PaymentGatewayException, ValidationException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayIntent:
    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: Optional[str] = None
    latest_charge: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    status: str
    amount_cents: Optional[int] = None
    charge_id: Optional[str] = None


@dataclass(frozen=True)
class GatewayEvent:
    id: str
    type: str
    data_object: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    @abstractmethod
    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Mapping[str, str],
        *,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        """Create a manual-capture intent and return it with its client secret."""

    @abstractmethod
    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        ...

    @abstractmethod
    def capture_intent(
        self, intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> GatewayIntent:
        ...

    @abstractmethod
    def create_refund(
        self,
        charge_id: str,
        *,
        reason: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        ...

    @abstractmethod
    def retrieve_refund(self, refund_id: str) -> GatewayRefund:
        ...

    @abstractmethod
    def construct_webhook_event(self, payload: bytes, signature: str) -> GatewayEvent:
        """Verify a webhook signature and parse the event."""


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if hasattr(obj, "get"):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _charge_id(value: Any) -> Optional[str]:
    """latest_charge is an id string unless the caller expanded it."""
    if value is None or isinstance(value, str):
        return value
    return _get(value, "id")


def intent_from_stripe(pi: Any) -> GatewayIntent:
    return GatewayIntent(
        id=_get(pi, "id"),
        status=_get(pi, "status") or "unknown",
        amount_cents=int(_get(pi, "amount") or 0),
        currency=_get(pi, "currency") or settings.stripe_currency,
        client_secret=_get(pi, "client_secret"),
        latest_charge=_charge_id(_get(pi, "latest_charge")),
        metadata={k: str(v) for k, v in dict(_get(pi, "metadata") or {}).items()},
    )


def refund_from_stripe(refund: Any, charge_id: Optional[str] = None) -> GatewayRefund:
    return GatewayRefund(
        id=_get(refund, "id"),
        status=_get(refund, "status") or "unknown",
        amount_cents=_get(refund, "amount"),
        charge_id=_charge_id(_get(refund, "charge")) or charge_id,
    )


class StripePaymentGateway(PaymentGateway):
    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        *,
        timeout_seconds: Optional[int] = None,
        max_network_retries: Optional[int] = None,
    ):
        self.api_key = (
            api_key if api_key is not None else settings.stripe_secret_key.get_secret_value()
        )
        self.webhook_secret = (
            webhook_secret
            if webhook_secret is not None
            else settings.stripe_webhook_secret.get_secret_value()
        )
        self.timeout_seconds = timeout_seconds or settings.stripe_timeout_seconds
        self.max_network_retries = (
            max_network_retries
            if max_network_retries is not None
            else settings.stripe_max_network_retries
        )
        self.configured = bool(self.api_key)
        if self.configured:
            stripe.api_key = self.api_key
            try:
                stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout_seconds)
                stripe.max_network_retries = self.max_network_retries
            except AttributeError as exc:
                logger.warning(f"Could not customize Stripe HTTP client: {exc}")
            logger.info("Stripe gateway configured")
        else:
            logger.warning("Stripe secret key not configured - gateway calls will fail")

    def _ensure_configured(self, operation: str) -> None:
        if not self.configured:
            prometheus_metrics.record_gateway_call(operation, "not_configured")
            raise PaymentGatewayException(
                "Payment gateway is not configured", details={"operation": operation}
            )

    def _fail(self, operation: str, exc: Exception, **context: Any) -> PaymentGatewayException:
        prometheus_metrics.record_gateway_call(operation, "error")
        logger.error(
            f"Stripe error during {operation}: {str(exc)}",
            extra={"operation": operation, "error_type": type(exc).__name__, **context},
        )
        return PaymentGatewayException(
            f"Payment gateway error: {getattr(exc, 'user_message', None) or str(exc)}",
            details={"operation": operation, "error_type": type(exc).__name__, **context},
        )

    def create_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: Mapping[str, str],
        *,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        self._ensure_configured("create_intent")
        try:
            pi = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                capture_method="manual",
                automatic_payment_methods={"enabled": True},
                metadata=dict(metadata),
                description=description,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise self._fail("create_intent", e, booking_id=metadata.get("booking_id"))
        prometheus_metrics.record_gateway_call("create_intent", "success")
        return intent_from_stripe(pi)

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        self._ensure_configured("retrieve_intent")
        try:
            pi = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.StripeError as e:
            raise self._fail("retrieve_intent", e, payment_intent_id=intent_id)
        prometheus_metrics.record_gateway_call("retrieve_intent", "success")
        return intent_from_stripe(pi)

    def capture_intent(
        self, intent_id: str, *, idempotency_key: Optional[str] = None
    ) -> GatewayIntent:
        self._ensure_configured("capture_intent")
        try:
            pi = stripe.PaymentIntent.capture(intent_id, idempotency_key=idempotency_key)
        except stripe.StripeError as e:
            raise self._fail("capture_intent", e, payment_intent_id=intent_id)
        prometheus_metrics.record_gateway_call("capture_intent", "success")
        return intent_from_stripe(pi)

    def create_refund(
        self,
        charge_id: str,
        *,
        reason: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        self._ensure_configured("create_refund")
        try:
            refund = stripe.Refund.create(
                charge=charge_id,
                reason=reason,
                metadata=dict(metadata),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise self._fail("create_refund", e, charge_id=charge_id)
        prometheus_metrics.record_gateway_call("create_refund", "success")
        return refund_from_stripe(refund, charge_id)

    def retrieve_refund(self, refund_id: str) -> GatewayRefund:
        self._ensure_configured("retrieve_refund")
        try:
            refund = stripe.Refund.retrieve(refund_id)
        except stripe.StripeError as e:
            raise self._fail("retrieve_refund", e, refund_id=refund_id)
        prometheus_metrics.record_gateway_call("retrieve_refund", "success")
        return refund_from_stripe(refund)

    def construct_webhook_event(self, payload: bytes, signature: str) -> GatewayEvent:
        if not self.webhook_secret:
            raise PaymentGatewayException("Webhook signing secret is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise ValidationException("Invalid webhook payload") from exc
        except stripe.SignatureVerificationError as exc:
            logger.warning(f"Webhook signature verification failed: {exc}")
            raise ValidationException("Invalid webhook signature") from exc
        data = _get(event, "data") or {}
        data_object = _get(data, "object") or {}
        return GatewayEvent(
            id=_get(event, "id"),
            type=_get(event, "type"),
            data_object=dict(data_object),
        )
