# backend/studiobook/services/payment_service.py
"""
Payment Coordinator.

Two-phase payment for a booking:

1. The client pays a deposit: a manual-capture intent is created and the
   booking moves to pending_payment.
2. An administrator captures the deposit: the booking is confirmed.
3. An administrator charges and captures the remaining balance: the booking
   is completed. Alternatively the deposit is refunded from confirmed.

Every operation holds the booking's mutex around the gateway call and the
follow-up write. Gateway failures leave the booking untouched. If the
gateway succeeded but the write failed, ReconciliationRequiredException is
raised and the gateway is not called again; re-running the operation
later detects the already-captured intent and only applies the write.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BookingStatus, PaymentType
from ..core.exceptions import (
    InvalidTransitionException,
    PaymentGatewayException,
    PreconditionFailedException,
    ReconciliationRequiredException,
    RefundPendingException,
    RepositoryException,
    ServiceException,
    ValidationException,
)
from ..core.timezone_utils import utc_now
from ..events import BookingEventChannel, ChangeType
from ..models.booking import Booking
from ..utils.money import quantize_money, to_cents, to_decimal
from .base import BaseService
from .booking_service import BookingService
from .payment_gateway import GatewayEvent, GatewayIntent, GatewayRefund, PaymentGateway

logger = logging.getLogger(__name__)

INTENT_SUCCEEDED = "succeeded"
# Statuses from which the intent can still be captured or already was.
_CAPTURABLE_STATUSES = {"requires_capture", INTENT_SUCCEEDED}
REFUND_SUCCEEDED = "succeeded"
REFUND_PENDING = "pending"
# Refund statuses that may still settle; "requires_action" waits on the customer.
_IN_FLIGHT_REFUND_STATUSES = {REFUND_PENDING, "requires_action"}
# A stored refund in one of these is re-read instead of issuing a new one.
_OPEN_REFUND_STATUSES = _IN_FLIGHT_REFUND_STATUSES | {REFUND_SUCCEEDED}
GATEWAY_REFUND_REASON = "requested_by_customer"

SUPPORTED_WEBHOOK_EVENTS = {
    "payment_intent.succeeded",
    "payment_intent.amount_capturable_updated",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
    "charge.refunded",
    "charge.refund.updated",
    "refund.updated",
    "refund.failed",
}
# Events whose data object is a Refund rather than a PaymentIntent.
_REFUND_OBJECT_EVENTS = {"charge.refund.updated", "refund.updated", "refund.failed"}


@dataclass(frozen=True)
class IntentResult:
    client_secret: Optional[str]
    payment_intent_id: str


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str


class PaymentService(BaseService):
    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        *,
        booking_service: Optional[BookingService] = None,
        channel: Optional[BookingEventChannel] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.gateway = gateway
        self.clock = clock
        self.bookings = booking_service or BookingService(db, channel=channel, clock=clock)
        self.booking_repository = self.bookings.booking_repository
        self.permissions = self.bookings.permissions

    # Helpers

    @staticmethod
    def _parse_amount(amount: Any) -> Decimal:
        try:
            value = quantize_money(to_decimal(amount))
        except ValueError as exc:
            raise ValidationException(
                "Amount must be a number", details={"amount": str(amount)}
            ) from exc
        if value <= 0:
            raise ValidationException("Amount must be positive", details={"amount": str(value)})
        return value

    @staticmethod
    def _parse_currency(currency: Optional[str]) -> str:
        value = (currency or settings.stripe_currency).strip().lower()
        if len(value) != 3 or not value.isalpha():
            raise ValidationException(
                "Currency must be a 3-letter ISO code", details={"currency": currency}
            )
        return value

    def _metadata(
        self, booking: Booking, user_id: str, payment_type: PaymentType
    ) -> Dict[str, str]:
        return {
            "booking_id": booking.id,
            "user_id": user_id,
            "payment_type": payment_type.value,
        }

    def _persist_after_gateway(
        self, booking: Booking, operation: str, gateway_reference: str, apply: Callable[[], Any]
    ) -> Any:
        """
        Run the follow-up write for a gateway side effect that already happened.

        Any failure here means the booking and the gateway disagree.
        """
        try:
            return apply()
        except (ServiceException, RepositoryException, InvalidTransitionException) as exc:
            self.logger.error(
                f"Gateway {operation} succeeded but booking update failed: {exc}",
                extra={
                    "booking_id": booking.id,
                    "operation": operation,
                    "gateway_reference": gateway_reference,
                },
            )
            raise ReconciliationRequiredException(
                f"Payment {operation} succeeded but the booking could not be updated",
                details={
                    "booking_id": booking.id,
                    "operation": operation,
                    "gateway_reference": gateway_reference,
                },
            ) from exc

    def _reuse_intent(self, intent_id: str) -> IntentResult:
        intent = self.gateway.retrieve_intent(intent_id)
        return IntentResult(client_secret=intent.client_secret, payment_intent_id=intent.id)

    def _capture(self, intent_id: str, idempotency_key: str) -> GatewayIntent:
        """Capture unless the gateway already reports the intent captured."""
        current = self.gateway.retrieve_intent(intent_id)
        if current.status not in _CAPTURABLE_STATUSES:
            raise PreconditionFailedException(
                "Payment is not ready to be captured",
                details={"payment_intent_id": intent_id, "intent_status": current.status},
            )
        if current.status == INTENT_SUCCEEDED:
            self.logger.info(f"Intent {intent_id} already captured; applying booking update only")
            return current
        captured = self.gateway.capture_intent(intent_id, idempotency_key=idempotency_key)
        if captured.status != INTENT_SUCCEEDED:
            raise PaymentGatewayException(
                "Payment capture failed",
                details={"payment_intent_id": intent_id, "intent_status": captured.status},
            )
        return captured

    # Deposit

    @BaseService.measure_operation("create_deposit_intent")
    def create_deposit_intent(
        self,
        user_id: Optional[str],
        booking_id: str,
        amount: Any,
        currency: Optional[str] = None,
    ) -> IntentResult:
        """
        Create (or return the existing) deposit intent for the caller's booking.

        Raises:
            UnauthorizedException, ForbiddenException, NotFoundException
            ValidationException: amount not positive or above the booking total
            PreconditionFailedException: zero-price booking or wrong status
            PaymentGatewayException: gateway call failed; booking unchanged
        """
        user = self.permissions.require_authenticated(user_id)
        value = self._parse_amount(amount)
        currency_code = self._parse_currency(currency)

        with self.bookings.locked_booking(booking_id) as booking:
            self.permissions.require_owner_or_admin(user.id, booking)

            if booking.price <= 0:
                raise PreconditionFailedException(
                    "Free bookings do not take payment", details={"booking_id": booking_id}
                )
            if booking.payment_intent_id:
                return self._reuse_intent(booking.payment_intent_id)
            if booking.status != BookingStatus.PENDING.value:
                raise InvalidTransitionException(
                    booking_id, booking.status, BookingStatus.PENDING_PAYMENT.value
                )
            if value > booking.price:
                raise ValidationException(
                    "Deposit cannot exceed the booking total",
                    details={"amount": str(value), "total_price": str(booking.price)},
                )

            intent = self.gateway.create_intent(
                to_cents(value),
                currency_code,
                self._metadata(booking, user.id, PaymentType.DEPOSIT),
                description=f"{settings.studio_name} deposit for {booking.service_name}",
                idempotency_key=f"deposit-intent-{booking.id}",
            )
            self._persist_after_gateway(
                booking,
                "create_deposit_intent",
                intent.id,
                lambda: self.bookings.apply_transition(
                    booking,
                    BookingStatus.PENDING_PAYMENT,
                    change_type=ChangeType.PAYMENT_UPDATED,
                    payment_event={
                        "event_type": "deposit_intent_created",
                        "amount": value,
                        "gateway_reference": intent.id,
                        "actor_id": user.id,
                    },
                    payment_intent_id=intent.id,
                    deposit_amount=value,
                    payment_status=intent.status,
                ),
            )

        self.log_operation(
            "create_deposit_intent", booking_id=booking_id, payment_intent_id=intent.id
        )
        return IntentResult(client_secret=intent.client_secret, payment_intent_id=intent.id)

    @BaseService.measure_operation("capture_deposit")
    def capture_deposit(self, admin_id: Optional[str], booking_id: str) -> ActionResult:
        admin = self.permissions.require_admin(admin_id)
        with self.bookings.locked_booking(booking_id) as booking:
            if booking.deposit_captured:
                return ActionResult(True, "Deposit already captured")
            if not booking.payment_intent_id:
                raise PreconditionFailedException(
                    "No payment intent found for this booking",
                    details={"booking_id": booking_id},
                )
            if booking.status != BookingStatus.PENDING_PAYMENT.value:
                raise InvalidTransitionException(
                    booking_id, booking.status, BookingStatus.CONFIRMED.value
                )

            intent = self._capture(booking.payment_intent_id, f"capture-deposit-{booking.id}")
            now = self.clock()
            self._persist_after_gateway(
                booking,
                "capture_deposit",
                intent.id,
                lambda: self.bookings.apply_transition(
                    booking,
                    BookingStatus.CONFIRMED,
                    payment_event={
                        "event_type": "deposit_captured",
                        "amount": booking.deposit_amount,
                        "gateway_reference": intent.id,
                        "actor_id": admin.id,
                    },
                    deposit_captured=True,
                    deposit_captured_at=now,
                    confirmed_at=now,
                    payment_status=intent.status,
                ),
            )

        self.log_operation("capture_deposit", booking_id=booking_id, admin_id=admin.id)
        return ActionResult(True, "Deposit captured and booking confirmed")

    @BaseService.measure_operation("refund_deposit")
    def refund_deposit(
        self, admin_id: Optional[str], booking_id: str, reason: str = "admin_cancellation"
    ) -> ActionResult:
        """
        Refund the captured deposit.

        The booking moves to refunded only once the gateway reports the
        refund as succeeded. A pending refund is recorded on the booking and
        surfaced as RefundPendingException; calling again re-reads that
        refund instead of issuing a second one.
        """
        admin = self.permissions.require_admin(admin_id)
        with self.bookings.locked_booking(booking_id) as booking:
            if booking.status == BookingStatus.REFUNDED.value:
                return ActionResult(True, "Deposit already refunded")
            if not booking.payment_intent_id:
                raise PreconditionFailedException(
                    "No payment intent found for this booking",
                    details={"booking_id": booking_id},
                )
            if booking.status != BookingStatus.CONFIRMED.value or not booking.deposit_captured:
                raise InvalidTransitionException(
                    booking_id, booking.status, BookingStatus.REFUNDED.value
                )

            if booking.refund_id and booking.refund_status in _OPEN_REFUND_STATUSES:
                refund = self.gateway.retrieve_refund(booking.refund_id)
                charge_id = refund.charge_id
                reason = booking.refund_reason or reason
            else:
                intent = self.gateway.retrieve_intent(booking.payment_intent_id)
                if not intent.latest_charge:
                    raise PreconditionFailedException(
                        "No charge found for this payment",
                        details={"payment_intent_id": intent.id},
                    )
                charge_id = intent.latest_charge
                # A failed earlier refund must not replay under the same key.
                key = f"refund-deposit-{booking.id}"
                if booking.refund_id:
                    key = f"{key}-after-{booking.refund_id}"
                refund = self.gateway.create_refund(
                    charge_id,
                    reason=GATEWAY_REFUND_REASON,
                    metadata={"booking_id": booking.id, "reason": reason, "admin_id": admin.id},
                    idempotency_key=key,
                )

            if refund.status in _IN_FLIGHT_REFUND_STATUSES:
                self._record_pending_refund(booking, refund, reason, admin.id)
                raise RefundPendingException(booking.id, refund.id)
            if refund.status != REFUND_SUCCEEDED:
                if booking.refund_id == refund.id:
                    with self.transaction():
                        self.booking_repository.update(booking.id, refund_status=refund.status)
                raise PaymentGatewayException(
                    "Refund failed",
                    details={"refund_id": refund.id, "refund_status": refund.status},
                )
            now = self.clock()
            self._persist_after_gateway(
                booking,
                "refund_deposit",
                refund.id,
                lambda: self.bookings.apply_transition(
                    booking,
                    BookingStatus.REFUNDED,
                    payment_event={
                        "event_type": "deposit_refunded",
                        "amount": booking.deposit_amount,
                        "gateway_reference": refund.id,
                        "actor_id": admin.id,
                        "event_data": {"reason": reason, "charge_id": charge_id},
                    },
                    refund_id=refund.id,
                    refund_status=refund.status,
                    refund_reason=reason,
                    cancelled_at=now,
                ),
            )

        self.log_operation("refund_deposit", booking_id=booking_id, refund_id=refund.id)
        return ActionResult(True, "Deposit refunded")

    def _record_pending_refund(
        self, booking: Booking, refund: GatewayRefund, reason: str, admin_id: str
    ) -> None:
        refund_id = refund.id
        if booking.refund_id == refund_id and booking.refund_status == refund.status:
            return

        def _write() -> None:
            with self.transaction():
                self.booking_repository.update(
                    booking.id,
                    refund_id=refund_id,
                    refund_status=refund.status,
                    refund_reason=reason,
                )
                self.booking_repository.add_payment_event(
                    booking.id,
                    "deposit_refund_pending",
                    amount=booking.deposit_amount,
                    gateway_reference=refund_id,
                    actor_id=admin_id,
                    event_data={"reason": reason},
                )

        self._persist_after_gateway(booking, "refund_deposit", refund_id, _write)
        self.bookings.publish_change(booking.id, ChangeType.PAYMENT_UPDATED)

    # Final payment

    @BaseService.measure_operation("create_final_intent")
    def create_final_intent(
        self,
        admin_id: Optional[str],
        booking_id: str,
        amount: Any,
        currency: Optional[str] = None,
    ) -> IntentResult:
        """Create the intent for the remaining balance of a confirmed booking."""
        admin = self.permissions.require_admin(admin_id)
        value = self._parse_amount(amount)
        currency_code = self._parse_currency(currency)

        with self.bookings.locked_booking(booking_id) as booking:
            if booking.final_payment_intent_id:
                return self._reuse_intent(booking.final_payment_intent_id)
            if booking.status != BookingStatus.CONFIRMED.value:
                raise PreconditionFailedException(
                    "Final payment can only be charged on confirmed bookings",
                    details={"booking_id": booking_id, "status": booking.status},
                )
            remaining = booking.remaining_balance()
            if remaining <= 0:
                raise PreconditionFailedException(
                    "Nothing remains to be paid on this booking",
                    details={"booking_id": booking_id},
                )
            if value > remaining:
                raise ValidationException(
                    "Final amount cannot exceed the remaining balance",
                    details={"amount": str(value), "remaining_balance": str(remaining)},
                )

            intent = self.gateway.create_intent(
                to_cents(value),
                currency_code,
                self._metadata(booking, booking.user_id, PaymentType.FINAL),
                description=f"{settings.studio_name} final payment for {booking.service_name}",
                idempotency_key=f"final-intent-{booking.id}",
            )

            def _apply() -> None:
                with self.transaction():
                    self.booking_repository.update(
                        booking.id,
                        final_payment_intent_id=intent.id,
                        final_payment_amount=value,
                        final_payment_status=intent.status,
                    )
                    self.booking_repository.add_payment_event(
                        booking.id,
                        "final_intent_created",
                        amount=value,
                        gateway_reference=intent.id,
                        actor_id=admin.id,
                    )

            self._persist_after_gateway(booking, "create_final_intent", intent.id, _apply)

        self.bookings.publish_change(booking_id, ChangeType.PAYMENT_UPDATED)
        self.log_operation(
            "create_final_intent", booking_id=booking_id, payment_intent_id=intent.id
        )
        return IntentResult(client_secret=intent.client_secret, payment_intent_id=intent.id)

    @BaseService.measure_operation("capture_final_payment")
    def capture_final_payment(self, admin_id: Optional[str], booking_id: str) -> ActionResult:
        admin = self.permissions.require_admin(admin_id)
        with self.bookings.locked_booking(booking_id) as booking:
            if booking.final_payment_captured:
                return ActionResult(True, "Final payment already captured")
            if not booking.final_payment_intent_id:
                raise PreconditionFailedException(
                    "No final payment intent found for this booking",
                    details={"booking_id": booking_id},
                )
            if booking.status != BookingStatus.CONFIRMED.value:
                raise InvalidTransitionException(
                    booking_id, booking.status, BookingStatus.COMPLETED.value
                )

            intent = self._capture(booking.final_payment_intent_id, f"capture-final-{booking.id}")
            now = self.clock()
            self._persist_after_gateway(
                booking,
                "capture_final_payment",
                intent.id,
                lambda: self.bookings.apply_transition(
                    booking,
                    BookingStatus.COMPLETED,
                    payment_event={
                        "event_type": "final_payment_captured",
                        "amount": booking.final_payment_amount,
                        "gateway_reference": intent.id,
                        "actor_id": admin.id,
                    },
                    final_payment_captured=True,
                    final_payment_captured_at=now,
                    final_payment_status=intent.status,
                    completed_at=now,
                ),
            )

        self.log_operation("capture_final_payment", booking_id=booking_id, admin_id=admin.id)
        return ActionResult(True, "Final payment captured and booking completed")

    # Webhooks

    @BaseService.measure_operation("handle_webhook")
    def handle_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        event = self.gateway.construct_webhook_event(payload, signature)
        handled = self.apply_webhook_event(event)
        return {"received": True, "handled": handled, "event_type": event.type}

    def apply_webhook_event(self, event: GatewayEvent) -> bool:
        """
        Mirror gateway-side payment status onto the booking.

        Webhooks record what the gateway reports; they never move the
        booking along its lifecycle.
        """
        if event.type not in SUPPORTED_WEBHOOK_EVENTS:
            self.logger.debug(f"Ignoring webhook event {event.type}")
            return False

        obj = event.data_object
        about_refund = event.type == "charge.refunded" or event.type in _REFUND_OBJECT_EVENTS
        intent_id = obj.get("payment_intent") if about_refund else obj.get("id")
        if not intent_id:
            self.logger.warning(f"Webhook {event.type} without payment intent reference")
            return False

        booking = self.booking_repository.find_by_payment_intent(intent_id)
        if booking is None:
            self.logger.warning(
                f"Webhook {event.type} for unknown intent {intent_id}",
                extra={"payment_intent_id": intent_id, "event_id": event.id},
            )
            return False

        fields: Dict[str, Any] = {}
        if about_refund:
            refund = self._booking_refund(booking, event, obj)
            if refund is not None:
                fields["refund_status"] = refund.get("status")
                if refund.get("status") not in _OPEN_REFUND_STATUSES:
                    self.logger.warning(
                        f"Refund {refund.get('id')} for booking {booking.id} is "
                        f"{refund.get('status')}; the deposit was not returned",
                        extra={"booking_id": booking.id, "refund_id": refund.get("id")},
                    )
        else:
            status_field = (
                "final_payment_status"
                if intent_id == booking.final_payment_intent_id
                else "payment_status"
            )
            fields[status_field] = obj.get("status")
            if event.type == "payment_intent.payment_failed":
                error = obj.get("last_payment_error") or {}
                self.logger.warning(
                    f"Payment failed for booking {booking.id}: {error.get('message')}",
                    extra={"booking_id": booking.id, "payment_intent_id": intent_id},
                )

        with self.transaction():
            if fields:
                self.booking_repository.update(booking.id, **fields)
            self.booking_repository.add_payment_event(
                booking.id,
                f"webhook:{event.type}",
                gateway_reference=intent_id,
                event_data={"event_id": event.id},
            )

        self.bookings.publish_change(booking.id, ChangeType.PAYMENT_UPDATED)
        return True

    @staticmethod
    def _booking_refund(
        booking: Booking, event: GatewayEvent, obj: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """The refund an event reports for this booking, if it is the one on record."""
        if event.type in _REFUND_OBJECT_EVENTS:
            candidates = [obj]
        else:
            candidates = (obj.get("refunds") or {}).get("data") or []
        if booking.refund_id:
            candidates = [r for r in candidates if r.get("id") == booking.refund_id]
        return candidates[0] if candidates else None
