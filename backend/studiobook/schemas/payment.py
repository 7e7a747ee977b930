# backend/studiobook/schemas/payment.py
"""
Payment operation payloads.

Field names follow the camelCase contract of the client-callable payment
operations; snake_case names are accepted as well.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class CreatePaymentIntentRequest(StrictRequestModel):
    booking_id: str = Field(..., alias="bookingId")
    amount: Decimal = Field(..., description="Deposit amount in major currency units")
    currency: str = Field("usd", max_length=3)


class BookingPaymentRequest(StrictRequestModel):
    booking_id: str = Field(..., alias="bookingId")


class RefundDepositRequest(StrictRequestModel):
    booking_id: str = Field(..., alias="bookingId")
    reason: str = Field("admin_cancellation", max_length=500)


class ChargeFinalPaymentRequest(StrictRequestModel):
    booking_id: str = Field(..., alias="bookingId")
    amount: Decimal = Field(..., description="Remaining balance to charge")
    currency: str = Field("usd", max_length=3)


class PaymentIntentResponse(StrictModel):
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    payment_intent_id: str = Field(..., alias="paymentIntentId")


class PaymentActionResponse(StrictModel):
    success: bool
    message: str


class WebhookResponse(StrictModel):
    received: bool = True
    handled: bool
    event_type: Optional[str] = None
