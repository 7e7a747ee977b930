# backend/studiobook/schemas/booking.py
"""
Booking schemas.

Instants travel as ISO-8601 strings with an explicit offset; naive values
are refused so a client's local clock never silently shifts a slot.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import BookingStatus
from ._strict_base import StrictModel, StrictRequestModel


def _require_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        raise ValueError("datetime must include a timezone offset")
    return value


class BookingCreate(StrictRequestModel):
    """
    Create a booking for a catalog service.

    Consultations derive their end from the service's fixed duration. Other
    services take either ``end_at`` or ``duration_minutes``.
    """

    service_id: str = Field(..., description="Catalog service being booked")
    start_at: datetime = Field(..., description="Slot start (timezone-aware)")
    end_at: Optional[datetime] = Field(None, description="Slot end (timezone-aware)")
    duration_minutes: Optional[int] = Field(None, ge=1, le=24 * 60)
    song_count: Optional[int] = Field(None, description="Songs for per-song services")
    beat_license: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)
    engineer_id: Optional[str] = Field(None, max_length=26)
    producer_name: Optional[str] = Field(None, max_length=255)
    session_details: Optional[Dict[str, Any]] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _require_aware(value)


class AvailabilityCheckRequest(StrictRequestModel):
    start_at: datetime
    end_at: datetime

    @field_validator("start_at", "end_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return _require_aware(value)


class AvailabilityCheckResponse(StrictModel):
    available: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    conflicting_booking_id: Optional[str] = None


class PriceQuoteRequest(StrictRequestModel):
    service_id: str
    duration_minutes: Optional[int] = None
    song_count: Optional[int] = None
    beat_license: Optional[str] = None


class PriceQuoteResponse(StrictModel):
    service_id: str
    total_price: Decimal
    currency: str


class SessionDetailsUpdate(StrictRequestModel):
    session_details: Dict[str, Any] = Field(
        ..., description="Questionnaire answers and file references"
    )


class AdminTransitionRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingResponse(StrictModel):
    id: str
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    engineer_id: Optional[str] = None
    producer_name: Optional[str] = None
    service_id: Optional[str] = None
    service_type: str
    service_name: str
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    song_count: Optional[int] = None
    beat_license: Optional[str] = None
    total_price: Decimal
    status: BookingStatus
    notes: Optional[str] = None
    session_details: Optional[Dict[str, Any]] = None
    payment_intent_id: Optional[str] = None
    deposit_amount: Optional[Decimal] = None
    deposit_captured: bool = False
    deposit_captured_at: Optional[datetime] = None
    payment_status: Optional[str] = None
    final_payment_intent_id: Optional[str] = None
    final_payment_amount: Optional[Decimal] = None
    final_payment_captured: bool = False
    final_payment_captured_at: Optional[datetime] = None
    refund_id: Optional[str] = None
    refund_status: Optional[str] = None
    refund_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_booking(cls, booking: Any) -> "BookingResponse":
        """Build the view, resolving client name and email from the joined user row."""
        user = getattr(booking, "user", None)
        return cls(
            id=booking.id,
            user_id=booking.user_id,
            user_name=user.display_name if user is not None else None,
            user_email=user.email if user is not None else None,
            engineer_id=booking.engineer_id,
            producer_name=booking.producer_name,
            service_id=booking.service_id,
            service_type=booking.service_type,
            service_name=booking.service_name,
            start_at=booking.start_at,
            end_at=booking.end_at,
            duration_minutes=booking.duration_minutes,
            song_count=booking.song_count,
            beat_license=booking.beat_license,
            total_price=booking.total_price,
            status=booking.status,
            notes=booking.notes,
            session_details=booking.session_details,
            payment_intent_id=booking.payment_intent_id,
            deposit_amount=booking.deposit_amount,
            deposit_captured=bool(booking.deposit_captured),
            deposit_captured_at=booking.deposit_captured_at,
            payment_status=booking.payment_status,
            final_payment_intent_id=booking.final_payment_intent_id,
            final_payment_amount=booking.final_payment_amount,
            final_payment_captured=bool(booking.final_payment_captured),
            final_payment_captured_at=booking.final_payment_captured_at,
            refund_id=booking.refund_id,
            refund_status=booking.refund_status,
            refund_reason=booking.refund_reason,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class BookingChangesResponse(StrictModel):
    items: List[BookingResponse]
    server_time: datetime


class CalendarSlot(StrictModel):
    """Anonymous busy interval for calendar hinting."""

    start_at: datetime
    end_at: datetime
    status: BookingStatus


class CalendarSnapshotRequest(StrictRequestModel):
    window_start: datetime
    window_end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> "CalendarSnapshotRequest":
        _require_aware(self.window_start)
        _require_aware(self.window_end)
        if self.window_end <= self.window_start:
            raise ValueError("window_end must be after window_start")
        return self


class OverlapPair(StrictModel):
    first_booking_id: str
    second_booking_id: str
    overlap_start: datetime
    overlap_end: datetime


class PaymentEventResponse(StrictModel):
    id: str
    event_type: str
    amount: Optional[Decimal] = None
    gateway_reference: Optional[str] = None
    actor_id: Optional[str] = None
    created_at: datetime
