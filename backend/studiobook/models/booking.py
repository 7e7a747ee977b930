# backend/studiobook/models/booking.py
"""
Booking model for the studio calendar.

A booking reserves the half-open interval [start_at, end_at) for one client.
Pricing and service details are snapshotted at creation time; payment state
for the two-phase deposit/final flow lives on the same row, with an
append-only BookingPaymentEvent trail for reconciliation.
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
import ulid

from ..core.enums import BookingStatus
from ..database import Base
from .types import UtcDateTime

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    __tablename__ = "bookings"

    # Primary key
    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    # Parties
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    engineer_id = Column(String(26), nullable=True)
    producer_name = Column(String(255), nullable=True)

    # Slot
    start_at = Column(UtcDateTime, nullable=False, index=True)
    end_at = Column(UtcDateTime, nullable=False, index=True)

    # Service snapshot
    service_id = Column(String(26), ForeignKey("services.id"), nullable=True)
    service_type = Column(String(30), nullable=False)
    service_name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    song_count = Column(Integer, nullable=True)
    beat_license = Column(String(100), nullable=True)
    total_price = Column(Numeric(10, 2), nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    notes = Column(Text, nullable=True)
    session_details = Column(JSON, nullable=True)

    # Deposit phase
    payment_intent_id = Column(String(255), nullable=True, comment="Deposit PaymentIntent id")
    deposit_amount = Column(Numeric(10, 2), nullable=True)
    deposit_captured = Column(Boolean, nullable=False, default=False)
    deposit_captured_at = Column(UtcDateTime, nullable=True)
    payment_status = Column(String(50), nullable=True, comment="Last known deposit intent status")

    # Final phase
    final_payment_intent_id = Column(String(255), nullable=True)
    final_payment_amount = Column(Numeric(10, 2), nullable=True)
    final_payment_captured = Column(Boolean, nullable=False, default=False)
    final_payment_captured_at = Column(UtcDateTime, nullable=True)
    final_payment_status = Column(String(50), nullable=True)

    # Refund
    refund_id = Column(String(255), nullable=True)
    refund_status = Column(String(50), nullable=True)
    refund_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(UtcDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UtcDateTime, nullable=False, default=_utcnow, onupdate=_utcnow, index=True)
    confirmed_at = Column(UtcDateTime, nullable=True)
    completed_at = Column(UtcDateTime, nullable=True)
    cancelled_at = Column(UtcDateTime, nullable=True)

    user = relationship("User", back_populates="bookings")
    service = relationship("Service")
    payment_events = relationship(
        "BookingPaymentEvent",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingPaymentEvent.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'pending_payment', 'confirmed', 'rejected', "
            "'completed', 'cancelled', 'refunded')",
            name="ck_bookings_status",
        ),
        CheckConstraint("end_at > start_at", name="check_time_order"),
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
        CheckConstraint("total_price >= 0", name="check_price_non_negative"),
        Index("ix_bookings_status_start", "status", "start_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: user={self.user_id}, "
            f"{self.start_at}-{self.end_at}, status={self.status}>"
        )

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def price(self) -> Decimal:
        return Decimal(self.total_price or 0)

    def remaining_balance(self) -> Decimal:
        """Amount still owed after the deposit; never negative."""
        remaining = self.price - Decimal(self.deposit_amount or 0)
        return remaining if remaining > 0 else Decimal("0.00")

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start_at < end and self.end_at > start

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "engineer_id": self.engineer_id,
            "producer_name": self.producer_name,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "service_id": self.service_id,
            "service_type": self.service_type,
            "service_name": self.service_name,
            "duration_minutes": self.duration_minutes,
            "song_count": self.song_count,
            "beat_license": self.beat_license,
            "total_price": str(self.total_price) if self.total_price is not None else None,
            "status": self.status,
            "payment_intent_id": self.payment_intent_id,
            "deposit_captured": bool(self.deposit_captured),
            "final_payment_intent_id": self.final_payment_intent_id,
            "final_payment_captured": bool(self.final_payment_captured),
            "refund_id": self.refund_id,
            "refund_status": self.refund_status,
        }


class BookingPaymentEvent(Base):
    """Append-only record of every payment action taken on a booking."""

    __tablename__ = "booking_payment_events"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    amount = Column(Numeric(10, 2), nullable=True)
    gateway_reference = Column(String(255), nullable=True)
    actor_id = Column(String(26), nullable=True)
    event_data = Column(JSON, nullable=True)
    created_at = Column(UtcDateTime, nullable=False, default=_utcnow)

    booking = relationship("Booking", back_populates="payment_events")

    def __repr__(self) -> str:
        return f"<BookingPaymentEvent {self.event_type} booking={self.booking_id}>"

    def to_dict(self) -> Dict[str, Optional[Any]]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "amount": str(self.amount) if self.amount is not None else None,
            "gateway_reference": self.gateway_reference,
            "actor_id": self.actor_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
