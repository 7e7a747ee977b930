# backend/studiobook/core/enums.py
"""Shared enumerations for bookings, services and payments."""

from enum import Enum
from typing import Dict, FrozenSet


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class ServiceType(str, Enum):
    """How a service is priced and how its slot length is derived."""

    CONSULTATION = "consultation"
    HOURLY_SESSION = "hourly-session"
    PER_SONG = "per-song"
    PRODUCTION = "production"


class PaymentType(str, Enum):
    DEPOSIT = "deposit"
    FINAL = "final"


class PricingRuleType(str, Enum):
    BEAT_LICENSE = "beat_license"


class SlotRejectionReason(str, Enum):
    """Why a candidate slot was refused."""

    INVALID_RANGE = "invalid_range"
    PAST = "past"
    OUTSIDE_STUDIO_HOURS = "outside_studio_hours"
    CONFLICT = "conflict"
    TOO_SHORT = "too_short"


# Statuses that release the slot back to the calendar.
NON_BLOCKING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.REJECTED, BookingStatus.CANCELLED, BookingStatus.REFUNDED}
)

BLOCKING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    set(BookingStatus) - NON_BLOCKING_STATUSES
)

TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {
        BookingStatus.REJECTED,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.REFUNDED,
    }
)

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED, BookingStatus.REJECTED}
    ),
    BookingStatus.PENDING_PAYMENT: frozenset({BookingStatus.CONFIRMED, BookingStatus.REJECTED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.REFUNDED, BookingStatus.CANCELLED}
    ),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.REFUNDED: frozenset(),
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())
