# backend/studiobook/services/availability_service.py
"""
Availability Checker.

Decides whether a candidate [start, end) slot can be booked given a set of
existing bookings, studio opening hours and an evaluation instant. Everything
here is pure; the booking service supplies persisted bookings for the
authoritative check and clients may run the same check on a cached snapshot.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from ..core.config import settings
from ..core.enums import NON_BLOCKING_STATUSES, BookingStatus, ServiceType, SlotRejectionReason
from ..core.exceptions import ValidationException
from ..core.timezone_utils import ensure_utc, get_studio_timezone, localize_wall_time

logger = logging.getLogger(__name__)

SLOT_REJECTION_MESSAGES = {
    SlotRejectionReason.INVALID_RANGE: "End time must be after start time",
    SlotRejectionReason.PAST: "Cannot book a time slot in the past",
    SlotRejectionReason.OUTSIDE_STUDIO_HOURS: "Selected time is outside studio hours",
    SlotRejectionReason.CONFLICT: "This time slot is already booked",
    SlotRejectionReason.TOO_SHORT: "Selected range is shorter than the minimum booking length",
}


@dataclass(frozen=True)
class StudioHours:
    """
    Opening window in the studio's local zone.

    ``close_hour`` at or below ``open_hour`` means the window ends on the next
    calendar day; equal hours mean the studio never closes.
    """

    open_hour: int = 9
    close_hour: int = 21
    timezone: str = "America/New_York"

    @classmethod
    def from_settings(cls) -> "StudioHours":
        return cls(
            open_hour=settings.studio_open_hour,
            close_hour=settings.studio_close_hour,
            timezone=settings.studio_timezone,
        )

    @property
    def always_open(self) -> bool:
        return self.close_hour % 24 == self.open_hour % 24

    @property
    def rolls_over(self) -> bool:
        return self.close_hour < self.open_hour

    def window_for(self, day: date) -> Tuple[datetime, datetime]:
        """Opening window that starts on ``day`` (local), as UTC instants."""
        tz = get_studio_timezone(self.timezone)
        opens = localize_wall_time(day, self.open_hour, tz)
        if self.rolls_over:
            closes = localize_wall_time(day + timedelta(days=1), self.close_hour, tz)
        else:
            closes = localize_wall_time(day, self.close_hour, tz)
        return ensure_utc(opens), ensure_utc(closes)

    def contains(self, start: datetime, end: datetime) -> bool:
        if self.always_open:
            return True
        start_utc, end_utc = ensure_utc(start), ensure_utc(end)
        local_day = start_utc.astimezone(get_studio_timezone(self.timezone)).date()
        # A window opened the previous evening may still be running after midnight.
        for day in (local_day - timedelta(days=1), local_day):
            opens, closes = self.window_for(day)
            if opens <= start_utc and end_utc <= closes:
                return True
        return False


@dataclass(frozen=True)
class BookedInterval:
    """Minimal view of an existing booking for conflict checks."""

    start_at: datetime
    end_at: datetime
    status: str = BookingStatus.CONFIRMED.value
    booking_id: Optional[str] = None


@dataclass(frozen=True)
class SlotVerdict:
    available: bool
    reason: Optional[SlotRejectionReason] = None
    conflicting_booking_id: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        if self.reason is None:
            return None
        return SLOT_REJECTION_MESSAGES[self.reason]

    def __bool__(self) -> bool:
        return self.available


SLOT_OK = SlotVerdict(available=True)


def _status_value(booking: Any) -> str:
    status = getattr(booking, "status", BookingStatus.CONFIRMED.value)
    return status.value if isinstance(status, BookingStatus) else str(status)


def _booking_id(booking: Any) -> Optional[str]:
    return getattr(booking, "booking_id", None) or getattr(booking, "id", None)


def is_blocking(booking: Any) -> bool:
    return BookingStatus(_status_value(booking)) not in NON_BLOCKING_STATUSES


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open overlap: touching endpoints do not conflict."""
    return a_start < b_end and a_end > b_start


def find_conflict(start: datetime, end: datetime, existing: Iterable[Any]) -> Optional[Any]:
    start_utc, end_utc = ensure_utc(start), ensure_utc(end)
    for booking in existing:
        if not is_blocking(booking):
            continue
        if intervals_overlap(
            start_utc, end_utc, ensure_utc(booking.start_at), ensure_utc(booking.end_at)
        ):
            return booking
    return None


def is_slot_available(
    start: datetime,
    end: datetime,
    existing: Iterable[Any],
    *,
    now: datetime,
    studio_hours: Optional[StudioHours] = None,
) -> SlotVerdict:
    """
    Validate a candidate slot.

    ``existing`` may hold Booking rows or BookedInterval values; rejected,
    cancelled and refunded bookings are ignored. Checks run in order:
    range, past, studio hours, conflicts.
    """
    hours = studio_hours or StudioHours.from_settings()
    start_utc, end_utc = ensure_utc(start), ensure_utc(end)

    if end_utc <= start_utc:
        return SlotVerdict(False, SlotRejectionReason.INVALID_RANGE)
    if start_utc < ensure_utc(now):
        return SlotVerdict(False, SlotRejectionReason.PAST)
    if not hours.contains(start_utc, end_utc):
        return SlotVerdict(False, SlotRejectionReason.OUTSIDE_STUDIO_HOURS)

    conflict = find_conflict(start_utc, end_utc, existing)
    if conflict is not None:
        return SlotVerdict(
            False, SlotRejectionReason.CONFLICT, conflicting_booking_id=_booking_id(conflict)
        )
    return SLOT_OK


def derive_slot_end(
    service_type: ServiceType,
    start: datetime,
    *,
    selected_duration_minutes: Optional[int] = None,
    fixed_duration_minutes: Optional[int] = None,
) -> datetime:
    """
    End instant for a slot starting at ``start``.

    Consultations use their fixed duration; every other service type uses the
    duration the client selected.
    """
    if service_type == ServiceType.CONSULTATION:
        minutes = fixed_duration_minutes or settings.consultation_duration_minutes
    else:
        minutes = selected_duration_minutes
    if minutes is None or minutes <= 0:
        raise ValidationException(
            "A positive duration is required for this service",
            details={"service_type": service_type.value, "duration_minutes": minutes},
        )
    return ensure_utc(start) + timedelta(minutes=int(minutes))


def find_overlaps(bookings: Sequence[Any]) -> List[Tuple[Any, Any]]:
    """
    Every pair of active bookings whose intervals intersect.

    Used to detect double bookings that slipped past the creation check.
    """
    active = sorted(
        (b for b in bookings if is_blocking(b)), key=lambda b: ensure_utc(b.start_at)
    )
    pairs: List[Tuple[Any, Any]] = []
    open_items: List[Any] = []
    for booking in active:
        start = ensure_utc(booking.start_at)
        open_items = [b for b in open_items if ensure_utc(b.end_at) > start]
        for other in open_items:
            pairs.append((other, booking))
        open_items.append(booking)
    if pairs:
        logger.warning("Detected %d overlapping booking pair(s)", len(pairs))
    return pairs
