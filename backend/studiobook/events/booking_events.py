"""Booking domain events."""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ChangeType:
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    PAYMENT_UPDATED = "payment_updated"
    DETAILS_UPDATED = "details_updated"


@dataclass
class BookingChange:
    """Fired after any committed change to a booking."""

    booking_id: str
    change_type: str
    status: str
    user_id: Optional[str] = None
    previous_status: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("start_at", "end_at", "occurred_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_booking(
        cls, booking: Any, change_type: str, previous_status: Optional[str] = None
    ) -> "BookingChange":
        return cls(
            booking_id=booking.id,
            change_type=change_type,
            status=booking.status,
            user_id=booking.user_id,
            previous_status=previous_status,
            start_at=booking.start_at,
            end_at=booking.end_at,
        )
