from .booking_events import BookingChange, ChangeType
from .channel import BookingEventChannel, Subscription, booking_channel, get_booking_channel

__all__ = [
    "BookingChange",
    "BookingEventChannel",
    "ChangeType",
    "Subscription",
    "booking_channel",
    "get_booking_channel",
]
