"""FastAPI dependencies for database sessions, callers, and services."""

from .auth import get_current_user_id, get_optional_user_id
from .database import get_db
from .services import (
    get_event_channel,
    get_booking_service,
    get_catalog_service,
    get_payment_gateway,
    get_payment_service,
)

__all__ = [
    "get_booking_service",
    "get_catalog_service",
    "get_current_user_id",
    "get_db",
    "get_event_channel",
    "get_optional_user_id",
    "get_payment_gateway",
    "get_payment_service",
]
