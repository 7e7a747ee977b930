# backend/studiobook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each request gets services bound to its own database session. The payment
gateway and the change channel are process-wide; tests override
``get_payment_gateway`` with a fake.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...events import BookingEventChannel, get_booking_channel
from ...services.booking_service import BookingService
from ...services.payment_gateway import PaymentGateway, StripePaymentGateway
from ...services.payment_service import PaymentService
from ...services.service_catalog_service import ServiceCatalogService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _stripe_gateway_singleton() -> StripePaymentGateway:
    gateway = StripePaymentGateway()
    if not gateway.configured:
        logger.warning("Stripe secret key is not set; payment operations will fail")
    return gateway


def get_payment_gateway() -> PaymentGateway:
    """Get the process-wide payment gateway."""
    return _stripe_gateway_singleton()


def get_event_channel() -> BookingEventChannel:
    return get_booking_channel()


def get_booking_service(
    db: Session = Depends(get_db),
    channel: BookingEventChannel = Depends(get_event_channel),
) -> BookingService:
    """Get BookingService instance with proper dependencies."""
    return BookingService(db, channel=channel)


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaymentService:
    """Get PaymentService sharing the request's booking service and session."""
    return PaymentService(db, gateway, booking_service=booking_service)


def get_catalog_service(db: Session = Depends(get_db)) -> ServiceCatalogService:
    return ServiceCatalogService(db)
