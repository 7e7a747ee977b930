from .booking import Booking, BookingPaymentEvent
from .service import PricingRule, Service
from .user import User

__all__ = ["Booking", "BookingPaymentEvent", "PricingRule", "Service", "User"]
