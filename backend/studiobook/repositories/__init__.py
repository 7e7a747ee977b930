from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .service_catalog_repository import PricingRuleRepository, ServiceCatalogRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "IRepository",
    "PricingRuleRepository",
    "RepositoryFactory",
    "ServiceCatalogRepository",
    "UserRepository",
]
