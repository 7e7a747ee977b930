# backend/studiobook/repositories/factory.py
"""
Repository Factory

Centralized creation of repository instances so services never construct
them directly.
"""

from sqlalchemy.orm import Session

from .booking_repository import BookingRepository
from .service_catalog_repository import PricingRuleRepository, ServiceCatalogRepository
from .user_repository import UserRepository


class RepositoryFactory:
    @staticmethod
    def create_booking_repository(db: Session) -> BookingRepository:
        return BookingRepository(db)

    @staticmethod
    def create_user_repository(db: Session) -> UserRepository:
        return UserRepository(db)

    @staticmethod
    def create_service_catalog_repository(db: Session) -> ServiceCatalogRepository:
        return ServiceCatalogRepository(db)

    @staticmethod
    def create_pricing_rule_repository(db: Session) -> PricingRuleRepository:
        return PricingRuleRepository(db)
