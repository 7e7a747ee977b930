# backend/studiobook/repositories/service_catalog_repository.py
"""
Repositories for the administrator-owned catalog: services and pricing rules.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import PricingRuleType
from ..core.exceptions import RepositoryException
from ..models.service import PricingRule, Service
from .base_repository import BaseRepository


class ServiceCatalogRepository(BaseRepository[Service]):
    def __init__(self, db: Session):
        super().__init__(db, Service)

    def list_services(self, *, include_inactive: bool = False) -> List[Service]:
        try:
            query = self.db.query(Service)
            if not include_inactive:
                query = query.filter(Service.active.is_(True))
            return query.order_by(Service.category, Service.name).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing services: {str(e)}")
            raise RepositoryException(f"Failed to list services: {str(e)}")


class PricingRuleRepository(BaseRepository[PricingRule]):
    def __init__(self, db: Session):
        super().__init__(db, PricingRule)

    def get_by_key(self, key: str) -> Optional[PricingRule]:
        return self.find_one_by(key=key)

    def list_rules(self, rule_type: Optional[str] = None) -> List[PricingRule]:
        if rule_type:
            return self.find_by(rule_type=rule_type)
        return self.get_all(limit=1000)

    def has_beat_license_rules(self) -> bool:
        """True once any beat-license rule exists, active or not."""
        return self.exists(rule_type=PricingRuleType.BEAT_LICENSE.value)

    def beat_license_prices(self) -> Dict[str, Decimal]:
        """Active beat-license surcharges keyed by license id."""
        rules = self.find_by(rule_type=PricingRuleType.BEAT_LICENSE.value, active=True)
        return {rule.key: Decimal(rule.price) for rule in rules}
