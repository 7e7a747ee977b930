# backend/studiobook/services/service_catalog_service.py
"""
Catalog management for services and pricing rules.

Reads are public; writes require an administrator. Pricing fields are
validated against the service type before anything is stored.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.enums import ServiceType
from ..core.exceptions import BusinessRuleException, NotFoundException, ValidationException
from ..models.service import PricingRule, Service
from ..repositories.factory import RepositoryFactory
from ..schemas.service_catalog import (
    PricingRuleCreate,
    PricingRuleUpdate,
    ServiceCreate,
    ServiceUpdate,
)
from .base import BaseService
from .permission_service import PermissionService
from .pricing_service import ServicePricing, parse_tiers, price_range_label, tiers_to_json

logger = logging.getLogger(__name__)


class ServiceCatalogService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.service_repository = RepositoryFactory.create_service_catalog_repository(db)
        self.pricing_rule_repository = RepositoryFactory.create_pricing_rule_repository(db)
        self.permissions = PermissionService(db)

    # Services

    def list_services(self, *, include_inactive: bool = False) -> List[Tuple[Service, str]]:
        """Services with their display price label."""
        services = self.service_repository.list_services(include_inactive=include_inactive)
        return [(service, self.price_label(service)) for service in services]

    def get_service(self, service_id: str) -> Service:
        service = self.service_repository.get_by_id(service_id, load_relationships=False)
        if service is None:
            raise NotFoundException("Service not found", details={"service_id": service_id})
        return service

    @staticmethod
    def price_label(service: Service) -> str:
        return price_range_label(ServicePricing.from_service(service))

    @BaseService.measure_operation("create_service")
    def create_service(self, admin_id: Optional[str], data: ServiceCreate) -> Service:
        self.permissions.require_admin(admin_id)
        fields = data.model_dump()
        fields["service_type"] = data.service_type.value
        fields = self._validated_pricing(data.service_type, fields)

        with self.transaction():
            service = self.service_repository.create(**fields)

        self.log_operation("create_service", service_id=service.id, admin_id=admin_id)
        return service

    @BaseService.measure_operation("update_service")
    def update_service(
        self, admin_id: Optional[str], service_id: str, data: ServiceUpdate
    ) -> Service:
        self.permissions.require_admin(admin_id)
        service = self.get_service(service_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return service

        merged = {**service.to_dict(), **changes}
        validated = self._validated_pricing(service.type, merged)
        if "hourly_pricing" in changes:
            changes["hourly_pricing"] = validated["hourly_pricing"]

        with self.transaction():
            self.service_repository.update(service_id, **changes)

        self.log_operation(
            "update_service", service_id=service_id, fields=sorted(changes.keys())
        )
        return self.get_service(service_id)

    @BaseService.measure_operation("deactivate_service")
    def deactivate_service(self, admin_id: Optional[str], service_id: str) -> Service:
        """Hide a service from the catalog; existing bookings keep their snapshot."""
        self.permissions.require_admin(admin_id)
        self.get_service(service_id)
        with self.transaction():
            self.service_repository.update(service_id, active=False)
        return self.get_service(service_id)

    def _validated_pricing(
        self, service_type: ServiceType, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Check that the pricing fields needed by ``service_type`` are present.

        Hourly tiers are normalized into their stored JSON form.
        """
        raw_tiers = fields.get("hourly_pricing")
        if raw_tiers:
            fields["hourly_pricing"] = tiers_to_json(parse_tiers(raw_tiers))

        if service_type == ServiceType.CONSULTATION:
            if not fields.get("duration_minutes"):
                raise ValidationException("Consultations need a fixed duration")
            if not fields.get("is_free") and fields.get("price") is None:
                raise ValidationException("Paid consultations need a price")
        elif service_type == ServiceType.PER_SONG:
            if fields.get("price_per_song") is None:
                raise ValidationException("Per-song services need a price per song")
        elif service_type == ServiceType.PRODUCTION:
            if fields.get("price_per_hour") is None:
                raise ValidationException("Production services need an hourly rate")

        minimum = fields.get("min_duration_minutes")
        maximum = fields.get("max_duration_minutes")
        if minimum and maximum and maximum < minimum:
            raise ValidationException(
                "Maximum duration cannot be shorter than the minimum",
                details={"min_duration_minutes": minimum, "max_duration_minutes": maximum},
            )
        return fields

    # Pricing rules

    def list_pricing_rules(self, rule_type: Optional[str] = None) -> List[PricingRule]:
        return self.pricing_rule_repository.list_rules(rule_type)

    @BaseService.measure_operation("create_pricing_rule")
    def create_pricing_rule(
        self, admin_id: Optional[str], data: PricingRuleCreate
    ) -> PricingRule:
        self.permissions.require_admin(admin_id)
        if self.pricing_rule_repository.get_by_key(data.key) is not None:
            raise BusinessRuleException(
                "A pricing rule with this key already exists", details={"key": data.key}
            )
        with self.transaction():
            rule = self.pricing_rule_repository.create(
                key=data.key,
                rule_type=data.rule_type.value,
                label=data.label or data.key,
                price=Decimal(data.price),
                active=data.active,
            )
        self.log_operation("create_pricing_rule", key=rule.key, price=str(rule.price))
        return rule

    @BaseService.measure_operation("update_pricing_rule")
    def update_pricing_rule(
        self, admin_id: Optional[str], key: str, data: PricingRuleUpdate
    ) -> PricingRule:
        self.permissions.require_admin(admin_id)
        rule = self.pricing_rule_repository.get_by_key(key)
        if rule is None:
            raise NotFoundException("Pricing rule not found", details={"key": key})
        changes = data.model_dump(exclude_unset=True)
        if changes:
            with self.transaction():
                self.pricing_rule_repository.update(rule.id, **changes)
        return self.pricing_rule_repository.get_by_key(key)
