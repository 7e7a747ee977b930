# backend/studiobook/routes/v1/services.py
"""
Service catalog routes - API v1

Public catalog reads; administrator-only writes for services and
pricing rules (beat licenses).
"""

import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status

from ...api.dependencies import get_catalog_service, get_current_user_id, get_optional_user_id
from ...core.exceptions import DomainException, ForbiddenException
from ...schemas.service_catalog import (
    PricingRuleCreate,
    PricingRuleResponse,
    PricingRuleUpdate,
    ServiceCreate,
    ServiceResponse,
    ServiceUpdate,
)
from ...services.service_catalog_service import ServiceCatalogService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["services-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _to_response(service_obj, catalog: ServiceCatalogService) -> ServiceResponse:
    return ServiceResponse.from_service(service_obj, catalog.price_label(service_obj))


@router.get("", response_model=List[ServiceResponse])
def list_services(
    include_inactive: bool = Query(False, description="Admins only"),
    user_id: Optional[str] = Depends(get_optional_user_id),
    catalog: ServiceCatalogService = Depends(get_catalog_service),
) -> List[ServiceResponse]:
    try:
        if include_inactive and not catalog.permissions.is_admin(user_id):
            raise ForbiddenException("Administrator privileges required")
        return [
            ServiceResponse.from_service(service, label)
            for service, label in catalog.list_services(include_inactive=include_inactive)
        ]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/pricing-rules", response_model=List[PricingRuleResponse])
def list_pricing_rules(
    rule_type: Optional[str] = Query(None),
    catalog: ServiceCatalogService = Depends(get_catalog_service),
) -> List[PricingRuleResponse]:
    rules = catalog.list_pricing_rules(rule_type)
    return [PricingRuleResponse(**rule.to_dict()) for rule in rules]


@router.post(
    "/pricing-rules",
    response_model=PricingRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_pricing_rule(
    rule_data: PricingRuleCreate = Body(...),
    user_id: str = Depends(get_current_user_id),
    catalog: ServiceCatalogService = Depends(get_catalog_service),
) -> PricingRuleResponse:
    try:
        rule = catalog.create_pricing_rule(user_id, rule_data)
        return PricingRuleResponse(**rule.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/pricing-rules/{key}", response_model=PricingRuleResponse)
def update_pricing_rule(
    key: str = Path(..., max_length=100),
    rule_data: PricingRuleUpdate = Body(...),
    user_id: str = Depends(get_current_user_id),
    catalog: ServiceCatalogService = Depends(get_catalog_service),
) -> PricingRuleResponse:
    try:
        rule = catalog.update_pricing_rule(user_id, key, rule_data)
        return PricingRuleResponse(**rule.to_dict())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
def create_service(
    service_data: ServiceCreate = Body(...),
    user_id: str = Depends(get_current_user_id),
    catalog: ServiceCatalogService = Depends(get_catalog_service),
) -> ServiceResponse:
    try:
        return _to_response(catalog.create_service(user_id, service_data), catalog)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{service_id}", response_model=ServiceResponse)
def get_service(
    service_id: str = Path(...),
    catalog: ServiceCatalogService = Depends(get_catalog_service),
) -> ServiceResponse:
    try:
        return _to_response(catalog.get_service(service_id), catalog)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{service_id}", response_model=ServiceResponse)
def update_service(
    service_id: str = Path(...),
    service_data: ServiceUpdate = Body(...),
    user_id: str = Depends(get_current_user_id),
    catalog: ServiceCatalogService = Depends(get_catalog_service),
) -> ServiceResponse:
    try:
        return _to_response(catalog.update_service(user_id, service_id, service_data), catalog)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/{service_id}", response_model=ServiceResponse)
def deactivate_service(
    service_id: str = Path(...),
    user_id: str = Depends(get_current_user_id),
    catalog: ServiceCatalogService = Depends(get_catalog_service),
) -> ServiceResponse:
    """Soft delete: the service disappears from the public catalog."""
    try:
        return _to_response(catalog.deactivate_service(user_id, service_id), catalog)
    except DomainException as e:
        handle_domain_exception(e)
