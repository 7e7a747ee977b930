# backend/studiobook/schemas/service_catalog.py
"""Catalog schemas for services and pricing rules."""

from decimal import Decimal
from typing import Any, List, Optional

from pydantic import Field

from ..core.enums import PricingRuleType, ServiceType
from ._strict_base import StrictModel, StrictRequestModel


class PricingTierSchema(StrictModel):
    hours: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)


class ServiceBase(StrictRequestModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field("recording", max_length=100)
    description: Optional[str] = None
    service_type: ServiceType
    duration_minutes: Optional[int] = Field(None, ge=1)
    price: Optional[Decimal] = Field(None, ge=0)
    is_free: bool = False
    hourly_pricing: Optional[List[PricingTierSchema]] = None
    min_duration_minutes: int = Field(60, ge=1)
    max_duration_minutes: Optional[int] = Field(None, ge=1)
    price_per_song: Optional[Decimal] = Field(None, ge=0)
    price_per_hour: Optional[Decimal] = Field(None, ge=0)
    allows_beat_license: bool = False
    active: bool = True


class ServiceCreate(ServiceBase):
    pass


class ServiceUpdate(StrictRequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, ge=1)
    price: Optional[Decimal] = Field(None, ge=0)
    is_free: Optional[bool] = None
    hourly_pricing: Optional[List[PricingTierSchema]] = None
    min_duration_minutes: Optional[int] = Field(None, ge=1)
    max_duration_minutes: Optional[int] = Field(None, ge=1)
    price_per_song: Optional[Decimal] = Field(None, ge=0)
    price_per_hour: Optional[Decimal] = Field(None, ge=0)
    allows_beat_license: Optional[bool] = None
    active: Optional[bool] = None


class ServiceResponse(StrictModel):
    id: str
    name: str
    category: str
    description: Optional[str] = None
    service_type: ServiceType
    duration_minutes: Optional[int] = None
    price: Optional[Decimal] = None
    is_free: bool
    hourly_pricing: List[PricingTierSchema] = []
    min_duration_minutes: int
    max_duration_minutes: Optional[int] = None
    price_per_song: Optional[Decimal] = None
    price_per_hour: Optional[Decimal] = None
    allows_beat_license: bool
    active: bool
    price_label: str

    @classmethod
    def from_service(cls, service: Any, price_label: str) -> "ServiceResponse":
        return cls(**service.to_dict(), price_label=price_label)


class PricingRuleCreate(StrictRequestModel):
    key: str = Field(..., min_length=1, max_length=100)
    rule_type: PricingRuleType = PricingRuleType.BEAT_LICENSE
    label: str = Field("", max_length=255)
    price: Decimal = Field(..., ge=0)
    active: bool = True


class PricingRuleUpdate(StrictRequestModel):
    label: Optional[str] = Field(None, max_length=255)
    price: Optional[Decimal] = Field(None, ge=0)
    active: Optional[bool] = None


class PricingRuleResponse(StrictModel):
    id: str
    key: str
    rule_type: PricingRuleType
    label: str
    price: Decimal
    active: bool
