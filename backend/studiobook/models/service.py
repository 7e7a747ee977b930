# backend/studiobook/models/service.py
"""
Service catalog models.

Service describes what a client can book and how it is priced.
PricingRule holds keyed surcharges such as beat licenses.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, Integer, Numeric, String, Text
import ulid

from ..core.enums import PricingRuleType, ServiceType
from ..database import Base
from .types import UtcDateTime


class Service(Base):
    __tablename__ = "services"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False, default="recording")
    description = Column(Text, nullable=True)
    service_type = Column(String(30), nullable=False, default=ServiceType.HOURLY_SESSION.value)

    # Consultation: fixed duration and fixed price
    duration_minutes = Column(Integer, nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    is_free = Column(Boolean, nullable=False, default=False)

    # Hourly session: list of {"hours": int, "price": str} tiers
    hourly_pricing = Column(JSON, nullable=True)
    min_duration_minutes = Column(Integer, nullable=False, default=60)
    max_duration_minutes = Column(Integer, nullable=True)

    price_per_song = Column(Numeric(10, 2), nullable=True)
    price_per_hour = Column(Numeric(10, 2), nullable=True)
    allows_beat_license = Column(Boolean, nullable=False, default=False)

    active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(UtcDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UtcDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "service_type IN ('consultation', 'hourly-session', 'per-song', 'production')",
            name="ck_services_service_type",
        ),
        CheckConstraint("price IS NULL OR price >= 0", name="check_service_price_non_negative"),
    )

    @property
    def type(self) -> ServiceType:
        return ServiceType(self.service_type)

    @property
    def tiers(self) -> List[Dict[str, Any]]:
        return list(self.hourly_pricing or [])

    def fixed_price(self) -> Decimal:
        if self.is_free:
            return Decimal("0")
        return Decimal(self.price or 0)

    def __repr__(self) -> str:
        return f"<Service {self.id}: {self.name} ({self.service_type})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "service_type": self.service_type,
            "duration_minutes": self.duration_minutes,
            "price": self.price,
            "is_free": bool(self.is_free),
            "hourly_pricing": self.tiers,
            "min_duration_minutes": self.min_duration_minutes,
            "max_duration_minutes": self.max_duration_minutes,
            "price_per_song": self.price_per_song,
            "price_per_hour": self.price_per_hour,
            "allows_beat_license": bool(self.allows_beat_license),
            "active": bool(self.active),
        }


class PricingRule(Base):
    __tablename__ = "pricing_rules"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    key = Column(String(100), nullable=False, unique=True, index=True)
    rule_type = Column(String(50), nullable=False, default=PricingRuleType.BEAT_LICENSE.value)
    label = Column(String(255), nullable=False, default="")
    price = Column(Numeric(10, 2), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UtcDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (CheckConstraint("price >= 0", name="check_rule_price_non_negative"),)

    def __repr__(self) -> str:
        return f"<PricingRule {self.key}: {self.price}>"

    def to_dict(self) -> Dict[str, Optional[Any]]:
        return {
            "id": self.id,
            "key": self.key,
            "rule_type": self.rule_type,
            "label": self.label,
            "price": self.price,
            "active": bool(self.active),
        }
