# backend/studiobook/services/pricing_service.py
"""
Pricing Engine.

Pure functions that turn a service configuration plus the client's choices
(duration, song count, beat license) into a total price. No I/O happens
here: callers load the Service row and the beat-license table and pass
them in.
"""

from dataclasses import dataclass, field
from decimal import Decimal
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from ..core.enums import ServiceType
from ..core.exceptions import ValidationException
from ..utils.money import format_usd, quantize_money, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_HOURLY_PRICING: Tuple[Tuple[int, str], ...] = (
    (1, "50"),
    (2, "100"),
    (3, "125"),
    (4, "170"),
    (5, "215"),
    (6, "255"),
)

DEFAULT_BEAT_LICENSES: Dict[str, str] = {
    "basic-lease": "35",
    "full-buy": "150",
    "exclusive": "150",
}


@dataclass(frozen=True)
class PricingTier:
    hours: int
    price: Decimal


@dataclass(frozen=True)
class PricingParams:
    """What the client picked for a service."""

    duration_minutes: Optional[int] = None
    song_count: Optional[int] = None
    beat_license: Optional[str] = None


@dataclass(frozen=True)
class ServicePricing:
    """Pricing-relevant view of a Service, detached from the ORM."""

    service_type: ServiceType
    price: Decimal = Decimal("0")
    is_free: bool = False
    tiers: Tuple[PricingTier, ...] = field(default_factory=tuple)
    price_per_song: Optional[Decimal] = None
    price_per_hour: Optional[Decimal] = None
    allows_beat_license: bool = False

    @classmethod
    def from_service(cls, service: Any) -> "ServicePricing":
        service_type = ServiceType(service.service_type)
        tiers: Tuple[PricingTier, ...] = ()
        if service_type == ServiceType.HOURLY_SESSION:
            tiers = parse_tiers(service.hourly_pricing or DEFAULT_HOURLY_PRICING)
        return cls(
            service_type=service_type,
            price=to_decimal(service.price or 0),
            is_free=bool(service.is_free),
            tiers=tiers,
            price_per_song=to_decimal(service.price_per_song)
            if service.price_per_song is not None
            else None,
            price_per_hour=to_decimal(service.price_per_hour)
            if service.price_per_hour is not None
            else None,
            allows_beat_license=bool(service.allows_beat_license),
        )


def parse_tiers(raw: Iterable[Any]) -> Tuple[PricingTier, ...]:
    """
    Normalize tier input into sorted PricingTier objects and validate it.

    Accepts ``{"hours": .., "price": ..}`` mappings or ``(hours, price)`` pairs.
    Tiers must have positive unique hours and prices that never decrease as
    hours grow.
    """
    tiers = []
    for item in raw:
        if isinstance(item, Mapping):
            hours, price = item.get("hours"), item.get("price")
        else:
            hours, price = item
        try:
            tier = PricingTier(hours=int(hours), price=quantize_money(price))
        except (TypeError, ValueError) as exc:
            raise ValidationException(
                "Hourly pricing tiers need integer hours and numeric prices",
                details={"tier": str(item)},
            ) from exc
        tiers.append(tier)

    if not tiers:
        raise ValidationException("Hourly pricing needs at least one tier")

    tiers.sort(key=lambda t: t.hours)
    previous: Optional[PricingTier] = None
    for tier in tiers:
        if tier.hours <= 0:
            raise ValidationException(
                "Tier hours must be positive", details={"hours": tier.hours}
            )
        if tier.price < 0:
            raise ValidationException(
                "Tier prices cannot be negative", details={"hours": tier.hours}
            )
        if previous is not None:
            if tier.hours == previous.hours:
                raise ValidationException(
                    "Duplicate tier hours", details={"hours": tier.hours}
                )
            if tier.price < previous.price:
                raise ValidationException(
                    "Tier prices must not decrease as hours increase",
                    details={"hours": tier.hours, "price": str(tier.price)},
                )
        previous = tier
    return tuple(tiers)


def tiers_to_json(tiers: Iterable[PricingTier]) -> list:
    return [{"hours": t.hours, "price": str(t.price)} for t in tiers]


def _require_positive(value: Optional[int], name: str) -> int:
    if value is None or value <= 0:
        raise ValidationException(f"{name} must be a positive integer", details={name: value})
    return int(value)


def _hourly_price(tiers: Tuple[PricingTier, ...], duration_minutes: int) -> Decimal:
    requested_hours = Decimal(duration_minutes) / Decimal(60)
    for tier in tiers:
        if tier.hours >= requested_hours:
            return tier.price
    # Past the largest tier the largest tier's price applies.
    return tiers[-1].price


def compute_price(
    pricing: ServicePricing,
    params: PricingParams,
    beat_licenses: Optional[Mapping[str, Any]] = None,
) -> Decimal:
    """
    Total price for a booking of ``pricing`` with the client's ``params``.

    Raises:
        ValidationException: non-positive duration or song count, missing
            per-unit rate, or an unknown beat license id.
    """
    service_type = pricing.service_type

    if service_type == ServiceType.CONSULTATION:
        if pricing.is_free:
            return Decimal("0.00")
        return quantize_money(pricing.price)

    if service_type == ServiceType.PER_SONG:
        song_count = _require_positive(params.song_count, "song_count")
        if pricing.price_per_song is None:
            raise ValidationException("Service has no per-song rate configured")
        return quantize_money(pricing.price_per_song * song_count)

    if service_type == ServiceType.HOURLY_SESSION:
        duration = _require_positive(params.duration_minutes, "duration_minutes")
        tiers = pricing.tiers or parse_tiers(DEFAULT_HOURLY_PRICING)
        return quantize_money(_hourly_price(tiers, duration))

    if service_type == ServiceType.PRODUCTION:
        duration = _require_positive(params.duration_minutes, "duration_minutes")
        if pricing.price_per_hour is None:
            raise ValidationException("Service has no hourly rate configured")
        base = pricing.price_per_hour * Decimal(duration) / Decimal(60)
        surcharge = Decimal("0")
        if params.beat_license:
            if not pricing.allows_beat_license:
                raise ValidationException(
                    "This service does not offer beat licenses",
                    details={"beat_license": params.beat_license},
                )
            licenses = beat_licenses if beat_licenses is not None else DEFAULT_BEAT_LICENSES
            if params.beat_license not in licenses:
                raise ValidationException(
                    f"Unknown beat license: {params.beat_license}",
                    details={"beat_license": params.beat_license, "known": sorted(licenses)},
                )
            surcharge = to_decimal(licenses[params.beat_license])
        return quantize_money(base + surcharge)

    raise ValidationException(f"Unsupported service type: {service_type}")


def price_range_label(pricing: ServicePricing) -> str:
    """Short catalog label such as "Free", "$50 - $255" or "$40/song"."""
    if pricing.service_type == ServiceType.CONSULTATION:
        return "Free" if pricing.is_free or pricing.price == 0 else format_usd(pricing.price)
    if pricing.service_type == ServiceType.HOURLY_SESSION:
        tiers = pricing.tiers or parse_tiers(DEFAULT_HOURLY_PRICING)
        low, high = tiers[0].price, tiers[-1].price
        return format_usd(low) if low == high else f"{format_usd(low)} - {format_usd(high)}"
    if pricing.service_type == ServiceType.PER_SONG and pricing.price_per_song is not None:
        return f"{format_usd(pricing.price_per_song)}/song"
    if pricing.service_type == ServiceType.PRODUCTION and pricing.price_per_hour is not None:
        return f"{format_usd(pricing.price_per_hour)}/hour"
    return "Contact us"
