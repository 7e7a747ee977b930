# backend/studiobook/services/booking_service.py
"""
Booking Lifecycle Manager.

Owns booking creation and every status transition:

    pending -> pending_payment -> confirmed -> completed
    pending | pending_payment -> rejected
    confirmed -> refunded | cancelled

Creation re-runs the availability check against persisted bookings while
holding the studio-wide creation lock, so of two overlapping submissions
only one is stored. Transitions hold the per-booking lock and apply a
compare-and-set on the expected current status.
"""

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.booking_lock import booking_lock_sync, creation_lock_sync
from ..core.config import settings
from ..core.enums import BookingStatus, ServiceType, can_transition
from ..core.exceptions import (
    BookingBusyException,
    BookingConflictException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..events import BookingChange, BookingEventChannel, ChangeType, get_booking_channel
from ..models.booking import Booking
from ..models.service import Service
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate
from .availability_service import (
    SLOT_REJECTION_MESSAGES,
    BookedInterval,
    SlotVerdict,
    StudioHours,
    derive_slot_end,
    find_overlaps,
    is_slot_available,
)
from .base import BaseService
from .permission_service import PermissionService
from .pricing_service import (
    DEFAULT_BEAT_LICENSES,
    PricingParams,
    ServicePricing,
    compute_price,
)

logger = logging.getLogger(__name__)

GENERIC_CONFLICT_MESSAGE = "This time slot conflicts with an existing booking"

# Session details may still be attached while a booking is live.
_DETAILS_EDITABLE = {
    BookingStatus.PENDING,
    BookingStatus.PENDING_PAYMENT,
    BookingStatus.CONFIRMED,
}


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Pricing and slot checks are delegated to the pure pricing and
    availability modules; this class supplies persisted data to them and
    owns the write path.
    """

    def __init__(
        self,
        db: Session,
        *,
        channel: Optional[BookingEventChannel] = None,
        studio_hours: Optional[StudioHours] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.service_repository = RepositoryFactory.create_service_catalog_repository(db)
        self.pricing_rule_repository = RepositoryFactory.create_pricing_rule_repository(db)
        self.permissions = PermissionService(db)
        self.channel = channel or get_booking_channel()
        self.studio_hours = studio_hours or StudioHours.from_settings()
        self.clock = clock

    # Queries

    def _get_booking_or_404(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_booking_with_details(booking_id)
        if booking is None:
            raise NotFoundException("Booking not found", details={"booking_id": booking_id})
        return booking

    def _get_active_service(self, service_id: str) -> Service:
        service = self.service_repository.get_by_id(service_id, load_relationships=False)
        if service is None or not service.active:
            raise NotFoundException("Service not found", details={"service_id": service_id})
        return service

    def beat_license_prices(self) -> Dict[str, Any]:
        """Active license prices; the built-in table applies only until a rule is configured."""
        if not self.pricing_rule_repository.has_beat_license_rules():
            return dict(DEFAULT_BEAT_LICENSES)
        return self.pricing_rule_repository.beat_license_prices()

    @BaseService.measure_operation("quote_price")
    def quote_price(
        self,
        service_id: str,
        *,
        duration_minutes: Optional[int] = None,
        song_count: Optional[int] = None,
        beat_license: Optional[str] = None,
    ):
        service = self._get_active_service(service_id)
        if ServiceType(service.service_type) == ServiceType.CONSULTATION:
            duration_minutes = service.duration_minutes or settings.consultation_duration_minutes
        return compute_price(
            ServicePricing.from_service(service),
            PricingParams(
                duration_minutes=duration_minutes,
                song_count=song_count,
                beat_license=beat_license,
            ),
            self.beat_license_prices(),
        )

    @BaseService.measure_operation("check_availability")
    def check_availability(
        self, start_at: datetime, end_at: datetime, *, exclude_booking_id: Optional[str] = None
    ) -> SlotVerdict:
        """Authoritative read of the persisted calendar; takes no lock."""
        existing = self.booking_repository.find_blocking_in_range(
            ensure_utc(start_at), ensure_utc(end_at), exclude_booking_id=exclude_booking_id
        )
        return is_slot_available(
            start_at, end_at, existing, now=self.clock(), studio_hours=self.studio_hours
        )

    def calendar_snapshot(
        self, window_start: datetime, window_end: datetime
    ) -> List[BookedInterval]:
        """Busy intervals without personal data, for client-side slot hinting."""
        bookings = self.booking_repository.list_blocking_between(
            ensure_utc(window_start), ensure_utc(window_end)
        )
        return [
            BookedInterval(start_at=b.start_at, end_at=b.end_at, status=b.status)
            for b in bookings
        ]

    def get_booking(self, user_id: Optional[str], booking_id: str) -> Booking:
        booking = self._get_booking_or_404(booking_id)
        self.permissions.require_owner_or_admin(user_id, booking)
        return booking

    def list_bookings(
        self,
        user_id: Optional[str],
        *,
        status: Optional[BookingStatus] = None,
        all_users: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Booking]:
        user = self.permissions.require_authenticated(user_id)
        if all_users and not user.is_admin:
            raise ForbiddenException("Administrator privileges required")
        return self.booking_repository.list_bookings(
            user_id=None if all_users else user.id,
            status=status.value if status else None,
            skip=skip,
            limit=limit,
        )

    def list_changes_since(self, user_id: Optional[str], since: datetime) -> List[Booking]:
        """Polling fallback for the live channel."""
        user = self.permissions.require_authenticated(user_id)
        return self.booking_repository.list_updated_since(
            ensure_utc(since), user_id=None if user.is_admin else user.id
        )

    def list_payment_events(self, user_id: Optional[str], booking_id: str):
        self.permissions.require_admin(user_id)
        self._get_booking_or_404(booking_id)
        return self.booking_repository.list_payment_events(booking_id)

    @BaseService.measure_operation("find_double_bookings")
    def find_double_bookings(self, admin_id: Optional[str]) -> List[Tuple[Booking, Booking]]:
        """Reconciliation scan for overlaps that escaped the creation check."""
        self.permissions.require_admin(admin_id)
        return find_overlaps(self.booking_repository.list_all_blocking())

    # Creation

    def _resolve_slot(self, service: Service, data: BookingCreate) -> Tuple[datetime, datetime]:
        start_at = ensure_utc(data.start_at)
        service_type = ServiceType(service.service_type)
        if service_type == ServiceType.CONSULTATION:
            end_at = derive_slot_end(
                service_type, start_at, fixed_duration_minutes=service.duration_minutes
            )
        elif data.end_at is not None:
            end_at = ensure_utc(data.end_at)
        else:
            end_at = derive_slot_end(
                service_type, start_at, selected_duration_minutes=data.duration_minutes
            )

        if end_at <= start_at:
            raise ValidationException(
                "End time must be after start time",
                details={"start_at": start_at.isoformat(), "end_at": end_at.isoformat()},
            )
        if service_type != ServiceType.CONSULTATION:
            minutes = int((end_at - start_at).total_seconds() // 60)
            if minutes < (service.min_duration_minutes or 1):
                raise ValidationException(
                    f"Minimum booking length is {service.min_duration_minutes} minutes",
                    details={"duration_minutes": minutes},
                )
            if service.max_duration_minutes and minutes > service.max_duration_minutes:
                raise ValidationException(
                    f"Maximum booking length is {service.max_duration_minutes} minutes",
                    details={"duration_minutes": minutes},
                )
        return start_at, end_at

    @BaseService.measure_operation("create_booking")
    def create_booking(self, user_id: Optional[str], data: BookingCreate) -> Booking:
        """
        Create a pending booking for the caller.

        Raises:
            UnauthorizedException: no authenticated caller
            NotFoundException: unknown or inactive service
            ValidationException: bad duration, song count or beat license
            BookingConflictException: slot in the past, outside studio hours
                or overlapping an active booking
            BookingBusyException: the creation lock could not be taken
        """
        # 1. Caller and service
        user = self.permissions.require_authenticated(user_id)
        service = self._get_active_service(data.service_id)

        # 2. Slot and price
        start_at, end_at = self._resolve_slot(service, data)
        duration_minutes = int((end_at - start_at).total_seconds() // 60)
        total_price = compute_price(
            ServicePricing.from_service(service),
            PricingParams(
                duration_minutes=duration_minutes,
                song_count=data.song_count,
                beat_license=data.beat_license,
            ),
            self.beat_license_prices(),
        )

        # 3. Authoritative check and insert under the creation lock
        with creation_lock_sync() as acquired:
            if not acquired:
                raise BookingBusyException("studio")
            existing = self.booking_repository.find_blocking_in_range(start_at, end_at)
            verdict = is_slot_available(
                start_at, end_at, existing, now=self.clock(), studio_hours=self.studio_hours
            )
            if not verdict.available:
                self.logger.info(
                    "Booking rejected",
                    extra={
                        "user_id": user.id,
                        "reason": verdict.reason.value,
                        "start_at": start_at.isoformat(),
                    },
                )
                raise BookingConflictException(
                    SLOT_REJECTION_MESSAGES.get(verdict.reason, GENERIC_CONFLICT_MESSAGE),
                    reason=verdict.reason.value,
                    details={"conflicting_booking_id": verdict.conflicting_booking_id}
                    if verdict.conflicting_booking_id
                    else None,
                )

            with self.transaction():
                booking = self.booking_repository.create(
                    user_id=user.id,
                    service_id=service.id,
                    service_type=service.service_type,
                    service_name=service.name,
                    start_at=start_at,
                    end_at=end_at,
                    duration_minutes=duration_minutes,
                    song_count=data.song_count,
                    beat_license=data.beat_license,
                    total_price=total_price,
                    status=BookingStatus.PENDING.value,
                    notes=data.notes,
                    engineer_id=data.engineer_id or settings.default_engineer_id,
                    producer_name=data.producer_name or settings.default_producer_name,
                    session_details=data.session_details,
                )

        self.log_operation(
            "create_booking", booking_id=booking.id, user_id=user.id, total_price=str(total_price)
        )
        self._publish(booking, ChangeType.CREATED)
        return self._get_booking_or_404(booking.id)

    # Transitions

    @contextmanager
    def locked_booking(self, booking_id: str) -> Iterator[Booking]:
        """Hold the booking's mutex for the duration of the block."""
        with booking_lock_sync(booking_id) as acquired:
            if not acquired:
                raise BookingBusyException(booking_id)
            booking = self._get_booking_or_404(booking_id)
            yield booking

    def apply_transition(
        self,
        booking: Booking,
        target: BookingStatus,
        *,
        change_type: str = ChangeType.STATUS_CHANGED,
        payment_event: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Booking:
        """
        Move ``booking`` to ``target`` and commit.

        ``payment_event`` (keyword arguments for add_payment_event) is written
        in the same transaction as the status change.

        The caller must hold the booking lock. A concurrent writer that moved
        the booking first turns this into InvalidTransitionException.
        """
        current = BookingStatus(booking.status)
        if not can_transition(current, target):
            raise InvalidTransitionException(booking.id, current.value, target.value)

        with self.transaction():
            applied = self.booking_repository.transition_status(
                booking.id, [current], target, **fields
            )
            if not applied:
                raise InvalidTransitionException(booking.id, current.value, target.value)
            if payment_event:
                self.booking_repository.add_payment_event(booking.id, **payment_event)

        prometheus_metrics.record_transition(current.value, target.value)
        self.logger.info(
            f"Booking {booking.id} moved {current.value} -> {target.value}",
            extra={"booking_id": booking.id, "from": current.value, "to": target.value},
        )
        refreshed = self._get_booking_or_404(booking.id)
        self._publish(refreshed, change_type, previous_status=current.value)
        return refreshed

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(self, admin_id: Optional[str], booking_id: str) -> Booking:
        """Confirm a zero-price booking. Paid bookings confirm by deposit capture."""
        self.permissions.require_admin(admin_id)
        with self.locked_booking(booking_id) as booking:
            if booking.status == BookingStatus.CONFIRMED.value:
                return booking
            if booking.price > 0:
                raise PreconditionFailedException(
                    "Paid bookings are confirmed by capturing the deposit",
                    details={"booking_id": booking_id},
                )
            return self.apply_transition(
                booking, BookingStatus.CONFIRMED, confirmed_at=self.clock()
            )

    @BaseService.measure_operation("reject_booking")
    def reject_booking(
        self, admin_id: Optional[str], booking_id: str, reason: Optional[str] = None
    ) -> Booking:
        self.permissions.require_admin(admin_id)
        with self.locked_booking(booking_id) as booking:
            if booking.status == BookingStatus.REJECTED.value:
                return booking
            fields: Dict[str, Any] = {"cancelled_at": self.clock()}
            if reason:
                fields["notes"] = _append_note(booking.notes, f"Rejected: {reason}")
            return self.apply_transition(booking, BookingStatus.REJECTED, **fields)

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, admin_id: Optional[str], booking_id: str) -> Booking:
        """Complete a confirmed booking that owes nothing beyond its deposit."""
        self.permissions.require_admin(admin_id)
        with self.locked_booking(booking_id) as booking:
            if booking.status == BookingStatus.COMPLETED.value:
                return booking
            if booking.remaining_balance() > 0 and not booking.final_payment_captured:
                raise PreconditionFailedException(
                    "Final payment must be captured before completing this booking",
                    details={
                        "booking_id": booking_id,
                        "remaining_balance": str(booking.remaining_balance()),
                    },
                )
            return self.apply_transition(
                booking, BookingStatus.COMPLETED, completed_at=self.clock()
            )

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self, admin_id: Optional[str], booking_id: str, reason: Optional[str] = None
    ) -> Booking:
        """Cancel a confirmed booking on which no money was captured."""
        self.permissions.require_admin(admin_id)
        with self.locked_booking(booking_id) as booking:
            if booking.status == BookingStatus.CANCELLED.value:
                return booking
            if booking.deposit_captured or booking.final_payment_captured:
                raise PreconditionFailedException(
                    "A captured payment must be refunded instead of cancelled",
                    details={"booking_id": booking_id},
                )
            fields: Dict[str, Any] = {"cancelled_at": self.clock()}
            if reason:
                fields["notes"] = _append_note(booking.notes, f"Cancelled: {reason}")
            return self.apply_transition(booking, BookingStatus.CANCELLED, **fields)

    @BaseService.measure_operation("attach_session_details")
    def attach_session_details(
        self, user_id: Optional[str], booking_id: str, details: Dict[str, Any]
    ) -> Booking:
        """Merge questionnaire answers and file references into the booking."""
        user = self.permissions.require_authenticated(user_id)
        with self.locked_booking(booking_id) as booking:
            if booking.user_id != user.id:
                raise ForbiddenException(
                    "Only the booking owner can attach session details",
                    details={"booking_id": booking_id},
                )
            if BookingStatus(booking.status) not in _DETAILS_EDITABLE:
                raise PreconditionFailedException(
                    "Session details can only be attached to active bookings",
                    details={"booking_id": booking_id, "status": booking.status},
                )
            merged = dict(booking.session_details or {})
            merged.update(details)
            with self.transaction():
                self.booking_repository.update(booking_id, session_details=merged)
            refreshed = self._get_booking_or_404(booking_id)
        self._publish(refreshed, ChangeType.DETAILS_UPDATED)
        return refreshed

    def publish_change(self, booking_id: str, change_type: str) -> Booking:
        """Re-read a booking after an out-of-band write and notify subscribers."""
        booking = self._get_booking_or_404(booking_id)
        self._publish(booking, change_type)
        return booking

    def _publish(
        self, booking: Booking, change_type: str, previous_status: Optional[str] = None
    ) -> None:
        self.channel.publish(BookingChange.from_booking(booking, change_type, previous_status))


def _append_note(existing: Optional[str], line: str) -> str:
    return f"{existing}\n{line}" if existing else line


def overlap_window(first: Booking, second: Booking) -> Tuple[datetime, datetime]:
    return max(first.start_at, second.start_at), min(first.end_at, second.end_at)

