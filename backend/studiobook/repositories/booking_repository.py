# backend/studiobook/repositories/booking_repository.py
"""
Booking Repository

Data access for bookings and their payment event trail, including the
overlap queries used by the authoritative conflict check and the
compare-and-set status update used by every lifecycle transition.
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.enums import BLOCKING_STATUSES, BookingStatus
from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingPaymentEvent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_BLOCKING_VALUES = [s.value for s in BLOCKING_STATUSES]


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Booking.user))

    def get_booking_with_details(self, booking_id: str) -> Optional[Booking]:
        """Booking with the owning user joined, for read-time name/email resolution."""
        return self.get_by_id(booking_id, load_relationships=True)

    def find_blocking_in_range(
        self,
        start_at: datetime,
        end_at: datetime,
        *,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """Active bookings whose [start, end) intersects the given half-open range."""
        try:
            query = self.db.query(Booking).filter(
                Booking.status.in_(_BLOCKING_VALUES),
                Booking.start_at < end_at,
                Booking.end_at > start_at,
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return query.order_by(Booking.start_at).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking booking overlap: {str(e)}")
            raise RepositoryException(f"Failed to check booking overlap: {str(e)}")

    def list_blocking_between(self, window_start: datetime, window_end: datetime) -> List[Booking]:
        """Snapshot of active bookings in a calendar window, for client-side hinting."""
        return self.find_blocking_in_range(window_start, window_end)

    def list_all_blocking(self) -> List[Booking]:
        try:
            return (
                self.db.query(Booking)
                .filter(Booking.status.in_(_BLOCKING_VALUES))
                .order_by(Booking.start_at, Booking.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing active bookings: {str(e)}")
            raise RepositoryException(f"Failed to list active bookings: {str(e)}")

    def list_bookings(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Booking]:
        try:
            query = self.db.query(Booking).options(joinedload(Booking.user))
            if user_id:
                query = query.filter(Booking.user_id == user_id)
            if status:
                query = query.filter(Booking.status == status)
            return query.order_by(Booking.start_at.desc()).offset(skip).limit(limit).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing bookings: {str(e)}")
            raise RepositoryException(f"Failed to list bookings: {str(e)}")

    def list_updated_since(
        self, since: datetime, *, user_id: Optional[str] = None, limit: int = 500
    ) -> List[Booking]:
        try:
            query = self.db.query(Booking).filter(Booking.updated_at > since)
            if user_id:
                query = query.filter(Booking.user_id == user_id)
            return query.order_by(Booking.updated_at).limit(limit).all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error polling booking changes: {str(e)}")
            raise RepositoryException(f"Failed to poll booking changes: {str(e)}")

    def transition_status(
        self,
        booking_id: str,
        expected: Iterable[BookingStatus],
        new_status: BookingStatus,
        **fields: Any,
    ) -> bool:
        """
        Compare-and-set the status column.

        Returns True only when the row was still in one of ``expected``;
        a concurrent writer that already moved the booking makes this a no-op.
        """
        values: Dict[str, Any] = {
            "status": new_status.value,
            "updated_at": datetime.now(timezone.utc),
        }
        values.update(fields)
        try:
            updated = (
                self.db.query(Booking)
                .filter(
                    Booking.id == booking_id,
                    Booking.status.in_([s.value for s in expected]),
                )
                .update(values, synchronize_session="fetch")
            )
            self.db.flush()
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning booking {booking_id}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to update booking status: {str(e)}")

    def add_payment_event(
        self,
        booking_id: str,
        event_type: str,
        *,
        amount: Optional[Decimal] = None,
        gateway_reference: Optional[str] = None,
        actor_id: Optional[str] = None,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> BookingPaymentEvent:
        try:
            event = BookingPaymentEvent(
                booking_id=booking_id,
                event_type=event_type,
                amount=amount,
                gateway_reference=gateway_reference,
                actor_id=actor_id,
                event_data=event_data,
            )
            self.db.add(event)
            self.db.flush()
            return event
        except SQLAlchemyError as e:
            self.logger.error(f"Error recording payment event for {booking_id}: {str(e)}")
            self.db.rollback()
            raise RepositoryException(f"Failed to record payment event: {str(e)}")

    def list_payment_events(self, booking_id: str) -> List[BookingPaymentEvent]:
        try:
            return (
                self.db.query(BookingPaymentEvent)
                .filter(BookingPaymentEvent.booking_id == booking_id)
                .order_by(BookingPaymentEvent.created_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing payment events: {str(e)}")
            raise RepositoryException(f"Failed to list payment events: {str(e)}")

    def find_by_payment_intent(self, intent_id: str) -> Optional[Booking]:
        """Booking owning a deposit or final intent id."""
        try:
            return (
                self.db.query(Booking)
                .filter(
                    (Booking.payment_intent_id == intent_id)
                    | (Booking.final_payment_intent_id == intent_id)
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding booking by intent {intent_id}: {str(e)}")
            raise RepositoryException(f"Failed to find booking by payment intent: {str(e)}")
