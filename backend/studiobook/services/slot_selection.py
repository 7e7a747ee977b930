# backend/studiobook/services/slot_selection.py
"""
Slot Selection State Machine.

Client-side workflow that turns calendar clicks into a submitted booking:

    idle -> awaiting_end (manual ranges only) -> range_selected
         -> submitting -> submitted | failed

Slot checks run against a cached snapshot of bookings, which is advisory;
the server re-checks at creation time. Nothing here touches the server
except ``submit`` and ``retry_payment`` through the callables they receive.
"""

from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import Any, Callable, Iterable, List, Optional

from ..core.config import settings
from ..core.enums import SlotRejectionReason
from ..core.exceptions import BookingConflictException, DomainException, PreconditionFailedException
from ..core.timezone_utils import ensure_utc, utc_now
from .availability_service import SLOT_REJECTION_MESSAGES, StudioHours, is_slot_available

logger = logging.getLogger(__name__)

CreateBooking = Callable[[datetime, datetime], str]
StartPayment = Callable[[str], Any]


class SelectionState(str, Enum):
    IDLE = "idle"
    AWAITING_END = "awaiting_end"
    RANGE_SELECTED = "range_selected"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    FAILED = "failed"


class SelectionMode(str, Enum):
    FIXED_DURATION = "fixed"
    MANUAL_RANGE = "manual"


_EDITABLE = {
    SelectionState.IDLE,
    SelectionState.AWAITING_END,
    SelectionState.RANGE_SELECTED,
}


class SlotSelection:
    """One client's in-progress slot pick for one service."""

    def __init__(
        self,
        *,
        mode: SelectionMode,
        duration_minutes: Optional[int] = None,
        bookings: Iterable[Any] = (),
        studio_hours: Optional[StudioHours] = None,
        step_minutes: Optional[int] = None,
        min_range_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if mode == SelectionMode.FIXED_DURATION and not duration_minutes:
            raise ValueError("Fixed-duration selection needs duration_minutes")
        self.mode = mode
        self.duration_minutes = duration_minutes
        self.studio_hours = studio_hours or StudioHours.from_settings()
        self.step = timedelta(minutes=step_minutes or settings.calendar_step_minutes)
        self.min_range = timedelta(minutes=min_range_minutes or settings.min_manual_range_minutes)
        self.clock = clock
        self._bookings: List[Any] = list(bookings)

        self.state = SelectionState.IDLE
        self.pending_start: Optional[datetime] = None
        self.start: Optional[datetime] = None
        self.end: Optional[datetime] = None
        self.rejection: Optional[SlotRejectionReason] = None
        self.booking_id: Optional[str] = None
        self.error: Optional[DomainException] = None

    @property
    def rejection_message(self) -> Optional[str]:
        return SLOT_REJECTION_MESSAGES[self.rejection] if self.rejection else None

    def refresh(self, bookings: Iterable[Any]) -> None:
        """Replace the cached bookings snapshot (from a poll or live update)."""
        self._bookings = list(bookings)

    def _require(self, allowed: Iterable[SelectionState], action: str) -> None:
        if self.state not in set(allowed):
            raise PreconditionFailedException(
                f"Cannot {action} while selection is {self.state.value}",
                details={"state": self.state.value},
            )

    def _reset(self) -> None:
        self.pending_start = None
        self.start = None
        self.end = None

    def _reject(self, reason: SlotRejectionReason) -> SelectionState:
        self._reset()
        self.rejection = reason
        self.state = SelectionState.IDLE
        logger.debug("Slot rejected: %s", reason.value)
        return self.state

    def _select(self, start: datetime, end: datetime) -> SelectionState:
        verdict = is_slot_available(
            start, end, self._bookings, now=self.clock(), studio_hours=self.studio_hours
        )
        if not verdict.available:
            return self._reject(verdict.reason)
        self.pending_start = None
        self.start, self.end = start, end
        self.rejection = None
        self.state = SelectionState.RANGE_SELECTED
        return self.state

    def pick_start(self, start: datetime) -> SelectionState:
        """
        First click.

        In fixed-duration mode this selects the whole slot; in manual mode it
        records the pending start and waits for the end click.
        """
        self._require(_EDITABLE, "pick a start time")
        start = ensure_utc(start)
        self._reset()
        self.rejection = None

        if self.mode == SelectionMode.FIXED_DURATION:
            return self._select(start, start + timedelta(minutes=self.duration_minutes))

        if start < ensure_utc(self.clock()):
            return self._reject(SlotRejectionReason.PAST)
        self.pending_start = start
        self.state = SelectionState.AWAITING_END
        return self.state

    def pick_end(self, cell_start: datetime) -> SelectionState:
        """
        Second click in manual mode; the range ends where the clicked cell ends.

        Clicking before the pending start moves the start there; clicking the
        pending start again clears it.
        """
        self._require({SelectionState.AWAITING_END}, "pick an end time")
        cell_start = ensure_utc(cell_start)
        if self.pending_start is None:
            raise PreconditionFailedException("No start time has been picked")

        if cell_start < self.pending_start:
            self.pending_start = cell_start
            return self.state
        if cell_start == self.pending_start:
            self.pending_start = None
            self.state = SelectionState.IDLE
            return self.state

        start, end = self.pending_start, cell_start + self.step
        verdict = is_slot_available(
            start, end, self._bookings, now=self.clock(), studio_hours=self.studio_hours
        )
        if not verdict.available:
            return self._reject(verdict.reason)
        if end - start < self.min_range:
            # Stay in awaiting_end so the client can pick a later end.
            self.rejection = SlotRejectionReason.TOO_SHORT
            return self.state
        return self._select(start, end)

    def click(self, cell_start: datetime) -> SelectionState:
        """Route a calendar click to pick_start or pick_end based on state."""
        if self.state == SelectionState.AWAITING_END:
            return self.pick_end(cell_start)
        return self.pick_start(cell_start)

    def cancel(self) -> SelectionState:
        """Discard local selection state. Has no server effect."""
        if self.state == SelectionState.SUBMITTING:
            raise PreconditionFailedException("Cannot cancel while a submission is in flight")
        self._reset()
        self.rejection = None
        self.error = None
        self.booking_id = None
        self.state = SelectionState.IDLE
        return self.state

    def submit(
        self,
        create_booking: CreateBooking,
        start_payment: Optional[StartPayment] = None,
    ) -> SelectionState:
        """
        Create the booking, then optionally start payment for it.

        A server-side slot conflict sends the selection back to idle with the
        reason. Any other failure lands in ``failed``; if the booking was
        already created its id is kept for ``retry_payment``.
        """
        self._require({SelectionState.RANGE_SELECTED}, "submit")
        if self.start is None or self.end is None:
            raise PreconditionFailedException("No time range has been selected")
        self.state = SelectionState.SUBMITTING
        self.error = None

        try:
            self.booking_id = create_booking(self.start, self.end)
        except BookingConflictException as exc:
            reason = SlotRejectionReason(exc.reason) if exc.reason else SlotRejectionReason.CONFLICT
            return self._reject(reason)
        except DomainException as exc:
            self.error = exc
            self.state = SelectionState.FAILED
            return self.state
        except Exception:
            self.state = SelectionState.FAILED
            raise

        return self._start_payment(start_payment)

    def retry_payment(self, start_payment: StartPayment) -> SelectionState:
        """Retry the payment step against the booking created earlier."""
        self._require({SelectionState.FAILED}, "retry payment")
        if not self.booking_id:
            raise PreconditionFailedException("No booking was created; submit again instead")
        self.state = SelectionState.SUBMITTING
        self.error = None
        return self._start_payment(start_payment)

    def _start_payment(self, start_payment: Optional[StartPayment]) -> SelectionState:
        if start_payment is not None:
            try:
                start_payment(self.booking_id)
            except DomainException as exc:
                logger.info("Payment start failed for booking %s: %s", self.booking_id, exc)
                self.error = exc
                self.state = SelectionState.FAILED
                return self.state
            except Exception:
                self.state = SelectionState.FAILED
                raise
        self.state = SelectionState.SUBMITTED
        return self.state
