# backend/tests/unit/services/test_slot_selection.py
"""
Tests for the client-side slot selection workflow.

create_booking / start_payment are plain callables, so each test wires
in whatever server behavior it needs.
"""

import pytest

from studiobook.core.enums import SlotRejectionReason
from studiobook.core.exceptions import (
    BookingConflictException,
    PaymentGatewayException,
    PreconditionFailedException,
)
from studiobook.services.availability_service import BookedInterval
from studiobook.services.slot_selection import SelectionMode, SelectionState, SlotSelection
from tests._utils.studio_helpers import NOW, UTC_STUDIO_HOURS, at

TAKEN = [BookedInterval(at(14), at(15), "confirmed", "b-taken")]


def fixed(duration=60, bookings=TAKEN):
    return SlotSelection(
        mode=SelectionMode.FIXED_DURATION,
        duration_minutes=duration,
        bookings=bookings,
        studio_hours=UTC_STUDIO_HOURS,
        clock=lambda: NOW,
    )


def manual(min_range=60, bookings=TAKEN):
    return SlotSelection(
        mode=SelectionMode.MANUAL_RANGE,
        bookings=bookings,
        studio_hours=UTC_STUDIO_HOURS,
        step_minutes=30,
        min_range_minutes=min_range,
        clock=lambda: NOW,
    )


class TestFixedDuration:
    def test_single_click_selects_range(self):
        selection = fixed(duration=15)
        assert selection.click(at(10)) == SelectionState.RANGE_SELECTED
        assert (selection.start, selection.end) == (at(10), at(10, 15))

    def test_conflicting_click_returns_to_idle_with_reason(self):
        selection = fixed()
        assert selection.click(at(14, 30)) == SelectionState.IDLE
        assert selection.rejection == SlotRejectionReason.CONFLICT
        assert selection.rejection_message == "This time slot is already booked"

    def test_new_click_replaces_selection(self):
        selection = fixed()
        selection.click(at(10))
        selection.click(at(16))
        assert selection.start == at(16)
        assert selection.rejection is None

    def test_requires_duration(self):
        with pytest.raises(ValueError):
            SlotSelection(mode=SelectionMode.FIXED_DURATION)

    def test_refresh_uses_new_snapshot(self):
        selection = fixed(bookings=[])
        selection.refresh([BookedInterval(at(10), at(11), "pending")])
        assert selection.click(at(10)) == SelectionState.IDLE
        assert selection.rejection == SlotRejectionReason.CONFLICT


class TestManualRange:
    def test_two_clicks_select_range_ending_at_cell_end(self):
        selection = manual()
        assert selection.click(at(10)) == SelectionState.AWAITING_END
        assert selection.click(at(10, 30)) == SelectionState.RANGE_SELECTED
        assert (selection.start, selection.end) == (at(10), at(11))

    def test_clicking_pending_start_again_clears(self):
        selection = manual()
        selection.click(at(10))
        assert selection.click(at(10)) == SelectionState.IDLE
        assert selection.pending_start is None

    def test_earlier_click_moves_start(self):
        selection = manual()
        selection.click(at(11))
        assert selection.click(at(10)) == SelectionState.AWAITING_END
        assert selection.pending_start == at(10)

    def test_short_range_keeps_waiting(self):
        selection = manual(min_range=90)
        selection.click(at(10))
        assert selection.click(at(10, 30)) == SelectionState.AWAITING_END
        assert selection.rejection == SlotRejectionReason.TOO_SHORT
        assert selection.click(at(11)) == SelectionState.RANGE_SELECTED

    def test_range_across_booking_rejected(self):
        selection = manual()
        selection.click(at(13))
        assert selection.click(at(15)) == SelectionState.IDLE
        assert selection.rejection == SlotRejectionReason.CONFLICT

    def test_past_start_rejected(self):
        selection = manual()
        past = NOW.replace(hour=10)
        assert selection.click(past) == SelectionState.IDLE
        assert selection.rejection == SlotRejectionReason.PAST

    def test_pick_end_requires_pending_start(self):
        with pytest.raises(PreconditionFailedException):
            manual().pick_end(at(11))


class TestSubmit:
    def test_submit_and_start_payment(self):
        selection = fixed()
        selection.click(at(10))
        paid = []
        state = selection.submit(lambda start, end: "bk-1", paid.append)
        assert state == SelectionState.SUBMITTED
        assert selection.booking_id == "bk-1"
        assert paid == ["bk-1"]

    def test_submit_without_payment(self):
        selection = fixed()
        selection.click(at(10))
        assert selection.submit(lambda start, end: "bk-1") == SelectionState.SUBMITTED

    def test_server_conflict_returns_to_idle(self):
        selection = fixed()
        selection.click(at(10))

        def create(start, end):
            raise BookingConflictException(reason="conflict")

        assert selection.submit(create) == SelectionState.IDLE
        assert selection.rejection == SlotRejectionReason.CONFLICT
        assert selection.booking_id is None

    def test_payment_failure_keeps_booking_for_retry(self):
        selection = fixed()
        selection.click(at(10))

        def failing_payment(booking_id):
            raise PaymentGatewayException("card network down")

        assert selection.submit(lambda s, e: "bk-9", failing_payment) == SelectionState.FAILED
        assert selection.booking_id == "bk-9"
        assert isinstance(selection.error, PaymentGatewayException)

        retried = []
        assert selection.retry_payment(retried.append) == SelectionState.SUBMITTED
        assert retried == ["bk-9"]
        assert selection.error is None

    def test_retry_without_booking_is_refused(self):
        selection = fixed()
        selection.click(at(10))

        def create(start, end):
            raise PaymentGatewayException("boom")

        selection.submit(create)
        assert selection.state == SelectionState.FAILED
        with pytest.raises(PreconditionFailedException):
            selection.retry_payment(lambda booking_id: None)

    def test_unexpected_error_propagates(self):
        selection = fixed()
        selection.click(at(10))

        def create(start, end):
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            selection.submit(create)
        assert selection.state == SelectionState.FAILED

    def test_submit_requires_selected_range(self):
        with pytest.raises(PreconditionFailedException):
            fixed().submit(lambda s, e: "bk")

    def test_inconsistent_state_is_refused_without_calling_server(self):
        selection = fixed()
        selection.state = SelectionState.RANGE_SELECTED
        calls = []
        with pytest.raises(PreconditionFailedException):
            selection.submit(lambda start, end: calls.append((start, end)))
        assert calls == []

        ranged = manual()
        ranged.state = SelectionState.AWAITING_END
        with pytest.raises(PreconditionFailedException):
            ranged.pick_end(at(11))

    def test_cancel_clears_everything(self):
        selection = fixed()
        selection.click(at(10))
        assert selection.cancel() == SelectionState.IDLE
        assert selection.start is None and selection.end is None
