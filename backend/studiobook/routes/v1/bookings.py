# backend/studiobook/routes/v1/bookings.py
"""
Booking API Routes - API v1

Endpoints:
    POST /                               → Create booking
    GET /                                → List caller's bookings (admins: all_users)
    POST /availability                   → Check a slot against the calendar
    POST /quote                          → Price a service selection
    POST /calendar                       → Busy intervals in a window
    GET /changes                         → Bookings changed since a timestamp
    GET /stream                          → Live booking changes (SSE)
    GET /overlaps                        → Double-booking scan (admin)
    GET /{booking_id}                    → Booking details
    PATCH /{booking_id}/session-details  → Attach session details (owner)
    POST /{booking_id}/confirm           → Confirm a free booking (admin)
    POST /{booking_id}/reject            → Reject (admin)
    POST /{booking_id}/complete          → Complete (admin)
    POST /{booking_id}/cancel            → Cancel without refund (admin)
    GET /{booking_id}/payment-events     → Payment audit trail (admin)
"""

import asyncio
from datetime import datetime
import json
import logging
from typing import AsyncGenerator, List, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request, status
from sse_starlette.sse import EventSourceResponse

from ...api.dependencies import (
    get_booking_service,
    get_current_user_id,
    get_event_channel,
)
from ...core.config import settings
from ...core.enums import BookingStatus
from ...core.exceptions import DomainException
from ...events import BookingEventChannel
from ...schemas.booking import (
    AdminTransitionRequest,
    AvailabilityCheckRequest,
    AvailabilityCheckResponse,
    BookingChangesResponse,
    BookingCreate,
    BookingResponse,
    CalendarSlot,
    CalendarSnapshotRequest,
    OverlapPair,
    PaymentEventResponse,
    PriceQuoteRequest,
    PriceQuoteResponse,
    SessionDetailsUpdate,
)
from ...services.booking_service import BookingService, overlap_window

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"
SSE_PING_SECONDS = 15


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Service not found"},
        409: {"description": "Time slot not available"},
    },
)
def create_booking(
    booking_data: BookingCreate = Body(...),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Create a pending booking. Paid bookings continue with a deposit intent."""
    try:
        booking = booking_service.create_booking(user_id, booking_data)
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    all_users: bool = Query(False, description="Admins only: include every client"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[BookingResponse]:
    try:
        bookings = booking_service.list_bookings(
            user_id, status=status_filter, all_users=all_users, skip=skip, limit=limit
        )
        return [BookingResponse.from_booking(b) for b in bookings]
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/availability", response_model=AvailabilityCheckResponse)
def check_availability(
    check_data: AvailabilityCheckRequest = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> AvailabilityCheckResponse:
    """Read-only check; creation repeats it authoritatively."""
    try:
        verdict = booking_service.check_availability(check_data.start_at, check_data.end_at)
        return AvailabilityCheckResponse(
            available=verdict.available,
            reason=verdict.reason.value if verdict.reason else None,
            message=verdict.message,
            conflicting_booking_id=verdict.conflicting_booking_id,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/quote", response_model=PriceQuoteResponse)
def quote_price(
    quote_data: PriceQuoteRequest = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> PriceQuoteResponse:
    try:
        total = booking_service.quote_price(
            quote_data.service_id,
            duration_minutes=quote_data.duration_minutes,
            song_count=quote_data.song_count,
            beat_license=quote_data.beat_license,
        )
        return PriceQuoteResponse(
            service_id=quote_data.service_id,
            total_price=total,
            currency=settings.stripe_currency,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/calendar", response_model=List[CalendarSlot])
def calendar_snapshot(
    window: CalendarSnapshotRequest = Body(...),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[CalendarSlot]:
    """Busy intervals without client data, for greying out the calendar."""
    try:
        intervals = booking_service.calendar_snapshot(window.window_start, window.window_end)
        return [
            CalendarSlot(start_at=i.start_at, end_at=i.end_at, status=i.status)
            for i in intervals
        ]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/changes", response_model=BookingChangesResponse)
def list_changes(
    since: datetime = Query(..., description="Return bookings updated after this instant"),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingChangesResponse:
    """Polling fallback for clients that cannot hold an event stream open."""
    try:
        server_time = booking_service.clock()
        bookings = booking_service.list_changes_since(user_id, since)
        return BookingChangesResponse(
            items=[BookingResponse.from_booking(b) for b in bookings],
            server_time=server_time,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/stream",
    responses={
        200: {"description": "SSE stream of booking changes"},
        401: {"description": "Not authenticated"},
    },
)
async def stream_booking_changes(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
    channel: BookingEventChannel = Depends(get_event_channel),
) -> EventSourceResponse:
    """
    Live booking changes.

    Clients see changes to their own bookings; administrators see all of
    them. Each event carries only the booking id, status and slot; clients
    re-read details through GET /{booking_id}.
    """
    try:
        user = await asyncio.to_thread(booking_service.permissions.require_authenticated, user_id)
    except DomainException as e:
        handle_domain_exception(e)

    subscription = channel.subscribe(user_id=None if user.is_admin else user.id)
    logger.info(
        "[SSE] Booking stream opened",
        extra={"user_id": user.id, "subscribers": channel.subscriber_count},
    )

    async def event_generator() -> AsyncGenerator[dict, None]:
        with subscription:
            while not subscription.closed:
                if await request.is_disconnected():
                    break
                change = await subscription.next_event(timeout=SSE_PING_SECONDS)
                if change is None:
                    continue
                yield {
                    "event": change.change_type,
                    "id": f"{change.booking_id}:{change.occurred_at.timestamp()}",
                    "data": json.dumps(change.to_dict()),
                }
        logger.info("[SSE] Booking stream closed", extra={"user_id": user.id})

    return EventSourceResponse(
        event_generator(),
        ping=SSE_PING_SECONDS,
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/overlaps", response_model=List[OverlapPair])
def find_overlaps(
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[OverlapPair]:
    """Reconciliation report of active bookings that overlap each other."""
    try:
        pairs = booking_service.find_double_bookings(user_id)
        result = []
        for first, second in pairs:
            overlap_start, overlap_end = overlap_window(first, second)
            result.append(
                OverlapPair(
                    first_booking_id=first.id,
                    second_booking_id=second.id,
                    overlap_start=overlap_start,
                    overlap_end=overlap_end,
                )
            )
        return result
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Dynamic routes (with path parameters - placed last)
# ============================================================================


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    responses={404: {"description": "Booking not found"}},
)
def get_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        return BookingResponse.from_booking(booking_service.get_booking(user_id, booking_id))
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{booking_id}/session-details", response_model=BookingResponse)
def attach_session_details(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    update: SessionDetailsUpdate = Body(...),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = booking_service.attach_session_details(
            user_id, booking_id, update.session_details
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
def confirm_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Confirm a free booking. Paid bookings are confirmed by capturing the deposit."""
    try:
        return BookingResponse.from_booking(booking_service.confirm_booking(user_id, booking_id))
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
def reject_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    body: Optional[AdminTransitionRequest] = Body(None),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = booking_service.reject_booking(
            user_id, booking_id, body.reason if body else None
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/complete", response_model=BookingResponse)
def complete_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = booking_service.complete_booking(user_id, booking_id)
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    body: Optional[AdminTransitionRequest] = Body(None),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = booking_service.cancel_booking(
            user_id, booking_id, body.reason if body else None
        )
        return BookingResponse.from_booking(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}/payment-events", response_model=List[PaymentEventResponse])
def list_payment_events(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    user_id: str = Depends(get_current_user_id),
    booking_service: BookingService = Depends(get_booking_service),
) -> List[PaymentEventResponse]:
    try:
        events = booking_service.list_payment_events(user_id, booking_id)
        return [
            PaymentEventResponse(
                id=event.id,
                event_type=event.event_type,
                amount=event.amount,
                gateway_reference=event.gateway_reference,
                actor_id=event.actor_id,
                created_at=event.created_at,
            )
            for event in events
        ]
    except DomainException as e:
        handle_domain_exception(e)
