# backend/studiobook/routes/v1/payments.py
"""
Payment API Routes - API v1

Two-phase booking payments under /api/v1/payments.

Endpoints:
    POST /intents              → Create deposit intent (booking owner)
    POST /capture-deposit      → Capture deposit, confirm booking (admin)
    POST /refund-deposit       → Refund captured deposit (admin)
    POST /final-intents        → Create remaining-balance intent (admin)
    POST /capture-final        → Capture final payment, complete booking (admin)
    POST /webhook              → Stripe webhook (signature verified)
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from ...api.dependencies import get_current_user_id, get_payment_service
from ...core.exceptions import DomainException
from ...schemas.payment import (
    BookingPaymentRequest,
    ChargeFinalPaymentRequest,
    CreatePaymentIntentRequest,
    PaymentActionResponse,
    PaymentIntentResponse,
    RefundDepositRequest,
    WebhookResponse,
)
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payments-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post(
    "/intents",
    response_model=PaymentIntentResponse,
    response_model_by_alias=True,
    responses={
        412: {"description": "Booking cannot take a deposit in its current state"},
        502: {"description": "Payment gateway error"},
    },
)
def create_payment_intent(
    payload: CreatePaymentIntentRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentIntentResponse:
    """Start the deposit payment for a pending booking."""
    try:
        result = payment_service.create_deposit_intent(
            user_id, payload.booking_id, payload.amount, payload.currency
        )
        return PaymentIntentResponse(
            client_secret=result.client_secret, payment_intent_id=result.payment_intent_id
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/capture-deposit", response_model=PaymentActionResponse)
def capture_deposit(
    payload: BookingPaymentRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentActionResponse:
    try:
        result = payment_service.capture_deposit(user_id, payload.booking_id)
        return PaymentActionResponse(success=result.success, message=result.message)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/refund-deposit", response_model=PaymentActionResponse)
def refund_deposit(
    payload: RefundDepositRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentActionResponse:
    try:
        result = payment_service.refund_deposit(user_id, payload.booking_id, payload.reason)
        return PaymentActionResponse(success=result.success, message=result.message)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/final-intents",
    response_model=PaymentIntentResponse,
    response_model_by_alias=True,
)
def charge_final_payment(
    payload: ChargeFinalPaymentRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentIntentResponse:
    """Create the remaining-balance intent; the amount may not exceed the balance."""
    try:
        result = payment_service.create_final_intent(
            user_id, payload.booking_id, payload.amount, payload.currency
        )
        return PaymentIntentResponse(
            client_secret=result.client_secret, payment_intent_id=result.payment_intent_id
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/capture-final", response_model=PaymentActionResponse)
def capture_final_payment(
    payload: BookingPaymentRequest = Body(...),
    user_id: str = Depends(get_current_user_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentActionResponse:
    try:
        result = payment_service.capture_final_payment(user_id, payload.booking_id)
        return PaymentActionResponse(success=result.success, message=result.message)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/webhook", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    """
    Mirror Stripe-side payment status onto bookings.

    No authentication: the request is trusted only after the signature
    verifies against the configured webhook secret.
    """
    payload = await request.body()
    try:
        result = await run_in_threadpool(
            payment_service.handle_webhook, payload, stripe_signature
        )
    except DomainException as e:
        handle_domain_exception(e)
    return WebhookResponse(**result)
