# backend/studiobook/core/exceptions.py
"""
Domain-specific exceptions for the studio booking core.

Services raise these; the API layer translates them into HTTP responses
through ``to_http_exception``.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: Optional[str] = None

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.http_status,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when caller input is malformed or out of range."""

    http_status = status.HTTP_400_BAD_REQUEST
    default_code = "INVALID_INPUT"


class UnauthorizedException(DomainException):
    """Raised when no authenticated caller is present."""

    http_status = status.HTTP_401_UNAUTHORIZED
    default_code = "UNAUTHENTICATED"


class ForbiddenException(DomainException):
    """Raised when the caller lacks the privilege for an action."""

    http_status = status.HTTP_403_FORBIDDEN
    default_code = "PERMISSION_DENIED"


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    http_status = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    http_status = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    http_status = HTTP_422_UNPROCESSABLE


class PreconditionFailedException(BusinessRuleException):
    """Raised when the booking is not in a state that allows the operation."""

    http_status = status.HTTP_412_PRECONDITION_FAILED
    default_code = "FAILED_PRECONDITION"


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.http_status,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a slot is taken, in the past, or outside studio hours."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if reason:
            merged["reason"] = reason
        self.reason = reason
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=merged,
        )


class BookingBusyException(ConflictException):
    """Raised when another operation holds the booking's mutex."""

    def __init__(self, booking_id: str):
        super().__init__(
            message="Another operation is in progress for this booking. Please retry.",
            code="BOOKING_BUSY",
            details={"booking_id": booking_id},
        )


class InvalidTransitionException(PreconditionFailedException):
    """Raised when a status change is not in the allowed transition table."""

    def __init__(self, booking_id: str, current: str, target: str):
        super().__init__(
            message=f"Booking cannot move from {current} to {target}",
            code="INVALID_TRANSITION",
            details={"booking_id": booking_id, "current_status": current, "target_status": target},
        )


class RefundPendingException(PreconditionFailedException):
    """Raised when the gateway accepted a refund that has not settled yet."""

    def __init__(self, booking_id: str, refund_id: str):
        super().__init__(
            message="Refund is still pending; the booking stays confirmed until it succeeds",
            code="REFUND_PENDING",
            details={"booking_id": booking_id, "refund_id": refund_id},
        )


class PaymentGatewayException(ServiceException):
    """Raised when the payment gateway rejects a call, times out, or is unreachable."""

    http_status = status.HTTP_502_BAD_GATEWAY
    default_code = "PAYMENT_GATEWAY_ERROR"


class ReconciliationRequiredException(ServiceException):
    """
    Raised when the gateway call succeeded but recording its outcome failed.

    The gateway side effect already happened, so the operation must not be
    retried against the gateway; an operator reconciles from ``details``.
    """

    default_code = "RECONCILIATION_REQUIRED"


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """
