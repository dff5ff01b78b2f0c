# backend/bookingflow/core/exceptions.py
"""
Domain-specific exceptions for the BookingFlow backend.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def _http(self, status_code: int) -> HTTPException:
        return HTTPException(
            status_code=status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )

    def to_http_exception(self) -> HTTPException:
        """Default conversion to HTTPException (override in subclasses)."""
        return self._http(status.HTTP_500_INTERNAL_SERVER_ERROR)


class ValidationException(DomainException):
    """Raised when input is malformed (bad email, missing field, non-future time)."""

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_400_BAD_REQUEST)


class NotFoundException(DomainException):
    """Raised when a requested practitioner or booking is not found."""

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_404_NOT_FOUND)


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_409_CONFLICT)


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    def to_http_exception(self) -> HTTPException:
        return self._http(HTTP_422_UNPROCESSABLE)


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class SlotTakenException(ConflictException):
    """Raised when a practitioner already has a live booking at the requested instant."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot is already booked. Please select another time.",
            code="SLOT_TAKEN",
            details=details or {},
        )


class SignatureInvalidException(DomainException):
    """Raised when a payment notification fails signature verification."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message=message or "Webhook signature verification failed",
            code="SIGNATURE_INVALID",
        )

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_400_BAD_REQUEST)


class ProviderUnavailableException(DomainException):
    """Raised when the scheduling or payment provider call fails."""

    def __init__(
        self,
        provider: str,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        super().__init__(
            message=message or f"{provider} is currently unavailable",
            code="PROVIDER_UNAVAILABLE",
            details={"provider": provider, **(details or {})},
        )

    def to_http_exception(self) -> HTTPException:
        return self._http(status.HTTP_502_BAD_GATEWAY)


class ProviderConfigurationError(RuntimeError):
    """Raised at startup when provider identifiers are missing or inconsistent."""


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
