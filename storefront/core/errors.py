from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class StorefrontError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "internal_error"

    def __init__(self, message: str = "", details: Any = None):
        super().__init__(message or self.error)
        self.message = message or self.error
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationErrors(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "validation_error"

    def __init__(self, errors: dict[str, list[str]], message: str = "Invalid order data"):
        super().__init__(message, details=errors)
        self.errors = errors


class AuthenticationError(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "authentication_required"


class AuthorizationError(StorefrontError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "forbidden"


class UnsupportedJurisdiction(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "unsupported_jurisdiction"

    def __init__(self, country_code: str):
        super().__init__(
            f"No VAT rule configured for country '{country_code}'",
            details={"country_code": country_code},
        )
        self.country_code = country_code


class CalculationError(StorefrontError):
    error = "calculation_error"


class InvalidAmount(CalculationError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "invalid_amount"


class UnsupportedCurrency(CalculationError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "unsupported_currency"


class TotalsMismatch(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "totals_mismatch"

    def __init__(self, calculated: dict[str, int], provided: dict[str, int]):
        super().__init__(
            "Order totals do not match the server calculation",
            details={"calculated": calculated, "provided": provided},
        )
        self.calculated = calculated
        self.provided = provided


class InvalidSignature(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "invalid_signature"


class NotFound(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "not_found"


class InvalidTransition(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    error = "invalid_transition"

    def __init__(self, current: str, target: str, reason: str):
        super().__init__(
            f"Cannot move order from '{current}' to '{target}'",
            details={"current": current, "target": target, "reason": reason},
        )
        self.current = current
        self.target = target


class RateLimited(StorefrontError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "rate_limited"

    def __init__(self, retry_after: int, limit: int):
        super().__init__("Too many requests", details={"retry_after": retry_after})
        self.retry_after = retry_after
        self.limit = limit


class UpstreamProviderError(StorefrontError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error = "upstream_provider_error"

    def __init__(self, provider: str, message: str):
        super().__init__(message, details={"provider": provider})
        self.provider = provider


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed with {error} on path='{path}': {message}",
            error=exc.error,
            path=request.url.path,
            message=exc.message,
        )
    else:
        logger.warning(
            "Request rejected with {error} on path='{path}': {message}",
            error=exc.error,
            path=request.url.path,
            message=exc.message,
        )
    headers = None
    if isinstance(exc, RateLimited):
        headers = {
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
        }
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorefrontError, storefront_error_handler)
