"""
Domain exceptions for the application.

Services raise these instead of fastapi.HTTPException to avoid coupling
the service layer to the web framework. A global exception handler in
main.py translates them into ``{"error": message}`` JSON responses.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base application error with an HTTP-equivalent status code."""

    def __init__(self, message: str, status_code: int = 400, extra: Optional[Dict[str, Any]] = None):
        self.message = message
        self.status_code = status_code
        self.extra = extra or {}
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class ValidationError(AppError):
    """Input validation failure (400)."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class UnauthorizedError(AppError):
    """Caller is not signed in (401)."""

    def __init__(self, message: str = "Unauthorized."):
        super().__init__(message, status_code=401)


class ForbiddenError(AppError):
    """Caller may not perform this action (403)."""

    def __init__(self, message: str = "Forbidden."):
        super().__init__(message, status_code=403)


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class ExchangeUnavailableError(AppError):
    """Market data could not be fetched from the exchange (502)."""

    def __init__(self, message: str = "Market data unavailable."):
        super().__init__(message, status_code=502)


class RateLimitError(AppError):
    """Too many requests (429)."""

    def __init__(self, message: str, retry_after: int = None, extra: Optional[Dict[str, Any]] = None):
        self.retry_after = retry_after
        super().__init__(message, status_code=429, extra=extra)
