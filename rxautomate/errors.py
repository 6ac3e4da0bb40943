"""Error taxonomy for the NHS client layer and the HTTP surface.

Every error carries the HTTP status it maps to, a short ``error`` title and
an optional human-readable ``message``. The API exception handler renders
them as ``{"error": ..., "message": ...}``.
"""

from __future__ import annotations

from typing import Any

# Upstream statuses that keep their meaning when surfaced to our callers
_PASSTHROUGH_STATUSES = frozenset({400, 404})
RETRYABLE_STATUSES = frozenset({429, 503, 504})


class RxAutomateError(Exception):
    status_code: int = 500
    error: str = "Internal server error"

    def __init__(self, error: str | None = None, message: str | None = None) -> None:
        if error is not None:
            self.error = error
        self.message = message
        super().__init__(message or self.error)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.message:
            body["message"] = self.message
        return body


class ValidationInputError(RxAutomateError):
    """Malformed input, rejected before any rate-limit or network cost."""

    status_code = 400
    error = "Invalid request"


class UnauthorizedError(RxAutomateError):
    status_code = 401
    error = "Unauthorized"


class AuthError(RxAutomateError):
    """OAuth2 credential exchange with the NHS auth server failed."""

    status_code = 500
    error = "Failed to authenticate with NHS API"


class NotFoundError(RxAutomateError):
    status_code = 404
    error = "Not found"


class InvalidTransitionError(RxAutomateError):
    status_code = 409
    error = "Invalid prescription status transition"

    def __init__(self, prescription_id: str, current: str, requested: str) -> None:
        self.prescription_id = prescription_id
        self.current = current
        self.requested = requested
        super().__init__(
            message=(
                f"Prescription {prescription_id} cannot move from "
                f"'{current}' to '{requested}'"
            )
        )


class StockUnavailableError(RxAutomateError):
    status_code = 409
    error = "Stock unavailable"

    def __init__(self, prescription_id: str, items: list[dict[str, Any]]) -> None:
        self.prescription_id = prescription_id
        self.items = items
        names = ", ".join(i["medication_name"] for i in items)
        super().__init__(
            message=f"Cannot dispense prescription {prescription_id}: insufficient stock for {names}"
        )

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["items"] = self.items
        return body


class RateLimitedError(RxAutomateError):
    status_code = 429
    error = "Too many requests"

    def __init__(self, category: str, limit: int, retry_after: int) -> None:
        self.category = category
        self.limit = limit
        self.retry_after = retry_after
        super().__init__(
            message=(
                f"Rate limit of {limit} requests per minute exceeded for NHS API {category}"
            )
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
        }


class UpstreamApiError(RxAutomateError):
    """Non-2xx response from an NHS endpoint."""

    error = "NHS API request failed"

    def __init__(
        self,
        operation: str,
        upstream_status: int | None,
        message: str,
        error_code: str | None = None,
    ) -> None:
        self.operation = operation
        self.upstream_status = upstream_status
        self.error_code = error_code
        super().__init__(message=message)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        if self.upstream_status in _PASSTHROUGH_STATUSES:
            return self.upstream_status
        return 500

    @property
    def retryable(self) -> bool:
        return self.upstream_status in RETRYABLE_STATUSES


class UpstreamTimeoutError(UpstreamApiError):
    """Outbound call exceeded its timeout. Transient and safe to retry for reads."""

    error = "NHS API request timed out"

    def __init__(self, operation: str) -> None:
        super().__init__(operation, 504, f"NHS API request timed out ({operation})")
