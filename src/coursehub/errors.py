"""Domain exceptions.

Every exception carries the HTTP status it maps to and a public ``detail``
string. The global handler in ``coursehub.middleware.error_handler`` renders
them as ``{"detail": ...}``.
"""

from __future__ import annotations


class CourseHubError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Session / credential errors
# ---------------------------------------------------------------------------


class Unauthenticated(CourseHubError):
    status_code = 401
    detail = "Not authenticated"


class InvalidToken(CourseHubError):
    status_code = 401
    detail = "Invalid or expired token"


class AccountGone(CourseHubError):
    status_code = 401
    detail = "Account not found"


class AccessDenied(CourseHubError):
    """Raised for every denied access; never names the rule that failed."""

    status_code = 403
    detail = "Access denied"


class NotFound(CourseHubError):
    status_code = 404
    detail = "Not found"


class Conflict(CourseHubError):
    status_code = 409
    detail = "Conflict"


# ---------------------------------------------------------------------------
# Payment provider errors
# ---------------------------------------------------------------------------


class ProviderAuthError(CourseHubError):
    """Token endpoint unreachable, refused the credentials, or returned garbage."""

    status_code = 503
    detail = "Payment provider temporarily unavailable"


class ProviderUnavailable(CourseHubError):
    """Timeout, transport failure or 5xx from the payment provider."""

    status_code = 503
    detail = "Payment provider temporarily unavailable"


class ProviderRequestError(CourseHubError):
    """The payment provider rejected a request (non-auth 4xx)."""

    status_code = 502
    detail = "Payment provider rejected the request"


# ---------------------------------------------------------------------------
# Webhook errors
# ---------------------------------------------------------------------------


class MalformedWebhook(CourseHubError):
    status_code = 400
    detail = "Malformed webhook"


class UnverifiedSignature(CourseHubError):
    status_code = 400
    detail = "Webhook signature verification failed"


class UnsupportedEventType(CourseHubError):
    status_code = 400
    detail = "Unsupported webhook event type"
