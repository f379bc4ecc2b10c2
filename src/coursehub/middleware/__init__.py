"""HTTP middleware stack.

Starlette runs middleware in reverse-add order, so the request path is
CORS -> request id -> rate limit -> router. CORS is outermost so 429
responses still carry CORS headers; the request id wraps the rate limiter
so throttled requests are logged with an id.
"""

from fastapi import FastAPI

from coursehub.config import Settings
from coursehub.middleware.cors import setup_cors
from coursehub.middleware.error_handler import setup_error_handlers
from coursehub.middleware.logging import setup_logging
from coursehub.middleware.rate_limit import RateLimitMiddleware
from coursehub.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
