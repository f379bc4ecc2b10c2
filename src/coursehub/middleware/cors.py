"""CORS for the browser frontend."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coursehub.config import Settings

# The API only serves reads and form-style posts
_METHODS = ["GET", "POST", "OPTIONS"]
_REQUEST_HEADERS = ["Authorization", "Content-Type", "X-Request-Id"]
_EXPOSED_HEADERS = ["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the configured frontend origins with credentials (session cookie)."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=_METHODS,
        allow_headers=_REQUEST_HEADERS,
        expose_headers=_EXPOSED_HEADERS,
        max_age=600,
    )
