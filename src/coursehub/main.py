"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from coursehub.achievements.router import router as achievements_router
from coursehub.achievements.seed import seed_achievements
from coursehub.auth.router import router as auth_router
from coursehub.comments.router import router as comments_router
from coursehub.config import get_settings
from coursehub.database import close_db, get_session, init_db
from coursehub.entitlements.router import router as entitlements_router
from coursehub.health.router import router as health_router
from coursehub.middleware import setup_middleware
from coursehub.notifications.router import router as notifications_router
from coursehub.payments.provider import PayPalClient
from coursehub.payments.router import router as payments_router
from coursehub.progress.router import router as progress_router
from coursehub.ratings.router import router as ratings_router
from coursehub.redis_client import close_redis, init_redis
from coursehub.subscriptions.router import router as subscriptions_router
from coursehub.webhooks.router import router as webhooks_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Seed achievement definitions (idempotent)
    if settings.seed_achievements_on_startup:
        try:
            async for db in get_session():
                await seed_achievements(db)
                break
        except Exception:
            logging.getLogger(__name__).warning(
                "Achievement seeding failed (tables may not exist yet)", exc_info=True
            )

    # One provider client per process so the token cache is shared
    app.state.payment_provider = PayPalClient.from_settings(settings)

    yield

    await app.state.payment_provider.aclose()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CourseHub API",
        description="Backend API for CourseHub: courses, payments, progress and achievements",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(entitlements_router)
    app.include_router(progress_router)
    app.include_router(comments_router)
    app.include_router(ratings_router)
    app.include_router(payments_router)
    app.include_router(subscriptions_router)
    app.include_router(achievements_router)
    app.include_router(notifications_router)
    app.include_router(webhooks_router)

    return app


app = create_app()
