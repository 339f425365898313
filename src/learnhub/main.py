"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from learnhub.auth.router import router as auth_router
from learnhub.config import get_settings
from learnhub.dashboard.router import router as dashboard_router
from learnhub.database import close_db, get_session, init_db
from learnhub.gamification.router import router as gamification_router
from learnhub.gamification.seed import seed_badges
from learnhub.health.router import router as health_router
from learnhub.middleware import setup_middleware
from learnhub.notifications.router import router as notifications_router
from learnhub.payments.router import router as payments_router
from learnhub.profile.router import router as profile_router
from learnhub.redis_client import close_redis, init_redis
from learnhub.sessions.router import router as sessions_router
from learnhub.subscriptions.router import router as subscriptions_router
from learnhub.subscriptions.seed import seed_plans
from learnhub.teams.router import router as teams_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Seed badge and plan definitions (idempotent)
    try:
        async for db in get_session():
            await seed_badges(db)
            await seed_plans(db)
            break
    except SQLAlchemyError:
        logger.warning("Seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LearnHub API",
        description="Backend API for LearnHub: learning sessions, teams, challenges and subscriptions",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(profile_router)
    app.include_router(sessions_router)
    app.include_router(teams_router)
    app.include_router(gamification_router)
    app.include_router(subscriptions_router)
    app.include_router(payments_router)
    app.include_router(notifications_router)
    app.include_router(dashboard_router)

    return app


app = create_app()
