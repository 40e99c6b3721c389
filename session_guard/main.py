"""
FastAPI application factory.

Assembles the app, registers all routers, and wires up lifecycle
events.  Database schema is managed by Alembic — NOT create_all.
"""

import logging

from fastapi import FastAPI

from session_guard.controllers.security_controller import router as security_router
from session_guard.controllers.session_controller import router as session_router
from session_guard.core.config import settings
from session_guard.core.database import async_session_factory, engine
from session_guard.models import Base  # noqa: F401  registers all models

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(session_router)
    app.include_router(security_router)

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Seed the default security policy on first start.

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        if not settings.SEED_DEFAULT_POLICY:
            return

        from session_guard.services.policy_service import seed_default_policy

        async with async_session_factory() as session:
            seeded = await seed_default_policy(session)
            await session.commit()
        if seeded:
            logger.info("Default security policy seeded.")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await engine.dispose()
        logger.info("Database engine disposed.")

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
