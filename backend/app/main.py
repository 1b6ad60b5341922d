"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from starlette.middleware.gzip import GZipMiddleware

from app.api.v1 import router as api_v1_router
from app.config import get_settings
from app.context import build_context
from app.errors import register_error_handlers
from app.models import registry  # noqa: F401
from app.models.base import AsyncSessionLocal, Base, engine
from app.services.clock import utcnow
from app.services.user_agent import is_bot

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Starting %s...", settings.app_name)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables verified")

    ctx = build_context(settings, AsyncSessionLocal)
    await ctx.events.start_relay()
    app.state.ctx = ctx
    yield
    logger.info("Shutting down...")
    await ctx.close()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Product discovery marketplace API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Cache", "X-Cache-Key"],
)


@app.middleware("http")
async def classify_bots(request: Request, call_next):
    request.state.is_bot = is_bot(request.headers.get("user-agent"))
    return await call_next(request)


register_error_handlers(app)

app.include_router(api_v1_router)
@app.get("/health")
async def health_check():
    return {"status": "healthy", "app": settings.app_name}


def _celery_workers() -> dict:
    from app.tasks.celery_app import celery_app

    replies = celery_app.control.inspect(timeout=5).ping() or {}
    return {"ok": bool(replies), "workers": sorted(replies)}


@app.get("/health/detailed")
async def detailed_health_check(request: Request):
    """Dependency checks; any failure reports ``degraded`` rather than an error."""
    ctx = request.app.state.ctx
    checks = {}

    try:
        async with ctx.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = {"ok": True}
    except Exception as e:
        checks["database"] = {"ok": False, "message": str(e)}

    checks["cache"] = {"ok": await ctx.cache.ping(), "enabled": ctx.cache.enabled}
    checks["event_relay"] = {"ok": ctx.events.redis is None or ctx.events.relaying}

    try:
        checks["celery_workers"] = await asyncio.to_thread(_celery_workers)
    except Exception as e:
        checks["celery_workers"] = {"ok": False, "message": str(e)}

    healthy = all(check["ok"] for check in checks.values())
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": utcnow().isoformat(),
        "checks": checks,
        "backgroundTasks": {"pending": ctx.tasks.pending, "dropped": ctx.tasks.dropped, "failed": ctx.tasks.failed},
    }
