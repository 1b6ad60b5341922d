"""Per-application dependency context.

Holds the handles that would otherwise be module-level singletons: session
factory, cache, event bus, background pool, external providers and clock.
"""

from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as aioredis
from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import Settings
from app.services.cache_service import CacheService
from app.services.clock import Clock
from app.services.event_bus import EventBus
from app.services.mailer import HttpMailer
from app.services.otp_provider import TwilioVerifyProvider
from app.services.task_pool import TaskPool


@dataclass
class AppContext:
    settings: Settings
    session_factory: async_sessionmaker
    cache: CacheService
    events: EventBus
    tasks: TaskPool
    otp_provider: Any
    mailer: Any
    clock: Clock = field(default_factory=Clock)
    redis: aioredis.Redis | None = None

    def now(self):
        return self.clock.now()

    def send_email(self, to: str | None, subject: str, html: str) -> bool:
        """Queue an email; delivery failures are logged by the pool."""
        if not to:
            return False
        return self.tasks.submit(f"email:{subject}", lambda: self.mailer.send(to, subject, html))

    async def close(self):
        await self.tasks.stop()
        await self.events.stop()
        if self.redis is not None:
            await self.redis.aclose()


def build_context(settings: Settings, session_factory: async_sessionmaker) -> AppContext:
    redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    tasks = TaskPool(settings.task_pool_workers, settings.task_pool_max_pending)
    return AppContext(
        settings=settings,
        session_factory=session_factory,
        cache=CacheService(redis_client, tasks, enabled=not settings.disable_cache),
        events=EventBus(redis_client if settings.event_relay_enabled else None),
        tasks=tasks,
        otp_provider=TwilioVerifyProvider(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_verify_service_sid,
            timeout=settings.otp_provider_timeout,
        ),
        mailer=HttpMailer(settings.mail_api_url, settings.mail_api_key, settings.mail_from, settings.mail_timeout),
        redis=redis_client,
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.ctx
