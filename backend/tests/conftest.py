import itertools
from datetime import timedelta

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import Settings
from app.context import AppContext
from app.dependencies import rate_limit
from app.main import app
from app.models import registry  # noqa: F401
from app.models.base import Base, get_db
from app.models.job import Job
from app.models.product import Product
from app.models.user import User
from app.services.auth_service import create_access_token
from app.services.cache_service import CacheService
from app.services.clock import Clock, utcnow
from app.services.event_bus import EventBus
from app.services.product_service import slugify
from app.services.task_pool import TaskPool

BROWSER_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
VALID_OTP = "123456"


class FakeOtpProvider:
    """Accepts every send; only ``VALID_OTP`` passes a check."""

    def __init__(self):
        self.sent = []
        self.checked = []

    async def send(self, phone: str):
        self.sent.append(phone)

    async def check(self, phone: str, code: str) -> bool:
        self.checked.append((phone, code))
        return code == VALID_OTP


class RecordingMailer:
    def __init__(self):
        self.outbox = []

    async def send(self, to: str, subject: str, html: str):
        self.outbox.append({"to": to, "subject": subject, "html": html})


class MovableClock(Clock):
    """Real time plus an offset that tests can push forward."""

    def __init__(self):
        self.offset = timedelta(0)

    def now(self):
        return utcnow() + self.offset

    def advance(self, **kwargs):
        self.offset += timedelta(**kwargs)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'productbazar.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def ctx(session_maker):
    redis = FakeAsyncRedis(decode_responses=True)
    await redis.flushall()
    tasks = TaskPool(workers=2, max_pending=100)
    context = AppContext(
        settings=Settings(jwt_secret="test-secret", node_env="test"),
        session_factory=session_maker,
        cache=CacheService(redis, tasks),
        events=EventBus(),
        tasks=tasks,
        otp_provider=FakeOtpProvider(),
        mailer=RecordingMailer(),
        clock=MovableClock(),
        redis=redis,
    )
    yield context
    await context.close()


@pytest_asyncio.fixture
async def client(ctx, session_maker):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.state.ctx = ctx
    app.state.disable_rate_limits = True
    app.dependency_overrides[get_db] = override_get_db
    rate_limit._local_counters.clear()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"User-Agent": BROWSER_UA},
    ) as http:
        yield http
        await ctx.tasks.join()

    app.dependency_overrides.pop(get_db, None)
    rate_limit._local_counters.clear()


@pytest.fixture
def auth(ctx):
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(ctx.settings, user, ctx.now())}"}

    return _headers


@pytest.fixture
def make_user(session_maker):
    counter = itertools.count(1)

    async def _make(**fields) -> User:
        n = next(counter)
        fields.setdefault("username", f"member{n}")
        fields.setdefault("phone", f"+9191234{n:05d}")
        fields.setdefault("is_phone_verified", True)
        async with session_maker() as db:
            user = User(**fields)
            db.add(user)
            await db.commit()
            return user

    return _make


@pytest.fixture
def make_product(session_maker, ctx):
    async def _make(maker: User, name: str, **fields) -> Product:
        fields.setdefault("slug", slugify(name))
        fields.setdefault("status", "Published")
        fields.setdefault("tags", [])
        fields.setdefault("view_history", [])
        fields.setdefault("created_at", ctx.now())
        async with session_maker() as db:
            product = Product(name=name, maker_id=maker.id, **fields)
            db.add(product)
            await db.commit()
            return product

    return _make


@pytest.fixture
def make_job(session_maker):
    async def _make(poster: User, title: str, **fields) -> Job:
        fields.setdefault("skills", [])
        async with session_maker() as db:
            job = Job(poster_id=poster.id, title=title, **fields)
            db.add(job)
            await db.commit()
            return job

    return _make
