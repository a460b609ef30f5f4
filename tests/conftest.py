"""Shared fixtures: temporary SQLite database, fake provider, clocks."""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from solvegate.app.core.cache import InMemoryCache, reset_cache
from solvegate.app.core.config import Settings
from solvegate.app.core.retry import RetryPolicy
from solvegate.app.core.utils import utc_now
from solvegate.app.db.async_session import get_db
from solvegate.app.db.base import Base
from solvegate.app.db.init_db import create_all_tables
from solvegate.app.main import create_app
from solvegate.app.providers.base import BaseProvider, Completion
from solvegate.app.providers.factory import reset_provider
from solvegate.app.services import completion_gateway as completion_gateway_module
from solvegate.app.services import session_manager as session_manager_module
from solvegate.app.services.completion_gateway import CompletionGateway, reset_completion_gateway
from solvegate.app.services.quota import QuotaPolicyEngine
from solvegate.app.services.session_manager import SessionManager, reset_session_manager
from solvegate.app.services.usage_counter import DailyCallCounter


class MutableClock:
    """Clock that starts at the real current time and can be moved forward."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeProvider(BaseProvider):
    """Provider double that records calls and returns a canned completion."""

    name = "fake"

    def __init__(
        self,
        text: str = "Start by isolating x on one side of the equation.",
        tokens: int = 400,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__("http://fake.provider", "fake-key")
        self.text = text
        self.tokens = tokens
        self.error = error
        self.delay = delay
        self.calls: List[dict] = []

    async def complete(self, system_prompt, subject, question, image=None) -> Completion:
        self.calls.append(
            {"system_prompt": system_prompt, "subject": subject, "question": question, "image": image}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, tokens=self.tokens, model="fake-model")

    async def health_check(self, timeout: float = 2.0) -> bool:
        return True


def make_settings(**overrides) -> Settings:
    values = {
        "free_daily_limit": 5,
        "premium_display_limit": 999,
        "user_daily_call_limit": 50,
        "daily_budget_cents": 100_000,
        "cost_cents_per_1k_tokens": 0.015,
        "provider_timeout": 5.0,
        "store_retry_attempts": 2,
        "store_retry_base_delay": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset module-level singletons before and after each test."""
    reset_cache()
    reset_provider()
    reset_session_manager()
    reset_completion_gateway()
    yield
    reset_cache()
    reset_provider()
    reset_session_manager()
    reset_completion_gateway()


@pytest.fixture
def config() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'solvegate.db'}")
    await create_all_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def quota(config, cache, clock) -> QuotaPolicyEngine:
    return QuotaPolicyEngine(config=config, counter=DailyCallCounter(cache), clock=clock)


@pytest.fixture
def sessions(quota, config) -> SessionManager:
    # Token issue/expiry follows real time; only the quota day is simulated
    return SessionManager(quota=quota, config=config)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def gateway(provider, session_factory, sessions, quota, config) -> CompletionGateway:
    return CompletionGateway(
        provider=provider,
        session_factory=session_factory,
        sessions=sessions,
        quota=quota,
        retry_policy=RetryPolicy(max_retries=2, base_delay=0.0),
        config=config,
    )


@pytest.fixture
def sync_db_url(tmp_path) -> str:
    """SQLite file with the schema created synchronously.

    Used by TestClient tests, whose requests run on a separate event loop.
    """
    path = tmp_path / "solvegate_api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def api_session_factory(sync_db_url) -> async_sessionmaker[AsyncSession]:
    api_engine = create_async_engine(sync_db_url, poolclass=NullPool)
    return async_sessionmaker(
        bind=api_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
def api_gateway(monkeypatch, api_session_factory, sessions, quota, config, provider) -> CompletionGateway:
    """Gateway and session manager installed as the app-wide singletons."""
    gateway = CompletionGateway(
        provider=provider,
        session_factory=api_session_factory,
        sessions=sessions,
        quota=quota,
        retry_policy=RetryPolicy(max_retries=0, base_delay=0.0),
        config=config,
    )
    monkeypatch.setattr(session_manager_module, "_session_manager", sessions)
    monkeypatch.setattr(completion_gateway_module, "_gateway", gateway)
    return gateway


@pytest.fixture
def client(api_gateway, api_session_factory) -> TestClient:
    """TestClient for a fresh app; the lifespan is not run."""
    app = create_app()

    async def override_get_db():
        async with api_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)
