import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import multisearch.models  # noqa: F401
from multisearch.backends.base import ResultItem, SearchBackend, SearchResponse
from multisearch.config import BackendConfig
from multisearch.database import Base
from multisearch.errors import SearchError


class FakeBackend(SearchBackend):
    """Scripted search backend that records how it was called."""

    requires_api_key = False

    def __init__(
        self,
        backend_id: str,
        items: list[str] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        fail_times: int = 0,
    ):
        super().__init__(BackendConfig(id=backend_id, type="fake", monthly_quota=100))
        self.items = ["result"] if items is None else items
        self.error = error
        self.delay = delay
        self.fail_times = fail_times
        self.call_count = 0
        self.cancelled = False

    async def search(self, query: str, limit: int | None = None, include_raw: bool = False) -> SearchResponse:
        self.call_count += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise

        if self.call_count <= self.fail_times:
            raise SearchError(self.id, "network_error", "flaky connection")
        if self.error is not None:
            raise self.error

        return SearchResponse(
            backend_id=self.id,
            items=[
                ResultItem(title=title, url=f"https://{self.id}.example/{i}", source_backend=self.id)
                for i, title in enumerate(self.items)
            ],
        )


@pytest.fixture
def fake_backend():
    return FakeBackend


@pytest.fixture
def make_config():
    def _make(backend_id: str, quota: int = 100, cost: int = 1, **kwargs) -> BackendConfig:
        return BackendConfig(
            id=backend_id,
            type=kwargs.pop("type", "fake"),
            monthly_quota=quota,
            credit_cost_per_search=cost,
            **kwargs,
        )

    return _make


@pytest.fixture
def march_clock():
    return lambda: datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def session_factory():
    """Return a session factory over a fresh in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory
    await engine.dispose()
