import asyncio
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import httpx

from multisearch.backends.base import SearchBackend
from multisearch.backends.factory import BackendFactory
from multisearch.backends.registry import BackendRegistry
from multisearch.config import BackendConfig, Settings, load_backend_configs
from multisearch.credits.ledger import QuotaLedger
from multisearch.credits.models import CreditSnapshot
from multisearch.credits.state import CreditStateStore, JsonFileStateStore, MemoryStateStore, SqlStateStore
from multisearch.database import create_engine, create_session_factory, init_db
from multisearch.errors import InitializationAborted, InitializationTimeout, ProcessControlError
from multisearch.lifecycle.supervisor import ValidationResult
from multisearch.observability.logger import get_logger
from multisearch.strategy.base import SearchOptions, StrategyContext, StrategyOptions, StrategyResult
from multisearch.strategy.factory import StrategyFactory

log = get_logger("service")


class MultiSearch:
    """Wires configuration, the quota ledger, the backends and the strategies.

    ``startup()`` must be awaited before the first search. Process-managed
    backends whose service fails to come up are kept out of dispatch (their
    attempts read ``provider_unavailable``) until a later health probe passes.
    """

    def __init__(
        self,
        settings: Settings,
        backends: list[BackendConfig],
        store: CreditStateStore | None = None,
        backend_factory: BackendFactory | None = None,
        strategy_factory: StrategyFactory | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.configs = [config for config in backends if config.enabled]
        self._engine = None
        self._client: httpx.AsyncClient | None = None

        self.store = store if store is not None else self._build_store()
        if clock is not None:
            self.ledger = QuotaLedger(self.configs, self.store, clock=clock)
        else:
            self.ledger = QuotaLedger(self.configs, self.store)

        if backend_factory is None:
            self._client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)
            project_root = str(Path(settings.config_path).expanduser().resolve().parent)
            backend_factory = BackendFactory(client=self._client, project_root=project_root)
        self.registry = BackendRegistry([backend_factory.create(config) for config in self.configs])

        self.strategies = strategy_factory or StrategyFactory()
        self.strategy_options = StrategyOptions(
            timeout=settings.request_timeout_seconds,
            max_concurrent=settings.max_concurrent,
            retry_attempts=settings.retry_attempts,
            retry_delay=settings.retry_delay_seconds,
        )
        self.unavailable: set[str] = set()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MultiSearch":
        settings = settings or Settings()
        return cls(settings, load_backend_configs(settings.config_path))

    def _build_store(self) -> CreditStateStore:
        if self.settings.state_backend == "memory":
            return MemoryStateStore()
        if self.settings.state_backend == "sql":
            self._engine = create_engine(self.settings.database_url)
            return SqlStateStore(create_session_factory(self._engine))
        return JsonFileStateStore(self.settings.state_path)

    async def startup(self):
        if self._engine is not None:
            await init_db(self._engine)
        await self.ledger.initialize()

        managed = [b for b in self.registry.backends() if b.is_lifecycle_managed]
        await asyncio.gather(*(self._init_backend(backend) for backend in managed))
        log.info("multisearch_ready", backends=self.registry.ids(), unavailable=sorted(self.unavailable))

    async def _init_backend(self, backend: SearchBackend):
        try:
            await backend.init()
        except (InitializationTimeout, InitializationAborted, ProcessControlError) as e:
            log.error("backend_init_failed", backend=backend.id, error=str(e))
            self.unavailable.add(backend.id)
            return

        # Without auto_start, init() can finish against a service that is down
        if await backend.healthcheck():
            self.unavailable.discard(backend.id)
        else:
            log.warning("backend_unhealthy_after_init", backend=backend.id)
            self.unavailable.add(backend.id)

    async def search(
        self,
        query: str,
        backend_ids: list[str] | None = None,
        strategy: str | None = None,
        limit: int | None = None,
        include_raw: bool = False,
    ) -> StrategyResult:
        query = query.strip()
        if not query:
            raise ValueError("Query must not be empty")

        ids = backend_ids or self.settings.default_engine_order or self.registry.ids()
        strategy_name = strategy or self.settings.default_strategy
        search_strategy = self.strategies.create(strategy_name, self.strategy_options)

        await self._recheck_unavailable(ids)
        context = StrategyContext(registry=self._dispatch_registry(), credits=self.ledger)

        log.info("search_started", strategy=strategy_name, backends=ids, limit=limit)
        return await search_strategy.execute(
            query, ids, SearchOptions(limit=limit, include_raw=include_raw), context,
        )

    async def _recheck_unavailable(self, backend_ids: list[str]):
        for backend_id in backend_ids:
            if backend_id not in self.unavailable:
                continue
            backend = self.registry.get(backend_id)
            if backend is not None and await backend.healthcheck():
                log.info("backend_recovered", backend=backend_id)
                self.unavailable.discard(backend_id)

    def _dispatch_registry(self) -> BackendRegistry:
        if not self.unavailable:
            return self.registry
        return BackendRegistry([b for b in self.registry.backends() if b.id not in self.unavailable])

    def credit_status(self) -> list[CreditSnapshot]:
        return self.ledger.all_snapshots()

    async def health(self) -> list[dict]:
        report = []
        for backend in self.registry.backends():
            supervisor = getattr(backend, "supervisor", None)
            report.append({
                "backend_id": backend.id,
                "lifecycle_managed": backend.is_lifecycle_managed,
                "state": supervisor.state.value if supervisor is not None else None,
                "healthy": await backend.healthcheck(),
                "configured": backend.is_configured(),
                "available": backend.id not in self.unavailable,
            })
        return report

    async def validate_backends(self) -> dict[str, ValidationResult]:
        results = {}
        for backend in self.registry.backends():
            if backend.is_lifecycle_managed:
                results[backend.id] = await backend.validate_config()
        return results

    async def shutdown(self):
        log.info("multisearch_shutting_down")
        managed = [b for b in self.registry.backends() if b.is_lifecycle_managed]
        await asyncio.gather(*(backend.shutdown() for backend in managed))
        if self._client is not None:
            await self._client.aclose()
        if self._engine is not None:
            await self._engine.dispose()
