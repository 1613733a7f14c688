import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from multisearch.backends.base import ResultItem, SearchBackend, SearchResponse
from multisearch.backends.registry import BackendRegistry
from multisearch.credits.ledger import QuotaLedger
from multisearch.errors import SearchError
from multisearch.observability.logger import get_logger

log = get_logger("strategy")


class StrategyOptions(BaseModel):
    timeout: float = Field(default=30.0, gt=0)  # seconds, per backend call
    max_concurrent: int = Field(default=5, ge=1)
    retry_attempts: int = Field(default=2, ge=0)  # retries after the first call
    retry_delay: float = Field(default=1.0, ge=0)


class SearchOptions(BaseModel):
    limit: int | None = Field(default=None, gt=0)
    include_raw: bool = False


class EngineAttempt(BaseModel):
    backend_id: str
    success: bool
    reason: str | None = None


class StrategyResult(BaseModel):
    results: list[ResultItem] = Field(default_factory=list)
    attempts: list[EngineAttempt] = Field(default_factory=list)


@dataclass
class StrategyContext:
    registry: BackendRegistry
    credits: QuotaLedger


@dataclass
class CancellationToken:
    """Shared by the attempts of one run. The first success claims it.

    Claiming also cancels, so every later ``claim`` fails and a losing attempt
    can never reach the ledger.
    """

    _cancelled: bool = False
    winner: str | None = None

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def claim(self, backend_id: str) -> bool:
        if self._cancelled:
            return False
        self._cancelled = True
        self.winner = backend_id
        return True


@dataclass
class _Dispatch:
    semaphore: asyncio.Semaphore
    token: CancellationToken | None = None
    dispatched: set[str] = field(default_factory=set)


@dataclass
class _Outcome:
    attempt: EngineAttempt
    items: list[ResultItem] = field(default_factory=list)

    @classmethod
    def failed(cls, backend_id: str, reason: str) -> "_Outcome":
        return cls(EngineAttempt(backend_id=backend_id, success=False, reason=reason))


class SearchStrategy(ABC):
    """Fan-out policy over the backends of one search.

    ``execute`` never raises for a single backend's failure: low credit, a
    missing backend, timeouts and search errors all end up as a failed
    ``EngineAttempt``. Unknown ids and ledger or persistence errors propagate.
    """

    name: str = ""

    def __init__(self, options: StrategyOptions | None = None):
        self.options = options or StrategyOptions()

    @abstractmethod
    async def execute(
        self,
        query: str,
        backend_ids: list[str],
        options: SearchOptions,
        context: StrategyContext,
    ) -> StrategyResult:
        pass

    def _prepare(self, backend_ids: list[str], context: StrategyContext) -> list[str]:
        ids = list(dict.fromkeys(backend_ids))
        for backend_id in ids:
            context.credits.ensure_known(backend_id)
        return ids

    async def _run_backend(
        self,
        backend_id: str,
        query: str,
        options: SearchOptions,
        context: StrategyContext,
        dispatch: _Dispatch,
    ) -> _Outcome:
        if not context.credits.has_sufficient_credits(backend_id):
            log.info("backend_skipped", backend=backend_id, reason="low_credit")
            return _Outcome.failed(backend_id, "low_credit")

        backend = context.registry.get(backend_id)
        if backend is None:
            log.warning("backend_skipped", backend=backend_id, reason="provider_unavailable")
            return _Outcome.failed(backend_id, "provider_unavailable")

        async with dispatch.semaphore:
            if dispatch.token is not None and dispatch.token.is_cancelled:
                return _Outcome.failed(backend_id, "skipped")
            dispatch.dispatched.add(backend_id)
            items, reason = await self._call_with_retry(backend, query, options, dispatch.token)

        if items is None:
            return _Outcome.failed(backend_id, reason)

        if dispatch.token is not None and not dispatch.token.claim(backend_id):
            log.debug("result_discarded", backend=backend_id, winner=dispatch.token.winner)
            return _Outcome.failed(backend_id, "cancelled")

        if not await context.credits.charge_and_persist(backend_id):
            # Another search used up the quota while this call was in flight
            log.warning("charge_rejected", backend=backend_id, items=len(items))
            return _Outcome.failed(backend_id, "charge_rejected")

        log.info("attempt_succeeded", backend=backend_id, items=len(items))
        return _Outcome(EngineAttempt(backend_id=backend_id, success=True), items)

    async def _call_with_retry(
        self,
        backend: SearchBackend,
        query: str,
        options: SearchOptions,
        token: CancellationToken | None = None,
    ) -> tuple[list[ResultItem] | None, str | None]:
        reason = "unknown_error"
        tries = 1 + self.options.retry_attempts

        for attempt in range(1, tries + 1):
            if attempt > 1:
                await asyncio.sleep(self.options.retry_delay)
            if token is not None and token.is_cancelled:
                return None, "cancelled"

            try:
                response = await asyncio.wait_for(
                    backend.search(query, limit=options.limit, include_raw=options.include_raw),
                    timeout=self.options.timeout,
                )
            except asyncio.TimeoutError:
                reason = "timeout"
            except SearchError as e:
                reason = e.reason
            except Exception as e:
                log.error("backend_raised", backend=backend.id, error=str(e), error_type=type(e).__name__)
                reason = "unknown_error"
            else:
                if isinstance(response, SearchResponse) and response.items:
                    return response.items, None
                reason = "no_results"

            log.warning("attempt_failed", backend=backend.id, attempt=attempt,
                        tries=tries, reason=reason)

        return None, reason
