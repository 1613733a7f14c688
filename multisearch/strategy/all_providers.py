import asyncio

from multisearch.observability.logger import get_logger
from multisearch.strategy.base import (
    SearchOptions,
    SearchStrategy,
    StrategyContext,
    StrategyResult,
    _Dispatch,
)

log = get_logger("strategy.all")


class AllProvidersStrategy(SearchStrategy):
    """Query every eligible backend and merge whatever succeeds.

    Items come back grouped by backend input order, each group in the
    backend's own order. Nothing is re-ranked.
    """

    name = "all"

    async def execute(
        self,
        query: str,
        backend_ids: list[str],
        options: SearchOptions,
        context: StrategyContext,
    ) -> StrategyResult:
        ids = self._prepare(backend_ids, context)
        dispatch = _Dispatch(semaphore=asyncio.Semaphore(self.options.max_concurrent))

        tasks = [
            asyncio.create_task(self._run_backend(backend_id, query, options, context, dispatch))
            for backend_id in ids
        ]
        try:
            outcomes = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        result = StrategyResult(
            results=[item for outcome in outcomes for item in outcome.items],
            attempts=[outcome.attempt for outcome in outcomes],
        )
        log.info("strategy_completed", strategy=self.name, backends=len(ids),
                 succeeded=sum(1 for a in result.attempts if a.success),
                 items=len(result.results))
        return result
