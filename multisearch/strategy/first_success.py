import asyncio

from multisearch.observability.logger import get_logger
from multisearch.strategy.base import (
    CancellationToken,
    SearchOptions,
    SearchStrategy,
    StrategyContext,
    StrategyResult,
    _Dispatch,
    _Outcome,
)

log = get_logger("strategy.first_success")


class FirstSuccessStrategy(SearchStrategy):
    """Stop at the first backend that returns at least one item.

    Backends are dispatched in order under the concurrency bound. The winner
    claims the run's ``CancellationToken``; attempts still in flight are then
    cancelled and never charged, and queued ones are recorded as ``skipped``.
    """

    name = "first-success"

    async def execute(
        self,
        query: str,
        backend_ids: list[str],
        options: SearchOptions,
        context: StrategyContext,
    ) -> StrategyResult:
        ids = self._prepare(backend_ids, context)
        token = CancellationToken()
        dispatch = _Dispatch(semaphore=asyncio.Semaphore(self.options.max_concurrent), token=token)

        tasks = {
            asyncio.create_task(self._run_backend(backend_id, query, options, context, dispatch)): index
            for index, backend_id in enumerate(ids)
        }
        outcomes: list[_Outcome | None] = [None] * len(ids)
        pending = set(tasks)
        won = False

        try:
            while pending and not won:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    outcome = task.result()
                    outcomes[tasks[task]] = outcome
                    won = won or outcome.attempt.success
        finally:
            token.cancel()
            for task in pending:
                task.cancel()
            if pending:
                leftover = list(pending)
                settled = await asyncio.gather(*leftover, return_exceptions=True)
                for task, value in zip(leftover, settled):
                    if isinstance(value, _Outcome):
                        outcomes[tasks[task]] = value

        attempts = []
        for backend_id, outcome in zip(ids, outcomes):
            if outcome is None:
                reason = "cancelled" if backend_id in dispatch.dispatched else "skipped"
                outcome = _Outcome.failed(backend_id, reason)
            attempts.append(outcome.attempt)

        winner = next((o for o in outcomes if o is not None and o.attempt.success), None)
        result = StrategyResult(results=winner.items if winner else [], attempts=attempts)

        if winner is None:
            log.warning("strategy_exhausted", strategy=self.name, backends=len(ids))
        else:
            log.info("strategy_completed", strategy=self.name,
                     winner=token.winner, items=len(result.results))
        return result
