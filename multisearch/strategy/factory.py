from multisearch.observability.logger import get_logger
from multisearch.strategy.all_providers import AllProvidersStrategy
from multisearch.strategy.base import SearchStrategy, StrategyOptions
from multisearch.strategy.first_success import FirstSuccessStrategy

log = get_logger("strategy.factory")

DEFAULT_STRATEGIES: dict[str, type[SearchStrategy]] = {
    "all": AllProvidersStrategy,
    "first-success": FirstSuccessStrategy,
}


class StrategyFactory:
    """Maps strategy names to strategy classes.

    Each factory owns its own table, so registering a custom strategy in one
    service (or test) never leaks into another.
    """

    def __init__(self, strategies: dict[str, type[SearchStrategy]] | None = None):
        self._strategies = dict(DEFAULT_STRATEGIES if strategies is None else strategies)

    def create(self, name: str, options: StrategyOptions | None = None) -> SearchStrategy:
        strategy_cls = self._strategies.get(name)
        if strategy_cls is None:
            available = ", ".join(self._strategies)
            raise ValueError(f'Unknown strategy: "{name}". Available strategies: [{available}]')
        return strategy_cls(options)

    def register(self, name: str, strategy_cls: type[SearchStrategy]):
        if name in self._strategies:
            raise ValueError(f'Strategy "{name}" is already registered')
        self._strategies[name] = strategy_cls
        log.info("strategy_registered", strategy=name)

    def available(self) -> list[str]:
        return list(self._strategies)

    def has(self, name: str) -> bool:
        return name in self._strategies
