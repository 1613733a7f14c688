import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

from multisearch.config import BackendConfig
from multisearch.credits.models import CreditSnapshot, UsageRecord
from multisearch.credits.state import CreditState, CreditStateStore
from multisearch.errors import NoUsageRecord, UnknownBackend
from multisearch.observability.logger import get_logger

log = get_logger("credits")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def month_of(timestamp: str) -> str | None:
    """Return the ``YYYY-MM`` month of an ISO-8601 timestamp, or None if malformed."""
    try:
        parsed = datetime.fromisoformat(timestamp)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m")


class QuotaLedger:
    """Tracks per-backend credit usage against a monthly quota.

    The ledger performs no I/O of its own: the usage snapshot is loaded from and
    written to the injected ``CreditStateStore``. ``charge`` only mutates memory;
    ``charge_and_persist`` also writes the full snapshot after a successful
    charge. Charges are serialized with a lock so two concurrent charges for the
    same backend can never both pass the sufficiency check.

    Usage records reset on the first ``initialize()`` after a calendar month
    boundary (``YYYY-MM`` comparison, not a rolling 30-day window).
    """

    def __init__(
        self,
        backends: list[BackendConfig],
        store: CreditStateStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.backends: dict[str, BackendConfig] = {b.id: b for b in backends}
        self.store = store
        self.clock = clock
        self._state: CreditState = {}
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Load persisted usage, create or reset records, and save the result.

        Safe to call more than once: the same month check is re-applied.
        """
        async with self._lock:
            self._state = await self.store.load_state()
            now = self.clock()
            current_month = now.strftime("%Y-%m")

            for backend_id in self.backends:
                record = self._state.get(backend_id)
                if record is None:
                    self._state[backend_id] = UsageRecord(used=0, last_reset=now.isoformat())
                    log.debug("usage_record_created", backend=backend_id)
                    continue

                if month_of(record.last_reset) != current_month:
                    log.info("usage_reset", backend=backend_id,
                             previous_used=record.used, last_reset=record.last_reset)
                    record.used = 0
                    record.last_reset = now.isoformat()

            await self.store.save_state(self._state)
            log.info("ledger_initialized", backends=len(self.backends))

    def ensure_known(self, backend_id: str) -> BackendConfig:
        config = self.backends.get(backend_id)
        if config is None:
            raise UnknownBackend(backend_id)
        return config

    def has_sufficient_credits(self, backend_id: str) -> bool:
        config = self.ensure_known(backend_id)
        record = self._state.get(backend_id)
        if record is None:
            return True  # No usage yet
        return record.used + config.credit_cost_per_search <= config.monthly_quota

    def charge(self, backend_id: str) -> bool:
        """Deduct one search worth of credits in memory.

        Returns False, leaving state untouched, when the charge would exceed
        the quota. Does not persist.
        """
        config = self.ensure_known(backend_id)
        record = self._state.get(backend_id)
        if record is None:
            raise NoUsageRecord(backend_id)

        cost = config.credit_cost_per_search
        if record.used + cost > config.monthly_quota:
            log.warning("credits_exhausted", backend=backend_id,
                        used=record.used, quota=config.monthly_quota, cost=cost)
            return False

        record.used += cost
        if self._is_low(config, record.used):
            log.warning("low_credit", backend=backend_id,
                        used=record.used, quota=config.monthly_quota)
        return True

    async def charge_and_persist(self, backend_id: str) -> bool:
        async with self._lock:
            if not self.charge(backend_id):
                return False
            await self.store.save_state(self._state)
            log.debug("backend_charged", backend=backend_id, used=self._state[backend_id].used)
            return True

    async def save(self):
        """Persist the current snapshot, e.g. after a batch of ``charge`` calls."""
        async with self._lock:
            await self.store.save_state(self._state)

    def snapshot(self, backend_id: str) -> CreditSnapshot:
        config = self.ensure_known(backend_id)
        record = self._state.get(backend_id)
        used = record.used if record else 0
        remaining = max(0, config.monthly_quota - used)
        return CreditSnapshot(
            backend_id=backend_id,
            quota=config.monthly_quota,
            used=used,
            remaining=remaining,
            is_exhausted=remaining < config.credit_cost_per_search,
            is_low=self._is_low(config, used),
        )

    def all_snapshots(self) -> list[CreditSnapshot]:
        return [self.snapshot(backend_id) for backend_id in self.backends]

    @staticmethod
    def _is_low(config: BackendConfig, used: int) -> bool:
        return used * 100 >= config.monthly_quota * config.low_credit_threshold_percent
