"""Persistence collaborators for the quota ledger.

Every store reads and writes the complete usage snapshot; there is no
incremental format. A missing or empty store loads as ``{}``.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from multisearch.credits.models import UsageRecord
from multisearch.models import BackendUsage
from multisearch.observability.logger import get_logger

log = get_logger("credits.state")

CreditState = dict[str, UsageRecord]


class CreditStateStore(Protocol):
    async def load_state(self) -> CreditState: ...

    async def save_state(self, state: CreditState) -> None: ...

    async def state_exists(self) -> bool: ...


def _copy_state(state: CreditState) -> CreditState:
    return {backend_id: record.model_copy() for backend_id, record in state.items()}


class MemoryStateStore:
    """Keeps the snapshot in memory. Used in tests and for throwaway runs."""

    def __init__(self, initial: CreditState | None = None):
        self._state: CreditState = _copy_state(initial or {})
        self.save_count = 0

    async def load_state(self) -> CreditState:
        return _copy_state(self._state)

    async def save_state(self, state: CreditState) -> None:
        self._state = _copy_state(state)
        self.save_count += 1

    async def state_exists(self) -> bool:
        return bool(self._state)


class JsonFileStateStore:
    """One JSON document on disk, replaced atomically on every save."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    async def load_state(self) -> CreditState:
        return await asyncio.to_thread(self._load_sync)

    async def save_state(self, state: CreditState) -> None:
        payload = {backend_id: record.model_dump() for backend_id, record in state.items()}
        await asyncio.to_thread(self._save_sync, payload)

    async def state_exists(self) -> bool:
        return self.path.exists()

    def _load_sync(self) -> CreditState:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"Credit state in {self.path} must be a JSON object")
        return {backend_id: UsageRecord.model_validate(raw) for backend_id, raw in data.items()}

    def _save_sync(self, payload: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".credits-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class SqlStateStore:
    """Stores one row per backend in the ``backend_usage`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_state(self) -> CreditState:
        async with self.session_factory() as session:
            result = await session.execute(select(BackendUsage))
            rows = result.scalars().all()
            return {
                row.backend_id: UsageRecord(used=row.used, last_reset=row.last_reset or "")
                for row in rows
            }

    async def save_state(self, state: CreditState) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(delete(BackendUsage))
                for backend_id, record in state.items():
                    session.add(BackendUsage(
                        backend_id=backend_id,
                        used=record.used,
                        last_reset=record.last_reset,
                    ))
        log.debug("credit_state_saved", store="sql", backends=len(state))

    async def state_exists(self) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(select(BackendUsage.backend_id).limit(1))
            return result.first() is not None
