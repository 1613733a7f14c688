import asyncio
from enum import Enum

import httpx
from pydantic import BaseModel, Field

from multisearch.config import DockerConfig
from multisearch.errors import InitializationAborted, InitializationTimeout, ProcessControlError
from multisearch.lifecycle.docker import ProcessController, ProcessStatus
from multisearch.observability.logger import get_logger

log = get_logger("lifecycle")


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
    FAILED = "failed"


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class LifecycleSupervisor:
    """Owns the start/health/stop lifecycle of one locally managed service.

    Concurrent ``init()`` calls share a single in-flight attempt, so only one
    start command is ever issued per attempt. ``healthcheck()`` never raises,
    and ``shutdown()`` is best-effort: it always ends in ``STOPPED``.
    """

    def __init__(
        self,
        name: str,
        controller: ProcessController,
        config: DockerConfig,
        client: httpx.AsyncClient | None = None,
        probe_timeout: float = 3.0,
        stop_timeout: float = 30.0,
    ):
        self.name = name
        self.controller = controller
        self.config = config
        self.client = client
        self.probe_timeout = probe_timeout
        self.stop_timeout = stop_timeout
        self.state = LifecycleState.UNINITIALIZED
        self._lock = asyncio.Lock()
        self._init_task: asyncio.Task | None = None

    def _set_state(self, state: LifecycleState):
        if state != self.state:
            log.info("supervisor_state_changed", service=self.name,
                     previous=self.state.value, state=state.value)
            self.state = state

    async def init(self):
        async with self._lock:
            if self.state == LifecycleState.HEALTHY:
                return
            if self._init_task is None or self._init_task.done():
                self._init_task = asyncio.create_task(self._run_init(), name=f"init:{self.name}")
                self._init_task.add_done_callback(_consume_result)
            task = self._init_task

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise InitializationAborted(self.name) from None

    async def _run_init(self):
        if not self.config.auto_start:
            healthy = await self._probe()
            self._set_state(LifecycleState.HEALTHY if healthy else LifecycleState.UNHEALTHY)
            return

        self._set_state(LifecycleState.STARTING)
        timeout = self.config.init_timeout_seconds
        try:
            await asyncio.wait_for(self._start_and_wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self._set_state(LifecycleState.FAILED)
            log.error("supervisor_init_timeout", service=self.name, timeout=timeout)
            raise InitializationTimeout(self.name, timeout) from None
        except ProcessControlError as e:
            self._set_state(LifecycleState.FAILED)
            log.error("supervisor_start_failed", service=self.name, error=str(e))
            raise

        self._set_state(LifecycleState.HEALTHY)

    async def _start_and_wait(self):
        if await self.controller.status() == ProcessStatus.RUNNING:
            log.info("service_already_running", service=self.name)
        else:
            await self.controller.start()

        while not await self._probe():
            await asyncio.sleep(self.config.health_poll_interval)

    async def healthcheck(self) -> bool:
        healthy = await self._probe()
        if self.state in (LifecycleState.HEALTHY, LifecycleState.UNHEALTHY):
            self._set_state(LifecycleState.HEALTHY if healthy else LifecycleState.UNHEALTHY)
        return healthy

    async def _probe(self) -> bool:
        endpoint = self.config.health_endpoint
        try:
            if not endpoint:
                return await self.controller.status() == ProcessStatus.RUNNING
            if self.client is not None:
                response = await self.client.get(endpoint, timeout=self.probe_timeout)
            else:
                async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                    response = await client.get(endpoint)
            return response.is_success
        except Exception as e:
            log.debug("health_probe_failed", service=self.name, error=str(e))
            return False

    async def shutdown(self):
        async with self._lock:
            task = self._init_task
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

            if self.state in (LifecycleState.UNINITIALIZED, LifecycleState.STOPPED):
                self._set_state(LifecycleState.STOPPED)
                return

            if not self.config.auto_stop:
                log.info("supervisor_stop_skipped", service=self.name, reason="auto_stop disabled")
                self._set_state(LifecycleState.STOPPED)
                return

            self._set_state(LifecycleState.SHUTTING_DOWN)
            try:
                await asyncio.wait_for(self.controller.stop(), timeout=self.stop_timeout)
            except Exception as e:
                log.warning("supervisor_stop_failed", service=self.name, error=str(e))
            self._set_state(LifecycleState.STOPPED)

    async def validate_config(self) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        config = self.config

        if not await self.controller.is_available():
            message = "Docker is not available (is the daemon running and on PATH?)"
            if config.auto_start or config.auto_stop:
                errors.append(message)
            else:
                warnings.append(message)

        if config.compose_file:
            if not self.controller.compose_file_exists():
                errors.append(f"Compose file not found: {config.compose_file}")
        elif config.auto_start:
            errors.append("auto_start requires a compose_file")

        if not config.container_name:
            warnings.append("No container_name set; status checks use the whole compose project")

        if config.health_endpoint:
            try:
                url = httpx.URL(config.health_endpoint)
            except (httpx.InvalidURL, TypeError) as e:
                errors.append(f"Invalid health endpoint '{config.health_endpoint}': {e}")
            else:
                if url.scheme not in ("http", "https") or not url.host:
                    errors.append(f"Health endpoint must be an http(s) URL: {config.health_endpoint}")
        else:
            warnings.append("No health_endpoint set; health falls back to process status")

        seen: set[int] = set()
        for port in config.ports:
            if not 1 <= port <= 65535:
                errors.append(f"Port out of range: {port}")
            elif port in seen:
                warnings.append(f"Port listed more than once: {port}")
            seen.add(port)

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    async def is_running(self) -> bool:
        return await self.controller.status() == ProcessStatus.RUNNING


def _consume_result(task: asyncio.Task):
    # Waiters may all have been cancelled; keep asyncio from reporting the exception as unretrieved.
    if not task.cancelled():
        task.exception()
