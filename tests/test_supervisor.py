import asyncio
import math
from unittest.mock import AsyncMock

import httpx
import pytest

from multisearch.config import DockerConfig
from multisearch.errors import InitializationAborted, InitializationTimeout, ProcessControlError
from multisearch.lifecycle.docker import DockerComposeController, ProcessStatus
from multisearch.lifecycle.supervisor import LifecycleState, LifecycleSupervisor

HEALTH_URL = "http://localhost:8888/healthz"


class FakeController:
    """Container stand-in: reports healthy ``healthy_after`` seconds after start."""

    def __init__(
        self,
        healthy_after: float = 0.0,
        running: bool = False,
        start_error: Exception | None = None,
        stop_error: Exception | None = None,
        available: bool = True,
        compose_exists: bool = True,
    ):
        self.healthy_after = healthy_after
        self.running = running
        self.start_error = start_error
        self.stop_error = stop_error
        self.available = available
        self.compose_exists = compose_exists
        self.start_calls = 0
        self.stop_calls = 0
        self._started_at = 0.0 if running else None

    async def start(self):
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.running = True
        self._started_at = asyncio.get_running_loop().time()

    async def stop(self):
        self.stop_calls += 1
        if self.stop_error is not None:
            raise self.stop_error
        self.running = False

    async def status(self) -> ProcessStatus:
        return ProcessStatus.RUNNING if self.running else ProcessStatus.STOPPED

    async def is_available(self) -> bool:
        return self.available

    def compose_file_exists(self) -> bool:
        return self.compose_exists

    def is_healthy(self) -> bool:
        if not self.running or self._started_at is None:
            return False
        if self._started_at == 0.0:
            return True
        return asyncio.get_running_loop().time() - self._started_at >= self.healthy_after


def health_client(controller: FakeController) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200 if controller.is_healthy() else 503)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def docker_config(**overrides) -> DockerConfig:
    values = {
        "container_name": "searxng",
        "compose_file": "docker-compose.yml",
        "health_endpoint": HEALTH_URL,
        "auto_start": True,
        "auto_stop": True,
        "init_timeout_seconds": 5.0,
        "health_poll_interval": 0.05,
        "ports": [8888],
    }
    values.update(overrides)
    return DockerConfig(**values)


def make_supervisor(controller: FakeController, **overrides) -> LifecycleSupervisor:
    return LifecycleSupervisor(
        "searxng", controller, docker_config(**overrides), client=health_client(controller),
    )


@pytest.mark.asyncio
class TestSupervisorInit:
    async def test_concurrent_inits_issue_one_start(self):
        controller = FakeController(healthy_after=2.0)
        supervisor = make_supervisor(controller, health_poll_interval=0.1)

        await asyncio.gather(supervisor.init(), supervisor.init())

        assert controller.start_calls == 1
        assert supervisor.state == LifecycleState.HEALTHY

    async def test_init_times_out_and_fails(self):
        controller = FakeController(healthy_after=math.inf)
        supervisor = make_supervisor(controller, init_timeout_seconds=1.0)

        with pytest.raises(InitializationTimeout):
            await supervisor.init()

        assert supervisor.state == LifecycleState.FAILED

    async def test_concurrent_callers_share_the_timeout(self):
        controller = FakeController(healthy_after=math.inf)
        supervisor = make_supervisor(controller, init_timeout_seconds=0.3)

        results = await asyncio.gather(supervisor.init(), supervisor.init(), return_exceptions=True)

        assert all(isinstance(r, InitializationTimeout) for r in results)
        assert controller.start_calls == 1

    async def test_init_when_healthy_is_noop(self):
        controller = FakeController()
        supervisor = make_supervisor(controller)

        await supervisor.init()
        await supervisor.init()

        assert controller.start_calls == 1

    async def test_already_running_skips_start(self):
        controller = FakeController(running=True)
        supervisor = make_supervisor(controller)

        await supervisor.init()

        assert controller.start_calls == 0
        assert supervisor.state == LifecycleState.HEALTHY

    async def test_auto_start_disabled_only_probes(self):
        controller = FakeController()
        supervisor = make_supervisor(controller, auto_start=False)

        await supervisor.init()

        assert controller.start_calls == 0
        assert supervisor.state == LifecycleState.UNHEALTHY

        controller.running = True
        controller._started_at = 0.0
        await supervisor.init()
        assert supervisor.state == LifecycleState.HEALTHY

    async def test_start_failure_marks_failed(self):
        controller = FakeController(start_error=ProcessControlError("docker compose", "no such service"))
        supervisor = make_supervisor(controller)

        with pytest.raises(ProcessControlError):
            await supervisor.init()

        assert supervisor.state == LifecycleState.FAILED

    async def test_retry_after_failure_starts_again(self):
        controller = FakeController(start_error=ProcessControlError("docker compose", "daemon down"))
        supervisor = make_supervisor(controller)
        with pytest.raises(ProcessControlError):
            await supervisor.init()

        controller.start_error = None
        await supervisor.init()

        assert controller.start_calls == 2
        assert supervisor.state == LifecycleState.HEALTHY

    async def test_shutdown_aborts_inflight_init(self):
        controller = FakeController(healthy_after=math.inf)
        supervisor = make_supervisor(controller)

        init_task = asyncio.create_task(supervisor.init())
        await asyncio.sleep(0.1)
        await supervisor.shutdown()

        with pytest.raises(InitializationAborted):
            await init_task
        assert supervisor.state == LifecycleState.STOPPED


@pytest.mark.asyncio
class TestSupervisorHealth:
    async def test_healthcheck_tracks_recovery(self):
        controller = FakeController()
        supervisor = make_supervisor(controller)
        await supervisor.init()

        controller.running = False
        assert await supervisor.healthcheck() is False
        assert supervisor.state == LifecycleState.UNHEALTHY

        controller.running = True
        assert await supervisor.healthcheck() is True
        assert supervisor.state == LifecycleState.HEALTHY

    async def test_healthcheck_swallows_network_errors(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        supervisor = LifecycleSupervisor("searxng", FakeController(), docker_config(), client=client)

        assert await supervisor.healthcheck() is False

    async def test_healthcheck_does_not_move_uninitialized_state(self):
        controller = FakeController(running=True)
        supervisor = make_supervisor(controller)

        assert await supervisor.healthcheck() is True
        assert supervisor.state == LifecycleState.UNINITIALIZED

    async def test_probe_falls_back_to_process_status(self):
        controller = FakeController(running=True)
        supervisor = LifecycleSupervisor("searxng", controller, docker_config(health_endpoint=None))

        assert await supervisor.healthcheck() is True

    async def test_is_running_reads_process_status(self):
        controller = FakeController()
        supervisor = make_supervisor(controller)

        assert await supervisor.is_running() is False
        controller.running = True
        assert await supervisor.is_running() is True


@pytest.mark.asyncio
class TestSupervisorShutdown:
    async def test_auto_stop_disabled_never_stops(self):
        controller = FakeController()
        supervisor = make_supervisor(controller, auto_stop=False)
        await supervisor.init()

        await supervisor.shutdown()

        assert controller.stop_calls == 0
        assert supervisor.state == LifecycleState.STOPPED

    async def test_auto_stop_issues_stop(self):
        controller = FakeController()
        supervisor = make_supervisor(controller)
        await supervisor.init()

        await supervisor.shutdown()

        assert controller.stop_calls == 1
        assert supervisor.state == LifecycleState.STOPPED

    async def test_stop_failure_still_stops(self):
        controller = FakeController(stop_error=ProcessControlError("docker compose", "permission denied"))
        supervisor = make_supervisor(controller)
        await supervisor.init()

        await supervisor.shutdown()

        assert controller.stop_calls == 1
        assert supervisor.state == LifecycleState.STOPPED

    async def test_stop_that_hangs_is_bounded(self):
        controller = FakeController()
        supervisor = make_supervisor(controller)
        supervisor.stop_timeout = 0.1
        await supervisor.init()

        async def hang():
            await asyncio.sleep(10)

        controller.stop = hang
        await supervisor.shutdown()

        assert supervisor.state == LifecycleState.STOPPED

    async def test_shutdown_never_started(self):
        controller = FakeController()
        supervisor = make_supervisor(controller)

        await supervisor.shutdown()
        await supervisor.shutdown()

        assert controller.stop_calls == 0
        assert supervisor.state == LifecycleState.STOPPED


@pytest.mark.asyncio
class TestValidateConfig:
    async def test_valid_config(self):
        supervisor = make_supervisor(FakeController())
        result = await supervisor.validate_config()

        assert result.valid is True
        assert result.errors == []

    async def test_docker_missing_is_error_when_managed(self):
        supervisor = make_supervisor(FakeController(available=False))
        result = await supervisor.validate_config()

        assert result.valid is False
        assert any("Docker" in e for e in result.errors)

    async def test_docker_missing_is_warning_when_unmanaged(self):
        supervisor = make_supervisor(FakeController(available=False), auto_start=False, auto_stop=False)
        result = await supervisor.validate_config()

        assert result.valid is True
        assert any("Docker" in w for w in result.warnings)

    async def test_missing_compose_file(self):
        supervisor = make_supervisor(FakeController(compose_exists=False))
        result = await supervisor.validate_config()

        assert result.valid is False
        assert any("Compose file not found" in e for e in result.errors)

    async def test_bad_ports_and_endpoint(self):
        supervisor = make_supervisor(
            FakeController(), ports=[0, 8888, 8888, 70000], health_endpoint="ftp://localhost/health",
        )
        result = await supervisor.validate_config()

        assert "Port out of range: 0" in result.errors
        assert "Port out of range: 70000" in result.errors
        assert "Port listed more than once: 8888" in result.warnings
        assert any("http(s)" in e for e in result.errors)

    async def test_validation_does_not_change_state(self):
        supervisor = make_supervisor(FakeController(available=False))
        await supervisor.validate_config()
        assert supervisor.state == LifecycleState.UNINITIALIZED


@pytest.mark.asyncio
class TestDockerComposeController:
    async def test_start_runs_compose_up(self, tmp_path):
        (tmp_path / "docker-compose.yml").write_text("services: {}\n")
        controller = DockerComposeController("docker-compose.yml", "searxng", project_root=str(tmp_path))
        controller._run = AsyncMock(return_value="")

        await controller.start()

        controller._run.assert_awaited_once_with([
            "docker", "compose", "-f", str(tmp_path / "docker-compose.yml"), "up", "-d", "searxng",
        ])
        assert controller.compose_file_exists() is True

    async def test_start_without_compose_file(self):
        controller = DockerComposeController(None, "searxng")
        with pytest.raises(ProcessControlError):
            await controller.start()

    async def test_status_parsing(self):
        controller = DockerComposeController("docker-compose.yml", "searxng")

        controller._run = AsyncMock(return_value="Up 5 minutes (healthy)\n")
        assert await controller.status() == ProcessStatus.RUNNING

        controller._run = AsyncMock(return_value="Exited (0) 2 hours ago\n")
        assert await controller.status() == ProcessStatus.STOPPED

        controller._run = AsyncMock(return_value="")
        assert await controller.status() == ProcessStatus.STOPPED

    async def test_status_never_raises(self):
        controller = DockerComposeController("docker-compose.yml", "searxng")
        controller._run = AsyncMock(side_effect=ProcessControlError("docker ps", "daemon not running"))

        assert await controller.status() == ProcessStatus.STOPPED

    async def test_timeout_reaps_process_that_already_exited(self, monkeypatch):
        proc = HangingProcess(exited=True)
        monkeypatch.setattr(asyncio, "create_subprocess_exec", AsyncMock(return_value=proc))
        controller = DockerComposeController("docker-compose.yml", "searxng", command_timeout=0.05)

        with pytest.raises(ProcessControlError, match="timed out"):
            await controller.start()

        assert proc.kill_calls == 1
        proc.wait.assert_awaited_once()

    async def test_cancelled_command_is_killed_and_reaped(self, monkeypatch):
        proc = HangingProcess()
        monkeypatch.setattr(asyncio, "create_subprocess_exec", AsyncMock(return_value=proc))
        controller = DockerComposeController("docker-compose.yml", "searxng")

        task = asyncio.create_task(controller._run(["docker", "compose", "up", "-d"]))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert proc.kill_calls == 1
        proc.wait.assert_awaited_once()


class HangingProcess:
    """Subprocess stand-in whose output never arrives."""

    def __init__(self, exited: bool = False):
        self.exited = exited
        self.kill_calls = 0
        self.returncode = None
        self.wait = AsyncMock(return_value=-9)

    async def communicate(self):
        await asyncio.Event().wait()

    def kill(self):
        self.kill_calls += 1
        if self.exited:
            raise ProcessLookupError()
