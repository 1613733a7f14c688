import asyncio
import contextlib
import shutil
from enum import Enum
from pathlib import Path
from typing import Protocol

from multisearch.errors import ProcessControlError
from multisearch.observability.logger import get_logger

log = get_logger("lifecycle.docker")


class ProcessStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class ProcessController(Protocol):
    """Start/stop/status of one externally managed service."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def status(self) -> ProcessStatus: ...

    async def is_available(self) -> bool: ...

    def compose_file_exists(self) -> bool: ...


class DockerComposeController:
    """Drives a service through ``docker compose``.

    ``start`` and ``stop`` raise ``ProcessControlError`` on a non-zero exit or
    when the command exceeds ``command_timeout``. ``status`` never raises: any
    failure to query docker reads as stopped.
    """

    def __init__(
        self,
        compose_file: str | None,
        container_name: str | None = None,
        project_root: str | None = None,
        command_timeout: float = 60.0,
    ):
        self.compose_file = compose_file
        self.container_name = container_name
        self.project_root = project_root
        self.command_timeout = command_timeout

    def compose_file_path(self) -> Path | None:
        if not self.compose_file:
            return None
        path = Path(self.compose_file).expanduser()
        if not path.is_absolute() and self.project_root:
            path = Path(self.project_root) / path
        return path

    def compose_file_exists(self) -> bool:
        path = self.compose_file_path()
        return path is not None and path.is_file()

    def _compose_args(self, *args: str) -> list[str]:
        path = self.compose_file_path()
        if path is None:
            raise ProcessControlError("docker compose", "no compose file configured")
        cmd = ["docker", "compose", "-f", str(path), *args]
        return cmd

    def _services(self) -> list[str]:
        return [self.container_name] if self.container_name else []

    async def start(self) -> None:
        log.info("docker_compose_up", compose_file=self.compose_file, service=self.container_name)
        await self._run(self._compose_args("up", "-d", *self._services()))

    async def stop(self) -> None:
        log.info("docker_compose_stop", compose_file=self.compose_file, service=self.container_name)
        await self._run(self._compose_args("stop", *self._services()))

    async def status(self) -> ProcessStatus:
        try:
            if self.container_name:
                output = await self._run([
                    "docker", "ps",
                    "--filter", f"name=^{self.container_name}$",
                    "--format", "{{.Status}}",
                ])
            else:
                output = await self._run(self._compose_args("ps"))
        except ProcessControlError as e:
            log.debug("docker_status_failed", error=str(e))
            return ProcessStatus.STOPPED

        running = "Up" in output and "Exit" not in output
        return ProcessStatus.RUNNING if running else ProcessStatus.STOPPED

    async def is_available(self) -> bool:
        if shutil.which("docker") is None:
            return False
        try:
            await self._run(["docker", "version", "--format", "{{.Server.Version}}"])
        except ProcessControlError:
            return False
        return True

    async def _run(self, cmd: list[str]) -> str:
        command = " ".join(cmd[:3])
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.project_root,
            )
        except OSError as e:
            raise ProcessControlError(command, str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.command_timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            raise ProcessControlError(command, f"timed out after {self.command_timeout:g}s")
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() or f"exit code {proc.returncode}"
            raise ProcessControlError(command, message, returncode=proc.returncode)

        return stdout.decode("utf-8", errors="replace")


async def _kill(proc: asyncio.subprocess.Process):
    # The process may have exited between the timeout and the kill
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()
