"""Exception hierarchy shared by the ledger, the supervisor and the strategies."""

from typing import Literal

SearchErrorReason = Literal[
    "network_error",
    "api_error",
    "no_results",
    "config_error",
    "provider_unavailable",
]

SEARCH_ERROR_REASONS: tuple[str, ...] = (
    "network_error",
    "api_error",
    "no_results",
    "config_error",
    "provider_unavailable",
)


class MultiSearchError(Exception):
    """Base class for all multisearch errors."""


class ConfigError(MultiSearchError):
    """Configuration file missing, unreadable or invalid."""

    def __init__(self, message: str, problems: list[str] | None = None):
        self.problems = problems or []
        if self.problems:
            message = message + "\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class UnknownBackend(MultiSearchError):
    """A backend id was used that is absent from configuration.

    Programmer error: surfaced immediately, never retried.
    """

    def __init__(self, backend_id: str):
        self.backend_id = backend_id
        super().__init__(f"Unknown backend: {backend_id}")


class NoUsageRecord(MultiSearchError):
    """The ledger was charged before initialize() created the usage record."""

    def __init__(self, backend_id: str):
        self.backend_id = backend_id
        super().__init__(f"No usage record for backend: {backend_id} (call initialize() first)")


class InitializationTimeout(MultiSearchError):
    """A supervised service did not become healthy within its init budget."""

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"Service '{name}' did not become healthy within {timeout:g}s")


class ProcessControlError(MultiSearchError):
    """A process control command (start/stop/status) failed."""

    def __init__(self, command: str, message: str, returncode: int | None = None):
        self.command = command
        self.returncode = returncode
        super().__init__(f"{command}: {message}")


class SearchError(MultiSearchError):
    """Typed failure raised by a backend's search capability."""

    def __init__(
        self,
        backend_id: str,
        reason: SearchErrorReason,
        message: str,
        status_code: int | None = None,
    ):
        if reason not in SEARCH_ERROR_REASONS:
            raise ValueError(f"Invalid search error reason: {reason!r}")
        self.backend_id = backend_id
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"[{backend_id}] {reason}: {message}")


class InitializationAborted(MultiSearchError):
    """An in-flight init() was cancelled by shutdown() before it finished."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Initialization of '{name}' was aborted by shutdown")
