from multisearch.backends.base import SearchBackend
from multisearch.config import BackendConfig
from multisearch.lifecycle.supervisor import LifecycleState, LifecycleSupervisor, ValidationResult


class SupervisedBackend(SearchBackend):
    """Backend whose service may run in a local container.

    With a supervisor, lifecycle calls are forwarded to it; without one the
    backend behaves like a plain hosted API.
    """

    def __init__(self, config: BackendConfig, supervisor: LifecycleSupervisor | None = None):
        super().__init__(config)
        self.supervisor = supervisor

    def ensure_running(self):
        if self.supervisor is not None and self.supervisor.state in (
            LifecycleState.STOPPED,
            LifecycleState.SHUTTING_DOWN,
        ):
            self.fail("provider_unavailable", f"{self.config.label} container is {self.supervisor.state.value}")

    @property
    def is_lifecycle_managed(self) -> bool:
        return self.supervisor is not None

    async def init(self):
        if self.supervisor is not None:
            await self.supervisor.init()

    async def healthcheck(self) -> bool:
        if self.supervisor is None:
            return True
        return await self.supervisor.healthcheck()

    async def shutdown(self):
        if self.supervisor is not None:
            await self.supervisor.shutdown()

    async def validate_config(self) -> ValidationResult:
        if self.supervisor is None:
            return ValidationResult(valid=True)
        return await self.supervisor.validate_config()
