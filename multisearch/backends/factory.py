from collections.abc import Callable

import httpx

from multisearch.backends.base import SearchBackend
from multisearch.backends.brave import BraveBackend
from multisearch.backends.linkup import LinkupBackend
from multisearch.backends.searxng import SearxngBackend
from multisearch.backends.tavily import TavilyBackend
from multisearch.config import BackendConfig
from multisearch.lifecycle.docker import DockerComposeController
from multisearch.lifecycle.supervisor import LifecycleSupervisor

BackendBuilder = Callable[[BackendConfig], SearchBackend]


def build_supervisor(config: BackendConfig, project_root: str | None = None) -> LifecycleSupervisor | None:
    if not config.is_process_managed:
        return None
    controller = DockerComposeController(
        compose_file=config.docker.compose_file,
        container_name=config.docker.container_name,
        project_root=project_root,
    )
    return LifecycleSupervisor(config.id, controller, config.docker)


class BackendFactory:
    """Creates backend adapters from their config ``type``.

    New backend types are added with ``register`` rather than by editing the
    strategies or the service.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, project_root: str | None = None):
        self._builders: dict[str, BackendBuilder] = {
            "tavily": lambda config: TavilyBackend(config),
            "brave": lambda config: BraveBackend(config, client=client),
            "searxng": lambda config: SearxngBackend(
                config, supervisor=build_supervisor(config, project_root), client=client,
            ),
            "linkup": lambda config: LinkupBackend(
                config, supervisor=build_supervisor(config, project_root), client=client,
            ),
        }

    def register(self, backend_type: str, builder: BackendBuilder):
        if backend_type in self._builders:
            raise ValueError(f"Backend type already registered: {backend_type}")
        self._builders[backend_type] = builder

    def types(self) -> list[str]:
        return list(self._builders.keys())

    def create(self, config: BackendConfig) -> SearchBackend:
        builder = self._builders.get(config.type)
        if builder is None:
            available = ", ".join(self.types())
            raise ValueError(f"Unknown backend type: {config.type!r}. Available types: [{available}]")
        return builder(config)
