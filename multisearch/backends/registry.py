from multisearch.backends.base import SearchBackend
from multisearch.observability.logger import get_logger

log = get_logger("backends")


class BackendRegistry:
    """Maps backend ids to search capabilities.

    Built once at startup and passed explicitly to the strategies.
    """

    def __init__(self, backends: list[SearchBackend] | None = None):
        self._backends: dict[str, SearchBackend] = {}
        for backend in backends or []:
            self.register(backend)

    def register(self, backend: SearchBackend):
        if backend.id in self._backends:
            raise ValueError(f"Backend already registered: {backend.id}")
        self._backends[backend.id] = backend
        log.info("backend_registered", backend=backend.id)

    def get(self, backend_id: str) -> SearchBackend | None:
        return self._backends.get(backend_id)

    def has(self, backend_id: str) -> bool:
        return backend_id in self._backends

    def backends(self) -> list[SearchBackend]:
        return list(self._backends.values())

    def ids(self) -> list[str]:
        return list(self._backends.keys())
