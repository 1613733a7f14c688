import os
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from multisearch.config import BackendConfig
from multisearch.errors import SearchError, SearchErrorReason
from multisearch.lifecycle.supervisor import ValidationResult


class ResultItem(BaseModel):
    title: str
    url: str
    snippet: str = ""
    score: float | None = None
    source_backend: str


class SearchResponse(BaseModel):
    backend_id: str
    items: list[ResultItem] = Field(default_factory=list)
    raw: Any | None = None
    took_ms: int = 0


class BackendMetadata(BaseModel):
    id: str
    display_name: str
    docs_url: str | None = None


class SearchBackend(ABC):
    """Uniform search capability implemented by every backend adapter."""

    docs_url: str | None = None
    requires_api_key: bool = True

    def __init__(self, config: BackendConfig):
        self.config = config

    @property
    def id(self) -> str:
        return self.config.id

    def metadata(self) -> BackendMetadata:
        return BackendMetadata(id=self.id, display_name=self.config.label, docs_url=self.docs_url)

    def is_configured(self) -> bool:
        if not self.requires_api_key or not self.config.api_key_env:
            return True
        return bool(os.environ.get(self.config.api_key_env))

    @property
    def is_lifecycle_managed(self) -> bool:
        return False

    async def init(self):
        pass

    async def healthcheck(self) -> bool:
        return True

    async def shutdown(self):
        pass

    async def validate_config(self) -> ValidationResult:
        return ValidationResult(valid=True)

    @abstractmethod
    async def search(self, query: str, limit: int | None = None, include_raw: bool = False) -> SearchResponse:
        pass

    def api_key(self) -> str:
        env = self.config.api_key_env
        if not env:
            self.fail("config_error", "No api_key_env configured")
        value = os.environ.get(env)
        if not value:
            self.fail("config_error", f"API key not configured. Set {env} environment variable.")
        return value

    def fail(self, reason: SearchErrorReason, message: str, status_code: int | None = None):
        raise SearchError(self.id, reason, message, status_code)
