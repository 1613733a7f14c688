import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from multisearch.errors import ConfigError


class DockerConfig(BaseModel):
    """Settings for a backend whose service runs in a local container."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    container_name: str | None = None
    compose_file: str | None = None
    health_endpoint: str | None = None
    auto_start: bool = False
    auto_stop: bool = False
    init_timeout_seconds: float = Field(default=30.0, gt=0)
    health_poll_interval: float = Field(default=1.0, gt=0)
    ports: list[int] = Field(default_factory=list)


class BackendConfig(BaseModel):
    # Extra keys are kept for plugin backend types (see BackendFactory.register)
    model_config = ConfigDict(frozen=True, extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)  # tavily, brave, searxng, linkup or a registered plugin type
    enabled: bool = True
    display_name: str = ""
    monthly_quota: int = Field(ge=0)
    credit_cost_per_search: int = Field(default=1, ge=0)
    low_credit_threshold_percent: int = Field(default=80, ge=0, le=100)

    endpoint: str | None = None
    api_key_env: str | None = None
    default_limit: int = Field(default=10, gt=0)
    search_depth: Literal["basic", "advanced"] = "basic"

    docker: DockerConfig | None = None

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("id must not be blank")
        return value

    @property
    def label(self) -> str:
        return self.display_name or self.id

    @property
    def is_process_managed(self) -> bool:
        return self.docker is not None


class Settings(BaseSettings):
    # Backend definitions
    config_path: str = "multi-search.config.json"

    # Usage state persistence
    state_backend: Literal["json", "sql", "memory"] = "json"
    state_path: str = "~/.local/state/multi-search/credits.json"
    database_url: str = "sqlite+aiosqlite:///multi-search.db"

    # Strategy defaults
    default_strategy: str = "all"
    default_engine_order: list[str] = Field(default_factory=list)
    request_timeout_seconds: float = 30.0
    max_concurrent: int = 5
    retry_attempts: int = 2
    retry_delay_seconds: float = 1.0

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(env_prefix="MULTISEARCH_", env_file=".env", extra="ignore")


def load_backend_configs(path: str | Path) -> list[BackendConfig]:
    """Read and validate the backend definition file.

    The file is a JSON object with an ``engines`` list. Every problem found is
    reported at once in the raised ``ConfigError``.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"No config file found at {path}")

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to load config file at {path}: {e}") from e

    return parse_backend_configs(raw, source=str(path))


def parse_backend_configs(raw: dict, source: str = "<config>") -> list[BackendConfig]:
    if not isinstance(raw, dict) or not isinstance(raw.get("engines"), list):
        raise ConfigError(f"Invalid configuration in {source}: expected an object with an 'engines' list")

    problems: list[str] = []
    configs: list[BackendConfig] = []
    seen: set[str] = set()

    for index, entry in enumerate(raw["engines"]):
        # Checked on the raw entry so an invalid earlier entry still claims its id
        raw_id = entry.get("id") if isinstance(entry, dict) else None
        if isinstance(raw_id, str) and raw_id.strip():
            raw_id = raw_id.strip()
            if raw_id in seen:
                problems.append(f"engines[{index}].id: duplicate backend id '{raw_id}'")
                continue
            seen.add(raw_id)

        try:
            config = BackendConfig.model_validate(entry)
        except ValidationError as e:
            for err in e.errors():
                loc = ".".join(str(part) for part in err["loc"])
                problems.append(f"engines[{index}].{loc}: {err['msg']}")
            continue

        configs.append(config)

    if problems:
        raise ConfigError(f"Invalid configuration in {source}:", problems)

    return configs
