"""LoomGraph configuration — single source of truth for all settings."""

from __future__ import annotations

from contextvars import ContextVar
from enum import Enum
from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


class LLMProvider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    MOCK = "mock"


class LogFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"


class StoreBackend(str, Enum):
    MEMORY = "memory"
    SURREALDB = "surrealdb"


class ReadMode(str, Enum):
    """How the graph reader treats edges whose endpoints are missing."""

    STRICT = "strict"  # hide dangling edges
    PERMISSIVE = "permissive"  # synthesize placeholder nodes


DEFAULT_EVENT_TYPES = ["Event", "Activity", "Transaction", "Log"]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_DEFAULT_CONFIG = _PROJECT_ROOT / "config" / "default.yaml"


# YAML file read by the settings sources; only set while `load()` runs.
_yaml_path: ContextVar[Path | None] = ContextVar("loomgraph_yaml_path", default=None)


class LoomGraphConfig(BaseSettings):
    """All LoomGraph configuration.

    Loading priority (highest wins):
        1. Keyword arguments
        2. Environment variables (LOOMGRAPH_*)
        3. .env file
        4. config/default.yaml (only through `load()`)
        5. Field defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="LOOMGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- LLM ---
    llm_provider: LLMProvider = LLMProvider.ANTHROPIC
    llm_model: str = "claude-haiku-4-5-20251001"
    llm_api_key: str = ""
    llm_endpoint: str = ""  # Azure OpenAI endpoint; empty means api.openai.com
    llm_api_version: str = "2024-06-01"

    # --- Extraction ---
    extraction_max_attempts: int = Field(default=3, ge=1, le=10)
    extraction_base_delay: float = Field(default=1.0, ge=0.0)
    extraction_temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    extraction_concurrency: int = Field(default=1, ge=1, le=32)

    # --- Ingestion ---
    ingest_row_cap: int = Field(default=50, ge=1)
    ingest_max_chars: int = Field(default=15000, ge=1)
    ingest_sample_cap: int = Field(default=50, ge=0)
    ingest_timeout_seconds: float = Field(default=300.0, gt=0.0)
    event_types: list[str] = Field(default_factory=lambda: list(DEFAULT_EVENT_TYPES))

    # --- Store ---
    store_backend: StoreBackend = StoreBackend.MEMORY
    store_strict_tables: bool = False
    store_connect_attempts: int = Field(default=3, ge=1)
    store_retry_base_delay: float = Field(default=0.5, ge=0.0)
    store_url: str = "ws://localhost:8000/rpc"
    store_namespace: str = "loomgraph"
    store_database: str = "loomgraph"
    store_username: str = ""
    store_password: str = ""

    # --- Reading ---
    read_mode: ReadMode = ReadMode.STRICT

    # --- Server ---
    server_host: str = "127.0.0.1"
    server_port: int = Field(default=8787, ge=1024, le=65535)

    # --- Logging ---
    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.CONSOLE

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources = [init_settings, env_settings, dotenv_settings, file_secret_settings]
        yaml_path = _yaml_path.get()
        if yaml_path is not None:
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=yaml_path))
        return tuple(sources)

    @classmethod
    def load(cls, config_path: Path | None = None) -> LoomGraphConfig:
        """Load config from YAML defaults with env var overrides.

        Args:
            config_path: Path to YAML config file. Defaults to config/default.yaml.
                A missing file is skipped.
        """
        token = _yaml_path.set(Path(config_path or _DEFAULT_CONFIG))
        try:
            return cls()
        finally:
            _yaml_path.reset(token)
