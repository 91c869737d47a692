"""Workspace configuration for Hub Indexer."""

import os
from pathlib import Path
from typing import Any

import orjson
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.exceptions import ConfigError
from .defaults import (
    DEFAULT_ABORT_GRACE_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_EMBEDDING_PROVIDER,
    DEFAULT_EXTRACTION_BACKOFF_CAP_SECONDS,
    DEFAULT_EXTRACTION_BACKOFF_SECONDS,
    DEFAULT_EXTRACTION_MAX_ATTEMPTS,
    DEFAULT_LLM_PROVIDER,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_REMOTE_EMBEDDING_TIMEOUT_SECONDS,
    DEFAULT_SAFETY_TIMEOUT_SECONDS,
    DEFAULT_SUBSCRIPTION_RETRY_SECONDS,
    DEFAULT_WINDOW_DELAY_SECONDS,
    EMBEDDING_PROVIDERS,
    LLM_PROVIDERS,
    get_default_config_path,
    get_default_index_path,
    get_default_state_path,
)

# Environment variable -> config field
ENV_OVERRIDES = {
    "HUB_INDEXER_CONCURRENCY": "concurrency",
    "HUB_INDEXER_WINDOW_DELAY": "window_delay_seconds",
    "HUB_INDEXER_SAFETY_TIMEOUT": "safety_timeout_seconds",
    "HUB_INDEXER_EMBEDDING_PROVIDER": "embedding_provider",
    "HUB_INDEXER_EMBEDDING_MODEL": "embedding_model",
    "HUB_INDEXER_LLM_PROVIDER": "llm_provider",
    "HUB_INDEXER_LLM_MODEL": "llm_model",
    "HUB_INDEXER_KNOWLEDGE_GRAPH": "knowledge_graph_enabled",
    "HUB_INDEXER_REMOTE_EMBEDDINGS": "remote_embeddings",
    "HUB_INDEXER_NOTES_DIR": "notes_dir",
}


class IndexerConfig(BaseModel):
    """Settings for one hub-indexer workspace."""

    workspace: Path = Field(..., description="Workspace root directory")
    notes_dir: Path | None = Field(
        default=None, description="Root directory of the notes corpus"
    )

    # Scheduling
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)
    window_delay_seconds: float = Field(default=DEFAULT_WINDOW_DELAY_SECONDS, ge=0)
    progress_interval: int = Field(default=DEFAULT_PROGRESS_INTERVAL, ge=1)

    # Corpus indexing job
    safety_timeout_seconds: float = Field(
        default=DEFAULT_SAFETY_TIMEOUT_SECONDS, gt=0
    )
    abort_grace_seconds: float = Field(default=DEFAULT_ABORT_GRACE_SECONDS, ge=0)
    remote_embeddings: bool = False
    remote_embedding_timeout_seconds: float = Field(
        default=DEFAULT_REMOTE_EMBEDDING_TIMEOUT_SECONDS, gt=0
    )
    subscription_retry_seconds: float = Field(
        default=DEFAULT_SUBSCRIPTION_RETRY_SECONDS, ge=0
    )

    # Capabilities
    embedding_provider: str = DEFAULT_EMBEDDING_PROVIDER
    embedding_model: str | None = None
    embedding_cache: bool = True
    llm_provider: str = DEFAULT_LLM_PROVIDER
    llm_model: str | None = None
    knowledge_graph_enabled: bool = False

    # Structured extraction
    extraction_max_attempts: int = Field(default=DEFAULT_EXTRACTION_MAX_ATTEMPTS, ge=1)
    extraction_backoff_seconds: float = Field(
        default=DEFAULT_EXTRACTION_BACKOFF_SECONDS, ge=0
    )
    extraction_backoff_cap_seconds: float = Field(
        default=DEFAULT_EXTRACTION_BACKOFF_CAP_SECONDS, ge=0
    )

    @field_validator("embedding_provider")
    @classmethod
    def _check_embedding_provider(cls, value: str) -> str:
        if value not in EMBEDDING_PROVIDERS:
            raise ValueError(
                f"Unknown embedding provider '{value}' "
                f"(expected one of: {', '.join(EMBEDDING_PROVIDERS)})"
            )
        return value

    @field_validator("llm_provider")
    @classmethod
    def _check_llm_provider(cls, value: str) -> str:
        if value not in LLM_PROVIDERS:
            raise ValueError(
                f"Unknown LLM provider '{value}' "
                f"(expected one of: {', '.join(LLM_PROVIDERS)})"
            )
        return value

    @property
    def state_path(self) -> Path:
        return get_default_state_path(self.workspace)

    @property
    def index_path(self) -> Path:
        return get_default_index_path(self.workspace)


def apply_env_overrides(
    config_data: dict[str, Any], environ: dict[str, str] | None = None
) -> dict[str, Any]:
    """Merge ``HUB_INDEXER_*`` environment variables into raw config data.

    Args:
        config_data: Raw configuration dictionary (not validated yet)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        New dictionary with overrides applied
    """
    environ = os.environ if environ is None else environ
    merged = dict(config_data)
    for env_var, field_name in ENV_OVERRIDES.items():
        value = environ.get(env_var)
        if value is None or value == "":
            continue
        # pydantic coerces "true"/"1"/"3" into the field types
        merged[field_name] = value
        logger.debug(f"Config override from {env_var}: {field_name}={value}")
    return merged


class ConfigManager:
    """Loads and saves the workspace configuration file."""

    def __init__(self, workspace: Path) -> None:
        self.workspace = workspace
        self.config_path = get_default_config_path(workspace)

    def is_initialized(self) -> bool:
        return self.config_path.exists()

    def load(self, environ: dict[str, str] | None = None) -> IndexerConfig:
        """Load configuration, falling back to defaults when no file exists.

        Raises:
            ConfigError: If the file or an override is invalid
        """
        config_data: dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    config_data = orjson.loads(f.read())
            except (OSError, orjson.JSONDecodeError) as e:
                raise ConfigError(
                    f"Failed to read configuration: {e}",
                    context={"path": str(self.config_path)},
                ) from e

        config_data["workspace"] = self.workspace
        config_data = apply_env_overrides(config_data, environ)

        try:
            return IndexerConfig(**config_data)
        except ValidationError as e:
            raise ConfigError(
                f"Invalid configuration: {e}",
                context={"path": str(self.config_path)},
            ) from e

    def save(self, config: IndexerConfig) -> None:
        """Write configuration to ``.hub-indexer/config.json``.

        Raises:
            ConfigError: If saving fails
        """
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        config_data = config.model_dump(mode="json", exclude={"workspace"})
        try:
            with open(self.config_path, "wb") as f:
                f.write(orjson.dumps(config_data, option=orjson.OPT_INDENT_2))
        except OSError as e:
            raise ConfigError(f"Failed to save configuration: {e}") from e

        logger.debug(f"Saved configuration to {self.config_path}")
