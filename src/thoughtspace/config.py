"""Runtime configuration, read from THOUGHTSPACE_* environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DATABASE_FILENAME,
    DECAY_INTERVAL_SECONDS,
    DEFAULT_COLLECTION,
    DEFAULT_EMBEDDING_MODEL,
)
from .errors import ValidationError

Backend = Literal["sqlite", "qdrant", "memory"]


class ThoughtSpaceConfig(BaseSettings):
    """Settings for one thought space.

    Every field maps to ``THOUGHTSPACE_<FIELD>`` (``THOUGHTSPACE_PATH`` for the
    data directory); ``qdrant_url`` is read from ``QDRANT_URL``. Empty
    variables fall back to the defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="THOUGHTSPACE_",
        env_ignore_empty=True,
        extra="ignore",
    )

    path: Path = Path(".thoughtspace")
    backend: Backend = "sqlite"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    qdrant_url: str = Field(
        default="http://localhost:6333",
        validation_alias=AliasChoices("qdrant_url", "QDRANT_URL"),
    )
    collection: str = DEFAULT_COLLECTION
    decay_interval: float = Field(default=DECAY_INTERVAL_SECONDS, gt=0)
    agent_id: str = "mcp-agent"
    agent_name: str = "MCP Agent"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value):
        return value.upper() if isinstance(value, str) else value

    @property
    def data_dir(self) -> Path:
        return self.path

    @property
    def db_path(self) -> Path:
        return self.path / DATABASE_FILENAME

    @property
    def log_file(self) -> Path:
        return self.path / "thoughtspace.log"

    @classmethod
    def from_env(cls, **overrides) -> "ThoughtSpaceConfig":
        """Load settings from the environment.

        Explicit keyword overrides win; ``None`` overrides are ignored.

        Raises:
            ValidationError: A variable or override holds an invalid value
        """
        try:
            return cls(**{k: v for k, v in overrides.items() if v is not None})
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid configuration: {problems}") from e
