"""Configuration file loading."""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, ValidationError, field_validator

from timber.errors import ConfigError

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "timber"
DEFAULT_DB_PATH = DEFAULT_DATA_DIR / "timber.db"
DEFAULT_CONFIG_PATH = DEFAULT_DATA_DIR / "config.toml"


class Config(BaseModel):
    """Settings read from ``config.toml``.

    Example file:
        database_path = "~/Documents/timber.db"
    """

    database_path: Path = DEFAULT_DB_PATH

    @field_validator("database_path")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        return value.expanduser()


def load_config(path: Path | None = None) -> Config:
    """Load settings from ``path`` (default: the data directory's config.toml).

    A missing file gives the defaults.

    Raises:
        ConfigError: If the file is not valid TOML or has bad values.
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH
    if not path.exists():
        return Config()
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: invalid TOML: {e}") from e
    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"{path}: {e}") from e
