"""Global zprof configuration stored in ``<home>/config.toml``."""

import tomllib
from pathlib import Path

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from zprof.errors import ZprofError, format_validation_errors
from zprof.home import config_path


class ZprofConfig(BaseModel):
    """Root schema for config.toml."""

    model_config = ConfigDict(extra="forbid")

    active_profile: str | None = Field(
        default=None,
        description="Currently active profile (None until one is used)",
    )
    default_framework: str | None = Field(
        default=None,
        description="Framework preselected when creating profiles",
    )


def load_config(home: Path) -> ZprofConfig:
    """Load and validate config.toml from the zprof home.

    A missing file yields the default config.

    Raises:
        ZprofError: If the file is not valid TOML or fails validation.
    """
    path = config_path(home)
    if not path.exists():
        return ZprofConfig()

    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as e:
        msg = f"Invalid TOML in '{path}': {e}"
        raise ZprofError(msg) from e

    try:
        return ZprofConfig.model_validate(data)
    except ValidationError as e:
        msg = f"Invalid config '{path}': {format_validation_errors(e)}"
        raise ZprofError(msg) from e


def save_config(config: ZprofConfig, home: Path) -> None:
    """Save ZprofConfig to config.toml in the zprof home."""
    path = config_path(home)
    path.write_text(tomli_w.dumps(config.model_dump(exclude_none=True)))
