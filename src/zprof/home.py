"""zprof home resolution and validation.

The zprof home is the storage root holding every profile, the shared
history, the backup area and the global config::

    <home>/
        config.toml
        profiles/<name>/profile.toml
        shared/.zsh_history
        shared/custom.zsh
        cache/backups/
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from zprof.errors import HomeNotInitializedError

# Default zprof home location
DEFAULT_ZPROF_HOME = Path.home() / ".zsh-profiles"

# Environment variable for custom zprof home location
ZPROF_HOME_ENV_VAR = "ZPROF_HOME"

PROFILES_DIR = "profiles"
SHARED_DIR = "shared"
BACKUPS_DIR = "cache/backups"
CONFIG_FILE = "config.toml"
MANIFEST_FILE = "profile.toml"
HISTORY_FILE = ".zsh_history"


@dataclass
class ValidationResult:
    """Result of validating a zprof home.

    Attributes:
        is_valid: True if validation passed, False otherwise.
        errors: Specific error messages if validation failed.
    """

    is_valid: bool
    errors: list[str] = field(default_factory=list)


def get_zprof_home() -> Path:
    """Get the zprof home directory path.

    Resolution order:
    1. ZPROF_HOME environment variable (if set)
    2. Default: ~/.zsh-profiles/

    Returns:
        Path to the zprof home directory.
    """
    env_value = os.environ.get(ZPROF_HOME_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()
    return DEFAULT_ZPROF_HOME


def profiles_dir(home: Path) -> Path:
    return home / PROFILES_DIR


def profile_dir(home: Path, name: str) -> Path:
    return home / PROFILES_DIR / name


def manifest_path(home: Path, name: str) -> Path:
    return home / PROFILES_DIR / name / MANIFEST_FILE


def shared_dir(home: Path) -> Path:
    return home / SHARED_DIR


def backups_dir(home: Path) -> Path:
    return home / BACKUPS_DIR


def config_path(home: Path) -> Path:
    return home / CONFIG_FILE


def validate_zprof_home(path: Path) -> ValidationResult:
    """Validate a directory as a zprof home.

    A valid home is an existing directory with ``profiles/``, ``shared/`` and
    ``cache/backups/`` subdirectories and a ``config.toml`` file.

    Args:
        path: Path to check.

    Returns:
        ValidationResult listing every missing component.
    """
    errors: list[str] = []

    if not path.exists():
        errors.append(f"Path does not exist: {path}")
        return ValidationResult(is_valid=False, errors=errors)

    if not path.is_dir():
        errors.append(f"Path is not a directory: {path}")
        return ValidationResult(is_valid=False, errors=errors)

    if not (path / CONFIG_FILE).is_file():
        errors.append(f"Missing {CONFIG_FILE} file")

    for subdir in (PROFILES_DIR, SHARED_DIR, BACKUPS_DIR):
        if not (path / subdir).is_dir():
            errors.append(f"Missing {subdir}/ directory")

    return ValidationResult(is_valid=len(errors) == 0, errors=errors)


def require_zprof_home(home: Path | None = None) -> Path:
    """Resolve the zprof home and ensure it is initialized.

    Args:
        home: Explicit home directory; resolved from the environment if None.

    Returns:
        Path to the initialized zprof home.

    Raises:
        HomeNotInitializedError: If the home is missing components.
    """
    path = home if home is not None else get_zprof_home()
    validation = validate_zprof_home(path)
    if not validation.is_valid:
        raise HomeNotInitializedError(path, validation.errors)
    return path
