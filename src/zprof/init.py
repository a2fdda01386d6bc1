"""zprof home initialization.

Creates the storage root with its directory structure, the shared history
file and an initial config.
"""

import os
from pathlib import Path

from zprof.config import ZprofConfig, save_config
from zprof.home import (
    BACKUPS_DIR,
    HISTORY_FILE,
    PROFILES_DIR,
    SHARED_DIR,
    ValidationResult,
    config_path,
    validate_zprof_home,
)

CUSTOM_ZSH_CONTENT = """\
# Shared customizations sourced by every zprof profile.
# Aliases and functions added here are available in all profiles.
"""


def init_zprof_home(path: Path) -> ValidationResult:
    """Initialize a zprof home directory.

    If the path is already a valid zprof home this is a no-op. Missing pieces
    of a partial home are created; existing files are never overwritten.

    Args:
        path: Target directory to initialize.

    Returns:
        ValidationResult indicating success or failure with error messages.
    """
    if path.exists() and not path.is_dir():
        return ValidationResult(is_valid=False, errors=[f"Path is not a directory: {path}"])

    if validate_zprof_home(path).is_valid:
        return ValidationResult(is_valid=True)

    try:
        for subdir in (PROFILES_DIR, SHARED_DIR, BACKUPS_DIR):
            (path / subdir).mkdir(parents=True, exist_ok=True)

        history = path / SHARED_DIR / HISTORY_FILE
        if not history.exists():
            history.touch()
            os.chmod(history, 0o600)

        custom = path / SHARED_DIR / "custom.zsh"
        if not custom.exists():
            custom.write_text(CUSTOM_ZSH_CONTENT)

        if not config_path(path).exists():
            save_config(ZprofConfig(), path)
    except OSError as e:
        return ValidationResult(is_valid=False, errors=[f"Failed to create zprof home: {e}"])

    return validate_zprof_home(path)
