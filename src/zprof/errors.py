"""Error types and formatting utilities for zprof.

Every failure the engine can report is a ``ZprofError``. Errors raised after
a backup was taken carry ``backup_path`` so the user always has a concrete
recovery action.
"""

import subprocess
import tomllib
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError
from rich.markup import escape

from zprof import cli_logger, exit_codes


@dataclass(frozen=True)
class SchemaViolation:
    """A semantic validation failure tied to one manifest field.

    Attributes:
        field_path: Rendered location, e.g. ``framework``, ``plugins[2]``,
            ``env.MY-VAR``.
        message: What is wrong, echoing the offending value.
        example: A one-line example of correct syntax.
    """

    field_path: str
    message: str
    example: str

    @property
    def field(self) -> str:
        """Top-level field name (``plugins[2]`` -> ``plugins``)."""
        return self.field_path.split("[", 1)[0].split(".", 1)[0]

    def __str__(self) -> str:
        return f"{self.field_path}: {self.message} (example: {self.example})"


class ZprofError(Exception):
    """Base class for all zprof errors."""

    exit_code = exit_codes.GENERAL_ERROR

    def __init__(self, message: str, hint: str | None = None) -> None:
        self.message = message
        self.hint = hint
        super().__init__(message)


class HomeNotInitializedError(ZprofError):
    """Raised when the profile storage root has not been initialized."""

    exit_code = exit_codes.HOME_NOT_INITIALIZED

    def __init__(self, path: Path, errors: list[str] | None = None) -> None:
        self.path = path
        self.errors = errors or []
        message = f"zprof home not initialized at {path}"
        if self.errors:
            message += "\nIssues found:\n  - " + "\n  - ".join(self.errors)
        super().__init__(message, hint="Run 'zprof init' first.")


class ProfileNotFoundError(ZprofError):
    """Raised when a profile or its manifest does not exist."""

    exit_code = exit_codes.PROFILE_NOT_FOUND

    def __init__(self, name: str, path: Path | None = None) -> None:
        self.name = name
        self.path = path
        message = f"Profile '{name}' not found"
        if path is not None:
            message += f" (no manifest at {path})"
        super().__init__(
            message,
            hint=f"Run 'zprof list' to see available profiles, "
            f"or 'zprof create {name}' to create this profile.",
        )


class InvalidProfileNameError(ZprofError):
    """Raised when a profile name cannot be used as a directory name."""

    exit_code = exit_codes.INVALID_ARGS

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(
            f"Invalid profile name '{name}': {reason}",
            hint="Use letters, digits, hyphens and underscores, e.g. 'work'.",
        )


class ProfileExistsError(ZprofError):
    """Raised when creating or importing over an existing profile."""

    exit_code = exit_codes.PROFILE_EXISTS

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Profile '{name}' already exists",
            hint="Choose another name, or pass --force to overwrite it.",
        )


class ActiveProfileError(ZprofError):
    """Raised when trying to delete the currently active profile."""

    exit_code = exit_codes.ACTIVE_PROFILE

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Profile '{name}' is currently active",
            hint="Switch to another profile with 'zprof use <name>' first.",
        )


class ManifestError(ZprofError):
    """A manifest that cannot be used: bad syntax or bad content."""

    exit_code = exit_codes.MANIFEST_INVALID

    def details(self) -> list[str]:
        """Human-readable lines describing every problem found."""
        return [self.message]


class ManifestParseError(ManifestError):
    """The manifest is not well-formed TOML.

    ``line`` and ``column`` are 1-based and ``None`` when the parser did not
    report a location.
    """

    def __init__(
        self,
        message: str,
        line: int | None = None,
        column: int | None = None,
        path: Path | None = None,
    ) -> None:
        self.reason = message
        self.line = line
        self.column = column
        self.path = path
        where = str(path) if path is not None else "manifest"
        if line is not None:
            location = f"line {line}" + (f", column {column}" if column is not None else "")
        else:
            location = "location unavailable"
        super().__init__(f"Invalid TOML in {where} ({location}): {message}")


class ManifestValidationError(ManifestError):
    """The manifest parsed but has one or more schema violations."""

    def __init__(self, violations: list[SchemaViolation], path: Path | None = None) -> None:
        self.violations = violations
        self.path = path
        where = str(path) if path is not None else "manifest"
        count = len(violations)
        noun = "violation" if count == 1 else "violations"
        super().__init__(f"Invalid manifest {where}: {count} schema {noun}")

    def details(self) -> list[str]:
        return [str(v) for v in self.violations]


class EditorError(ZprofError):
    """The external editor could not be launched."""


class MutationError(ZprofError):
    """Base class for safe mutation failures.

    ``backup_path`` is set whenever a backup existed at the time of failure.
    """

    exit_code = exit_codes.MUTATION_FAILED

    def __init__(
        self,
        message: str,
        target: Path,
        backup_path: Path | None = None,
        hint: str | None = None,
    ) -> None:
        self.target = target
        self.backup_path = backup_path
        if hint is None and backup_path is not None:
            hint = f"The previous state is preserved at {backup_path}"
        super().__init__(message, hint=hint)


class TargetNotFoundError(MutationError):
    """The mutation target does not exist; nothing was touched."""

    exit_code = exit_codes.PROFILE_NOT_FOUND

    def __init__(self, target: Path) -> None:
        super().__init__(f"Not found: {target}", target=target)


class WrongTargetKindError(MutationError):
    """The mutation target exists but is not the expected kind."""

    def __init__(self, target: Path, expected: str) -> None:
        self.expected = expected
        super().__init__(f"Expected a {expected} at {target}", target=target)


class BackupFailure(MutationError):
    """The backup could not be created or verified; nothing was mutated."""

    def __init__(self, target: Path, reason: str) -> None:
        self.reason = reason
        super().__init__(
            f"Backup of {target} failed: {reason}. No changes were made.",
            target=target,
        )


class OperateFailure(MutationError):
    """The operation failed after a backup was taken.

    ``rolled_back`` tells whether the target was restored from the backup.
    The backup itself is always retained.
    """

    def __init__(
        self,
        target: Path,
        backup_path: Path,
        reason: str,
        rolled_back: bool,
    ) -> None:
        self.reason = reason
        self.rolled_back = rolled_back
        state = "restored from backup" if rolled_back else "could NOT be restored automatically"
        super().__init__(
            f"Operation on {target} failed: {reason}. Target {state}.",
            target=target,
            backup_path=backup_path,
        )


class VerifyFailure(OperateFailure):
    """The operation completed but the post-condition did not hold."""


class RegenerationFailure(ZprofError):
    """Shell artifacts could not be regenerated from a valid manifest."""

    exit_code = exit_codes.MUTATION_FAILED

    def __init__(
        self,
        name: str,
        reason: str,
        backup_path: Path | None = None,
        manifest_backup: Path | None = None,
    ) -> None:
        self.name = name
        self.reason = reason
        self.backup_path = backup_path
        # Set by an edit session whose manifest snapshot is still on disk
        self.manifest_backup = manifest_backup
        hint = f"The previous state is preserved at {backup_path}" if backup_path else None
        super().__init__(
            f"Failed to regenerate shell configuration for '{name}': {reason}",
            hint=hint,
        )


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic ValidationError into clean, user-friendly message.

    Removes Pydantic-specific URLs and technical jargon, producing a message
    suitable for CLI output.

    Args:
        error: The Pydantic ValidationError to format.

    Returns:
        A clean, human-readable error message.
    """
    messages = []

    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"])
        error_type = err["type"]

        if error_type == "missing":
            messages.append(f"'{loc}': field is required")
        elif error_type == "string_type":
            messages.append(f"'{loc}': expected string")
        elif error_type == "extra_forbidden":
            messages.append(f"'{loc}': unknown field")
        else:
            messages.append(f"'{loc}': {err['msg'].lower()}")

    return "; ".join(messages)


def handle_cli_error(error: Exception) -> int:
    """Handle an unhandled exception at the CLI boundary.

    Formats the error into a clean user-friendly message and returns
    an appropriate exit code.

    Args:
        error: The exception to handle.

    Returns:
        An exit code from exit_codes.
    """
    if isinstance(error, ZprofError):
        report_error(error)
        return error.exit_code

    if isinstance(error, ValidationError):
        cli_logger.error(f"Invalid configuration: {format_validation_errors(error)}")
        return exit_codes.GENERAL_ERROR

    if isinstance(error, tomllib.TOMLDecodeError):
        cli_logger.error(f"Invalid TOML: {error}")
        return exit_codes.GENERAL_ERROR

    if isinstance(error, subprocess.CalledProcessError):
        cmd_str = " ".join(str(c) for c in error.cmd) if isinstance(error.cmd, list) else str(error.cmd)
        cli_logger.error(f"Command failed (exit code {error.returncode}): {cmd_str}")
        return exit_codes.GENERAL_ERROR

    if isinstance(error, OSError):
        if error.filename:
            cli_logger.error(f"{error.strerror}: {error.filename}")
        else:
            cli_logger.error(str(error))
        return exit_codes.GENERAL_ERROR

    cli_logger.error(f"Unexpected error: {error}")
    return exit_codes.GENERAL_ERROR


def report_error(error: ZprofError) -> None:
    """Print a zprof error with its details, backup path and hint."""
    cli_logger.error(escape(error.message))
    if isinstance(error, ManifestValidationError):
        for line in error.details():
            cli_logger.dim(f"  • {escape(line)}")
    backup_path = getattr(error, "backup_path", None)
    if backup_path is not None:
        cli_logger.recovery(backup_path)
    elif error.hint:
        cli_logger.info(f"  {error.hint}")
    manifest_backup = getattr(error, "manifest_backup", None)
    if manifest_backup is not None:
        cli_logger.recovery(manifest_backup)
