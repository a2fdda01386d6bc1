"""Interactive manifest editing with validation and regeneration.

An edit session snapshots the manifest, hands it to an external editor,
then validates the result::

    Start -> Backed -> Editing -> Validating -> Committed
                          ^           |
                          |           v
                          +--- AwaitingDecision -> RolledBack | Preserved

Shell files are only regenerated from a manifest that has just passed
validation. Parse and schema errors never escape the loop; they are handed
to the ``decide`` callback, which chooses to retry, restore or cancel.
"""

import logging
import os
import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from zprof.errors import (
    ManifestError,
    ManifestParseError,
    ProfileNotFoundError,
    RegenerationFailure,
)
from zprof.filesystem import FileSystem, LocalFileSystem
from zprof.generator import DIVERGENCE_MARKER, generate_and_write
from zprof.home import MANIFEST_FILE, backups_dir, get_zprof_home, manifest_path, profile_dir
from zprof.manifest import Manifest, check_manifest_text, check_profile_name
from zprof.safe_mutation import (
    BackupRecord,
    TargetKind,
    create_backup,
    discard_backup,
    restore_backup,
)

logger = logging.getLogger(__name__)

EditorInvoker = Callable[[Path], int]


class EditDecision(str, Enum):
    """What to do after an edit produced an invalid manifest."""

    RETRY = "retry"
    RESTORE = "restore"
    CANCEL = "cancel"


DecisionPrompt = Callable[[ManifestError], EditDecision]


class SessionState(str, Enum):
    """States of an edit session."""

    START = "start"
    BACKED = "backed"
    EDITING = "editing"
    VALIDATING = "validating"
    AWAITING_DECISION = "awaiting-decision"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"
    PRESERVED = "preserved"


class RollbackReason(str, Enum):
    """Why a session ended with the original manifest restored."""

    RESTORED = "restored"
    EDITOR_FAILED = "editor-failed"


@dataclass
class SessionCommitted:
    """The edited manifest was valid and the shell files were regenerated."""

    manifest: Manifest
    written: list[Path]


@dataclass
class SessionRolledBack:
    """The original manifest is back in place; nothing was regenerated."""

    reason: RollbackReason
    detail: str | None = None


@dataclass
class SessionPreserved:
    """The invalid manifest was kept and the shell files are now stale.

    This is not an error, but the caller must keep warning the user until
    the profile is fixed by a successful edit or regeneration.
    """

    error: ManifestError
    backup_path: Path

    @property
    def warning(self) -> str:
        return (
            "Manifest is invalid and was kept as-is. Shell files were NOT regenerated "
            "and still reflect the previous manifest."
        )


SessionOutcome = SessionCommitted | SessionRolledBack | SessionPreserved


def detect_editor() -> str:
    """Pick the editor command: $EDITOR, then $VISUAL, then vim."""
    for var in ("EDITOR", "VISUAL"):
        value = os.environ.get(var, "").strip()
        if value:
            return value
    return "vim"


def subprocess_editor(command: str | None = None) -> EditorInvoker:
    """Build an invoker that runs an editor command and waits for it to exit.

    Args:
        command: Editor command line, e.g. ``"code --wait"``. Detected if None.

    Returns:
        Callable opening a path and returning the editor's exit status.
    """
    argv = shlex.split(command or detect_editor())

    def invoke(path: Path) -> int:
        logger.info("Opening %s with %s", path, argv[0])
        return subprocess.run([*argv, str(path)], check=False).returncode

    return invoke


def _run_editor(editor_invoker: EditorInvoker, path: Path) -> str | None:
    """Run the editor; return a failure description, or None if it exited cleanly."""
    try:
        status = editor_invoker(path)
    except OSError as e:
        return f"editor could not be launched: {e}"
    if status != 0:
        return f"editor exited with status {status}"
    return None


def _read_edited(path: Path, fs: FileSystem) -> str:
    if not fs.is_file(path):
        msg = "manifest file no longer exists after editing"
        raise ManifestParseError(msg, path=path)
    try:
        return fs.read_text(path)
    except UnicodeDecodeError as e:
        msg = f"manifest is not valid UTF-8 text ({e.reason})"
        raise ManifestParseError(msg, path=path) from e


def _enter(name: str, state: SessionState) -> None:
    logger.debug("Edit session for '%s': %s", name, state.value)


def _mark_diverged(directory: Path, record: BackupRecord, error: ManifestError, fs: FileSystem) -> None:
    fs.write_text(
        directory / DIVERGENCE_MARKER,
        f"Edit cancelled at {datetime.now().isoformat(timespec='seconds')}\n"
        f"Manifest left invalid: {error.message}\n"
        f"Last valid manifest: {record.backup}\n",
    )


def run_edit_session(
    name: str,
    editor_invoker: EditorInvoker,
    decide: DecisionPrompt,
    *,
    home: Path | None = None,
    fs: FileSystem | None = None,
) -> SessionOutcome:
    """Edit a profile's manifest, validate it, and regenerate or recover.

    Args:
        name: Profile to edit.
        editor_invoker: Opens the manifest and blocks until the editor exits.
        decide: Asked what to do each time the edited manifest is invalid.
        home: zprof home; resolved from the environment if None.
        fs: Filesystem to use; the local disk if None.

    Returns:
        SessionCommitted, SessionRolledBack or SessionPreserved.

    Raises:
        InvalidProfileNameError: If the name cannot name a profile.
        ProfileNotFoundError: If the profile has no manifest. Nothing is touched.
        BackupFailure: If the manifest could not be snapshotted. Nothing is touched.
        RegenerationFailure: If a valid manifest could not be turned into
            shell files. The manifest snapshot is retained.
    """
    fs = fs or LocalFileSystem()
    check_profile_name(name)
    home = home if home is not None else get_zprof_home()
    path = manifest_path(home, name)
    if not fs.is_file(path):
        raise ProfileNotFoundError(name, path)

    _enter(name, SessionState.START)
    record = create_backup(
        path,
        backups_dir(home),
        fs,
        kind=TargetKind.FILE,
        subject=f"{name}-{MANIFEST_FILE}",
    )
    _enter(name, SessionState.BACKED)

    while True:
        _enter(name, SessionState.EDITING)
        failure = _run_editor(editor_invoker, path)
        if failure is not None:
            logger.warning("Restoring manifest for '%s': %s", name, failure)
            restore_backup(record, fs)
            discard_backup(record, fs)
            return SessionRolledBack(reason=RollbackReason.EDITOR_FAILED, detail=failure)

        _enter(name, SessionState.VALIDATING)
        try:
            manifest = check_manifest_text(_read_edited(path, fs), path=path, expected_name=name)
        except ManifestError as error:
            _enter(name, SessionState.AWAITING_DECISION)
            decision = decide(error)

            if decision is EditDecision.RETRY:
                continue

            if decision is EditDecision.RESTORE:
                restore_backup(record, fs)
                discard_backup(record, fs)
                _enter(name, SessionState.ROLLED_BACK)
                return SessionRolledBack(reason=RollbackReason.RESTORED)

            _mark_diverged(profile_dir(home, name), record, error, fs)
            _enter(name, SessionState.PRESERVED)
            return SessionPreserved(error=error, backup_path=record.backup)

        try:
            written = generate_and_write(name, manifest, home=home, fs=fs)
        except RegenerationFailure as e:
            e.manifest_backup = record.backup
            raise

        discard_backup(record, fs)
        _enter(name, SessionState.COMMITTED)
        return SessionCommitted(manifest=manifest, written=written)
