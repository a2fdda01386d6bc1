"""Backup, operate, verify and roll back around destructive actions.

Every command that deletes or overwrites profile data goes through
``safely_mutate``. Once the backup step has completed, the pre-operation
state can always be recovered from the backup path, which is reported in
every failure raised after that point.

Concurrent mutation of the same target is not guarded against; zprof
assumes one process at a time per profile.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from zprof.errors import (
    BackupFailure,
    OperateFailure,
    TargetNotFoundError,
    VerifyFailure,
    WrongTargetKindError,
)
from zprof.filesystem import FileSystem, LocalFileSystem

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class TargetKind(str, Enum):
    """What a mutation target is expected to be."""

    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class BackupRecord:
    """A snapshot of ``original`` taken at ``created``, stored at ``backup``."""

    original: Path
    backup: Path
    created: datetime
    kind: TargetKind


@dataclass
class MutationResult:
    """Result of a successful safe mutation."""

    target: Path
    record: BackupRecord
    backup_retained: bool

    @property
    def backup_path(self) -> Path | None:
        """Where the snapshot lives, if it was kept."""
        return self.record.backup if self.backup_retained else None


def backup_name(target: Path, kind: TargetKind, created: datetime, subject: str | None = None) -> str:
    """Name a backup: ``<subject>-<ts>`` for directories, ``<file>.backup.<ts>`` for files."""
    stamp = created.strftime(BACKUP_TIMESTAMP_FORMAT)
    base = subject or target.name
    if kind is TargetKind.DIRECTORY:
        return f"{base}-{stamp}"
    return f"{base}.backup.{stamp}"


def _unique_path(directory: Path, name: str, fs: FileSystem) -> Path:
    candidate = directory / name
    counter = 1
    while fs.exists(candidate):
        candidate = directory / f"{name}-{counter}"
        counter += 1
    return candidate


def _kind_of(path: Path, fs: FileSystem) -> TargetKind:
    return TargetKind.DIRECTORY if fs.is_dir(path) else TargetKind.FILE


def create_backup(
    target: Path,
    backups_dir: Path,
    fs: FileSystem | None = None,
    *,
    kind: TargetKind | None = None,
    subject: str | None = None,
) -> BackupRecord:
    """Copy target into the backup area and verify the copy.

    Args:
        target: File or directory to snapshot.
        backups_dir: Directory that holds backups.
        fs: Filesystem to use; the local disk if None.
        kind: Expected kind; detected if None.
        subject: Name prefix for the backup; defaults to the target's name.

    Returns:
        BackupRecord describing the verified snapshot.

    Raises:
        BackupFailure: If the copy fails or does not match the target. Any
            partial copy is removed and the target is left untouched.
    """
    fs = fs or LocalFileSystem()
    kind = kind or _kind_of(target, fs)
    created = datetime.now()
    backup: Path | None = None

    try:
        fs.make_dirs(backups_dir)
        backup = _unique_path(backups_dir, backup_name(target, kind, created, subject), fs)
        fs.copy(target, backup)
        problem = _backup_problem(target, backup, kind, fs)
    except OSError as e:
        problem = str(e)

    if problem is not None:
        if backup is not None:
            _remove_partial(backup, fs)
        raise BackupFailure(target, problem)

    assert backup is not None
    logger.debug("Backed up %s to %s", target, backup)
    return BackupRecord(original=target, backup=backup, created=created, kind=kind)


def _backup_problem(target: Path, backup: Path, kind: TargetKind, fs: FileSystem) -> str | None:
    """Return why the backup cannot be trusted, or None if it matches the target."""
    if kind is TargetKind.DIRECTORY and not fs.is_dir(backup):
        return f"backup directory {backup} was not created"
    if kind is TargetKind.FILE and not fs.is_file(backup):
        return f"backup file {backup} was not created"

    expected = fs.measure(target)
    actual = fs.measure(backup)
    if actual != expected:
        return f"backup {backup} is incomplete ({actual[0]} files/{actual[1]} bytes, expected {expected[0]}/{expected[1]})"
    if kind is TargetKind.DIRECTORY and actual[0] == 0:
        return f"backup {backup} is empty"
    return None


def _remove_partial(backup: Path, fs: FileSystem) -> None:
    try:
        if fs.exists(backup):
            fs.remove(backup)
    except OSError as e:
        logger.warning("Could not remove partial backup %s: %s", backup, e)


def restore_backup(record: BackupRecord, fs: FileSystem | None = None) -> None:
    """Replace the original path with the contents of the backup.

    The backup itself is left in place.
    """
    fs = fs or LocalFileSystem()
    if fs.exists(record.original) and (
        record.kind is TargetKind.DIRECTORY or fs.is_dir(record.original)
    ):
        fs.remove(record.original)
    fs.copy(record.backup, record.original)
    logger.debug("Restored %s from %s", record.original, record.backup)


def discard_backup(record: BackupRecord, fs: FileSystem | None = None) -> None:
    """Delete a backup that is no longer needed."""
    fs = fs or LocalFileSystem()
    if fs.exists(record.backup):
        fs.remove(record.backup)
    logger.debug("Discarded backup %s", record.backup)


def _rollback(
    record: BackupRecord,
    fs: FileSystem,
    reason: str,
    error_cls: type[OperateFailure],
) -> OperateFailure:
    """Restore the target after a failed operation and build the error to raise."""
    rolled_back = True
    try:
        restore_backup(record, fs)
    except OSError as e:
        logger.error("Rollback of %s failed: %s", record.original, e)
        rolled_back = False
        reason = f"{reason}; rollback failed: {e}"
    return error_cls(record.original, record.backup, reason, rolled_back)


def safely_mutate(
    target: Path,
    operate: Callable[[Path], object],
    verify: Callable[[Path], bool],
    *,
    kind: TargetKind,
    backups_dir: Path,
    fs: FileSystem | None = None,
    retain_backup: bool = False,
    subject: str | None = None,
) -> MutationResult:
    """Run a destructive action on target with backup and rollback.

    Steps, each gating the next:

    1. Check the target exists and is of the expected kind.
    2. Back it up and verify the backup.
    3. Operate on it.
    4. Verify the post-condition.
    5. Discard the backup on success, unless ``retain_backup`` is set.

    On failure in steps 3-4 the target is restored from the backup and the
    backup is kept; its path travels with the raised error.

    Args:
        target: Path to mutate.
        operate: Action to run; receives the target and raises on failure.
        verify: Post-condition check; receives the target.
        kind: Expected kind of the target.
        backups_dir: Directory that holds backups.
        fs: Filesystem to use; the local disk if None.
        retain_backup: Keep the backup even on success (e.g. deletes).
        subject: Name prefix for the backup.

    Returns:
        MutationResult with the backup record.

    Raises:
        TargetNotFoundError: If the target does not exist.
        WrongTargetKindError: If the target is not of the expected kind.
        BackupFailure: If the backup could not be made; nothing was changed.
        OperateFailure: If the operation raised.
        VerifyFailure: If the post-condition did not hold.
    """
    fs = fs or LocalFileSystem()

    if not fs.exists(target):
        raise TargetNotFoundError(target)
    if kind is TargetKind.DIRECTORY and not fs.is_dir(target):
        raise WrongTargetKindError(target, "directory")
    if kind is TargetKind.FILE and not fs.is_file(target):
        raise WrongTargetKindError(target, "file")

    record = create_backup(target, backups_dir, fs, kind=kind, subject=subject)

    try:
        operate(target)
    except Exception as e:
        raise _rollback(record, fs, f"{type(e).__name__}: {e}", OperateFailure) from e

    try:
        verified = verify(target)
    except Exception as e:
        raise _rollback(record, fs, f"verification raised {type(e).__name__}: {e}", VerifyFailure) from e
    if not verified:
        raise _rollback(record, fs, "post-condition not met", VerifyFailure)

    retained = retain_backup
    if not retain_backup:
        try:
            discard_backup(record, fs)
        except OSError as e:
            logger.warning("Could not discard backup %s: %s", record.backup, e)
            retained = True

    return MutationResult(target=target, record=record, backup_retained=retained)
