"""Profile lifecycle: create, list, regenerate, delete, import, use and current.

Every destructive step here goes through ``safely_mutate``; every
regeneration goes through ``generate_and_write`` from a freshly validated
manifest.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from zprof.config import load_config, save_config
from zprof.errors import (
    ActiveProfileError,
    ManifestError,
    ManifestParseError,
    ProfileExistsError,
    ProfileNotFoundError,
    RegenerationFailure,
    ZprofError,
)
from zprof.filesystem import FileSystem, LocalFileSystem
from zprof.generator import DIVERGENCE_MARKER, GENERATED_FILENAMES, generate_and_write
from zprof.home import (
    MANIFEST_FILE,
    backups_dir,
    manifest_path,
    profile_dir,
    profiles_dir,
    require_zprof_home,
)
from zprof.manifest import (
    Framework,
    Manifest,
    check_manifest_text,
    check_profile_name,
    dump_manifest,
    load_and_validate,
    new_manifest,
    read_manifest_text,
    save_manifest,
)
from zprof.safe_mutation import BackupRecord, TargetKind, restore_backup, safely_mutate

logger = logging.getLogger(__name__)


@dataclass
class ProfileInfo:
    """Summary of one profile for listing."""

    name: str
    framework: str | None
    is_active: bool
    diverged: bool
    problem: str | None = None


@dataclass
class ImportResult:
    """Result of importing a profile directory."""

    name: str
    manifest: Manifest
    written: list[Path]
    replaced: bool
    backup_path: Path | None = None


@dataclass
class UseResult:
    """Result of activating a profile."""

    name: str
    manifest: Manifest
    profile_dir: Path
    diverged: bool


def is_diverged(name: str, home: Path) -> bool:
    """Return True if a cancelled edit left this profile's shell files stale."""
    return (profile_dir(home, name) / DIVERGENCE_MARKER).exists()


def create_profile(
    name: str,
    framework: Framework | str,
    theme: str | None = None,
    plugins: list[str] | tuple[str, ...] = (),
    env: dict[str, str] | None = None,
    home: Path | None = None,
    fs: FileSystem | None = None,
) -> Manifest:
    """Create a profile directory with a manifest and generated shell files.

    Raises:
        InvalidProfileNameError: If the name cannot name a directory.
        ProfileExistsError: If the profile already exists.
        ManifestValidationError: If any field is invalid.
    """
    fs = fs or LocalFileSystem()
    home = require_zprof_home(home)
    check_profile_name(name)
    directory = profile_dir(home, name)
    if fs.exists(directory):
        raise ProfileExistsError(name)

    manifest = new_manifest(name, framework, theme=theme, plugins=plugins, env=env)

    fs.make_dirs(directory)
    try:
        save_manifest(manifest, manifest_path(home, name))
        generate_and_write(name, manifest, home=home, fs=fs)
    except (OSError, ZprofError):
        # Nothing existed before; do not leave a half-created profile behind
        if fs.exists(directory):
            fs.remove(directory)
        raise

    logger.info("Created profile '%s' (%s)", name, manifest.framework.value)
    return manifest


def list_profiles(home: Path | None = None) -> list[ProfileInfo]:
    """List every profile, alphabetically.

    Profiles whose manifest is missing or invalid are included with a
    ``problem`` describing what is wrong.
    """
    home = require_zprof_home(home)
    root = profiles_dir(home)
    active = load_config(home).active_profile

    profiles: list[ProfileInfo] = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if not entry.is_dir():
            continue
        name = entry.name
        path = entry / MANIFEST_FILE
        info = ProfileInfo(
            name=name,
            framework=None,
            is_active=name == active,
            diverged=is_diverged(name, home),
        )
        if not path.is_file():
            info.problem = f"missing {MANIFEST_FILE}"
        else:
            try:
                manifest = check_manifest_text(read_manifest_text(path), path=path, expected_name=name)
                info.framework = manifest.framework.value
            except ManifestError as e:
                info.problem = e.message
            except OSError as e:
                info.problem = f"unreadable {MANIFEST_FILE}: {e.strerror or e}"
        profiles.append(info)

    return profiles


def regenerate_profile(name: str, home: Path | None = None, fs: FileSystem | None = None) -> list[Path]:
    """Regenerate a profile's shell files from its manifest.

    Raises:
        ProfileNotFoundError: If the profile has no manifest.
        ManifestError: If the manifest is invalid; nothing is regenerated.
        RegenerationFailure: If the files could not be written.
    """
    home = require_zprof_home(home)
    manifest = load_and_validate(name, home=home)
    return generate_and_write(name, manifest, home=home, fs=fs)


def delete_profile(name: str, home: Path | None = None, fs: FileSystem | None = None) -> Path:
    """Delete a profile directory, keeping a backup of it.

    Returns:
        Path of the retained backup.

    Raises:
        ProfileNotFoundError: If the profile does not exist.
        ActiveProfileError: If the profile is the active one.
        MutationError: If the backup or the deletion failed.
    """
    fs = fs or LocalFileSystem()
    home = require_zprof_home(home)
    check_profile_name(name)
    directory = profile_dir(home, name)
    if not fs.is_dir(directory):
        raise ProfileNotFoundError(name)

    if load_config(home).active_profile == name:
        raise ActiveProfileError(name)

    result = safely_mutate(
        directory,
        fs.remove,
        lambda path: not fs.exists(path),
        kind=TargetKind.DIRECTORY,
        backups_dir=backups_dir(home),
        fs=fs,
        retain_backup=True,
        subject=name,
    )
    logger.info("Deleted profile '%s'; backup at %s", name, result.record.backup)
    return result.record.backup


def _install_profile_files(source_dir: Path, target: Path, manifest_text: str, fs: FileSystem) -> None:
    """Copy an extracted profile into place; generated files are dropped."""
    fs.copy(source_dir, target)
    fs.write_text(target / MANIFEST_FILE, manifest_text)
    for filename in (*GENERATED_FILENAMES, DIVERGENCE_MARKER):
        stale = target / filename
        if fs.exists(stale):
            fs.remove(stale)


def import_profile(
    source_dir: Path,
    name: str | None = None,
    force: bool = False,
    home: Path | None = None,
    fs: FileSystem | None = None,
) -> ImportResult:
    """Import an extracted profile directory.

    The incoming manifest is validated before anything is touched. Shell
    files shipped with the import are never trusted; they are regenerated.

    Args:
        source_dir: Directory containing a profile.toml.
        name: Name to import as; defaults to the manifest's name.
        force: Replace an existing profile of the same name.
        home: zprof home; resolved from the environment if None.
        fs: Filesystem to use; the local disk if None.

    Raises:
        ZprofError: If the source has no manifest.
        ManifestError: If the incoming manifest is invalid.
        ProfileExistsError: If the profile exists and force is False.
        MutationError: If replacing an existing profile failed; the old
            profile is restored and its backup kept.
        RegenerationFailure: If the shell files could not be generated. A
            fresh import is removed again; a replaced profile is restored
            and the error carries the backup of it.
    """
    fs = fs or LocalFileSystem()
    home = require_zprof_home(home)

    source_manifest = source_dir / MANIFEST_FILE
    if not fs.is_file(source_manifest):
        msg = f"No {MANIFEST_FILE} found in {source_dir}"
        raise ZprofError(msg, hint="Point import at an extracted profile directory.")

    try:
        text = fs.read_text(source_manifest)
    except UnicodeDecodeError as e:
        msg = f"manifest is not valid UTF-8 text ({e.reason})"
        raise ManifestParseError(msg, path=source_manifest) from e
    manifest = check_manifest_text(text, path=source_manifest)

    if name is not None and name != manifest.name:
        check_profile_name(name)
        manifest = manifest.model_copy(
            update={"profile": manifest.profile.model_copy(update={"name": name})}
        )
        text = dump_manifest(manifest)
    name = manifest.name

    target = profile_dir(home, name)
    record: BackupRecord | None = None
    replaced = fs.exists(target)

    if replaced:
        if not force:
            raise ProfileExistsError(name)

        def operate(path: Path) -> None:
            fs.remove(path)
            _install_profile_files(source_dir, path, text, fs)

        def verify(path: Path) -> bool:
            try:
                check_manifest_text(fs.read_text(path / MANIFEST_FILE), expected_name=name)
            except (ManifestError, OSError):
                return False
            return True

        result = safely_mutate(
            target,
            operate,
            verify,
            kind=TargetKind.DIRECTORY,
            backups_dir=backups_dir(home),
            fs=fs,
            retain_backup=True,
            subject=name,
        )
        record = result.record
    else:
        try:
            _install_profile_files(source_dir, target, text, fs)
        except OSError:
            if fs.exists(target):
                fs.remove(target)
            raise

    try:
        written = generate_and_write(name, manifest, home=home, fs=fs)
    except RegenerationFailure as e:
        if record is None:
            # Nothing existed before; do not leave a half-imported profile behind
            if fs.exists(target):
                fs.remove(target)
            raise
        raise _restore_replaced(name, record, e, fs) from e

    logger.info("Imported profile '%s' from %s", name, source_dir)
    return ImportResult(
        name=name,
        manifest=manifest,
        written=written,
        replaced=replaced,
        backup_path=record.backup if record is not None else None,
    )


def _restore_replaced(
    name: str,
    record: BackupRecord,
    error: RegenerationFailure,
    fs: FileSystem,
) -> RegenerationFailure:
    """Put the replaced profile back after the imported one failed to generate.

    The returned error points at the backup of the replaced profile, which is
    kept either way.
    """
    reason = f"{error.reason}; the previous profile was restored"
    try:
        restore_backup(record, fs)
    except OSError as e:
        logger.error("Restoring '%s' from %s failed: %s", name, record.backup, e)
        reason = f"{error.reason}; restoring the previous profile failed: {e}"
    return RegenerationFailure(name, reason, backup_path=record.backup)


def use_profile(name: str, home: Path | None = None) -> UseResult:
    """Mark a profile as active.

    The manifest must be valid. A profile whose shell files are stale after
    a cancelled edit is still activated; ``diverged`` tells the caller to
    warn about it.

    Raises:
        ProfileNotFoundError: If the profile has no manifest.
        ManifestError: If the manifest is invalid.
    """
    home = require_zprof_home(home)
    manifest = load_and_validate(name, home=home)

    config = load_config(home)
    config.active_profile = name
    save_config(config, home)

    return UseResult(
        name=name,
        manifest=manifest,
        profile_dir=profile_dir(home, name),
        diverged=is_diverged(name, home),
    )


def current_profile(home: Path | None = None) -> UseResult | None:
    """Return the active profile, or None if no profile has been activated.

    Raises:
        ProfileNotFoundError: If the active profile no longer exists.
        ManifestError: If the active profile's manifest is invalid.
    """
    home = require_zprof_home(home)
    name = load_config(home).active_profile
    if name is None:
        return None

    manifest = load_and_validate(name, home=home)
    return UseResult(
        name=name,
        manifest=manifest,
        profile_dir=profile_dir(home, name),
        diverged=is_diverged(name, home),
    )
