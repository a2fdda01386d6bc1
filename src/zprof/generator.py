"""Shell configuration generator.

Turns a validated Manifest into the profile's ``.zshrc`` and ``.zshenv``
(plus ``.zimrc`` for zimfw). Generation is a pure function of its inputs:
the same manifest, shared directory and timestamp always give byte-identical
output. Generated files are never edited by hand; they are replaced
wholesale every time the manifest changes.
"""

import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from zprof import __version__
from zprof.errors import MutationError, RegenerationFailure
from zprof.filesystem import FileSystem, LocalFileSystem
from zprof.home import DEFAULT_ZPROF_HOME, HISTORY_FILE, SHARED_DIR, backups_dir, get_zprof_home
from zprof.home import profile_dir as get_profile_dir
from zprof.home import shared_dir as get_shared_dir
from zprof.manifest import Framework, Manifest
from zprof.safe_mutation import TargetKind, safely_mutate

logger = logging.getLogger(__name__)

RC_FILENAME = ".zshrc"
ENV_FILENAME = ".zshenv"
ZIMRC_FILENAME = ".zimrc"

# Every file the generator may own inside a profile directory
GENERATED_FILENAMES = (RC_FILENAME, ENV_FILENAME, ZIMRC_FILENAME)

# Present while a profile's manifest and generated files disagree
DIVERGENCE_MARKER = ".zprof-diverged"

DEFAULT_SHARED_DIR = DEFAULT_ZPROF_HOME / SHARED_DIR

HISTORY_SIZE = 10000

GENERATED_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class GeneratedArtifact:
    """One generated file, named relative to the profile directory."""

    filename: str
    content: str

    def target(self, profile_dir: Path) -> Path:
        return profile_dir / self.filename


@dataclass(frozen=True)
class GeneratedArtifactSet:
    """Everything generated for one profile."""

    rc: GeneratedArtifact
    env: GeneratedArtifact
    extras: tuple[GeneratedArtifact, ...] = ()

    @property
    def artifacts(self) -> tuple[GeneratedArtifact, ...]:
        return (self.rc, self.env, *self.extras)

    def targets(self, profile_dir: Path) -> list[Path]:
        return [a.target(profile_dir) for a in self.artifacts]


def escape_shell_value(value: str) -> str:
    """Escape a value for use inside double quotes in zsh.

    Backslash, double quote, dollar sign and backtick are escaped so the
    value is taken literally and cannot run commands or expand variables.
    """
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("$", "\\$")
        .replace("`", "\\`")
    )


def _quoted(value: str) -> str:
    return f'"{escape_shell_value(value)}"'


def _header(manifest: Manifest, generated_at: datetime, framework_line: bool = False) -> list[str]:
    lines = [
        "# Auto-generated by zprof from profile.toml",
        "# DO NOT EDIT THIS FILE DIRECTLY - Edit profile.toml instead",
        f"# Generated: {generated_at.strftime(GENERATED_TIMESTAMP_FORMAT)}",
        f"# zprof version: {__version__}",
        f"# Profile: {manifest.name}",
    ]
    if framework_line:
        lines.append(f"# Framework: {manifest.framework.value}")
    lines.append("")
    return lines


def _shared_customizations(shared_dir: Path) -> list[str]:
    custom = _quoted(str(shared_dir / "custom.zsh"))
    return [
        "",
        "# Source shared customizations",
        f"[ -f {custom} ] && source {custom}",
    ]


def generate_env(manifest: Manifest, shared_dir: Path, generated_at: datetime) -> str:
    """Generate the .zshenv body: shared history, then the manifest's env vars."""
    lines = _header(manifest, generated_at)

    lines.append("# Shared history configuration")
    lines.append(f"export HISTFILE={_quoted(str(shared_dir / HISTORY_FILE))}")
    lines.append(f"export HISTSIZE={HISTORY_SIZE}")
    lines.append(f"export SAVEHIST={HISTORY_SIZE}")
    lines.append("")

    if manifest.env:
        lines.append("# Custom environment variables")
        for key, value in manifest.env.items():
            lines.append(f"export {key}={_quoted(value)}")
        lines.append("")

    return "\n".join(lines) + "\n"


def _oh_my_zsh(manifest: Manifest) -> list[str]:
    lines = [
        "# oh-my-zsh configuration",
        'export ZSH="$ZDOTDIR/.oh-my-zsh"',
        "",
    ]
    if manifest.theme:
        lines.append(f"ZSH_THEME={_quoted(manifest.theme)}")
    else:
        lines.append('ZSH_THEME=""')
    lines.append("")

    if manifest.enabled_plugins:
        lines.append("plugins=(")
        lines.extend(f"  {shlex.quote(plugin)}" for plugin in manifest.enabled_plugins)
        lines.append(")")
        lines.append("")

    lines.append("source $ZSH/oh-my-zsh.sh")
    return lines


def _zimfw(manifest: Manifest) -> list[str]:
    return [
        "# zimfw configuration",
        "# Modules are declared in .zimrc, generated from profile.toml",
        'export ZIM_HOME="$ZDOTDIR/.zim"',
        'export ZIM_CONFIG_FILE="$ZDOTDIR/.zimrc"',
        "",
        "# Download zimfw plugin manager if missing",
        "if [[ ! -e ${ZIM_HOME}/zimfw.zsh ]]; then",
        "  mkdir -p ${ZIM_HOME}",
        "  curl -fsSL --create-dirs -o ${ZIM_HOME}/zimfw.zsh \\",
        "    https://github.com/zimfw/zimfw/releases/latest/download/zimfw.zsh",
        "fi",
        "",
        "# Install missing modules and build init.zsh when .zimrc changes",
        "if [[ ! ${ZIM_HOME}/init.zsh -nt ${ZIM_CONFIG_FILE} ]]; then",
        "  source ${ZIM_HOME}/zimfw.zsh init -q",
        "fi",
        "",
        "# Initialize modules",
        "source ${ZIM_HOME}/init.zsh",
    ]


def generate_zimrc(manifest: Manifest, generated_at: datetime) -> str:
    """Generate .zimrc: one zmodule per plugin in order, then the theme."""
    lines = _header(manifest, generated_at)

    if manifest.enabled_plugins:
        lines.append("# Plugins")
        lines.extend(f"zmodule {shlex.quote(plugin)}" for plugin in manifest.enabled_plugins)
        lines.append("")

    if manifest.theme:
        lines.append("# Theme")
        lines.append(f"zmodule {shlex.quote(manifest.theme)}")
        lines.append("")

    return "\n".join(lines) + "\n"


def _prezto(manifest: Manifest) -> list[str]:
    lines = [
        "# prezto configuration",
        'export PREZTO_DIR="$ZDOTDIR/.zprezto"',
        "",
    ]

    plugins = manifest.enabled_plugins
    if plugins:
        lines.append("# Prezto modules")
        lines.append("zstyle ':prezto:load' pmodule \\")
        for idx, plugin in enumerate(plugins):
            suffix = "" if idx == len(plugins) - 1 else " \\"
            lines.append(f"  {shlex.quote(plugin)}{suffix}")
        lines.append("")

    if manifest.theme:
        lines.append(f"zstyle ':prezto:module:prompt' theme {shlex.quote(manifest.theme)}")
        lines.append("")

    lines.append("source $PREZTO_DIR/init.zsh")
    return lines


def _zinit(manifest: Manifest) -> list[str]:
    lines = [
        "# zinit configuration",
        'export ZINIT_HOME="$ZDOTDIR/.zinit"',
        "",
        "source $ZINIT_HOME/zinit.zsh",
        "",
    ]

    if manifest.enabled_plugins:
        lines.append("# Plugins")
        lines.extend(f"zinit light {shlex.quote(plugin)}" for plugin in manifest.enabled_plugins)
        lines.append("")

    if manifest.theme:
        lines.append("# Theme")
        lines.append(f"zinit light {shlex.quote(manifest.theme)}")
    return lines


def _zap(manifest: Manifest) -> list[str]:
    lines = [
        "# zap configuration",
        'export ZAP_DIR="$ZDOTDIR/.zap"',
        "",
        "source $ZAP_DIR/zap.zsh",
        "",
        "# Re-export after sourcing so the profile's install path wins",
        'export ZAP_DIR="$ZDOTDIR/.zap"',
        'export ZAP_PLUGIN_DIR="$ZAP_DIR/plugins"',
        "",
        "# Initialize completion system before plugins to avoid compdef warnings",
        "autoload -Uz compinit",
        "compinit",
        "",
    ]

    if manifest.enabled_plugins:
        lines.append("# Plugins")
        lines.extend(f"plug {_quoted(plugin)}" for plugin in manifest.enabled_plugins)
        lines.append("")

    if manifest.theme:
        lines.append("# Theme")
        lines.append(f"plug {_quoted(manifest.theme)}")
    return lines


FRAMEWORK_TEMPLATES: dict[Framework, Callable[[Manifest], list[str]]] = {
    Framework.OH_MY_ZSH: _oh_my_zsh,
    Framework.ZIMFW: _zimfw,
    Framework.PREZTO: _prezto,
    Framework.ZINIT: _zinit,
    Framework.ZAP: _zap,
}


def generate_rc(manifest: Manifest, shared_dir: Path, generated_at: datetime) -> str:
    """Generate the .zshrc body for the manifest's framework."""
    lines = _header(manifest, generated_at, framework_line=True)
    lines.extend(FRAMEWORK_TEMPLATES[manifest.framework](manifest))
    lines.extend(_shared_customizations(shared_dir))
    return "\n".join(lines) + "\n"


def generate(
    manifest: Manifest,
    *,
    shared_dir: Path = DEFAULT_SHARED_DIR,
    generated_at: datetime | None = None,
) -> GeneratedArtifactSet:
    """Generate every shell artifact for a validated manifest.

    Args:
        manifest: A manifest that has passed validation.
        shared_dir: Directory holding the shared history and custom.zsh.
        generated_at: Timestamp written in the headers; now if None. This
            header line is the only part of the output that is not a
            function of the manifest.

    Returns:
        GeneratedArtifactSet with .zshrc, .zshenv and any framework extras.
    """
    generated_at = generated_at or datetime.now()

    extras: tuple[GeneratedArtifact, ...] = ()
    if manifest.framework is Framework.ZIMFW:
        extras = (GeneratedArtifact(ZIMRC_FILENAME, generate_zimrc(manifest, generated_at)),)

    return GeneratedArtifactSet(
        rc=GeneratedArtifact(RC_FILENAME, generate_rc(manifest, shared_dir, generated_at)),
        env=GeneratedArtifact(ENV_FILENAME, generate_env(manifest, shared_dir, generated_at)),
        extras=extras,
    )


def write_artifacts(
    profile_dir: Path,
    artifacts: GeneratedArtifactSet,
    fs: FileSystem | None = None,
) -> list[Path]:
    """Write generated files into a profile directory.

    Each file is replaced atomically. Generated files that this artifact set
    no longer includes (e.g. .zimrc after leaving zimfw) are removed.

    Returns:
        Paths written, in artifact order.
    """
    fs = fs or LocalFileSystem()
    written: list[Path] = []
    for artifact in artifacts.artifacts:
        path = artifact.target(profile_dir)
        fs.write_text(path, artifact.content)
        logger.info("Generated: %s", path)
        written.append(path)

    produced = {a.filename for a in artifacts.artifacts}
    for filename in GENERATED_FILENAMES:
        stale = profile_dir / filename
        if filename not in produced and fs.exists(stale):
            fs.remove(stale)
            logger.info("Removed stale generated file: %s", stale)

    return written


def artifacts_match(profile_dir: Path, artifacts: GeneratedArtifactSet, fs: FileSystem) -> bool:
    """Return True if every artifact is on disk with exactly the generated content."""
    for artifact in artifacts.artifacts:
        path = artifact.target(profile_dir)
        if not fs.is_file(path) or fs.read_text(path) != artifact.content:
            return False
    return True


def generate_and_write(
    name: str,
    manifest: Manifest,
    home: Path | None = None,
    fs: FileSystem | None = None,
) -> list[Path]:
    """Regenerate a profile's shell files from its manifest, unconditionally.

    The profile directory is snapshotted first; if writing or verifying the
    files fails, the directory is restored and the snapshot is kept. On
    success any divergence marker is cleared.

    Args:
        name: Profile name.
        manifest: Manifest that has just passed validation.
        home: zprof home; resolved from the environment if None.
        fs: Filesystem to use; the local disk if None.

    Returns:
        Paths of the generated files.

    Raises:
        RegenerationFailure: If the files could not be written; carries the
            retained backup path when one exists.
    """
    fs = fs or LocalFileSystem()
    home = home if home is not None else get_zprof_home()
    target = get_profile_dir(home, name)
    artifacts = generate(manifest, shared_dir=get_shared_dir(home))
    written: list[Path] = []

    def operate(path: Path) -> None:
        written.extend(write_artifacts(path, artifacts, fs))
        marker = path / DIVERGENCE_MARKER
        if fs.exists(marker):
            fs.remove(marker)

    def verify(path: Path) -> bool:
        return artifacts_match(path, artifacts, fs) and not fs.exists(path / DIVERGENCE_MARKER)

    try:
        safely_mutate(
            target,
            operate,
            verify,
            kind=TargetKind.DIRECTORY,
            backups_dir=backups_dir(home),
            fs=fs,
            subject=name,
        )
    except MutationError as e:
        raise RegenerationFailure(name, e.message, backup_path=e.backup_path) from e

    return written
