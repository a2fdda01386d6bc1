"""Shared test fixtures for zprof tests."""

from collections.abc import Callable
from pathlib import Path

import pytest
from typer.testing import CliRunner

from zprof.filesystem import LocalFileSystem
from zprof.home import manifest_path, profile_dir
from zprof.init import init_zprof_home

VALID_MANIFEST = """\
[profile]
name = "{name}"
framework = "{framework}"
theme = "robbyrussell"
created = 2026-01-01T09:00:00Z
modified = 2026-01-01T09:00:00Z

[plugins]
enabled = ["git", "docker"]

[env]
EDITOR = "vim"
"""


def manifest_text(name: str = "work", framework: str = "oh-my-zsh") -> str:
    """Return the text of a valid manifest for the given profile."""
    return VALID_MANIFEST.format(name=name, framework=framework)


def text_writer(content: str, status: int = 0) -> Callable[[Path], int]:
    """Build a fake editor that replaces the file with fixed content."""

    def invoke(path: Path) -> int:
        path.write_text(content)
        return status

    return invoke


def scripted_editor(*contents: str) -> Callable[[Path], int]:
    """Build a fake editor that writes each content in turn, one per invocation."""
    remaining = list(contents)

    def invoke(path: Path) -> int:
        path.write_text(remaining.pop(0))
        return 0

    return invoke


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def zprof_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create and initialize a zprof home directory.

    Sets ZPROF_HOME environment variable and initializes the directory structure.
    Returns the path to the zprof home directory.
    """
    home = tmp_path / "zprof-home"
    monkeypatch.setenv("ZPROF_HOME", str(home))
    init_zprof_home(home)
    return home


# Type alias for the profile factory function
ProfileFactory = Callable[..., Path]


@pytest.fixture
def write_profile(zprof_home: Path) -> ProfileFactory:
    """Factory fixture writing a profile directory with a raw manifest.

    No shell files are generated, so tests can start from any manifest text,
    valid or not.
    """

    def _write(name: str = "work", content: str | None = None, framework: str = "oh-my-zsh") -> Path:
        directory = profile_dir(zprof_home, name)
        directory.mkdir(parents=True, exist_ok=True)
        text = content if content is not None else manifest_text(name, framework)
        manifest_path(zprof_home, name).write_text(text)
        return directory

    return _write


def snapshot(root: Path) -> dict[str, bytes]:
    """Map every file under root (relative path) to its bytes."""
    if root.is_file():
        return {root.name: root.read_bytes()}
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


class FailingFileSystem(LocalFileSystem):
    """LocalFileSystem that fails chosen operations with OSError."""

    def __init__(
        self,
        *,
        write_fails_on: str | None = None,
        copy_fails: bool = False,
        copy_drops_file: bool = False,
        remove_fails: bool = False,
    ) -> None:
        self.write_fails_on = write_fails_on
        self.copy_fails = copy_fails
        self.copy_drops_file = copy_drops_file
        self.remove_fails = remove_fails

    def write_text(self, path: Path, content: str, mode: int = 0o644) -> None:
        if self.write_fails_on is not None and path.name == self.write_fails_on:
            raise OSError(28, "No space left on device", str(path))
        super().write_text(path, content, mode)

    def copy(self, source: Path, destination: Path) -> None:
        if self.copy_fails:
            raise OSError(13, "Permission denied", str(destination))
        super().copy(source, destination)
        if self.copy_drops_file and destination.is_dir():
            victim = next(p for p in sorted(destination.rglob("*")) if p.is_file())
            victim.unlink()

    def remove(self, path: Path) -> None:
        if self.remove_fails:
            raise OSError(16, "Device or resource busy", str(path))
        super().remove(path)
