"""Filesystem access used by the mutation engine.

The engine never touches the disk directly: it goes through a ``FileSystem``
so tests can inject failures at any step.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Protocol


class FileSystem(Protocol):
    """Protocol for the file operations the engine needs."""

    def exists(self, path: Path) -> bool:
        """Return True if anything exists at path."""
        ...

    def is_dir(self, path: Path) -> bool:
        """Return True if path is a directory."""
        ...

    def is_file(self, path: Path) -> bool:
        """Return True if path is a regular file."""
        ...

    def read_text(self, path: Path) -> str:
        """Read a text file."""
        ...

    def write_text(self, path: Path, content: str, mode: int = 0o644) -> None:
        """Replace a file's contents atomically."""
        ...

    def copy(self, source: Path, destination: Path) -> None:
        """Copy a file or a whole directory tree to a new location."""
        ...

    def remove(self, path: Path) -> None:
        """Remove a file or a whole directory tree."""
        ...

    def make_dirs(self, path: Path) -> None:
        """Create a directory and its parents if missing."""
        ...

    def measure(self, path: Path) -> tuple[int, int]:
        """Return (file count, total bytes) of a file or directory tree."""
        ...


class LocalFileSystem:
    """FileSystem backed by the local disk."""

    def exists(self, path: Path) -> bool:
        return path.exists()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def is_file(self, path: Path) -> bool:
        return path.is_file()

    def read_text(self, path: Path) -> str:
        return path.read_text()

    def write_text(self, path: Path, content: str, mode: int = 0o644) -> None:
        """Write to a temp file in the same directory, then rename over path.

        A crash mid-write leaves either the old file or the new one, never a
        truncated file.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def copy(self, source: Path, destination: Path) -> None:
        if source.is_dir():
            shutil.copytree(source, destination, symlinks=True)
        else:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)

    def remove(self, path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()

    def make_dirs(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def measure(self, path: Path) -> tuple[int, int]:
        if not path.is_dir():
            return 1, path.lstat().st_size
        count = 0
        total = 0
        for root, _dirs, files in os.walk(path):
            for name in files:
                count += 1
                total += (Path(root) / name).lstat().st_size
        return count, total
