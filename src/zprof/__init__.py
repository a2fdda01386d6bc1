"""zprof - manage switchable zsh profiles from a declarative manifest."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("zprof")
except PackageNotFoundError:
    __version__ = "0.0.0"
