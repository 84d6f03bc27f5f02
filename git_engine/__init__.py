"""git-engine - safe, bounded execution of git operations with typed results."""

from importlib.metadata import PackageNotFoundError, version as _pkg_version

try:
    __version__ = _pkg_version("git-engine")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for editable installs / dev
