"""Version information."""

from importlib.metadata import PackageNotFoundError, version

__version__ = "0.1.0"


def get_version() -> str:
    """Return the installed distribution version, falling back to the source version."""
    try:
        return version("potion")
    except PackageNotFoundError:
        return __version__


def get_full_version() -> str:
    return f"potion version {get_version()}"
