"""Runtime info: package version for clientInfo and --version."""

from functools import lru_cache
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

FALLBACK_VERSION = "0.1.0"


@lru_cache(maxsize=1)
def get_version() -> str:
    """Get the package version from installed metadata or pyproject.toml."""
    try:
        return version("safari-markdown")
    except PackageNotFoundError:
        pass

    # Running from a source checkout
    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    if pyproject_path.exists():
        for line in pyproject_path.read_text().split("\n"):
            if line.startswith("version"):
                # Parse: version = "0.1.0"
                return line.split("=")[1].strip().strip('"')

    return FALLBACK_VERSION
