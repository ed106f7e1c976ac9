"""Detect a server process running code older than the checked-out source."""

import tomllib
from pathlib import Path

PYPROJECT_PATH = Path(__file__).parent.parent.parent / "pyproject.toml"


def read_source_version(pyproject_path: Path = PYPROJECT_PATH) -> str | None:
    """Return ``project.version`` from *pyproject_path*, or ``None``."""
    if not pyproject_path.exists():
        return None
    with open(pyproject_path, "rb") as fh:
        data = tomllib.load(fh)
    return data.get("project", {}).get("version")


def check_version_consistency(
    pyproject_path: Path = PYPROJECT_PATH,
) -> tuple[bool, str]:
    """Compare the runtime ``__version__`` against pyproject.toml.

    Returns:
        Tuple of (is_consistent, message).  A missing or unreadable
        pyproject.toml counts as inconsistent.
    """
    from . import __version__ as runtime_version

    try:
        source_version = read_source_version(pyproject_path)
    except (OSError, tomllib.TOMLDecodeError) as e:
        return False, f"Failed to read version from pyproject.toml: {e}"

    if source_version is None:
        return False, "Cannot find pyproject.toml for version comparison"

    if runtime_version != source_version:
        return False, (
            f"Version mismatch detected! "
            f"Runtime: {runtime_version}, Source: {source_version}. "
            f"Reinstall with: pip install -e ."
        )

    return True, f"Version verified: {runtime_version}"
