"""Loading of boot backends from entry points."""

from importlib.metadata import entry_points
from typing import Any

from image_boot_tests.backends.manifest import BackendManifest
from image_boot_tests.exceptions import ConfigurationError

ENTRY_POINT_GROUP = "image_boot_tests.backends"


class BackendNotFoundError(ConfigurationError):
    """Raised when a test case names a backend that does not exist."""


def load_backend_manifest(key: str) -> BackendManifest[Any]:
    """Load a backend manifest by key.

    Args:
        key: The backend selector as registered in pyproject.toml
             (e.g., "qemu", "nspawn-extract", "aws")

    Returns:
        The backend manifest instance

    Raises:
        BackendNotFoundError: If no backend with the given key is found

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            manifest: BackendManifest[Any] = entry.load()
            return manifest

    available = sorted(e.name for e in entries)
    raise BackendNotFoundError(
        f"Unknown boot type '{key}'. Available boot types: {available}"
    )
