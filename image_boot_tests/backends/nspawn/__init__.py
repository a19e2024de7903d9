"""systemd-nspawn backend module."""

from image_boot_tests.backends.nspawn.backend import (
    NspawnDirectoryBackend,
    NspawnImageBackend,
)
from image_boot_tests.backends.nspawn.config import NspawnConfig
from image_boot_tests.backends.nspawn.manifest import (
    nspawn_extract_manifest,
    nspawn_manifest,
)

__all__ = [
    "NspawnConfig",
    "NspawnDirectoryBackend",
    "NspawnImageBackend",
    "nspawn_extract_manifest",
    "nspawn_manifest",
]
