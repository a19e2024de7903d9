"""systemd-nspawn backend manifests."""

from image_boot_tests.backends.manifest import BackendManifest
from image_boot_tests.backends.nspawn.backend import (
    NspawnDirectoryBackend,
    NspawnImageBackend,
)
from image_boot_tests.backends.nspawn.config import NspawnConfig

nspawn_manifest = BackendManifest(
    config_cls=NspawnConfig,
    backend_factory=NspawnImageBackend.from_config,
)

nspawn_extract_manifest = BackendManifest(
    config_cls=NspawnConfig,
    backend_factory=NspawnDirectoryBackend.from_config,
)
