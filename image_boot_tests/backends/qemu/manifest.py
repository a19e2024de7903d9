"""qemu backend manifest."""

from image_boot_tests.backends.manifest import BackendManifest
from image_boot_tests.backends.qemu.backend import QemuBackend
from image_boot_tests.backends.qemu.config import QemuConfig

qemu_manifest = BackendManifest(
    config_cls=QemuConfig,
    backend_factory=QemuBackend.from_config,
    local_vm=True,
)
