"""qemu backend module."""

from image_boot_tests.backends.qemu.backend import QemuBackend
from image_boot_tests.backends.qemu.config import QemuConfig
from image_boot_tests.backends.qemu.manifest import qemu_manifest

__all__ = ["QemuBackend", "QemuConfig", "qemu_manifest"]
