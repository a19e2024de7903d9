"""Configuration for the qemu backend."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class QemuConfig(BaseSettings):
    """Configuration for the qemu backend, IMAGE_TESTS_QEMU_ prefixed."""

    model_config = SettingsConfigDict(env_prefix="IMAGE_TESTS_QEMU_", extra="ignore")

    memory_mb: int = 2048
    cpus: int = 2
    aarch64_firmware: Path = Path("/usr/share/edk2/aarch64/QEMU_EFI.fd")
    genisoimage: str = "genisoimage"
