"""qemu backend implementation."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from image_boot_tests.backends.base import BootBackend, BootedInstance
from image_boot_tests.backends.qemu.command import build_qemu_command
from image_boot_tests.backends.qemu.config import QemuConfig
from image_boot_tests.host import current_arch, kvm_available
from image_boot_tests.netns import NetworkNamespace
from image_boot_tests.processes import run_command, start_process, stop_process
from image_boot_tests.resources import ResourceScope, temporary_directory
from image_boot_tests.settings import Settings
from image_boot_tests.ssh import create_user_data

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class QemuBackend(BootBackend):
    """Boots images in a local qemu virtual machine.

    The machine runs inside its own network namespace and gets the test key
    through a cloud-init seed ISO.
    """

    config: QemuConfig
    settings: Settings

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: QemuConfig, settings: Settings
    ) -> AsyncGenerator["QemuBackend", None]:
        """Create the backend; it holds no session."""
        yield cls(config=config, settings=settings)

    async def acquire(
        self, image_path: Path, resources: ResourceScope
    ) -> BootedInstance:
        """Start qemu with the image inside a fresh network namespace."""
        namespace = await NetworkNamespace.create()
        resources.register(f"network namespace {namespace.name}", namespace.delete)

        seed_dir = await temporary_directory(
            resources,
            prefix="osbuild-image-tests-cloud-init-",
            parent=self.settings.work_dir,
        )
        seed_iso = await self.create_seed_iso(seed_dir, hostname=namespace.name)

        command = build_qemu_command(
            current_arch(), self.config, image_path, seed_iso, kvm=kvm_available()
        )
        process = await start_process(*namespace.command(*command))
        resources.register(f"qemu process {process.pid}", stop_process, process, "qemu")

        return BootedInstance(
            address="localhost",
            private_key=self.settings.private_key,
            namespace=namespace,
        )

    async def create_seed_iso(self, directory: Path, hostname: str) -> Path:
        """Create a cloud-init NoCloud seed authorizing the test key."""
        public_key = await asyncio.to_thread(self.settings.public_key.read_text)

        user_data = directory / "user-data"
        user_data.write_text(create_user_data(public_key.strip(), self.settings.ssh_user))
        meta_data = directory / "meta-data"
        meta_data.write_text(f"instance-id: {hostname}\nlocal-hostname: {hostname}\n")

        seed_iso = directory / "cloud-init.iso"
        await run_command(
            self.config.genisoimage,
            "-output",
            str(seed_iso),
            "-volid",
            "cidata",
            "-joliet",
            "-rock",
            str(user_data),
            str(meta_data),
        )
        log.debug("Created cloud-init seed %s", seed_iso)
        return seed_iso
