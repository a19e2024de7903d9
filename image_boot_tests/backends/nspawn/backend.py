"""systemd-nspawn backend implementations."""

import logging
import uuid
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Self

from image_boot_tests.backends.base import BootBackend, BootedInstance
from image_boot_tests.backends.nspawn.config import NspawnConfig
from image_boot_tests.netns import NetworkNamespace
from image_boot_tests.processes import run_command, start_process, stop_process
from image_boot_tests.resources import ResourceScope, temporary_directory
from image_boot_tests.settings import Settings

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class NspawnImageBackend(BootBackend):
    """Boots a disk image as a systemd-nspawn container.

    The container joins a fresh network namespace, its sshd is reached at
    localhost inside that namespace.
    """

    config: NspawnConfig
    settings: Settings

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: NspawnConfig, settings: Settings
    ) -> AsyncGenerator[Self, None]:
        """Create the backend; it holds no session."""
        yield cls(config=config, settings=settings)

    def root_options(self, root: Path) -> Sequence[str]:
        """Options telling systemd-nspawn what to boot."""
        return ["--image", str(root)]

    async def prepare_root(self, image_path: Path, resources: ResourceScope) -> Path:
        """Return what the container boots from."""
        return image_path

    async def acquire(
        self, image_path: Path, resources: ResourceScope
    ) -> BootedInstance:
        """Boot the container inside a fresh network namespace."""
        namespace = await NetworkNamespace.create()
        resources.register(f"network namespace {namespace.name}", namespace.delete)

        root = await self.prepare_root(image_path, resources)

        machine = f"boottest-{uuid.uuid4().hex[:8]}"
        process = await start_process(
            self.config.binary,
            "--boot",
            "--register=no",
            "-M",
            machine,
            f"--network-namespace-path={namespace.path}",
            *self.root_options(root),
        )
        resources.register(f"container {machine}", stop_process, process, machine)

        return BootedInstance(
            address="localhost",
            private_key=self.settings.private_key,
            namespace=namespace,
        )


@dataclass(frozen=True, kw_only=True)
class NspawnDirectoryBackend(NspawnImageBackend):
    """Boots a tar archive, extracted to a temporary directory, with nspawn."""

    def root_options(self, root: Path) -> Sequence[str]:
        """Boot from the extracted directory tree."""
        return ["--directory", str(root)]

    async def prepare_root(self, image_path: Path, resources: ResourceScope) -> Path:
        """Extract the archive; the directory is removed on release."""
        directory = await temporary_directory(
            resources,
            prefix="osbuild-image-tests-nspawn-",
            parent=self.settings.work_dir,
        )
        log.info("Extracting %s to %s", image_path, directory)
        await run_command("tar", "--extract", "--file", str(image_path), "-C", str(directory))
        return directory
