"""Selecting and running the boot backend a test case asks for."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from image_boot_tests.backends.credentials import Absent, Present, resolve_credentials
from image_boot_tests.backends.loading import load_backend_manifest
from image_boot_tests.backends.manifest import BackendManifest
from image_boot_tests.exceptions import CheckSkipped
from image_boot_tests.readiness import ReadinessProber
from image_boot_tests.resources import ResourceScope
from image_boot_tests.settings import Settings

log = logging.getLogger(__name__)

# Boots anywhere, used when a cloud backend has no credentials
FALLBACK_BACKEND = "qemu"


@dataclass(frozen=True, kw_only=True)
class BootDispatcher:
    """Boots an image with the selected backend and waits until it is ready."""

    settings: Settings
    load_manifest: Callable[[str], BackendManifest[Any]] = load_backend_manifest

    async def check_boot(self, image_path: Path, selector: str) -> None:
        """Boot the image, probe it over ssh and release everything again.

        Args:
            image_path: Built image
            selector: Boot type of the test case (qemu, nspawn, aws, ...)

        Raises:
            BackendNotFoundError: If no backend is registered under selector
            CredentialsError: If the backend credentials are incomplete
            CheckSkipped: If the backend boots locally and local boot is disabled
            SetupError: If the instance cannot be booted
            ReadinessFailure: If the instance reports it will not become ready
            ReadinessTimeoutError: If the instance did not become ready in time
            CleanupError: If the check passed but a resource was not released

        """
        manifest = self.load_manifest(selector)

        match resolve_credentials(manifest.config_cls):
            case Absent():
                log.info(
                    "no %s credentials given, falling back to booting using %s",
                    selector,
                    FALLBACK_BACKEND,
                )
                await self.check_boot(image_path, FALLBACK_BACKEND)
                return
            case Present(config):
                pass

        if manifest.local_vm and self.settings.disable_local_boot:
            raise CheckSkipped(f"local boot is disabled, not booting using {selector}")

        log.info("Booting %s using %s", image_path, selector)
        async with manifest.backend_factory(config, self.settings) as backend:
            async with ResourceScope() as resources:
                instance = await backend.acquire(image_path, resources)
                prober = ReadinessProber(
                    channel=instance.channel(self.settings.ssh_user),
                    timeout=self.settings.probe_timeout,
                )
                await prober.wait_until_ready(
                    self.settings.probe_attempts, self.settings.probe_interval
                )
