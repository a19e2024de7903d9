"""Azure backend manifest."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from image_boot_tests.backends.azure.client import AzureClient, AzureImage, AzureInstance
from image_boot_tests.backends.azure.config import AzureConfig
from image_boot_tests.backends.cloud import CloudBackend
from image_boot_tests.backends.manifest import BackendManifest
from image_boot_tests.settings import Settings


@asynccontextmanager
async def azure_backend(
    config: AzureConfig, settings: Settings
) -> AsyncGenerator[CloudBackend[AzureImage, AzureInstance], None]:
    """Open an Azure backend for one boot check."""
    async with AzureClient.from_config(config, ssh_user=settings.ssh_user) as client:
        yield CloudBackend(client=client, name_prefix="osbuild-image-tests-azure-")


azure_manifest = BackendManifest(
    config_cls=AzureConfig,
    backend_factory=azure_backend,
)
