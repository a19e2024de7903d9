"""OpenStack backend manifest."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from image_boot_tests.backends.cloud import CloudBackend
from image_boot_tests.backends.manifest import BackendManifest
from image_boot_tests.backends.openstack.client import OpenStackClient
from image_boot_tests.backends.openstack.config import OpenStackConfig
from image_boot_tests.settings import Settings


@asynccontextmanager
async def openstack_backend(
    config: OpenStackConfig, settings: Settings
) -> AsyncGenerator[CloudBackend[str, str], None]:
    """Open an OpenStack backend for one boot check."""
    async with OpenStackClient.from_config(config, ssh_user=settings.ssh_user) as client:
        yield CloudBackend(client=client, name_prefix="osbuild-image-tests-openstack-")


openstack_manifest = BackendManifest(
    config_cls=OpenStackConfig,
    backend_factory=openstack_backend,
)
