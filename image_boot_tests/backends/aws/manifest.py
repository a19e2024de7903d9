"""AWS backend manifest."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from image_boot_tests.backends.aws.client import AMI, AWSClient
from image_boot_tests.backends.aws.config import AWSConfig
from image_boot_tests.backends.cloud import CloudBackend
from image_boot_tests.backends.manifest import BackendManifest
from image_boot_tests.settings import Settings


@asynccontextmanager
async def aws_backend(
    config: AWSConfig, settings: Settings
) -> AsyncGenerator[CloudBackend[AMI, str], None]:
    """Open an EC2 backend for one boot check."""
    async with AWSClient.from_config(config, ssh_user=settings.ssh_user) as client:
        yield CloudBackend(client=client)


aws_manifest = BackendManifest(
    config_cls=AWSConfig,
    backend_factory=aws_backend,
)
