"""Shared lifecycle of boot backends running in a public or private cloud."""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from image_boot_tests.backends.base import BootBackend, BootedInstance
from image_boot_tests.resources import ResourceScope, temporary_directory
from image_boot_tests.ssh import generate_key_pair

log = logging.getLogger(__name__)

RESOURCE_NAME_PREFIX = "osbuild-image-tests-"


def generate_resource_name(prefix: str = RESOURCE_NAME_PREFIX) -> str:
    """Generate a name no other test run uses, for every cloud resource."""
    return f"{prefix}{uuid.uuid4().hex}"


class CloudClient[ImageT, InstanceT](ABC):
    """Provider specific calls needed to boot an image in a cloud.

    Generic type ImageT is the handle of an uploaded image and InstanceT the
    handle of a booted instance; both are whatever the provider needs to
    find and delete them again.

    Implementations delete what they created themselves when a call fails
    half way; once a call returned, the handle is owned by the caller.
    """

    @abstractmethod
    async def upload(self, image_path: Path, name: str) -> ImageT:
        """Upload the image and make it bootable under the given name."""

    @abstractmethod
    async def delete_image(self, image: ImageT) -> None:
        """Delete an uploaded image."""

    @abstractmethod
    async def boot(self, image: ImageT, public_key: str, name: str) -> InstanceT:
        """Create an instance of the image, authorizing public_key for ssh."""

    @abstractmethod
    async def get_address(self, instance: InstanceT) -> str:
        """Wait until the instance runs and return its public address."""

    @abstractmethod
    async def delete(self, instance: InstanceT) -> None:
        """Terminate the instance and everything created along with it."""


@dataclass(frozen=True, kw_only=True)
class CloudBackend[ImageT, InstanceT](BootBackend):
    """Boots images through a CloudClient.

    The uploaded image and the instance are registered as two separate
    resources: deleting one is attempted even when deleting the other fails.
    """

    client: CloudClient[ImageT, InstanceT]
    name_prefix: str = RESOURCE_NAME_PREFIX

    async def acquire(
        self, image_path: Path, resources: ResourceScope
    ) -> BootedInstance:
        """Upload and boot the image under a freshly generated name."""
        name = generate_resource_name(self.name_prefix)

        key_dir = await temporary_directory(resources, prefix="osbuild-image-tests-key-")
        key_pair = await generate_key_pair(key_dir)

        log.info("Uploading %s as %s", image_path, name)
        image = await self.client.upload(image_path, name)
        resources.register(f"uploaded image {name}", self.client.delete_image, image)

        log.info("Booting instance %s", name)
        instance = await self.client.boot(image, key_pair.public_key, name)
        resources.register(f"instance {name}", self.client.delete, instance)

        address = await self.client.get_address(instance)
        log.info("Instance %s is reachable at %s", name, address)

        return BootedInstance(address=address, private_key=key_pair.private_key)
