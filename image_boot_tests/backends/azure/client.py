"""Azure client: page blob upload, managed images and virtual machines."""

import asyncio
import base64
import logging
from collections.abc import AsyncGenerator, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self

import aiohttp
from pydantic import SecretStr

from image_boot_tests.backends.azure.config import AzureConfig
from image_boot_tests.backends.azure.models import AccessToken, Resource
from image_boot_tests.backends.cloud import CloudClient
from image_boot_tests.exceptions import CleanupError, SetupError
from image_boot_tests.resources import release_after_failure
from image_boot_tests.ssh import DEFAULT_SSH_USER, create_user_data

log = logging.getLogger(__name__)

MANAGEMENT_SCOPE = "https://management.azure.com/.default"
STORAGE_SCOPE = "https://storage.azure.com/.default"

COMPUTE_API_VERSION = "2023-03-01"
NETWORK_API_VERSION = "2023-04-01"
STORAGE_API_VERSION = "2021-08-06"

# Page blobs are written in pages of 512 bytes, at most 4 MiB per request
SECTOR_SIZE = 512
PAGE_CHUNK_SIZE = 4 * 1024 * 1024

POLL_INTERVAL = 5.0
POLL_ATTEMPTS = 180

FAILED_STATES = frozenset(["Failed", "Canceled"])


async def get_token(
    session: aiohttp.ClientSession, config: AzureConfig, scope: str
) -> SecretStr:
    """Get an access token for the service principal (client credentials)."""
    url = f"{config.login_url.rstrip('/')}/{config.tenant_id}/oauth2/v2.0/token"
    form = {
        "grant_type": "client_credentials",
        "client_id": config.client_id,
        "client_secret": config.client_secret.get_secret_value(),
        "scope": scope,
    }

    async with session.post(url, data=form) as response:
        if response.status != 200:
            text = await response.text()
            raise SetupError(f"Azure authentication failed: {response.status} {text}")
        data = await response.json()

    return SecretStr(AccessToken.model_validate(data).access_token)


@dataclass(frozen=True, kw_only=True)
class AzureImage:
    """A managed image and the VHD blob it was created from."""

    blob_url: str
    image_id: str


@dataclass(frozen=True, kw_only=True)
class AzureInstance:
    """A virtual machine and the network resources created for it."""

    name: str
    public_ip_id: str
    # In creation order; deleted in reverse
    resource_ids: Sequence[str]


@dataclass(frozen=True, kw_only=True)
class AzureClient(CloudClient[AzureImage, AzureInstance]):
    """Boots images in Azure through the Resource Manager REST API."""

    config: AzureConfig
    session: aiohttp.ClientSession = field(repr=False)
    management_token: SecretStr = field(repr=False)
    storage_token: SecretStr = field(repr=False)
    ssh_user: str = DEFAULT_SSH_USER
    poll_interval: float = POLL_INTERVAL

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: AzureConfig, ssh_user: str = DEFAULT_SSH_USER
    ) -> AsyncGenerator[Self, None]:
        """Authenticate and create client with managed session lifecycle."""
        async with aiohttp.ClientSession() as session:
            yield cls(
                config=config,
                session=session,
                management_token=await get_token(session, config, MANAGEMENT_SCOPE),
                storage_token=await get_token(session, config, STORAGE_SCOPE),
                ssh_user=ssh_user,
            )

    @property
    def management_headers(self) -> Mapping[str, str]:
        """Headers authenticating a Resource Manager request."""
        return {"Authorization": f"Bearer {self.management_token.get_secret_value()}"}

    @property
    def storage_headers(self) -> Mapping[str, str]:
        """Headers authenticating a blob service request."""
        return {
            "Authorization": f"Bearer {self.storage_token.get_secret_value()}",
            "x-ms-version": STORAGE_API_VERSION,
        }

    def resource_id(self, resource_type: str, name: str) -> str:
        """Build the ID of a resource in the configured resource group."""
        return (
            f"/subscriptions/{self.config.subscription_id}"
            f"/resourceGroups/{self.config.resource_group}"
            f"/providers/{resource_type}/{name}"
        )

    def resource_url(self, resource_id: str) -> str:
        """Build the Resource Manager URL of a resource."""
        api_version = (
            NETWORK_API_VERSION
            if "/providers/Microsoft.Network/" in resource_id
            else COMPUTE_API_VERSION
        )
        return (
            f"{self.config.management_url.rstrip('/')}{resource_id}"
            f"?api-version={api_version}"
        )

    async def upload(self, image_path: Path, name: str) -> AzureImage:
        """Upload the VHD as a page blob and create a managed image from it."""
        blob_url = (
            f"{self.config.blob_service_url}/{self.config.container_name}/{name}.vhd"
        )
        await self.upload_page_blob(image_path, blob_url)

        image_id = self.resource_id("Microsoft.Compute/images", name)
        body = {
            "location": self.config.location,
            "properties": {
                "hyperVGeneration": "V1",
                "storageProfile": {
                    "osDisk": {
                        "osType": "Linux",
                        "osState": "Generalized",
                        "blobUri": blob_url,
                    }
                },
            },
        }
        try:
            await self.put_resource(image_id, body)
        except BaseException as exc:
            await self.delete_resources_noting(exc, [image_id])
            await release_after_failure(exc, f"blob {blob_url}", self.delete_blob, blob_url)
            raise

        return AzureImage(blob_url=blob_url, image_id=image_id)

    async def upload_page_blob(self, image_path: Path, blob_url: str) -> None:
        """Create a page blob of the image size and write its non-zero pages."""
        size = (await asyncio.to_thread(image_path.stat)).st_size
        if size % SECTOR_SIZE:
            raise SetupError(
                f"{image_path} is {size} bytes, not a multiple of {SECTOR_SIZE}"
            )

        headers = {
            **self.storage_headers,
            "x-ms-blob-type": "PageBlob",
            "x-ms-blob-content-length": str(size),
        }
        async with self.session.put(blob_url, headers=headers) as response:
            if response.status != 201:
                text = await response.text()
                raise SetupError(f"Failed to create blob: {response.status} {text}")

        log.info("Uploading %s (%d bytes) to %s", image_path, size, blob_url)
        try:
            with image_path.open("rb") as image_file:
                offset = 0
                while chunk := await asyncio.to_thread(image_file.read, PAGE_CHUNK_SIZE):
                    # Pages never written read back as zeros
                    if chunk.strip(b"\0"):
                        await self.put_pages(blob_url, offset, chunk)
                    offset += len(chunk)
        except BaseException as exc:
            await release_after_failure(exc, f"blob {blob_url}", self.delete_blob, blob_url)
            raise

    async def put_pages(self, blob_url: str, offset: int, chunk: bytes) -> None:
        """Write one range of pages."""
        headers = {
            **self.storage_headers,
            "x-ms-page-write": "update",
            "x-ms-range": f"bytes={offset}-{offset + len(chunk) - 1}",
        }
        async with self.session.put(
            f"{blob_url}?comp=page", data=chunk, headers=headers
        ) as response:
            if response.status != 201:
                text = await response.text()
                raise SetupError(f"Failed to upload pages: {response.status} {text}")

    async def delete_blob(self, blob_url: str) -> None:
        """Delete a blob; an already deleted blob is fine."""
        async with self.session.delete(blob_url, headers=self.storage_headers) as response:
            if response.status not in (202, 404):
                text = await response.text()
                raise SetupError(f"Failed to delete blob: {response.status} {text}")

        log.info("Deleted blob %s", blob_url)

    async def delete_image(self, image: AzureImage) -> None:
        """Delete the managed image and its blob, attempting both."""
        failures: list[str] = []
        try:
            await self.delete_resource(image.image_id)
        except Exception as exc:
            failures.append(f"cannot delete image {image.image_id}: {exc}")
        try:
            await self.delete_blob(image.blob_url)
        except Exception as exc:
            failures.append(f"cannot delete blob {image.blob_url}: {exc}")
        if failures:
            raise CleanupError(failures)

    async def boot(self, image: AzureImage, public_key: str, name: str) -> AzureInstance:
        """Create the network resources and the virtual machine."""
        nsg_id = self.resource_id("Microsoft.Network/networkSecurityGroups", f"{name}-nsg")
        ip_id = self.resource_id("Microsoft.Network/publicIPAddresses", f"{name}-ip")
        vnet_id = self.resource_id("Microsoft.Network/virtualNetworks", f"{name}-vnet")
        nic_id = self.resource_id("Microsoft.Network/networkInterfaces", f"{name}-nic")
        vm_id = self.resource_id("Microsoft.Compute/virtualMachines", name)

        resources = [
            (nsg_id, self.security_group_body()),
            (ip_id, self.public_ip_body()),
            (vnet_id, self.virtual_network_body()),
            (nic_id, self.network_interface_body(nsg_id, ip_id, vnet_id)),
            (vm_id, self.virtual_machine_body(name, image, nic_id, public_key)),
        ]

        created: list[str] = []
        try:
            for resource_id, body in resources:
                # Recorded before the request: a half created resource is
                # deleted too, deleting a missing one is harmless.
                created.append(resource_id)
                await self.put_resource(resource_id, body)
        except BaseException as exc:
            await self.delete_resources_noting(exc, created)
            raise

        return AzureInstance(name=name, public_ip_id=ip_id, resource_ids=tuple(created))

    async def get_address(self, instance: AzureInstance) -> str:
        """Return the address assigned to the public IP of the instance."""
        resource = await self.get_resource(instance.public_ip_id)
        if resource is None or not resource.properties.ip_address:
            raise SetupError(f"Instance {instance.name} has no public IP address")
        return resource.properties.ip_address

    async def delete(self, instance: AzureInstance) -> None:
        """Delete the virtual machine and its network resources."""
        await self.delete_resources(reversed(instance.resource_ids))

    async def delete_resources(self, resource_ids: Iterable[str]) -> None:
        """Delete resources one after the other, attempting every one."""
        failures: list[str] = []
        for resource_id in resource_ids:
            try:
                await self.delete_resource(resource_id)
            except Exception as exc:
                log.error("Cannot delete %s: %s", resource_id, exc)
                failures.append(f"cannot delete {resource_id}: {exc}")
        if failures:
            raise CleanupError(failures)

    async def delete_resources_noting(
        self, exc: BaseException, resource_ids: Sequence[str]
    ) -> None:
        """Delete resources after exc, attaching cleanup failures to it."""
        try:
            await self.delete_resources(reversed(resource_ids))
        except CleanupError as cleanup:
            for failure in cleanup.failures:
                exc.add_note(failure)

    async def get_resource(self, resource_id: str) -> Resource | None:
        """Get a resource, None if it does not exist."""
        async with self.session.get(
            self.resource_url(resource_id), headers=self.management_headers
        ) as response:
            if response.status == 404:
                return None
            if response.status != 200:
                text = await response.text()
                raise SetupError(f"Failed to get {resource_id}: {response.status} {text}")
            data = await response.json()

        return Resource.model_validate(data)

    async def put_resource(self, resource_id: str, body: Mapping[str, Any]) -> None:
        """Create or update a resource and wait until it is provisioned."""
        async with self.session.put(
            self.resource_url(resource_id), json=body, headers=self.management_headers
        ) as response:
            if response.status not in (200, 201):
                text = await response.text()
                raise SetupError(
                    f"Failed to create {resource_id}: {response.status} {text}"
                )
            resource: Resource | None = Resource.model_validate(await response.json())

        for _ in range(POLL_ATTEMPTS):
            state = resource.properties.provisioning_state if resource else None
            if state == "Succeeded":
                log.info("Provisioned %s", resource_id)
                return
            if state in FAILED_STATES:
                raise SetupError(f"Provisioning {resource_id} ended in state={state}")
            log.debug("%s in provisioning state=%s", resource_id, state)
            await asyncio.sleep(self.poll_interval)
            resource = await self.get_resource(resource_id)

        raise SetupError(f"{resource_id} was not provisioned in time")

    async def delete_resource(self, resource_id: str) -> None:
        """Delete a resource and wait until it is gone."""
        async with self.session.delete(
            self.resource_url(resource_id), headers=self.management_headers
        ) as response:
            if response.status not in (200, 202, 204, 404):
                text = await response.text()
                raise SetupError(
                    f"Failed to delete {resource_id}: {response.status} {text}"
                )

        for _ in range(POLL_ATTEMPTS):
            if await self.get_resource(resource_id) is None:
                log.info("Deleted %s", resource_id)
                return
            await asyncio.sleep(self.poll_interval)

        raise SetupError(f"{resource_id} was not deleted in time")

    def security_group_body(self) -> Mapping[str, Any]:
        """Network security group letting ssh in."""
        return {
            "location": self.config.location,
            "properties": {
                "securityRules": [
                    {
                        "name": "ssh",
                        "properties": {
                            "protocol": "Tcp",
                            "sourcePortRange": "*",
                            "destinationPortRange": "22",
                            "sourceAddressPrefix": "*",
                            "destinationAddressPrefix": "*",
                            "access": "Allow",
                            "priority": 1000,
                            "direction": "Inbound",
                        },
                    }
                ]
            },
        }

    def public_ip_body(self) -> Mapping[str, Any]:
        """Static public IP address."""
        return {
            "location": self.config.location,
            "sku": {"name": "Standard"},
            "properties": {"publicIPAllocationMethod": "Static"},
        }

    def virtual_network_body(self) -> Mapping[str, Any]:
        """Virtual network with a single subnet."""
        return {
            "location": self.config.location,
            "properties": {
                "addressSpace": {"addressPrefixes": ["10.0.0.0/16"]},
                "subnets": [
                    {"name": "default", "properties": {"addressPrefix": "10.0.0.0/24"}}
                ],
            },
        }

    def network_interface_body(
        self, nsg_id: str, ip_id: str, vnet_id: str
    ) -> Mapping[str, Any]:
        """Network interface tying the public IP to the subnet."""
        return {
            "location": self.config.location,
            "properties": {
                "networkSecurityGroup": {"id": nsg_id},
                "ipConfigurations": [
                    {
                        "name": "ipconfig",
                        "properties": {
                            "subnet": {"id": f"{vnet_id}/subnets/default"},
                            "publicIPAddress": {"id": ip_id},
                        },
                    }
                ],
            },
        }

    def virtual_machine_body(
        self, name: str, image: AzureImage, nic_id: str, public_key: str
    ) -> Mapping[str, Any]:
        """Virtual machine booting the managed image."""
        user_data = create_user_data(public_key, self.ssh_user)
        return {
            "location": self.config.location,
            "properties": {
                "hardwareProfile": {"vmSize": self.config.vm_size},
                "storageProfile": {
                    "imageReference": {"id": image.image_id},
                    "osDisk": {
                        "createOption": "FromImage",
                        "deleteOption": "Delete",
                        "managedDisk": {"storageAccountType": "Standard_LRS"},
                    },
                },
                "osProfile": {
                    "computerName": name,
                    "adminUsername": self.ssh_user,
                    "customData": base64.b64encode(user_data.encode()).decode("ascii"),
                    "linuxConfiguration": {
                        "disablePasswordAuthentication": True,
                        "ssh": {
                            "publicKeys": [
                                {
                                    "path": f"/home/{self.ssh_user}/.ssh/authorized_keys",
                                    "keyData": public_key,
                                }
                            ]
                        },
                    },
                },
                "networkProfile": {"networkInterfaces": [{"id": nic_id}]},
            },
        }
