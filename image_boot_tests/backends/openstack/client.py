"""OpenStack client talking to Keystone, Glance and Nova."""

import asyncio
import base64
import logging
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

import aiohttp
from pydantic import SecretStr

from image_boot_tests.backends.cloud import CloudClient
from image_boot_tests.backends.openstack.config import OpenStackConfig
from image_boot_tests.backends.openstack.models import (
    CatalogEntry,
    FlavorsResponse,
    Image,
    Server,
    ServerResponse,
    TokenResponse,
)
from image_boot_tests.exceptions import SetupError
from image_boot_tests.resources import release_after_failure
from image_boot_tests.ssh import DEFAULT_SSH_USER, create_user_data

log = logging.getLogger(__name__)

POLL_INTERVAL = 5.0
POLL_ATTEMPTS = 180

DISK_FORMATS: Mapping[str, str] = {
    ".qcow2": "qcow2",
    ".vmdk": "vmdk",
    ".vhd": "vhd",
    ".raw": "raw",
    ".img": "raw",
}

FAILED_IMAGE_STATUSES = frozenset(["killed", "deleted", "pending_delete", "deactivated"])


async def authenticate(
    session: aiohttp.ClientSession, config: OpenStackConfig
) -> tuple[SecretStr, Sequence[CatalogEntry]]:
    """Get a project scoped token and the service catalog from Keystone."""
    auth_url = config.auth_url.rstrip("/")
    if not auth_url.endswith("/v3"):
        auth_url += "/v3"

    payload = {
        "auth": {
            "identity": {
                "methods": ["password"],
                "password": {
                    "user": {
                        "name": config.username,
                        "domain": {"name": config.user_domain_name},
                        "password": config.password.get_secret_value(),
                    }
                },
            },
            "scope": {"project": {"id": config.project_id}},
        }
    }

    async with session.post(f"{auth_url}/auth/tokens", json=payload) as response:
        if response.status != 201:
            text = await response.text()
            raise SetupError(f"OpenStack authentication failed: {response.status} {text}")
        token = response.headers.get("X-Subject-Token")
        data = await response.json()

    if not token:
        raise SetupError("Keystone did not return a token")

    return SecretStr(token), TokenResponse.model_validate(data).token.catalog


def find_endpoint(
    catalog: Sequence[CatalogEntry], service_type: str, config: OpenStackConfig
) -> str:
    """Find the URL of a service in the catalog."""
    for entry in catalog:
        if entry.type != service_type:
            continue
        for endpoint in entry.endpoints:
            if endpoint.interface != config.interface:
                continue
            if config.region_name and endpoint.region_id != config.region_name:
                continue
            return endpoint.url.rstrip("/")

    raise SetupError(f"No {config.interface} {service_type} endpoint in the catalog")


def pick_address(server: Server) -> str | None:
    """Pick the IPv4 address to ssh to, preferring floating addresses."""
    candidates = [
        address
        for addresses in server.addresses.values()
        for address in addresses
        if address.version == 4
    ]
    for address in candidates:
        if address.type == "floating":
            return address.addr
    return candidates[0].addr if candidates else None


@dataclass(frozen=True, kw_only=True)
class OpenStackClient(CloudClient[str, str]):
    """Boots images in OpenStack. Images and servers are identified by ID."""

    config: OpenStackConfig
    session: aiohttp.ClientSession = field(repr=False)
    token: SecretStr = field(repr=False)
    image_url: str
    compute_url: str
    ssh_user: str = DEFAULT_SSH_USER
    poll_interval: float = POLL_INTERVAL

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: OpenStackConfig, ssh_user: str = DEFAULT_SSH_USER
    ) -> AsyncGenerator[Self, None]:
        """Authenticate and create client with managed session lifecycle."""
        async with aiohttp.ClientSession() as session:
            token, catalog = await authenticate(session, config)
            yield cls(
                config=config,
                session=session,
                token=token,
                image_url=find_endpoint(catalog, "image", config),
                compute_url=find_endpoint(catalog, "compute", config),
                ssh_user=ssh_user,
            )

    @property
    def headers(self) -> Mapping[str, str]:
        """Headers authenticating a request."""
        return {"X-Auth-Token": self.token.get_secret_value()}

    async def upload(self, image_path: Path, name: str) -> str:
        """Create a Glance image, upload the file and wait until it is active."""
        payload = {
            "name": name,
            "disk_format": DISK_FORMATS.get(image_path.suffix, "qcow2"),
            "container_format": "bare",
            "visibility": "private",
        }
        async with self.session.post(
            f"{self.image_url}/v2/images", json=payload, headers=self.headers
        ) as response:
            if response.status != 201:
                text = await response.text()
                raise SetupError(f"Failed to create image: {response.status} {text}")
            image = Image.model_validate(await response.json())

        log.info("Created image %s, uploading %s", image.id, image_path)
        try:
            await self.upload_image_data(image.id, image_path)
            await self.wait_for_image(image.id)
        except BaseException as exc:
            await release_after_failure(exc, f"image {image.id}", self.delete_image, image.id)
            raise

        return image.id

    async def upload_image_data(self, image_id: str, image_path: Path) -> None:
        """Upload the image file to an existing image."""
        headers = {**self.headers, "Content-Type": "application/octet-stream"}
        with image_path.open("rb") as image_file:
            async with self.session.put(
                f"{self.image_url}/v2/images/{image_id}/file",
                data=image_file,
                headers=headers,
            ) as response:
                if response.status != 204:
                    text = await response.text()
                    raise SetupError(
                        f"Failed to upload image data: {response.status} {text}"
                    )

    async def get_image(self, image_id: str) -> Image:
        """Get image by ID."""
        async with self.session.get(
            f"{self.image_url}/v2/images/{image_id}", headers=self.headers
        ) as response:
            if response.status != 200:
                text = await response.text()
                raise SetupError(f"Failed to get image: {response.status} {text}")
            data = await response.json()

        return Image.model_validate(data)

    async def wait_for_image(self, image_id: str) -> None:
        """Wait until Glance finished processing the uploaded data."""
        for _ in range(POLL_ATTEMPTS):
            image = await self.get_image(image_id)
            if image.status == "active":
                return
            if image.status in FAILED_IMAGE_STATUSES:
                raise SetupError(f"Image {image_id} ended up in status={image.status}")
            log.debug("Image %s still in status=%s", image_id, image.status)
            await asyncio.sleep(self.poll_interval)

        raise SetupError(f"Image {image_id} did not become active")

    async def delete_image(self, image: str) -> None:
        """Delete an image; an already deleted image is fine."""
        async with self.session.delete(
            f"{self.image_url}/v2/images/{image}", headers=self.headers
        ) as response:
            if response.status not in (204, 404):
                text = await response.text()
                raise SetupError(f"Failed to delete image: {response.status} {text}")

        log.info("Deleted image %s", image)

    async def find_flavor(self) -> str:
        """Return the ID of the configured flavor."""
        async with self.session.get(
            f"{self.compute_url}/flavors", headers=self.headers
        ) as response:
            if response.status != 200:
                text = await response.text()
                raise SetupError(f"Failed to list flavors: {response.status} {text}")
            data = await response.json()

        for flavor in FlavorsResponse.model_validate(data).flavors:
            if flavor.name == self.config.flavor_name:
                return flavor.id

        raise SetupError(f"Flavor {self.config.flavor_name} does not exist")

    async def boot(self, image: str, public_key: str, name: str) -> str:
        """Create a server from the image; user data carries the public key."""
        user_data = create_user_data(public_key, self.ssh_user)
        networks: list[dict[str, str]] | str = (
            [{"uuid": self.config.network_id}] if self.config.network_id else "auto"
        )
        payload = {
            "server": {
                "name": name,
                "imageRef": image,
                "flavorRef": await self.find_flavor(),
                "user_data": base64.b64encode(user_data.encode()).decode("ascii"),
                "networks": networks,
            }
        }

        async with self.session.post(
            f"{self.compute_url}/servers",
            json=payload,
            headers={**self.headers, "X-OpenStack-Nova-API-Version": "2.37"},
        ) as response:
            if response.status != 202:
                text = await response.text()
                raise SetupError(f"Failed to create server: {response.status} {text}")
            data = await response.json()

        server = ServerResponse.model_validate(data).server
        log.info("Created server %s", server.id)
        return server.id

    async def get_server(self, server_id: str) -> Server | None:
        """Get server by ID, None if it does not exist."""
        async with self.session.get(
            f"{self.compute_url}/servers/{server_id}", headers=self.headers
        ) as response:
            if response.status == 404:
                return None
            if response.status != 200:
                text = await response.text()
                raise SetupError(f"Failed to get server: {response.status} {text}")
            data = await response.json()

        return ServerResponse.model_validate(data).server

    async def get_address(self, instance: str) -> str:
        """Wait for the server to become active and return its address."""
        for _ in range(POLL_ATTEMPTS):
            server = await self.get_server(instance)
            if server is None:
                raise SetupError(f"Server {instance} disappeared")
            if server.status == "ERROR":
                raise SetupError(f"Server {instance} failed to boot")
            if server.status == "ACTIVE":
                if (address := pick_address(server)) is None:
                    raise SetupError(f"Server {instance} has no IPv4 address")
                return address
            log.debug("Server %s still in status=%s", instance, server.status)
            await asyncio.sleep(self.poll_interval)

        raise SetupError(f"Server {instance} did not become active")

    async def delete(self, instance: str) -> None:
        """Delete the server and wait until it is gone."""
        async with self.session.delete(
            f"{self.compute_url}/servers/{instance}", headers=self.headers
        ) as response:
            if response.status not in (204, 404):
                text = await response.text()
                raise SetupError(f"Failed to delete server: {response.status} {text}")

        for _ in range(POLL_ATTEMPTS):
            if await self.get_server(instance) is None:
                log.info("Deleted server %s", instance)
                return
            await asyncio.sleep(self.poll_interval)

        raise SetupError(f"Server {instance} was not deleted")
