"""Integration tests for the Azure client."""

import base64
import dataclasses
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import yaml
from aioresponses import aioresponses as aioresponses_cls
from pydantic import SecretStr
from yarl import URL

from image_boot_tests.backends.azure import AzureClient, AzureConfig, AzureImage
from image_boot_tests.backends.azure.client import AzureInstance
from image_boot_tests.exceptions import CleanupError, SetupError
from image_boot_tests.testing.azure.payloads import access_token, not_found, resource

LOGIN_URL = "http://login.test"
MANAGEMENT_URL = "http://management.test"
STORAGE_URL = "http://blob.test"
TOKEN_URL = f"{LOGIN_URL}/tenant-1/oauth2/v2.0/token"
GROUP_ID = "/subscriptions/sub-1/resourceGroups/image-tests"
NAME = "osbuild-image-tests-azure-abc"
BLOB_URL = f"{STORAGE_URL}/images/{NAME}.vhd"


def resource_id(resource_type: str, name: str) -> str:
    return f"{GROUP_ID}/providers/{resource_type}/{name}"


def arm_url(resource_id: str) -> str:
    api_version = "2023-04-01" if "Microsoft.Network" in resource_id else "2023-03-01"
    return f"{MANAGEMENT_URL}{resource_id}?api-version={api_version}"


IMAGE_ID = resource_id("Microsoft.Compute/images", NAME)
NSG_ID = resource_id("Microsoft.Network/networkSecurityGroups", f"{NAME}-nsg")
IP_ID = resource_id("Microsoft.Network/publicIPAddresses", f"{NAME}-ip")
VNET_ID = resource_id("Microsoft.Network/virtualNetworks", f"{NAME}-vnet")
NIC_ID = resource_id("Microsoft.Network/networkInterfaces", f"{NAME}-nic")
VM_ID = resource_id("Microsoft.Compute/virtualMachines", NAME)
INSTANCE_RESOURCES = (NSG_ID, IP_ID, VNET_ID, NIC_ID, VM_ID)


@pytest.fixture
def config() -> AzureConfig:
    """Create test configuration."""
    return AzureConfig(
        client_id="client-1",
        client_secret=SecretStr("test-secret"),
        tenant_id="tenant-1",
        subscription_id="sub-1",
        resource_group="image-tests",
        location="eastus",
        storage_account="imagetests",
        container_name="images",
        login_url=LOGIN_URL,
        management_url=MANAGEMENT_URL,
        storage_url=STORAGE_URL,
    )


@pytest.fixture
async def client(
    config: AzureConfig, aioresponses: aioresponses_cls
) -> AsyncGenerator[AzureClient, None]:
    """Create authenticated client with managed session."""
    aioresponses.post(TOKEN_URL, payload=access_token("management-token"))
    aioresponses.post(TOKEN_URL, payload=access_token("storage-token"))
    async with AzureClient.from_config(config) as impl:
        yield dataclasses.replace(impl, poll_interval=0.0)


def mock_deletion(aioresponses: aioresponses_cls, resource_id: str) -> None:
    aioresponses.delete(arm_url(resource_id), status=202)
    aioresponses.get(arm_url(resource_id), status=404, payload=not_found())


def requested(aioresponses: aioresponses_cls, method: str) -> list[URL]:
    return [url for request_method, url in aioresponses.requests if request_method == method]


class TestAuthentication:
    """Tests for the client credentials flow."""

    async def test_fetches_management_and_storage_tokens(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        assert client.management_token.get_secret_value() == "management-token"
        assert client.storage_token.get_secret_value() == "storage-token"

        calls = aioresponses.requests[("POST", URL(TOKEN_URL))]
        assert [call.kwargs["data"]["scope"] for call in calls] == [
            "https://management.azure.com/.default",
            "https://storage.azure.com/.default",
        ]
        assert calls[0].kwargs["data"]["client_secret"] == "test-secret"
        assert calls[0].kwargs["data"]["grant_type"] == "client_credentials"

    async def test_rejected_credentials_raise(
        self, config: AzureConfig, aioresponses: aioresponses_cls
    ) -> None:
        aioresponses.post(TOKEN_URL, status=401, body="invalid_client")

        with pytest.raises(SetupError, match="Azure authentication failed: 401"):
            async with AzureClient.from_config(config):
                pass  # pragma: no cover


class TestUpload:
    """Tests for VHD upload and image creation."""

    @pytest.fixture(autouse=True)
    def small_pages(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("image_boot_tests.backends.azure.client.PAGE_CHUNK_SIZE", 1024)

    async def test_uploads_non_zero_pages_and_creates_image(
        self, client: AzureClient, aioresponses: aioresponses_cls, tmp_path: Path
    ) -> None:
        image_path = tmp_path / "disk.vhd"
        image_path.write_bytes(b"\x01" * 1024 + bytes(1024) + b"\x02" * 1024)
        aioresponses.put(BLOB_URL, status=201)
        aioresponses.put(f"{BLOB_URL}?comp=page", status=201)
        aioresponses.put(f"{BLOB_URL}?comp=page", status=201)
        aioresponses.put(
            arm_url(IMAGE_ID), status=201, payload=resource(IMAGE_ID, provisioning_state="Creating")
        )
        aioresponses.get(arm_url(IMAGE_ID), payload=resource(IMAGE_ID))

        image = await client.upload(image_path, NAME)

        assert image == AzureImage(blob_url=BLOB_URL, image_id=IMAGE_ID)

        create = aioresponses.requests[("PUT", URL(BLOB_URL))][0]
        assert create.kwargs["headers"]["x-ms-blob-type"] == "PageBlob"
        assert create.kwargs["headers"]["x-ms-blob-content-length"] == "3072"
        assert create.kwargs["headers"]["Authorization"] == "Bearer storage-token"

        pages = aioresponses.requests[("PUT", URL(f"{BLOB_URL}?comp=page"))]
        assert [page.kwargs["headers"]["x-ms-range"] for page in pages] == [
            "bytes=0-1023",
            "bytes=2048-3071",
        ]

        image_request = aioresponses.requests[("PUT", URL(arm_url(IMAGE_ID)))][0]
        os_disk = image_request.kwargs["json"]["properties"]["storageProfile"]["osDisk"]
        assert os_disk["blobUri"] == BLOB_URL
        assert image_request.kwargs["headers"]["Authorization"] == "Bearer management-token"

    async def test_rejects_unaligned_image(
        self, client: AzureClient, aioresponses: aioresponses_cls, tmp_path: Path
    ) -> None:
        image_path = tmp_path / "disk.vhd"
        image_path.write_bytes(bytes(1000))

        with pytest.raises(SetupError, match="not a multiple of 512"):
            await client.upload(image_path, NAME)

        assert requested(aioresponses, "PUT") == []

    async def test_failed_image_creation_deletes_blob(
        self, client: AzureClient, aioresponses: aioresponses_cls, tmp_path: Path
    ) -> None:
        image_path = tmp_path / "disk.vhd"
        image_path.write_bytes(bytes(1024))
        aioresponses.put(BLOB_URL, status=201)
        aioresponses.put(arm_url(IMAGE_ID), status=400, body="InvalidParameter")
        mock_deletion(aioresponses, IMAGE_ID)
        aioresponses.delete(BLOB_URL, status=202)

        with pytest.raises(SetupError, match="InvalidParameter"):
            await client.upload(image_path, NAME)

        assert ("DELETE", URL(BLOB_URL)) in aioresponses.requests

    async def test_delete_image_deletes_blob_too(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        mock_deletion(aioresponses, IMAGE_ID)
        aioresponses.delete(BLOB_URL, status=202)

        await client.delete_image(AzureImage(blob_url=BLOB_URL, image_id=IMAGE_ID))

        assert requested(aioresponses, "DELETE") == [URL(arm_url(IMAGE_ID)), URL(BLOB_URL)]

    async def test_delete_image_attempts_blob_when_image_fails(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        aioresponses.delete(arm_url(IMAGE_ID), status=409, body="Conflict")
        aioresponses.delete(BLOB_URL, status=202)

        with pytest.raises(CleanupError, match="cannot delete image"):
            await client.delete_image(AzureImage(blob_url=BLOB_URL, image_id=IMAGE_ID))

        assert ("DELETE", URL(BLOB_URL)) in aioresponses.requests


class TestInstances:
    """Tests for virtual machine lifecycle."""

    async def test_boot_creates_network_and_vm_in_order(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        for created_id in INSTANCE_RESOURCES:
            aioresponses.put(arm_url(created_id), status=201, payload=resource(created_id))

        instance = await client.boot(
            AzureImage(blob_url=BLOB_URL, image_id=IMAGE_ID), "ssh-rsa AAAA", NAME
        )

        assert instance == AzureInstance(
            name=NAME, public_ip_id=IP_ID, resource_ids=INSTANCE_RESOURCES
        )
        assert requested(aioresponses, "PUT") == [URL(arm_url(i)) for i in INSTANCE_RESOURCES]

        vm = aioresponses.requests[("PUT", URL(arm_url(VM_ID)))][0].kwargs["json"]
        assert vm["properties"]["storageProfile"]["imageReference"] == {"id": IMAGE_ID}
        assert vm["properties"]["networkProfile"]["networkInterfaces"] == [{"id": NIC_ID}]
        os_profile = vm["properties"]["osProfile"]
        assert os_profile["adminUsername"] == "redhat"
        user_data = yaml.safe_load(base64.b64decode(os_profile["customData"]))
        assert user_data["ssh_authorized_keys"] == ["ssh-rsa AAAA"]

        nic = aioresponses.requests[("PUT", URL(arm_url(NIC_ID)))][0].kwargs["json"]
        ip_configuration = nic["properties"]["ipConfigurations"][0]["properties"]
        assert ip_configuration["publicIPAddress"] == {"id": IP_ID}
        assert ip_configuration["subnet"] == {"id": f"{VNET_ID}/subnets/default"}

    async def test_failed_boot_deletes_what_was_created(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        """Everything up to the failing resource is deleted, newest first."""
        for created_id in INSTANCE_RESOURCES[:3]:
            aioresponses.put(arm_url(created_id), status=201, payload=resource(created_id))
        aioresponses.put(
            arm_url(NIC_ID),
            status=201,
            payload=resource(NIC_ID, provisioning_state="Failed"),
        )
        for created_id in INSTANCE_RESOURCES[:4]:
            mock_deletion(aioresponses, created_id)

        with pytest.raises(SetupError, match="state=Failed"):
            await client.boot(
                AzureImage(blob_url=BLOB_URL, image_id=IMAGE_ID), "ssh-rsa AAAA", NAME
            )

        assert requested(aioresponses, "DELETE") == [
            URL(arm_url(i)) for i in reversed(INSTANCE_RESOURCES[:4])
        ]

    async def test_failed_cleanup_is_noted_on_boot_error(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        aioresponses.put(arm_url(NSG_ID), status=201, payload=resource(NSG_ID))
        aioresponses.put(arm_url(IP_ID), status=409, body="PublicIPCountLimitReached")
        mock_deletion(aioresponses, IP_ID)
        aioresponses.delete(arm_url(NSG_ID), status=500, body="InternalServerError")

        with pytest.raises(SetupError, match="PublicIPCountLimitReached") as exc_info:
            await client.boot(
                AzureImage(blob_url=BLOB_URL, image_id=IMAGE_ID), "ssh-rsa AAAA", NAME
            )

        assert len(exc_info.value.__notes__) == 1
        assert exc_info.value.__notes__[0].startswith(f"cannot delete {NSG_ID}")

    async def test_get_address_reads_public_ip(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        aioresponses.get(arm_url(IP_ID), payload=resource(IP_ID, ip_address="20.1.2.3"))
        instance = AzureInstance(name=NAME, public_ip_id=IP_ID, resource_ids=())

        assert await client.get_address(instance) == "20.1.2.3"

    async def test_get_address_without_ip_raises(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        aioresponses.get(arm_url(IP_ID), payload=resource(IP_ID))
        instance = AzureInstance(name=NAME, public_ip_id=IP_ID, resource_ids=())

        with pytest.raises(SetupError, match="no public IP address"):
            await client.get_address(instance)

    async def test_delete_removes_resources_newest_first(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        for created_id in INSTANCE_RESOURCES:
            mock_deletion(aioresponses, created_id)
        instance = AzureInstance(
            name=NAME, public_ip_id=IP_ID, resource_ids=INSTANCE_RESOURCES
        )

        await client.delete(instance)

        assert requested(aioresponses, "DELETE") == [
            URL(arm_url(i)) for i in reversed(INSTANCE_RESOURCES)
        ]

    async def test_delete_attempts_every_resource(
        self, client: AzureClient, aioresponses: aioresponses_cls
    ) -> None:
        mock_deletion(aioresponses, VM_ID)
        aioresponses.delete(arm_url(NIC_ID), status=500, body="InternalServerError")
        mock_deletion(aioresponses, VNET_ID)
        instance = AzureInstance(
            name=NAME, public_ip_id=IP_ID, resource_ids=(VNET_ID, NIC_ID, VM_ID)
        )

        with pytest.raises(CleanupError) as exc_info:
            await client.delete(instance)

        assert len(exc_info.value.failures) == 1
        assert ("DELETE", URL(arm_url(VNET_ID))) in aioresponses.requests
