"""Tests for the shared cloud backend lifecycle."""

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from image_boot_tests.backends.cloud import (
    RESOURCE_NAME_PREFIX,
    CloudBackend,
    CloudClient,
    generate_resource_name,
)
from image_boot_tests.exceptions import CleanupError, ReadinessFailure, SetupError
from image_boot_tests.resources import ResourceScope
from image_boot_tests.ssh import KeyPair


@dataclass(kw_only=True)
class FakeCloudClient(CloudClient[str, str]):
    """In-memory cloud counting what is allocated and torn down."""

    fail_on: frozenset[str] = frozenset()
    calls: list[str] = field(default_factory=list)
    images: set[str] = field(default_factory=set)
    instances: set[str] = field(default_factory=set)

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise SetupError(f"{name} failed")

    async def upload(self, image_path: Path, name: str) -> str:
        self._call("upload")
        self.images.add(name)
        return name

    async def delete_image(self, image: str) -> None:
        self._call("delete_image")
        self.images.remove(image)

    async def boot(self, image: str, public_key: str, name: str) -> str:
        self._call("boot")
        self.instances.add(name)
        return name

    async def get_address(self, instance: str) -> str:
        self._call("get_address")
        return "192.0.2.10"

    async def delete(self, instance: str) -> None:
        self._call("delete")
        self.instances.remove(instance)


@dataclass(kw_only=True)
class StuckCloudClient(FakeCloudClient):
    """Never reports an address, like an instance stuck while booting."""

    waiting: asyncio.Event = field(default_factory=asyncio.Event)

    async def get_address(self, instance: str) -> str:
        self._call("get_address")
        self.waiting.set()
        await asyncio.sleep(3600)
        return "192.0.2.10"


@pytest.fixture(autouse=True)
def key_pair(tmp_path: Path) -> Iterator[AsyncMock]:
    """Avoid running ssh-keygen."""
    with patch(
        "image_boot_tests.backends.cloud.generate_key_pair",
        new_callable=AsyncMock,
        return_value=KeyPair(private_key=tmp_path / "id_rsa", public_key="ssh-rsa AAAA"),
    ) as mock:
        yield mock


def test_generate_resource_name_is_unique() -> None:
    first = generate_resource_name()
    second = generate_resource_name()

    assert first.startswith(RESOURCE_NAME_PREFIX)
    assert first != second


async def test_acquire_returns_reachable_instance(tmp_path: Path) -> None:
    client = FakeCloudClient()
    backend = CloudBackend(client=client)

    async with ResourceScope() as resources:
        instance = await backend.acquire(tmp_path / "disk.vhd", resources)

        assert instance.address == "192.0.2.10"
        assert instance.private_key == tmp_path / "id_rsa"
        assert instance.namespace is None
        assert len(client.images) == 1
        assert len(client.instances) == 1

    assert client.images == set()
    assert client.instances == set()
    assert client.calls[-2:] == ["delete", "delete_image"]


async def test_failed_probe_still_tears_everything_down(tmp_path: Path) -> None:
    client = FakeCloudClient()

    with pytest.raises(ReadinessFailure):
        async with ResourceScope() as resources:
            await CloudBackend(client=client).acquire(tmp_path / "disk.vhd", resources)
            raise ReadinessFailure("unexpected status: maintenance")

    assert client.images == set()
    assert client.instances == set()


@pytest.mark.parametrize("step", ["boot", "get_address"])
async def test_failure_while_booting_releases_acquired(tmp_path: Path, step: str) -> None:
    client = FakeCloudClient(fail_on=frozenset([step]))

    with pytest.raises(SetupError, match=f"{step} failed"):
        async with ResourceScope() as resources:
            await CloudBackend(client=client).acquire(tmp_path / "disk.vhd", resources)

    assert client.images == set()
    assert client.instances == set()


async def test_image_deleted_even_if_instance_deletion_fails(tmp_path: Path) -> None:
    client = FakeCloudClient(fail_on=frozenset(["delete"]))

    with pytest.raises(CleanupError) as exc_info:
        async with ResourceScope() as resources:
            await CloudBackend(client=client).acquire(tmp_path / "disk.vhd", resources)

    assert client.images == set()
    assert "delete_image" in client.calls
    assert len(exc_info.value.failures) == 1
    assert exc_info.value.failures[0].startswith("cannot release instance")


async def test_resource_names_carry_prefix(tmp_path: Path) -> None:
    client = FakeCloudClient()
    backend = CloudBackend(client=client, name_prefix="test-prefix-")

    async with ResourceScope() as resources:
        await backend.acquire(tmp_path / "disk.vhd", resources)
        names = client.images | client.instances

    assert len(names) == 1
    assert names.pop().startswith("test-prefix-")


async def test_cancelled_acquire_releases_everything_once(tmp_path: Path) -> None:
    client = StuckCloudClient()

    async def check_boot() -> None:
        async with ResourceScope() as resources:
            await CloudBackend(client=client).acquire(tmp_path / "disk.vhd", resources)

    task = asyncio.create_task(check_boot())
    await client.waiting.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert client.calls.count("delete") == 1
    assert client.calls.count("delete_image") == 1
    assert client.calls[-2:] == ["delete", "delete_image"]
    assert client.images == set()
    assert client.instances == set()
