"""Tests for scoped resource release."""

import asyncio
from pathlib import Path

import pytest

from image_boot_tests.exceptions import CleanupError, SetupError
from image_boot_tests.resources import (
    ResourceScope,
    release_after_failure,
    temporary_directory,
)


class Recorder:
    """Records releases, failing for the given descriptions."""

    def __init__(self, failing: frozenset[str] = frozenset()) -> None:
        self.released: list[str] = []
        self.failing = failing

    async def release(self, name: str) -> None:
        self.released.append(name)
        if name in self.failing:
            raise SetupError(f"{name} is stuck")


async def test_releases_in_reverse_order() -> None:
    recorder = Recorder()

    async with ResourceScope() as resources:
        for name in ("namespace", "seed", "vm"):
            resources.register(name, recorder.release, name)

    assert recorder.released == ["vm", "seed", "namespace"]


async def test_releases_when_body_raises() -> None:
    recorder = Recorder()

    with pytest.raises(SetupError, match="boot failed"):
        async with ResourceScope() as resources:
            resources.register("namespace", recorder.release, "namespace")
            raise SetupError("boot failed")

    assert recorder.released == ["namespace"]


async def test_attempts_every_release_and_raises_after_success() -> None:
    """A failing release neither stops later ones nor goes unreported."""
    recorder = Recorder(failing=frozenset(["instance"]))

    with pytest.raises(CleanupError) as exc_info:
        async with ResourceScope() as resources:
            resources.register("image", recorder.release, "image")
            resources.register("instance", recorder.release, "instance")

    assert recorder.released == ["instance", "image"]
    assert exc_info.value.failures == ("cannot release instance: instance is stuck",)
    assert "resources could have been leaked" in str(exc_info.value)


async def test_cleanup_failures_become_notes_of_body_error() -> None:
    """The original error keeps propagating, unchanged."""
    recorder = Recorder(failing=frozenset(["image", "instance"]))

    with pytest.raises(SetupError, match="boot failed") as exc_info:
        async with ResourceScope() as resources:
            resources.register("image", recorder.release, "image")
            resources.register("instance", recorder.release, "instance")
            raise SetupError("boot failed")

    assert exc_info.value.__notes__ == [
        "cannot release instance: instance is stuck",
        "cannot release image: image is stuck",
    ]


async def test_releases_each_resource_once() -> None:
    recorder = Recorder()
    resources = ResourceScope()
    resources.register("vm", recorder.release, "vm")

    await resources.release()
    await resources.release()

    assert recorder.released == ["vm"]


async def test_temporary_directory_is_removed_on_release(tmp_path: Path) -> None:
    parent = tmp_path / "work"

    async with ResourceScope() as resources:
        directory = await temporary_directory(resources, prefix="test-", parent=parent)
        (directory / "file").write_text("content")
        assert directory.parent == parent
        assert directory.name.startswith("test-")

    assert not directory.exists()
    assert parent.exists()


async def test_cancellation_releases_every_resource_once() -> None:
    recorder = Recorder()
    entered = asyncio.Event()

    async def check() -> None:
        async with ResourceScope() as resources:
            for name in ("namespace", "seed", "vm"):
                resources.register(name, recorder.release, name)
            entered.set()
            await asyncio.sleep(3600)

    task = asyncio.create_task(check())
    await entered.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert recorder.released == ["vm", "seed", "namespace"]


async def test_release_after_failure_notes_failed_release(
    caplog: pytest.LogCaptureFixture,
) -> None:
    recorder = Recorder(failing=frozenset(["image"]))
    error = SetupError("upload failed")

    await release_after_failure(error, "image", recorder.release, "image")

    assert recorder.released == ["image"]
    assert error.__notes__ == ["cannot release image: image is stuck"]
    assert "resources could have been leaked" in caplog.text


async def test_release_after_failure_leaves_error_alone_on_success() -> None:
    recorder = Recorder()
    error = SetupError("upload failed")

    await release_after_failure(error, "image", recorder.release, "image")

    assert recorder.released == ["image"]
    assert not hasattr(error, "__notes__")
