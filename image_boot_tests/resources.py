"""Scoped ownership of everything a boot check allocates."""

import asyncio
import functools
import logging
import shutil
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path
from types import TracebackType
from typing import Any, Self

from image_boot_tests.exceptions import CleanupError

log = logging.getLogger(__name__)

type Release = Callable[[], Awaitable[object]]


class ResourceScope:
    """Releases every registered resource exactly once when the scope exits.

    Resources are registered right after they are allocated and released in
    reverse order when the ``async with`` block is left, whether it returns,
    raises or is cancelled. A failing release does not prevent the following
    ones from running; each failure is logged and remembered.

    If the block itself succeeded, collected failures are raised as a
    CleanupError. If it raised, the original exception keeps propagating and
    every cleanup failure is attached to it as a note.
    """

    def __init__(self) -> None:
        self._releases: list[tuple[str, Release]] = []
        self.errors: list[str] = []

    def register(
        self, description: str, release: Callable[..., Awaitable[object]], *args: Any
    ) -> None:
        """Register the release of an already allocated resource."""
        log.debug("Acquired %s", description)
        self._releases.append((description, functools.partial(release, *args)))

    async def release(self) -> None:
        """Release all registered resources, last registered first."""
        while self._releases:
            description, release = self._releases.pop()
            try:
                await release()
            except Exception as exc:
                log.error(
                    "Cannot release %s, resources could have been leaked: %s",
                    description,
                    exc,
                    exc_info=exc,
                )
                self.errors.append(f"cannot release {description}: {exc}")
            else:
                log.debug("Released %s", description)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.release()

        if not self.errors:
            return

        if exc is None:
            raise CleanupError(self.errors)

        for error in self.errors:
            exc.add_note(error)


async def temporary_directory(
    resources: ResourceScope, prefix: str, parent: Path | None = None
) -> Path:
    """Create a temporary directory removed when resources is released."""
    if parent is not None:
        await asyncio.to_thread(parent.mkdir, parents=True, exist_ok=True)
    path = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix=prefix, dir=parent))
    resources.register(f"temporary directory {path}", remove_tree, path)
    return path


async def remove_tree(path: Path) -> None:
    """Remove a directory tree."""
    await asyncio.to_thread(shutil.rmtree, path)


async def release_after_failure(
    exc: BaseException,
    description: str,
    release: Callable[..., Awaitable[object]],
    *args: Any,
) -> None:
    """Release a resource allocated by an operation that raised exc.

    A failing release is logged and attached to exc as a note; exc is what
    the caller re-raises.
    """
    try:
        await release(*args)
    except Exception as cleanup_exc:
        log.error(
            "Cannot release %s, resources could have been leaked: %s",
            description,
            cleanup_exc,
            exc_info=cleanup_exc,
        )
        exc.add_note(f"cannot release {description}: {cleanup_exc}")
