"""Backend manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from pydantic_settings import BaseSettings

from image_boot_tests.backends.base import BootBackend
from image_boot_tests.settings import Settings


@dataclass(frozen=True, kw_only=True)
class BackendManifest[ConfigT: BaseSettings]:
    """Manifest describing a boot backend plugin.

    The configuration class is read from the environment; for cloud backends
    it holds the credentials and its absence makes the dispatcher fall back
    to a local backend. The factory opens the backend (and whatever client
    session it needs) for the duration of one boot check.
    """

    config_cls: type[ConfigT]
    backend_factory: Callable[
        [ConfigT, Settings], AbstractAsyncContextManager[BootBackend]
    ]
    # Boots a virtual machine on this host, subject to --disable-local-boot
    local_vm: bool = False
