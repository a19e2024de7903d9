"""Abstract base class for boot backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from image_boot_tests.netns import NetworkNamespace
from image_boot_tests.resources import ResourceScope
from image_boot_tests.ssh import DEFAULT_SSH_USER, SSHChannel


@dataclass(frozen=True, kw_only=True)
class BootedInstance:
    """A running instance of an image, reachable over ssh."""

    address: str
    private_key: Path
    namespace: NetworkNamespace | None = None

    def channel(self, user: str = DEFAULT_SSH_USER) -> SSHChannel:
        """Return the ssh channel reaching this instance."""
        return SSHChannel(
            address=self.address,
            private_key=self.private_key,
            user=user,
            namespace=self.namespace,
        )


class BootBackend(ABC):
    """Abstract base for the environments an image can be booted in."""

    @abstractmethod
    async def acquire(
        self, image_path: Path, resources: ResourceScope
    ) -> BootedInstance:
        """Boot the image and return the instance once its address is known.

        Every resource is registered with resources as soon as it has been
        allocated, so the caller releases it on every exit path, including
        a failure later on inside this method.

        Args:
            image_path: Built image (file or archive, depending on the backend)
            resources: Scope owning everything allocated for this instance

        Returns:
            The booted instance

        Raises:
            SetupError: If the instance cannot be booted

        """
