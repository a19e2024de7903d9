"""Network namespaces isolating locally booted instances."""

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from image_boot_tests.processes import run_command
from image_boot_tests.resources import release_after_failure

log = logging.getLogger(__name__)

NETNS_DIR = Path("/var/run/netns")


@dataclass(frozen=True, kw_only=True)
class NetworkNamespace:
    """A named network namespace created with iproute2.

    Every locally booted instance forwards ssh to localhost inside its own
    namespace, so several instances can listen on port 22 at the same time.
    """

    name: str

    @classmethod
    async def create(cls, prefix: str = "osbuild-image-tests-") -> "NetworkNamespace":
        """Create a namespace with a unique name and its loopback up."""
        namespace = cls(name=f"{prefix}{uuid.uuid4().hex[:12]}")
        await run_command("ip", "netns", "add", namespace.name)
        try:
            await run_command(*namespace.command("ip", "link", "set", "lo", "up"))
        except BaseException as exc:
            await release_after_failure(
                exc, f"network namespace {namespace.name}", namespace.delete
            )
            raise

        log.info("Created network namespace %s", namespace.name)
        return namespace

    @property
    def path(self) -> Path:
        """Bind mount of the namespace, usable by systemd-nspawn."""
        return NETNS_DIR / self.name

    def command(self, *argv: str) -> list[str]:
        """Wrap a command so that it runs inside the namespace."""
        return ["ip", "netns", "exec", self.name, *argv]

    async def delete(self) -> None:
        """Delete the namespace."""
        await run_command("ip", "netns", "delete", self.name)
        log.info("Deleted network namespace %s", self.name)
