"""Remote command execution over ssh and the key material it needs."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import yaml

from image_boot_tests.netns import NetworkNamespace
from image_boot_tests.processes import communicate, run_command

log = logging.getLogger(__name__)

DEFAULT_SSH_USER = "redhat"


@dataclass(frozen=True, kw_only=True)
class CommandOutput:
    """Outcome of a remote command that ran to completion."""

    stdout: str
    returncode: int


class RemoteChannel(Protocol):
    """Anything able to run a command on a booted instance."""

    async def run(self, command: str, timeout: float) -> CommandOutput:
        """Run a command and wait at most timeout seconds for it.

        Raises:
            TimeoutError: If the command did not finish in time
            OSError: If the command could not be executed at all

        """


@dataclass(frozen=True, kw_only=True)
class SSHChannel:
    """Runs commands through the ssh client, optionally inside a namespace."""

    address: str
    private_key: Path
    user: str = DEFAULT_SSH_USER
    port: int = 22
    namespace: NetworkNamespace | None = None

    def command(self, remote_command: str) -> list[str]:
        """Build the argv of the ssh invocation."""
        argv = [
            "ssh",
            "-p",
            str(self.port),
            "-i",
            str(self.private_key),
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
            f"{self.user}@{self.address}",
            remote_command,
        ]
        if self.namespace is not None:
            return self.namespace.command(*argv)
        return argv

    async def run(self, command: str, timeout: float) -> CommandOutput:
        """Run command on the instance, killing ssh when timeout elapses."""
        process = await asyncio.create_subprocess_exec(
            *self.command(command),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await communicate(process, timeout=timeout)

        return CommandOutput(
            stdout=stdout.decode(errors="replace"),
            returncode=process.returncode or 0,
        )


@dataclass(frozen=True, kw_only=True)
class KeyPair:
    """An ssh key pair: path of the private key and the public key itself."""

    private_key: Path
    public_key: str


async def generate_key_pair(directory: Path) -> KeyPair:
    """Generate a fresh RSA key pair without passphrase inside directory."""
    private_key = directory / "id_rsa"
    await run_command(
        "ssh-keygen", "-q", "-t", "rsa", "-b", "4096", "-N", "", "-f", str(private_key)
    )
    public_key = await asyncio.to_thread(
        private_key.with_name("id_rsa.pub").read_text
    )
    return KeyPair(private_key=private_key, public_key=public_key.strip())


def create_user_data(public_key: str, user: str = DEFAULT_SSH_USER) -> str:
    """Create cloud-init user data authorizing public_key for user."""
    document = {"user": user, "ssh_authorized_keys": [public_key]}
    return "#cloud-config\n" + yaml.safe_dump(document, default_flow_style=False)
