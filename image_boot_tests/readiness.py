"""Polling a booted instance until the system reports it is up."""

import asyncio
import logging
from dataclasses import dataclass

from image_boot_tests.exceptions import ReadinessFailure, ReadinessTimeoutError
from image_boot_tests.ssh import RemoteChannel

log = logging.getLogger(__name__)

PROBE_COMMAND = "systemctl --wait is-system-running"
PROBE_TIMEOUT = 10.0
PROBE_ATTEMPTS = 20
PROBE_INTERVAL = 10.0

# ssh exits with 255 when the connection cannot be established (yet)
SSH_CONNECTION_FAILED = 255


@dataclass(frozen=True)
class Ready:
    """The system finished booting."""

    status: str


@dataclass(frozen=True)
class TransientUnready:
    """The system is not reachable or still booting; worth another try."""

    reason: str


@dataclass(frozen=True)
class HardFailure:
    """The system will not become ready; retrying is pointless."""

    reason: str


type ReadinessOutcome = Ready | TransientUnready | HardFailure


def classify_status(status: str) -> ReadinessOutcome:
    """Classify the output of systemctl is-system-running."""
    match status:
        case "running":
            return Ready(status)
        case "degraded":
            log.warning("ssh test passed, but the system is degraded")
            return Ready(status)
        case "starting":
            return TransientUnready("the system is still starting")
        case _:
            return HardFailure(f"unexpected status: {status}")


@dataclass(frozen=True, kw_only=True)
class ReadinessProber:
    """Asks a booted instance for its boot status over a remote channel."""

    channel: RemoteChannel
    timeout: float = PROBE_TIMEOUT

    async def probe(self) -> ReadinessOutcome:
        """Run the status command once and classify the outcome."""
        try:
            output = await self.channel.run(PROBE_COMMAND, timeout=self.timeout)
        except TimeoutError:
            return TransientUnready(f"no answer within {self.timeout:g} seconds")
        except OSError as exc:
            return HardFailure(f"ssh command failed from unknown reason: {exc!r}")

        if output.returncode == SSH_CONNECTION_FAILED:
            return TransientUnready("ssh connection failed")

        # is-system-running exits non-zero for every state but "running",
        # the state itself is what matters.
        return classify_status(output.stdout.strip())

    async def wait_until_ready(
        self,
        attempts: int = PROBE_ATTEMPTS,
        interval: float = PROBE_INTERVAL,
    ) -> Ready:
        """Probe until the instance is ready.

        Args:
            attempts: Maximum number of probes (default: 20)
            interval: Seconds to sleep between two probes (default: 10)

        Returns:
            The Ready outcome of the successful probe

        Raises:
            ReadinessFailure: On the first hard failure, without further probes
            ReadinessTimeoutError: If every attempt was transiently unready

        """
        for attempt in range(1, attempts + 1):
            match await self.probe():
                case Ready() as ready:
                    log.info("System is %s after %d attempt(s)", ready.status, attempt)
                    return ready
                case HardFailure(reason):
                    raise ReadinessFailure(reason)
                case TransientUnready(reason):
                    log.info(
                        "System not ready (attempt %d/%d): %s",
                        attempt,
                        attempts,
                        reason,
                    )

            if attempt < attempts:
                await asyncio.sleep(interval)

        raise ReadinessTimeoutError(attempts)
