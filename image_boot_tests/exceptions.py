"""Exceptions raised while building and verifying images."""

from collections.abc import Sequence


class ImageTestError(Exception):
    """Base class for all image test errors."""


class ConfigurationError(ImageTestError):
    """The test case asks for something that cannot exist.

    Not recoverable at runtime: the whole run is aborted.
    """


class SetupError(ImageTestError):
    """Acquiring a backend resource failed (namespace, process, upload, boot)."""


class CredentialsError(SetupError):
    """Cloud credentials are only partially present in the environment."""


class BuildError(ImageTestError):
    """osbuild failed to build the manifest of a test case."""


class ImageInfoError(ImageTestError):
    """image-info could not inspect the built image."""


class ImageInfoMismatch(ImageTestError):
    """The inspected image differs from the expected image info."""

    def __init__(self, differences: Sequence[str]) -> None:
        self.differences = tuple(differences)
        shown = ", ".join(self.differences[:10])
        more = len(self.differences) - 10
        if more > 0:
            shown += f" and {more} more"
        super().__init__(f"image info differs from the expected one at: {shown}")


class ReadinessFailure(ImageTestError):
    """The booted system reported a state it will not recover from."""


class ReadinessTimeoutError(ImageTestError):
    """The booted system did not become ready within the retry budget."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"boot readiness check failed, {attempts} attempts were made"
        )


class CleanupError(ImageTestError):
    """Releasing one or more resources failed after the check itself passed."""

    def __init__(self, failures: Sequence[str]) -> None:
        self.failures = tuple(failures)
        super().__init__(
            "resources could have been leaked: " + "; ".join(self.failures)
        )


class CheckSkipped(ImageTestError):
    """The check cannot run on this host and is skipped, not failed."""
