"""Runtime configuration from environment variables."""

from collections.abc import Sequence
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from image_boot_tests.image_info import DEFAULT_IMAGE_INFO_COMMAND
from image_boot_tests.osbuild import DEFAULT_OSBUILD_COMMAND
from image_boot_tests.readiness import PROBE_ATTEMPTS, PROBE_INTERVAL, PROBE_TIMEOUT
from image_boot_tests.ssh import DEFAULT_SSH_USER

TESTS_DATA_DIR = Path("/usr/share/tests/osbuild-composer")


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with the
    IMAGE_TESTS_ prefix, e.g. IMAGE_TESTS_DISABLE_LOCAL_BOOT=true.
    Command-valued settings are given as JSON lists.
    """

    model_config = SettingsConfigDict(env_prefix="IMAGE_TESTS_", extra="ignore")

    # Paths
    work_dir: Path = Path("/var/lib/osbuild-composer-tests")
    test_cases_dir: Path = TESTS_DATA_DIR / "manifests"
    private_key: Path = TESTS_DATA_DIR / "keyring" / "id_rsa"

    # External tools
    osbuild_command: Sequence[str] = DEFAULT_OSBUILD_COMMAND
    image_info_command: Sequence[str] = DEFAULT_IMAGE_INFO_COMMAND

    # Readiness probing
    ssh_user: str = DEFAULT_SSH_USER
    probe_timeout: float = PROBE_TIMEOUT
    probe_attempts: int = PROBE_ATTEMPTS
    probe_interval: float = PROBE_INTERVAL

    # Scheduling
    disable_local_boot: bool = False
    max_parallel_cases: int = 1

    @property
    def public_key(self) -> Path:
        """Public half of the test key pair, next to the private key."""
        return self.private_key.with_name(self.private_key.name + ".pub")
