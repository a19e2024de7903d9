"""Configuration for the systemd-nspawn backends."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class NspawnConfig(BaseSettings):
    """Configuration for the nspawn backends, IMAGE_TESTS_NSPAWN_ prefixed."""

    model_config = SettingsConfigDict(env_prefix="IMAGE_TESTS_NSPAWN_", extra="ignore")

    binary: str = "systemd-nspawn"
