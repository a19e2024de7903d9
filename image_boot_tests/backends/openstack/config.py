"""Configuration for the OpenStack backend."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class OpenStackConfig(BaseSettings):
    """OpenStack credentials, read from the usual OS_ prefixed variables.

    When none of the required variables is set, images are booted locally
    with qemu instead.
    """

    model_config = SettingsConfigDict(env_prefix="OS_", extra="ignore")

    auth_url: str
    username: str
    password: SecretStr
    project_id: str
    user_domain_name: str = "Default"
    region_name: str | None = None
    interface: str = "public"
    flavor_name: str = "m1.small"
    network_id: str | None = None
