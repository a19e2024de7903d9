"""Configuration for the AWS backend."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AWSConfig(BaseSettings):
    """AWS credentials and placement, read from AWS_ prefixed variables.

    When none of the required variables is set, images are booted locally
    with qemu instead.
    """

    model_config = SettingsConfigDict(env_prefix="AWS_", extra="ignore")

    region: str
    access_key_id: SecretStr
    secret_access_key: SecretStr
    bucket: str
    instance_type: str = "t3.micro"
    arm_instance_type: str = "t4g.micro"
