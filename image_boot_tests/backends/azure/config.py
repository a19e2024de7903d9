"""Configuration for the Azure backend."""

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AzureConfig(BaseSettings):
    """Azure service principal and placement, read from AZURE_ variables.

    The service principal needs to manage resources in the resource group
    and to write blobs into the storage container. When none of the required
    variables is set, images are booted locally with qemu instead.
    """

    model_config = SettingsConfigDict(env_prefix="AZURE_", extra="ignore")

    client_id: str
    client_secret: SecretStr
    tenant_id: str
    subscription_id: str
    resource_group: str
    location: str
    storage_account: str
    container_name: str
    vm_size: str = "Standard_B1s"
    login_url: str = "https://login.microsoftonline.com"
    management_url: str = "https://management.azure.com"
    storage_url: str | None = None

    @property
    def blob_service_url(self) -> str:
        """URL of the blob service of the storage account."""
        if self.storage_url is not None:
            return self.storage_url.rstrip("/")
        return f"https://{self.storage_account}.blob.core.windows.net"
