"""Azure backend module."""

from image_boot_tests.backends.azure.client import AzureClient, AzureImage, AzureInstance
from image_boot_tests.backends.azure.config import AzureConfig
from image_boot_tests.backends.azure.manifest import azure_manifest

__all__ = ["AzureClient", "AzureConfig", "AzureImage", "AzureInstance", "azure_manifest"]
