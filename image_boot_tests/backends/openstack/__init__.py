"""OpenStack backend module."""

from image_boot_tests.backends.openstack.client import OpenStackClient
from image_boot_tests.backends.openstack.config import OpenStackConfig
from image_boot_tests.backends.openstack.manifest import openstack_manifest

__all__ = ["OpenStackClient", "OpenStackConfig", "openstack_manifest"]
