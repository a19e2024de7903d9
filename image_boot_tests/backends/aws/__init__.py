"""AWS backend module."""

from image_boot_tests.backends.aws.client import AMI, AWSClient
from image_boot_tests.backends.aws.config import AWSConfig
from image_boot_tests.backends.aws.manifest import aws_manifest

__all__ = ["AMI", "AWSClient", "AWSConfig", "aws_manifest"]
