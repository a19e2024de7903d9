"""Tests for backend loading module."""

import pytest

from image_boot_tests.backends.aws import aws_manifest
from image_boot_tests.backends.loading import BackendNotFoundError, load_backend_manifest
from image_boot_tests.backends.nspawn import nspawn_extract_manifest
from image_boot_tests.backends.qemu import qemu_manifest
from image_boot_tests.exceptions import ConfigurationError


def test_load_backend_manifest_returns_manifest() -> None:
    """Loads backend manifest by key."""
    assert load_backend_manifest("qemu") is qemu_manifest
    assert load_backend_manifest("nspawn-extract") is nspawn_extract_manifest
    assert load_backend_manifest("aws") is aws_manifest


def test_only_qemu_boots_a_local_vm() -> None:
    assert qemu_manifest.local_vm
    assert not nspawn_extract_manifest.local_vm
    assert not aws_manifest.local_vm


def test_load_backend_manifest_raises_for_unknown_backend() -> None:
    """Raises BackendNotFoundError, a configuration error, for unknown keys."""
    with pytest.raises(BackendNotFoundError) as exc_info:
        load_backend_manifest("vmware")

    assert isinstance(exc_info.value, ConfigurationError)
    assert "vmware" in str(exc_info.value)
    assert "Available boot types" in str(exc_info.value)
    assert "openstack" in str(exc_info.value)
