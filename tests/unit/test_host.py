"""Tests for host facts."""

from pathlib import Path
from unittest.mock import patch

import pytest

from image_boot_tests.host import kvm_available


def test_kvm_available_when_device_exists(tmp_path: Path) -> None:
    device = tmp_path / "kvm"
    device.touch()

    with patch("image_boot_tests.host.KVM_DEVICE", device):
        assert kvm_available()


def test_kvm_not_available_without_device(tmp_path: Path) -> None:
    with patch("image_boot_tests.host.KVM_DEVICE", tmp_path / "missing"):
        assert not kvm_available()


def test_kvm_other_errors_propagate() -> None:
    with (
        patch("image_boot_tests.host.os.stat", side_effect=PermissionError("denied")),
        pytest.raises(PermissionError),
    ):
        kvm_available()


def test_kvm_unreadable_device_path_propagates(tmp_path: Path) -> None:
    """A path through a regular file is not a missing device."""
    regular_file = tmp_path / "dev"
    regular_file.touch()

    with (
        patch("image_boot_tests.host.KVM_DEVICE", regular_file / "kvm"),
        pytest.raises(NotADirectoryError),
    ):
        kvm_available()
