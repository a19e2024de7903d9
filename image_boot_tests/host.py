"""Facts about the host the tests run on."""

import os
import platform
from pathlib import Path

KVM_DEVICE = Path("/dev/kvm")


def current_arch() -> str:
    """Return the host architecture the way test cases name it (e.g. x86_64)."""
    return platform.machine()


def kvm_available() -> bool:
    """Check whether hardware virtualization is available.

    Raises:
        OSError: If /dev/kvm cannot be inspected for another reason than
            not existing

    """
    try:
        os.stat(KVM_DEVICE)
    except FileNotFoundError:
        return False
    return True
