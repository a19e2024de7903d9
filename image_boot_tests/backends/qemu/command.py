"""Builds the qemu command line booting an image."""

from collections.abc import Mapping, Sequence
from pathlib import Path

from image_boot_tests.backends.qemu.config import QemuConfig
from image_boot_tests.exceptions import SetupError

QEMU_BINARIES: Mapping[str, str] = {
    "x86_64": "qemu-system-x86_64",
    "aarch64": "qemu-system-aarch64",
    "ppc64le": "qemu-system-ppc64",
    "s390x": "qemu-system-s390x",
}

NIC_MODELS: Mapping[str, str] = {
    "s390x": "virtio",
}

# The guest's sshd becomes localhost:22 inside the network namespace
SSH_FORWARD = "user,hostfwd=tcp::22-:22"


def build_qemu_command(
    arch: str,
    config: QemuConfig,
    image_path: Path,
    seed_iso: Path,
    *,
    kvm: bool,
) -> Sequence[str]:
    """Return the argv booting image_path on the given host architecture.

    The image is booted with -snapshot, so it is never modified.

    Raises:
        SetupError: If the architecture cannot be booted with qemu

    """
    try:
        binary = QEMU_BINARIES[arch]
    except KeyError:
        raise SetupError(f"Booting {arch} images with qemu is not supported") from None

    command = [binary]

    if arch == "aarch64":
        command += ["-M", "virt", "-bios", str(config.aarch64_firmware), "-boot", "efi"]
    if arch in ("x86_64", "aarch64"):
        command += ["-cpu", "host" if kvm else "max"]

    command += [
        "-smp",
        str(config.cpus),
        "-m",
        str(config.memory_mb),
        "-snapshot",
        "-M",
        "accel=kvm:tcg" if kvm else "accel=tcg",
        "-cdrom",
        str(seed_iso),
        "-net",
        f"nic,model={NIC_MODELS.get(arch, 'rtl8139')}",
        "-net",
        SSH_FORWARD,
        "-nographic",
        str(image_path),
    ]
    return command
