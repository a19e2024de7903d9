"""Comparing the metadata of a built image with the expected one."""

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from image_boot_tests.exceptions import ImageInfoError, ImageInfoMismatch
from image_boot_tests.processes import communicate

log = logging.getLogger(__name__)

DEFAULT_IMAGE_INFO_COMMAND = ("/usr/libexec/osbuild-composer-test/image-info",)


def diff_documents(expected: Any, actual: Any, path: str = "$") -> list[str]:
    """Return the JSON paths at which two decoded documents differ.

    Objects are compared key by key and arrays element by element; a missing
    key or element is reported at its own path.
    """
    if isinstance(expected, dict) and isinstance(actual, dict):
        differences: list[str] = []
        for key in sorted(expected.keys() | actual.keys()):
            child = f"{path}.{key}"
            if key not in expected or key not in actual:
                differences.append(child)
            else:
                differences.extend(diff_documents(expected[key], actual[key], child))
        return differences

    if isinstance(expected, list) and isinstance(actual, list):
        differences = []
        for index in range(max(len(expected), len(actual))):
            child = f"{path}[{index}]"
            if index >= len(expected) or index >= len(actual):
                differences.append(child)
            else:
                differences.extend(
                    diff_documents(expected[index], actual[index], child)
                )
        return differences

    # bool is an int in Python but not in JSON
    if type(expected) is not type(actual) and not (
        isinstance(expected, int | float)
        and isinstance(actual, int | float)
        and not isinstance(expected, bool)
        and not isinstance(actual, bool)
    ):
        return [path]

    return [] if expected == actual else [path]


async def run_image_info(
    image_path: Path, command: Sequence[str] = DEFAULT_IMAGE_INFO_COMMAND
) -> Any:
    """Run image-info on an image and return its decoded output.

    Raises:
        ImageInfoError: If image-info cannot start, fails or prints no JSON

    """
    argv = [*command, str(image_path)]
    log.debug("Running command: %s", " ".join(argv))

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ImageInfoError(f"image-info cannot start: {e}") from e

    stdout, stderr = await communicate(process)

    if process.returncode != 0:
        raise ImageInfoError(
            f"running image-info failed with exit code {process.returncode}: "
            f"{stderr.decode(errors='replace').strip()}"
        )

    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ImageInfoError(f"decoding image-info output failed: {e}") from e


async def check_image_info(
    image_path: Path,
    expected: Any,
    command: Sequence[str] = DEFAULT_IMAGE_INFO_COMMAND,
) -> None:
    """Check that image-info reports exactly the expected document.

    Args:
        image_path: Built image to inspect
        expected: Decoded expected image-info document
        command: image-info executable and leading arguments

    Raises:
        ImageInfoError: If image-info could not inspect the image
        ImageInfoMismatch: If the reported document differs

    """
    actual = await run_image_info(image_path, command)

    differences = diff_documents(expected, actual)
    if differences:
        log.info("image-info of %s differs at %d path(s)", image_path, len(differences))
        raise ImageInfoMismatch(differences)

    log.info("image-info of %s matches the expected one", image_path)
