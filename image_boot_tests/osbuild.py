"""Building images with osbuild."""

import asyncio
import json
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from image_boot_tests.exceptions import BuildError
from image_boot_tests.processes import communicate

log = logging.getLogger(__name__)

DEFAULT_OSBUILD_COMMAND = ("osbuild",)


def build_osbuild_command(
    store: Path, output_directory: Path, command: Sequence[str] = DEFAULT_OSBUILD_COMMAND
) -> list[str]:
    """Build the osbuild command line reading the manifest from stdin."""
    return [
        *command,
        "--store",
        str(store),
        "--output-directory",
        str(output_directory),
        "--json",
        "-",
    ]


def pretty_output(output: str) -> str:
    """Indent osbuild's JSON output, or return it unchanged if it is not JSON."""
    try:
        return json.dumps(json.loads(output), indent=4)
    except json.JSONDecodeError:
        return output


async def run_osbuild(
    manifest: Any,
    store: Path,
    output_directory: Path,
    command: Sequence[str] = DEFAULT_OSBUILD_COMMAND,
) -> None:
    """Build the manifest into output_directory.

    Args:
        manifest: osbuild manifest, serialized to JSON on stdin
        store: osbuild object store shared by all test cases of a run
        output_directory: Directory receiving the built image
        command: osbuild executable and leading arguments

    Raises:
        BuildError: If osbuild cannot be started or fails

    """
    argv = build_osbuild_command(store, output_directory, command)
    log.info("Building image into %s", output_directory)
    log.debug("Running command: %s", " ".join(argv))

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise BuildError(f"osbuild cannot start: {e}") from e

    stdout, _ = await communicate(process, json.dumps(manifest).encode())

    if process.returncode != 0:
        log.error("osbuild output:\n%s", pretty_output(stdout.decode(errors="replace")))
        raise BuildError(f"running osbuild failed: exit code {process.returncode}")

    log.info("Image built into %s", output_directory)
