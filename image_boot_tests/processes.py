"""Helpers for running external commands."""

import asyncio
import contextlib
import logging

from image_boot_tests.exceptions import SetupError

log = logging.getLogger(__name__)


async def run_command(*argv: str, stdin: bytes | None = None) -> str:
    """Run a command to completion and return its stdout.

    Raises:
        SetupError: If the command exits with a non-zero status

    """
    log.debug("Running command: %s", " ".join(argv))
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await communicate(process, stdin)

    if process.returncode != 0:
        raise SetupError(
            f"{argv[0]} failed with exit code {process.returncode}: "
            f"{stderr.decode(errors='replace').strip()}"
        )

    return stdout.decode(errors="replace")


async def start_process(*argv: str) -> asyncio.subprocess.Process:
    """Start a long running process (a VM or a container) in the background."""
    log.info("Starting process: %s", " ".join(argv))
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        raise SetupError(f"cannot start {argv[0]}: {exc}") from exc


async def stop_process(
    process: asyncio.subprocess.Process,
    name: str,
    term_timeout: float = 10.0,
    kill_timeout: float = 5.0,
) -> None:
    """Stop a process started by start_process (SIGTERM, then SIGKILL).

    Raises:
        TimeoutError: If the process survives SIGKILL

    """
    if process.returncode is not None:
        log.debug("%s already exited with %s", name, process.returncode)
        return

    with contextlib.suppress(ProcessLookupError):
        process.terminate()

    try:
        await asyncio.wait_for(process.wait(), term_timeout)
        log.info("%s stopped", name)
        return
    except TimeoutError:
        log.warning("%s didn't respond to SIGTERM, force killing", name)

    with contextlib.suppress(ProcessLookupError):
        process.kill()

    await asyncio.wait_for(process.wait(), kill_timeout)
    log.warning("%s force killed", name)


async def communicate(
    process: asyncio.subprocess.Process,
    stdin: bytes | None = None,
    timeout: float | None = None,
) -> tuple[bytes, bytes]:
    """Exchange data with process until it exits.

    The process is killed and reaped when the wait is interrupted, by the
    timeout or by cancellation of the calling task.

    Raises:
        TimeoutError: If the process did not exit within timeout seconds

    """
    try:
        return await asyncio.wait_for(process.communicate(stdin), timeout)
    except BaseException:
        await kill_process(process)
        raise


async def kill_process(process: asyncio.subprocess.Process) -> None:
    """Kill a process that is still running and wait for it."""
    if process.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()
