"""Test orchestrator for building and verifying every test case of a run."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from image_boot_tests.dispatcher import BootDispatcher
from image_boot_tests.exceptions import (
    CheckSkipped,
    CleanupError,
    ConfigurationError,
    ImageInfoMismatch,
    ImageTestError,
    ReadinessFailure,
    ReadinessTimeoutError,
)
from image_boot_tests.host import current_arch, kvm_available
from image_boot_tests.image_info import check_image_info
from image_boot_tests.models.result import CaseResult, CheckStatus, TestResult
from image_boot_tests.models.testcase import TestCase
from image_boot_tests.osbuild import run_osbuild
from image_boot_tests.resources import ResourceScope, temporary_directory
from image_boot_tests.settings import Settings
from image_boot_tests.testcase_loader import load_test_case

log = logging.getLogger(__name__)

TEMPORARY_PREFIX = "osbuild-image-tests-"


def check_status(exc: BaseException) -> CheckStatus:
    """Map the exception a check raised to the status it is reported with."""
    match exc:
        case CheckSkipped():
            return "skipped"
        case ReadinessTimeoutError():
            return "timeout"
        case ReadinessFailure() | ImageInfoMismatch():
            return "failure"
        case _:
            return "error"


@dataclass(frozen=True, kw_only=True)
class TestOrchestrator:
    """Builds test cases and runs their image-info and boot checks."""

    __test__ = False

    dispatcher: BootDispatcher
    settings: Settings

    async def run_tests(self, case_paths: Sequence[Path]) -> Sequence[CaseResult]:
        """Run all the given test cases.

        Args:
            case_paths: Test case files, one case each

        Returns:
            One case result per test case, in the order of case_paths

        Raises:
            ConfigurationError: If a test case asks for something that cannot
                exist, e.g. an unknown boot type

        """
        if not case_paths:
            log.info("No test cases provided")
            return []

        log.info("Running %d test case(s)...", len(case_paths))
        semaphore = asyncio.Semaphore(max(1, self.settings.max_parallel_cases))
        aborted = asyncio.Event()

        try:
            async with ResourceScope() as resources:
                # The osbuild store is shared by all cases of the run
                store = await temporary_directory(
                    resources, prefix=TEMPORARY_PREFIX, parent=self.settings.work_dir
                )
                tasks = [
                    asyncio.create_task(self._run_bounded(semaphore, aborted, path, store))
                    for path in case_paths
                ]
                try:
                    results = await asyncio.gather(*tasks)
                except BaseException:
                    # Cases still running unwind through their own scopes
                    for task in tasks:
                        task.cancel()
                    await asyncio.gather(*tasks, return_exceptions=True)
                    raise
        except CleanupError as e:
            log.error("Cannot remove the osbuild store: %s", e)

        log.info("Test execution completed")
        self._log_results(results)
        return results

    def _log_results(self, results: Sequence[CaseResult]) -> None:
        for result in results:
            for test_result in result.results:
                log.info(
                    "Check completed: case=%s check=%s status=%s duration=%.1fs",
                    result.case_id,
                    test_result.check,
                    test_result.status,
                    test_result.duration,
                )

    async def _run_bounded(
        self,
        semaphore: asyncio.Semaphore,
        aborted: asyncio.Event,
        path: Path,
        store: Path,
    ) -> CaseResult:
        """Run one case once a slot is free.

        Raises:
            ConfigurationError: Re-raised after marking the run as aborted, so
                cases waiting for a slot do not start

        """
        async with semaphore:
            if aborted.is_set():
                return _case_result(path.name, "skipped", time.monotonic(), "run aborted")
            try:
                return await self._run_case(path, store)
            except ConfigurationError:
                aborted.set()
                raise
            except Exception as e:
                log.error("Test case %s failed: %s", path.name, e, exc_info=e)
                return _case_result(path.name, "error", time.monotonic(), str(e))

    async def _run_case(self, path: Path, store: Path) -> CaseResult:
        """Load, build and check one test case."""
        case_id = path.name
        started = time.monotonic()

        try:
            test_case = await load_test_case(path)
        except OSError as e:
            log.warning("%s: cannot open test case: %s", case_id, e)
            return _case_result(case_id, "skipped", started, f"cannot open test case: {e}")
        except ValueError as e:
            log.error("%s: cannot decode test case: %s", case_id, e)
            return _case_result(case_id, "error", started, str(e))

        arch = current_arch()
        if test_case.compose_request.arch != arch:
            message = (
                f"the required arch is {test_case.compose_request.arch}, "
                f"the current arch is {arch}"
            )
            log.info("%s: %s", case_id, message)
            return _case_result(case_id, "skipped", started, message)

        results: list[TestResult] = []
        try:
            async with ResourceScope() as resources:
                output_directory = await temporary_directory(
                    resources, prefix=TEMPORARY_PREFIX, parent=self.settings.work_dir
                )
                results.extend(
                    await self._check_image(case_id, test_case, store, output_directory)
                )
        except CleanupError as e:
            results.append(
                TestResult(
                    check="case",
                    status="error",
                    duration=time.monotonic() - started,
                    message=str(e),
                    cleanup_errors=e.failures,
                )
            )

        return CaseResult(case_id=case_id, results=results)

    async def _check_image(
        self, case_id: str, test_case: TestCase, store: Path, output_directory: Path
    ) -> Sequence[TestResult]:
        """Build the image, then run the image-info and boot checks on it.

        The two checks are independent: each runs and is reported regardless
        of the outcome of the other one.
        """
        log.info("%s: building %s", case_id, test_case.compose_request.filename)
        build = await self._run_check(
            case_id,
            "build",
            run_osbuild,
            test_case.manifest,
            store,
            output_directory,
            self.settings.osbuild_command,
        )
        if build.status != "success":
            return [build]

        results = [build]
        image_path = output_directory / test_case.compose_request.filename

        if test_case.image_info is not None:
            results.append(
                await self._run_check(
                    case_id,
                    "image-info",
                    check_image_info,
                    image_path,
                    test_case.image_info,
                    self.settings.image_info_command,
                )
            )

        if test_case.boot is not None:
            results.append(
                await self._run_check(
                    case_id, "boot", self._check_boot, image_path, test_case.boot.type
                )
            )

        return results

    async def _check_boot(self, image_path: Path, selector: str) -> None:
        if current_arch() == "aarch64" and not kvm_available():
            raise CheckSkipped(
                "Running on aarch64 without KVM support, skipping the boot test."
            )
        await self.dispatcher.check_boot(image_path, selector)

    async def _run_check(
        self,
        case_id: str,
        check: str,
        run: Callable[..., Awaitable[object]],
        *args: Any,
    ) -> TestResult:
        """Run one check and turn its outcome into a result.

        Raises:
            ConfigurationError: Re-raised, it aborts the whole run

        """
        started = time.monotonic()
        try:
            await run(*args)
        except ConfigurationError:
            raise
        except CleanupError as e:
            log.error("%s: %s check passed but %s", case_id, check, e)
            return TestResult(
                check=check,
                status="error",
                duration=time.monotonic() - started,
                message=str(e),
                cleanup_errors=e.failures,
            )
        except Exception as e:
            status = check_status(e)
            if isinstance(e, ImageTestError):
                log.info("%s: %s check %s: %s", case_id, check, status, e)
            else:
                log.error("%s: %s check failed: %s", case_id, check, e, exc_info=e)
            return TestResult(
                check=check,
                status=status,
                duration=time.monotonic() - started,
                message=str(e),
                cleanup_errors=tuple(getattr(e, "__notes__", ())),
            )

        return TestResult(
            check=check, status="success", duration=time.monotonic() - started
        )


def _case_result(
    case_id: str, status: CheckStatus, started: float, message: str
) -> CaseResult:
    return CaseResult(
        case_id=case_id,
        results=[
            TestResult(
                check="case",
                status=status,
                duration=time.monotonic() - started,
                message=message,
            )
        ],
    )
