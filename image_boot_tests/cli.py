"""CLI entry point for the image build and boot tests."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from image_boot_tests.dispatcher import BootDispatcher
from image_boot_tests.exceptions import ConfigurationError
from image_boot_tests.models.result import CaseResult
from image_boot_tests.orchestrator import TestOrchestrator
from image_boot_tests.settings import Settings
from image_boot_tests.testcase_loader import list_test_cases

STATUS_SYMBOLS = {
    "success": "✅",
    "failure": "❌",
    "error": "❗",
    "timeout": "⏱️",
    "skipped": "⏭️",
}

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2


def log_results_summary(log: logging.Logger, case_results: Sequence[CaseResult]) -> None:
    """Log a formatted summary of check results."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for case_result in case_results:
        for test_result in case_result.results:
            symbol = STATUS_SYMBOLS.get(test_result.status, "?")
            log.info(
                "%s %s [%s]: %s (%.2fs)",
                symbol,
                case_result.case_id,
                test_result.check,
                test_result.status,
                test_result.duration,
            )
            if test_result.message:
                log.info("  Message: %s", test_result.message)
            for cleanup_error in test_result.cleanup_errors:
                log.info("  Cleanup: %s", cleanup_error)


def format_output(case_results: Sequence[CaseResult]) -> dict[str, Any]:
    """Format case results for JSON output."""
    all_results: list[dict[str, Any]] = []
    for case_result in case_results:
        for test_result in case_result.results:
            all_results.append(
                {
                    "case": case_result.case_id,
                    "check": test_result.check,
                    "status": test_result.status,
                    "duration": test_result.duration,
                    "message": test_result.message,
                    "cleanup_errors": list(test_result.cleanup_errors),
                }
            )

    return {
        "total": len(all_results),
        "passed": sum(1 for r in all_results if r["status"] == "success"),
        "failed": sum(1 for r in all_results if r["status"] == "failure"),
        "errors": sum(1 for r in all_results if r["status"] == "error"),
        "timeouts": sum(1 for r in all_results if r["status"] == "timeout"),
        "skipped": sum(1 for r in all_results if r["status"] == "skipped"),
        "results": all_results,
    }


async def run(settings: Settings, cases: Sequence[Path] = ()) -> int:
    """Run the image tests and return exit code."""
    log = logging.getLogger("image_boot_tests")

    if not cases:
        log.info("Listing test cases in %s", settings.test_cases_dir)
        try:
            cases = list_test_cases(settings.test_cases_dir)
        except OSError as e:
            log.error("Cannot list test cases: %s", e)
            return EXIT_FAILURE

    if not cases:
        log.info("No test cases found")
        print(json.dumps(format_output([])))
        return EXIT_SUCCESS

    orchestrator = TestOrchestrator(
        dispatcher=BootDispatcher(settings=settings), settings=settings
    )
    try:
        case_results = await orchestrator.run_tests(cases)
    except ConfigurationError as e:
        log.error("Invalid test configuration: %s", e)
        return EXIT_CONFIGURATION_ERROR

    log_results_summary(log, case_results)

    output = format_output(case_results)
    print(json.dumps(output, indent=2))

    has_failures = any(
        result.status in {"failure", "error", "timeout"}
        for case_result in case_results
        for result in case_result.results
    )

    return EXIT_FAILURE if has_failures else EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        description="Build osbuild image test cases, inspect and boot the images"
    )
    parser.add_argument(
        "cases",
        nargs="*",
        type=Path,
        metavar="CASE",
        help="Test case files to run (default: every file of the test cases directory)",
    )
    parser.add_argument(
        "--disable-local-boot",
        action="store_true",
        default=None,
        help="Do not boot images locally using qemu (clouds are not affected)",
    )
    parser.add_argument(
        "--test-cases-dir",
        type=Path,
        help="Directory listing the default test cases",
    )
    parser.add_argument(
        "--work-dir",
        type=Path,
        help="Directory for the osbuild store and the build outputs",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug messages",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    overrides = {
        name: value
        for name, value in (
            ("disable_local_boot", args.disable_local_boot),
            ("test_cases_dir", args.test_cases_dir),
            ("work_dir", args.work_dir),
        )
        if value is not None
    }
    settings = Settings(**overrides)

    exit_code = asyncio.run(run(settings, args.cases))
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
