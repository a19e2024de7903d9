"""Models for test execution results."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

CheckStatus = Literal["success", "failure", "timeout", "error", "skipped"]


@dataclass(frozen=True, kw_only=True)
class TestResult:
    """Result of a single check run against one test case.

    ``check`` names the step (``case``, ``build``, ``image-info`` or ``boot``);
    the caller knows which test case it belongs to.
    """

    __test__ = False

    check: str
    status: CheckStatus
    duration: float
    message: str | None = None
    cleanup_errors: Sequence[str] = ()


@dataclass(frozen=True, kw_only=True)
class CaseResult:
    """Result container for one test case."""

    case_id: str
    results: Sequence[TestResult]
