"""Load image test cases from JSON files."""

import asyncio
import json
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from image_boot_tests.models.testcase import TestCase


async def load_test_case(path: Path) -> TestCase:
    """Load and validate one test case file.

    Args:
        path: Path to the JSON test case

    Returns:
        The parsed test case

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not valid JSON or does not match the schema

    """
    content = await asyncio.to_thread(path.read_text)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e

    try:
        return TestCase.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid test case schema in {path}: {e}") from e


def list_test_cases(directory: Path) -> Sequence[Path]:
    """List every test case file of a directory, sorted by name.

    Raises:
        OSError: If the directory cannot be listed

    """
    return sorted(path for path in directory.iterdir() if path.is_file())
