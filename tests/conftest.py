"""Shared fixtures."""

from collections.abc import Iterator

import pytest
from aioresponses import aioresponses as aioresponses_cls


@pytest.fixture
def aioresponses() -> Iterator[aioresponses_cls]:
    """Intercept every aiohttp request; unmatched requests fail."""
    with aioresponses_cls() as mocked:
        yield mocked
