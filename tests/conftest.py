# tests/conftest.py

"""Shared pytest fixtures for all pipeline tests."""

import logging
from collections.abc import Generator

import pytest


@pytest.fixture(autouse=True)
def quiet_console() -> Generator[None, None, None]:
    """Keep handlers from earlier setup_logging calls off the test output."""
    root_logger = logging.getLogger("pellet_watch")
    saved = list(root_logger.handlers)
    root_logger.handlers.clear()
    yield
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers[:] = saved
