"""Pytest configuration for stacknotify tests."""

import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Keep structlog on its default, unconfigured pipeline between tests."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s, integration=5s, unless a test sets its own."""
    for item in items:
        if item.get_closest_marker("timeout"):
            continue
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))
