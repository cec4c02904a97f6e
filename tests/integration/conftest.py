"""
Pytest configuration for integration tests.

These tests run against the real SideShift and CoinGecko APIs and require:
- Network connectivity
- SIDESHIFT_API_KEY in the environment for the quote test
"""

import pytest


def pytest_configure(config):
    """Configure pytest for integration tests."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (runs against real services)"
    )


def pytest_collection_modifyitems(config, items):
    """Add integration marker to all tests in this directory."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
