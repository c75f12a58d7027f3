import pytest

pytest_plugins = ["loopvault.testing.simulation"]


def pytest_configure(config):
    config.addinivalue_line("markers", "scenario: end-to-end vault scenario")


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "scenario" in item.nodeid:
            item.add_marker(pytest.mark.scenario)
