"""Pytest configuration for integration tests."""


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end to end reconcile flows over the fake cloud")
