"""Pytest configuration and shared fixtures for libreimx500 tests."""

import os

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--capture-dir", action="store", default=None,
        help="Directory of raw output tensor dumps (*.bin) captured from a camera",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "capture: needs --capture-dir with real sensor dumps")


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--capture-dir"):
        skip_cap = pytest.mark.skip(reason="needs --capture-dir option to run")
        for item in items:
            if "capture" in item.keywords:
                item.add_marker(skip_cap)


@pytest.fixture
def capture_files(request):
    root = request.config.getoption("--capture-dir")
    files = sorted(
        os.path.join(root, name) for name in os.listdir(root) if name.endswith(".bin")
    )
    if not files:
        pytest.skip(f"No *.bin dumps in {root}")
    return files
