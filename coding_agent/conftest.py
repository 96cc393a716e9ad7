# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import pytest

# Opt-in flag for each marker whose tests are skipped by default
OPT_IN_MARKERS = {
    "uses_llm": "--run-llm",
    "slow": "--run-slow",
}


def pytest_addoption(parser):
    parser.addoption(
        "--run-llm",
        action="store_true",
        default=False,
        help="Run tests that call the configured model endpoint",
    )
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run full workflow runs against the model endpoint",
    )


def pytest_collection_modifyitems(config, items):
    for marker, option in OPT_IN_MARKERS.items():
        if config.getoption(option):
            continue
        skip = pytest.mark.skip(reason=f"need {option} option to run")
        for item in items:
            if marker in item.keywords:
                item.add_marker(skip)
