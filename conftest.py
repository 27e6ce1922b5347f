# conftest.py
import os

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--run-optional",
        action="store_true",
        default=False,
        help="Run tests marked as optional (they need a Derby installation)",
    )
    parser.addoption(
        "--derby-home",
        action="store",
        default=os.environ.get("DERBY_HOME", ""),
        help="Derby installation used by optional tests, defaults to $DERBY_HOME",
    )


def pytest_collection_modifyitems(config, items):
    run_optional = config.getoption("--run-optional")
    keyword = config.getoption("keyword")  # Retrieves the value passed with -k

    for item in items:
        if "optional" not in item.keywords:
            continue
        if run_optional or (keyword and (keyword in item.name or keyword in item.nodeid)):
            # Do not skip if --run-optional is set or if the test matches the -k expression
            continue
        item.add_marker(pytest.mark.skip(reason="Optional test, use --run-optional to include"))
