import logging
import sys
from pathlib import Path

import pytest

# src/ for the package, tests/ for helpers such as nettrace_writer
TESTS_DIR = Path(__file__).resolve().parent
SRC_PATH = TESTS_DIR.parent / "src"
for path in (SRC_PATH, TESTS_DIR):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))


@pytest.fixture(autouse=True)
def _reset_deadtrace_logger():
    # cli.main() binds a handler to whatever stderr is current; drop it before capture closes
    yield
    logger = logging.getLogger("deadtrace")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
