import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_qs_logger():
    """Drop handlers bound to a previous test's captured stderr or tmp dir."""
    yield
    base = logging.getLogger("qs")
    for h in list(base.handlers):
        base.removeHandler(h)
        h.close()
