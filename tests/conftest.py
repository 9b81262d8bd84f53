import logging

import pytest

from assetbin.logging import get_logger
from assetbin.reporting import set_reporter, set_verbosity


@pytest.fixture(autouse=True)
def _reset_reporting():
    yield
    set_reporter(None)
    set_verbosity(0)
    logger = get_logger()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
