import logging
import sys
from typing import Union

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(loglevel: Union[int, str] = logging.INFO, fmt: str = DEFAULT_FORMAT):
    """Installs a single stream handler with the default formatter on the root logger."""
    if isinstance(loglevel, str):
        loglevel = loglevel.upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(loglevel)

    # third party loggers log through the root handler
    for name in list(logging.root.manager.loggerDict.keys()):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True
