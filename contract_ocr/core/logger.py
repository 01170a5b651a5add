# contract_ocr/core/logger.py
import logging
import sys

from contract_ocr.core.config import CONFIG

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that flood INFO with per-request noise
QUIET_LOGGERS = ("pymongo", "aiohttp.access", "PIL")


def _configure(level: str) -> logging.Logger:
    root = logging.getLogger("contract_ocr")
    if root.handlers:
        return root

    root.setLevel(level.upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return root


_logger = _configure(CONFIG.LOG_LEVEL)


def get_logger(name: str | None = None) -> logging.Logger:
    """get_logger("pipeline") -> the contract_ocr.pipeline child logger."""
    return _logger.getChild(name) if name else _logger
