"""
Logging setup shared by every rendering run.

Console output always; a per-run log file when a run id is given.
"""
import logging
import sys
from typing import Optional

from reelrender.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Marks handlers installed here so repeated calls replace them instead of stacking
_HANDLER_TAG = "_reelrender_handler"


def setup_logging(run_id: Optional[str] = None, log_level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger for a rendering run.

    Args:
        run_id: Optional run identifier. When set, logs are also written to
            LOGS_PATH/<run_id>.log.
        log_level: Level name (e.g. "INFO"). Defaults to settings.LOG_LEVEL.

    Returns:
        The configured root logger.
    """
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    setattr(console_handler, _HANDLER_TAG, True)
    root.addHandler(console_handler)

    if run_id:
        settings.LOGS_PATH.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.LOGS_PATH / f"{run_id}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_TAG, True)
        root.addHandler(file_handler)

    return root
