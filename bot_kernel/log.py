"""Logging setup for a supervisor process: one file per supervisor plus stdout."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%H:%M:%S"


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    supervisor: str = "bot",
) -> logging.Logger:
    """
    Configure the `bot_kernel` logger tree.

    The file handler always records debug output; `level` applies to the
    console. Calling this again replaces the handlers it installed before.
    """
    logger = logging.getLogger("bot_kernel")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        if getattr(handler, "_bot_kernel", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(formatter)
    console._bot_kernel = True
    logger.addHandler(console)

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
        path = Path(log_dir) / f"Supervisor-log-{supervisor}-{stamp}.txt"
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler._bot_kernel = True
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
