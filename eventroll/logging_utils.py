from __future__ import annotations

import logging
from pathlib import Path

LOGGER_NAME = "eventroll"
LOGFILE_NAME = "eventroll.log"
_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def setup_logging(*, log_dir: Path | None = None, verbose: bool = True) -> logging.Logger:
    """
    Configure the ``eventroll`` logger for one CLI invocation.

    The console shows DEBUG and up (INFO and up when ``verbose`` is False).
    With ``log_dir`` set, every record is also appended to ``log_dir/eventroll.log``.
    Calling it again replaces the previous handlers, so upload and gallery
    commands run in the same process never log twice.
    """
    logger = get_logger()
    logger.setLevel(logging.DEBUG)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    fmt = logging.Formatter(_FORMAT)
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(fmt)
    logger.addHandler(console)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logfile = logging.FileHandler(log_dir / LOGFILE_NAME, encoding="utf-8")
        logfile.setLevel(logging.DEBUG)
        logfile.setFormatter(fmt)
        logger.addHandler(logfile)

    # Records never reach the root logger.
    logger.propagate = False
    return logger
