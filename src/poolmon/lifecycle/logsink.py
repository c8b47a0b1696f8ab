"""Log output setup for the poolmon daemon."""

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class ReopenableFileHandler(logging.FileHandler):
    """File handler that can reopen its file after external log rotation."""

    def reopen(self) -> None:
        self.acquire()
        try:
            if self.stream is not None:
                self.stream.flush()
                self.stream.close()
            self.stream = self._open()
        finally:
            self.release()


def setup_logging(log_file: Optional[str] = None, debug: bool = False) -> logging.Handler:
    """Route the poolmon logger to a file or stderr.

    Args:
        log_file: Log file path; None logs to stderr
        debug: Enable debug level output

    Returns:
        The installed handler
    """
    if log_file:
        handler: logging.Handler = ReopenableFileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger = logging.getLogger("poolmon")
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    return handler


def reopen_handler(handler: logging.Handler) -> None:
    """Reopen the handler's file if it has one."""
    if isinstance(handler, ReopenableFileHandler):
        handler.reopen()
