# app_logger.py
"""
A small wrapper around the standard library `logging` module.
All parts of the program import `logger` from here, so we have a single
source of truth for log configuration.

Nothing is written to stdout/stderr: curses owns the terminal.  Records go
to an in-memory ring buffer (shown by the log view) and, when enabled on
the command line, to a log file.
"""

import logging
from collections import deque
from typing import Deque, Optional

# ----------------------------------------------------------------------
# 1. The application logger
# ----------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

logger = logging.getLogger("ScaleClient")   # use a dedicated namespace
logger.setLevel(logging.INFO)
logger.propagate = False               # prevent propagation to the root logger

# ----------------------------------------------------------------------
# 2. In-memory handler - stores the last N log records for the UI
# ----------------------------------------------------------------------
MAX_LOG_RECORDS = 200


class MemoryHandler(logging.Handler):
    """
    Simple handler that keeps the newest N formatted log strings in a
    deque.  The UI can read `handler.buffer` at any time.
    """
    def __init__(self, capacity: int = MAX_LOG_RECORDS):
        super().__init__()
        self.capacity = capacity
        self.buffer: Deque[str] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        msg = self.format(record)
        self.buffer.append(msg)


formatter = logging.Formatter(LOG_FORMAT)

memory_handler = MemoryHandler()
memory_handler.setFormatter(formatter)
logger.addHandler(memory_handler)

# Export the buffer so the view can read it without importing the whole logger.
log_buffer = memory_handler.buffer

_file_handler: Optional[logging.FileHandler] = None


# ----------------------------------------------------------------------
# 3. Runtime configuration from the command line options
# ----------------------------------------------------------------------
def configure_logging(options) -> None:
    """
    Apply ``options`` (an ``AppOptions``): level, and an optional file
    handler.  Calling it again replaces the previous file handler.
    """
    global _file_handler

    level = logging.DEBUG if options.debug else logging.INFO
    logger.setLevel(level)

    bleak_logger = logging.getLogger("bleak")
    if _file_handler is not None:
        logger.removeHandler(_file_handler)
        bleak_logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None

    if options.log_output != "file":
        return

    _file_handler = logging.FileHandler(options.log_file, encoding="utf-8")
    _file_handler.setLevel(logging.DEBUG)      # capture everything
    _file_handler.setFormatter(formatter)
    logger.addHandler(_file_handler)

    if options.debug:
        # bleak's own chatter is only interesting when debugging
        bleak_logger.setLevel(logging.DEBUG)
        bleak_logger.addHandler(_file_handler)
