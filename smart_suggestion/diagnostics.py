"""
Diagnostics - Optional append-only debug log shared by every process
"""

import logging
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "smart_suggestion"
LOG_FORMAT = "%(asctime)s [%(process)d] %(levelname)s %(name)s: %(message)s"

_handler: Optional[logging.Handler] = None


def configure(debug: bool = False, log_file: Union[str, Path, None] = None) -> logging.Logger:
    """
    Route the package's log records.

    With debug on, records are appended to log_file; otherwise they are
    discarded. The interactive terminal never sees them. Calling this again
    replaces the previous handler.
    """
    global _handler

    root = logging.getLogger(LOGGER_NAME)
    if _handler is not None:
        root.removeHandler(_handler)
        _handler.close()
        _handler = None

    if debug and log_file:
        path = Path(log_file).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError:
            handler = logging.NullHandler()
        else:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.setLevel(logging.DEBUG)
    else:
        handler = logging.NullHandler()
        root.setLevel(logging.WARNING)

    # A NullHandler also stops logging's last-resort stderr output
    root.addHandler(handler)
    _handler = handler
    return root
