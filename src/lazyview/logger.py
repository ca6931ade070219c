"""Package logger with a per-image context field.

Records may carry ``extra={"image": name}``; the console line shows ``-``
for records without one.
"""

from __future__ import annotations

import logging

_LOGGER_NAME = "lazyview"
_FORMAT = "[%(asctime)s] [%(levelname)s] %(module)s image=%(image)s: %(message)s"


class _ImageNameFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "image"):
            record.image = "-"
        return True


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(_ImageNameFilter())
    return handler


def get_logger(name: str) -> logging.Logger:
    """Return the ``lazyview.<name>`` child logger.

    The first call installs the console handler on the package logger.

    Parameters
    ----------
    name : str
        Module name, typically ``__name__``.
    """
    base = logging.getLogger(_LOGGER_NAME)
    if not base.handlers:
        base.setLevel(logging.INFO)
        base.addHandler(_console_handler())
        base.propagate = False
    if name.startswith(f"{_LOGGER_NAME}."):
        name = name[len(_LOGGER_NAME) + 1 :]
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def set_level(level: int) -> None:
    """Set the package logger threshold (the CLI silences warnings with ERROR)."""
    logging.getLogger(_LOGGER_NAME).setLevel(level)
