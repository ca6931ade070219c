"""Progress reporting and cooperative cancellation for long pixel reads."""

from __future__ import annotations

import threading
from typing import Callable, Optional

# Called with the fraction done (0..1); a truthy return asks the reader to stop.
ProgressCallback = Callable[[float], Optional[bool]]


class CancelToken:
    """Thread-safe cancellation token.

    Notes
    -----
    Cancellation is cooperative: readers check ``is_cancelled()`` between
    scanlines.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True

    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled
