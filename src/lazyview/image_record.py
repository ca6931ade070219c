"""Per-file image state: residency, buffers, display settings and the last error.

A record moves through an explicit residency state instead of a set of
independent flags::

    IGNORANT --header read--> SPEC_KNOWN --pixel read--> PIXELS_RESIDENT
        |                        ^                            |
        +--open failure--> BROKEN|<----------- close ---------+

BROKEN is left only through a forced reload. Thumbnail residency is tracked
separately and is dropped together with the pixels.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from lazyview.errors import InvalidStateError
from lazyview.image_spec import ImageSpec

__all__ = ["ImageRecord", "ResidencyState"]


class ResidencyState(enum.Enum):
    IGNORANT = "ignorant"
    SPEC_KNOWN = "spec_known"
    PIXELS_RESIDENT = "pixels_resident"
    BROKEN = "broken"


# Allowed transitions; a forced reload may start again from any state.
_TRANSITIONS = {
    ResidencyState.IGNORANT: {ResidencyState.SPEC_KNOWN, ResidencyState.BROKEN},
    ResidencyState.SPEC_KNOWN: {
        ResidencyState.SPEC_KNOWN,
        ResidencyState.PIXELS_RESIDENT,
        ResidencyState.BROKEN,
        ResidencyState.IGNORANT,
    },
    ResidencyState.PIXELS_RESIDENT: {
        ResidencyState.SPEC_KNOWN,
        ResidencyState.PIXELS_RESIDENT,
        ResidencyState.BROKEN,
        ResidencyState.IGNORANT,
    },
    ResidencyState.BROKEN: {ResidencyState.IGNORANT},
}


@dataclass(eq=False)
class ImageRecord:
    """State holder for one registered image file.

    Parameters
    ----------
    name : str
        Path of the file; fixed for the lifetime of the record.
    gamma : float
        Display gamma; 1.0 means no extra curve.
    exposure : float
        Display exposure in stops.

    Notes
    -----
    Buffers are owned by the ``ImageStore`` that created the record; only the
    store changes ``state``, ``spec``, ``pixels`` and ``thumbnail``.
    """

    name: str
    gamma: float = 1.0
    exposure: float = 0.0
    state: ResidencyState = field(default=ResidencyState.IGNORANT, init=False)
    spec: Optional[ImageSpec] = field(default=None, init=False, repr=False)
    pixels: Optional[np.ndarray] = field(default=None, init=False, repr=False)
    thumbnail: Optional[np.ndarray] = field(default=None, init=False, repr=False)
    current_subimage: int = field(default=0, init=False)
    subimage_count: int = field(default=0, init=False)
    last_error: Optional[str] = field(default=None, init=False, repr=False)
    lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def __setattr__(self, key, value) -> None:
        if key == "name" and "name" in self.__dict__:
            raise AttributeError("ImageRecord.name is immutable")
        super().__setattr__(key, value)

    @property
    def spec_valid(self) -> bool:
        return self.state in (ResidencyState.SPEC_KNOWN, ResidencyState.PIXELS_RESIDENT)

    @property
    def pixels_valid(self) -> bool:
        return self.state is ResidencyState.PIXELS_RESIDENT

    @property
    def broken(self) -> bool:
        return self.state is ResidencyState.BROKEN

    @property
    def thumbnail_valid(self) -> bool:
        return self.thumbnail is not None

    @property
    def has_error(self) -> bool:
        """True when an error message is waiting; does not clear it."""
        return self.last_error is not None

    def take_error(self) -> Optional[str]:
        """Return the last error message and clear it."""
        message = self.last_error
        self.last_error = None
        return message

    def set_error(self, message: str) -> None:
        self.last_error = message

    @property
    def nbytes(self) -> int:
        """Bytes held by resident buffers."""
        total = 0
        if self.pixels is not None:
            total += int(self.pixels.nbytes)
        if self.thumbnail is not None:
            total += int(self.thumbnail.nbytes)
        return total

    # -- state transitions (called by ImageStore) --------------------------

    def _transition(self, new_state: ResidencyState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidStateError(
                f"{self.name}: illegal transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def _mark_spec(self, spec: ImageSpec, subimage: int, subimage_count: int) -> None:
        self._drop_buffers()
        self._transition(ResidencyState.SPEC_KNOWN)
        self.spec = spec
        self.current_subimage = subimage
        self.subimage_count = subimage_count

    def _mark_pixels(self, pixels: np.ndarray) -> None:
        if self.spec is None:
            raise InvalidStateError(f"{self.name}: pixels without a spec")
        self._transition(ResidencyState.PIXELS_RESIDENT)
        self.pixels = pixels

    def _mark_broken(self, message: str) -> None:
        self._drop_buffers()
        self._transition(ResidencyState.BROKEN)
        self.spec = None
        self.current_subimage = 0
        self.subimage_count = 0
        self.last_error = message

    def _mark_ignorant(self) -> None:
        self._drop_buffers()
        self._transition(ResidencyState.IGNORANT)
        self.spec = None
        self.current_subimage = 0
        self.subimage_count = 0

    def _release_pixels(self) -> None:
        """Drop pixel and thumbnail buffers, keeping the spec."""
        self._drop_buffers()
        if self.state is ResidencyState.PIXELS_RESIDENT:
            self._transition(ResidencyState.SPEC_KNOWN)

    def _drop_buffers(self) -> None:
        self.pixels = None
        self.thumbnail = None
