"""Exception types raised by decoders, the image store and the viewer state."""

from __future__ import annotations

__all__ = [
    "ImageError",
    "OpenFailedError",
    "ReadFailedError",
    "InvalidStateError",
]


class ImageError(Exception):
    """Base class for image lifecycle errors."""


class OpenFailedError(ImageError):
    """The file could not be opened or identified (missing, unsupported, bad header)."""


class ReadFailedError(ImageError):
    """The header was read but decoding pixel data failed part way through."""


class InvalidStateError(ImageError, ValueError):
    """A call was made out of order or with an out-of-range index.

    Raised before any record state is touched.
    """
