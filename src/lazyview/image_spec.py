"""Structural image header description shared by decoders, the store and reports.

Conventions
-----------
- ``format`` is a numpy dtype name ("uint8", "float32", ...); all channels
  share one format.
- Pixel buffers are laid out as (depth, height, width, nchannels).
- Tile dimensions are zero for untiled images.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

__all__ = [
    "AttrType",
    "Attribute",
    "ImageSpec",
    "Linearity",
    "default_channel_names",
    "typestring",
]

# Short type names used in reports, keyed by numpy dtype name.
_TYPESTRINGS = {
    "uint8": "uint8",
    "int8": "int8",
    "uint16": "uint16",
    "int16": "int16",
    "uint32": "uint",
    "int32": "int",
    "uint64": "uint64",
    "int64": "int64",
    "float16": "half",
    "float32": "float",
    "float64": "double",
    "bool": "uint8",
}


class Linearity(enum.Enum):
    """Color encoding declared by the file."""

    UNKNOWN = "unknown"
    LINEAR = "linear"
    GAMMA_CORRECTED = "gamma"
    SRGB = "sRGB"


class AttrType(enum.Enum):
    STRING = "string"
    FLOAT = "float"
    INT = "int"
    UINT = "uint"


@dataclass(frozen=True)
class Attribute:
    """Auxiliary key/typed-value header attribute."""

    name: str
    type: AttrType
    value: Any

    @classmethod
    def from_value(cls, name: str, value: Any) -> Optional["Attribute"]:
        """Infer the attribute type from a Python/numpy value.

        Returns None for values with no scalar representation (tuples, arrays).
        """
        if isinstance(value, bytes):
            try:
                value = value.decode("utf-8").rstrip("\x00")
            except UnicodeDecodeError:
                return None
        if isinstance(value, str):
            return cls(name, AttrType.STRING, value)
        if isinstance(value, (bool, np.bool_)):
            return cls(name, AttrType.INT, int(value))
        if isinstance(value, (int, np.integer)):
            if int(value) < 0 or isinstance(value, np.signedinteger):
                return cls(name, AttrType.INT, int(value))
            return cls(name, AttrType.UINT, int(value))
        if isinstance(value, (float, np.floating)):
            return cls(name, AttrType.FLOAT, float(value))
        if isinstance(value, enum.Enum):
            return cls.from_value(name, value.value)
        return None

    def format_value(self) -> str:
        """Render the value the way reports print it."""
        if self.type is AttrType.STRING:
            return f'"{self.value}"'
        if self.type is AttrType.FLOAT:
            return f"{self.value:g}"
        return f"{int(self.value):d}"


def default_channel_names(nchannels: int) -> Tuple[str, ...]:
    """Return conventional channel names for a channel count."""
    if nchannels == 1:
        return ("Y",)
    if nchannels == 2:
        return ("Y", "A")
    if nchannels == 3:
        return ("R", "G", "B")
    if nchannels == 4:
        return ("R", "G", "B", "A")
    return tuple(f"channel{i}" for i in range(nchannels))


def typestring(fmt: str) -> str:
    """Return the short report name for a numpy dtype name."""
    name = np.dtype(fmt).name
    return _TYPESTRINGS.get(name, name)


@dataclass
class ImageSpec:
    """Header description of one (sub)image.

    Parameters
    ----------
    width, height, depth : int
        Data window dimensions; depth is 1 for flat images.
    nchannels : int
        Number of channels per pixel.
    format : str
        numpy dtype name shared by all channels.
    channel_names : tuple[str, ...]
        Ordered channel names; defaults from ``nchannels`` when empty.
    x, y, z : int
        Origin of the data window.
    full_width, full_height, full_depth : int
        Uncropped (display window) size; defaults to the data size.
    tile_width, tile_height, tile_depth : int
        Tile size, zero when untiled.
    linearity : Linearity
        Declared color encoding.
    gamma : float
        Encoding gamma for ``Linearity.GAMMA_CORRECTED``.
    extra_attribs : list[Attribute]
        Ordered auxiliary attributes.
    """

    width: int
    height: int
    nchannels: int
    format: str = "uint8"
    depth: int = 1
    channel_names: Tuple[str, ...] = ()
    x: int = 0
    y: int = 0
    z: int = 0
    full_width: int = 0
    full_height: int = 0
    full_depth: int = 0
    tile_width: int = 0
    tile_height: int = 0
    tile_depth: int = 0
    linearity: Linearity = Linearity.UNKNOWN
    gamma: float = 1.0
    extra_attribs: List[Attribute] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.format = np.dtype(self.format).name
        if not self.channel_names:
            self.channel_names = default_channel_names(self.nchannels)
        self.channel_names = tuple(self.channel_names)
        if len(self.channel_names) != self.nchannels:
            raise ValueError(
                f"{len(self.channel_names)} channel names for {self.nchannels} channels"
            )
        if self.depth < 1:
            self.depth = 1
        if not self.full_width:
            self.full_width = self.width
        if not self.full_height:
            self.full_height = self.height
        if not self.full_depth:
            self.full_depth = self.depth

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.format)

    @property
    def pixel_bytes(self) -> int:
        return self.nchannels * self.dtype.itemsize

    @property
    def scanline_bytes(self) -> int:
        return self.width * self.pixel_bytes

    @property
    def image_bytes(self) -> int:
        return self.scanline_bytes * self.height * self.depth

    @property
    def buffer_shape(self) -> Tuple[int, int, int, int]:
        return (self.depth, self.height, self.width, self.nchannels)

    @property
    def typestring(self) -> str:
        return typestring(self.format)

    @property
    def is_tiled(self) -> bool:
        return self.tile_width > 0

    @property
    def has_origin(self) -> bool:
        return bool(self.x or self.y or self.z)

    @property
    def has_crop(self) -> bool:
        return (
            self.full_width != self.width
            or self.full_height != self.height
            or self.full_depth != self.depth
        )

    def attribute(self, name: str) -> Optional[Attribute]:
        """Return the first attribute with a matching name (case-insensitive)."""
        lowered = name.lower()
        for attr in self.extra_attribs:
            if attr.name.lower() == lowered:
                return attr
        return None

    def add_attributes(self, items: Sequence[Tuple[str, Any]]) -> None:
        """Append typed attributes, skipping values with no scalar form."""
        for name, value in items:
            attr = Attribute.from_value(name, value)
            if attr is not None:
                self.extra_attribs.append(attr)
