"""Decoder backends and the format registry.

Each backend exposes the same small capability set (open, subimage access,
scanline reads, close) on top of a real image-I/O library:

- ``TiffDecoder``: TIFF/OME-TIFF through tifffile.
- ``PillowDecoder``: PNG, JPEG, BMP, GIF and friends through Pillow.
- ``NpyDecoder``: ``.npy`` arrays through a numpy memmap.

Backends are picked by ``decoder_for``: by file extension first, then by the
file signature. Library exceptions are translated into ``OpenFailedError``
(header stage) or ``ReadFailedError`` (pixel stage).

Conventions
-----------
- Pixel data is standardized to (depth, height, width, nchannels).
- ``read_scanline`` returns a (width, nchannels) array in the spec format.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, Type

import numpy as np
import tifffile as tif
from PIL import Image, UnidentifiedImageError

from lazyview.errors import OpenFailedError, ReadFailedError
from lazyview.image_spec import ImageSpec, Linearity

__all__ = [
    "ImageDecoder",
    "DecoderFactory",
    "NpyDecoder",
    "PillowDecoder",
    "TiffDecoder",
    "decoder_for",
    "register_decoder",
    "registered_decoders",
    "unregister_decoder",
]

_SIGNATURE_BYTES = 16


class ImageDecoder(Protocol):
    """Capability set every decoder backend provides."""

    def open(self, path: str, subimage: int = 0) -> ImageSpec:
        ...

    @property
    def subimage_count(self) -> int:
        ...

    def read_scanline(self, y: int, z: int = 0) -> np.ndarray:
        ...

    def close(self) -> None:
        ...


DecoderFactory = Callable[[str], ImageDecoder]


def _guess_linearity(dtype: np.dtype) -> Linearity:
    """Float data is scene-linear, 8-bit data is display-encoded sRGB."""
    dtype = np.dtype(dtype)
    if dtype.kind == "f":
        return Linearity.LINEAR
    if dtype == np.uint8:
        return Linearity.SRGB
    return Linearity.UNKNOWN


class _DecoderBase:
    """Shared bookkeeping for backends: sniffing, bounds checks, context use."""

    format_name = ""
    extensions: Tuple[str, ...] = ()
    signatures: Tuple[bytes, ...] = ()

    def __init__(self) -> None:
        self.path: Optional[str] = None
        self.spec: Optional[ImageSpec] = None
        self.current_subimage = 0
        self._slice: Optional[np.ndarray] = None
        self._slice_index = -1

    @classmethod
    def sniff(cls, header: bytes) -> bool:
        return any(header.startswith(sig) for sig in cls.signatures)

    @property
    def subimage_count(self) -> int:
        return 1

    def seek_subimage(self, index: int) -> ImageSpec:
        """Switch to another subimage and return its spec."""
        if self.path is None:
            raise OpenFailedError("decoder is not open")
        if index < 0 or index >= self.subimage_count:
            raise OpenFailedError(
                f"{self.path}: subimage {index} out of range (0..{self.subimage_count - 1})"
            )
        self._drop_slice()
        self.current_subimage = index
        self.spec = self._read_spec()
        return self.spec

    def read_scanline(self, y: int, z: int = 0) -> np.ndarray:
        if self.spec is None:
            raise ReadFailedError("decoder is not open")
        if not (0 <= y < self.spec.height and 0 <= z < self.spec.depth):
            raise ReadFailedError(f"{self.path}: scanline y={y} z={z} out of range")
        if self._slice_index != z:
            self._drop_slice()
            self._slice = self._decode_slice(z)
            self._slice_index = z
        return self._slice[y]

    def _drop_slice(self) -> None:
        self._slice = None
        self._slice_index = -1

    def _read_spec(self) -> ImageSpec:
        raise NotImplementedError

    def _decode_slice(self, z: int) -> np.ndarray:
        """Decode depth slice ``z`` as a (height, width, nchannels) array."""
        raise NotImplementedError

    def close(self) -> None:
        self._drop_slice()

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


# ---------------------------------------------------------------------------
# TIFF


def _tiff_layout(
    axes: str, shape: Sequence[int]
) -> Tuple[List[int], int, int, int, int]:
    """Return (axis order, depth, height, width, nchannels) plan for a series.

    Axis order puts every non-spatial, non-sample axis first (folded into
    depth), then Y, X, then sample/channel axes (folded into channels).
    """
    axes = axes.upper()
    if "Y" not in axes or "X" not in axes:
        raise OpenFailedError(f"unsupported TIFF axes {axes!r}")
    depth_axes = [i for i, ax in enumerate(axes) if ax not in "YXSC"]
    chan_axes = [i for i, ax in enumerate(axes) if ax in "SC"]
    order = depth_axes + [axes.index("Y"), axes.index("X")] + chan_axes
    depth = int(np.prod([shape[i] for i in depth_axes])) if depth_axes else 1
    nchannels = int(np.prod([shape[i] for i in chan_axes])) if chan_axes else 1
    return order, depth, int(shape[axes.index("Y")]), int(shape[axes.index("X")]), nchannels


def _ome_channel_names(ome_xml: Optional[str]) -> List[str]:
    if not ome_xml:
        return []
    try:
        root = ET.fromstring(ome_xml)
    except ET.ParseError:
        return []
    names = []
    for elem in root.iter():
        if elem.tag.endswith("}Channel") or elem.tag == "Channel":
            name = elem.get("Name")
            if name:
                names.append(name)
    return names


_TIFF_STRING_TAGS = (
    "ImageDescription",
    "Software",
    "DateTime",
    "Artist",
    "HostComputer",
    "Make",
    "Model",
    "Copyright",
    "DocumentName",
)
_TIFF_ENUM_TAGS = ("Compression", "PlanarConfiguration", "Orientation", "ResolutionUnit")
_TIFF_NUMBER_TAGS = ("XResolution", "YResolution")


class TiffDecoder(_DecoderBase):
    """TIFF/OME-TIFF reader; each tifffile series is one subimage."""

    format_name = "tiff"
    extensions = (".tif", ".tiff", ".btf", ".tf8")
    signatures = (b"II*\x00", b"MM\x00*", b"II+\x00", b"MM\x00+")

    def __init__(self) -> None:
        super().__init__()
        self._tf: Optional[tif.TiffFile] = None
        self._order: List[int] = []
        self._page_order: Optional[List[int]] = None
        self._full: Optional[np.ndarray] = None

    def open(self, path: str, subimage: int = 0) -> ImageSpec:
        self.close()
        try:
            self._tf = tif.TiffFile(str(path))
        except (OSError, ValueError, tif.TiffFileError) as exc:
            raise OpenFailedError(f"{exc}") from exc
        self.path = str(path)
        if not self._tf.series:
            self.close()
            raise OpenFailedError(f"{path}: TIFF file contains no image series")
        try:
            return self.seek_subimage(subimage)
        except OpenFailedError:
            self.close()
            raise

    @property
    def subimage_count(self) -> int:
        return len(self._tf.series) if self._tf is not None else 0

    def _read_spec(self) -> ImageSpec:
        series = self._tf.series[self.current_subimage]
        order, depth, height, width, nchannels = _tiff_layout(series.axes, series.shape)
        self._order = order
        self._full = None
        # One page per depth slice, with all depth axes leading: slices can be
        # decoded page by page.
        ndepth = sum(1 for ax in series.axes.upper() if ax not in "YXSC")
        if order[:ndepth] == list(range(ndepth)) and len(series) == depth:
            self._page_order = [i - ndepth for i in order[ndepth:]]
        else:
            self._page_order = None
        page = series.keyframe
        names = _ome_channel_names(self._tf.ome_metadata) if self._tf.is_ome else []
        spec = ImageSpec(
            width=width,
            height=height,
            depth=depth,
            nchannels=nchannels,
            format=series.dtype.name,
            channel_names=tuple(names) if len(names) == nchannels else (),
            tile_width=int(page.tilewidth) if page.is_tiled else 0,
            tile_height=int(page.tilelength) if page.is_tiled else 0,
            tile_depth=int(page.tiledepth) if page.is_tiled and depth > 1 else 0,
            linearity=_guess_linearity(series.dtype),
        )
        spec.add_attributes(self._page_attributes(page))
        return spec

    @staticmethod
    def _page_attributes(page) -> List[Tuple[str, object]]:
        items: List[Tuple[str, object]] = []
        tags = page.tags
        for name in _TIFF_STRING_TAGS:
            tag = tags.get(name)
            if tag is not None:
                items.append((name, tag.value))
        for name in _TIFF_NUMBER_TAGS:
            tag = tags.get(name)
            if tag is None:
                continue
            value = tag.value
            if isinstance(value, tuple) and len(value) == 2 and value[1]:
                value = float(value[0]) / float(value[1])
            items.append((name, value))
        for name in _TIFF_ENUM_TAGS:
            tag = tags.get(name)
            if tag is not None:
                value = tag.value
                items.append((name, value.name.lower() if hasattr(value, "name") else value))
        return items

    def _decode_slice(self, z: int) -> np.ndarray:
        series = self._tf.series[self.current_subimage]
        spec = self.spec
        slice_shape = (spec.height, spec.width, spec.nchannels)
        if self._page_order is not None:
            page_shape = tuple(series.shape)[len(series.shape) - len(self._page_order) :]
            arr = np.asarray(self._series_asarray(series, key=z)).reshape(page_shape)
            return np.transpose(arr, self._page_order).reshape(slice_shape)
        if self._full is None:
            arr = self._series_asarray(series)
            self._full = np.transpose(arr, self._order).reshape(spec.buffer_shape)
        return self._full[z]

    def _series_asarray(self, series, **kwargs) -> np.ndarray:
        try:
            return series.asarray(**kwargs)
        except Exception as exc:
            # Codec errors (zlib.error, imagecodecs) do not share a base class.
            raise ReadFailedError(f"{self.path}: {type(exc).__name__}: {exc}") from exc

    def close(self) -> None:
        super().close()
        self._full = None
        if self._tf is not None:
            self._tf.close()
            self._tf = None


# ---------------------------------------------------------------------------
# Pillow

# mode -> (convert-to mode or None, dtype, channel names)
_PIL_MODES = {
    "1": ("L", "uint8", ("Y",)),
    "L": (None, "uint8", ("Y",)),
    "LA": (None, "uint8", ("Y", "A")),
    "La": ("LA", "uint8", ("Y", "A")),
    "P": ("RGB", "uint8", ("R", "G", "B")),
    "PA": ("RGBA", "uint8", ("R", "G", "B", "A")),
    "RGB": (None, "uint8", ("R", "G", "B")),
    "RGBA": (None, "uint8", ("R", "G", "B", "A")),
    "RGBa": ("RGBA", "uint8", ("R", "G", "B", "A")),
    "RGBX": ("RGB", "uint8", ("R", "G", "B")),
    "CMYK": (None, "uint8", ("C", "M", "Y", "K")),
    "YCbCr": ("RGB", "uint8", ("R", "G", "B")),
    "LAB": ("RGB", "uint8", ("R", "G", "B")),
    "HSV": ("RGB", "uint8", ("R", "G", "B")),
    "I": (None, "int32", ("Y",)),
    "I;16": (None, "uint16", ("Y",)),
    "I;16L": (None, "uint16", ("Y",)),
    "I;16B": (None, "uint16", ("Y",)),
    "F": (None, "float32", ("Y",)),
}

_PIL_SKIP_INFO = {"icc_profile", "exif", "xmp", "transparency", "dpi", "gamma", "srgb"}


class PillowDecoder(_DecoderBase):
    """Reader for the raster formats Pillow understands; frames are subimages."""

    format_name = "pillow"
    extensions = (".png", ".jpg", ".jpeg", ".bmp", ".gif", ".webp", ".ppm", ".pgm", ".pbm", ".tga")
    signatures = (b"\x89PNG\r\n\x1a\n", b"\xff\xd8\xff", b"BM", b"GIF87a", b"GIF89a", b"RIFF")

    def __init__(self) -> None:
        super().__init__()
        self._image: Optional[Image.Image] = None
        self._convert: Optional[str] = None

    def open(self, path: str, subimage: int = 0) -> ImageSpec:
        self.close()
        try:
            self._image = Image.open(str(path))
        except (OSError, UnidentifiedImageError, ValueError) as exc:
            raise OpenFailedError(f"{exc}") from exc
        self.path = str(path)
        try:
            return self.seek_subimage(subimage)
        except OpenFailedError:
            self.close()
            raise

    @property
    def subimage_count(self) -> int:
        if self._image is None:
            return 0
        return int(getattr(self._image, "n_frames", 1))

    def _read_spec(self) -> ImageSpec:
        img = self._image
        try:
            img.seek(self.current_subimage)
        except EOFError as exc:
            raise OpenFailedError(f"{self.path}: no frame {self.current_subimage}") from exc
        mode = img.mode
        if mode == "P" and "transparency" in img.info:
            convert, fmt, names = _PIL_MODES["PA"]
        elif mode in _PIL_MODES:
            convert, fmt, names = _PIL_MODES[mode]
        else:
            raise OpenFailedError(f"{self.path}: unsupported image mode {mode!r}")
        self._convert = convert
        info = img.info
        if "srgb" in info:
            linearity, gamma = Linearity.SRGB, 1.0
        elif info.get("gamma"):
            # PNG gAMA stores the encoding exponent (0.45455 for a 2.2 display gamma).
            linearity, gamma = Linearity.GAMMA_CORRECTED, round(1.0 / float(info["gamma"]), 4)
        else:
            linearity, gamma = _guess_linearity(fmt), 1.0
        width, height = img.size
        spec = ImageSpec(
            width=int(width),
            height=int(height),
            nchannels=len(names),
            format=fmt,
            channel_names=names,
            linearity=linearity,
            gamma=gamma,
        )
        items: List[Tuple[str, object]] = [("FileFormat", img.format or "")]
        dpi = info.get("dpi")
        if isinstance(dpi, tuple) and len(dpi) == 2:
            items.append(("XResolution", float(dpi[0])))
            items.append(("YResolution", float(dpi[1])))
        for key, value in info.items():
            if key in _PIL_SKIP_INFO or isinstance(value, bytes):
                continue
            items.append((str(key), value))
        spec.add_attributes(items)
        return spec

    def _decode_slice(self, z: int) -> np.ndarray:
        img = self._image
        try:
            img.seek(self.current_subimage)
            img.load()
            if self._convert is not None:
                img = img.convert(self._convert)
            arr = np.asarray(img, dtype=self.spec.dtype)
        except Exception as exc:
            raise ReadFailedError(f"{self.path}: {type(exc).__name__}: {exc}") from exc
        spec = self.spec
        return arr.reshape(spec.height, spec.width, spec.nchannels)

    def close(self) -> None:
        super().close()
        if self._image is not None:
            self._image.close()
            self._image = None


# ---------------------------------------------------------------------------
# numpy


class NpyDecoder(_DecoderBase):
    """Reader for ``.npy`` arrays, memory-mapped so the header read is cheap.

    Shapes map as (H, W), (H, W, C) when the last axis has at most 4 entries,
    (D, H, W) otherwise, and (D, H, W, C).
    """

    format_name = "npy"
    extensions = (".npy",)
    signatures = (b"\x93NUMPY",)

    def __init__(self) -> None:
        super().__init__()
        self._array: Optional[np.ndarray] = None

    def open(self, path: str, subimage: int = 0) -> ImageSpec:
        self.close()
        try:
            arr = np.load(str(path), mmap_mode="r", allow_pickle=False)
        except (OSError, ValueError) as exc:
            raise OpenFailedError(f"{exc}") from exc
        if not isinstance(arr, np.ndarray) or arr.dtype.kind not in "biuf":
            raise OpenFailedError(f"{path}: not a numeric image array")
        if arr.ndim == 2:
            arr = arr[np.newaxis, :, :, np.newaxis]
        elif arr.ndim == 3:
            arr = arr[np.newaxis] if arr.shape[-1] <= 4 else arr[..., np.newaxis]
        elif arr.ndim != 4:
            raise OpenFailedError(f"{path}: unsupported array shape {arr.shape}")
        self._array = arr
        self.path = str(path)
        return self.seek_subimage(subimage)

    @property
    def subimage_count(self) -> int:
        return 1 if self._array is not None else 0

    def _read_spec(self) -> ImageSpec:
        depth, height, width, nchannels = self._array.shape
        fmt = "uint8" if self._array.dtype.kind == "b" else self._array.dtype.name
        return ImageSpec(
            width=int(width),
            height=int(height),
            depth=int(depth),
            nchannels=int(nchannels),
            format=fmt,
            linearity=_guess_linearity(fmt),
        )

    def read_scanline(self, y: int, z: int = 0) -> np.ndarray:
        if self.spec is None:
            raise ReadFailedError("decoder is not open")
        if not (0 <= y < self.spec.height and 0 <= z < self.spec.depth):
            raise ReadFailedError(f"{self.path}: scanline y={y} z={z} out of range")
        try:
            return np.asarray(self._array[z, y], dtype=self.spec.dtype)
        except (OSError, ValueError) as exc:
            raise ReadFailedError(f"{self.path}: {exc}") from exc

    def close(self) -> None:
        super().close()
        self._array = None


# ---------------------------------------------------------------------------
# Registry

_REGISTRY: List[Type[_DecoderBase]] = [TiffDecoder, PillowDecoder, NpyDecoder]


def register_decoder(cls: Type[_DecoderBase]) -> Type[_DecoderBase]:
    """Register a backend class; later registrations take priority.

    Usable as a class decorator.
    """
    if cls in _REGISTRY:
        _REGISTRY.remove(cls)
    _REGISTRY.append(cls)
    return cls


def unregister_decoder(cls: Type[_DecoderBase]) -> None:
    if cls in _REGISTRY:
        _REGISTRY.remove(cls)


def registered_decoders() -> List[Type[_DecoderBase]]:
    return list(_REGISTRY)


def _read_signature(path: str) -> bytes:
    try:
        with open(path, "rb") as fh:
            return fh.read(_SIGNATURE_BYTES)
    except OSError as exc:
        raise OpenFailedError(f"{exc}") from exc


def decoder_for(path: str) -> ImageDecoder:
    """Return an unopened decoder for ``path``.

    Raises
    ------
    OpenFailedError
        If the file cannot be read or no backend recognizes it.
    """
    ext = Path(path).suffix.lower()
    for cls in reversed(_REGISTRY):
        if ext and ext in cls.extensions:
            return cls()
    header = _read_signature(str(path))
    for cls in reversed(_REGISTRY):
        if cls.sniff(header):
            return cls()
    raise OpenFailedError(f'could not find a format reader for "{path}"')
