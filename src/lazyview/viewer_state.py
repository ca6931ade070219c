"""Viewer navigation state over an image store.

``ViewerState`` is the GUI-free half of an interactive viewer: which image is
current, which was viewed before it, the zoom level and the channel view.
Widgets call into it and redraw from ``display_pixels()``.

Notes
-----
Zoom is kept internally as a magnification scale (1.0 = 1:1). The public
``zoom`` value is signed: scales >= 1 are reported as-is, scales < 1 as
``-1/scale`` (so -2 means "half size").
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from lazyview import display_transform as dt
from lazyview.config import DEFAULT_CONFIG, AppConfig
from lazyview.display_transform import FULL_COLOR, LUMINANCE, channel_view_name
from lazyview.errors import InvalidStateError
from lazyview.image_record import ImageRecord
from lazyview.image_store import ImageStore
from lazyview.logger import get_logger
from lazyview.progress import ProgressCallback

LOGGER = get_logger(__name__)

__all__ = [
    "CHANNEL_RED",
    "CHANNEL_GREEN",
    "CHANNEL_BLUE",
    "CHANNEL_ALPHA",
    "ViewerState",
]

CHANNEL_RED = 0
CHANNEL_GREEN = 1
CHANNEL_BLUE = 2
CHANNEL_ALPHA = 3


class ViewerState:
    """Current-image, zoom and channel-view state for an image sequence.

    Parameters
    ----------
    store : ImageStore, optional
        Store holding the image sequence; a fresh one is created if omitted.
    config : AppConfig, optional
        Display step sizes and zoom bounds.
    progress_callback : callable, optional
        Passed to pixel loads triggered by navigation.
    """

    def __init__(
        self,
        store: Optional[ImageStore] = None,
        config: Optional[AppConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.store = store if store is not None else ImageStore(config=self.config.store)
        self.progress_callback = progress_callback
        self.current_index = -1
        self.last_viewed_index = -1
        self.channel_view = FULL_COLOR
        self._scale = 1.0

    # -- images -------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.store)

    def add_image(self, filename: str, get_spec_now: bool = True) -> ImageRecord:
        """Register an image without changing the current index."""
        return self.store.register(filename, load_spec_now=get_spec_now)

    def cur(self) -> Optional[ImageRecord]:
        """Return the current record, or None when nothing is shown."""
        if 0 <= self.current_index < len(self.store):
            return self.store[self.current_index]
        return None

    def current_image(self, new_index: int) -> bool:
        """Make ``new_index`` current and load its pixels.

        Returns False when the pixel load failed; the index changes anyway
        so the broken image can be shown, and the message stays on the
        record for ``take_error()``.

        Raises
        ------
        InvalidStateError
            If ``new_index`` is out of range.
        """
        count = len(self.store)
        if not (0 <= new_index < count):
            raise InvalidStateError(f"image index {new_index} out of range (0..{count - 1})")
        if self.current_index >= 0 and self.current_index != new_index:
            self.last_viewed_index = self.current_index
        self.current_index = new_index
        record = self.store[new_index]
        ok = self.store.ensure_pixels(record, progress_callback=self.progress_callback)
        self._fit_channel_view(record)
        if not ok:
            LOGGER.info("Showing image without pixels", extra={"image": record.name})
        return ok

    def next_image(self) -> bool:
        count = len(self.store)
        if count == 0:
            return False
        return self.current_image((self.current_index + 1) % count)

    def prev_image(self) -> bool:
        count = len(self.store)
        if count == 0:
            return False
        if self.current_index < 0:
            return self.current_image(count - 1)
        return self.current_image((self.current_index - 1) % count)

    def toggle_image(self) -> bool:
        """Swap with the most recently viewed image."""
        if not (0 <= self.last_viewed_index < len(self.store)):
            return False
        return self.current_image(self.last_viewed_index)

    def reload(self) -> bool:
        """Re-read the current image from disk, even if it is resident."""
        record = self.cur()
        if record is None:
            return False
        ok = self.store.ensure_pixels(record, force=True, progress_callback=self.progress_callback)
        self._fit_channel_view(record)
        return ok

    def close_image(self, index: Optional[int] = None) -> None:
        """Remove an image (the current one by default) from the sequence.

        The current index moves to the previous image, to the new first
        image when the first one was closed, or to -1 when none remain.
        """
        if index is None:
            index = self.current_index
        count = len(self.store)
        if not (0 <= index < count):
            raise InvalidStateError(f"image index {index} out of range (0..{count - 1})")
        self.store.remove(self.store[index])
        if self.last_viewed_index == index:
            self.last_viewed_index = -1
        elif self.last_viewed_index > index:
            self.last_viewed_index -= 1
        if len(self.store) == 0:
            self.current_index = -1
            self.last_viewed_index = -1
            return
        if index == self.current_index:
            self.current_index = -1
            self.current_image(max(index - 1, 0))
        elif index < self.current_index:
            self.current_index -= 1
        if self.last_viewed_index == self.current_index:
            self.last_viewed_index = -1

    # -- zoom ---------------------------------------------------------------

    @property
    def scale(self) -> float:
        """Magnification factor (2.0 = twice as large, 0.5 = half)."""
        return self._scale

    @property
    def zoom(self) -> float:
        """Signed zoom: positive magnifies, negative minifies."""
        if self._scale >= 1.0:
            return self._scale
        return -1.0 / self._scale

    def set_zoom(self, zoom: float) -> float:
        """Set the zoom; positive values are scales, negative values minify."""
        zoom = float(zoom)
        if zoom == 0.0:
            raise InvalidStateError("zoom must be non-zero")
        scale = zoom if zoom > 0 else 1.0 / -zoom
        cfg = self.config.zoom
        self._scale = min(max(scale, cfg.min_scale), cfg.max_scale)
        return self.zoom

    def zoom_in(self) -> float:
        return self.set_zoom(self._scale * self.config.zoom.step)

    def zoom_out(self) -> float:
        return self.set_zoom(self._scale / self.config.zoom.step)

    def normal_size(self) -> float:
        return self.set_zoom(1.0)

    def fit_to_window(self, width: int, height: int) -> float:
        """Pick the scale that fits the current image inside a window."""
        record = self.cur()
        if record is None or not record.spec_valid or width <= 0 or height <= 0:
            return self.zoom
        spec = record.spec
        return self.set_zoom(min(width / spec.width, height / spec.height))

    # -- channels -----------------------------------------------------------

    def _nchannels(self) -> int:
        record = self.cur()
        if record is None or not record.spec_valid:
            return 0
        return record.spec.nchannels

    def _fit_channel_view(self, record: ImageRecord) -> None:
        nchannels = record.spec.nchannels if record.spec_valid else 0
        if self.channel_view >= nchannels:
            self.channel_view = FULL_COLOR

    def view_channel(self, channel: int) -> int:
        """Show full color, luminance or one channel as gray.

        Raises
        ------
        InvalidStateError
            If ``channel`` is not a channel of the current image.
        """
        if channel not in (FULL_COLOR, LUMINANCE):
            nchannels = self._nchannels()
            if channel < 0 or channel >= nchannels:
                raise InvalidStateError(f"channel {channel} out of range (0..{nchannels - 1})")
        self.channel_view = channel
        return self.channel_view

    def view_channel_full(self) -> int:
        return self.view_channel(FULL_COLOR)

    def view_channel_red(self) -> int:
        return self.view_channel(CHANNEL_RED)

    def view_channel_green(self) -> int:
        return self.view_channel(CHANNEL_GREEN)

    def view_channel_blue(self) -> int:
        return self.view_channel(CHANNEL_BLUE)

    def view_channel_alpha(self) -> int:
        return self.view_channel(CHANNEL_ALPHA)

    def view_channel_luminance(self) -> int:
        return self.view_channel(LUMINANCE)

    def _channel_cycle(self) -> list:
        return [FULL_COLOR] + list(range(self._nchannels())) + [LUMINANCE]

    def view_channel_next(self) -> int:
        """Step full color -> channel 0 .. n-1 -> luminance -> full color."""
        cycle = self._channel_cycle()
        pos = cycle.index(self.channel_view) if self.channel_view in cycle else 0
        self.channel_view = cycle[(pos + 1) % len(cycle)]
        return self.channel_view

    def view_channel_prev(self) -> int:
        cycle = self._channel_cycle()
        pos = cycle.index(self.channel_view) if self.channel_view in cycle else 0
        self.channel_view = cycle[(pos - 1) % len(cycle)]
        return self.channel_view

    # -- exposure / gamma on the current image ------------------------------

    def _adjust(self, fn) -> Optional[float]:
        record = self.cur()
        if record is None:
            return None
        return fn(record, self.config.display)

    def gamma_plus(self) -> Optional[float]:
        return self._adjust(dt.gamma_plus)

    def gamma_minus(self) -> Optional[float]:
        return self._adjust(dt.gamma_minus)

    def exposure_plus_tenth_stop(self) -> Optional[float]:
        return self._adjust(dt.exposure_plus_tenth_stop)

    def exposure_minus_tenth_stop(self) -> Optional[float]:
        return self._adjust(dt.exposure_minus_tenth_stop)

    def exposure_plus_half_stop(self) -> Optional[float]:
        return self._adjust(dt.exposure_plus_half_stop)

    def exposure_minus_half_stop(self) -> Optional[float]:
        return self._adjust(dt.exposure_minus_half_stop)

    # -- output -------------------------------------------------------------

    def display_pixels(self, out_depth: str = "uint8", z: int = 0) -> Optional[np.ndarray]:
        """Transform slice ``z`` of the current image for display.

        Returns None when there is no current image or its pixels are not
        resident (e.g. a broken file).
        """
        record = self.cur()
        if record is None or not record.pixels_valid:
            return None
        spec = record.spec
        if not (0 <= z < spec.depth):
            raise InvalidStateError(f"{record.name}: slice {z} out of range (0..{spec.depth - 1})")
        return dt.apply_display_transform(
            record.pixels[z],
            channel_view=self.channel_view,
            exposure=record.exposure,
            gamma=record.gamma,
            linearity=spec.linearity,
            spec_gamma=spec.gamma,
            out_depth=out_depth,
        )

    def status_text(self) -> str:
        """One-line description of the current view for a status bar."""
        record = self.cur()
        if record is None:
            return "No image"
        parts = [f"{record.name} ({self.current_index + 1} of {len(self.store)})"]
        if record.broken:
            parts.append("broken")
        elif record.spec_valid:
            spec = record.spec
            size = f"{spec.width}x{spec.height}"
            if spec.depth > 1:
                size += f"x{spec.depth}"
            parts.append(f"{size}, {spec.nchannels} channel {spec.typestring}")
            if record.subimage_count > 1:
                parts.append(f"subimage {record.current_subimage + 1} of {record.subimage_count}")
        zoom = self.zoom
        parts.append(f"zoom {zoom:g}:1" if zoom >= 1 else f"zoom 1:{-zoom:g}")
        parts.append(f"exp {record.exposure:+.1f}")
        parts.append(f"gam {record.gamma:.2f}")
        names = record.spec.channel_names if record.spec_valid else None
        parts.append(channel_view_name(self.channel_view, names))
        return "  ".join(parts)
