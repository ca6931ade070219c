"""Render the viewer's current view to an array or an image file.

The rendered array is exactly what a viewer would paint: the current image's
first slice through the display transform with the viewer's channel view and
the image's exposure/gamma. Gray views come out as 2D arrays.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import numpy as np
from matplotlib import pyplot as plt

from lazyview.errors import InvalidStateError
from lazyview.logger import get_logger
from lazyview.viewer_state import ViewerState

LOGGER = get_logger(__name__)

__all__ = ["render_current_view", "save_current_view"]


def render_current_view(viewer: ViewerState, z: int = 0) -> np.ndarray:
    """Return the current view as uint8 (H, W) or (H, W, C) with C in {3, 4}.

    Raises
    ------
    InvalidStateError
        If there is no current image or its pixels are not resident.
    """
    rendered = viewer.display_pixels(out_depth="uint8", z=z)
    if rendered is None:
        record = viewer.cur()
        name = record.name if record is not None else "<none>"
        raise InvalidStateError(f"{name}: nothing to render")
    nchannels = rendered.shape[-1]
    if nchannels == 1:
        return rendered[..., 0]
    if nchannels == 2:
        # Gray + alpha
        gray, alpha = rendered[..., 0], rendered[..., 1]
        return np.stack([gray, gray, gray, alpha], axis=-1)
    if nchannels > 4:
        return rendered[..., :3]
    return rendered


def save_current_view(
    viewer: ViewerState,
    path: Union[str, Path],
    z: int = 0,
    cmap: Optional[str] = "gray",
) -> Path:
    """Write the current view to ``path``; the format follows the extension."""
    path = Path(path)
    image = render_current_view(viewer, z=z)
    if image.ndim == 2:
        plt.imsave(str(path), image, cmap=cmap, vmin=0, vmax=255)
    else:
        plt.imsave(str(path), image)
    record = viewer.cur()
    LOGGER.info("Saved view to %s", path, extra={"image": record.name if record else "-"})
    return path
