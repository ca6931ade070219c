"""Display transform: stored pixels -> displayed intensities.

The chain is non-destructive and pure; stored buffers are never modified.

1. Normalize to 0..1 (integer formats divide by the format maximum).
2. Select channels (full color, one channel as gray, or luminance).
3. Decode the declared encoding to linear light (sRGB curve, power curve).
4. Apply exposure as a ``2 ** stops`` gain.
5. Clamp and re-encode with the declared curve.
6. Apply the user's display gamma as ``value ** (1 / gamma)``.

With zero exposure and unit gamma the chain reproduces the normalized input.
The module also hosts the per-image gamma/exposure increment helpers.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from lazyview.config import DEFAULT_CONFIG, DisplayConfig
from lazyview.errors import InvalidStateError
from lazyview.image_spec import Linearity

__all__ = [
    "FULL_COLOR",
    "LUMINANCE",
    "LUMINANCE_WEIGHTS",
    "apply_display_transform",
    "channel_view_name",
    "downsample_mean_pool",
    "exposure_minus_half_stop",
    "exposure_minus_tenth_stop",
    "exposure_plus_half_stop",
    "exposure_plus_tenth_stop",
    "gamma_minus",
    "gamma_plus",
    "linear_to_srgb",
    "luminance",
    "normalize_pixels",
    "select_channels",
    "srgb_to_linear",
]

FULL_COLOR = -1
LUMINANCE = -2

# Rec. 709 luma weights for R, G, B.
LUMINANCE_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float32)


def channel_view_name(channel_view: int, channel_names=None) -> str:
    """Human-readable label for a channel view mode."""
    if channel_view == FULL_COLOR:
        return "RGB"
    if channel_view == LUMINANCE:
        return "Luminance"
    if channel_names is not None and 0 <= channel_view < len(channel_names):
        return str(channel_names[channel_view])
    return f"channel {channel_view}"


def normalize_pixels(pixels: np.ndarray) -> np.ndarray:
    """Convert stored values to float32, integers scaled to 0..1."""
    arr = np.asarray(pixels)
    if arr.dtype.kind in "iu":
        return arr.astype(np.float32) / np.float32(np.iinfo(arr.dtype).max)
    if arr.dtype.kind == "b":
        return arr.astype(np.float32)
    return arr.astype(np.float32, copy=False)


def luminance(values: np.ndarray) -> np.ndarray:
    """Weighted RGB sum with a trailing single channel; gray input passes through."""
    if values.shape[-1] < 3:
        return values[..., :1]
    return (values[..., :3] @ LUMINANCE_WEIGHTS)[..., np.newaxis]


def select_channels(values: np.ndarray, channel_view: int) -> np.ndarray:
    """Pick the channels shown for ``channel_view`` (last axis is channels).

    Raises
    ------
    InvalidStateError
        For a channel index outside the pixel's channel range.
    """
    if channel_view == FULL_COLOR:
        return values
    if channel_view == LUMINANCE:
        return luminance(values)
    nchannels = values.shape[-1]
    if channel_view < 0 or channel_view >= nchannels:
        raise InvalidStateError(f"channel {channel_view} out of range (0..{nchannels - 1})")
    return values[..., channel_view : channel_view + 1]


def srgb_to_linear(values: np.ndarray) -> np.ndarray:
    values = np.clip(values, 0.0, 1.0)
    return np.where(
        values <= 0.04045,
        values / 12.92,
        np.power((values + 0.055) / 1.055, 2.4),
    ).astype(np.float32)


def linear_to_srgb(values: np.ndarray) -> np.ndarray:
    values = np.clip(values, 0.0, 1.0)
    return np.where(
        values <= 0.0031308,
        values * 12.92,
        1.055 * np.power(values, 1.0 / 2.4) - 0.055,
    ).astype(np.float32)


def _to_linear(values: np.ndarray, linearity: Linearity, spec_gamma: float) -> np.ndarray:
    if linearity is Linearity.SRGB:
        return srgb_to_linear(values)
    if linearity is Linearity.GAMMA_CORRECTED and spec_gamma > 0 and spec_gamma != 1.0:
        return np.power(np.clip(values, 0.0, None), spec_gamma)
    return values


def _from_linear(values: np.ndarray, linearity: Linearity, spec_gamma: float) -> np.ndarray:
    if linearity is Linearity.SRGB:
        return linear_to_srgb(values)
    values = np.clip(values, 0.0, 1.0)
    if linearity is Linearity.GAMMA_CORRECTED and spec_gamma > 0 and spec_gamma != 1.0:
        return np.power(values, 1.0 / spec_gamma)
    return values


def apply_display_transform(
    pixels: np.ndarray,
    channel_view: int = FULL_COLOR,
    exposure: float = 0.0,
    gamma: float = 1.0,
    linearity: Linearity = Linearity.UNKNOWN,
    spec_gamma: float = 1.0,
    out_depth: str = "float",
) -> np.ndarray:
    """Map stored pixels to displayed intensities.

    The declared linearity only matters when exposure is non-zero: values are
    decoded to linear light (sRGB curve or ``spec_gamma`` power), scaled and
    re-encoded with the same curve. The user gamma is always the plain
    ``x ** (1/gamma)`` on the encoded values, for every linearity.

    Parameters
    ----------
    pixels : numpy.ndarray
        Stored values with channels on the last axis (a scanline, a frame or
        a full buffer).
    channel_view : int
        ``FULL_COLOR``, ``LUMINANCE`` or a channel index shown as gray.
    exposure : float
        Gain in stops applied in linear light.
    gamma : float
        Display gamma; values other than 1.0 apply ``x ** (1/gamma)``.
    linearity : Linearity
        Encoding declared by the image spec.
    spec_gamma : float
        Encoding exponent for ``Linearity.GAMMA_CORRECTED``.
    out_depth : {"float", "uint8"}
        float32 in 0..1, or uint8 in 0..255.

    Returns
    -------
    numpy.ndarray
        Same leading shape as ``pixels``; the channel axis has one entry for
        gray views.
    """
    if out_depth not in {"float", "uint8"}:
        raise ValueError(f"Invalid out_depth: {out_depth}")
    if gamma <= 0:
        raise ValueError(f"gamma must be positive, got {gamma}")
    values = select_channels(normalize_pixels(pixels), channel_view)
    if exposure != 0.0:
        values = _to_linear(values, linearity, spec_gamma) * np.float32(2.0 ** exposure)
        values = _from_linear(values, linearity, spec_gamma)
    else:
        values = np.clip(values, 0.0, 1.0)
    if gamma != 1.0:
        values = np.power(values, 1.0 / gamma)
    values = values.astype(np.float32, copy=False)
    if out_depth == "uint8":
        return np.round(values * 255.0).astype(np.uint8)
    return values


def downsample_mean_pool(frame: np.ndarray, factor: int) -> np.ndarray:
    """Downsample a (Y, X[, C]) frame using mean pooling.

    Parameters
    ----------
    frame : numpy.ndarray
        Image array, rows first.
    factor : int
        Downsample factor (e.g., 2, 4, 8).

    Returns
    -------
    numpy.ndarray
        Downsampled frame with mean pooling applied (float32).
    """
    factor = int(max(1, factor))
    if factor == 1:
        return frame
    h, w = frame.shape[:2]
    h_trim = (h // factor) * factor
    w_trim = (w // factor) * factor
    if h_trim == 0 or w_trim == 0:
        return frame
    trimmed = frame[:h_trim, :w_trim]
    pooled = trimmed.reshape(
        (h_trim // factor, factor, w_trim // factor, factor) + frame.shape[2:]
    ).mean(axis=(1, 3), dtype=np.float32)
    return pooled


# -- per-image display control increments --------------------------------


def _config(config: Optional[DisplayConfig]) -> DisplayConfig:
    return config or DEFAULT_CONFIG.display


def _set_gamma(image, value: float, config: DisplayConfig) -> float:
    image.gamma = max(config.min_gamma, float(value))
    return image.gamma


def gamma_plus(image, config: Optional[DisplayConfig] = None) -> float:
    """Raise the image's display gamma by one step; returns the new value."""
    cfg = _config(config)
    return _set_gamma(image, image.gamma + cfg.gamma_step, cfg)


def gamma_minus(image, config: Optional[DisplayConfig] = None) -> float:
    """Lower the display gamma by one step, never below ``min_gamma``."""
    cfg = _config(config)
    return _set_gamma(image, image.gamma - cfg.gamma_step, cfg)


def _shift_exposure(image, stops: float) -> float:
    image.exposure = float(image.exposure) + stops
    return image.exposure


def exposure_plus_tenth_stop(image, config: Optional[DisplayConfig] = None) -> float:
    return _shift_exposure(image, _config(config).tenth_stop)


def exposure_minus_tenth_stop(image, config: Optional[DisplayConfig] = None) -> float:
    return _shift_exposure(image, -_config(config).tenth_stop)


def exposure_plus_half_stop(image, config: Optional[DisplayConfig] = None) -> float:
    return _shift_exposure(image, _config(config).half_stop)


def exposure_minus_half_stop(image, config: Optional[DisplayConfig] = None) -> float:
    return _shift_exposure(image, -_config(config).half_stop)
