"""Configuration dataclasses for display steps, zoom bounds, the store and reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class DisplayConfig:
    """Increment sizes for the per-image display controls.

    Notes
    -----
    Exposure is measured in photographic stops; gamma never drops below
    ``min_gamma``.
    """

    gamma_step: float = 0.05
    min_gamma: float = 0.05
    tenth_stop: float = 0.1
    half_stop: float = 0.5


@dataclass(frozen=True)
class ZoomConfig:
    """Zoom step and bounds, expressed as magnification scale factors."""

    step: float = 2.0
    min_scale: float = 1.0 / 32.0
    max_scale: float = 32.0


@dataclass(frozen=True)
class StoreConfig:
    """Image store settings."""

    thumbnail_size: int = 128


@dataclass(frozen=True)
class ReportConfig:
    """Options for the batch metadata report.

    Parameters
    ----------
    verbose : bool
        Print the full field dump for each file.
    sum : bool
        Decode pixels, print per-file size and a total.
    csv_path : str, optional
        When set, write one row per readable file to this CSV.
    """

    verbose: bool = False
    sum: bool = False
    csv_path: Optional[str] = None


@dataclass(frozen=True)
class AppConfig:
    """Aggregate configuration for a viewer session."""

    display: DisplayConfig = field(default_factory=DisplayConfig)
    zoom: ZoomConfig = field(default_factory=ZoomConfig)
    store: StoreConfig = field(default_factory=StoreConfig)


DEFAULT_CONFIG = AppConfig()
