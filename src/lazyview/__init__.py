"""lazyview package."""

from lazyview.config import AppConfig, DEFAULT_CONFIG, ReportConfig
from lazyview.display_transform import FULL_COLOR, LUMINANCE, apply_display_transform
from lazyview.errors import ImageError, InvalidStateError, OpenFailedError, ReadFailedError
from lazyview.image_record import ImageRecord, ResidencyState
from lazyview.image_spec import Attribute, AttrType, ImageSpec, Linearity
from lazyview.image_store import ImageStore
from lazyview.viewer_state import ViewerState

__all__ = [
    "__version__",
    "AppConfig",
    "DEFAULT_CONFIG",
    "ReportConfig",
    "FULL_COLOR",
    "LUMINANCE",
    "apply_display_transform",
    "ImageError",
    "InvalidStateError",
    "OpenFailedError",
    "ReadFailedError",
    "ImageRecord",
    "ResidencyState",
    "Attribute",
    "AttrType",
    "ImageSpec",
    "Linearity",
    "ImageStore",
    "ViewerState",
]

__version__ = "1.0.0"
