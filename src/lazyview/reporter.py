"""Text and table reports of image headers.

``format_info`` renders one image the way ``iinfo`` prints it; ``report_files``
runs a batch over paths through an ``ImageStore`` and never stops on a single
bad file. ``specs_to_dataframe`` gives the same information as a pandas table.

Report line format::

    <name> : <W> x <H>[ x <D>], <C> channel, <format>[ volume][ (<size> MB)]
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Iterable, List, Optional, Tuple

import pandas as pd

from lazyview.config import ReportConfig
from lazyview.image_spec import ImageSpec, Linearity
from lazyview.image_store import ImageStore
from lazyview.logger import get_logger

LOGGER = get_logger(__name__)

__all__ = [
    "ReportSummary",
    "format_info",
    "format_total",
    "report_files",
    "save_report_csv",
    "specs_to_dataframe",
]

_MB = 1024.0 * 1024.0


@dataclass
class ReportSummary:
    """Outcome of a batch report."""

    total_bytes: int = 0
    reported: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    rows: List[Tuple[str, ImageSpec, int]] = field(default_factory=list)


def _linearity_line(spec: ImageSpec) -> str:
    if spec.linearity is Linearity.LINEAR:
        return "linear color space"
    if spec.linearity is Linearity.GAMMA_CORRECTED:
        return f"gamma-corrected: {spec.gamma:g}"
    if spec.linearity is Linearity.SRGB:
        return "sRGB color space"
    return "unknown color space"


def format_info(
    name: str,
    spec: ImageSpec,
    config: Optional[ReportConfig] = None,
    size_bytes: Optional[int] = None,
    subimage_count: int = 1,
) -> str:
    """Render the report lines for one image (newline-terminated)."""
    config = config or ReportConfig()
    line = f"{name} : {spec.width:4d} x {spec.height:4d}"
    if spec.depth > 1:
        line += f" x {spec.depth:4d}"
    line += f", {spec.nchannels} channel, {spec.typestring}"
    if spec.depth > 1:
        line += " volume"
    if config.sum:
        nbytes = spec.image_bytes if size_bytes is None else size_bytes
        line += f" ({nbytes / _MB:.2f} MB)"
    lines = [line]
    if config.verbose:
        lines.append("    channel list: " + ", ".join(spec.channel_names))
        if spec.has_origin:
            origin = f"    origin: x={spec.x}, y={spec.y}"
            if spec.depth > 1:
                origin += f", z={spec.z}"
            lines.append(origin)
        if spec.has_crop:
            full = f"    full (uncropped) size: {spec.full_width:4d} x {spec.full_height}"
            if spec.depth > 1:
                full += f" x {spec.full_depth}"
            lines.append(full)
        if spec.is_tiled:
            tile = f"    tile size: {spec.tile_width} x {spec.tile_height}"
            if spec.depth > 1:
                tile += f" x {spec.tile_depth}"
            lines.append(tile)
        lines.append("    " + _linearity_line(spec))
        if subimage_count > 1:
            lines.append(f"    subimages: {subimage_count}")
        for attr in spec.extra_attribs:
            lines.append(f"    {attr.name}: {attr.format_value()}")
    return "\n".join(lines) + "\n"


def format_total(total_bytes: int) -> str:
    """Render the total-size line, switching to GB above 1024 MB."""
    total_mb = total_bytes / _MB
    if total_mb > 1024.0:
        return f"Total size: {total_mb / 1024.0:.2f} GB\n"
    return f"Total size: {total_mb:.2f} MB\n"


def report_files(
    paths: Iterable[str],
    config: Optional[ReportConfig] = None,
    out: Optional[IO[str]] = None,
    err: Optional[IO[str]] = None,
    store: Optional[ImageStore] = None,
    prog: str = "iinfo",
) -> ReportSummary:
    """Print a report for each path; failures go to ``err`` and are skipped.

    With ``config.sum`` each image's pixels are decoded so only readable
    images count towards the total.
    """
    config = config or ReportConfig()
    out = out if out is not None else sys.stdout
    err = err if err is not None else sys.stderr
    store = store if store is not None else ImageStore()
    summary = ReportSummary()
    for path in paths:
        name = str(path)
        record = store.register(name)
        try:
            if not store.ensure_spec(record):
                err.write(f'{prog}: Could not open "{name}" : {record.take_error()}\n')
                summary.failed.append(name)
                continue
            size_bytes = record.spec.image_bytes
            if config.sum:
                if not store.ensure_pixels(record):
                    err.write(f'{prog}: Could not read "{name}" : {record.take_error()}\n')
                    summary.failed.append(name)
                    continue
                size_bytes = int(record.pixels.nbytes)
                summary.total_bytes += size_bytes
            out.write(format_info(name, record.spec, config, size_bytes, record.subimage_count))
            summary.reported.append(name)
            summary.rows.append((name, record.spec, size_bytes))
        finally:
            store.remove(record)
    if config.sum:
        out.write(format_total(summary.total_bytes))
    if config.csv_path:
        save_report_csv(summary.rows, config.csv_path)
    LOGGER.debug("Reported %d files, %d failed", len(summary.reported), len(summary.failed))
    return summary


def specs_to_dataframe(rows: Iterable[Tuple[str, ImageSpec, int]]) -> pd.DataFrame:
    """Convert (name, spec, bytes) rows to a DataFrame, one row per image."""
    records = []
    for name, spec, nbytes in rows:
        records.append(
            {
                "name": name,
                "width": spec.width,
                "height": spec.height,
                "depth": spec.depth,
                "nchannels": spec.nchannels,
                "channel_names": ",".join(spec.channel_names),
                "format": spec.typestring,
                "linearity": spec.linearity.value,
                "gamma": spec.gamma,
                "tile_width": spec.tile_width,
                "tile_height": spec.tile_height,
                "bytes": int(nbytes),
            }
        )
    columns = [
        "name",
        "width",
        "height",
        "depth",
        "nchannels",
        "channel_names",
        "format",
        "linearity",
        "gamma",
        "tile_width",
        "tile_height",
        "bytes",
    ]
    return pd.DataFrame.from_records(records, columns=columns)


def save_report_csv(rows: Iterable[Tuple[str, ImageSpec, int]], path: str) -> Path:
    """Write report rows to CSV and return the path."""
    path = Path(path)
    specs_to_dataframe(rows).to_csv(path, index=False)
    return path
