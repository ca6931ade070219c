import copy
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

import matplotlib
import numpy as np
import pytest
import tifffile as tif
from PIL import Image

from lazyview.errors import OpenFailedError, ReadFailedError
from lazyview.image_spec import ImageSpec

matplotlib.use(os.environ.get("MPLBACKEND", "Agg"), force=True)


@dataclass
class FakeImage:
    specs: List[ImageSpec]
    data: List[np.ndarray]
    open_error: Optional[str] = None
    fail_at: Optional[int] = None


@dataclass
class FakeLibrary:
    """Scripted decoder backend: images live in a dict keyed by path."""

    images: dict = field(default_factory=dict)
    open_calls: Counter = field(default_factory=Counter)
    scanline_calls: Counter = field(default_factory=Counter)
    close_calls: Counter = field(default_factory=Counter)

    def add(self, name, spec=None, *, open_error=None, fail_at=None, subimages=None):
        specs = list(subimages) if subimages else [spec or ImageSpec(64, 64, 3)]
        data = [_pattern(s) for s in specs]
        self.images[name] = FakeImage(specs, data, open_error=open_error, fail_at=fail_at)
        return name

    def __call__(self, path):
        return FakeDecoder(self)


def _pattern(spec: ImageSpec) -> np.ndarray:
    size = int(np.prod(spec.buffer_shape))
    return (np.arange(size) % 251).astype(spec.dtype).reshape(spec.buffer_shape)


class FakeDecoder:
    def __init__(self, lib: FakeLibrary) -> None:
        self.lib = lib
        self.path = None
        self.image = None
        self.subimage = 0

    def open(self, path, subimage=0):
        self.lib.open_calls[path] += 1
        image = self.lib.images.get(path)
        if image is None:
            raise OpenFailedError(f"{path}: No such file or directory")
        if image.open_error:
            raise OpenFailedError(image.open_error)
        if subimage >= len(image.specs):
            raise OpenFailedError(f"{path}: no subimage {subimage}")
        self.path, self.image, self.subimage = path, image, subimage
        return copy.deepcopy(image.specs[subimage])

    @property
    def subimage_count(self):
        return len(self.image.specs) if self.image else 0

    def read_scanline(self, y, z=0):
        self.lib.scanline_calls[self.path] += 1
        if self.image.fail_at is not None and y >= self.image.fail_at:
            raise ReadFailedError(f"{self.path}: corrupt data at scanline {y}")
        return self.image.data[self.subimage][z, y]

    def close(self):
        if self.path is not None:
            self.lib.close_calls[self.path] += 1


@pytest.fixture
def fake_lib():
    return FakeLibrary()


def _assert_invariants(record) -> None:
    if record.pixels_valid:
        assert record.spec_valid
        assert record.pixels is not None
    else:
        assert record.pixels is None
    if record.broken:
        assert not record.spec_valid
        assert not record.pixels_valid
        assert record.spec is None


@pytest.fixture
def check_invariants():
    return _assert_invariants


@pytest.fixture
def rgb_array():
    rng = np.random.default_rng(0)
    return rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)


@pytest.fixture
def tiff_file(tmp_path, rgb_array):
    path = tmp_path / "a.tif"
    tif.imwrite(str(path), rgb_array, photometric="rgb")
    return path


@pytest.fixture
def png_file(tmp_path, rgb_array):
    path = tmp_path / "b.png"
    Image.fromarray(rgb_array).save(str(path))
    return path


@pytest.fixture
def truncated_png(tmp_path, rgb_array):
    full = tmp_path / "full.png"
    Image.fromarray(rgb_array).save(str(full))
    data = full.read_bytes()
    path = tmp_path / "c.png"
    path.write_bytes(data[: len(data) // 4])
    return path


@pytest.fixture
def npy_file(tmp_path):
    path = tmp_path / "d.npy"
    np.save(str(path), np.linspace(0.0, 1.0, 32 * 16, dtype=np.float32).reshape(32, 16))
    return path
