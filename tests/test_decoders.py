"""Decoder backends against real files written with tifffile, Pillow and numpy."""

import numpy as np
import pytest
import tifffile as tif
from PIL import Image

from lazyview.decoders import (
    NpyDecoder,
    PillowDecoder,
    TiffDecoder,
    decoder_for,
    register_decoder,
    registered_decoders,
    unregister_decoder,
)
from lazyview.errors import OpenFailedError, ReadFailedError
from lazyview.image_spec import AttrType, Linearity


def _read_all(decoder, spec) -> np.ndarray:
    rows = [[decoder.read_scanline(y, z) for y in range(spec.height)] for z in range(spec.depth)]
    return np.array(rows)


def test_registry_dispatch_by_extension(tmp_path) -> None:
    assert isinstance(decoder_for(str(tmp_path / "x.TIF")), TiffDecoder)
    assert isinstance(decoder_for(str(tmp_path / "x.png")), PillowDecoder)
    assert isinstance(decoder_for(str(tmp_path / "x.npy")), NpyDecoder)


def test_registry_dispatch_by_signature(tmp_path, rgb_array) -> None:
    path = tmp_path / "noext"
    tif.imwrite(str(path), rgb_array, photometric="rgb")
    assert isinstance(decoder_for(str(path)), TiffDecoder)


def test_registry_unknown_and_missing(tmp_path) -> None:
    path = tmp_path / "notes.xyz"
    path.write_text("hello")
    with pytest.raises(OpenFailedError, match="could not find a format reader"):
        decoder_for(str(path))
    with pytest.raises(OpenFailedError):
        decoder_for(str(tmp_path / "missing"))


def test_register_decoder_takes_priority(tmp_path) -> None:
    @register_decoder
    class OverrideDecoder(PillowDecoder):
        extensions = (".png",)

    try:
        assert isinstance(decoder_for(str(tmp_path / "x.png")), OverrideDecoder)
    finally:
        unregister_decoder(OverrideDecoder)
    assert OverrideDecoder not in registered_decoders()


def test_tiff_rgb(tiff_file, rgb_array) -> None:
    with TiffDecoder() as decoder:
        spec = decoder.open(str(tiff_file))
        assert (spec.width, spec.height, spec.depth, spec.nchannels) == (64, 64, 1, 3)
        assert spec.format == "uint8"
        assert spec.channel_names == ("R", "G", "B")
        assert spec.linearity is Linearity.SRGB
        assert not spec.is_tiled
        assert decoder.subimage_count == 1
        np.testing.assert_array_equal(_read_all(decoder, spec)[0], rgb_array)
        compression = spec.attribute("Compression")
        assert compression.type is AttrType.STRING
        assert compression.value == "none"


def test_tiff_tiled_volume(tmp_path) -> None:
    path = tmp_path / "vol.tif"
    arr = np.arange(4 * 32 * 32, dtype=np.uint16).reshape(4, 32, 32)
    tif.imwrite(str(path), arr, tile=(16, 16), metadata={"axes": "ZYX"})
    with TiffDecoder() as decoder:
        spec = decoder.open(str(path))
        assert (spec.width, spec.height, spec.depth, spec.nchannels) == (32, 32, 4, 1)
        assert spec.tile_width == 16 and spec.tile_height == 16
        assert spec.typestring == "uint16"
        np.testing.assert_array_equal(_read_all(decoder, spec)[..., 0], arr)


def test_tiff_subimages(tmp_path) -> None:
    path = tmp_path / "multi.tif"
    with tif.TiffWriter(str(path)) as writer:
        writer.write(np.zeros((8, 8, 3), dtype=np.uint8), photometric="rgb")
        writer.write(np.ones((4, 6), dtype=np.float32))
    with TiffDecoder() as decoder:
        spec = decoder.open(str(path))
        assert decoder.subimage_count == 2
        assert spec.nchannels == 3
        second = decoder.seek_subimage(1)
        assert (second.width, second.height, second.nchannels) == (6, 4, 1)
        assert second.linearity is Linearity.LINEAR
        assert float(decoder.read_scanline(0)[0, 0]) == 1.0
        with pytest.raises(OpenFailedError):
            decoder.seek_subimage(2)


def test_tiff_open_failures(tmp_path) -> None:
    with pytest.raises(OpenFailedError):
        TiffDecoder().open(str(tmp_path / "missing.tif"))
    bogus = tmp_path / "bogus.tif"
    bogus.write_bytes(b"not a tiff at all")
    with pytest.raises(OpenFailedError):
        TiffDecoder().open(str(bogus))


def test_png(png_file, rgb_array) -> None:
    with PillowDecoder() as decoder:
        spec = decoder.open(str(png_file))
        assert (spec.width, spec.height, spec.nchannels) == (64, 64, 3)
        assert spec.linearity is Linearity.SRGB
        assert spec.attribute("FileFormat").value == "PNG"
        np.testing.assert_array_equal(_read_all(decoder, spec)[0], rgb_array)
        with pytest.raises(ReadFailedError):
            decoder.read_scanline(64)


def test_png_16bit_gray(tmp_path) -> None:
    path = tmp_path / "gray16.png"
    Image.fromarray(np.full((4, 4), 1000, dtype=np.uint16)).save(str(path))
    with PillowDecoder() as decoder:
        spec = decoder.open(str(path))
        assert spec.nchannels == 1
        assert spec.format in ("uint16", "int32")
        assert int(decoder.read_scanline(0)[0, 0]) == 1000


def test_palette_png_expands_to_rgb(tmp_path) -> None:
    path = tmp_path / "pal.png"
    Image.fromarray(np.zeros((4, 4, 3), dtype=np.uint8)).convert("P").save(str(path))
    with PillowDecoder() as decoder:
        spec = decoder.open(str(path))
        assert spec.nchannels == 3
        assert decoder.read_scanline(0).shape == (4, 3)


def test_truncated_png_fails_on_read(truncated_png) -> None:
    with PillowDecoder() as decoder:
        spec = decoder.open(str(truncated_png))
        assert spec.width == 64
        with pytest.raises(ReadFailedError):
            decoder.read_scanline(0)


def test_npy_layouts(tmp_path, npy_file) -> None:
    with NpyDecoder() as decoder:
        spec = decoder.open(str(npy_file))
        assert (spec.width, spec.height, spec.nchannels) == (16, 32, 1)
        assert spec.linearity is Linearity.LINEAR
        assert spec.typestring == "float"

    stack = tmp_path / "stack.npy"
    np.save(str(stack), np.zeros((5, 6, 7), dtype=np.int16))
    with NpyDecoder() as decoder:
        spec = decoder.open(str(stack))
        assert (spec.depth, spec.height, spec.width, spec.nchannels) == (5, 6, 7, 1)
        assert decoder.read_scanline(5, 4).shape == (7, 1)

    bad = tmp_path / "bad.npy"
    np.save(str(bad), np.zeros((2, 2, 2, 2, 2)))
    with pytest.raises(OpenFailedError):
        NpyDecoder().open(str(bad))
