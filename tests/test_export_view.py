import numpy as np
import pytest
from PIL import Image

from lazyview.errors import InvalidStateError
from lazyview.export_view import render_current_view, save_current_view
from lazyview.image_spec import ImageSpec
from lazyview.image_store import ImageStore
from lazyview.viewer_state import ViewerState


@pytest.fixture
def tiff_viewer(tiff_file):
    viewer = ViewerState()
    viewer.add_image(str(tiff_file))
    viewer.current_image(0)
    return viewer


def test_render_full_color(tiff_viewer, rgb_array) -> None:
    rendered = render_current_view(tiff_viewer)
    assert rendered.dtype == np.uint8
    np.testing.assert_array_equal(rendered, rgb_array)


def test_render_single_channel_is_2d(tiff_viewer, rgb_array) -> None:
    tiff_viewer.view_channel_blue()
    rendered = render_current_view(tiff_viewer)
    assert rendered.shape == (64, 64)
    np.testing.assert_array_equal(rendered, rgb_array[..., 2])


def test_render_gray_alpha_as_rgba(fake_lib) -> None:
    fake_lib.add("ga.tif", ImageSpec(8, 4, 2))
    viewer = ViewerState(ImageStore(decoder_factory=fake_lib))
    viewer.add_image("ga.tif")
    viewer.current_image(0)
    rendered = render_current_view(viewer)
    assert rendered.shape == (4, 8, 4)
    np.testing.assert_array_equal(rendered[..., 0], rendered[..., 2])


def test_render_without_image_raises() -> None:
    with pytest.raises(InvalidStateError):
        render_current_view(ViewerState())


def test_save_current_view(tiff_viewer, tmp_path) -> None:
    path = save_current_view(tiff_viewer, tmp_path / "view.png")
    assert path.exists()
    with Image.open(path) as img:
        assert img.size == (64, 64)

    tiff_viewer.view_channel_luminance()
    gray_path = save_current_view(tiff_viewer, tmp_path / "gray.png")
    with Image.open(gray_path) as img:
        assert img.size == (64, 64)
