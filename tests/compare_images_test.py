import sys
import errno
import os
import numpy as np
import pytest
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from PIL import Image
from core.errors import DecodeError
from visual.compare_images import PixelComparator

WHITE = (255, 255, 255, 255)
BLACK = (0, 0, 0, 255)


def solid(width, height, color=WHITE):
    img = np.empty((height, width, 4), dtype=np.uint8)
    img[...] = color
    return img


def edge_image(width=10, height=10):
    """Black left half, white right half."""
    img = solid(width, height, WHITE)
    img[:, :width // 2] = BLACK
    return img


def test_decode_returns_rgba_array(make_png):
    path = make_png('page.png', size=(20, 10))
    pixels = PixelComparator().decode(path)
    assert pixels.shape == (10, 20, 4)
    assert pixels.dtype == np.uint8
    assert tuple(pixels[0, 0]) == WHITE


def test_decode_missing_file_raises_os_error(tmp_path):
    with pytest.raises(FileNotFoundError):
        PixelComparator().decode(tmp_path / 'missing.png')


def test_decode_garbage_raises_decode_error(tmp_path):
    path = tmp_path / 'broken.png'
    path.write_bytes(b'this is not a png')
    with pytest.raises(DecodeError) as exc:
        PixelComparator().decode(path)
    assert exc.value.path == path


def test_identical_images_have_no_diff():
    img = edge_image()
    result = PixelComparator().compare(img, img.copy(), with_diff=True)
    assert result.diff_pixels == 0
    assert result.diff_image.shape == img.shape


def test_single_pixel_change_counted():
    before = solid(10, 10)
    after = before.copy()
    after[3, 4] = BLACK
    result = PixelComparator().compare(before, after)
    assert result.diff_pixels == 1
    assert result.diff_image is None


def test_isolated_pixel_is_not_antialiasing():
    before = solid(10, 10)
    after = before.copy()
    after[3, 4] = BLACK
    result = PixelComparator().compare(before, after, include_aa=False)
    assert result.diff_pixels == 1


def test_antialiased_edge_pixel_can_be_ignored():
    before = edge_image()
    after = before.copy()
    # a gray pixel on the black/white border looks like anti-aliasing
    after[5, 5] = (128, 128, 128, 255)
    comparator = PixelComparator()
    assert comparator.compare(before, after, include_aa=True).diff_pixels == 1
    assert comparator.compare(before, after, include_aa=False).diff_pixels == 0


def test_threshold_controls_sensitivity():
    before = solid(10, 10)
    after = before.copy()
    after[0, 0] = (250, 250, 250, 255)
    comparator = PixelComparator()
    assert comparator.compare(before, after, threshold=0.1).diff_pixels == 0
    assert comparator.compare(before, after, threshold=0.0).diff_pixels == 1


def test_diff_image_marks_changes():
    before = solid(10, 10)
    before[0, 0] = BLACK
    after = solid(10, 10)
    after[9, 9] = BLACK
    result = PixelComparator().compare(before, after, with_diff=True)
    diff = result.diff_image
    assert result.diff_pixels == 2
    # got brighter: red, got darker: green
    assert tuple(diff[0, 0]) == (255, 0, 0, 255)
    assert tuple(diff[9, 9]) == (0, 255, 0, 255)
    # unchanged white stays white after fading
    assert tuple(diff[5, 5]) == (255, 255, 255, 255)


def test_antialiased_pixels_drawn_yellow_when_ignored():
    before = edge_image()
    after = before.copy()
    after[5, 5] = (128, 128, 128, 255)
    result = PixelComparator().compare(before, after, include_aa=False, with_diff=True)
    assert tuple(result.diff_image[5, 5]) == (255, 255, 0, 255)


def test_fully_transparent_images_match():
    before = solid(8, 8, (0, 0, 0, 0))
    after = solid(8, 8, (255, 255, 255, 0))
    assert PixelComparator().compare(before, after).diff_pixels == 0


def test_shape_mismatch_rejected():
    with pytest.raises(ValueError):
        PixelComparator().compare(solid(10, 10), solid(10, 11))


def test_encode_writes_png(tmp_path):
    path = PixelComparator().encode(solid(6, 4), tmp_path / 'out.png')
    assert path.exists()
    assert PixelComparator().decode(path).shape == (4, 6, 4)


def test_decode_truncated_file_raises_decode_error(tmp_path):
    noise = np.random.default_rng(7).integers(0, 256, size=(64, 64, 4), dtype=np.uint8)
    full = tmp_path / 'full.png'
    Image.fromarray(noise).save(full)
    data = full.read_bytes()
    truncated = tmp_path / 'truncated.png'
    truncated.write_bytes(data[:len(data) // 2])
    with pytest.raises(DecodeError):
        PixelComparator().decode(truncated)


def test_decode_passes_read_failures_through(make_png, monkeypatch):
    path = make_png('page.png')

    def failing_open(*args, **kwargs):
        raise OSError(errno.EIO, 'Input/output error')

    monkeypatch.setattr(Image, 'open', failing_open)
    with pytest.raises(OSError) as exc:
        PixelComparator().decode(path)
    assert exc.value.errno == errno.EIO
    assert not isinstance(exc.value, DecodeError)


def test_encode_jpeg_drops_alpha(tmp_path):
    path = PixelComparator().encode(solid(6, 4), tmp_path / 'out.jpg')
    with Image.open(path) as img:
        assert img.format == 'JPEG'
        assert img.mode == 'RGB'
        assert img.size == (6, 4)
