"""
Image Comparison Module
Decodes screenshots with Pillow and counts differing pixels with numpy.

The pixel test follows the pixelmatch approach: colour distance is measured
in YIQ space, translucent pixels are blended over a checkerboard background,
and (optionally) pixels that only differ because of anti-aliasing are left
out of the count.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image

from core.errors import DecodeError

logger = logging.getLogger(__name__)

# Largest possible YIQ delta between two colours
MAX_YIQ_DELTA = 35215.0

LUMA = np.array([0.29889531, 0.58662247, 0.11448223])
IN_PHASE = np.array([0.59597799, -0.27417610, -0.32180189])
QUADRATURE = np.array([0.21147017, -0.52261711, 0.31114694])

# (dx, dy) in scan order: column by column, top to bottom
NEIGHBOURS = [(-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1)]

# Pixels processed per step of the colour-distance pass
CHUNK_PIXELS = 1 << 20

# Formats Pillow cannot write with an alpha channel
FORMATS_WITHOUT_ALPHA = frozenset({'JPEG'})


@dataclass
class PixelDiff:
    diff_pixels: int
    diff_image: Optional[np.ndarray] = None


def _background(indices: np.ndarray) -> np.ndarray:
    """Checkerboard colour used to blend translucent pixels, keyed by byte offset."""
    k = indices.astype(np.int64) * 4
    rb = 48 + 159 * (k % 2)
    gb = 48 + 159 * ((k / 1.618033988749895).astype(np.int64) % 2)
    bb = 48 + 159 * ((k / 2.618033988749895).astype(np.int64) % 2)
    return np.stack([rb, gb, bb], axis=-1).astype(np.float64)


def _edge_mask(ys: np.ndarray, xs: np.ndarray, height: int, width: int) -> np.ndarray:
    return (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)


def _neighbour(ys: np.ndarray, xs: np.ndarray, dx: int, dy: int,
               height: int, width: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Coordinates of one neighbour (clamped) plus a mask of those inside the image."""
    ny = ys + dy
    nx = xs + dx
    valid = (ny >= 0) & (ny < height) & (nx >= 0) & (nx < width)
    return np.clip(ny, 0, height - 1), np.clip(nx, 0, width - 1), valid


class PixelComparator:
    """Per-pixel RGBA comparison of two equally sized rasters."""

    def __init__(self,
                 alpha: float = 0.1,
                 diff_color: Tuple[int, int, int] = (255, 0, 0),
                 diff_color_alt: Tuple[int, int, int] = (0, 255, 0),
                 aa_color: Tuple[int, int, int] = (255, 255, 0)):
        self.alpha = alpha
        self.diff_color = diff_color
        self.diff_color_alt = diff_color_alt
        self.aa_color = aa_color

    def decode(self, image_path: Union[str, Path]) -> np.ndarray:
        """Load an image as an (height, width, 4) uint8 RGBA array."""
        path = Path(image_path)
        try:
            with Image.open(path) as img:
                rgba = img.convert('RGBA')
        except OSError as e:
            # Failures from the operating system carry an errno; decoder errors
            # (unidentified or truncated images) do not
            if e.errno is not None:
                raise
            raise DecodeError(path, str(e)) from e
        except (SyntaxError, ValueError) as e:
            raise DecodeError(path, str(e)) from e
        logger.debug(f"Decoded {path} ({rgba.width}x{rgba.height})")
        return np.array(rgba, dtype=np.uint8)

    def encode(self, pixels: np.ndarray, output_path: Union[str, Path]) -> Path:
        """Write an RGBA array to disk; the format follows the file extension."""
        path = Path(output_path)
        img = Image.fromarray(pixels)
        if Image.registered_extensions().get(path.suffix.lower()) in FORMATS_WITHOUT_ALPHA:
            img = img.convert('RGB')
        img.save(path)
        logger.debug(f"Wrote diff image: {path}")
        return path

    def compare(self,
                before: np.ndarray,
                after: np.ndarray,
                threshold: float = 0.1,
                include_aa: bool = True,
                with_diff: bool = False) -> PixelDiff:
        """
        Count pixels whose colour distance exceeds the threshold.

        Args:
            before: RGBA array of the earlier capture
            after: RGBA array of the later capture, same shape as before
            threshold: Matching threshold in [0, 1]; smaller is more sensitive
            include_aa: Count anti-aliased pixels as differences
            with_diff: Also render a diff image

        Returns:
            PixelDiff with the count and, if requested, the diff image
        """
        if before.shape != after.shape:
            raise ValueError(f"Image shapes differ: {before.shape} vs {after.shape}")
        height, width = before.shape[:2]

        if np.array_equal(before, after):
            empty = np.empty(0, dtype=np.int64)
            diff_image = self._render_diff(before, empty, empty.astype(bool), empty.astype(bool)) if with_diff else None
            return PixelDiff(diff_pixels=0, diff_image=diff_image)

        max_delta = MAX_YIQ_DELTA * threshold * threshold
        flat_before = before.reshape(-1, 4)
        flat_after = after.reshape(-1, 4)

        hits = []
        darker = []
        for start in range(0, height * width, CHUNK_PIXELS):
            stop = start + CHUNK_PIXELS
            delta = self._color_delta(flat_before[start:stop], flat_after[start:stop], start)
            chunk_hits = np.nonzero(np.abs(delta) > max_delta)[0]
            hits.append(chunk_hits + start)
            darker.append(delta[chunk_hits] < 0)
        candidates = np.concatenate(hits)
        negative = np.concatenate(darker)

        ys, xs = np.divmod(candidates, width)
        if include_aa or candidates.size == 0:
            excluded = np.zeros(candidates.size, dtype=bool)
        else:
            excluded = self._antialiased(before, after, ys, xs) | self._antialiased(after, before, ys, xs)
            logger.debug(f"Excluded {int(excluded.sum())} anti-aliased pixels")

        diff_pixels = int(np.count_nonzero(~excluded))
        diff_image = self._render_diff(before, candidates, excluded, negative) if with_diff else None
        return PixelDiff(diff_pixels=diff_pixels, diff_image=diff_image)

    def _color_delta(self, pixels1: np.ndarray, pixels2: np.ndarray, offset: int) -> np.ndarray:
        """Signed squared YIQ distance; negative where the first pixel is brighter."""
        c1 = pixels1.astype(np.float64)
        c2 = pixels2.astype(np.float64)
        a1 = c1[:, 3]
        a2 = c2[:, 3]
        d = c1[:, :3] - c2[:, :3]

        translucent = np.nonzero((a1 < 255) | (a2 < 255))[0]
        if translucent.size:
            bg = _background(translucent + offset)
            ta1 = a1[translucent, None]
            ta2 = a2[translucent, None]
            d[translucent] = (c1[translucent, :3] * ta1 - c2[translucent, :3] * ta2 - bg * (ta1 - ta2)) / 255

        y = d @ LUMA
        i = d @ IN_PHASE
        q = d @ QUADRATURE
        delta = 0.5053 * y * y + 0.299 * i * i + 0.1957 * q * q
        return np.where(y > 0, -delta, delta)

    def _antialiased(self, img: np.ndarray, other: np.ndarray,
                     ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
        """
        Flag candidate pixels that look like anti-aliasing in img.

        A pixel qualifies when its 3x3 neighbourhood has at most two neighbours
        of equal brightness, contains both a darker and a brighter neighbour,
        and the darkest or brightest neighbour sits in a flat area of both
        images.
        """
        height, width = img.shape[:2]
        zeroes = _edge_mask(ys, xs, height, width).astype(np.int64)

        center = img[ys, xs].astype(np.float64)
        bg_luma = _background(ys * width + xs) @ LUMA
        center_term = center[:, 3] * (center[:, :3] @ LUMA - bg_luma)

        min_delta = np.zeros(ys.size)
        max_delta = np.zeros(ys.size)
        min_y, min_x = ys.copy(), xs.copy()
        max_y, max_x = ys.copy(), xs.copy()

        for dx, dy in NEIGHBOURS:
            ny, nx, valid = _neighbour(ys, xs, dx, dy, height, width)
            neighbour = img[ny, nx].astype(np.float64)
            delta = (center_term - neighbour[:, 3] * (neighbour[:, :3] @ LUMA - bg_luma)) / 255
            delta = np.where(valid, delta, 0.0)

            zeroes += valid & (delta == 0)
            lower = valid & (delta < min_delta)
            higher = valid & ~lower & (delta > max_delta)
            min_delta = np.where(lower, delta, min_delta)
            min_y = np.where(lower, ny, min_y)
            min_x = np.where(lower, nx, min_x)
            max_delta = np.where(higher, delta, max_delta)
            max_y = np.where(higher, ny, max_y)
            max_x = np.where(higher, nx, max_x)

        result = (zeroes <= 2) & (min_delta != 0) & (max_delta != 0)
        selected = np.nonzero(result)[0]
        if selected.size:
            at_min = (self._has_many_siblings(img, min_y[selected], min_x[selected])
                      & self._has_many_siblings(other, min_y[selected], min_x[selected]))
            at_max = (self._has_many_siblings(img, max_y[selected], max_x[selected])
                      & self._has_many_siblings(other, max_y[selected], max_x[selected]))
            result[selected] = at_min | at_max
        return result

    def _has_many_siblings(self, img: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
        """True where more than two neighbours have exactly the same RGBA value."""
        height, width = img.shape[:2]
        zeroes = _edge_mask(ys, xs, height, width).astype(np.int64)
        center = img[ys, xs]
        for dx, dy in NEIGHBOURS:
            ny, nx, valid = _neighbour(ys, xs, dx, dy, height, width)
            zeroes += valid & np.all(img[ny, nx] == center, axis=1)
        return zeroes > 2

    def _render_diff(self, before: np.ndarray, candidates: np.ndarray,
                     excluded: np.ndarray, negative: np.ndarray) -> np.ndarray:
        """Faded grayscale of the before image with differing pixels painted over."""
        luma = before[..., :3].astype(np.float32) @ LUMA.astype(np.float32)
        opacity = self.alpha * before[..., 3].astype(np.float32) / 255
        gray = np.clip(np.rint(255 + (luma - 255) * opacity), 0, 255).astype(np.uint8)

        diff = np.empty(before.shape, dtype=np.uint8)
        diff[..., :3] = gray[..., None]
        diff[..., 3] = 255

        flat = diff.reshape(-1, 4)
        flat[candidates[excluded], :3] = self.aa_color
        flat[candidates[~excluded & negative], :3] = self.diff_color_alt
        flat[candidates[~excluded & ~negative], :3] = self.diff_color
        return diff
