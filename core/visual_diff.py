"""
Visual Diff Module
Compares before/after screenshots and classifies how much the page changed.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from visual.compare_images import PixelComparator
from utils.file_utils import suffixed_path
from .change_classifier import (
    DIFF_WORTHY_LEVELS,
    DIMENSION_CHANGE_FLOOR,
    ChangeLevel,
    classify,
    round_percentage,
)
from .errors import DecodeError
from .models import ComparisonVerdict

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.1
DEFAULT_MIN_CHANGE_THRESHOLD = 0.5
DIFF_SUFFIX = '_diff'

PathLike = Union[str, Path]


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class ComparisonOptions:
    """
    Settings for one comparison run.

    threshold: per-pixel colour distance tolerance in [0, 1]
    generate_diff_image: write a diff image for changed pairs
    ignore_antialiasing: leave anti-aliased edge pixels out of the count
    min_change_threshold: percentage (0-100) at which a change is significant
    """
    threshold: float = DEFAULT_THRESHOLD
    generate_diff_image: bool = True
    ignore_antialiasing: bool = False
    min_change_threshold: float = DEFAULT_MIN_CHANGE_THRESHOLD

    def __post_init__(self):
        if not 0 <= self.threshold <= 1:
            raise ValueError(f"threshold must be between 0 and 1, got {self.threshold}")
        if not 0 <= self.min_change_threshold <= 100:
            raise ValueError(f"min_change_threshold must be between 0 and 100, got {self.min_change_threshold}")

    @classmethod
    def from_env(cls) -> 'ComparisonOptions':
        """Defaults, overridden by SCREENDIFF_* environment variables where set."""
        return cls(
            threshold=float(os.environ.get('SCREENDIFF_THRESHOLD', DEFAULT_THRESHOLD)),
            generate_diff_image=_env_flag('SCREENDIFF_DIFF_IMAGES', True),
            ignore_antialiasing=_env_flag('SCREENDIFF_IGNORE_AA', False),
            min_change_threshold=float(os.environ.get('SCREENDIFF_MIN_CHANGE', DEFAULT_MIN_CHANGE_THRESHOLD)),
        )

    def with_overrides(self, **changes) -> 'ComparisonOptions':
        """Copy with every override that is not None applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


@dataclass
class ComparisonSummary:
    total_images: int = 0
    changed_images: int = 0
    unchanged_images: int = 0
    average_change_percentage: float = 0.0
    max_change_percentage: float = 0.0
    change_level_counts: Dict[ChangeLevel, int] = field(
        default_factory=lambda: {level: 0 for level in ChangeLevel})


def diff_image_path(before_path: PathLike) -> Path:
    """Diff images sit next to the before image: home.png -> home_diff.png"""
    return suffixed_path(before_path, DIFF_SUFFIX)


class ImageComparisonEngine:
    def __init__(self, pixel_comparator: Optional[PixelComparator] = None):
        self.pixels = pixel_comparator or PixelComparator()

    def compare(self,
                before_path: PathLike,
                after_path: PathLike,
                options: Optional[ComparisonOptions] = None) -> ComparisonVerdict:
        """
        Compare two captures of the same page.

        Captures of different sizes are treated as a layout change: the
        verdict is based on the pixel-count difference, is always significant
        and never gets a diff image.

        Raises:
            DecodeError: If either file is not a readable raster
            OSError: If either file cannot be read or the diff cannot be written
        """
        opts = options or ComparisonOptions()
        before_path = Path(before_path)
        after_path = Path(after_path)
        logger.debug(f"Comparing {before_path} -> {after_path}")

        before = self.pixels.decode(before_path)
        after = self.pixels.decode(after_path)

        if before.shape[:2] != after.shape[:2]:
            return self._dimension_change(before.shape[:2], after.shape[:2])

        height, width = before.shape[:2]
        total_pixels = width * height
        result = self.pixels.compare(
            before,
            after,
            threshold=opts.threshold,
            include_aa=not opts.ignore_antialiasing,
            with_diff=opts.generate_diff_image,
        )
        # Release the decoded rasters before the diff is written
        del before, after

        diff_percentage = round_percentage(result.diff_pixels / total_pixels * 100)
        change_level = classify(diff_percentage)
        has_significant_change = diff_percentage >= opts.min_change_threshold

        written_path = None
        if opts.generate_diff_image and (has_significant_change or change_level in DIFF_WORTHY_LEVELS):
            written_path = self.pixels.encode(result.diff_image, diff_image_path(before_path))

        logger.debug(f"{before_path.name}: {result.diff_pixels}/{total_pixels} pixels differ "
                     f"({diff_percentage}%, {change_level.value})")
        return ComparisonVerdict(
            diff_pixels=result.diff_pixels,
            total_pixels=total_pixels,
            diff_percentage=diff_percentage,
            change_level=change_level,
            has_significant_change=has_significant_change,
            diff_image_path=written_path,
        )

    def _dimension_change(self, before_shape: Tuple[int, int], after_shape: Tuple[int, int]) -> ComparisonVerdict:
        before_pixels = before_shape[0] * before_shape[1]
        after_pixels = after_shape[0] * after_shape[1]
        pixel_difference = abs(after_pixels - before_pixels)
        diff_percentage = round_percentage(pixel_difference / before_pixels * 100)
        logger.info(f"Dimensions changed {before_shape[1]}x{before_shape[0]} -> "
                    f"{after_shape[1]}x{after_shape[0]}, treating as layout change")
        return ComparisonVerdict(
            diff_pixels=pixel_difference,
            total_pixels=before_pixels,
            diff_percentage=diff_percentage,
            change_level=classify(max(diff_percentage, DIMENSION_CHANGE_FLOOR)),
            has_significant_change=True,
            diff_image_path=None,
        )

    def compare_or_fallback(self,
                            before_path: PathLike,
                            after_path: PathLike,
                            options: Optional[ComparisonOptions] = None) -> ComparisonVerdict:
        """Like compare, but a failed pair yields the neutral fallback verdict."""
        try:
            return self.compare(before_path, after_path, options)
        except (DecodeError, OSError) as e:
            logger.warning(f"Comparison failed for {before_path} -> {after_path}: {e}")
            return ComparisonVerdict.fallback()

    def batch_compare(self,
                      pairs: Iterable[Tuple[PathLike, PathLike]],
                      options: Optional[ComparisonOptions] = None) -> List[ComparisonVerdict]:
        """Compare (before, after) pairs one at a time, in order."""
        verdicts = [self.compare_or_fallback(before, after, options) for before, after in pairs]
        logger.info(f"Compared {len(verdicts)} image pairs")
        return verdicts


def summarize(verdicts: Sequence[ComparisonVerdict]) -> ComparisonSummary:
    """Aggregate statistics over a batch of verdicts."""
    summary = ComparisonSummary()
    if not verdicts:
        return summary
    percentages = [v.diff_percentage for v in verdicts]
    summary.total_images = len(verdicts)
    summary.changed_images = sum(1 for v in verdicts if v.has_significant_change)
    summary.unchanged_images = summary.total_images - summary.changed_images
    summary.average_change_percentage = round_percentage(sum(percentages) / len(percentages))
    summary.max_change_percentage = max(percentages)
    for verdict in verdicts:
        summary.change_level_counts[verdict.change_level] += 1
    return summary
