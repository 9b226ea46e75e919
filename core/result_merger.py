"""
Result Merger Module
Pairs before/after captures by URL, carries errors forward and compares each pair.
"""

import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from utils.time_utils import format_duration
from .models import BeforeAfterResult, CaptureOutcome, PhaseTiming
from .visual_diff import ComparisonOptions, ImageComparisonEngine

logger = logging.getLogger(__name__)


def compute_phase_timing(outcomes: Sequence[CaptureOutcome]) -> Optional[PhaseTiming]:
    """Wall-clock window covered by a batch of captures."""
    if not outcomes:
        return None
    start = min(o.timestamp for o in outcomes)
    end = max(o.timestamp for o in outcomes)
    return PhaseTiming(start_time=start, end_time=end, duration=format_duration(end - start))


class ResultMerger:
    def __init__(self, engine: Optional[ImageComparisonEngine] = None):
        self.engine = engine or ImageComparisonEngine()

    def merge(self,
              before_outcomes: Sequence[CaptureOutcome],
              after_outcomes: Sequence[CaptureOutcome],
              options: Optional[ComparisonOptions] = None) -> List[BeforeAfterResult]:
        """
        Build one result per before capture.

        The after capture is the first one with the same URL, so repeated URLs
        in the input all pair with that same after capture. A before error
        takes precedence over an after error. Pairs with an error or a missing
        image are not compared.
        """
        merged = []
        for before in before_outcomes:
            after = next((o for o in after_outcomes if o.url == before.url), None)
            if after is None:
                logger.warning(f"No after capture for {before.url}")

            result = BeforeAfterResult(
                url=before.url,
                before_path=before.image_path,
                after_path=after.image_path if after else None,
                error=before.error or (after.error if after else None),
                timestamp=before.timestamp,
                after_timestamp=after.timestamp if after else None,
            )
            if result.comparable:
                verdict = self.engine.compare_or_fallback(result.before_path, result.after_path, options)
                result = replace(result, comparison=verdict)
            elif result.error:
                logger.debug(f"Skipping comparison for {before.url}: {result.error}")
            merged.append(result)

        compared = sum(1 for r in merged if r.comparison is not None)
        logger.info(f"Merged {len(merged)} URLs, compared {compared} pairs")
        return merged

    def phase_timings(self,
                      before_outcomes: Sequence[CaptureOutcome],
                      after_outcomes: Sequence[CaptureOutcome]) -> Tuple[Optional[PhaseTiming], Optional[PhaseTiming]]:
        """Before and after phase windows; both None unless both batches ran."""
        if not before_outcomes or not after_outcomes:
            return None, None
        return compute_phase_timing(before_outcomes), compute_phase_timing(after_outcomes)
