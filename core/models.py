"""
Data Models Module
Capture outcomes, comparison verdicts, per-URL results and run metadata.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import ClassVar, List, Optional, Sequence, Union

from .change_classifier import ChangeLevel

MODE_SINGLE = 'single'
MODE_BEFORE_AFTER = 'before-after'
VALID_MODES = (MODE_SINGLE, MODE_BEFORE_AFTER)

RECORD_VERSION = '1.0.0'


@dataclass(frozen=True)
class CaptureOutcome:
    """One capture attempt, as handed over by the capture step."""
    url: str
    image_path: Optional[Path] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class ComparisonVerdict:
    diff_pixels: int
    total_pixels: int
    diff_percentage: float
    change_level: ChangeLevel
    has_significant_change: bool
    diff_image_path: Optional[Path] = None

    @classmethod
    def fallback(cls) -> 'ComparisonVerdict':
        """Neutral verdict used when a pair could not be compared."""
        return cls(
            diff_pixels=0,
            total_pixels=0,
            diff_percentage=0.0,
            change_level=ChangeLevel.NONE,
            has_significant_change=False,
        )


@dataclass(frozen=True)
class SingleResult:
    mode: ClassVar[str] = MODE_SINGLE

    url: str
    path: Optional[Path] = None
    timestamp: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.error


@dataclass(frozen=True)
class BeforeAfterResult:
    mode: ClassVar[str] = MODE_BEFORE_AFTER

    url: str
    before_path: Optional[Path] = None
    after_path: Optional[Path] = None
    error: Optional[str] = None
    timestamp: Optional[datetime] = None
    after_timestamp: Optional[datetime] = None
    comparison: Optional[ComparisonVerdict] = None

    @property
    def success(self) -> bool:
        return not self.error

    @property
    def comparable(self) -> bool:
        """True when both captures exist and neither failed."""
        return self.success and self.before_path is not None and self.after_path is not None


PairedResult = BeforeAfterResult
CaptureResult = Union[SingleResult, BeforeAfterResult]


@dataclass(frozen=True)
class CaptureOptions:
    """Snapshot of the options the capture run was started with."""
    wait_strategy: str = 'load'
    width: int = 1920
    height: int = 1080
    timeout: int = 30000
    max_retries: int = 3
    retry_delay: int = 2000


@dataclass(frozen=True)
class PhaseTiming:
    start_time: datetime
    end_time: datetime
    duration: str


@dataclass(frozen=True)
class RunMetadata:
    mode: str
    total_urls: int
    success_count: int
    error_count: int
    options: CaptureOptions = field(default_factory=CaptureOptions)
    generated_at: Optional[datetime] = None
    before_phase: Optional[PhaseTiming] = None
    after_phase: Optional[PhaseTiming] = None
    version: str = RECORD_VERSION

    @classmethod
    def from_results(cls,
                     mode: str,
                     results: Sequence[CaptureResult],
                     options: Optional[CaptureOptions] = None,
                     before_phase: Optional[PhaseTiming] = None,
                     after_phase: Optional[PhaseTiming] = None,
                     generated_at: Optional[datetime] = None) -> 'RunMetadata':
        """Build metadata with counts derived from the results."""
        if mode not in VALID_MODES:
            raise ValueError(f"Unknown mode: {mode}")
        success_count = sum(1 for r in results if r.success)
        return cls(
            mode=mode,
            total_urls=len(results),
            success_count=success_count,
            error_count=len(results) - success_count,
            options=options or CaptureOptions(),
            generated_at=generated_at or datetime.now(timezone.utc),
            before_phase=before_phase,
            after_phase=after_phase,
        )


@dataclass(frozen=True)
class PersistedRecord:
    metadata: RunMetadata
    results: List[CaptureResult] = field(default_factory=list)
