"""
Record Store Module
Saves and loads the portable JSONC record of a capture run.

Paths are absolute in memory and relative to the record's directory on disk;
this module is the only place that converts between the two. Comments in the
file are regenerated from the data on every save and discarded on load, so
hand edits to comments do not survive a round trip while edits to values do.
"""

import json
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from report.record_renderer import RecordRenderer
from utils.file_utils import (
    optional_absolute,
    optional_relative,
    read_file_content,
    write_file_content,
)
from utils.time_utils import format_timestamp, parse_timestamp
from .change_classifier import ChangeLevel
from .errors import SchemaValidationError
from .models import (
    MODE_BEFORE_AFTER,
    MODE_SINGLE,
    VALID_MODES,
    BeforeAfterResult,
    CaptureOptions,
    CaptureResult,
    ComparisonVerdict,
    PersistedRecord,
    PhaseTiming,
    RunMetadata,
    SingleResult,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Stored for failed results that carry no error message of their own
UNKNOWN_ERROR = 'Capture failed'

COUNT_FIELDS = ('totalUrls', 'successCount', 'errorCount')
INTEGER_OPTIONS = ('width', 'height', 'timeout', 'maxRetries', 'retryDelay')
PHASE_FIELDS = ('beforePhase', 'afterPhase')
RESULT_TEXT_FIELDS = (
    'singlePath', 'beforePath', 'afterPath',
    'error', 'beforeError', 'afterError',
    'timestamp', 'beforeTimestamp', 'afterTimestamp',
)


def strip_json_comments(content: str) -> str:
    """
    Remove comments from JSONC text.

    Grammar: outside string literals, '//' starts a comment running to the end
    of the line and '/*' starts one running to the next '*/'. Inside string
    literals nothing is a comment, so URLs like "https://example.com" are kept;
    backslash escapes are honoured when finding the end of a string. Lines left
    empty after stripping are dropped and trailing whitespace is trimmed.
    """
    out = []
    i = 0
    length = len(content)
    in_string = False
    while i < length:
        char = content[i]
        if in_string:
            out.append(char)
            if char == '\\' and i + 1 < length:
                out.append(content[i + 1])
                i += 2
                continue
            if char == '"':
                in_string = False
            i += 1
        elif char == '"':
            in_string = True
            out.append(char)
            i += 1
        elif content.startswith('//', i):
            newline = content.find('\n', i)
            i = length if newline == -1 else newline
        elif content.startswith('/*', i):
            end = content.find('*/', i + 2)
            i = length if end == -1 else end + 2
        else:
            out.append(char)
            i += 1

    lines = (line.rstrip() for line in ''.join(out).splitlines())
    return '\n'.join(line for line in lines if line)


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None


def _parse_optional_timestamp(value: Any, field: str, index: Optional[int] = None) -> Optional[datetime]:
    if value in (None, ''):
        return None
    try:
        return parse_timestamp(str(value))
    except ValueError as e:
        raise SchemaValidationError(f"Invalid timestamp in {field}: {value}", field=field, index=index) from e


def _expect(obj: Dict[str, Any], key: str, kind: type,
            nullable: bool = True, index: Optional[int] = None) -> None:
    """Raise SchemaValidationError when key is present but holds the wrong JSON type."""
    if key not in obj:
        return
    value = obj[key]
    if value is None and nullable:
        return
    # bool is an int subclass; JSON true/false never counts as a number
    if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
        where = f" in result {index}" if index is not None else ''
        raise SchemaValidationError(
            f"Invalid {key}{where}: expected {kind.__name__}, got {type(value).__name__}",
            field=key, index=index)


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys whose value is None, keeping order."""
    return {k: v for k, v in data.items() if v is not None}


class RecordStore:
    def __init__(self, renderer: Optional[RecordRenderer] = None):
        self.renderer = renderer or RecordRenderer()

    # ----------------------------- save ------------------------------------

    def save(self,
             results: Sequence[CaptureResult],
             metadata: RunMetadata,
             record_path: PathLike) -> Path:
        """
        Write the record, replacing any existing file.

        Args:
            results: In-memory results with absolute paths
            metadata: Run metadata; its mode decides the result layout
            record_path: Destination file, parent directories are created

        Returns:
            The path written to
        """
        path = Path(record_path)
        base_dir = path.parent.absolute()
        for index, result in enumerate(results):
            if result.mode != metadata.mode:
                raise ValueError(f"Result {index} ({result.url}) is {result.mode} but the record is {metadata.mode}")

        document = {
            'metadata': self._metadata_to_dict(metadata),
            'results': [self._result_to_dict(result, base_dir) for result in results],
        }
        write_file_content(path, self.renderer.render(document))
        logger.info(f"Saved record with {len(results)} results: {path}")
        return path

    def _metadata_to_dict(self, metadata: RunMetadata) -> Dict[str, Any]:
        options = metadata.options
        data = _compact({
            'version': metadata.version,
            'mode': metadata.mode,
            'generatedAt': _timestamp(metadata.generated_at),
            'totalUrls': metadata.total_urls,
            'successCount': metadata.success_count,
            'errorCount': metadata.error_count,
        })
        data['options'] = {
            'waitStrategy': options.wait_strategy,
            'width': options.width,
            'height': options.height,
            'timeout': options.timeout,
            'maxRetries': options.max_retries,
            'retryDelay': options.retry_delay,
        }
        for key, phase in (('beforePhase', metadata.before_phase), ('afterPhase', metadata.after_phase)):
            if phase is not None:
                data[key] = {
                    'startTime': format_timestamp(phase.start_time),
                    'endTime': format_timestamp(phase.end_time),
                    'duration': phase.duration,
                }
        return data

    def _result_to_dict(self, result: CaptureResult, base_dir: Path) -> Dict[str, Any]:
        if isinstance(result, SingleResult):
            return _compact({
                'url': result.url,
                'timestamp': _timestamp(result.timestamp),
                'singlePath': optional_relative(base_dir, result.path),
                'success': result.success,
                'error': result.error,
            })

        data = _compact({
            'url': result.url,
            'beforeTimestamp': _timestamp(result.timestamp),
            'afterTimestamp': _timestamp(result.after_timestamp),
            'beforePath': optional_relative(base_dir, result.before_path),
            'afterPath': optional_relative(base_dir, result.after_path),
            'beforeSuccess': result.success if result.before_path else None,
            'afterSuccess': result.success if result.after_path else None,
            'success': result.success,
            'error': result.error,
        })
        if result.comparison is not None:
            verdict = result.comparison
            data['comparison'] = _compact({
                'diffPixels': verdict.diff_pixels,
                'totalPixels': verdict.total_pixels,
                'diffPercentage': verdict.diff_percentage,
                'changeLevel': verdict.change_level.value,
                'hasSignificantChange': verdict.has_significant_change,
                'diffImagePath': optional_relative(base_dir, verdict.diff_image_path),
            })
        return data

    # ----------------------------- load ------------------------------------

    def load(self, record_path: PathLike) -> PersistedRecord:
        """
        Read and validate a record. Paths in the result stay relative;
        use resolve_paths to make them absolute.

        Raises:
            FileNotFoundError: If the record does not exist
            SchemaValidationError: If the content is not a valid record
        """
        path = Path(record_path)
        if not path.exists():
            raise FileNotFoundError(f"Data file not found: {path}")
        logger.info(f"Loading record: {path}")

        content = strip_json_comments(read_file_content(path))
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SchemaValidationError(f"Invalid data file format: {e}") from e

        self.validate(data)
        metadata = self._metadata_from_dict(data['metadata'], data['results'])
        results = [self._result_from_dict(raw, metadata.mode, index) for index, raw in enumerate(data['results'])]
        logger.debug(f"Loaded {len(results)} results in {metadata.mode} mode")
        return PersistedRecord(metadata=metadata, results=results)

    def validate(self, data: Any) -> None:
        """Check the parsed document; raises SchemaValidationError naming the offending field."""
        if not isinstance(data, dict) or not isinstance(data.get('metadata'), dict):
            raise SchemaValidationError('Missing metadata', field='metadata')
        metadata = data['metadata']
        if not metadata.get('version') or not isinstance(metadata['version'], str):
            raise SchemaValidationError('Missing version in metadata', field='version')
        if metadata.get('mode') not in VALID_MODES:
            raise SchemaValidationError('Invalid or missing mode in metadata', field='mode')
        self._validate_metadata_types(metadata)

        results = data.get('results')
        if not isinstance(results, list):
            raise SchemaValidationError('Missing or invalid results array', field='results')

        mode = metadata['mode']
        for index, result in enumerate(results):
            if not isinstance(result, dict) or not result.get('url'):
                raise SchemaValidationError(f"Missing url in result {index}", field='url', index=index)
            _expect(result, 'url', str, index=index)
            _expect(result, 'success', bool, nullable=False, index=index)
            for key in RESULT_TEXT_FIELDS:
                _expect(result, key, str, index=index)
            _expect(result, 'comparison', dict, index=index)
            if not self._succeeded(result):
                continue
            if mode == MODE_SINGLE and not result.get('singlePath'):
                raise SchemaValidationError(f"Missing singlePath in successful result {index}",
                                            field='singlePath', index=index)
            if mode == MODE_BEFORE_AFTER and not result.get('beforePath') and not result.get('afterPath'):
                raise SchemaValidationError(f"Missing beforePath or afterPath in successful result {index}",
                                            field='beforePath', index=index)

    @staticmethod
    def _validate_metadata_types(metadata: Dict[str, Any]) -> None:
        _expect(metadata, 'generatedAt', str)
        for key in COUNT_FIELDS:
            _expect(metadata, key, int, nullable=False)
        _expect(metadata, 'options', dict)
        options = metadata.get('options') or {}
        _expect(options, 'waitStrategy', str, nullable=False)
        for key in INTEGER_OPTIONS:
            _expect(options, key, int, nullable=False)
        for key in PHASE_FIELDS:
            _expect(metadata, key, dict)
            phase = metadata.get(key) or {}
            for part in ('startTime', 'endTime', 'duration'):
                _expect(phase, part, str)

    @staticmethod
    def _error_of(raw: Dict[str, Any]) -> Optional[str]:
        # Older records split the error by phase
        return raw.get('error') or raw.get('beforeError') or raw.get('afterError') or None

    def _succeeded(self, raw: Dict[str, Any]) -> bool:
        """An explicit success flag wins; without one, any error means failure."""
        success = raw.get('success')
        if success is None:
            return not self._error_of(raw)
        return success and not self._error_of(raw)

    def _metadata_from_dict(self, raw: Dict[str, Any], results: List[Dict[str, Any]]) -> RunMetadata:
        raw_options = raw.get('options') or {}
        defaults = CaptureOptions()
        options = CaptureOptions(
            wait_strategy=raw_options.get('waitStrategy', defaults.wait_strategy),
            width=int(raw_options.get('width', defaults.width)),
            height=int(raw_options.get('height', defaults.height)),
            timeout=int(raw_options.get('timeout', defaults.timeout)),
            max_retries=int(raw_options.get('maxRetries', defaults.max_retries)),
            retry_delay=int(raw_options.get('retryDelay', defaults.retry_delay)),
        )
        success_count = sum(1 for r in results if self._succeeded(r))
        return RunMetadata(
            version=raw['version'],
            mode=raw['mode'],
            generated_at=_parse_optional_timestamp(raw.get('generatedAt'), 'generatedAt'),
            total_urls=int(raw.get('totalUrls', len(results))),
            success_count=int(raw.get('successCount', success_count)),
            error_count=int(raw.get('errorCount', len(results) - success_count)),
            options=options,
            before_phase=self._phase_from_dict(raw.get('beforePhase'), 'beforePhase'),
            after_phase=self._phase_from_dict(raw.get('afterPhase'), 'afterPhase'),
        )

    def _phase_from_dict(self, raw: Optional[Dict[str, Any]], field: str) -> Optional[PhaseTiming]:
        if not raw:
            return None
        start = _parse_optional_timestamp(raw.get('startTime'), f"{field}.startTime")
        end = _parse_optional_timestamp(raw.get('endTime'), f"{field}.endTime")
        if start is None or end is None:
            raise SchemaValidationError(f"Incomplete {field} in metadata", field=field)
        return PhaseTiming(start_time=start, end_time=end, duration=str(raw.get('duration', '')))

    def _result_from_dict(self, raw: Dict[str, Any], mode: str, index: int) -> CaptureResult:
        error = self._error_of(raw) or (None if self._succeeded(raw) else UNKNOWN_ERROR)
        if mode == MODE_SINGLE:
            return SingleResult(
                url=raw['url'],
                path=Path(raw['singlePath']) if raw.get('singlePath') else None,
                timestamp=_parse_optional_timestamp(raw.get('timestamp'), 'timestamp', index),
                error=error,
            )
        return BeforeAfterResult(
            url=raw['url'],
            before_path=Path(raw['beforePath']) if raw.get('beforePath') else None,
            after_path=Path(raw['afterPath']) if raw.get('afterPath') else None,
            error=error,
            timestamp=_parse_optional_timestamp(raw.get('beforeTimestamp'), 'beforeTimestamp', index),
            after_timestamp=_parse_optional_timestamp(raw.get('afterTimestamp'), 'afterTimestamp', index),
            comparison=self._verdict_from_dict(raw.get('comparison'), index),
        )

    def _verdict_from_dict(self, raw: Optional[Dict[str, Any]], index: int) -> Optional[ComparisonVerdict]:
        if not raw:
            return None
        try:
            return ComparisonVerdict(
                diff_pixels=int(raw['diffPixels']),
                total_pixels=int(raw['totalPixels']),
                diff_percentage=float(raw['diffPercentage']),
                change_level=ChangeLevel(raw['changeLevel']),
                has_significant_change=bool(raw['hasSignificantChange']),
                diff_image_path=Path(raw['diffImagePath']) if raw.get('diffImagePath') else None,
            )
        except KeyError as e:
            field = e.args[0]
            raise SchemaValidationError(f"Missing {field} in comparison of result {index}",
                                        field=field, index=index) from e
        except (TypeError, ValueError) as e:
            raise SchemaValidationError(f"Invalid comparison in result {index}: {e}",
                                        field='comparison', index=index) from e

    # --------------------------- resolve -----------------------------------

    def resolve_paths(self, record: PersistedRecord, record_path: PathLike) -> PersistedRecord:
        """Return a copy of record with every path made absolute against the record's directory."""
        base_dir = Path(record_path).parent
        return replace(record, results=[self._resolve_result(r, base_dir) for r in record.results])

    def _resolve_result(self, result: CaptureResult, base_dir: Path) -> CaptureResult:
        if isinstance(result, SingleResult):
            return replace(result, path=optional_absolute(base_dir, result.path))
        comparison = result.comparison
        if comparison is not None:
            comparison = replace(comparison, diff_image_path=optional_absolute(base_dir, comparison.diff_image_path))
        return replace(
            result,
            before_path=optional_absolute(base_dir, result.before_path),
            after_path=optional_absolute(base_dir, result.after_path),
            comparison=comparison,
        )
