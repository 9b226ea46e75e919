"""
Recompare Module
Re-runs the image comparison for an existing record with new options.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional, Union

from .models import MODE_BEFORE_AFTER, PersistedRecord
from .record_store import RecordStore
from .visual_diff import ComparisonOptions, ImageComparisonEngine

logger = logging.getLogger(__name__)


def recompare_record(record_path: Union[str, Path],
                     options: Optional[ComparisonOptions] = None,
                     engine: Optional[ImageComparisonEngine] = None,
                     store: Optional[RecordStore] = None) -> PersistedRecord:
    """
    Compare every successful before/after pair of a record again and save it.

    Results that failed or miss a screenshot are kept as they are. The record
    file is rewritten in place; the returned record has absolute paths.
    """
    store = store or RecordStore()
    engine = engine or ImageComparisonEngine()
    record = store.resolve_paths(store.load(record_path), record_path)
    if record.metadata.mode != MODE_BEFORE_AFTER:
        raise ValueError(f"Record {record_path} is in {record.metadata.mode} mode, nothing to compare")

    targets = [index for index, result in enumerate(record.results) if result.comparable]
    logger.info(f"Re-comparing {len(targets)} of {len(record.results)} results")
    verdicts = engine.batch_compare(
        [(record.results[i].before_path, record.results[i].after_path) for i in targets],
        options,
    )

    results = list(record.results)
    for index, verdict in zip(targets, verdicts):
        results[index] = replace(results[index], comparison=verdict)

    updated = replace(record, results=results)
    store.save(updated.results, updated.metadata, record_path)
    return updated
