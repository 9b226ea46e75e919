import sys
import os
from datetime import datetime, timezone
import pytest
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from main import main
from core.change_classifier import ChangeLevel
from core.models import MODE_BEFORE_AFTER, MODE_SINGLE, BeforeAfterResult, RunMetadata, SingleResult
from core.recompare import recompare_record
from core.record_store import RecordStore
from core.visual_diff import ComparisonOptions

T0 = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def block(rows, width=100):
    return [(x, y) for y in range(rows) for x in range(width)]


@pytest.fixture
def record_path(tmp_path, make_png):
    """A before/after record whose comparisons have not been run yet."""
    results = [
        BeforeAfterResult(
            url='https://example.com/',
            before_path=make_png('shots/home_before.png'),
            after_path=make_png('shots/home_after.png', changed=block(10)),
            timestamp=T0,
            after_timestamp=T0,
        ),
        BeforeAfterResult(
            url='https://example.com/pricing',
            before_path=make_png('shots/pricing_before.png'),
            after_path=make_png('shots/pricing_after.png', changed=block(1)[:20]),
            timestamp=T0,
            after_timestamp=T0,
        ),
        BeforeAfterResult(url='https://example.com/down', error='timeout', timestamp=T0),
    ]
    path = tmp_path / 'screenshot-data.jsonc'
    RecordStore().save(results, RunMetadata.from_results(MODE_BEFORE_AFTER, results, generated_at=T0), path)
    return path


def test_recompare_attaches_verdicts(record_path):
    record = recompare_record(record_path)
    home, pricing, down = record.results

    assert home.comparison.diff_percentage == 10.0
    assert home.comparison.change_level == ChangeLevel.MODERATE
    assert home.comparison.diff_image_path == record_path.parent / 'shots' / 'home_before_diff.png'
    assert pricing.comparison.diff_percentage == 0.2
    assert pricing.comparison.has_significant_change is False
    assert down.comparison is None
    assert down.error == 'timeout'


def test_recompare_saves_in_place(record_path):
    recompare_record(record_path)
    text = record_path.read_text(encoding='utf-8')
    assert '"changeLevel": "moderate"' in text
    assert '"diffImagePath": "shots/home_before_diff.png"' in text

    reloaded = RecordStore().load(record_path)
    assert reloaded.results[1].comparison.change_level == ChangeLevel.MINIMAL


def test_recompare_with_new_options(record_path):
    record = recompare_record(record_path, ComparisonOptions(min_change_threshold=0.1))
    assert record.results[1].comparison.has_significant_change is True


def test_recompare_survives_missing_screenshot(record_path):
    (record_path.parent / 'shots' / 'home_after.png').unlink()
    record = recompare_record(record_path)
    assert record.results[0].comparison.total_pixels == 0
    assert record.results[0].comparison.change_level == ChangeLevel.NONE
    assert record.results[1].comparison.diff_pixels == 20


def test_recompare_rejects_single_mode(tmp_path):
    results = [SingleResult(url='https://example.com/', path=tmp_path / 'home.png', timestamp=T0)]
    path = tmp_path / 'data.jsonc'
    RecordStore().save(results, RunMetadata.from_results(MODE_SINGLE, results), path)
    with pytest.raises(ValueError):
        recompare_record(path)


def test_main_summary(record_path):
    assert main(['summary', str(record_path)]) == 0


def test_main_compare_with_overrides(record_path, monkeypatch):
    monkeypatch.delenv('SCREENDIFF_MIN_CHANGE', raising=False)
    assert main(['compare', str(record_path), '--threshold', '0.2', '--no-diff-images']) == 0
    record = RecordStore().load(record_path)
    assert record.results[0].comparison.diff_percentage == 10.0
    assert record.results[0].comparison.diff_image_path is None
    assert not (record_path.parent / 'shots' / 'home_before_diff.png').exists()


def test_main_missing_record(tmp_path):
    assert main(['summary', str(tmp_path / 'missing.jsonc')]) == 1


def test_main_invalid_record(tmp_path):
    path = tmp_path / 'data.jsonc'
    path.write_text('{"metadata": {"version": "1.0.0"}, "results": []}', encoding='utf-8')
    assert main(['compare', str(path)]) == 1


def test_main_rejects_bad_threshold(record_path):
    assert main(['compare', str(record_path), '--threshold', '2']) == 1


def test_main_reports_mistyped_record(tmp_path):
    path = tmp_path / 'data.jsonc'
    path.write_text('{"metadata": {"version": "1.0.0", "mode": "before-after", "totalUrls": null}, '
                    '"results": []}', encoding='utf-8')
    assert main(['summary', str(path)]) == 1
