"""Unit tests for SyncStatsObserver."""

from __future__ import annotations

from pathlib import Path

from rigsync.engine.events import (
    BundleCompleted,
    BundleDiscarded,
    BundleEvicted,
    DuplicateImage,
    ImageDropped,
    ImageReceived,
)
from rigsync.engine.observers import Observer
from rigsync.engine.stats_observer import SyncStatsObserver


def _feed_sample(observer) -> None:
    for index in (0, 1, 0, 1, 0):
        observer.on_event(ImageReceived(camera_index=index))
    observer.on_event(DuplicateImage(camera_index=0))
    observer.on_event(ImageDropped(camera_index=1, reason="stale"))
    observer.on_event(BundleCompleted(bundle_timestamp_ns=1))
    observer.on_event(BundleCompleted(bundle_timestamp_ns=2))
    observer.on_event(BundleEvicted(bundle_timestamp_ns=3, missing_camera_indices=(1,)))
    observer.on_event(BundleDiscarded(bundle_timestamp_ns=1, reason="overflow"))


def test_stats_observer_satisfies_protocol() -> None:
    assert isinstance(SyncStatsObserver(2), Observer)


def test_stats_counts() -> None:
    stats = SyncStatsObserver(num_cameras=2)
    _feed_sample(stats)

    assert stats.images_received == {0: 3, 1: 2}
    assert stats.duplicates[0] == 1
    assert stats.images_dropped["stale"] == 1
    assert stats.bundles_completed == 2
    assert stats.bundles_evicted == 1
    assert stats.bundles_emitted == 3
    assert stats.missing_slots == {1: 1}
    assert stats.bundles_discarded["overflow"] == 1


def test_stats_report_format() -> None:
    stats = SyncStatsObserver(num_cameras=2)
    _feed_sample(stats)
    report = stats.report()

    assert "Synchronization Report" in report
    assert "bundles complete" in report
    assert "images dropped (stale)" in report
    assert "bundles discarded (overflow)" in report
    # 2 of 3 emitted bundles were complete.
    assert "66.7%" in report


def test_empty_report_has_no_ratio() -> None:
    report = SyncStatsObserver(num_cameras=1).report()
    assert "complete ratio" not in report


def test_finalize_writes_file(tmp_path: Path) -> None:
    out = tmp_path / "reports" / "sync.txt"
    stats = SyncStatsObserver(num_cameras=2, output_path=out)
    _feed_sample(stats)
    text = stats.finalize()
    assert out.read_text(encoding="utf-8") == text

