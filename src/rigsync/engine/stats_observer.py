"""Statistics observer aggregating synchronization outcomes into a report."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path

from rigsync.engine.events import (
    BundleCompleted,
    BundleDiscarded,
    BundleEvicted,
    DuplicateImage,
    Event,
    ImageDropped,
    ImageReceived,
)

logger = logging.getLogger(__name__)


class SyncStatsObserver:
    """Counts images and bundles by outcome from engine events.

    Args:
        num_cameras: Camera count of the rig, for per-camera rows.
        output_path: If set, :meth:`finalize` writes the report here.

    Example::

        stats = SyncStatsObserver(num_cameras=rig.num_cameras)
        engine = FrameSyncEngine(rig, observers=[stats])
        ...
        engine.flush()
        print(stats.report())
    """

    def __init__(
        self, num_cameras: int, output_path: str | Path | None = None
    ) -> None:
        self._output_path = Path(output_path) if output_path is not None else None
        self.num_cameras = num_cameras
        self.images_received: Counter[int] = Counter()
        self.images_dropped: Counter[str] = Counter()
        self.duplicates: Counter[int] = Counter()
        self.missing_slots: Counter[int] = Counter()
        self.bundles_completed = 0
        self.bundles_evicted = 0
        self.bundles_discarded: Counter[str] = Counter()

    def on_event(self, event: Event) -> None:
        """Record one engine event."""
        if isinstance(event, ImageReceived):
            self.images_received[event.camera_index] += 1
        elif isinstance(event, DuplicateImage):
            self.duplicates[event.camera_index] += 1
        elif isinstance(event, ImageDropped):
            self.images_dropped[event.reason] += 1
        elif isinstance(event, BundleCompleted):
            self.bundles_completed += 1
        elif isinstance(event, BundleEvicted):
            self.bundles_evicted += 1
            self.missing_slots.update(event.missing_camera_indices)
        elif isinstance(event, BundleDiscarded):
            self.bundles_discarded[event.reason] += 1

    @property
    def bundles_emitted(self) -> int:
        return self.bundles_completed + self.bundles_evicted

    def report(self) -> str:
        """Return a formatted multi-line synchronization report."""
        lines: list[str] = []
        lines.append("Synchronization Report")
        lines.append("=" * 50)
        lines.append(f"  {'bundles complete':<30s} {self.bundles_completed:8d}")
        lines.append(f"  {'bundles evicted':<30s} {self.bundles_evicted:8d}")
        for reason in sorted(self.bundles_discarded):
            label = f"bundles discarded ({reason})"
            lines.append(f"  {label:<30s} {self.bundles_discarded[reason]:8d}")
        for reason in sorted(self.images_dropped):
            label = f"images dropped ({reason})"
            lines.append(f"  {label:<30s} {self.images_dropped[reason]:8d}")
        lines.append("-" * 50)
        lines.append(f"  {'camera':<8s}{'received':>10s}{'duplicate':>12s}{'missing':>10s}")
        for index in range(self.num_cameras):
            lines.append(
                f"  {index:<8d}{self.images_received[index]:>10d}"
                f"{self.duplicates[index]:>12d}{self.missing_slots[index]:>10d}"
            )

        emitted = self.bundles_emitted
        if emitted:
            lines.append("-" * 50)
            lines.append(
                f"  complete ratio: {self.bundles_completed / emitted * 100:5.1f}%"
            )
        return "\n".join(lines)

    def finalize(self) -> str:
        """Log the report and optionally write it to *output_path*."""
        report_text = self.report()
        logger.info("\n%s", report_text)

        if self._output_path is not None:
            self._output_path.parent.mkdir(parents=True, exist_ok=True)
            self._output_path.write_text(report_text, encoding="utf-8")
        return report_text


__all__ = ["SyncStatsObserver"]
