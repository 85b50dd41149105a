"""ConsoleObserver: prints bundle-level progress to stderr."""

from __future__ import annotations

import sys

from rigsync.engine.events import (
    BundleCompleted,
    BundleEvicted,
    Event,
    ImageDropped,
)


class ConsoleObserver:
    """Observer that prints human-readable synchronization progress to stderr.

    Output goes to stderr to keep stdout clean for piping. By default one
    line is written every *every* emitted bundles; with *verbose* each
    bundle and each dropped image gets its own line.

    Args:
        verbose: Print per-bundle and per-drop lines.
        every: Progress line interval in bundles.
    """

    def __init__(self, verbose: bool = False, every: int = 100) -> None:
        self._verbose = verbose
        self._every = max(1, every)
        self._emitted = 0

    def on_event(self, event: Event) -> None:
        """Handle an engine event by printing progress to stderr."""
        if isinstance(event, (BundleCompleted, BundleEvicted)):
            self._emitted += 1
            if self._verbose:
                status = "complete"
                if isinstance(event, BundleEvicted):
                    status = f"evicted, missing {list(event.missing_camera_indices)}"
                sys.stderr.write(
                    f"  bundle {event.bundle_timestamp_ns} ns ({status})\n"
                )
                sys.stderr.flush()
            elif self._emitted % self._every == 0:
                sys.stderr.write(f"[{self._emitted}] bundles emitted\n")
                sys.stderr.flush()

        elif isinstance(event, ImageDropped) and self._verbose:
            sys.stderr.write(
                f"  dropped camera {event.camera_index} image at "
                f"{event.timestamp_ns} ns ({event.reason})\n"
            )
            sys.stderr.flush()
