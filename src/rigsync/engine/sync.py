"""Frame synchronization engine: per-camera images in, time-aligned bundles out.

Images arrive one camera at a time, in any camera order, from any thread.
Each image is processed (e.g. undistorted) and then assigned to an
in-progress *bucket*: the open bundle whose timestamp lies within
``match_tolerance_ns`` of the image stamp, or a new one. A bucket is
promoted to the output queue exactly once, either the moment its last
slot fills or when it falls more than ``eviction_timeout_ns`` behind the
newest stamp seen (promoted with empty slots). The output queue is always
sorted oldest-first by bundle timestamp.

Bucket lifecycle::

    EMPTY -> PARTIAL -> COMPLETE -> EMITTED
                  \\_____(evicted)_____/

Images that match an already emitted bundle, or that are older than the
eviction horizon and match no open bundle, are dropped.
"""

from __future__ import annotations

import bisect
import enum
import logging
import threading
from collections.abc import Iterable

import numpy as np

from rigsync.calibration import CameraRig
from rigsync.engine.config import SyncConfig
from rigsync.engine.events import (
    BundleCompleted,
    BundleDiscarded,
    BundleEvicted,
    DuplicateImage,
    Event,
    ImageDropped,
    ImageReceived,
)
from rigsync.engine.frames import INVALID_TIMESTAMP, VisualFrame, VisualNFrame
from rigsync.engine.observers import EventBus, Observer
from rigsync.engine.processing import ImageProcessor, PassthroughProcessor

logger = logging.getLogger(__name__)


class BucketState(enum.Enum):
    """Lifecycle of an in-progress bundle."""

    EMPTY = "empty"
    PARTIAL = "partial"
    COMPLETE = "complete"
    EMITTED = "emitted"


class _Bucket:
    """Partially filled bundle keyed by the stamp of its first image."""

    __slots__ = ("frames", "state", "timestamp_ns")

    def __init__(self, timestamp_ns: int, num_cameras: int) -> None:
        self.timestamp_ns = timestamp_ns
        self.frames: list[VisualFrame | None] = [None] * num_cameras
        self.state = BucketState.EMPTY

    def fill(self, frame: VisualFrame) -> VisualFrame | None:
        """Store *frame* in its slot and return the frame it replaced."""
        previous = self.frames[frame.camera_index]
        self.frames[frame.camera_index] = frame
        if all(f is not None for f in self.frames):
            self.state = BucketState.COMPLETE
        else:
            self.state = BucketState.PARTIAL
        return previous

    @property
    def missing(self) -> tuple[int, ...]:
        return tuple(i for i, f in enumerate(self.frames) if f is None)


class FrameSyncEngine:
    """Groups per-camera images into synchronized multi-camera bundles.

    Args:
        input_rig: Calibration of the incoming raw images.
        config: Matching and eviction policy.
        processor: Per-image processing; passthrough if None. Its
            ``output_rig`` is the rig attached to every emitted bundle.
        observers: Observers subscribed to every engine event.

    Raises:
        ValueError: The output rig has a different camera count than the
            input rig.

    Example::

        engine = FrameSyncEngine(rig, SyncConfig(match_tolerance_ns=2_000_000))
        engine.process_image(0, image0, system_ns, hardware_ns)
        engine.process_image(1, image1, system_ns, hardware_ns)
        bundle = engine.get_next()
    """

    def __init__(
        self,
        input_rig: CameraRig,
        config: SyncConfig | None = None,
        processor: ImageProcessor | None = None,
        observers: Iterable[Observer] | None = None,
    ) -> None:
        self._config = config if config is not None else SyncConfig()
        self._input_rig = input_rig
        self._processor = (
            processor if processor is not None else PassthroughProcessor(input_rig)
        )
        self._output_rig = self._processor.output_rig
        if self._output_rig.num_cameras != input_rig.num_cameras:
            raise ValueError(
                f"output rig has {self._output_rig.num_cameras} cameras, "
                f"input rig has {input_rig.num_cameras}"
            )

        self.event_bus = EventBus()
        for observer in observers or ():
            self.event_bus.subscribe(Event, observer)

        self._lock = threading.Lock()
        self._buckets: list[_Bucket] = []
        self._queue: list[VisualNFrame] = []
        self._emitted_stamps: list[int] = []
        self._newest_ns: int | None = None

    @property
    def config(self) -> SyncConfig:
        return self._config

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def _sync_stamp(self, system_timestamp_ns: int, hardware_timestamp_ns: int) -> int:
        if self._config.use_hardware_timestamps and hardware_timestamp_ns >= 0:
            return hardware_timestamp_ns
        return system_timestamp_ns

    def process_image(
        self,
        camera_index: int,
        image: np.ndarray,
        system_timestamp_ns: int,
        hardware_timestamp_ns: int = INVALID_TIMESTAMP,
    ) -> None:
        """Add one camera image to the synchronization buffer.

        Args:
            camera_index: Slot of the camera in the input rig.
            image: Raw image.
            system_timestamp_ns: Host clock stamp.
            hardware_timestamp_ns: Device clock stamp, or
                :data:`~rigsync.engine.frames.INVALID_TIMESTAMP`.

        Raises:
            IndexError: *camera_index* is outside the input rig.
        """
        num_cameras = self._input_rig.num_cameras
        if not 0 <= camera_index < num_cameras:
            raise IndexError(
                f"camera index {camera_index} out of range [0, {num_cameras})"
            )
        stamp = self._sync_stamp(int(system_timestamp_ns), int(hardware_timestamp_ns))

        processed = self._processor.process(camera_index, image)
        frame = VisualFrame(
            camera_index=camera_index,
            image=processed,
            system_timestamp_ns=int(system_timestamp_ns),
            hardware_timestamp_ns=int(hardware_timestamp_ns),
            camera=self._output_rig.get_camera(camera_index),
        )

        with self._lock:
            events = self._insert_locked(frame, stamp)
        self._emit(events)

    def _insert_locked(self, frame: VisualFrame, stamp: int) -> list[Event]:
        cfg = self._config
        events: list[Event] = []
        index = frame.camera_index

        best: _Bucket | None = None
        best_distance = cfg.match_tolerance_ns + 1
        for bucket in self._buckets:
            distance = abs(bucket.timestamp_ns - stamp)
            if distance < best_distance:
                best, best_distance = bucket, distance
        emitted_distance = min(
            (abs(t - stamp) for t in self._emitted_stamps),
            default=cfg.match_tolerance_ns + 1,
        )
        if emitted_distance <= cfg.match_tolerance_ns and emitted_distance < best_distance:
            logger.warning(
                "dropping late image from camera %d at %d ns: bundle already emitted",
                index,
                stamp,
            )
            return [
                ImageDropped(camera_index=index, timestamp_ns=stamp, reason="emitted")
            ]

        # Open buckets still accept images older than the horizon.
        if (
            best is None
            and self._newest_ns is not None
            and stamp < self._newest_ns - cfg.eviction_timeout_ns
        ):
            logger.warning(
                "dropping stale image from camera %d at %d ns (newest %d ns)",
                index,
                stamp,
                self._newest_ns,
            )
            return [ImageDropped(camera_index=index, timestamp_ns=stamp, reason="stale")]

        if best is None:
            best = _Bucket(stamp, self._output_rig.num_cameras)
            self._buckets.append(best)

        previous = best.fill(frame)
        events.append(
            ImageReceived(
                camera_index=index,
                timestamp_ns=stamp,
                bundle_timestamp_ns=best.timestamp_ns,
            )
        )
        if previous is not None:
            logger.warning(
                "camera %d reported twice for bundle %d ns, keeping the newer image",
                index,
                best.timestamp_ns,
            )
            events.append(
                DuplicateImage(
                    camera_index=index,
                    bundle_timestamp_ns=best.timestamp_ns,
                    previous_timestamp_ns=self._sync_stamp(
                        previous.system_timestamp_ns, previous.hardware_timestamp_ns
                    ),
                    timestamp_ns=stamp,
                )
            )

        if best.state is BucketState.COMPLETE:
            self._buckets.remove(best)
            self._promote_locked(best)
            logger.debug("bundle %d ns complete", best.timestamp_ns)
            events.append(
                BundleCompleted(
                    bundle_timestamp_ns=best.timestamp_ns,
                    queue_length=len(self._queue),
                )
            )

        if self._newest_ns is None or stamp > self._newest_ns:
            self._newest_ns = stamp
        horizon = self._newest_ns - cfg.eviction_timeout_ns
        events.extend(self._evict_locked(horizon))
        # Older stamps can no longer be matched: images that old are stale.
        limit = horizon - cfg.match_tolerance_ns
        self._emitted_stamps = [t for t in self._emitted_stamps if t >= limit]
        events.extend(self._trim_queue_locked())
        return events

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def _promote_locked(self, bucket: _Bucket) -> None:
        bundle = VisualNFrame(
            timestamp_ns=bucket.timestamp_ns,
            frames=list(bucket.frames),
            rig=self._output_rig,
        )
        position = bisect.bisect_right(
            [b.timestamp_ns for b in self._queue], bucket.timestamp_ns
        )
        self._queue.insert(position, bundle)
        bucket.state = BucketState.EMITTED
        self._emitted_stamps.append(bucket.timestamp_ns)

    def _evict_locked(self, horizon_ns: int) -> list[Event]:
        events: list[Event] = []
        for bucket in [b for b in self._buckets if b.timestamp_ns < horizon_ns]:
            missing = bucket.missing
            self._buckets.remove(bucket)
            self._promote_locked(bucket)
            logger.warning(
                "evicting bundle %d ns with missing cameras %s",
                bucket.timestamp_ns,
                list(missing),
            )
            events.append(
                BundleEvicted(
                    bundle_timestamp_ns=bucket.timestamp_ns,
                    missing_camera_indices=missing,
                    queue_length=len(self._queue),
                )
            )
        return events

    def _trim_queue_locked(self) -> list[Event]:
        events: list[Event] = []
        while len(self._queue) > self._config.max_queue_length:
            dropped = self._queue.pop(0)
            logger.warning(
                "output queue above %d bundles, discarding bundle %d ns",
                self._config.max_queue_length,
                dropped.timestamp_ns,
            )
            events.append(
                BundleDiscarded(
                    bundle_timestamp_ns=dropped.timestamp_ns, reason="overflow"
                )
            )
        return events

    def flush(self) -> int:
        """Promote every in-progress bundle, complete or not.

        Intended for the end of a stream.

        Returns:
            Number of bundles promoted.
        """
        with self._lock:
            count = len(self._buckets)
            if self._buckets:
                newest_bucket = max(b.timestamp_ns for b in self._buckets)
                events = self._evict_locked(newest_bucket + 1)
            else:
                events = []
            events.extend(self._trim_queue_locked())
        self._emit(events)
        return count

    def _emit(self, events: list[Event]) -> None:
        for event in events:
            self.event_bus.emit(event)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def num_visual_nframes_complete(self) -> int:
        """Number of bundles ready for retrieval."""
        with self._lock:
            return len(self._queue)

    def num_in_progress(self) -> int:
        with self._lock:
            return len(self._buckets)

    def get_next(self) -> VisualNFrame | None:
        """Remove and return the oldest ready bundle, or None if none is ready."""
        with self._lock:
            if not self._queue:
                return None
            return self._queue.pop(0)

    def get_latest_and_clear(self) -> VisualNFrame | None:
        """Return the newest ready bundle and discard all older ones.

        Returns:
            The newest bundle, or None if the queue is empty.
        """
        with self._lock:
            if not self._queue:
                return None
            latest = self._queue.pop()
            superseded = self._queue
            self._queue = []
        if superseded:
            logger.debug(
                "discarding %d bundles older than %d ns",
                len(superseded),
                latest.timestamp_ns,
            )
        self._emit(
            [
                BundleDiscarded(bundle_timestamp_ns=b.timestamp_ns, reason="superseded")
                for b in superseded
            ]
        )
        return latest

    def get_input_ncameras(self) -> CameraRig:
        """Calibration of the raw input images."""
        return self._input_rig

    def get_output_ncameras(self) -> CameraRig:
        """Calibration attached to every emitted bundle."""
        return self._output_rig


__all__ = ["BucketState", "FrameSyncEngine"]
