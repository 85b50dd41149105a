"""Multi-camera video reader for replaying recordings into the sync engine."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Iterator

    from rigsync.engine.sync import FrameSyncEngine

logger = logging.getLogger(__name__)

_DEFAULT_FPS = 30.0


class VideoSet:
    """Context-managed reader over one video file per rig camera.

    Iteration interleaves cameras frame by frame and yields
    ``(camera_index, frame_bgr, timestamp_ns)``. The stamp comes from the
    capture position in milliseconds; containers that report no position
    fall back to ``frame_index / fps``.

    Args:
        camera_videos: Video paths in rig camera order.

    Raises:
        ValueError: If *camera_videos* is empty.
    """

    def __init__(self, camera_videos: list[Path]) -> None:
        if not camera_videos:
            raise ValueError("camera_videos must not be empty")
        self._paths = [Path(p) for p in camera_videos]
        self._captures: list[cv2.VideoCapture] = []
        self._frame_count = 0

    @property
    def num_cameras(self) -> int:
        return len(self._paths)

    def __enter__(self) -> VideoSet:
        """Open all video captures and compute the frame count."""
        frame_counts: list[int] = []
        for path in self._paths:
            cap = cv2.VideoCapture(str(path))
            if not cap.isOpened():
                for c in self._captures:
                    c.release()
                self._captures.clear()
                raise RuntimeError(f"Cannot open video: {path}")
            self._captures.append(cap)
            frame_counts.append(int(cap.get(cv2.CAP_PROP_FRAME_COUNT)))

        self._frame_count = min(frame_counts)
        return self

    def __exit__(self, *exc: object) -> None:
        """Release all video captures."""
        for cap in self._captures:
            cap.release()
        self._captures.clear()

    def __len__(self) -> int:
        """Minimum frame count across all cameras."""
        return self._frame_count

    def _timestamp_ns(self, cap: cv2.VideoCapture, frame_idx: int) -> int:
        # POS_MSEC after read() is the stamp of the frame just decoded.
        pos_ms = cap.get(cv2.CAP_PROP_POS_MSEC)
        if pos_ms > 0.0 or frame_idx == 0:
            return int(round(pos_ms * 1e6))
        fps = cap.get(cv2.CAP_PROP_FPS) or _DEFAULT_FPS
        return int(round(frame_idx / fps * 1e9))

    def __iter__(self) -> Iterator[tuple[int, np.ndarray, int]]:
        """Yield ``(camera_index, frame_bgr, timestamp_ns)`` until the first EOF."""
        if not self._captures:
            raise RuntimeError("VideoSet must be used as a context manager")
        frame_idx = 0
        while True:
            batch: list[tuple[int, np.ndarray, int]] = []
            for camera_index, cap in enumerate(self._captures):
                ret, frame = cap.read()
                if not ret:
                    return
                batch.append((camera_index, frame, self._timestamp_ns(cap, frame_idx)))
            yield from batch
            frame_idx += 1


def replay_into_engine(video_set: VideoSet, engine: FrameSyncEngine) -> int:
    """Feed every frame of an open *video_set* into *engine*.

    The video stamp is used as the system timestamp; no hardware stamp is
    passed.

    Returns:
        Number of images fed.

    Raises:
        ValueError: The video count differs from the engine's input rig.
    """
    num_cameras = engine.get_input_ncameras().num_cameras
    if video_set.num_cameras != num_cameras:
        raise ValueError(
            f"{video_set.num_cameras} videos for a rig with {num_cameras} cameras"
        )
    count = 0
    for camera_index, frame, timestamp_ns in video_set:
        engine.process_image(camera_index, frame, timestamp_ns)
        count += 1
    logger.debug("replayed %d images from %d videos", count, num_cameras)
    return count
