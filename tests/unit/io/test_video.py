"""Unit tests for VideoSet multi-camera video reader and engine replay."""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import pytest

from rigsync.calibration import CameraRig, PinholeCamera, Transformation
from rigsync.engine import FrameSyncEngine
from rigsync.io.video import VideoSet, replay_into_engine


def _write_synthetic_video(path: Path, n_frames: int, color: tuple[int, ...]) -> None:
    """Write a synthetic video with solid-color frames (160x120, 30fps)."""
    fourcc = cv2.VideoWriter_fourcc(*"MJPG")
    writer = cv2.VideoWriter(str(path), fourcc, 30.0, (160, 120))
    frame = np.full((120, 160, 3), color, dtype=np.uint8)
    for _ in range(n_frames):
        writer.write(frame)
    writer.release()


def _rig(num_cameras: int) -> CameraRig:
    return CameraRig(
        None,
        [Transformation() for _ in range(num_cameras)],
        [PinholeCamera([100.0, 100.0, 80.0, 60.0], 160, 120) for _ in range(num_cameras)],
    )


@pytest.fixture
def two_camera_videos(tmp_path: Path) -> list[Path]:
    """Create 2 synthetic 5-frame videos."""
    paths = [tmp_path / "cam_a.avi", tmp_path / "cam_b.avi"]
    _write_synthetic_video(paths[0], 5, (255, 0, 0))
    _write_synthetic_video(paths[1], 5, (0, 255, 0))
    return paths


@pytest.fixture
def unequal_videos(tmp_path: Path) -> list[Path]:
    """Create 2 videos with different frame counts (3 and 7)."""
    paths = [tmp_path / "cam_a.avi", tmp_path / "cam_b.avi"]
    _write_synthetic_video(paths[0], 3, (255, 0, 0))
    _write_synthetic_video(paths[1], 7, (0, 255, 0))
    return paths


class TestVideoSetIteration:
    def test_interleaves_cameras(self, two_camera_videos: list[Path]) -> None:
        with VideoSet(two_camera_videos) as vs:
            items = list(vs)

        assert len(items) == 10
        assert [index for index, _, _ in items] == [0, 1] * 5
        for _, frame, _ in items:
            assert frame.shape == (120, 160, 3)

    def test_stamps_aligned_and_increasing(self, two_camera_videos: list[Path]) -> None:
        with VideoSet(two_camera_videos) as vs:
            items = list(vs)

        stamps_a = [stamp for index, _, stamp in items if index == 0]
        stamps_b = [stamp for index, _, stamp in items if index == 1]
        assert stamps_a == stamps_b
        assert all(b > a for a, b in zip(stamps_a, stamps_a[1:]))

    def test_stops_at_shortest(self, unequal_videos: list[Path]) -> None:
        with VideoSet(unequal_videos) as vs:
            assert len(vs) == 3
            items = list(vs)
        assert sum(1 for index, _, _ in items if index == 0) == 3


class TestVideoSetErrors:
    def test_empty_list_raises(self) -> None:
        with pytest.raises(ValueError, match="must not be empty"):
            VideoSet([])

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError, match="Cannot open video"):
            with VideoSet([tmp_path / "missing.avi"]):
                pass

    def test_iterate_without_context_raises(self, two_camera_videos: list[Path]) -> None:
        with pytest.raises(RuntimeError, match="context manager"):
            list(VideoSet(two_camera_videos))

    def test_captures_released_on_exit(self, two_camera_videos: list[Path]) -> None:
        vs = VideoSet(two_camera_videos)
        with vs:
            pass
        with pytest.raises(RuntimeError):
            list(vs)


class TestReplay:
    def test_replay_builds_bundles(self, two_camera_videos: list[Path]) -> None:
        engine = FrameSyncEngine(_rig(2))
        with VideoSet(two_camera_videos) as vs:
            count = replay_into_engine(vs, engine)
        assert count == 10
        assert engine.num_visual_nframes_complete() == 5
        bundle = engine.get_next()
        assert bundle.is_complete
        # MJPG is lossy; channel dominance survives.
        assert bundle.get_frame(0).image[60, 80].argmax() == 0
        assert bundle.get_frame(1).image[60, 80].argmax() == 1

    def test_replay_camera_count_mismatch(self, two_camera_videos: list[Path]) -> None:
        engine = FrameSyncEngine(_rig(3))
        with VideoSet(two_camera_videos) as vs:
            with pytest.raises(ValueError, match="3 cameras"):
                replay_into_engine(vs, engine)
