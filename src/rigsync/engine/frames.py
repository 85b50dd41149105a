"""Single-camera frames and synchronized multi-camera bundles."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from rigsync.calibration import CameraRig, PinholeCamera

INVALID_TIMESTAMP = -1


@dataclass
class VisualFrame:
    """One image from one camera, after processing.

    Attributes:
        camera_index: Slot of the camera in the rig.
        image: Image array, (H, W) or (H, W, C).
        system_timestamp_ns: Host clock stamp at arrival.
        hardware_timestamp_ns: Device clock stamp, or
            :data:`INVALID_TIMESTAMP` if the camera has none.
        camera: Calibration the image conforms to (the output rig camera).
    """

    camera_index: int
    image: np.ndarray
    system_timestamp_ns: int
    hardware_timestamp_ns: int = INVALID_TIMESTAMP
    camera: PinholeCamera | None = None

    @property
    def has_hardware_timestamp(self) -> bool:
        return self.hardware_timestamp_ns >= 0


@dataclass
class VisualNFrame:
    """A synchronized bundle: at most one frame per rig camera.

    Attributes:
        timestamp_ns: Synchronization stamp of the bundle.
        frames: One slot per rig camera; None where the camera did not
            report before the bundle was evicted.
        rig: Rig the frames conform to.

    Raises:
        ValueError: Slot count differs from the rig camera count.
    """

    timestamp_ns: int
    frames: list[VisualFrame | None] = field(default_factory=list)
    rig: CameraRig | None = None

    def __post_init__(self) -> None:
        if self.rig is not None and len(self.frames) != self.rig.num_cameras:
            raise ValueError(
                f"bundle has {len(self.frames)} slots but the rig has "
                f"{self.rig.num_cameras} cameras"
            )

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    @property
    def is_complete(self) -> bool:
        """True if every slot holds a frame."""
        return all(frame is not None for frame in self.frames)

    @property
    def missing_camera_indices(self) -> tuple[int, ...]:
        return tuple(i for i, frame in enumerate(self.frames) if frame is None)

    def get_frame(self, camera_index: int) -> VisualFrame | None:
        """Frame of *camera_index*, or None if the slot is empty.

        Raises:
            IndexError: *camera_index* is out of range.
        """
        if not 0 <= camera_index < len(self.frames):
            raise IndexError(
                f"camera index {camera_index} out of range [0, {len(self.frames)})"
            )
        return self.frames[camera_index]


__all__ = ["INVALID_TIMESTAMP", "VisualFrame", "VisualNFrame"]
