"""Calibrated multi-camera rig.

Coordinate frames:

- ``B``: body frame of the rig.
- ``Ci``: frame attached to camera ``i``.

``T_C_B[i]`` takes points from ``B`` to ``Ci``.

A rig is shared read-mostly (for example between the input and output roles
of a :class:`~rigsync.engine.sync.FrameSyncEngine`). There is no internal
locking: mutating a rig while an engine is reading it is the caller's
responsibility. Use :meth:`CameraRig.clone_rig_without_distortion` or
:meth:`CameraRig.clone` to decouple roles instead.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .camera import PinholeCamera
from .ids import IdGenerator, generate_id, is_valid_id, parse_id
from .transforms import Transformation

logger = logging.getLogger(__name__)


class RigConsistencyError(AssertionError):
    """A rig invariant was violated by the caller (programming error)."""


class CameraRig:
    """An ordered set of cameras with one body-to-camera transform each.

    The two sequences are parallel: ``T_C_B[i]`` belongs to ``cameras[i]``.

    Args:
        rig_id: 32-char hex identifier; generated if None.
        T_C_B: Transformations from the body frame to each camera frame.
        cameras: Cameras, one per transformation.
        label: Human-readable description of the rig.

    Raises:
        RigConsistencyError: Mismatched lengths, no cameras, or duplicate
            camera identifiers.
        ValueError: Malformed *rig_id*.
    """

    def __init__(
        self,
        rig_id: str | None,
        T_C_B: Sequence[Transformation],
        cameras: Sequence[PinholeCamera],
        label: str = "",
    ) -> None:
        if rig_id is None:
            resolved_id = generate_id()
        else:
            parsed = parse_id(rig_id)
            if parsed is None:
                raise ValueError(f"invalid rig id {rig_id!r}")
            resolved_id = parsed

        self._id = resolved_id
        self.label = label
        self._T_C_B = list(T_C_B)
        self._cameras = list(cameras)
        self._id_to_index: dict[str, int] = {}
        self._init_internal()

    def _init_internal(self) -> None:
        if len(self._T_C_B) != len(self._cameras):
            raise RigConsistencyError(
                f"rig needs one transformation per camera, got {len(self._T_C_B)} "
                f"transformations for {len(self._cameras)} cameras"
            )
        if not self._cameras:
            raise RigConsistencyError("rig must contain at least one camera")

        id_to_index: dict[str, int] = {}
        for index, camera in enumerate(self._cameras):
            if camera.camera_id in id_to_index:
                raise RigConsistencyError(
                    f"duplicate camera id {camera.camera_id} at indices "
                    f"{id_to_index[camera.camera_id]} and {index}"
                )
            id_to_index[camera.camera_id] = index
        self._id_to_index = id_to_index

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def rig_id(self) -> str:
        return self._id

    def is_valid(self) -> bool:
        """Invariant check: valid id and parallel, non-empty sequences."""
        return (
            is_valid_id(self._id)
            and len(self._T_C_B) == len(self._cameras) == len(self._id_to_index)
            and len(self._cameras) > 0
        )

    # ------------------------------------------------------------------
    # Cameras
    # ------------------------------------------------------------------

    @property
    def num_cameras(self) -> int:
        return len(self._cameras)

    def __len__(self) -> int:
        return len(self._cameras)

    @property
    def cameras(self) -> list[PinholeCamera]:
        """Cameras in slot order (the list is a copy, the cameras are not)."""
        return list(self._cameras)

    @property
    def camera_ids(self) -> list[str]:
        return [camera.camera_id for camera in self._cameras]

    def _index_of(self, key: int | str) -> int:
        if isinstance(key, str):
            index = self._id_to_index.get(key)
            if index is None:
                raise RigConsistencyError(f"rig {self._id} has no camera with id {key}")
            return index
        if not 0 <= key < len(self._cameras):
            raise IndexError(
                f"camera index {key} out of range [0, {len(self._cameras)})"
            )
        return key

    def get_camera(self, key: int | str) -> PinholeCamera:
        """Camera by slot index or by camera id.

        Raises:
            IndexError: Index out of range.
            RigConsistencyError: No camera with this id.
        """
        return self._cameras[self._index_of(key)]

    def set_camera(self, index: int, camera: PinholeCamera) -> None:
        """Replace the camera in slot *index*.

        Raises:
            RigConsistencyError: *camera* reuses the id of another slot; the
                rig is left unchanged.
        """
        index = self._index_of(index)
        owner = self._id_to_index.get(camera.camera_id)
        if owner is not None and owner != index:
            raise RigConsistencyError(
                f"camera id {camera.camera_id} already used by slot {owner}"
            )
        self._cameras[index] = camera
        self._init_internal()

    def get_camera_id(self, index: int) -> str:
        return self._cameras[self._index_of(index)].camera_id

    def has_camera_with_id(self, camera_id: str) -> bool:
        return camera_id in self._id_to_index

    def get_camera_index(self, camera_id: str) -> int:
        """Slot index of *camera_id*, or -1 if the rig does not contain it."""
        return self._id_to_index.get(camera_id, -1)

    # ------------------------------------------------------------------
    # Extrinsics
    # ------------------------------------------------------------------

    @property
    def transforms(self) -> list[Transformation]:
        """``T_C_B`` for every slot, in order."""
        return list(self._T_C_B)

    def get_T_C_B(self, key: int | str) -> Transformation:
        """Body-to-camera transformation by slot index or camera id."""
        return self._T_C_B[self._index_of(key)]

    def set_T_C_B(self, index: int, T_C_B: Transformation) -> None:
        """Replace the body-to-camera transformation of slot *index*."""
        self._T_C_B[self._index_of(index)] = T_C_B

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def clone(self) -> CameraRig:
        """Deep copy keeping the rig and camera identifiers."""
        return CameraRig(
            self._id,
            [T.clone() for T in self._T_C_B],
            [camera.clone() for camera in self._cameras],
            self.label,
        )

    def clone_rig_without_distortion(
        self, id_generator: IdGenerator | None = None
    ) -> CameraRig:
        """Deep copy with every distortion model replaced by the identity.

        The clone and each of its cameras get fresh identifiers so it can
        serve as an independent calibration (e.g. the output of an
        undistorting pipeline).

        Args:
            id_generator: Identifier policy; random ids if None.
        """
        make_id = id_generator or generate_id
        cameras = [camera.clone_without_distortion(make_id) for camera in self._cameras]
        return CameraRig(
            make_id(),
            [T.clone() for T in self._T_C_B],
            cameras,
            self.label,
        )

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def is_equal(self, other: object, tolerance: float = 1e-9) -> bool:
        """Same geometry in the same order; ids and labels are ignored."""
        if not isinstance(other, CameraRig):
            return False
        return self.comparison_string(other, tolerance) == ""

    def __eq__(self, other: object) -> bool:
        return self.is_equal(other)

    __hash__ = None  # type: ignore[assignment]

    def comparison_string(self, other: CameraRig, tolerance: float = 1e-9) -> str:
        """Describe the first difference to *other*, or "" if equal."""
        if self.num_cameras != other.num_cameras:
            return (
                f"camera count differs: {self.num_cameras} vs {other.num_cameras}"
            )
        for index in range(self.num_cameras):
            if not self._T_C_B[index].allclose(other._T_C_B[index], tolerance):
                return (
                    f"T_C_B differs for camera {index}:\n"
                    f"{self._T_C_B[index].as_matrix()}\nvs\n"
                    f"{other._T_C_B[index].as_matrix()}"
                )
            if not self._cameras[index].is_equal(other._cameras[index], tolerance):
                return (
                    f"camera {index} differs:\n{self._cameras[index]!r}\nvs\n"
                    f"{other._cameras[index]!r}"
                )
        return ""

    def __repr__(self) -> str:
        return (
            f"CameraRig(id={self._id}, label={self.label!r}, "
            f"num_cameras={self.num_cameras})"
        )


__all__ = ["CameraRig", "RigConsistencyError"]
