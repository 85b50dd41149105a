"""Unit tests for CameraRig."""

from __future__ import annotations

import math

import pytest
import torch

from rigsync.calibration import (
    CameraRig,
    EquidistantDistortion,
    NullDistortion,
    PinholeCamera,
    RadTanDistortion,
    RigConsistencyError,
    SequentialIdGenerator,
    Transformation,
    is_valid_id,
)


def _camera(camera_id: str | None = None, fx: float = 300.0) -> PinholeCamera:
    return PinholeCamera(
        [fx, fx, 160.0, 120.0],
        320,
        240,
        distortion=EquidistantDistortion([-0.01, 0.002, 0.0, 0.0]),
        camera_id=camera_id,
    )


def _transform(x: float) -> Transformation:
    c, s = math.cos(x), math.sin(x)
    R = torch.tensor([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]], dtype=torch.float64)
    return Transformation(R, [x, 0.0, 0.0])


@pytest.fixture
def stereo_rig() -> CameraRig:
    """Two-camera rig with known ids."""
    return CameraRig(
        "1" * 32,
        [_transform(0.0), _transform(0.1)],
        [_camera("a" * 32), _camera("b" * 32)],
        label="stereo",
    )


class TestConstruction:
    def test_basic(self, stereo_rig: CameraRig) -> None:
        assert stereo_rig.num_cameras == 2
        assert len(stereo_rig) == 2
        assert stereo_rig.rig_id == "1" * 32
        assert stereo_rig.label == "stereo"
        assert stereo_rig.is_valid()

    def test_generates_id(self) -> None:
        rig = CameraRig(None, [_transform(0.0)], [_camera()])
        assert is_valid_id(rig.rig_id)

    def test_mismatched_lengths_raise(self) -> None:
        with pytest.raises(RigConsistencyError, match="one transformation per camera"):
            CameraRig(None, [_transform(0.0)], [_camera(), _camera()])

    def test_empty_raises(self) -> None:
        with pytest.raises(RigConsistencyError):
            CameraRig(None, [], [])

    def test_duplicate_camera_ids_raise(self) -> None:
        with pytest.raises(RigConsistencyError, match="duplicate camera id"):
            CameraRig(
                None,
                [_transform(0.0), _transform(1.0)],
                [_camera("c" * 32), _camera("c" * 32)],
            )

    def test_consistency_error_is_assertion(self) -> None:
        assert issubclass(RigConsistencyError, AssertionError)

    def test_invalid_rig_id_raises(self) -> None:
        with pytest.raises(ValueError, match="rig id"):
            CameraRig("xyz", [_transform(0.0)], [_camera()])


class TestAccessors:
    def test_get_camera_by_index_and_id(self, stereo_rig: CameraRig) -> None:
        assert stereo_rig.get_camera(1).camera_id == "b" * 32
        assert stereo_rig.get_camera("b" * 32) is stereo_rig.get_camera(1)

    def test_get_camera_out_of_range(self, stereo_rig: CameraRig) -> None:
        with pytest.raises(IndexError):
            stereo_rig.get_camera(2)
        with pytest.raises(IndexError):
            stereo_rig.get_camera(-1)

    def test_get_camera_unknown_id(self, stereo_rig: CameraRig) -> None:
        with pytest.raises(RigConsistencyError):
            stereo_rig.get_camera("f" * 32)

    def test_camera_index_lookup(self, stereo_rig: CameraRig) -> None:
        assert stereo_rig.get_camera_index("a" * 32) == 0
        assert stereo_rig.get_camera_index("b" * 32) == 1
        assert stereo_rig.get_camera_index("f" * 32) == -1
        assert stereo_rig.has_camera_with_id("a" * 32)
        assert not stereo_rig.has_camera_with_id("f" * 32)
        assert stereo_rig.get_camera_id(0) == "a" * 32

    def test_get_T_C_B_by_index_and_id(self, stereo_rig: CameraRig) -> None:
        assert stereo_rig.get_T_C_B(1).allclose(_transform(0.1))
        assert stereo_rig.get_T_C_B("b" * 32) is stereo_rig.get_T_C_B(1)

    def test_set_T_C_B(self, stereo_rig: CameraRig) -> None:
        stereo_rig.set_T_C_B(0, _transform(0.5))
        assert stereo_rig.get_T_C_B(0).allclose(_transform(0.5))

    def test_set_camera_updates_index(self, stereo_rig: CameraRig) -> None:
        stereo_rig.set_camera(0, _camera("d" * 32))
        assert stereo_rig.get_camera_index("d" * 32) == 0
        assert stereo_rig.get_camera_index("a" * 32) == -1

    def test_set_camera_rejects_duplicate_id(self, stereo_rig: CameraRig) -> None:
        with pytest.raises(RigConsistencyError):
            stereo_rig.set_camera(0, _camera("b" * 32))
        assert stereo_rig.get_camera_id(0) == "a" * 32

    def test_sequences_are_copies(self, stereo_rig: CameraRig) -> None:
        stereo_rig.cameras.clear()
        stereo_rig.transforms.clear()
        assert stereo_rig.num_cameras == 2
        assert len(stereo_rig.transforms) == 2


class TestClone:
    def test_clone_keeps_ids_and_is_deep(self, stereo_rig: CameraRig) -> None:
        copy = stereo_rig.clone()
        assert copy.rig_id == stereo_rig.rig_id
        assert copy.camera_ids == stereo_rig.camera_ids
        assert copy == stereo_rig
        copy.get_camera(0).distortion.set_parameters([0.0, 0.0, 0.0, 0.0])
        copy.set_T_C_B(1, _transform(1.0))
        assert copy != stereo_rig
        assert stereo_rig.get_camera(0).distortion.parameters[0].item() == pytest.approx(-0.01)
        assert stereo_rig.get_T_C_B(1).allclose(_transform(0.1))

    def test_clone_without_distortion(self, stereo_rig: CameraRig) -> None:
        copy = stereo_rig.clone_rig_without_distortion(SequentialIdGenerator())
        assert copy.num_cameras == 2
        assert all(isinstance(c.distortion, NullDistortion) for c in copy.cameras)
        assert copy.rig_id not in (stereo_rig.rig_id, *stereo_rig.camera_ids)
        assert set(copy.camera_ids).isdisjoint(stereo_rig.camera_ids)
        for i in range(2):
            assert copy.get_T_C_B(i).allclose(stereo_rig.get_T_C_B(i))
            assert torch.equal(
                copy.get_camera(i).intrinsics, stereo_rig.get_camera(i).intrinsics
            )
        # Source keeps its distortion.
        assert isinstance(stereo_rig.get_camera(0).distortion, EquidistantDistortion)


class TestComparison:
    def test_equal_ignores_ids_and_labels(self, stereo_rig: CameraRig) -> None:
        other = CameraRig(
            None, [_transform(0.0), _transform(0.1)], [_camera(), _camera()], label="x"
        )
        assert other == stereo_rig
        assert stereo_rig.comparison_string(other) == ""

    def test_camera_count_difference(self, stereo_rig: CameraRig) -> None:
        mono = CameraRig(None, [_transform(0.0)], [_camera()])
        assert mono != stereo_rig
        assert "camera count" in stereo_rig.comparison_string(mono)

    def test_transform_difference_reported(self, stereo_rig: CameraRig) -> None:
        other = stereo_rig.clone()
        other.set_T_C_B(1, _transform(0.2))
        assert "T_C_B differs for camera 1" in stereo_rig.comparison_string(other)

    def test_camera_difference_reported(self, stereo_rig: CameraRig) -> None:
        other = stereo_rig.clone()
        other.set_camera(
            0,
            PinholeCamera(
                [300.0, 300.0, 160.0, 120.0],
                320,
                240,
                distortion=RadTanDistortion(),
                camera_id="e" * 32,
            ),
        )
        assert "camera 0 differs" in stereo_rig.comparison_string(other)

    def test_order_matters(self, stereo_rig: CameraRig) -> None:
        swapped = CameraRig(
            None,
            [_transform(0.1), _transform(0.0)],
            [_camera(fx=300.0), _camera(fx=300.0)],
        )
        assert swapped != stereo_rig

    def test_not_equal_to_other_types(self, stereo_rig: CameraRig) -> None:
        assert stereo_rig != "stereo"
