"""Unit tests for YAML rig persistence."""

from __future__ import annotations

import logging
import math
from pathlib import Path

import pytest
import torch
import yaml

from rigsync.calibration import (
    CalibrationDecodeError,
    CameraRig,
    EquidistantDistortion,
    PinholeCamera,
    RadTanDistortion,
    SequentialIdGenerator,
    Transformation,
    decode_camera,
    decode_rig,
    encode_camera,
    encode_rig,
    load_rig,
    save_rig,
)


def _rotation(yaw: float, pitch: float) -> torch.Tensor:
    cy, sy = math.cos(yaw), math.sin(yaw)
    cp, sp = math.cos(pitch), math.sin(pitch)
    Rz = torch.tensor([[cy, -sy, 0.0], [sy, cy, 0.0], [0.0, 0.0, 1.0]], dtype=torch.float64)
    Rx = torch.tensor([[1.0, 0.0, 0.0], [0.0, cp, -sp], [0.0, sp, cp]], dtype=torch.float64)
    return Rz @ Rx


@pytest.fixture
def rig() -> CameraRig:
    """Two-camera rig mixing distortion models."""
    cam0 = PinholeCamera(
        [461.6, 460.3, 366.3, 249.1],
        752,
        480,
        distortion=EquidistantDistortion([-0.0138, 0.0024, -0.0029, 0.0009]),
        camera_id="a" * 32,
        label="cam0",
    )
    cam1 = PinholeCamera(
        [458.7, 457.3, 367.2, 248.4],
        752,
        480,
        distortion=RadTanDistortion([-0.28, 0.07, 1e-4, -2e-4]),
        camera_id="b" * 32,
        label="cam1",
    )
    return CameraRig(
        "c" * 32,
        [
            Transformation(_rotation(0.01, -0.02), [0.05, 0.0, 0.01]),
            Transformation(_rotation(-0.3, 0.1), [-0.06, 0.01, 0.0]),
        ],
        [cam0, cam1],
        label="stereo pair",
    )


@pytest.fixture
def rig_node(rig: CameraRig) -> dict:
    return encode_rig(rig)


class TestEncode:
    def test_camera_fields(self, rig: CameraRig) -> None:
        node = encode_camera(rig.get_camera(0))
        assert node["id"] == "a" * 32
        assert node["label"] == "cam0"
        assert node["type"] == "pinhole"
        assert node["image_width"] == 752
        assert node["distortion"]["type"] == "equidistant"
        assert len(node["distortion"]["parameters"]) == 4

    def test_rig_stores_body_from_camera(self, rig: CameraRig, rig_node: dict) -> None:
        extrinsics = rig_node["cameras"][1]["extrinsics"]
        T_B_C = rig.get_T_C_B(1).inverse()
        assert extrinsics["p_B_C"] == pytest.approx(T_B_C.position.tolist())
        assert torch.allclose(
            torch.tensor(extrinsics["R_B_C"], dtype=torch.float64),
            T_B_C.rotation_matrix,
        )

    def test_rig_label_and_id(self, rig_node: dict) -> None:
        assert rig_node["label"] == "stereo pair"
        assert rig_node["id"] == "c" * 32
        assert len(rig_node["cameras"]) == 2

    def test_node_is_plain_yaml(self, rig_node: dict) -> None:
        assert yaml.safe_load(yaml.safe_dump(rig_node)) == rig_node


class TestRoundTrip:
    def test_decode_encode(self, rig: CameraRig, rig_node: dict) -> None:
        decoded = decode_rig(rig_node)
        assert decoded is not None
        assert decoded.label == rig.label
        assert decoded.rig_id == rig.rig_id
        assert decoded.camera_ids == rig.camera_ids
        assert decoded.num_cameras == rig.num_cameras
        for i in range(rig.num_cameras):
            assert decoded.get_T_C_B(i).allclose(rig.get_T_C_B(i), atol=1e-12)
        assert decoded.is_equal(rig, tolerance=1e-12)

    def test_file_round_trip(self, rig: CameraRig, tmp_path: Path) -> None:
        path = save_rig(tmp_path / "nested" / "rig.yaml", rig)
        assert path.exists()
        loaded = load_rig(path)
        assert loaded is not None
        assert loaded.is_equal(rig, tolerance=1e-12)
        assert loaded.rig_id == rig.rig_id

    def test_rounded_rotation_is_renormalized(self, rig_node: dict) -> None:
        for entry in rig_node["cameras"]:
            R = entry["extrinsics"]["R_B_C"]
            entry["extrinsics"]["R_B_C"] = [[round(v, 4) for v in row] for row in R]
        decoded = decode_rig(rig_node)
        assert decoded is not None
        R = decoded.get_T_C_B(0).rotation_matrix
        assert torch.allclose(R.T @ R, torch.eye(3, dtype=torch.float64), atol=1e-12)

    def test_flat_rotation_accepted(self, rig_node: dict) -> None:
        R = rig_node["cameras"][0]["extrinsics"]["R_B_C"]
        rig_node["cameras"][0]["extrinsics"]["R_B_C"] = [v for row in R for v in row]
        assert decode_rig(rig_node) is not None


class TestIds:
    def test_missing_id_regenerated_with_warning(self, rig_node: dict, caplog) -> None:
        del rig_node["id"]
        with caplog.at_level(logging.WARNING, logger="rigsync.calibration.serialization"):
            decoded = decode_rig(rig_node, id_generator=SequentialIdGenerator(7))
        assert decoded is not None
        assert decoded.rig_id == f"{7:032x}"
        assert "invalid id" in caplog.text

    def test_default_id_regenerated(self, rig_node: dict) -> None:
        rig_node["id"] = "0" * 32
        decoded = decode_rig(rig_node, id_generator=SequentialIdGenerator(3))
        assert decoded is not None
        assert decoded.rig_id == f"{3:032x}"

    def test_missing_camera_id_regenerated(self, rig_node: dict) -> None:
        del rig_node["cameras"][0]["camera"]["id"]
        decoded = decode_rig(rig_node, id_generator=SequentialIdGenerator(9))
        assert decoded is not None
        assert decoded.get_camera_id(0) == f"{9:032x}"
        assert decoded.get_camera_id(1) == "b" * 32


class TestDecodeFailures:
    def test_missing_label(self, rig_node: dict, caplog) -> None:
        del rig_node["label"]
        with caplog.at_level(logging.ERROR):
            assert decode_rig(rig_node) is None
        assert "label" in caplog.text

    @pytest.mark.parametrize("cameras", [None, [], "cam0", 3])
    def test_bad_cameras_field(self, rig_node: dict, cameras) -> None:
        rig_node["cameras"] = cameras
        assert decode_rig(rig_node) is None

    def test_not_a_map(self) -> None:
        assert decode_rig(["label", "cameras"]) is None

    def test_missing_extrinsics_logs_camera_index(self, rig_node: dict, caplog) -> None:
        del rig_node["cameras"][1]["extrinsics"]
        with caplog.at_level(logging.ERROR):
            assert decode_rig(rig_node) is None
        assert "camera 1" in caplog.text
        assert "extrinsics" in caplog.text

    def test_bad_rotation_shape(self, rig_node: dict, caplog) -> None:
        rig_node["cameras"][0]["extrinsics"]["R_B_C"] = [[1.0, 0.0], [0.0, 1.0]]
        with caplog.at_level(logging.ERROR):
            assert decode_rig(rig_node) is None
        assert "R_B_C" in caplog.text

    def test_bad_position_length(self, rig_node: dict) -> None:
        rig_node["cameras"][0]["extrinsics"]["p_B_C"] = [0.0, 1.0]
        assert decode_rig(rig_node) is None

    def test_degenerate_rotation(self, rig_node: dict) -> None:
        rig_node["cameras"][0]["extrinsics"]["R_B_C"] = [[0.0] * 3] * 3
        assert decode_rig(rig_node) is None

    def test_duplicate_camera_ids(self, rig_node: dict, caplog) -> None:
        rig_node["cameras"][1]["camera"]["id"] = "a" * 32
        with caplog.at_level(logging.ERROR):
            assert decode_rig(rig_node) is None
        assert "duplicate camera id" in caplog.text

    def test_invalid_distortion_parameters(self, rig_node: dict) -> None:
        rig_node["cameras"][0]["camera"]["distortion"]["parameters"] = [-1.0, 0, 0, 0]
        assert decode_rig(rig_node) is None

    @pytest.mark.parametrize("width", [math.inf, -math.inf, math.nan])
    def test_non_finite_image_size(self, rig_node: dict, width: float, caplog) -> None:
        rig_node["cameras"][0]["camera"]["image_width"] = width
        with caplog.at_level(logging.ERROR):
            assert decode_rig(rig_node) is None
        assert "image_width" in caplog.text

    def test_non_finite_image_size_from_yaml(self, rig_node: dict) -> None:
        text = yaml.safe_dump(rig_node).replace("image_height: 480", "image_height: .nan")
        assert decode_rig(yaml.safe_load(text)) is None

    def test_position_overflowing_on_inverse(self, rig_node: dict, caplog) -> None:
        c, s = math.cos(math.pi / 4), math.sin(math.pi / 4)
        extrinsics = rig_node["cameras"][0]["extrinsics"]
        extrinsics["R_B_C"] = [[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]]
        extrinsics["p_B_C"] = [1.7e308, -1.7e308, 0.0]
        with caplog.at_level(logging.ERROR):
            assert decode_rig(rig_node) is None
        assert "camera 0" in caplog.text
        assert "extrinsics" in caplog.text

    @pytest.mark.parametrize("label", [None, 3, ["front"]])
    def test_non_string_rig_label(self, rig_node: dict, label, caplog) -> None:
        rig_node["label"] = label
        with caplog.at_level(logging.ERROR):
            assert decode_rig(rig_node) is None
        assert "label" in caplog.text

    def test_null_camera_label(self, rig_node: dict, caplog) -> None:
        rig_node["cameras"][1]["camera"]["label"] = None
        with caplog.at_level(logging.ERROR):
            assert decode_rig(rig_node) is None
        assert "camera.label" in caplog.text


class TestDecodeCamera:
    def test_round_trip(self, rig: CameraRig) -> None:
        camera = rig.get_camera(1)
        decoded = decode_camera(encode_camera(camera))
        assert decoded == camera
        assert decoded.camera_id == camera.camera_id
        assert decoded.label == "cam1"

    def test_missing_distortion_means_none(self, rig: CameraRig) -> None:
        node = encode_camera(rig.get_camera(0))
        del node["distortion"]
        assert decode_camera(node).distortion.parameter_count() == 0

    def test_unknown_distortion_raises(self, rig: CameraRig) -> None:
        node = encode_camera(rig.get_camera(0))
        node["distortion"]["type"] = "fov"
        with pytest.raises(CalibrationDecodeError, match="unknown type"):
            decode_camera(node)

    def test_unsupported_camera_type_raises(self, rig: CameraRig) -> None:
        node = encode_camera(rig.get_camera(0))
        node["type"] = "unified"
        with pytest.raises(CalibrationDecodeError, match="unsupported"):
            decode_camera(node)

    @pytest.mark.parametrize("field", ["intrinsics", "image_width", "image_height"])
    def test_missing_field_raises(self, rig: CameraRig, field: str) -> None:
        node = encode_camera(rig.get_camera(0))
        del node[field]
        with pytest.raises(CalibrationDecodeError, match=field):
            decode_camera(node)

    def test_decode_error_is_value_error(self) -> None:
        assert issubclass(CalibrationDecodeError, ValueError)


class TestFiles:
    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_rig(tmp_path / "missing.yaml")

    def test_invalid_yaml_returns_none(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("cameras: [unclosed\n")
        assert load_rig(path) is None

    def test_invalid_content_returns_none(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("label: nothing\n")
        assert load_rig(path) is None
