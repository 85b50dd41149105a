"""YAML persistence for cameras and camera rigs.

Rig file layout::

    label: front stereo pair
    id: 3f2a...            # optional, regenerated when missing or malformed
    cameras:
      - camera:
          id: 9c1e...
          label: cam0
          type: pinhole
          intrinsics: [fx, fy, cu, cv]
          image_width: 752
          image_height: 480
          distortion:
            type: equidistant
            parameters: [k1, k2, k3, k4]
        extrinsics:
          p_B_C: [x, y, z]
          R_B_C: [[...], [...], [...]]

Extrinsics are stored as ``T_B_C`` (camera pose in the body frame); the rig
holds ``T_C_B``. ``R_B_C`` is renormalized on load since text files carry
limited precision.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from pathlib import Path

import yaml

from .camera import PinholeCamera
from .distortion import DistortionType, create_distortion
from .ids import IdGenerator, generate_id, is_valid_id, parse_id
from .rig import CameraRig, RigConsistencyError
from .transforms import Transformation

logger = logging.getLogger(__name__)

CAMERA_TYPE_PINHOLE = "pinhole"


class CalibrationDecodeError(ValueError):
    """A calibration node is missing a field or holds an invalid value."""


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _require(node: Mapping, key: str, context: str) -> object:
    if key not in node:
        raise CalibrationDecodeError(f"{context}: missing field '{key}'")
    return node[key]


def _require_map(node: object, context: str) -> Mapping:
    if not isinstance(node, Mapping):
        raise CalibrationDecodeError(f"{context}: expected a map, got {type(node).__name__}")
    return node


def _float_list(value: object, length: int, context: str) -> list[float]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise CalibrationDecodeError(f"{context}: expected a list of {length} numbers")
    if len(value) != length:
        raise CalibrationDecodeError(
            f"{context}: expected {length} values, got {len(value)}"
        )
    try:
        return [float(v) for v in value]
    except (TypeError, ValueError) as exc:
        raise CalibrationDecodeError(f"{context}: non-numeric value") from exc


def _matrix3(value: object, context: str) -> list[list[float]]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise CalibrationDecodeError(f"{context}: expected a 3x3 matrix")
    if len(value) == 9 and not any(isinstance(v, Sequence) for v in value):
        flat = _float_list(value, 9, context)
        return [flat[0:3], flat[3:6], flat[6:9]]
    if len(value) != 3:
        raise CalibrationDecodeError(f"{context}: expected 3 rows, got {len(value)}")
    return [_float_list(row, 3, f"{context}[{i}]") for i, row in enumerate(value)]


def _positive_int(value: object, context: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CalibrationDecodeError(f"{context}: expected an integer")
    if not math.isfinite(value):
        raise CalibrationDecodeError(f"{context}: expected a finite value, got {value}")
    if int(value) != value or value <= 0:
        raise CalibrationDecodeError(f"{context}: expected a positive integer, got {value}")
    return int(value)


# ---------------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------------


def encode_camera(camera: PinholeCamera) -> dict:
    """Encode *camera* as a plain YAML-compatible dict."""
    return {
        "id": camera.camera_id,
        "label": camera.label,
        "type": CAMERA_TYPE_PINHOLE,
        "intrinsics": camera.intrinsics.tolist(),
        "image_width": camera.image_width,
        "image_height": camera.image_height,
        "distortion": {
            "type": camera.distortion.TYPE.value,
            "parameters": camera.distortion.parameters.tolist(),
        },
    }


def decode_camera(
    node: object, id_generator: IdGenerator | None = None
) -> PinholeCamera:
    """Decode a camera node produced by :func:`encode_camera`.

    A missing or malformed camera id is replaced by a fresh one.

    Raises:
        CalibrationDecodeError: Missing fields or invalid values.
    """
    node = _require_map(node, "camera")
    camera_type = node.get("type", CAMERA_TYPE_PINHOLE)
    if camera_type != CAMERA_TYPE_PINHOLE:
        raise CalibrationDecodeError(f"camera: unsupported type {camera_type!r}")

    intrinsics = _float_list(
        _require(node, "intrinsics", "camera"), 4, "camera.intrinsics"
    )
    width = _positive_int(_require(node, "image_width", "camera"), "camera.image_width")
    height = _positive_int(
        _require(node, "image_height", "camera"), "camera.image_height"
    )

    dist_node = node.get("distortion")
    if dist_node is None:
        distortion = create_distortion(DistortionType.NONE)
    else:
        dist_node = _require_map(dist_node, "camera.distortion")
        type_tag = _require(dist_node, "type", "camera.distortion")
        try:
            kind = DistortionType(type_tag)
        except ValueError as exc:
            raise CalibrationDecodeError(
                f"camera.distortion: unknown type {type_tag!r}"
            ) from exc
        count = create_distortion(kind).parameter_count()
        params = _float_list(
            dist_node.get("parameters", []), count, "camera.distortion.parameters"
        )
        try:
            distortion = create_distortion(kind, params)
        except ValueError as exc:
            raise CalibrationDecodeError(f"camera.distortion: {exc}") from exc

    label = node.get("label", "")
    if not isinstance(label, str):
        raise CalibrationDecodeError(
            f"camera.label: expected a string, got {type(label).__name__}"
        )

    camera_id = parse_id(node.get("id"))
    if camera_id is None:
        camera_id = (id_generator or generate_id)()
        logger.warning(
            "camera has missing or invalid id %r, assigned %s", node.get("id"), camera_id
        )

    try:
        return PinholeCamera(
            intrinsics,
            width,
            height,
            distortion=distortion,
            camera_id=camera_id,
            label=label,
        )
    except ValueError as exc:
        raise CalibrationDecodeError(f"camera: {exc}") from exc


# ---------------------------------------------------------------------------
# Rig
# ---------------------------------------------------------------------------


def encode_rig(rig: CameraRig) -> dict:
    """Encode *rig* as a plain YAML-compatible dict.

    The id is written only when it is valid; the label always is.
    """
    node: dict = {"label": rig.label}
    if is_valid_id(rig.rig_id):
        node["id"] = rig.rig_id
    cameras = []
    for index in range(rig.num_cameras):
        T_B_C = rig.get_T_C_B(index).inverse()
        cameras.append(
            {
                "camera": encode_camera(rig.get_camera(index)),
                "extrinsics": {
                    "p_B_C": T_B_C.position.tolist(),
                    "R_B_C": T_B_C.rotation_matrix.tolist(),
                },
            }
        )
    node["cameras"] = cameras
    return node


def _decode_camera_entry(
    entry: object, index: int, id_generator: IdGenerator | None
) -> tuple[Transformation, PinholeCamera]:
    context = f"cameras[{index}]"
    entry = _require_map(entry, context)
    camera = decode_camera(_require(entry, "camera", context), id_generator)

    extrinsics = _require_map(
        _require(entry, "extrinsics", context), f"{context}.extrinsics"
    )
    p_B_C = _float_list(
        _require(extrinsics, "p_B_C", f"{context}.extrinsics"),
        3,
        f"{context}.extrinsics.p_B_C",
    )
    R_B_C = _matrix3(
        _require(extrinsics, "R_B_C", f"{context}.extrinsics"),
        f"{context}.extrinsics.R_B_C",
    )
    try:
        T_C_B = Transformation.from_rotation_renormalized(R_B_C, p_B_C).inverse()
    except ValueError as exc:
        raise CalibrationDecodeError(f"{context}.extrinsics: {exc}") from exc
    return T_C_B, camera


def decode_rig(
    node: object, id_generator: IdGenerator | None = None
) -> CameraRig | None:
    """Decode a rig node produced by :func:`encode_rig`.

    Args:
        node: Parsed YAML tree.
        id_generator: Policy for ids that are missing or malformed in the
            file; random ids if None.

    Returns:
        The rig, or None if any part of the node is invalid. Failures are
        logged with the offending camera index and field.
    """
    if not isinstance(node, Mapping):
        logger.error("rig: expected a map, got %s", type(node).__name__)
        return None
    if "label" not in node:
        logger.error("rig: missing field 'label'")
        return None
    if not isinstance(node["label"], str):
        logger.error(
            "rig: field 'label' must be a string, got %s", type(node["label"]).__name__
        )
        return None

    entries = node.get("cameras")
    if isinstance(entries, (str, bytes)) or not isinstance(entries, Sequence):
        logger.error("rig: field 'cameras' must be a sequence")
        return None
    if not entries:
        logger.error("rig: field 'cameras' is empty")
        return None

    transforms: list[Transformation] = []
    cameras: list[PinholeCamera] = []
    for index, entry in enumerate(entries):
        try:
            T_C_B, camera = _decode_camera_entry(entry, index, id_generator)
        except CalibrationDecodeError as exc:
            logger.error("rig: failed to decode camera %d: %s", index, exc)
            return None
        transforms.append(T_C_B)
        cameras.append(camera)

    rig_id = parse_id(node.get("id"))
    if rig_id is None:
        rig_id = (id_generator or generate_id)()
        logger.warning(
            "rig has missing or invalid id %r, assigned %s", node.get("id"), rig_id
        )

    try:
        return CameraRig(rig_id, transforms, cameras, node["label"])
    except RigConsistencyError as exc:
        logger.error("rig: inconsistent camera set: %s", exc)
        return None


def load_rig(
    path: str | Path, id_generator: IdGenerator | None = None
) -> CameraRig | None:
    """Read a rig YAML file.

    Returns:
        The rig, or None if the file content is not a valid rig.

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"rig file not found: {path}")
    try:
        with open(path) as f:
            node = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        logger.error("rig: %s is not valid YAML: %s", path, exc)
        return None
    rig = decode_rig(node, id_generator)
    if rig is not None:
        logger.debug("loaded rig %s (%d cameras) from %s", rig.rig_id, rig.num_cameras, path)
    return rig


def save_rig(path: str | Path, rig: CameraRig) -> Path:
    """Write *rig* to a YAML file, creating parent directories.

    Returns:
        The written path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(encode_rig(rig), f, default_flow_style=None, sort_keys=False)
    return path


__all__ = [
    "CAMERA_TYPE_PINHOLE",
    "CalibrationDecodeError",
    "decode_camera",
    "decode_rig",
    "encode_camera",
    "encode_rig",
    "load_rig",
    "save_rig",
]
