"""Camera models, lens distortion, rig geometry, and rig persistence."""

from .camera import (
    PinholeCamera,
    UndistortionMaps,
    compute_undistortion_maps,
    undistort_image,
)
from .distortion import (
    DistortionModel,
    DistortionType,
    EquidistantDistortion,
    NullDistortion,
    RadTanDistortion,
    UndistortionResult,
    create_distortion,
)
from .ids import (
    INVALID_ID,
    IdGenerator,
    SequentialIdGenerator,
    generate_id,
    is_valid_id,
    parse_id,
)
from .rig import CameraRig, RigConsistencyError
from .serialization import (
    CalibrationDecodeError,
    decode_camera,
    decode_rig,
    encode_camera,
    encode_rig,
    load_rig,
    save_rig,
)
from .transforms import Transformation, renormalize_rotation

__all__ = [
    "INVALID_ID",
    "CalibrationDecodeError",
    "CameraRig",
    "DistortionModel",
    "DistortionType",
    "EquidistantDistortion",
    "IdGenerator",
    "NullDistortion",
    "PinholeCamera",
    "RadTanDistortion",
    "RigConsistencyError",
    "SequentialIdGenerator",
    "Transformation",
    "UndistortionMaps",
    "UndistortionResult",
    "compute_undistortion_maps",
    "create_distortion",
    "decode_camera",
    "decode_rig",
    "encode_camera",
    "encode_rig",
    "generate_id",
    "is_valid_id",
    "load_rig",
    "parse_id",
    "renormalize_rotation",
    "save_rig",
    "undistort_image",
]
