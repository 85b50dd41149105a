"""Pinhole camera with a pluggable distortion model, plus undistortion remaps."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np
import torch

from .distortion import DistortionModel, NullDistortion
from .ids import IdGenerator, generate_id, parse_id

# Minimum depth (camera frame z) for a point to count as in front of the lens.
_MIN_DEPTH = 1e-9


class PinholeCamera:
    """Pinhole projection followed by lens distortion.

    A camera owns its distortion model and a stable identifier. It does not
    know which rig (if any) it belongs to.

    Args:
        intrinsics: ``[fx, fy, cu, cv]`` in pixels.
        image_width: Image width in pixels.
        image_height: Image height in pixels.
        distortion: Distortion model; identity if omitted.
        camera_id: 32-char hex identifier; a fresh one is generated if None.
        label: Human-readable name.

    Raises:
        ValueError: Non-positive focal lengths or image size, non-finite
            intrinsics, or a malformed *camera_id*.
    """

    def __init__(
        self,
        intrinsics: object,
        image_width: int,
        image_height: int,
        distortion: DistortionModel | None = None,
        camera_id: str | None = None,
        label: str = "",
    ) -> None:
        intr = torch.as_tensor(intrinsics, dtype=torch.float64).reshape(-1).clone()
        if intr.numel() != 4 or not bool(torch.isfinite(intr).all()):
            raise ValueError(
                f"intrinsics must be 4 finite values [fx, fy, cu, cv], got {intrinsics!r}"
            )
        if float(intr[0]) <= 0.0 or float(intr[1]) <= 0.0:
            raise ValueError("focal lengths must be > 0")
        if int(image_width) <= 0 or int(image_height) <= 0:
            raise ValueError(
                f"image size must be > 0, got {image_width}x{image_height}"
            )

        if camera_id is None:
            resolved_id = generate_id()
        else:
            parsed = parse_id(camera_id)
            if parsed is None:
                raise ValueError(f"invalid camera id {camera_id!r}")
            resolved_id = parsed

        self._intrinsics = intr
        self._width = int(image_width)
        self._height = int(image_height)
        self._distortion = distortion if distortion is not None else NullDistortion()
        self._id = resolved_id
        self.label = label

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def camera_id(self) -> str:
        return self._id

    @property
    def intrinsics(self) -> torch.Tensor:
        """``[fx, fy, cu, cv]``, float64 (copy)."""
        return self._intrinsics.clone()

    @property
    def K(self) -> torch.Tensor:
        """Intrinsic matrix, shape (3, 3), float64."""
        fx, fy, cu, cv = self._intrinsics.tolist()
        return torch.tensor(
            [[fx, 0.0, cu], [0.0, fy, cv], [0.0, 0.0, 1.0]], dtype=torch.float64
        )

    @property
    def image_width(self) -> int:
        return self._width

    @property
    def image_height(self) -> int:
        return self._height

    @property
    def image_size(self) -> tuple[int, int]:
        """(width, height) in pixels."""
        return (self._width, self._height)

    @property
    def distortion(self) -> DistortionModel:
        return self._distortion

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def _focal_center(self, like: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        intr = self._intrinsics.to(dtype=like.dtype, device=like.device)
        return intr[:2], intr[2:]

    def project_normalized(self, points_norm: torch.Tensor) -> torch.Tensor:
        """Distort normalized points and map them to pixels.

        Args:
            points_norm: Undistorted normalized coordinates (x/z, y/z),
                shape (N, 2).

        Returns:
            Pixel coordinates (u, v), shape (N, 2).
        """
        distorted = self._distortion.distort(points_norm)
        f, c = self._focal_center(distorted)
        return distorted * f + c

    def pixels_to_normalized(self, pixels: torch.Tensor):
        """Remove intrinsics and distortion from pixel coordinates.

        Returns:
            :class:`~rigsync.calibration.distortion.UndistortionResult` whose
            ``points`` are undistorted normalized coordinates.
        """
        f, c = self._focal_center(pixels)
        return self._distortion.undistort((pixels - c) / f)

    def project3(self, points_cam: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Project camera-frame 3D points to pixels.

        Args:
            points_cam: Points in the camera frame, shape (N, 3).

        Returns:
            pixels: shape (N, 2). NaN for points behind the camera.
            valid: shape (N,), bool. In front of the camera and inside the
                image.
        """
        z = points_cam[:, 2]
        in_front = z > _MIN_DEPTH
        safe_z = torch.where(in_front, z, torch.ones_like(z))
        norm = points_cam[:, :2] / safe_z.unsqueeze(-1)
        pixels = self.project_normalized(norm)
        pixels = torch.where(
            in_front.unsqueeze(-1), pixels, torch.full_like(pixels, float("nan"))
        )
        valid = in_front & self.is_keypoint_visible(pixels)
        return pixels, valid

    def back_project3(self, pixels: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Cast unit bearing vectors through pixel coordinates.

        Args:
            pixels: Pixel coordinates (u, v), shape (N, 2).

        Returns:
            bearings: Unit vectors in the camera frame, shape (N, 3).
            valid: shape (N,), bool. False where undistortion did not
                converge.
        """
        result = self.pixels_to_normalized(pixels)
        ones = torch.ones_like(result.points[:, :1])
        rays = torch.cat([result.points, ones], dim=-1)
        bearings = rays / torch.linalg.norm(rays, dim=-1, keepdim=True)
        return bearings, result.converged

    def is_keypoint_visible(self, pixels: torch.Tensor) -> torch.Tensor:
        """Bool mask of pixels inside ``[0, width) x [0, height)``."""
        u = pixels[:, 0]
        v = pixels[:, 1]
        return (u >= 0.0) & (u < self._width) & (v >= 0.0) & (v < self._height)

    # ------------------------------------------------------------------
    # Copies and comparison
    # ------------------------------------------------------------------

    def clone(self) -> PinholeCamera:
        """Deep copy keeping the same identifier."""
        return PinholeCamera(
            self._intrinsics,
            self._width,
            self._height,
            distortion=self._distortion.clone(),
            camera_id=self._id,
            label=self.label,
        )

    def clone_without_distortion(
        self, id_generator: IdGenerator | None = None
    ) -> PinholeCamera:
        """Copy with identity distortion and a fresh identifier."""
        new_id = (id_generator or generate_id)()
        return PinholeCamera(
            self._intrinsics,
            self._width,
            self._height,
            distortion=NullDistortion(),
            camera_id=new_id,
            label=self.label,
        )

    def is_equal(self, other: object, tolerance: float = 1e-9) -> bool:
        """Same geometry within *tolerance*; identifiers are not compared."""
        if not isinstance(other, PinholeCamera):
            return False
        return (
            self.image_size == other.image_size
            and bool(
                torch.allclose(
                    self._intrinsics, other._intrinsics, rtol=0.0, atol=tolerance
                )
            )
            and self._distortion.is_equal(other._distortion, tolerance)
        )

    def __eq__(self, other: object) -> bool:
        return self.is_equal(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        fx, fy, cu, cv = self._intrinsics.tolist()
        return (
            f"PinholeCamera(id={self._id}, f=({fx:.2f}, {fy:.2f}), "
            f"c=({cu:.2f}, {cv:.2f}), size={self._width}x{self._height}, "
            f"distortion={self._distortion!r})"
        )


# ---------------------------------------------------------------------------
# Image undistortion
# ---------------------------------------------------------------------------


@dataclass
class UndistortionMaps:
    """Precomputed remap tables from an input (raw) to an output camera.

    Attributes:
        map_x: Input x coordinate for every output pixel, float32, (H, W).
        map_y: Input y coordinate for every output pixel, float32, (H, W).
    """

    map_x: np.ndarray
    map_y: np.ndarray


def compute_undistortion_maps(
    input_camera: PinholeCamera, output_camera: PinholeCamera | None = None
) -> UndistortionMaps:
    """Compute remap tables that resample *input_camera* images as *output_camera*.

    Each output pixel is lifted to the output camera's undistorted normalized
    plane, re-distorted with the input camera's model and projected with the
    input intrinsics.

    Args:
        input_camera: Calibration of the raw images.
        output_camera: Target calibration. Defaults to the input camera with
            distortion removed.

    Returns:
        Remap tables sized to the output image.
    """
    if output_camera is None:
        output_camera = input_camera.clone_without_distortion()

    width, height = output_camera.image_size
    vv, uu = torch.meshgrid(
        torch.arange(height, dtype=torch.float64),
        torch.arange(width, dtype=torch.float64),
        indexing="ij",
    )
    pixels_out = torch.stack([uu.reshape(-1), vv.reshape(-1)], dim=-1)
    normalized = output_camera.pixels_to_normalized(pixels_out).points
    pixels_in = input_camera.project_normalized(normalized)

    map_xy = pixels_in.reshape(height, width, 2).numpy().astype(np.float32)
    return UndistortionMaps(
        map_x=np.ascontiguousarray(map_xy[..., 0]),
        map_y=np.ascontiguousarray(map_xy[..., 1]),
    )


def undistort_image(
    image: np.ndarray,
    undistortion: UndistortionMaps,
    interpolation: int = cv2.INTER_LINEAR,
) -> np.ndarray:
    """Apply precomputed undistortion to an image.

    Args:
        image: Input image, shape (H, W) or (H, W, C).
        undistortion: Precomputed remap tables.
        interpolation: OpenCV interpolation flag.

    Returns:
        Resampled image with the output camera's size, same dtype as input.
        Pixels that map outside the input are black.
    """
    return cv2.remap(
        image,
        undistortion.map_x,
        undistortion.map_y,
        interpolation,
        borderMode=cv2.BORDER_CONSTANT,
    )


__all__ = [
    "PinholeCamera",
    "UndistortionMaps",
    "compute_undistortion_maps",
    "undistort_image",
]
