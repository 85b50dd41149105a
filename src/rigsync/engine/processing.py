"""Per-image processing applied before images are bundled."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import cv2
import numpy as np

from rigsync.calibration import (
    CameraRig,
    IdGenerator,
    UndistortionMaps,
    compute_undistortion_maps,
    undistort_image,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ImageProcessor(Protocol):
    """Transforms raw images of an input rig into images of an output rig.

    ``process`` is called outside the engine lock and may run concurrently
    for different cameras, so implementations must not mutate shared state.
    """

    @property
    def output_rig(self) -> CameraRig:
        """Calibration that processed images conform to."""
        ...

    def process(self, camera_index: int, image: np.ndarray) -> np.ndarray:
        """Return the processed image for *camera_index*."""
        ...


class PassthroughProcessor:
    """Returns images unchanged; the output rig is the input rig."""

    def __init__(self, input_rig: CameraRig) -> None:
        self._rig = input_rig

    @property
    def output_rig(self) -> CameraRig:
        return self._rig

    def process(self, camera_index: int, image: np.ndarray) -> np.ndarray:
        return image


class UndistortingProcessor:
    """Resamples raw images into the distortion-free clone of the input rig.

    Remap tables are precomputed for every camera at construction.

    Args:
        input_rig: Calibration of the raw images.
        interpolation: OpenCV interpolation flag used by ``cv2.remap``.
        id_generator: Identifier policy for the output rig.
    """

    def __init__(
        self,
        input_rig: CameraRig,
        interpolation: int = cv2.INTER_LINEAR,
        id_generator: IdGenerator | None = None,
    ) -> None:
        self._input_rig = input_rig
        self._output_rig = input_rig.clone_rig_without_distortion(id_generator)
        self._interpolation = interpolation
        self._maps: list[UndistortionMaps] = [
            compute_undistortion_maps(
                input_rig.get_camera(i), self._output_rig.get_camera(i)
            )
            for i in range(input_rig.num_cameras)
        ]
        logger.debug(
            "precomputed undistortion maps for %d cameras", len(self._maps)
        )

    @property
    def output_rig(self) -> CameraRig:
        return self._output_rig

    def process(self, camera_index: int, image: np.ndarray) -> np.ndarray:
        return undistort_image(image, self._maps[camera_index], self._interpolation)


__all__ = ["ImageProcessor", "PassthroughProcessor", "UndistortingProcessor"]
