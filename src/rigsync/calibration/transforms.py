"""Rigid-body transformations between rig frames."""

from __future__ import annotations

import torch

# Maximum deviation of R^T R from identity accepted without renormalizing.
_ORTHONORMAL_ATOL = 1e-6


def _as_float64(value: object, shape: tuple[int, ...], name: str) -> torch.Tensor:
    tensor = torch.as_tensor(value, dtype=torch.float64)
    if tuple(tensor.shape) != shape:
        try:
            tensor = tensor.reshape(shape)
        except RuntimeError as exc:
            raise ValueError(
                f"{name} must have shape {shape}, got {tuple(tensor.shape)}"
            ) from exc
    if not bool(torch.isfinite(tensor).all()):
        raise ValueError(f"{name} contains non-finite values")
    return tensor.clone()


def renormalize_rotation(R_raw: object) -> torch.Tensor:
    """Project a 3x3 matrix onto the closest proper rotation (SVD).

    Args:
        R_raw: Approximately orthonormal matrix, e.g. read from a text file
            with limited precision.

    Returns:
        Rotation matrix with ``R^T R = I`` and ``det(R) = +1``, float64.

    Raises:
        ValueError: If *R_raw* is not 3x3, is non-finite, or is degenerate.
    """
    R = _as_float64(R_raw, (3, 3), "R")
    U, S, Vh = torch.linalg.svd(R)
    if float(S.min()) < 1e-9:
        raise ValueError("R is degenerate (rank < 3), cannot renormalize")
    det = torch.linalg.det(U @ Vh)
    signs = torch.tensor([1.0, 1.0, float(torch.sign(det))], dtype=torch.float64)
    D = torch.diag(signs)
    return U @ D @ Vh


class Transformation:
    """Rigid transform ``T_A_B`` taking points from frame B to frame A.

    ``p_A = R @ p_B + t``. Stored as float64 tensors.

    Args:
        R: Rotation matrix, shape (3, 3). Must be orthonormal with det +1;
            use :meth:`from_rotation_renormalized` for raw input.
        t: Translation, shape (3,).

    Raises:
        ValueError: Wrong shapes, non-finite values, or R not a rotation.
    """

    def __init__(self, R: object = None, t: object = None) -> None:
        eye = torch.eye(3, dtype=torch.float64)
        R_t = eye.clone() if R is None else _as_float64(R, (3, 3), "R")
        t_t = (
            torch.zeros(3, dtype=torch.float64)
            if t is None
            else _as_float64(t, (3,), "t")
        )
        orthonormal = torch.allclose(R_t.T @ R_t, eye, atol=_ORTHONORMAL_ATOL)
        if not orthonormal or float(torch.linalg.det(R_t)) < 0.0:
            raise ValueError("R is not a proper rotation matrix")
        self._R = R_t
        self._t = t_t

    @classmethod
    def identity(cls) -> Transformation:
        return cls()

    @classmethod
    def from_rotation_renormalized(cls, R_raw: object, t: object) -> Transformation:
        """Build from a raw rotation that is re-orthonormalized first."""
        return cls(renormalize_rotation(R_raw), t)

    @classmethod
    def from_matrix(cls, T: object) -> Transformation:
        """Build from a homogeneous 4x4 matrix."""
        T_t = _as_float64(T, (4, 4), "T")
        return cls(T_t[:3, :3], T_t[:3, 3])

    @property
    def rotation_matrix(self) -> torch.Tensor:
        """Rotation part, shape (3, 3), float64 (copy)."""
        return self._R.clone()

    @property
    def position(self) -> torch.Tensor:
        """Translation part, shape (3,), float64 (copy)."""
        return self._t.clone()

    def as_matrix(self) -> torch.Tensor:
        """Homogeneous 4x4 matrix."""
        T = torch.eye(4, dtype=torch.float64)
        T[:3, :3] = self._R
        T[:3, 3] = self._t
        return T

    def inverse(self) -> Transformation:
        """``T_B_A`` for this ``T_A_B``."""
        R_inv = self._R.T
        return Transformation(R_inv, -R_inv @ self._t)

    def __matmul__(self, other: Transformation) -> Transformation:
        """Compose ``T_A_B @ T_B_C -> T_A_C``."""
        if not isinstance(other, Transformation):
            return NotImplemented
        return Transformation(self._R @ other._R, self._R @ other._t + self._t)

    def transform(self, points: torch.Tensor) -> torch.Tensor:
        """Apply to points of shape (N, 3); output keeps the input dtype."""
        R = self._R.to(points.dtype)
        t = self._t.to(points.dtype)
        return points @ R.T + t

    def allclose(self, other: Transformation, atol: float = 1e-9) -> bool:
        """Element-wise comparison of rotation and translation."""
        return bool(
            torch.allclose(self._R, other._R, rtol=0.0, atol=atol)
            and torch.allclose(self._t, other._t, rtol=0.0, atol=atol)
        )

    def clone(self) -> Transformation:
        return Transformation(self._R, self._t)

    def __repr__(self) -> str:
        t = ", ".join(f"{v:.6g}" for v in self._t.tolist())
        return f"Transformation(t=[{t}])"


__all__ = ["Transformation", "renormalize_rotation"]
