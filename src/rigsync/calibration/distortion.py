"""Lens distortion models on the normalized image plane.

All models share the :class:`DistortionModel` contract and are implemented
with differentiable torch ops only, so the same code serves float32/float64
evaluation and autograd (calibration refinement can backpropagate through
``distort_external`` with respect to both points and coefficients).

Points are tensors of shape (N, 2); coefficient vectors have shape (K,).
Every operation comes in two forms: ``*_external`` takes the coefficients as
an argument and ignores the stored parameters, the plain form uses the
stored parameters.
"""

from __future__ import annotations

import abc
import enum
import logging
import math
from dataclasses import dataclass
from typing import ClassVar

import torch

logger = logging.getLogger(__name__)

# Radius below which a point is treated as lying on the optical axis.
_AXIS_EPS = 1e-10


class DistortionType(enum.Enum):
    """Closed set of supported distortion variants."""

    NONE = "none"
    EQUIDISTANT = "equidistant"
    RADTAN = "radtan"


@dataclass(frozen=True)
class UndistortionResult:
    """Outcome of an iterative undistortion.

    Attributes:
        points: Best available undistorted points, shape (N, 2).
        converged: Per-point convergence flag, shape (N,), bool.
        residual: Norm of ``distort(points) - input`` per point, shape (N,).
    """

    points: torch.Tensor
    converged: torch.Tensor
    residual: torch.Tensor

    @property
    def all_converged(self) -> bool:
        """True if every point reached the tolerance."""
        return bool(self.converged.all())


def _as_coeffs(coeffs: object) -> torch.Tensor:
    if isinstance(coeffs, torch.Tensor):
        return coeffs.reshape(-1)
    return torch.as_tensor(coeffs, dtype=torch.float64).reshape(-1)


def _as_points(points: object) -> torch.Tensor:
    if not isinstance(points, torch.Tensor):
        points = torch.as_tensor(points, dtype=torch.float64)
    if points.ndim != 2 or points.shape[-1] != 2:
        raise ValueError(f"points must have shape (N, 2), got {tuple(points.shape)}")
    return points


def _solve_2x2(jac: torch.Tensor, rhs: torch.Tensor) -> torch.Tensor:
    """Solve ``jac @ step = rhs`` for a batch of 2x2 systems.

    Singular systems fall back to ``step = rhs`` (a plain fixed-point update).
    """
    a = jac[:, 0, 0]
    b = jac[:, 0, 1]
    c = jac[:, 1, 0]
    d = jac[:, 1, 1]
    det = a * d - b * c
    singular = det.abs() < 1e-15
    safe_det = torch.where(singular, torch.ones_like(det), det)
    sx = (d * rhs[:, 0] - b * rhs[:, 1]) / safe_det
    sy = (-c * rhs[:, 0] + a * rhs[:, 1]) / safe_det
    step = torch.stack([sx, sy], dim=-1)
    return torch.where(singular.unsqueeze(-1), rhs, step)


class DistortionModel(abc.ABC):
    """Base class for distortion variants.

    Args:
        parameters: Coefficient vector of length :attr:`PARAMETER_COUNT`.
            Defaults to all zeros.
        max_iterations: Iteration budget for iterative undistortion.
        tolerance: Residual norm on the normalized plane at which iterative
            undistortion is considered converged.

    Raises:
        ValueError: If *parameters* fail :meth:`parameters_valid`.
    """

    TYPE: ClassVar[DistortionType]
    PARAMETER_COUNT: ClassVar[int]

    def __init__(
        self,
        parameters: object = None,
        *,
        max_iterations: int = 20,
        tolerance: float = 1e-10,
    ) -> None:
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if tolerance <= 0.0:
            raise ValueError(f"tolerance must be > 0, got {tolerance}")
        self.max_iterations = int(max_iterations)
        self.tolerance = float(tolerance)
        if parameters is None:
            parameters = torch.zeros(self.PARAMETER_COUNT, dtype=torch.float64)
        self._parameters = self._validated(parameters)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @classmethod
    def parameter_count(cls) -> int:
        """Number of coefficients used by this variant."""
        return cls.PARAMETER_COUNT

    @classmethod
    def parameters_valid(cls, coeffs: object) -> bool:
        """Check a candidate coefficient vector without storing it.

        Args:
            coeffs: Candidate coefficients (tensor, array or sequence).

        Returns:
            True if the count is right, every value is finite, and the
            variant-specific domain constraints hold.
        """
        try:
            tensor = _as_coeffs(coeffs)
        except (TypeError, ValueError, RuntimeError):
            return False
        if tensor.numel() != cls.PARAMETER_COUNT:
            return False
        if not bool(torch.isfinite(tensor).all()):
            return False
        return cls._domain_valid(tensor.detach().to(torch.float64))

    @classmethod
    def _domain_valid(cls, coeffs: torch.Tensor) -> bool:
        return True

    @property
    def parameters(self) -> torch.Tensor:
        """Copy of the stored coefficient vector, shape (K,), float64."""
        return self._parameters.clone()

    def set_parameters(self, coeffs: object) -> None:
        """Replace the stored coefficients.

        Raises:
            ValueError: If *coeffs* is invalid; stored parameters are left
                untouched.
        """
        self._parameters = self._validated(coeffs)

    def _validated(self, coeffs: object) -> torch.Tensor:
        if not self.parameters_valid(coeffs):
            raise ValueError(
                f"Invalid {self.TYPE.value} distortion parameters: {coeffs!r} "
                f"(expected {self.PARAMETER_COUNT} finite values)"
            )
        return _as_coeffs(coeffs).detach().to(torch.float64).clone()

    def _checked_coeffs(self, coeffs: object, like: torch.Tensor) -> torch.Tensor:
        tensor = _as_coeffs(coeffs)
        if tensor.numel() != self.PARAMETER_COUNT:
            raise ValueError(
                f"{self.TYPE.value} distortion expects {self.PARAMETER_COUNT} "
                f"coefficients, got {tensor.numel()}"
            )
        return tensor.to(dtype=like.dtype, device=like.device)

    # ------------------------------------------------------------------
    # Distortion
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _distort(
        self, coeffs: torch.Tensor, points: torch.Tensor, with_jacobian: bool
    ) -> tuple[torch.Tensor, torch.Tensor | None]:
        """Variant math. Returns (distorted (N, 2), jacobian (N, 2, 2) or None)."""

    @abc.abstractmethod
    def _parameter_jacobian(
        self, coeffs: torch.Tensor, points: torch.Tensor
    ) -> torch.Tensor:
        """Variant math. Returns d(distorted)/d(coeffs), shape (N, 2, K)."""

    def distort_external(
        self, coeffs: object, points: object, with_jacobian: bool = False
    ) -> torch.Tensor | tuple[torch.Tensor, torch.Tensor]:
        """Distort normalized points using the given coefficients.

        Args:
            coeffs: Coefficient vector, shape (K,). Stored parameters are
                ignored.
            points: Undistorted normalized points, shape (N, 2).
            with_jacobian: Also return d(distorted)/d(points).

        Returns:
            Distorted points, shape (N, 2), and when requested the Jacobian,
            shape (N, 2, 2).
        """
        pts = _as_points(points)
        distorted, jac = self._distort(
            self._checked_coeffs(coeffs, pts), pts, with_jacobian
        )
        if with_jacobian:
            assert jac is not None
            return distorted, jac
        return distorted

    def distort(
        self, points: object, with_jacobian: bool = False
    ) -> torch.Tensor | tuple[torch.Tensor, torch.Tensor]:
        """Distort normalized points using the stored parameters."""
        return self.distort_external(self._parameters, points, with_jacobian)

    def distort_parameter_jacobian(
        self, coeffs: object, points: object
    ) -> torch.Tensor:
        """Jacobian of the distorted points w.r.t. the coefficients.

        Returns:
            Tensor of shape (N, 2, K).
        """
        pts = _as_points(points)
        return self._parameter_jacobian(self._checked_coeffs(coeffs, pts), pts)

    # ------------------------------------------------------------------
    # Undistortion
    # ------------------------------------------------------------------

    def undistort_external(
        self, coeffs: object, points: object
    ) -> UndistortionResult:
        """Invert :meth:`distort_external` by Newton iteration.

        Starts from the distorted point itself and applies Newton steps
        using the point Jacobian until the residual norm falls below the
        tolerance or the iteration budget runs out. Unconverged points keep
        their last estimate and are flagged in the result.
        """
        pts = _as_points(points)
        c = self._checked_coeffs(coeffs, pts)
        tol = self._effective_tolerance(pts)

        estimate = pts.clone()
        for _ in range(self.max_iterations):
            distorted, jac = self._distort(c, estimate, True)
            assert jac is not None
            error = pts - distorted
            if bool((error.norm(dim=-1) < tol).all()):
                break
            estimate = estimate + _solve_2x2(jac, error)

        return self._finish(c, pts, estimate, tol)

    def undistort(self, points: object) -> UndistortionResult:
        """Invert :meth:`distort` using the stored parameters."""
        return self.undistort_external(self._parameters, points)

    def _effective_tolerance(self, points: torch.Tensor) -> float:
        # float32 cannot reach float64 tolerances.
        return max(self.tolerance, 10.0 * torch.finfo(points.dtype).eps)

    def _finish(
        self,
        coeffs: torch.Tensor,
        target: torch.Tensor,
        estimate: torch.Tensor,
        tol: float,
        extra_valid: torch.Tensor | None = None,
    ) -> UndistortionResult:
        distorted, _ = self._distort(coeffs, estimate, False)
        residual = (distorted - target).norm(dim=-1)
        converged = torch.isfinite(estimate).all(dim=-1) & (residual < tol)
        if extra_valid is not None:
            converged = converged & extra_valid
        n_failed = int((~converged).sum())
        if n_failed:
            logger.warning(
                "%s undistortion: %d of %d points did not converge within "
                "%d iterations (max residual %.3e)",
                self.TYPE.value,
                n_failed,
                target.shape[0],
                self.max_iterations,
                float(residual.detach().nan_to_num(nan=math.inf).max()),
            )
        return UndistortionResult(
            points=estimate, converged=converged, residual=residual
        )

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    def clone(self) -> DistortionModel:
        """Independent copy with the same parameters and solver settings."""
        return type(self)(
            self._parameters,
            max_iterations=self.max_iterations,
            tolerance=self.tolerance,
        )

    def is_equal(self, other: object, tolerance: float = 1e-9) -> bool:
        """Same variant and coefficients within *tolerance*."""
        if not isinstance(other, DistortionModel) or other.TYPE is not self.TYPE:
            return False
        return bool(
            torch.allclose(
                self._parameters, other._parameters, rtol=0.0, atol=tolerance
            )
        )

    def __eq__(self, other: object) -> bool:
        return self.is_equal(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        values = ", ".join(f"{v:.6g}" for v in self._parameters.tolist())
        return f"{type(self).__name__}([{values}])"


class NullDistortion(DistortionModel):
    """Identity model used by distortion-free (output) cameras."""

    TYPE = DistortionType.NONE
    PARAMETER_COUNT = 0

    def _distort(self, coeffs, points, with_jacobian):
        jac = None
        if with_jacobian:
            eye = torch.eye(2, dtype=points.dtype, device=points.device)
            jac = eye.expand(points.shape[0], 2, 2).clone()
        return points.clone(), jac

    def _parameter_jacobian(self, coeffs, points):
        return points.new_zeros((points.shape[0], 2, 0))

    def undistort_external(self, coeffs, points):
        pts = _as_points(points)
        self._checked_coeffs(coeffs, pts)
        return UndistortionResult(
            points=pts.clone(),
            converged=torch.ones(pts.shape[0], dtype=torch.bool, device=pts.device),
            residual=pts.new_zeros(pts.shape[0]),
        )


class EquidistantDistortion(DistortionModel):
    """Equidistant (Kannala-Brandt) fisheye model, parameters ``k1 k2 k3 k4``.

    With ``r = |p|`` and ``theta = atan(r)`` the distorted radius is
    ``theta_d = theta * (1 + k1 theta^2 + k2 theta^4 + k3 theta^6 + k4 theta^8)``
    and the distorted point is ``p * theta_d / r``. There is no closed-form
    inverse; :meth:`undistort_external` runs Newton on ``theta``.
    """

    TYPE = DistortionType.EQUIDISTANT
    PARAMETER_COUNT = 4

    # Upper bound of the incidence angle (rad) over which the radial map
    # must be strictly increasing for a parameter set to be accepted.
    VALIDITY_THETA_MAX: ClassVar[float] = 1.2

    @staticmethod
    def _radial(coeffs: torch.Tensor, theta: torch.Tensor):
        """Return (theta_d, d theta_d / d theta)."""
        k1, k2, k3, k4 = coeffs.unbind()
        t2 = theta * theta
        poly = 1.0 + t2 * (k1 + t2 * (k2 + t2 * (k3 + t2 * k4)))
        dpoly = 1.0 + t2 * (
            3.0 * k1 + t2 * (5.0 * k2 + t2 * (7.0 * k3 + t2 * 9.0 * k4))
        )
        return theta * poly, dpoly

    @classmethod
    def _domain_valid(cls, coeffs: torch.Tensor) -> bool:
        theta = torch.linspace(0.0, cls.VALIDITY_THETA_MAX, 64, dtype=torch.float64)
        _, slope = cls._radial(coeffs, theta)
        return bool((slope > 0.0).all())

    @staticmethod
    def _safe_radius(points: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        r2 = (points * points).sum(dim=-1)
        on_axis = r2 < _AXIS_EPS * _AXIS_EPS
        # Keep sqrt away from zero so autograd stays finite on the axis.
        r = torch.sqrt(torch.where(on_axis, torch.ones_like(r2), r2))
        return r, on_axis

    def _distort(self, coeffs, points, with_jacobian):
        r, on_axis = self._safe_radius(points)
        theta = torch.atan(r)
        theta_d, dtheta_d = self._radial(coeffs, theta)
        scale = torch.where(on_axis, torch.ones_like(r), theta_d / r)
        distorted = points * scale.unsqueeze(-1)

        jac = None
        if with_jacobian:
            # d scale / d r, then chain through r = |p|.
            dtheta_dr = 1.0 / (1.0 + r * r)
            dscale_dr = (dtheta_d * dtheta_dr * r - theta_d) / (r * r)
            coef = torch.where(on_axis, torch.zeros_like(r), dscale_dr / r)
            outer = points.unsqueeze(-1) * points.unsqueeze(-2)
            eye = torch.eye(2, dtype=points.dtype, device=points.device)
            jac = scale[:, None, None] * eye + coef[:, None, None] * outer
        return distorted, jac

    def _parameter_jacobian(self, coeffs, points):
        r, on_axis = self._safe_radius(points)
        theta = torch.where(on_axis, torch.zeros_like(r), torch.atan(r))
        t2 = theta * theta
        ratio = torch.where(on_axis, torch.ones_like(r), theta / r)
        base = points * ratio.unsqueeze(-1)
        powers = torch.stack([t2, t2**2, t2**3, t2**4], dim=-1)
        return base.unsqueeze(-1) * powers.unsqueeze(-2)

    def undistort_external(self, coeffs, points):
        pts = _as_points(points)
        c = self._checked_coeffs(coeffs, pts)
        tol = self._effective_tolerance(pts)

        r_d, on_axis = self._safe_radius(pts)
        r_target = torch.where(on_axis, torch.zeros_like(r_d), r_d)
        theta = r_target.clone()
        for _ in range(self.max_iterations):
            theta_d, slope = self._radial(c, theta)
            f = theta_d - r_target
            if bool((f.abs() < tol).all()):
                break
            slope = torch.where(slope.abs() < 1e-12, torch.ones_like(slope), slope)
            theta = theta - f / slope

        in_domain = on_axis | ((theta >= 0.0) & (theta < 0.5 * math.pi))
        scale = torch.where(on_axis, torch.ones_like(r_d), torch.tan(theta) / r_d)
        estimate = pts * scale.unsqueeze(-1)
        return self._finish(c, pts, estimate, tol, extra_valid=in_domain)


class RadTanDistortion(DistortionModel):
    """Radial-tangential (Brown-Conrady) model, parameters ``k1 k2 p1 p2``."""

    TYPE = DistortionType.RADTAN
    PARAMETER_COUNT = 4

    def _distort(self, coeffs, points, with_jacobian):
        k1, k2, p1, p2 = coeffs.unbind()
        x = points[:, 0]
        y = points[:, 1]
        r2 = x * x + y * y
        radial = 1.0 + k1 * r2 + k2 * r2 * r2
        xy = x * y
        xd = x * radial + 2.0 * p1 * xy + p2 * (r2 + 2.0 * x * x)
        yd = y * radial + p1 * (r2 + 2.0 * y * y) + 2.0 * p2 * xy
        distorted = torch.stack([xd, yd], dim=-1)

        jac = None
        if with_jacobian:
            dradial = k1 + 2.0 * k2 * r2
            drad_dx = 2.0 * x * dradial
            drad_dy = 2.0 * y * dradial
            dxd_dx = radial + x * drad_dx + 2.0 * p1 * y + 6.0 * p2 * x
            dxd_dy = x * drad_dy + 2.0 * p1 * x + 2.0 * p2 * y
            dyd_dx = y * drad_dx + 2.0 * p1 * x + 2.0 * p2 * y
            dyd_dy = radial + y * drad_dy + 6.0 * p1 * y + 2.0 * p2 * x
            jac = torch.stack(
                [
                    torch.stack([dxd_dx, dxd_dy], dim=-1),
                    torch.stack([dyd_dx, dyd_dy], dim=-1),
                ],
                dim=-2,
            )
        return distorted, jac

    def _parameter_jacobian(self, coeffs, points):
        x = points[:, 0]
        y = points[:, 1]
        r2 = x * x + y * y
        xy2 = 2.0 * x * y
        row_x = torch.stack([x * r2, x * r2 * r2, xy2, r2 + 2.0 * x * x], dim=-1)
        row_y = torch.stack([y * r2, y * r2 * r2, r2 + 2.0 * y * y, xy2], dim=-1)
        return torch.stack([row_x, row_y], dim=-2)


_REGISTRY: dict[DistortionType, type[DistortionModel]] = {
    DistortionType.NONE: NullDistortion,
    DistortionType.EQUIDISTANT: EquidistantDistortion,
    DistortionType.RADTAN: RadTanDistortion,
}


def create_distortion(
    kind: DistortionType | str, parameters: object = None, **kwargs: object
) -> DistortionModel:
    """Build a distortion model from its type tag.

    Args:
        kind: A :class:`DistortionType` or its string value
            (``"none"``, ``"equidistant"``, ``"radtan"``).
        parameters: Coefficient vector; zeros if omitted.
        **kwargs: Solver settings forwarded to the constructor.

    Raises:
        ValueError: Unknown *kind* or invalid *parameters*.
    """
    kind = DistortionType(kind) if isinstance(kind, str) else kind
    return _REGISTRY[kind](parameters, **kwargs)  # type: ignore[arg-type]


__all__ = [
    "DistortionModel",
    "DistortionType",
    "EquidistantDistortion",
    "NullDistortion",
    "RadTanDistortion",
    "UndistortionResult",
    "create_distortion",
]
