# lee_engine/src/lee_engine/exact.py
"""Analytic solutions of the linearized Euler equations on a periodic box.

Both solutions are perturbations of a quiescent background with density 1 and
sound speed c. The conserved perturbation is U = (rho, m_1..m_d, E) with
pressure p = c^2 rho and energy E = p / (gamma - 1).

Cases:
    1: Standing "membrane" mode. With phi(x) = prod_i cos(k x_i),
       k = 2 pi modes / L and omega = c k sqrt(d):
       p = cos(omega t) phi, m = -sin(omega t) / omega grad(phi).
    2: Plane wave travelling in x: p = sin(k (x - c t)), m_x = p / c.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np
import numpy.typing as npt

from lee_engine.config import SUPPORTED_INITIAL_CASES
from lee_engine.errors import raise_unsupported

FloatArray = npt.NDArray[np.floating[Any]]

_POINTS_SHAPE_ERROR = "points must have shape (n, {dim}); got {shape}"


@dataclass(frozen=True, slots=True)
class ExactSolution:
    """Exact solution U(x, t) for one of the built-in test cases.

    Attributes:
        time: Evaluation time.
        case: Test case (1 standing wave, 2 plane wave).
        dim: Spatial dimension.
        modes: Number of wavelengths across the domain.
        length: Domain edge length.
        left: Lower domain bound.
        sound_speed: Background sound speed c.
        gamma: Ratio of specific heats.
    """

    time: float
    case: int
    dim: int
    modes: int = 1
    length: float = 1.0
    left: float = 0.0
    sound_speed: float = 1.0
    gamma: float = 1.4

    def __post_init__(self) -> None:
        """Validate the test case.

        Raises:
            UnsupportedConfigurationError: For unknown cases.
        """
        if self.case not in SUPPORTED_INITIAL_CASES:
            raise_unsupported(
                "initial case",
                self.case,
                supported="1 (standing wave) or 2 (plane wave)",
            )

    @property
    def n_components(self) -> int:
        """Number of components (density, momentum, energy)."""
        return self.dim + 2

    @property
    def wave_number(self) -> float:
        """Spatial wave number k."""
        return 2.0 * math.pi * self.modes / self.length

    def at(self, time: float) -> ExactSolution:
        """Return the same solution evaluated at another time."""
        return ExactSolution(
            time=time,
            case=self.case,
            dim=self.dim,
            modes=self.modes,
            length=self.length,
            left=self.left,
            sound_speed=self.sound_speed,
            gamma=self.gamma,
        )

    def __call__(self, points: npt.ArrayLike) -> FloatArray:
        """Evaluate all components at the given points.

        Args:
            points: Coordinates of shape (n, dim).

        Raises:
            ValueError: If points have the wrong shape.

        Returns:
            Array of shape (n, dim + 2).
        """
        x = np.asarray(points, dtype=np.float64)
        if x.ndim != 2 or x.shape[1] != self.dim:
            raise ValueError(_POINTS_SHAPE_ERROR.format(dim=self.dim, shape=x.shape))

        k = self.wave_number
        c = self.sound_speed
        xi = x - self.left
        out = np.zeros((x.shape[0], self.n_components))

        if self.case == 1:
            omega = c * k * math.sqrt(self.dim)
            cosines = np.cos(k * xi)
            phi = np.prod(cosines, axis=1)
            pressure = math.cos(omega * self.time) * phi
            amplitude = -math.sin(omega * self.time) / omega
            for d in range(self.dim):
                others = np.prod(np.delete(cosines, d, axis=1), axis=1)
                out[:, 1 + d] = amplitude * (-k * np.sin(k * xi[:, d])) * others
        else:
            pressure = np.sin(k * (xi[:, 0] - c * self.time))
            out[:, 1] = pressure / c

        out[:, 0] = pressure / c**2
        out[:, -1] = pressure / (self.gamma - 1.0)
        return out
