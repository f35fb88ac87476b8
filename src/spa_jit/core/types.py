# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
Core typed data structures for SPA-JIT.

Classes
-------
Pose2
    Rigid-body placement in the plane: translation (x, y) and heading
    theta in radians. The angle is not normalized on construction.

Constraint
    Relative-pose measurement between two nodes: "target is observed at
    ``measured`` relative to ``source`` with confidence ``information``".
    The upper-triangular square root of the information matrix is derived
    once on construction and cached.

Notes
-----
These are plain value types. The optimizer never reads poses from
:class:`Pose2` objects; it works on the flat parameter buffer owned by
:class:`~spa_jit.core.pose_graph.PoseGraph`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NewType, Optional, Tuple

import numpy as np

from .errors import ConfigurationError

NodeId = NewType("NodeId", int)


@dataclass(frozen=True)
class Pose2:
    """2D pose [x, y, theta]."""
    x: float
    y: float
    theta: float

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.theta], dtype=np.float64)

    @staticmethod
    def from_array(v) -> "Pose2":
        v = np.asarray(v, dtype=np.float64).reshape(3)
        return Pose2(x=float(v[0]), y=float(v[1]), theta=float(v[2]))


def sqrt_information_from(information: np.ndarray) -> np.ndarray:
    """
    Upper-triangular U with U^T U = information.

    Raises ConfigurationError when the matrix is not a finite, symmetric,
    positive-definite 3×3 matrix.
    """
    info = np.asarray(information, dtype=np.float64)
    if info.shape != (3, 3):
        raise ConfigurationError(f"information matrix must be 3x3, got shape {info.shape}")
    if not np.all(np.isfinite(info)):
        raise ConfigurationError("information matrix contains non-finite entries")
    if not np.allclose(info, info.T, rtol=1e-9, atol=1e-12):
        raise ConfigurationError("information matrix is not symmetric")
    try:
        lower = np.linalg.cholesky(info)
    except np.linalg.LinAlgError as exc:
        raise ConfigurationError("information matrix is not positive definite") from exc
    return lower.T


@dataclass(frozen=True)
class Constraint:
    """SPA edge: source -> target relative-pose measurement."""
    source: NodeId
    target: NodeId
    measured: Pose2
    information: Optional[np.ndarray] = field(default=None, compare=False)
    sqrt_information: np.ndarray = field(init=False, repr=False, compare=False)
    # Arrays do not compare or hash; equality goes through this tuple instead.
    information_key: Tuple[float, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        info = np.eye(3) if self.information is None else np.array(self.information, dtype=np.float64)
        object.__setattr__(self, "information", info)
        object.__setattr__(self, "information_key", tuple(info.ravel().tolist()))
        object.__setattr__(self, "sqrt_information", sqrt_information_from(info))

    def params(self) -> dict:
        """Residual parameters in the form the measurement functions expect."""
        return {
            "measurement": self.measured.to_array(),
            "sqrt_information": self.sqrt_information,
        }
