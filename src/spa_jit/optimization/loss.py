# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
Robust loss functions for residual blocks.

A loss acts on the squared norm ``s = ||r||²`` of a whole residual block
and returns ``(ρ(s), ρ'(s), ρ''(s))``. A block contributes ``½ ρ(s)`` to
the total cost.

    TrivialLoss       ρ(s) = s
    HuberLoss(a)      ρ(s) = s                 for s ≤ a²
                      ρ(s) = 2a√s − a²         for s > a²
    CauchyLoss(a)     ρ(s) = a² log(1 + s/a²)

`make_loss(name, scale)` looks a loss up by name ("trivial", "huber",
"cauchy"); the benchmark harness uses it to select the loss.

`correct_block` rescales a block's residual and Jacobian so that a plain
Gauss-Newton / LM step on the corrected quantities matches the second
order model of the robustified cost (the Triggs correction).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from spa_jit.core.errors import ConfigurationError

LossValue = Tuple[float, float, float]


class LossFunction:
    def evaluate(self, s: float) -> LossValue:
        raise NotImplementedError


class TrivialLoss(LossFunction):
    def evaluate(self, s: float) -> LossValue:
        return s, 1.0, 0.0


@dataclass(frozen=True)
class HuberLoss(LossFunction):
    """Quadratic inside ``a``, linear in ||r|| beyond it."""
    a: float = 1.0

    def evaluate(self, s: float) -> LossValue:
        b = self.a * self.a
        if s > b:
            r = math.sqrt(s)
            return 2.0 * self.a * r - b, self.a / r, -self.a / (2.0 * s * r)
        return s, 1.0, 0.0


@dataclass(frozen=True)
class CauchyLoss(LossFunction):
    a: float = 1.0

    def evaluate(self, s: float) -> LossValue:
        b = self.a * self.a
        c = 1.0 / b
        denom = 1.0 + s * c
        inv = 1.0 / denom
        return b * math.log1p(s * c), inv, -c * inv * inv


LOSS_FUNCTIONS: Dict[str, type] = {
    "trivial": TrivialLoss,
    "huber": HuberLoss,
    "cauchy": CauchyLoss,
}


def make_loss(name: str, scale: float = 1.0) -> LossFunction:
    """Loss by name; ``scale`` is the threshold ``a`` of the robust losses."""
    cls = LOSS_FUNCTIONS.get(name)
    if cls is None:
        raise ConfigurationError(f"unknown loss {name!r}; expected one of {sorted(LOSS_FUNCTIONS)}")
    if cls is TrivialLoss:
        return TrivialLoss()
    return cls(scale)


def correct_block(
    residual: np.ndarray,
    jacobian: Optional[np.ndarray],
    loss: LossFunction,
) -> Tuple[float, np.ndarray, Optional[np.ndarray]]:
    """
    Apply ``loss`` to one residual block.

    Returns (ρ(s), corrected residual, corrected jacobian). The jacobian is
    ``(num_residuals, k)`` over the block's free parameters, or None.
    """
    s = float(residual @ residual)
    rho, rho1, rho2 = loss.evaluate(s)
    if rho1 == 1.0 and rho2 == 0.0:
        return rho, residual, jacobian

    sqrt_rho1 = math.sqrt(rho1)
    if s == 0.0 or rho2 <= 0.0:
        residual_scaling = sqrt_rho1
        alpha_sq_norm = 0.0
    else:
        d = 1.0 + 2.0 * s * rho2 / rho1
        alpha = 1.0 - math.sqrt(d)
        residual_scaling = sqrt_rho1 / (1.0 - alpha)
        alpha_sq_norm = alpha / s

    if jacobian is not None:
        if alpha_sq_norm == 0.0:
            jacobian = sqrt_rho1 * jacobian
        else:
            jacobian = sqrt_rho1 * (jacobian - alpha_sq_norm * np.outer(residual, residual @ jacobian))
    return rho, residual_scaling * residual, jacobian
