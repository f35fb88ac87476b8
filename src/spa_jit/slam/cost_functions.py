# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
Cost function strategies for SPA residual blocks.

A cost function binds one constraint's measurement and square-root
information and evaluates, for the six scalar parameters
``[xs, ys, θs, xt, yt, θt]``, the residual and any requested Jacobian
columns:

    residual, columns = cost.evaluate(x, requested)

``columns`` always has six entries; an entry is ``None`` when its flag in
``requested`` is false (or when ``requested`` is ``None``).

Strategies
----------
"autodiff"
    `AutoDiffSpaCost`: the generic residual evaluated by JAX; the full
    3×6 Jacobian comes from `jax.jacfwd` whenever any column is wanted.

"analytic"
    `AnalyticSpaCost`: the closed-form residual plus the hand-derived
    columns of `analytic_spa_jacobians`, computed selectively.

`make_cost_function(strategy, constraint)` is the registry lookup used by
the problem builder.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple, Type

import numpy as np

from spa_jit.core.errors import ConfigurationError
from spa_jit.core.types import Constraint
from spa_jit.optimization.jit_wrappers import JittedResidual
from spa_jit.slam.measurements import (
    NUM_PARAMETERS,
    NUM_RESIDUALS,
    Columns,
    analytic_spa_jacobians,
    spa_residual,
    spa_residual_closed_form,
)

_SPA_JIT = JittedResidual.from_residual(spa_residual)


class SpaCostFunction:
    """Common interface: 3 residuals over six 1-scalar parameter blocks."""

    strategy = ""
    num_residuals = NUM_RESIDUALS
    parameter_block_sizes: Tuple[int, ...] = (1,) * NUM_PARAMETERS

    def __init__(self, constraint: Constraint) -> None:
        self.params: Dict[str, np.ndarray] = constraint.params()

    @property
    def sqrt_information(self) -> np.ndarray:
        return self.params["sqrt_information"]

    def evaluate(self, x, requested: Optional[Sequence[bool]] = None) -> Tuple[np.ndarray, Columns]:
        raise NotImplementedError


class AutoDiffSpaCost(SpaCostFunction):
    strategy = "autodiff"

    def evaluate(self, x, requested=None):
        x = np.asarray(x, dtype=np.float64)
        if requested is None or not any(requested):
            r = _SPA_JIT.residual(x, self.params)
            return np.asarray(r), (None,) * NUM_PARAMETERS

        r, jac = _SPA_JIT.value_and_jacobian(x, self.params)
        jac = np.asarray(jac)
        columns = tuple(jac[:, k] if flag else None for k, flag in enumerate(requested))
        return np.asarray(r), columns


class AnalyticSpaCost(SpaCostFunction):
    """
    Closed-form residual and hand-derived Jacobian columns.

    ``num_column_evaluations`` counts every derivative column produced,
    so callers can check that unrequested columns cost nothing.
    """
    strategy = "analytic"

    def __init__(self, constraint: Constraint) -> None:
        super().__init__(constraint)
        self.num_column_evaluations = 0

    def _count(self, _name: str) -> None:
        self.num_column_evaluations += 1

    def evaluate(self, x, requested=None):
        r = spa_residual_closed_form(x, self.params)
        columns = analytic_spa_jacobians(x, self.sqrt_information, requested, on_column=self._count)
        return r, columns


COST_STRATEGIES: Dict[str, Type[SpaCostFunction]] = {
    "autodiff": AutoDiffSpaCost,
    "analytic": AnalyticSpaCost,
}


def make_cost_function(strategy: str, constraint: Constraint) -> SpaCostFunction:
    cls = COST_STRATEGIES.get(strategy)
    if cls is None:
        raise ConfigurationError(
            f"unknown cost strategy {strategy!r}; expected one of {sorted(COST_STRATEGIES)}"
        )
    return cls(constraint)
