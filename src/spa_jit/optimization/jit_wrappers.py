# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
JIT-friendly autodiff wrappers for SPA-JIT.

The autodiff cost strategy needs, for every residual block and every
solver iteration, both r(x) and J(x) = ∂r/∂x. Tracing and compiling that
pair once per residual *function* (not per constraint) keeps the per-call
cost down to a single dispatch: the measurement and square-root
information are passed as arguments, so every constraint of the graph
shares one compiled executable.

Typical Usage
-------------
    value_and_jac = build_jit_residual_and_jacobian(spa_residual)
    r, J = value_and_jac(x, params)        # J has shape (3, 6)

Notes
-----
Residual functions passed here must be pure ``(x, params) -> r`` JAX
functions; ``params`` is a dict of arrays and is treated as a pytree
argument, not as a static value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import jax
import jax.numpy as jnp

ResidualFn = Callable[[jnp.ndarray, Dict[str, jnp.ndarray]], jnp.ndarray]
ValueAndJacobianFn = Callable[[jnp.ndarray, Dict[str, jnp.ndarray]], Tuple[jnp.ndarray, jnp.ndarray]]


def build_jit_residual_and_jacobian(residual_fn: ResidualFn) -> ValueAndJacobianFn:
    """
    Returns jit(x, params -> (r(x), dr/dx)).

    Forward mode is used: the input (6 scalars) is about as large as the
    output (3 residuals), and jacfwd gives all columns in one pass.
    """
    jac_fn = jax.jacfwd(residual_fn, argnums=0)

    def value_and_jac(x: jnp.ndarray, params: Dict[str, jnp.ndarray]):
        return residual_fn(x, params), jac_fn(x, params)

    return jax.jit(value_and_jac)


@dataclass
class JittedResidual:
    """
    Holder for a jitted residual and its jitted value-and-Jacobian.

    Usage:
        jr = JittedResidual.from_residual(spa_residual)
        r = jr.residual(x, params)
        r, J = jr.value_and_jacobian(x, params)
    """
    residual: Callable[[jnp.ndarray, Dict[str, jnp.ndarray]], jnp.ndarray]
    value_and_jacobian: ValueAndJacobianFn

    @staticmethod
    def from_residual(residual_fn: ResidualFn) -> "JittedResidual":
        return JittedResidual(
            residual=jax.jit(residual_fn),
            value_and_jacobian=build_jit_residual_and_jacobian(residual_fn),
        )
