# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
SPA residual model and hand-derived Jacobians.

Residual
--------
For a constraint source -> target with measurement m = [mx, my, mθ] and
upper-triangular square-root information SI, the state

    x = [xs, ys, θs, xt, yt, θt]

yields the relative pose of the target predicted in the source frame

    dx' =  cosθs·(xt−xs) + sinθs·(yt−ys)
    dy' = −sinθs·(xt−xs) + cosθs·(yt−ys)
    dθ' =  θt − θs

and the whitened residual

    r = SI · [mx − dx', my − dy', normalize(mθ − dθ')]

`spa_residual` is written against an array namespace ``xp``. The autodiff
strategy evaluates it with ``jax.numpy`` and lets `jax.jacfwd` extract the
Jacobian; the closed-form path evaluates the very same expression with
``numpy``. Both strategies therefore minimize an identical objective.

Jacobian
--------
`analytic_spa_jacobians` returns ∂r/∂p for each of the six scalar
parameters p, computing only the columns the caller asks for. With
c = cosθs, s = sinθs, dx = xt−xs, dy = yt−ys the unweighted columns are

    ∂/∂xs : [ c,  −s,  0]
    ∂/∂ys : [ s,   c,  0]
    ∂/∂θs : [ s·dx − c·dy,  c·dx + s·dy,  1]
    ∂/∂xt : [−c,   s,  0]      (= −∂/∂xs)
    ∂/∂yt : [−s,  −c,  0]      (= −∂/∂ys)
    ∂/∂θt : [ 0,   0, −1]

and each weighted column is ``SI @ raw``. The source and target rotation
columns are not negations of one another: ∂/∂θs also carries the
derivative of the rotated translation delta.

Non-finite inputs are not trapped; NaN and Inf propagate to the caller.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np

from spa_jit.core.math2d import normalize_angle

PARAMETER_NAMES: Tuple[str, ...] = (
    "source_x",
    "source_y",
    "source_theta",
    "target_x",
    "target_y",
    "target_theta",
)
NUM_RESIDUALS = 3
NUM_PARAMETERS = len(PARAMETER_NAMES)

ColumnHook = Callable[[str], None]
Columns = Tuple[Optional[np.ndarray], ...]


def spa_residual(x, params: Dict[str, jnp.ndarray], xp=jnp):
    """
    Whitened SPA residual, r ∈ R^3.

    x: [xs, ys, θs, xt, yt, θt]
    params:
        "measurement"      : (3,) measured [dx, dy, dθ]
        "sqrt_information" : (3, 3) upper-triangular SI
    """
    meas = params["measurement"]
    sqrt_info = params["sqrt_information"]

    source_cos = xp.cos(x[2])
    source_sin = xp.sin(x[2])
    delta_x = x[3] - x[0]
    delta_y = x[4] - x[1]

    r = xp.stack([
        meas[0] - (source_cos * delta_x + source_sin * delta_y),
        meas[1] - (source_cos * delta_y - source_sin * delta_x),
        normalize_angle(meas[2] - (x[5] - x[2]), xp=xp),
    ])
    return sqrt_info @ r


def spa_residual_closed_form(x, params: Dict[str, np.ndarray]) -> np.ndarray:
    """`spa_residual` evaluated with numpy on plain float64 values."""
    return spa_residual(np.asarray(x, dtype=np.float64), params, xp=np)


def analytic_spa_jacobians(
    x,
    sqrt_information: np.ndarray,
    requested: Optional[Sequence[bool]] = None,
    on_column: Optional[ColumnHook] = None,
) -> Columns:
    """
    Hand-derived ∂r/∂p columns, in PARAMETER_NAMES order.

    requested:
        Six flags, one per scalar parameter. ``None`` requests nothing.
        A column that is not requested is returned as ``None`` and is
        never computed.
    on_column:
        Optional instrumentation hook, called with the parameter name of
        every column that is produced.
    """
    if requested is None or not any(requested):
        return (None,) * NUM_PARAMETERS
    if len(requested) != NUM_PARAMETERS:
        raise ValueError(f"expected {NUM_PARAMETERS} jacobian flags, got {len(requested)}")

    si = np.asarray(sqrt_information, dtype=np.float64)
    x = np.asarray(x, dtype=np.float64)
    c = np.cos(x[2])
    s = np.sin(x[2])
    dx = x[3] - x[0]
    dy = x[4] - x[1]

    def emit(k: int, column: np.ndarray) -> np.ndarray:
        if on_column is not None:
            on_column(PARAMETER_NAMES[k])
        return column

    # Weighted column SI @ [a, b, 0] only touches the first two SI columns.
    def planar(a: float, b: float) -> np.ndarray:
        return si[:, 0] * a + si[:, 1] * b

    want = tuple(bool(f) for f in requested)
    jac_source_x = emit(0, planar(c, -s)) if want[0] else None
    jac_source_y = emit(1, planar(s, c)) if want[1] else None

    jac_source_theta = None
    if want[2]:
        u02 = s * dx - c * dy
        u12 = c * dx + s * dy
        jac_source_theta = emit(2, planar(u02, u12) + si[:, 2])

    jac_target_x = None
    if want[3]:
        jac_target_x = emit(3, -jac_source_x if jac_source_x is not None else planar(-c, s))

    jac_target_y = None
    if want[4]:
        jac_target_y = emit(4, -jac_source_y if jac_source_y is not None else planar(-s, -c))

    jac_target_theta = emit(5, -si[:, 2]) if want[5] else None

    return (
        jac_source_x,
        jac_source_y,
        jac_source_theta,
        jac_target_x,
        jac_target_y,
        jac_target_theta,
    )


def numeric_spa_jacobian(x, params: Dict[str, np.ndarray], step: float = 1e-6) -> np.ndarray:
    """
    Central-difference Jacobian of `spa_residual_closed_form`, shape (3, 6).

    Used as an independent reference for the analytic and autodiff paths.
    """
    x = np.asarray(x, dtype=np.float64)
    jac = np.zeros((NUM_RESIDUALS, NUM_PARAMETERS))
    for k in range(NUM_PARAMETERS):
        e = np.zeros(NUM_PARAMETERS)
        e[k] = step
        r_plus = spa_residual_closed_form(x + e, params)
        r_minus = spa_residual_closed_form(x - e, params)
        jac[:, k] = (r_plus - r_minus) / (2.0 * step)
    return jac
