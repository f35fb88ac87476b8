# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
SPA-JIT: 2D sparse pose adjustment with autodiff and analytic Jacobians.

Subpackages
-----------
core
    Pose / constraint value types, SE(2) helpers and the flat-buffer
    :class:`~spa_jit.core.pose_graph.PoseGraph`.

slam
    The SPA residual model, the hand-derived Jacobians and the cost
    function strategies (``"autodiff"`` and ``"analytic"``).

optimization
    Robust losses, the problem builder, the Levenberg-Marquardt solver
    and the strategy benchmark harness.

Notes
-----
Importing this package switches JAX to 64-bit mode. The autodiff strategy
must agree with the analytic one to ~1e-9, which float32 cannot deliver.
"""

import jax

jax.config.update("jax_enable_x64", True)

__version__ = "0.1.0"
