# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""Exception types raised by SPA-JIT.

Only malformed inputs raise. Numerical trouble during a solve (rank
deficiency, non-finite costs) is reported through
:class:`~spa_jit.optimization.solvers.SolverSummary` instead.
"""


class SpaError(Exception):
    """Base class for all SPA-JIT errors."""


class ConfigurationError(SpaError, ValueError):
    """Malformed graph or configuration, detected before any solve.

    Examples: a constraint referencing a node that is not in the graph,
    a missing reference node, an information matrix that is not symmetric
    positive definite, or an unknown cost strategy.
    """
