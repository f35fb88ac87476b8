"""SPA residual model, Jacobians, cost strategies and example graphs."""

from .cost_functions import COST_STRATEGIES, AnalyticSpaCost, AutoDiffSpaCost, make_cost_function
from .measurements import (
    PARAMETER_NAMES,
    analytic_spa_jacobians,
    numeric_spa_jacobian,
    spa_residual,
    spa_residual_closed_form,
)
from .scenarios import ring_graph, triangle_graph

__all__ = [
    "COST_STRATEGIES",
    "AnalyticSpaCost",
    "AutoDiffSpaCost",
    "make_cost_function",
    "PARAMETER_NAMES",
    "analytic_spa_jacobians",
    "numeric_spa_jacobian",
    "spa_residual",
    "spa_residual_closed_form",
    "ring_graph",
    "triangle_graph",
]
