# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
Nonlinear least-squares solver for SPA problems.

The solver is consumed through a narrow contract: it takes a
:class:`~spa_jit.optimization.problem.Problem`, writes the optimized
values back into the problem's parameter buffer, and returns a
:class:`SolverSummary`. Nothing in the residual or Jacobian code depends
on how the iteration below is carried out.

Key Concepts
------------
SolverConfig
    Dataclass holding the Levenberg-Marquardt settings:
    - linear_solver_type: "sparse_normal_cholesky" (CHOLMOD factorization
      of the damped normal equations) or "dense_normal_cholesky"
    - max_iterations and the function / gradient / parameter tolerances
    - trust region radius bounds (the LM damping is 1 / radius)
    - rank_tolerance: relative pivot size below which the undamped normal
      equations count as singular
    - verbose: log every iteration and the final report at INFO level

solve(problem, cfg)
    Levenberg-Marquardt on the free parameters:

        (JᵀJ + diag(JᵀJ) / radius) Δx = −Jᵀ r

    A step is accepted when the actual cost decrease is at least
    ``min_relative_decrease`` of the decrease predicted by the linear
    model; the radius then grows, otherwise it shrinks.

Notes
-----
Failures are reported, never raised: a non-finite initial cost, a trust
region that collapses below its minimum radius or an exhausted iteration
budget all come back as ``converged=False``. So does a rank-deficient
problem. The LM damping keeps every step solvable, so before reporting
convergence the undamped JᵀJ is factored once more; if any pivot falls
below ``rank_tolerance`` times the largest diagonal entry (typically a
connected component with no constant node) the solve ends in FAILURE.
Only a malformed configuration raises ConfigurationError.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np
import scipy.linalg
import scipy.sparse as sp
import sksparse.cholmod as cholmod

from spa_jit.core.errors import ConfigurationError
from spa_jit.optimization.problem import Problem

logger = logging.getLogger("spa_jit.solvers")

LINEAR_SOLVER_TYPES = ("sparse_normal_cholesky", "dense_normal_cholesky")

CONVERGENCE = "CONVERGENCE"
NO_CONVERGENCE = "NO_CONVERGENCE"
FAILURE = "FAILURE"


@dataclass
class SolverConfig:
    linear_solver_type: str = "sparse_normal_cholesky"
    max_iterations: int = 50
    function_tolerance: float = 1e-6
    gradient_tolerance: float = 1e-10
    parameter_tolerance: float = 1e-8
    initial_trust_region_radius: float = 1e4
    max_trust_region_radius: float = 1e16
    min_trust_region_radius: float = 1e-32
    min_relative_decrease: float = 1e-3
    min_lm_diagonal: float = 1e-6
    max_lm_diagonal: float = 1e32
    rank_tolerance: float = 1e-10
    verbose: bool = False


@dataclass
class SolverSummary:
    converged: bool
    termination: str
    message: str
    total_time: float
    num_residuals: int
    num_parameters: int
    num_effective_parameters: int
    initial_cost: float
    final_cost: float
    iterations: int = 0
    num_successful_steps: int = 0
    num_unsuccessful_steps: int = 0
    linear_solver_type: str = ""
    strategy: str = ""

    def brief_report(self) -> str:
        return (
            f"Levenberg-Marquardt, Iterations: {self.iterations}, "
            f"Initial cost: {self.initial_cost:.6e}, Final cost: {self.final_cost:.6e}, "
            f"Termination: {self.termination}"
        )

    def full_report(self) -> str:
        lines = [
            f"used {self.strategy} cost",
            f"linear solver: {self.linear_solver_type}",
            f"total time: {self.total_time:.6e}",
            f"num residuals: {self.num_residuals}",
            f"num parameters: {self.num_parameters}",
            f"num effective parameters: {self.num_effective_parameters}",
            f"num successful steps: {self.num_successful_steps}",
            f"num unsuccessful steps: {self.num_unsuccessful_steps}",
            f"initial/final costs: {self.initial_cost}, {self.final_cost}",
            f"termination: {self.termination} ({self.message})",
        ]
        return "\n".join(lines)


def _solve_normal_equations(
    jtj: sp.csr_matrix,
    damping: np.ndarray,
    rhs: np.ndarray,
    linear_solver_type: str,
) -> Optional[np.ndarray]:
    """Solve (JᵀJ + diag(damping)) Δx = rhs; None if the factorization fails."""
    if linear_solver_type == "sparse_normal_cholesky":
        lhs = (jtj + sp.diags(damping)).tocsc()
        try:
            factor = cholmod.cholesky(lhs)
        except cholmod.CholmodNotPositiveDefiniteError:
            return None
        return factor.solve_A(rhs)

    lhs = jtj.toarray() + np.diag(damping)
    try:
        factor = scipy.linalg.cho_factor(lhs)
    except (np.linalg.LinAlgError, ValueError):
        return None
    return scipy.linalg.cho_solve(factor, rhs)


def _num_singular_pivots(jtj: sp.csr_matrix, linear_solver_type: str, rank_tolerance: float) -> int:
    """
    Count the pivots of the undamped JᵀJ at or below ``rank_tolerance``
    times its largest diagonal entry.

    A factorization that breaks down counts as fully singular.
    """
    n = jtj.shape[0]
    scale = float(np.max(jtj.diagonal())) if n else 0.0
    if scale <= 0.0:
        return n

    if linear_solver_type == "sparse_normal_cholesky":
        try:
            pivots = cholmod.cholesky(jtj.tocsc()).D()
        except cholmod.CholmodNotPositiveDefiniteError:
            return n
    else:
        try:
            upper, _ = scipy.linalg.cho_factor(jtj.toarray())
        except (np.linalg.LinAlgError, ValueError):
            return n
        pivots = np.diag(upper) ** 2

    return int(np.count_nonzero(~(pivots > rank_tolerance * scale)))


def solve(problem: Problem, cfg: Optional[SolverConfig] = None) -> SolverSummary:
    """
    Levenberg-Marquardt on the free parameters of ``problem``.

    The problem's parameter buffer (the pose graph's storage) holds the
    optimized values on return, whether or not the solve converged.
    """
    if cfg is None:
        cfg = SolverConfig()
    if cfg.linear_solver_type not in LINEAR_SOLVER_TYPES:
        raise ConfigurationError(
            f"unknown linear solver {cfg.linear_solver_type!r}; expected one of {LINEAR_SOLVER_TYPES}"
        )
    log = logger.info if cfg.verbose else logger.debug

    t0 = time.perf_counter()
    x = problem.parameters.copy()
    free = problem.free_indices()

    summary = SolverSummary(
        converged=False,
        termination=NO_CONVERGENCE,
        message="maximum number of iterations reached",
        total_time=0.0,
        num_residuals=problem.num_residuals,
        num_parameters=problem.num_parameters,
        num_effective_parameters=int(free.shape[0]),
        initial_cost=float("nan"),
        final_cost=float("nan"),
        linear_solver_type=cfg.linear_solver_type,
        strategy=problem.strategy,
    )

    def finish(termination: str, message: str) -> SolverSummary:
        problem.parameters[:] = x
        summary.termination = termination
        summary.message = message
        summary.converged = termination == CONVERGENCE
        summary.total_time = time.perf_counter() - t0
        log("%s", summary.brief_report())
        if cfg.verbose:
            logger.info("\n%s", summary.full_report())
        return summary

    def converge(message: str) -> SolverSummary:
        jtj = (jac.T @ jac).tocsr()
        singular = _num_singular_pivots(jtj, cfg.linear_solver_type, cfg.rank_tolerance)
        if singular:
            return finish(
                FAILURE,
                f"{message}, but the normal equations are rank deficient "
                f"({singular} of {jtj.shape[0]} pivots below tolerance)",
            )
        return finish(CONVERGENCE, message)

    ev = problem.evaluate(x)
    cost = ev.cost
    summary.initial_cost = summary.final_cost = cost
    if not np.isfinite(cost):
        return finish(FAILURE, "initial cost is not finite")
    if free.shape[0] == 0:
        return finish(CONVERGENCE, "no free parameters")

    jac, r = ev.jacobian, ev.residuals
    g = jac.T @ r
    if np.max(np.abs(g)) <= cfg.gradient_tolerance:
        return converge("gradient tolerance reached")

    radius = cfg.initial_trust_region_radius
    decrease_factor = 2.0
    log("%4s %14s %12s %12s %12s %10s %10s", "iter", "cost", "cost_change", "|gradient|", "|step|", "tr_ratio", "tr_radius")

    for it in range(cfg.max_iterations):
        summary.iterations = it + 1
        jtj = (jac.T @ jac).tocsr()
        diag = np.clip(jtj.diagonal(), cfg.min_lm_diagonal, cfg.max_lm_diagonal)
        step = _solve_normal_equations(jtj, diag / radius, -g, cfg.linear_solver_type)

        if step is None or not np.all(np.isfinite(step)):
            summary.num_unsuccessful_steps += 1
            radius /= decrease_factor
            decrease_factor *= 2.0
            log("%4d  linear solve failed, shrinking trust region to %.3e", it, radius)
            if radius < cfg.min_trust_region_radius:
                return finish(FAILURE, "trust region radius below minimum")
            continue

        step_norm = float(np.linalg.norm(step))
        if step_norm <= cfg.parameter_tolerance * (np.linalg.norm(x[free]) + cfg.parameter_tolerance):
            return converge("parameter tolerance reached")

        j_step = jac @ step
        model_decrease = -(g @ step + 0.5 * (j_step @ j_step))

        candidate = x.copy()
        candidate[free] += step
        trial = problem.evaluate(candidate)
        actual_decrease = cost - trial.cost
        ratio = actual_decrease / model_decrease if model_decrease > 0.0 else -np.inf

        if np.isfinite(trial.cost) and ratio > cfg.min_relative_decrease:
            summary.num_successful_steps += 1
            x = candidate
            previous_cost = cost
            cost = trial.cost
            summary.final_cost = cost
            jac, r = trial.jacobian, trial.residuals
            g = jac.T @ r
            radius = min(cfg.max_trust_region_radius, radius / max(1.0 / 3.0, 1.0 - (2.0 * ratio - 1.0) ** 3))
            decrease_factor = 2.0
            grad_max = float(np.max(np.abs(g)))
            log("%4d %14.6e %12.4e %12.4e %12.4e %10.4e %10.4e", it, cost, actual_decrease, grad_max, step_norm, ratio, radius)

            if abs(actual_decrease) <= cfg.function_tolerance * previous_cost:
                return converge("function tolerance reached")
            if grad_max <= cfg.gradient_tolerance:
                return converge("gradient tolerance reached")
        else:
            summary.num_unsuccessful_steps += 1
            radius /= decrease_factor
            decrease_factor *= 2.0
            log("%4d %14.6e %12.4e %12s %12.4e %10.4e %10.4e  (rejected)", it, cost, actual_decrease, "-", step_norm, ratio, radius)
            if radius < cfg.min_trust_region_radius:
                return finish(FAILURE, "trust region radius below minimum")

    return finish(NO_CONVERGENCE, "maximum number of iterations reached")
