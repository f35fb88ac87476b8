# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
Strategy benchmark harness.

For each cost strategy ("autodiff", "analytic") the harness builds a
fresh graph and problem, solves it, and records the solver's own wall
clock time, ``num_trials`` times in a row. Trials run strictly one after
another and share nothing: each one owns its graph, its parameter buffer
and its problem.

The timings are the only thing that differs between strategies; the
optimized poses agree to floating point tolerance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from spa_jit.core.errors import ConfigurationError
from spa_jit.core.pose_graph import PoseGraph
from spa_jit.core.types import NodeId, Pose2
from spa_jit.optimization.loss import make_loss
from spa_jit.optimization.problem import HUBER_THRESHOLD, build_problem
from spa_jit.optimization.solvers import SolverConfig, SolverSummary, solve
from spa_jit.slam.scenarios import triangle_graph

logger = logging.getLogger("spa_jit.benchmark")

GraphFactory = Callable[[], PoseGraph]


@dataclass
class BenchmarkConfig:
    num_trials: int = 1000
    strategies: Tuple[str, ...] = ("autodiff", "analytic")
    warmup: bool = True           # one untimed solve per strategy (JIT compilation)
    log_final_poses: bool = False
    loss: str = "huber"           # see loss.LOSS_FUNCTIONS
    loss_scale: float = HUBER_THRESHOLD
    solver: SolverConfig = field(default_factory=SolverConfig)


@dataclass
class StrategyTiming:
    strategy: str
    num_trials: int = 0
    mean_time: float = 0.0
    max_time: float = 0.0
    converged_trials: int = 0
    final_cost: float = float("nan")


@dataclass
class BenchmarkResult:
    timings: Dict[str, StrategyTiming]
    final_poses: Dict[str, Dict[NodeId, Pose2]]

    def report(self) -> str:
        lines = []
        for t in self.timings.values():
            lines.append(f"Mean time {t.strategy}: {t.mean_time}")
            lines.append(f"Max time {t.strategy}: {t.max_time}")
        return "\n".join(lines)


def run_trial(
    strategy: str,
    graph_factory: GraphFactory = triangle_graph,
    solver_cfg: Optional[SolverConfig] = None,
    loss: str = "huber",
    loss_scale: float = HUBER_THRESHOLD,
) -> Tuple[SolverSummary, PoseGraph]:
    """Build one graph + problem and solve it; returns the summary and solved graph."""
    graph = graph_factory()
    problem = build_problem(graph, strategy=strategy, loss=make_loss(loss, loss_scale))
    summary = solve(problem, solver_cfg)
    return summary, graph


def run_benchmark(
    cfg: Optional[BenchmarkConfig] = None,
    graph_factory: GraphFactory = triangle_graph,
) -> BenchmarkResult:
    if cfg is None:
        cfg = BenchmarkConfig()
    if cfg.num_trials < 1:
        raise ConfigurationError(f"num_trials must be positive, got {cfg.num_trials}")
    make_loss(cfg.loss, cfg.loss_scale)  # unknown loss names fail before any trial

    timings: Dict[str, StrategyTiming] = {}
    final_poses: Dict[str, Dict[NodeId, Pose2]] = {}

    for strategy in cfg.strategies:
        if cfg.warmup:
            run_trial(strategy, graph_factory, cfg.solver, cfg.loss, cfg.loss_scale)

        timing = StrategyTiming(strategy=strategy)
        total = 0.0
        for _ in range(cfg.num_trials):
            summary, graph = run_trial(strategy, graph_factory, cfg.solver, cfg.loss, cfg.loss_scale)
            total += summary.total_time
            timing.max_time = max(timing.max_time, summary.total_time)
            timing.converged_trials += int(summary.converged)
            timing.final_cost = summary.final_cost
        timing.num_trials = cfg.num_trials
        timing.mean_time = total / cfg.num_trials

        timings[strategy] = timing
        final_poses[strategy] = graph.poses()

        logger.info(
            "%s: %d trials, mean %.3e s, max %.3e s, %d converged",
            strategy, timing.num_trials, timing.mean_time, timing.max_time, timing.converged_trials,
        )
        if cfg.log_final_poses:
            for nid, pose in final_poses[strategy].items():
                logger.info("Pose %s is %s, %s, %s", nid, pose.x, pose.y, pose.theta)

    return BenchmarkResult(timings=timings, final_poses=final_poses)
