# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.

import argparse
import logging
from functools import partial

from spa_jit.optimization.benchmark import BenchmarkConfig, run_benchmark
from spa_jit.optimization.loss import LOSS_FUNCTIONS
from spa_jit.optimization.solvers import SolverConfig
from spa_jit.slam.scenarios import ring_graph, triangle_graph


def run(num_trials: int = 1000, graph: str = "triangle", num_nodes: int = 20, verbose: bool = False,
        print_poses: bool = False, linear_solver: str = "sparse_normal_cholesky", loss: str = "huber"):
    print("=== SPA autodiff vs analytic Jacobian benchmark ===")
    print(f"graph = {graph}, num_trials = {num_trials}, linear_solver = {linear_solver}, loss = {loss}")

    if graph == "ring":
        graph_factory = partial(ring_graph, num_nodes=num_nodes)
    else:
        graph_factory = triangle_graph

    cfg = BenchmarkConfig(
        num_trials=num_trials,
        log_final_poses=print_poses,
        loss=loss,
        solver=SolverConfig(linear_solver_type=linear_solver, verbose=verbose),
    )
    result = run_benchmark(cfg, graph_factory=graph_factory)

    for timing in result.timings.values():
        print(f"Mean time {timing.strategy}: {timing.mean_time * 1000:.3f} ms")
        print(f"Max time {timing.strategy}: {timing.max_time * 1000:.3f} ms")
        print(f"  converged {timing.converged_trials}/{timing.num_trials}, final cost {timing.final_cost:.3e}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Time SPA solves under the autodiff and analytic cost strategies.")
    parser.add_argument("--num-trials", type=int, default=1000)
    parser.add_argument("--graph", choices=("triangle", "ring"), default="triangle")
    parser.add_argument("--num-nodes", type=int, default=20)
    parser.add_argument("--linear-solver", choices=("sparse_normal_cholesky", "dense_normal_cholesky"),
                        default="sparse_normal_cholesky")
    parser.add_argument("--loss", choices=sorted(LOSS_FUNCTIONS), default="huber")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--print-poses", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if (args.verbose or args.print_poses) else logging.WARNING,
                        format="%(name)s: %(message)s")
    run(
        num_trials=args.num_trials,
        graph=args.graph,
        num_nodes=args.num_nodes,
        verbose=args.verbose,
        print_poses=args.print_poses,
        linear_solver=args.linear_solver,
        loss=args.loss,
    )
