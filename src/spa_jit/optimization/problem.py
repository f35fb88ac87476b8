# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
Problem assembly for SPA.

`build_problem` turns a :class:`~spa_jit.core.pose_graph.PoseGraph` into a
:class:`Problem`: one residual block per constraint, each bound to the six
buffer indices ``(xs, ys, θs, xt, yt, θt)`` of its endpoints and wrapped
in a robust loss (Huber with threshold 1.0 by default). The three scalars
of one reference node are then held constant, which removes the global
translation + rotation gauge freedom of relative-only measurements.

Blocks hold indices, never copies: the solver writes the optimized values
back into ``graph.parameters``, so the graph is frozen once a problem has
been built over it.

`Problem.evaluate` produces the quantities a least-squares solver needs
at a given parameter vector:

    cost       ½ Σ_b ρ(||r_b||²)
    residuals  stacked, loss-corrected block residuals      (3·M,)
    jacobian   loss-corrected ∂r/∂x over the free scalars   (3·M, n_free), CSR
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

import numpy as np
import scipy.sparse as sp

from spa_jit.core.errors import ConfigurationError
from spa_jit.core.pose_graph import PoseGraph
from spa_jit.core.types import NodeId
from spa_jit.optimization.loss import HuberLoss, LossFunction, correct_block
from spa_jit.slam.cost_functions import COST_STRATEGIES, SpaCostFunction, make_cost_function

logger = logging.getLogger("spa_jit.problem")

HUBER_THRESHOLD = 1.0


@dataclass
class ResidualBlock:
    cost_function: SpaCostFunction
    loss: LossFunction
    parameter_indices: Tuple[int, ...]


@dataclass
class Evaluation:
    cost: float
    residuals: np.ndarray
    jacobian: Optional[sp.csr_matrix] = None


@dataclass(eq=False)
class Problem:
    """
    Residual blocks over a pose graph's parameter buffer.

    - graph: owner of the parameter buffer the solver mutates
    - residual_blocks: one per constraint, in constraint order
    - constant_indices: buffer indices held fixed during optimization
    """
    graph: PoseGraph
    strategy: str
    residual_blocks: List[ResidualBlock] = field(default_factory=list)
    constant_indices: Set[int] = field(default_factory=set)
    reference_node: Optional[NodeId] = None

    @property
    def parameters(self) -> np.ndarray:
        return self.graph.parameters

    def add_residual_block(
        self,
        cost_function: SpaCostFunction,
        loss: LossFunction,
        parameter_indices: Tuple[int, ...],
    ) -> ResidualBlock:
        if len(parameter_indices) != len(cost_function.parameter_block_sizes):
            raise ConfigurationError(
                f"cost function expects {len(cost_function.parameter_block_sizes)} parameter blocks, "
                f"got {len(parameter_indices)}"
            )
        block = ResidualBlock(cost_function, loss, tuple(parameter_indices))
        self.residual_blocks.append(block)
        return block

    def set_parameter_block_constant(self, index: int) -> None:
        self.constant_indices.add(index)

    def is_constant(self, index: int) -> bool:
        return index in self.constant_indices

    # --- Sizes ---

    def parameter_indices(self) -> List[int]:
        """Every buffer index touched by a residual block, sorted."""
        used = {i for b in self.residual_blocks for i in b.parameter_indices}
        return sorted(used)

    def free_indices(self) -> np.ndarray:
        return np.array(
            [i for i in self.parameter_indices() if not self.is_constant(i)],
            dtype=np.int64,
        )

    @property
    def num_residuals(self) -> int:
        return sum(b.cost_function.num_residuals for b in self.residual_blocks)

    @property
    def num_parameters(self) -> int:
        return len(self.parameter_indices())

    @property
    def num_effective_parameters(self) -> int:
        return int(self.free_indices().shape[0])

    # --- Evaluation ---

    def evaluate(self, values: Optional[np.ndarray] = None, jacobian: bool = True) -> Evaluation:
        """
        Cost, corrected residuals and (optionally) the sparse Jacobian.

        values: full-length parameter vector; defaults to the live buffer.
        """
        x = self.parameters if values is None else values
        free = self.free_indices()
        column_of = {int(i): k for k, i in enumerate(free)}

        cost = 0.0
        residuals = np.zeros(self.num_residuals)
        rows: List[np.ndarray] = []
        cols: List[np.ndarray] = []
        data: List[np.ndarray] = []

        row = 0
        for block in self.residual_blocks:
            cf = block.cost_function
            n = cf.num_residuals
            idx = block.parameter_indices
            requested = [i in column_of for i in idx] if jacobian else None

            r, columns = cf.evaluate(x[list(idx)], requested)

            jac_block = None
            block_cols: List[int] = []
            if jacobian:
                pairs = [(column_of[i], col) for i, col in zip(idx, columns) if col is not None]
                if pairs:
                    block_cols = [k for k, _ in pairs]
                    jac_block = np.stack([col for _, col in pairs], axis=1)

            rho, r_corr, jac_corr = correct_block(r, jac_block, block.loss)
            cost += 0.5 * rho
            residuals[row:row + n] = r_corr

            if jac_corr is not None:
                k = len(block_cols)
                rows.append(np.repeat(np.arange(row, row + n), k))
                cols.append(np.tile(block_cols, n))
                data.append(jac_corr.reshape(-1))
            row += n

        if not jacobian:
            return Evaluation(cost=cost, residuals=residuals)

        shape = (self.num_residuals, free.shape[0])
        if rows:
            jac = sp.coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=shape,
            ).tocsr()
        else:
            jac = sp.csr_matrix(shape)
        return Evaluation(cost=cost, residuals=residuals, jacobian=jac)


def build_problem(
    graph: PoseGraph,
    strategy: str = "analytic",
    reference_node: Optional[NodeId] = None,
    loss: Optional[LossFunction] = None,
    fix_reference: bool = True,
) -> Problem:
    """
    Register one residual block per constraint and fix the reference node.

    reference_node:
        Node whose (x, y, θ) are held constant; defaults to the lowest id.
    loss:
        Robust loss attached to every block; defaults to HuberLoss(1.0).
    fix_reference:
        Set False only to study the gauge freedom; the normal equations
        are then rank deficient by three.

    Raises ConfigurationError for dangling constraint endpoints, an absent
    reference node or an unknown strategy. Nothing is solved here.
    """
    graph.validate()
    if strategy not in COST_STRATEGIES:
        raise ConfigurationError(
            f"unknown cost strategy {strategy!r}; expected one of {sorted(COST_STRATEGIES)}"
        )
    if loss is None:
        loss = HuberLoss(HUBER_THRESHOLD)

    if reference_node is None:
        if len(graph) == 0:
            raise ConfigurationError("cannot choose a reference node: the graph has no nodes")
        reference_node = min(graph.node_ids)
    elif reference_node not in graph:
        raise ConfigurationError(f"reference node {reference_node} is not in the graph")

    problem = Problem(graph=graph, strategy=strategy, reference_node=reference_node)
    for constraint in graph.constraints:
        cost_function = make_cost_function(strategy, constraint)
        indices = graph.parameter_indices(constraint.source) + graph.parameter_indices(constraint.target)
        problem.add_residual_block(cost_function, loss, indices)

    if fix_reference:
        for i in graph.parameter_indices(reference_node):
            problem.set_parameter_block_constant(i)
        if graph.constraints and graph.degree(reference_node) == 0:
            logger.warning(
                "Reference node %s has no constraints; the remaining nodes keep their gauge freedom",
                reference_node,
            )

    graph.freeze()
    logger.debug(
        "Built %s problem: %d residual blocks, %d parameters (%d constant), reference node %s",
        strategy,
        len(problem.residual_blocks),
        problem.num_parameters,
        len(problem.constant_indices),
        reference_node,
    )
    return problem
