# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
Example pose graphs used by the benchmark harness and the tests.

triangle_graph()
    Three nodes, three constraints forming a closed loop that is exactly
    consistent; the initial guesses are perturbed. This is the graph the
    strategy benchmark solves over and over.

ring_graph(num_nodes, ...)
    Nodes evenly spaced on a circle, odometry between neighbours plus a
    loop closure back to node 0, with noisy initial guesses.
"""

from __future__ import annotations

import math

import numpy as np

from spa_jit.core.math2d import se2_between, se2_compose, se2_inverse
from spa_jit.core.pose_graph import PoseGraph
from spa_jit.core.types import Constraint, NodeId, Pose2

TRIANGLE_INITIAL_POSES = {
    NodeId(0): Pose2(0.0, 0.0, 0.0),
    NodeId(1): Pose2(4.3, -0.2, 1.4208),
    NodeId(2): Pose2(-0.5, 4.4, -1.3708),
}

# Ground truth up to the gauge fixed by node 0.
TRIANGLE_TRUE_POSES = {
    NodeId(0): Pose2(0.0, 0.0, 0.0),
    NodeId(1): Pose2(4.0, 0.0, math.pi / 2),
    NodeId(2): Pose2(0.0, 4.0, -math.pi / 2),
}


def triangle_constraints():
    return [
        Constraint(NodeId(0), NodeId(1), Pose2(4.0, 0.0, math.pi / 2)),
        Constraint(NodeId(1), NodeId(2), Pose2(4.0, 4.0, math.pi)),
        Constraint(NodeId(2), NodeId(0), Pose2(4.0, 0.0, math.pi / 2)),
    ]


def triangle_graph() -> PoseGraph:
    """A fresh triangle graph; every call owns its own parameter buffer."""
    return PoseGraph.from_poses(TRIANGLE_INITIAL_POSES, triangle_constraints())


def ring_graph(
    num_nodes: int = 20,
    radius: float = 10.0,
    noise: float = 0.1,
    seed: int = 0,
    information=None,
) -> PoseGraph:
    """
    Nodes on a circle, heading tangent to it.

    Measurements are exact; only the initial guesses carry Gaussian noise
    of standard deviation ``noise`` (translation and angle alike).
    """
    if num_nodes < 3:
        raise ValueError("a ring needs at least three nodes")

    rng = np.random.default_rng(seed)
    truth = []
    for i in range(num_nodes):
        phi = 2.0 * math.pi * i / num_nodes
        truth.append(np.array([radius * math.cos(phi), radius * math.sin(phi), phi + math.pi / 2]))

    # Express everything relative to node 0 so that node 0 sits at the origin.
    origin_inv = se2_inverse(truth[0], xp=np)
    truth = [se2_compose(origin_inv, p, xp=np) for p in truth]

    graph = PoseGraph()
    for i, p in enumerate(truth):
        guess = p if i == 0 else p + rng.normal(0.0, noise, size=3)
        graph.add_node(NodeId(i), Pose2.from_array(guess))

    for i in range(num_nodes):
        j = (i + 1) % num_nodes
        meas = se2_between(truth[i], truth[j], xp=np)
        graph.add_constraint(Constraint(NodeId(i), NodeId(j), Pose2.from_array(meas), information))
    return graph
