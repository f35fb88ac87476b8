# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
Pose graph container for SPA-JIT.

The PoseGraph owns a single contiguous float64 buffer holding the
``[x, y, theta]`` triple of every node, in insertion order. Constraints
refer to nodes by id; a separate ``index`` maps each id to its offset in
the buffer. The optimizer reads and writes the buffer in place, so after a
solve :meth:`PoseGraph.poses` returns the optimized estimate.

Primary Methods
---------------
add_node(node_id, pose)
    Append a node's initial guess to the buffer.

add_constraint(constraint)
    Append a relative-pose constraint. Endpoints are checked by
    :meth:`validate`, so nodes and constraints may be added in any order.

parameter_indices(node_id)
    The three buffer indices (x, y, theta) of a node.

validate()
    Raise ConfigurationError for constraints with dangling endpoints.

freeze()
    Called by the problem builder. A frozen graph rejects new nodes,
    because growing the buffer would leave the problem aliasing stale
    storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Tuple

import numpy as np

from .errors import ConfigurationError
from .types import Constraint, NodeId, Pose2

POSE_DIM = 3


@dataclass(eq=False)
class PoseGraph:
    """
    Nodes (flat parameter buffer + id -> offset index) and constraints.
    """
    parameters: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.float64))
    index: Dict[NodeId, int] = field(default_factory=dict)
    constraints: List[Constraint] = field(default_factory=list)
    frozen: bool = False

    @staticmethod
    def from_poses(poses: Mapping[NodeId, Pose2], constraints: Iterable[Constraint]) -> "PoseGraph":
        graph = PoseGraph()
        for node_id, pose in poses.items():
            graph.add_node(node_id, pose)
        for constraint in constraints:
            graph.add_constraint(constraint)
        return graph

    # --- Nodes ---

    def add_node(self, node_id: NodeId, pose: Pose2) -> None:
        if self.frozen:
            raise ConfigurationError(
                f"cannot add node {node_id}: graph is bound to a problem and its buffer must not move"
            )
        if node_id in self.index:
            raise ConfigurationError(f"duplicate node id {node_id}")
        self.index[node_id] = self.parameters.shape[0]
        self.parameters = np.concatenate([self.parameters, pose.to_array()])

    @property
    def node_ids(self) -> List[NodeId]:
        return list(self.index.keys())

    def __contains__(self, node_id: NodeId) -> bool:
        return node_id in self.index

    def __len__(self) -> int:
        return len(self.index)

    def parameter_indices(self, node_id: NodeId) -> Tuple[int, int, int]:
        if node_id not in self.index:
            raise ConfigurationError(f"node {node_id} is not in the graph")
        offset = self.index[node_id]
        return offset, offset + 1, offset + 2

    def pose(self, node_id: NodeId) -> Pose2:
        i = self.parameter_indices(node_id)[0]
        return Pose2.from_array(self.parameters[i:i + POSE_DIM])

    def poses(self) -> Dict[NodeId, Pose2]:
        return {nid: self.pose(nid) for nid in self.index}

    def set_pose(self, node_id: NodeId, pose: Pose2) -> None:
        """Overwrite a node's value in place (the buffer does not move)."""
        i = self.parameter_indices(node_id)[0]
        self.parameters[i:i + POSE_DIM] = pose.to_array()

    # --- Constraints ---

    def add_constraint(self, constraint: Constraint) -> None:
        self.constraints.append(constraint)

    def validate(self) -> None:
        for k, c in enumerate(self.constraints):
            for role, nid in (("source", c.source), ("target", c.target)):
                if nid not in self.index:
                    raise ConfigurationError(
                        f"constraint {k} ({c.source} -> {c.target}) references missing {role} node {nid}"
                    )

    def degree(self, node_id: NodeId) -> int:
        """Number of constraints incident to ``node_id``."""
        return sum(1 for c in self.constraints if node_id in (c.source, c.target))

    def freeze(self) -> None:
        self.frozen = True
