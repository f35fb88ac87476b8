"""Value types, SE(2) math and the pose graph container."""

from .errors import ConfigurationError, SpaError
from .math2d import normalize_angle, rot2, se2_between, se2_compose, se2_inverse
from .pose_graph import PoseGraph
from .types import Constraint, NodeId, Pose2

__all__ = [
    "ConfigurationError",
    "SpaError",
    "normalize_angle",
    "rot2",
    "se2_between",
    "se2_compose",
    "se2_inverse",
    "PoseGraph",
    "Constraint",
    "NodeId",
    "Pose2",
]
