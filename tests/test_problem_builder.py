from __future__ import annotations

import math

import numpy as np
import pytest

from spa_jit.core.errors import ConfigurationError
from spa_jit.core.pose_graph import PoseGraph
from spa_jit.core.types import Constraint, NodeId, Pose2
from spa_jit.optimization.loss import HuberLoss, TrivialLoss
from spa_jit.optimization.problem import build_problem
from spa_jit.slam.cost_functions import AnalyticSpaCost, AutoDiffSpaCost
from spa_jit.slam.measurements import spa_residual_closed_form
from spa_jit.slam.scenarios import triangle_graph


def test_one_block_per_constraint_bound_to_buffer_indices():
    g = triangle_graph()
    problem = build_problem(g, strategy="analytic")

    assert len(problem.residual_blocks) == 3
    assert problem.residual_blocks[0].parameter_indices == (0, 1, 2, 3, 4, 5)
    assert problem.residual_blocks[1].parameter_indices == (3, 4, 5, 6, 7, 8)
    assert problem.residual_blocks[2].parameter_indices == (6, 7, 8, 0, 1, 2)
    assert all(isinstance(b.cost_function, AnalyticSpaCost) for b in problem.residual_blocks)
    assert all(b.loss == HuberLoss(1.0) for b in problem.residual_blocks)
    assert problem.parameters is g.parameters


def test_reference_node_defaults_to_lowest_id():
    g = PoseGraph.from_poses(
        {NodeId(5): Pose2(0.0, 0.0, 0.0), NodeId(2): Pose2(1.0, 0.0, 0.0)},
        [Constraint(NodeId(5), NodeId(2), Pose2(1.0, 0.0, 0.0))],
    )
    problem = build_problem(g, strategy="autodiff")

    assert problem.reference_node == NodeId(2)
    assert problem.constant_indices == set(g.parameter_indices(NodeId(2)))
    assert isinstance(problem.residual_blocks[0].cost_function, AutoDiffSpaCost)
    assert problem.num_parameters == 6
    assert problem.num_effective_parameters == 3
    assert problem.num_residuals == 3


def test_explicit_reference_node():
    problem = build_problem(triangle_graph(), reference_node=NodeId(1))
    assert problem.constant_indices == {3, 4, 5}


def test_gauge_can_be_left_free():
    problem = build_problem(triangle_graph(), fix_reference=False)
    assert problem.constant_indices == set()
    assert problem.num_effective_parameters == 9


def test_dangling_node_fails_before_solving():
    g = PoseGraph.from_poses(
        {NodeId(0): Pose2(0.0, 0.0, 0.0)},
        [Constraint(NodeId(0), NodeId(1), Pose2(1.0, 0.0, 0.0))],
    )
    with pytest.raises(ConfigurationError):
        build_problem(g)
    # No zero pose was silently created for the missing node.
    assert NodeId(1) not in g
    assert g.parameters.shape == (3,)


def test_missing_reference_node_is_configuration_error():
    with pytest.raises(ConfigurationError):
        build_problem(triangle_graph(), reference_node=NodeId(42))


def test_empty_graph_has_no_reference_node():
    with pytest.raises(ConfigurationError):
        build_problem(PoseGraph())


def test_unknown_strategy_is_configuration_error():
    with pytest.raises(ConfigurationError):
        build_problem(triangle_graph(), strategy="finite_difference")


def test_evaluate_at_initial_guess():
    """
    Inside the Huber threshold the cost is ½ Σ ||r_b||², and the sparse
    Jacobian spans only the six free scalars of nodes 1 and 2.
    """
    g = triangle_graph()
    problem = build_problem(g, loss=TrivialLoss())
    ev = problem.evaluate()

    expected = []
    for c in g.constraints:
        x = np.concatenate([g.pose(c.source).to_array(), g.pose(c.target).to_array()])
        expected.append(spa_residual_closed_form(x, c.params()))
    expected = np.concatenate(expected)

    np.testing.assert_allclose(ev.residuals, expected, atol=1e-12)
    assert ev.cost == pytest.approx(0.5 * expected @ expected)
    assert ev.jacobian.shape == (9, 6)
    # 0 -> 1 touches only node 1 among the free nodes.
    dense = ev.jacobian.toarray()
    np.testing.assert_allclose(dense[0:3, 3:6], 0.0)


def test_evaluate_does_not_touch_buffer_for_candidate_values():
    g = triangle_graph()
    problem = build_problem(g)
    before = g.parameters.copy()
    candidate = before + 0.1
    ev_candidate = problem.evaluate(candidate, jacobian=False)
    assert ev_candidate.jacobian is None
    np.testing.assert_array_equal(g.parameters, before)


def test_huber_caps_outlier_cost():
    """
    A grossly wrong measurement contributes 2||r|| − 1 instead of ||r||².
    """
    g = PoseGraph.from_poses(
        {NodeId(0): Pose2(0.0, 0.0, 0.0), NodeId(1): Pose2(1.0, 0.0, 0.0)},
        [Constraint(NodeId(0), NodeId(1), Pose2(11.0, 0.0, 0.0))],
    )
    ev = build_problem(g).evaluate()
    assert ev.cost == pytest.approx(0.5 * (2.0 * 10.0 - 1.0))


def test_self_loop_columns_are_summed():
    """
    A constraint from a node to itself touches each scalar twice; the
    Jacobian entries for the shared column add up.
    """
    g = PoseGraph.from_poses(
        {NodeId(0): Pose2(0.0, 0.0, 0.0), NodeId(1): Pose2(1.0, 1.0, 0.3)},
        [Constraint(NodeId(1), NodeId(1), Pose2(0.0, 0.0, 0.0))],
    )
    problem = build_problem(g, reference_node=NodeId(0))
    jac = problem.evaluate().jacobian.toarray()
    # x and y columns cancel exactly (source and target negate); θ column is ∂/∂θs + ∂/∂θt.
    np.testing.assert_allclose(jac[:, 0:2], 0.0, atol=1e-15)
    assert jac[2, 2] == pytest.approx(0.0, abs=1e-15)


def test_extra_constant_block_drops_its_column():
    problem = build_problem(triangle_graph())
    assert problem.is_constant(0)
    assert not problem.is_constant(3)

    problem.set_parameter_block_constant(3)
    assert problem.num_effective_parameters == 5
    assert 3 not in problem.free_indices()
    assert problem.evaluate().jacobian.shape == (9, 5)
