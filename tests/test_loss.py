from __future__ import annotations

import math

import numpy as np
import pytest

from spa_jit.core.errors import ConfigurationError
from spa_jit.optimization.loss import CauchyLoss, HuberLoss, TrivialLoss, correct_block, make_loss


def test_huber_is_quadratic_inside_threshold():
    loss = HuberLoss(1.0)
    assert loss.evaluate(0.25) == (0.25, 1.0, 0.0)


def test_huber_is_linear_in_norm_beyond_threshold():
    """
    With a = 1 and ||r|| = 3: ρ = 2·3 − 1 = 5, ρ' = 1/3, ρ'' = −1/54.
    """
    rho, rho1, rho2 = HuberLoss(1.0).evaluate(9.0)
    assert rho == pytest.approx(5.0)
    assert rho1 == pytest.approx(1.0 / 3.0)
    assert rho2 == pytest.approx(-1.0 / 54.0)


def test_huber_is_continuous_at_threshold():
    loss = HuberLoss(2.0)
    below = loss.evaluate(4.0 - 1e-9)
    above = loss.evaluate(4.0 + 1e-9)
    assert below[0] == pytest.approx(above[0], abs=1e-8)
    assert below[1] == pytest.approx(above[1], abs=1e-8)


def test_cauchy_values():
    rho, rho1, rho2 = CauchyLoss(1.0).evaluate(1.0)
    assert rho == pytest.approx(math.log(2.0))
    assert rho1 == pytest.approx(0.5)
    assert rho2 == pytest.approx(-0.25)


def test_inlier_block_is_left_untouched():
    r = np.array([0.3, -0.2, 0.1])
    J = np.arange(6, dtype=float).reshape(3, 2)
    rho, r_c, J_c = correct_block(r, J, HuberLoss(1.0))
    assert rho == pytest.approx(r @ r)
    assert r_c is r and J_c is J


def test_outlier_block_is_downweighted():
    """
    Beyond the threshold Huber has ρ'' < 0, so the correction is a plain
    √ρ' scaling and the gradient J_cᵀ r_c equals ρ' Jᵀ r.
    """
    r = np.array([3.0, 0.0, 4.0])        # ||r|| = 5
    J = np.array([[1.0, 0.0], [0.0, 2.0], [1.0, 1.0]])
    rho, r_c, J_c = correct_block(r, J, HuberLoss(1.0))

    assert rho == pytest.approx(9.0)
    np.testing.assert_allclose(r_c, r * math.sqrt(0.2))
    np.testing.assert_allclose(J_c.T @ r_c, 0.2 * (J.T @ r))


def test_trivial_loss():
    r = np.array([10.0, 0.0, 0.0])
    rho, r_c, J_c = correct_block(r, None, TrivialLoss())
    assert rho == pytest.approx(100.0)
    assert J_c is None
    np.testing.assert_allclose(r_c, r)


def test_make_loss_by_name():
    assert make_loss("huber", 2.0) == HuberLoss(2.0)
    assert make_loss("cauchy") == CauchyLoss(1.0)
    assert isinstance(make_loss("trivial", 5.0), TrivialLoss)
    with pytest.raises(ConfigurationError):
        make_loss("tukey")
