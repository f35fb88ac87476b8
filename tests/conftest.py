from __future__ import annotations

import numpy as np
import pytest

import spa_jit  # noqa: F401  (enables float64 in JAX before any test builds arrays)


def random_sqrt_information(rng: np.random.Generator) -> np.ndarray:
    """Dense upper-triangular SI with a positive diagonal."""
    A = rng.normal(size=(3, 3))
    info = A @ A.T + 3.0 * np.eye(3)
    return np.linalg.cholesky(info).T


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def dense_params(rng):
    """Measurement + non-diagonal sqrt information, so every SI entry matters."""
    return {
        "measurement": np.array([1.3, -0.4, 0.6]),
        "sqrt_information": random_sqrt_information(rng),
    }
