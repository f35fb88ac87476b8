# Copyright (c) 2025.
# This file is part of SPA-JIT, released under the MIT License.
"""
SE(2) and SO(2) operations for SPA-JIT.

Poses are handled in 3D vector form ``[x, y, theta]``. Every function
takes an optional array namespace ``xp`` (``jax.numpy`` by default, or
``numpy``) so the same expression can be evaluated on plain floats, on
numpy arrays and on JAX tracers during differentiation.

Key Functions
-------------
normalize_angle(a)
    Wraps an angle into (-pi, pi].

rot2(theta)
    2×2 rotation matrix.

se2_compose(a, b)
    a ⊕ b: pose b expressed in a's frame, mapped to the world frame.

se2_inverse(a)
    Inverse pose, so that a ⊕ inverse(a) is the identity.

se2_between(a, b)
    Relative pose of b as seen from a: inverse(a) ⊕ b.

Notes
-----
``normalize_angle`` is written with ``ceil`` rather than a loop of
``while a > pi: a -= 2 pi`` so that it traces under ``jax.jit``. The two
agree for every finite input and the derivative is 1 almost everywhere.
"""

from __future__ import annotations

import math

import jax.numpy as jnp

TWO_PI = 2.0 * math.pi


def normalize_angle(angle, xp=jnp):
    """Map ``angle`` into the half-open interval (-pi, pi]."""
    return angle - TWO_PI * xp.ceil((angle - math.pi) / TWO_PI)


def rot2(theta, xp=jnp):
    """SO(2) rotation matrix for ``theta`` radians."""
    c = xp.cos(theta)
    s = xp.sin(theta)
    return xp.stack([xp.stack([c, -s]), xp.stack([s, c])])


def se2_compose(a, b, xp=jnp):
    """
    Compose two SE(2) poses in vector form.

    a, b: [x, y, theta]
    Returns a ⊕ b with the angle normalized.
    """
    t = a[:2] + rot2(a[2], xp=xp) @ b[:2]
    theta = normalize_angle(a[2] + b[2], xp=xp)
    return xp.stack([t[0], t[1], theta])


def se2_inverse(a, xp=jnp):
    """Inverse of an SE(2) pose: R^T (-t), -theta."""
    t = -(rot2(a[2], xp=xp).T @ a[:2])
    theta = normalize_angle(-a[2], xp=xp)
    return xp.stack([t[0], t[1], theta])


def se2_between(a, b, xp=jnp):
    """
    Relative pose of ``b`` in the frame of ``a``.

      t_rel     = R_a^T (t_b - t_a)
      theta_rel = theta_b - theta_a   (normalized)

    This is the "predicted" measurement of an SPA constraint a -> b.
    """
    t = rot2(a[2], xp=xp).T @ (b[:2] - a[:2])
    theta = normalize_angle(b[2] - a[2], xp=xp)
    return xp.stack([t[0], t[1], theta])
