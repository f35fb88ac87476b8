"""
Robust losses, problem assembly, the LM solver and the benchmark harness.

Import the submodules directly (``spa_jit.optimization.problem``,
``spa_jit.optimization.solvers``, ...). This package does not re-export
them: ``slam.cost_functions`` depends on ``optimization.jit_wrappers``
while ``optimization.problem`` depends on ``slam.cost_functions``.
"""
