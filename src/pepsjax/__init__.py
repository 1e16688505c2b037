"""PEPS-Jax: CTMRG boundary contraction and iPEPS optimization in JAX.

Infinite square-lattice tensor networks with a single-site unit cell, either
a quantum ansatz (:class:`InfinitePEPS`) or a classical partition function
(:class:`InfinitePartitionFunction`), are contracted with the corner
transfer matrix renormalization group. The energy of a PEPS is
differentiated through the converged environment and minimized with
L-BFGS.

.. note::
    Importing ``pepsjax`` enables JAX 64-bit mode (``jax_enable_x64``).
    All tensors and algorithms default to ``float64``.

Quick start::

    import jax
    from pepsjax import (
        construct_model, random_ansatz, random_environment,
        converge_boundary, optimize,
    )

    key_peps, key_env = jax.random.split(jax.random.PRNGKey(0))
    model = construct_model("square", {"Jx": -1, "Jy": 1, "Jz": -1})
    peps = random_ansatz(key_peps, 2, 2)
    env = random_environment(key_env, peps, 16)
    env, info = converge_boundary(env, peps)
    peps, env, energy, history = optimize(model, peps, env)
"""

import jax

jax.config.update("jax_enable_x64", True)

from pepsjax.algorithms.ad_utils import (
    FixedPointGradient,
    ImplicitGradient,
    UnrolledGradient,
)
from pepsjax.algorithms.ctmrg import CTMRGConfig, CTMRGInfo, converge_boundary, ctmrg_step
from pepsjax.algorithms.observables import (
    CorrelationLength,
    correlation_length,
    energy_per_site,
    expectation_value,
    network_value,
    reduced_density_matrix,
)
from pepsjax.algorithms.optimize import OptimizationInfo, OptimizerConfig, optimize
from pepsjax.algorithms.references import (
    HEISENBERG_D2_ENERGY,
    HEISENBERG_EXACT_ENERGY,
    ISING_BETA_C,
    compare,
    ising_exact,
    relative_deviation,
)
from pepsjax.core.states import (
    CTMRGEnv,
    InfinitePartitionFunction,
    InfinitePEPS,
    random_ansatz,
    random_environment,
)
from pepsjax.models.classical import ClassicalIsing, classical_ising
from pepsjax.models.operators import InfiniteSquare, LatticeModel, LocalOperator
from pepsjax.models.quantum import construct_model, heisenberg_xyz, transverse_field_ising
from pepsjax.workflows import (
    ClassicalIsingResult,
    GroundStateResult,
    SimulationConfig,
    run_classical_ising,
    run_heisenberg,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Networks and environment
    "CTMRGEnv",
    "InfinitePEPS",
    "InfinitePartitionFunction",
    "random_ansatz",
    "random_environment",
    # Models
    "InfiniteSquare",
    "LatticeModel",
    "LocalOperator",
    "construct_model",
    "heisenberg_xyz",
    "transverse_field_ising",
    "ClassicalIsing",
    "classical_ising",
    # Boundary contraction
    "CTMRGConfig",
    "CTMRGInfo",
    "converge_boundary",
    "ctmrg_step",
    # Fixed-point gradients
    "FixedPointGradient",
    "ImplicitGradient",
    "UnrolledGradient",
    # Observables
    "CorrelationLength",
    "correlation_length",
    "energy_per_site",
    "expectation_value",
    "network_value",
    "reduced_density_matrix",
    # Optimization
    "OptimizationInfo",
    "OptimizerConfig",
    "optimize",
    # References
    "HEISENBERG_D2_ENERGY",
    "HEISENBERG_EXACT_ENERGY",
    "ISING_BETA_C",
    "compare",
    "ising_exact",
    "relative_deviation",
    # Workflows
    "ClassicalIsingResult",
    "GroundStateResult",
    "SimulationConfig",
    "run_classical_ising",
    "run_heisenberg",
]
