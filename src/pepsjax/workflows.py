"""End-to-end drivers: iPEPS ground state of the Heisenberg model and CTMRG
contraction of the classical Ising partition function.

Both drivers run their stages strictly forward

    parameters -> network -> environment -> (optimized network) -> observables
    -> comparison with reference values

and thread a single explicit PRNG key through every random construction, so
a fixed ``seed`` reproduces a run bit for bit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

import jax
import jax.numpy as jnp

from pepsjax.algorithms.ctmrg import CTMRGConfig, CTMRGInfo, converge_boundary
from pepsjax.algorithms.observables import (
    CorrelationLength,
    correlation_length,
    expectation_value,
    network_value,
)
from pepsjax.algorithms.optimize import OptimizationInfo, OptimizerConfig, optimize
from pepsjax.algorithms.references import (
    HEISENBERG_D2_ENERGY,
    HEISENBERG_EXACT_ENERGY,
    IsingExact,
    compare,
    ising_exact,
)
from pepsjax.core.states import CTMRGEnv, InfinitePEPS, random_ansatz, random_environment
from pepsjax.models.classical import classical_ising
from pepsjax.models.quantum import construct_model

# Heisenberg antiferromagnet after the sublattice rotation.
HEISENBERG_COUPLINGS = {"Jx": -1.0, "Jy": 1.0, "Jz": -1.0}


@dataclass(frozen=True)
class SimulationConfig:
    """Driver configuration.

    Attributes:
        bond_dimension:        Virtual bond dimension ``D`` of the ansatz.
        environment_dimension: Environment bond dimension ``chi``.
        seed:                  Seed of the PRNG key threaded through all
                               random constructions.
        boundary:              Boundary contraction settings.
        optimizer:             Optimization settings.
        verbosity:             0 silent, >= 2 a summary line per stage.
    """

    bond_dimension: int = 2
    environment_dimension: int = 16
    seed: int = 0
    boundary: CTMRGConfig = field(default_factory=CTMRGConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    verbosity: int = 2

    def __post_init__(self) -> None:
        if self.bond_dimension < 1:
            raise ValueError(f"bond_dimension must be >= 1, got {self.bond_dimension}")
        if self.environment_dimension < 1:
            raise ValueError(
                f"environment_dimension must be >= 1, got {self.environment_dimension}"
            )


class GroundStateResult(NamedTuple):
    """Result of :func:`run_heisenberg`.

    Attributes:
        peps:         Optimized, normalized ansatz.
        env:          Its converged environment.
        energy:       Energy per site.
        boundary:     Diagnostics of the initial boundary contraction.
        optimization: Optimization history.
        correlation:  Correlation lengths of the optimized state.
        deviations:   Signed relative deviation of ``energy`` from the
                      ``D = 2`` literature value (``"energy_d2"``) and from
                      the infinite-``D`` estimate (``"energy_exact"``).
    """

    peps: InfinitePEPS
    env: CTMRGEnv
    energy: float
    boundary: CTMRGInfo
    optimization: OptimizationInfo
    correlation: CorrelationLength
    deviations: dict[str, float]


class ClassicalIsingResult(NamedTuple):
    """Result of :func:`run_classical_ising`.

    Attributes:
        beta, J:       Model parameters.
        free_energy:   ``-ln(Z per site) / beta``.
        magnetization: ``|<s>|`` (the sign is chosen by the environment).
        energy:        Energy per site.
        exact:         Onsager solution at the same parameters.
        deviations:    Signed relative deviations keyed like ``exact``.
        correlation:   Correlation lengths of the converged environment.
        boundary:      Boundary contraction diagnostics.
        env:           Converged environment.
    """

    beta: float
    J: float
    free_energy: float
    magnetization: float
    energy: float
    exact: IsingExact
    deviations: dict[str, float]
    correlation: CorrelationLength
    boundary: CTMRGInfo
    env: CTMRGEnv


def run_heisenberg(config: SimulationConfig | None = None) -> GroundStateResult:
    """Optimize an iPEPS for the square-lattice Heisenberg antiferromagnet.

    Stages: model, random ansatz and environment (one split of the seeded
    key), boundary contraction, gradient optimization, observables and
    comparison with the literature energies.
    """
    config = SimulationConfig() if config is None else config
    key = jax.random.PRNGKey(config.seed)
    key_peps, key_env = jax.random.split(key)

    model = construct_model("square", HEISENBERG_COUPLINGS)
    peps = random_ansatz(key_peps, model.physical_dimension, config.bond_dimension)
    env = random_environment(key_env, peps, config.environment_dimension)

    env, boundary_info = converge_boundary(env, peps, config.boundary)
    if config.verbosity >= 2:
        print(
            f"Initial boundary: {boundary_info.iterations} steps, "
            f"trunc_err={boundary_info.truncation_error:.3e}"
        )

    peps, env, energy, opt_info = optimize(model, peps, env, config.optimizer, config.boundary)
    corr = correlation_length(peps, env)
    deviations = {
        "energy_d2": compare({"energy": energy}, {"energy": HEISENBERG_D2_ENERGY})["energy"],
        "energy_exact": compare({"energy": energy}, {"energy": HEISENBERG_EXACT_ENERGY})["energy"],
    }
    if config.verbosity >= 2:
        print(
            f"Heisenberg D={config.bond_dimension}, chi={config.environment_dimension}: "
            f"E = {energy:.8f} ({opt_info.function_evaluations} evaluations), "
            f"xi_h = {corr.xi_h:.4f}, xi_v = {corr.xi_v:.4f}"
        )
    return GroundStateResult(peps, env, energy, boundary_info, opt_info, corr, deviations)


def run_classical_ising(
    beta: float = 0.6,
    J: float = 1.0,
    config: SimulationConfig | None = None,
) -> ClassicalIsingResult:
    """Contract the 2D Ising partition function and compare with Onsager.

    Only ``environment_dimension``, ``seed``, ``boundary`` and ``verbosity``
    of ``config`` are used.
    """
    config = SimulationConfig() if config is None else config
    key = jax.random.PRNGKey(config.seed)

    ising = classical_ising(beta, J)
    network = ising.network
    env = random_environment(key, network, config.environment_dimension)
    env, boundary_info = converge_boundary(env, network, config.boundary)

    site = (0, 0)
    free_energy = float(-jnp.log(network_value(network, env)) / beta)
    magnetization = float(abs(expectation_value(network, (site, ising.magnetization), env)))
    energy = float(expectation_value(network, (site, ising.energy), env))
    corr = correlation_length(network, env)

    exact = ising_exact(beta, J)
    computed = {"free_energy": free_energy, "magnetization": magnetization, "energy": energy}
    deviations = compare(computed, exact._asdict())
    if config.verbosity >= 2:
        print(f"Ising beta={beta}, J={J}, chi={env.chi}:")
        for name, value in computed.items():
            print(
                f"  {name:<14s} {value: .10f}  exact {getattr(exact, name): .10f}  "
                f"deviation {deviations[name]: .2e}"
            )
    return ClassicalIsingResult(
        beta=beta,
        J=J,
        free_energy=free_energy,
        magnetization=magnetization,
        energy=energy,
        exact=exact,
        deviations=deviations,
        correlation=corr,
        boundary=boundary_info,
        env=env,
    )
