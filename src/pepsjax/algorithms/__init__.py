"""Boundary contraction, fixed-point differentiation, observables and optimization."""

from pepsjax.algorithms.ad_utils import (
    FixedPointGradient,
    ImplicitGradient,
    UnrolledGradient,
    apply_env_gauge,
    fix_svd_signs,
    truncated_svd_ad,
)
from pepsjax.algorithms.ctmrg import (
    CTMRGConfig,
    CTMRGInfo,
    converge_boundary,
    ctmrg_step,
)
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
    IsingExact,
    compare,
    ising_exact,
    onsager_energy,
    onsager_free_energy,
    onsager_magnetization,
    relative_deviation,
)

__all__ = [
    "FixedPointGradient",
    "ImplicitGradient",
    "UnrolledGradient",
    "apply_env_gauge",
    "fix_svd_signs",
    "truncated_svd_ad",
    "CTMRGConfig",
    "CTMRGInfo",
    "converge_boundary",
    "ctmrg_step",
    "CorrelationLength",
    "correlation_length",
    "energy_per_site",
    "expectation_value",
    "network_value",
    "reduced_density_matrix",
    "OptimizationInfo",
    "OptimizerConfig",
    "optimize",
    "HEISENBERG_D2_ENERGY",
    "HEISENBERG_EXACT_ENERGY",
    "ISING_BETA_C",
    "IsingExact",
    "compare",
    "ising_exact",
    "onsager_energy",
    "onsager_free_energy",
    "onsager_magnetization",
    "relative_deviation",
]
