"""Variational ground-state optimization of an iPEPS.

The energy per site ``E(A) = <psi(A)|H|psi(A)> / <psi(A)|psi(A)>`` is
evaluated from a converged CTMRG environment of the normalized tensor and
differentiated through the boundary fixed point (see
:mod:`pepsjax.algorithms.ad_utils`). The gradient drives an L-BFGS update
with optax's two-loop preconditioner and a backtracking Armijo line search.

Every energy evaluation re-converges the boundary. With
``reuse_environment`` the previous accepted environment is the warm start,
otherwise each evaluation starts from the initial environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np
import optax

from pepsjax.algorithms.ad_utils import FixedPointGradient, ImplicitGradient, UnrolledGradient
from pepsjax.algorithms.ctmrg import CTMRGConfig, CTMRGInfo, converge_boundary
from pepsjax.algorithms.observables import energy_per_site
from pepsjax.core.states import CTMRGEnv, InfinitePEPS, build_double_layer
from pepsjax.models.operators import LatticeModel


@dataclass(frozen=True)
class OptimizerConfig:
    """Configuration for the iPEPS optimization stage.

    Attributes:
        tolerance:         Stop once the gradient norm drops below this value.
        max_iterations:    L-BFGS iteration ceiling.
        memory:            Number of L-BFGS correction pairs kept.
        reuse_environment: Warm-start each boundary contraction from the last
                           accepted environment.
        gradient:          Fixed-point differentiation strategy.
        line_search_steps: Maximum number of backtracking steps.
        armijo:            Sufficient-decrease constant of the line search.
        step_shrink:       Backtracking factor in ``(0, 1)``.
        gradient_limit:    Evaluations whose gradient norm exceeds this value
                           (or whose energy or gradient is not finite) are
                           rejected by the line search.
        verbosity:         0 silent, 1 warnings, 2 per iteration.
    """

    tolerance: float = 1e-4
    max_iterations: int = 100
    memory: int = 20
    reuse_environment: bool = True
    gradient: FixedPointGradient = field(default_factory=ImplicitGradient)
    line_search_steps: int = 12
    armijo: float = 1e-4
    step_shrink: float = 0.5
    gradient_limit: float = 1e6
    verbosity: int = 2

    def __post_init__(self) -> None:
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.memory < 1:
            raise ValueError(f"memory must be >= 1, got {self.memory}")
        if not isinstance(self.gradient, (ImplicitGradient, UnrolledGradient)):
            raise ValueError(
                f"gradient must be an ImplicitGradient or UnrolledGradient, "
                f"got {type(self.gradient).__name__}"
            )
        if self.line_search_steps < 1:
            raise ValueError(
                f"line_search_steps must be >= 1, got {self.line_search_steps}"
            )
        if not 0 < self.armijo < 1:
            raise ValueError(f"armijo must lie in (0, 1), got {self.armijo}")
        if not 0 < self.step_shrink < 1:
            raise ValueError(f"step_shrink must lie in (0, 1), got {self.step_shrink}")
        if not self.gradient_limit > 0:
            raise ValueError(
                f"gradient_limit must be positive, got {self.gradient_limit}"
            )


class OptimizationInfo(NamedTuple):
    """History of an optimization run.

    Attributes:
        energy:               Energy per site of the returned state.
        energies:             Energy of every accepted iterate (initial first).
        gradient_norms:       Gradient norm of every accepted iterate.
        truncation_errors:    Boundary truncation error of every accepted
                              iterate.
        function_evaluations: Number of energy and gradient evaluations.
        iterations:           Number of L-BFGS iterations performed.
        converged:            Whether the gradient norm reached ``tolerance``.
        boundary:             Diagnostics of the final boundary contraction.
    """

    energy: float
    energies: list[float]
    gradient_norms: list[float]
    truncation_errors: list[float]
    function_evaluations: int
    iterations: int
    converged: bool
    boundary: CTMRGInfo


class _Evaluation(NamedTuple):
    x: jax.Array
    energy: float
    gradient: jax.Array
    env: CTMRGEnv
    boundary: CTMRGInfo


def _normalized(x: jax.Array) -> jax.Array:
    return x / jnp.linalg.norm(x)


def _energy_and_gradient(
    x: jax.Array,
    warm_env: CTMRGEnv,
    model: LatticeModel,
    boundary: CTMRGConfig,
    mode: FixedPointGradient,
) -> _Evaluation:
    """Converge the boundary for ``x`` and differentiate the energy at ``x``."""
    env, info = converge_boundary(warm_env, InfinitePEPS(_normalized(x)), boundary)

    def loss(y):
        A = _normalized(y)
        env_fixed = mode(build_double_layer(A), env, boundary)
        return energy_per_site(InfinitePEPS(A), env_fixed, model)

    energy, grad = jax.value_and_grad(loss)(x)
    return _Evaluation(x, float(energy), grad, env, info)


def _vdot(u: jax.Array, v: jax.Array) -> float:
    return float(jnp.vdot(u, v).real)


def _usable(evaluation: _Evaluation, limit: float) -> bool:
    """Finite energy and a finite gradient of norm at most ``limit``."""
    grad_norm = float(jnp.linalg.norm(evaluation.gradient))
    return bool(np.isfinite(evaluation.energy) and np.isfinite(grad_norm)) and (
        grad_norm <= limit
    )


def optimize(
    model: LatticeModel,
    peps: InfinitePEPS,
    env: CTMRGEnv,
    config: OptimizerConfig | None = None,
    boundary: CTMRGConfig | None = None,
) -> tuple[InfinitePEPS, CTMRGEnv, float, OptimizationInfo]:
    """Minimize the energy per site of ``model`` over the site tensor.

    Args:
        model:    Lattice Hamiltonian.
        peps:     Initial ansatz (real site tensor).
        env:      Initial environment, used as the first warm start.
        config:   OptimizerConfig (defaults used if ``None``).
        boundary: CTMRGConfig for every boundary contraction.

    Returns:
        ``(peps, env, energy, info)`` -- the final normalized ansatz, its
        converged environment, its energy per site and the run history.
        If the iteration ceiling is reached or the line search fails, the
        last accepted state is returned with ``info.converged = False``.
        If the initial evaluation is not usable (see
        ``OptimizerConfig.gradient_limit``), the normalized initial state is
        returned with ``info.iterations = 0``.
    """
    config = OptimizerConfig() if config is None else config
    boundary = CTMRGConfig() if boundary is None else boundary
    if jnp.iscomplexobj(peps.tensor):
        raise ValueError("optimize expects a real site tensor")
    if peps.physical_dimension != model.physical_dimension:
        raise ValueError(
            f"PEPS physical dimension {peps.physical_dimension} does not match "
            f"the model's {model.physical_dimension}"
        )

    initial_env = env
    mode = config.gradient
    evaluations = 0

    def evaluate(x, warm_env):
        nonlocal evaluations
        evaluations += 1
        return _energy_and_gradient(x, warm_env, model, boundary, mode)

    current = evaluate(_normalized(peps.tensor), initial_env)
    grad_norm = float(jnp.linalg.norm(current.gradient))
    energies = [current.energy]
    gradient_norms = [grad_norm]
    truncation_errors = [current.boundary.truncation_error]
    if config.verbosity >= 2:
        print(f"Optimization start: E = {current.energy:.10f}, |g| = {grad_norm:.3e}")

    usable = _usable(current, config.gradient_limit)
    if not usable and config.verbosity >= 1:
        print(
            f"Optimization: initial energy {current.energy:.6e} or gradient norm "
            f"{grad_norm:.3e} is not usable; returning the initial state"
        )

    lbfgs = optax.scale_by_lbfgs(memory_size=config.memory)
    state = lbfgs.init(current.x)
    converged = usable and grad_norm < config.tolerance
    iteration = 0
    restart = True

    while usable and not converged and iteration < config.max_iterations:
        iteration += 1
        precond, new_state = lbfgs.update(current.gradient, state, current.x)
        direction = -precond
        slope = _vdot(current.gradient, direction)
        if not slope < 0:
            # Not a descent direction: drop the curvature history.
            state = lbfgs.init(current.x)
            precond, new_state = lbfgs.update(current.gradient, state, current.x)
            direction = -current.gradient
            slope = -grad_norm**2
            restart = True
        state = new_state

        # Without curvature information the step is limited to unit length.
        step = min(1.0, 1.0 / grad_norm) if restart else 1.0
        restart = False
        warm_env = current.env if config.reuse_environment else initial_env
        trial = None
        for _ in range(config.line_search_steps):
            candidate = evaluate(current.x + step * direction, warm_env)
            if _usable(candidate, config.gradient_limit) and (
                candidate.energy <= current.energy + config.armijo * step * slope
            ):
                trial = candidate
                break
            step *= config.step_shrink

        if trial is None:
            if config.verbosity >= 1:
                print(
                    f"Optimization: line search failed at iteration {iteration}; "
                    f"returning the last accepted state"
                )
            break

        s = trial.x - current.x
        y = trial.gradient - current.gradient
        if not _vdot(s, y) > 0:
            state = lbfgs.init(trial.x)
            restart = True

        current = trial
        grad_norm = float(jnp.linalg.norm(current.gradient))
        energies.append(current.energy)
        gradient_norms.append(grad_norm)
        truncation_errors.append(current.boundary.truncation_error)
        converged = grad_norm < config.tolerance

        if config.verbosity >= 2:
            print(
                f"Iter {iteration}: E = {current.energy:.10f}, |g| = {grad_norm:.3e}, "
                f"step = {step:.2e}, evals = {evaluations}"
            )

    if converged and config.verbosity >= 2:
        print(f"Optimization converged after {iteration} iterations")
    elif usable and not converged and config.verbosity >= 1:
        print(
            f"Optimization stopped after {iteration} iterations without reaching "
            f"|g| < {config.tolerance:.1e} (|g| = {grad_norm:.3e})"
        )

    info = OptimizationInfo(
        energy=current.energy,
        energies=energies,
        gradient_norms=gradient_norms,
        truncation_errors=truncation_errors,
        function_evaluations=evaluations,
        iterations=iteration,
        converged=converged,
        boundary=current.boundary,
    )
    return InfinitePEPS(_normalized(current.x)), current.env, current.energy, info
