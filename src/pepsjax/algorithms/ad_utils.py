"""Stable automatic differentiation utilities for CTMRG.

Implements the ingredients for differentiating through a converged CTMRG
environment (Lootens et al., Phys. Rev. Research 7, 013237 (2025)):

1. Truncated SVD whose backward pass is the exact adjoint of the full thin
   SVD, Lorentzian-regularized only for (near-)degenerate pairs.
2. Deterministic SVD sign fixing, so the CTMRG update map is a function of
   its input rather than of the LAPACK sign convention.
3. Fixed-point gradient strategies, injected into the optimizer:
   :class:`ImplicitGradient` (adjoint fixed-point iteration at the converged
   environment) and :class:`UnrolledGradient` (backpropagation through a
   number of extra CTMRG steps).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import partial
from typing import TYPE_CHECKING

import jax
import jax.numpy as jnp
import numpy as np

from pepsjax.core.states import CTMRGEnv

if TYPE_CHECKING:
    from pepsjax.algorithms.ctmrg import CTMRGConfig

# ---------------------------------------------------------------------------
# 1. Truncated SVD with stable backward pass
# ---------------------------------------------------------------------------

# Lorentzian broadening of 1 / (s_j^2 - s_i^2), relative to s_0^2.
LORENTZIAN_EPS = 1e-12
# Singular values below this fraction of s_0 are not inverted.
SVD_CUTOFF = 1e-12


@partial(jax.custom_vjp, nondiff_argnums=(1,))
def truncated_svd_ad(
    M: jax.Array,
    chi: int,
) -> tuple[jax.Array, jax.Array, jax.Array]:
    """Truncated SVD with correct and stable backward pass.

    Forward: standard SVD truncated to *chi* singular values.
    Backward: adjoint of the full thin SVD with zero cotangents on the
    discarded triplets, so the coupling between kept and discarded
    singular vectors is exact. Only (near-)degenerate pairs are broadened.

    Args:
        M:   2-D matrix of shape ``(m, n)``.
        chi: Number of singular values/vectors to keep (static).

    Returns:
        ``(U, s, Vh)`` truncated to ``min(chi, m, n)``.
    """
    U, s, Vh = jnp.linalg.svd(M, full_matrices=False)
    k = min(chi, s.shape[0])
    return U[:, :k], s[:k], Vh[:k, :]


def _truncated_svd_ad_fwd(M, chi):
    U, s, Vh = jnp.linalg.svd(M, full_matrices=False)
    k = min(chi, s.shape[0])
    return (U[:, :k], s[:k], Vh[:k, :]), (U, s, Vh)


def _truncated_svd_ad_bwd(chi, residuals, g):
    """Backward pass of the thin SVD ``M = U S V^T`` of rank ``r``.

    ``dM = U [ (F o (U^T dU - dU^T U)) S + diag(ds) + S (F o (V^T dV - dV^T V)) ] V^T
         + (1 - U U^T) dU S^-1 V^T + U S^-1 dV^T (1 - V V^T)``

    with ``F_ij = 1 / (s_j^2 - s_i^2)`` broadened to
    ``(s_j^2 - s_i^2) / ((s_j^2 - s_i^2)^2 + (eps s_0^2)^2)``. The cotangents
    of the ``r - chi`` discarded triplets are zero.
    """
    U, s, Vh = residuals
    dU, ds, dVh = g
    k = ds.shape[0]
    r = s.shape[0]
    dU = jnp.pad(dU, ((0, 0), (0, r - k)))
    ds = jnp.pad(ds, (0, r - k))
    dVh = jnp.pad(dVh, ((0, r - k), (0, 0)))
    V = Vh.T
    dV = dVh.T

    s2 = s**2
    diff = s2[None, :] - s2[:, None]
    broadening = (LORENTZIAN_EPS * s2[0]) ** 2 + jnp.finfo(s.dtype).tiny
    F = diff / (diff**2 + broadening)
    F = F - jnp.diag(jnp.diag(F))

    J_u = U.T @ dU
    J_v = V.T @ dV
    inner = (
        (F * (J_u - J_u.T)) * s[None, :]
        + jnp.diag(ds)
        + s[:, None] * (F * (J_v - J_v.T))
    )
    dM = U @ inner @ Vh

    keep = s > SVD_CUTOFF * s[0]
    s_safe = jnp.where(keep, s, 1.0)
    s_inv = jnp.where(keep, 1.0 / s_safe, 0.0)
    dM = dM + (dU - U @ J_u) * s_inv[None, :] @ Vh
    dM = dM + (U * s_inv[None, :]) @ (dVh - J_v.T @ Vh)
    return (dM,)


truncated_svd_ad.defvjp(_truncated_svd_ad_fwd, _truncated_svd_ad_bwd)


def fix_svd_signs(U: jax.Array, Vh: jax.Array) -> tuple[jax.Array, jax.Array]:
    """Make the largest-magnitude entry of every column of ``U`` positive.

    The same signs are applied to the rows of ``Vh`` so ``U S Vh`` is
    unchanged. The signs are treated as constants under differentiation.
    """
    rows = jnp.argmax(jnp.abs(U), axis=0)
    signs = jnp.sign(U[rows, jnp.arange(U.shape[1])])
    signs = jax.lax.stop_gradient(jnp.where(signs == 0, 1.0, signs))
    return U * signs[None, :], Vh * signs[:, None]


# ---------------------------------------------------------------------------
# 2. Gauge of a converged environment
# ---------------------------------------------------------------------------

# Bond names of the four projector cuts, in the order used below.
_CUTS = ("d1", "r1", "d2", "l3")


def _leading_vector(E: np.ndarray) -> np.ndarray:
    """Real leading eigenvector of ``E`` with its phase removed."""
    vals, vecs = np.linalg.eig(E)
    v = vecs[:, np.argmax(np.abs(vals))]
    pivot = v[np.argmax(np.abs(v))]
    return np.real(v * (abs(pivot) / pivot))


def _fixed_point(A: np.ndarray, B: np.ndarray, side: str) -> np.ndarray:
    """Leading fixed point of the mixed edge transfer matrix of ``A`` and ``B``.

    ``side="left"`` solves ``sum_m A_m^T X B_m = lambda X`` and
    ``side="right"`` solves ``sum_m B_m Y A_m^T = lambda Y``, where
    ``A_m = A[:, m, :]``.
    """
    chi = A.shape[0]
    if side == "left":
        E = np.einsum("kmi,lmj->ijkl", A, B)
    else:
        E = np.einsum("imk,jml->ijkl", B, A)
    return _leading_vector(E.reshape(chi * chi, chi * chi)).reshape(chi, chi)


def _bond_gauge(T_new: np.ndarray, T_ref: np.ndarray) -> np.ndarray:
    """Orthogonal ``G`` with ``G^T T_new[:, m, :] G ~ T_ref[:, m, :]``.

    If ``T_new_m = G T_ref_m G^T``, the mixed fixed points are ``X = L G^T``
    and ``Y = G R`` with ``L`` and ``R`` the positive fixed points of
    ``T_ref``. The orthogonal polar factor of ``X^T + Y = G (L + R)`` is
    ``G``, also when the corner spectra are degenerate.
    """
    A1 = _fixed_point(T_ref, T_new, "left").T
    A2 = _fixed_point(T_ref, T_new, "right")
    A1 = A1 / np.linalg.norm(A1)
    A2 = A2 / np.linalg.norm(A2)
    if np.vdot(A1, A2) < 0:
        A2 = -A2
    W, _, Vt = np.linalg.svd(A1 + A2)
    return W @ Vt


def _env_gauges(env_new: CTMRGEnv, env_ref: CTMRGEnv) -> dict[str, np.ndarray]:
    """Per-cut orthogonal gauge mapping ``env_new`` onto ``env_ref``."""
    new = [np.asarray(x) for x in env_new]
    ref = [np.asarray(x) for x in env_ref]
    C1n, C2n, C3n, _, T1n, T2n, T3n, T4n = new
    C1r, C2r, C3r, _, T1r, T2r, T3r, T4r = ref

    gauges = {
        "d1": _bond_gauge(T4n, T4r),
        "r1": _bond_gauge(T1n, T1r),
        "d2": _bond_gauge(T2n, T2r),
        "l3": _bond_gauge(T3n, T3r),
    }

    # Each edge fixes its gauge up to a sign. Fix the sign of each cut
    # relative to d1 through the corners C1 (d1, r1), C2 (r1, d2) and
    # C3 (d2, l3).
    def overlap(Cn, Cr, left, right):
        return np.sum(gauges[left].T @ Cn @ gauges[right] * Cr)

    if overlap(C1n, C1r, "d1", "r1") < 0:
        gauges["r1"] = -gauges["r1"]
    if overlap(C2n, C2r, "r1", "d2") < 0:
        gauges["d2"] = -gauges["d2"]
    if overlap(C3n, C3r, "d2", "l3") < 0:
        gauges["l3"] = -gauges["l3"]
    return gauges


def apply_env_gauge(env: CTMRGEnv, gauges: dict[str, np.ndarray]) -> CTMRGEnv:
    """Apply per-cut orthogonal gauges ``G`` to every bond of ``env``.

    Each corner becomes ``G_left^T C G_right`` and each edge
    ``G^T T[:, m, :] G``.
    """
    d1, r1, d2, l3 = (jnp.asarray(gauges[c]) for c in _CUTS)

    def edge(T, G):
        return jnp.einsum("amb,ax,by->xmy", T, G, G)

    C1, C2, C3, C4, T1, T2, T3, T4 = env
    return CTMRGEnv(
        C1=d1.T @ C1 @ r1,
        C2=r1.T @ C2 @ d2,
        C3=d2.T @ C3 @ l3,
        C4=d1.T @ C4 @ l3,
        T1=edge(T1, r1),
        T2=edge(T2, d2),
        T3=edge(T3, l3),
        T4=edge(T4, d1),
    )


def _env_distance(env_a: CTMRGEnv, env_b: CTMRGEnv) -> float:
    """Largest relative Frobenius distance between matching tensors."""
    return max(
        float(jnp.linalg.norm(x - y) / (jnp.linalg.norm(y) + 1e-300))
        for x, y in zip(env_a, env_b)
    )


def _fixed_dimensions(config: CTMRGConfig) -> CTMRGConfig:
    """Gradients are taken with the environment dimensions held fixed."""
    if config.truncation_scheme == "fixedspace":
        return config
    return replace(config, truncation_scheme="fixedspace")


# ---------------------------------------------------------------------------
# 3. Fixed-point gradient strategies
# ---------------------------------------------------------------------------


def _unrolled(a: jax.Array, env: CTMRGEnv, config: CTMRGConfig, steps: int) -> CTMRGEnv:
    from pepsjax.algorithms.ctmrg import ctmrg_step

    config = _fixed_dimensions(config)
    env = jax.lax.stop_gradient(env)
    for _ in range(steps):
        env, _ = ctmrg_step(a, env, config)
    return env


@dataclass(frozen=True)
class UnrolledGradient:
    """Differentiate through ``steps`` CTMRG updates from the converged environment.

    Attributes:
        steps: Number of CTMRG steps the gradient is propagated through.
    """

    steps: int = 8

    def __post_init__(self) -> None:
        if self.steps < 1:
            raise ValueError(f"steps must be >= 1, got {self.steps}")

    def __call__(self, a: jax.Array, env: CTMRGEnv, config: CTMRGConfig) -> CTMRGEnv:
        return _unrolled(a, env, config, self.steps)


@dataclass(frozen=True)
class ImplicitGradient:
    """Implicit differentiation of the CTMRG fixed point ``env* = f(a, env*)``.

    The forward pass is the identity on the converged environment. The
    backward pass solves ``lambda = g + J_env^T lambda`` by fixed-point
    iteration and returns ``(df/da)^T lambda``. The step map is first
    aligned to ``env*`` with per-bond orthogonal gauges so that ``env*`` is
    an element-wise fixed point.

    Attributes:
        tolerance:       Relative convergence threshold of the adjoint
                         iteration.
        max_iterations:  Iteration ceiling of the adjoint iteration.
        gauge_tolerance: Largest accepted relative distance between the
                         gauge-aligned ``f(a, env*)`` and ``env*``.
        fallback_steps:  CTMRG steps to backpropagate through when the
                         environment is not an element-wise fixed point or
                         the adjoint iteration does not converge.
        verbosity:       0 silent, >= 1 report fallbacks.
    """

    tolerance: float = 1e-10
    max_iterations: int = 100
    gauge_tolerance: float = 1e-5
    fallback_steps: int = 8
    verbosity: int = 1

    def __post_init__(self) -> None:
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.gauge_tolerance <= 0:
            raise ValueError(
                f"gauge_tolerance must be positive, got {self.gauge_tolerance}"
            )
        if self.fallback_steps < 1:
            raise ValueError(f"fallback_steps must be >= 1, got {self.fallback_steps}")

    def __call__(self, a: jax.Array, env: CTMRGEnv, config: CTMRGConfig) -> CTMRGEnv:
        return _implicit_fixed_point(self, config, a, env)


FixedPointGradient = ImplicitGradient | UnrolledGradient


@partial(jax.custom_vjp, nondiff_argnums=(0, 1))
def _implicit_fixed_point(
    mode: ImplicitGradient,
    config: CTMRGConfig,
    a: jax.Array,
    env: CTMRGEnv,
) -> CTMRGEnv:
    return env


def _implicit_fixed_point_fwd(mode, config, a, env):
    return env, (a, env)


def _implicit_fixed_point_bwd(mode, config, residuals, g):
    """Adjoint of the CTMRG fixed point.

    Solves ``(1 - J_env^T) lambda = g`` by iterating
    ``lambda_{n+1} = g + J_env^T lambda_n``; then ``da = (df/da)^T lambda``.
    """
    from pepsjax.algorithms.ctmrg import ctmrg_step

    a, env = residuals
    zeros = jax.tree_util.tree_map(jnp.zeros_like, env)

    def fallback(reason: str):
        if mode.verbosity >= 1:
            print(f"ImplicitGradient: {reason}; backpropagating through "
                  f"{mode.fallback_steps} CTMRG steps instead")
        _, vjp_a = jax.vjp(lambda x: _unrolled(x, env, config, mode.fallback_steps), a)
        return (vjp_a(g)[0], zeros)

    config = _fixed_dimensions(config)
    stepped, _ = ctmrg_step(a, env, config)
    gauges = _env_gauges(stepped, env)
    residual = _env_distance(apply_env_gauge(stepped, gauges), env)
    if residual > mode.gauge_tolerance:
        return fallback(f"gauge-fixed residual {residual:.2e} exceeds tolerance")

    def step_env(e):
        return apply_env_gauge(ctmrg_step(a, e, config)[0], gauges)

    def step_a(x):
        return apply_env_gauge(ctmrg_step(x, env, config)[0], gauges)

    _, vjp_env = jax.vjp(step_env, env)
    g_norm = max(float(jnp.linalg.norm(x)) for x in g) + 1e-300
    lam = g
    converged = False
    for _ in range(mode.max_iterations):
        (jt_lam,) = vjp_env(lam)
        lam_new = jax.tree_util.tree_map(jnp.add, g, jt_lam)
        diff = max(float(jnp.linalg.norm(x - y)) for x, y in zip(lam_new, lam))
        lam = lam_new
        if not np.isfinite(diff):
            break
        if diff < mode.tolerance * g_norm:
            converged = True
            break
    if not converged:
        return fallback("adjoint fixed-point iteration did not converge")

    _, vjp_a = jax.vjp(step_a, a)
    (da,) = vjp_a(lam)
    return (da, zeros)


_implicit_fixed_point.defvjp(_implicit_fixed_point_fwd, _implicit_fixed_point_bwd)
