"""Corner transfer matrix renormalization group (CTMRG) boundary contraction.

Simultaneous CTMRG for a 1x1 unit cell: in every step the four corners are
enlarged by one row and one column at once, projectors are computed for the
four cuts of the resulting 2x2 cluster, and all corners and edges are
renormalized together.

.. code-block::

      Q1 --r1-- Q2          cut d1: left column, between Q1 and Q4
      |         |           cut r1: top row, between Q1 and Q2
      d1        d2          cut d2: right column, between Q2 and Q3
      |         |           cut l3: bottom row, between Q4 and Q3
      Q4 --l3-- Q3

For every cut the two half systems ``R`` (one side) and ``R~`` (other side)
define ``M = R~ R^T = U S V^T`` and the projectors

    ``P = R^T V S^-1/2``  (attached on the ``R~`` side),
    ``P~ = R~^T U S^-1/2`` (attached on the ``R`` side),

which resolve the identity on the cut exactly when no singular value is
discarded (Corboz et al., PRB 84, 041108 (2011); Fishman et al., PRB 98,
235148 (2018)). SVD signs are fixed so the update is a function of its
input, which makes a converged environment usable for fixed-point
differentiation.

Reference:
- Nishino & Okunishi, J. Phys. Soc. Jpn. 65, 891 (1996)
- Orús & Vidal, PRB 80, 094403 (2009)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np

from pepsjax.algorithms.ad_utils import fix_svd_signs, truncated_svd_ad
from pepsjax.core.contraction import contract
from pepsjax.core.states import CTMRGEnv, Network, boundary_tensor

_SCHEMES = ("fixedspace", "truncerr")


@dataclass(frozen=True)
class CTMRGConfig:
    """Configuration for the boundary contraction stage.

    Attributes:
        tolerance:            Convergence threshold on the change of the
                              normalized corner singular value spectra.
        max_iterations:       CTMRG iteration ceiling.
        min_iterations:       Iterations performed before convergence is
                              accepted.
        truncation_scheme:    ``"fixedspace"`` keeps every environment bond at
                              its current dimension; ``"truncerr"`` keeps the
                              singular values above ``truncation_tolerance``
                              (relative to the largest) up to
                              ``max_dimension``.
        truncation_tolerance: Relative singular value threshold of the
                              ``"truncerr"`` scheme.
        max_dimension:        Upper bound on the environment dimension of the
                              ``"truncerr"`` scheme (``None``: no bound).
        projector_cutoff:     Relative cutoff below which singular values are
                              dropped from the projector pseudo-inverse.
        verbosity:            0 silent, 1 warnings, 2 summary, 3 per iteration.
    """

    tolerance: float = 1e-8
    max_iterations: int = 100
    min_iterations: int = 4
    truncation_scheme: str = "fixedspace"
    truncation_tolerance: float = 1e-10
    max_dimension: int | None = None
    projector_cutoff: float = 1e-12
    verbosity: int = 1

    def __post_init__(self) -> None:
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive, got {self.tolerance}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not 1 <= self.min_iterations <= self.max_iterations:
            raise ValueError(
                f"min_iterations must lie in [1, max_iterations={self.max_iterations}], "
                f"got {self.min_iterations}"
            )
        if self.truncation_scheme not in _SCHEMES:
            raise ValueError(
                f"truncation_scheme must be one of {_SCHEMES}, got {self.truncation_scheme!r}"
            )
        if self.truncation_tolerance <= 0:
            raise ValueError(
                f"truncation_tolerance must be positive, got {self.truncation_tolerance}"
            )
        if self.max_dimension is not None and self.max_dimension < 1:
            raise ValueError(f"max_dimension must be >= 1, got {self.max_dimension}")
        if not 0 <= self.projector_cutoff < 1:
            raise ValueError(
                f"projector_cutoff must lie in [0, 1), got {self.projector_cutoff}"
            )


class CTMRGInfo(NamedTuple):
    """Diagnostics of a boundary contraction run.

    Attributes:
        truncation_error:  Largest truncation error over the four cuts in the
                           final step.
        convergence_error: Corner spectrum change in the final step.
        iterations:        Number of CTMRG steps performed.
        converged:         Whether ``convergence_error < tolerance``.
        singular_values:   Normalized singular values of C1..C4.
    """

    truncation_error: float
    convergence_error: float
    iterations: int
    converged: bool
    singular_values: tuple[np.ndarray, ...]


# ---------------------------------------------------------------------------
# Projectors
# ---------------------------------------------------------------------------


def _normalize(x: jax.Array) -> jax.Array:
    return x / jnp.linalg.norm(x)


def _as_matrix(Q: jax.Array) -> jax.Array:
    return Q.reshape(Q.shape[0] * Q.shape[1], Q.shape[2] * Q.shape[3])


def _adaptive_dimension(M: jax.Array, config: CTMRGConfig) -> int:
    """Number of singular values kept by the ``"truncerr"`` scheme."""
    s = np.linalg.svd(np.asarray(M), compute_uv=False)
    if s[0] == 0:
        return 1
    keep = int(np.sum(s / s[0] > config.truncation_tolerance))
    if config.max_dimension is not None:
        keep = min(keep, config.max_dimension)
    return max(keep, 1)


def _projectors(
    R: jax.Array,
    Rt: jax.Array,
    chi: int,
    config: CTMRGConfig,
) -> tuple[jax.Array, jax.Array, jax.Array]:
    """Projectors for one cut between half systems ``R`` and ``Rt``.

    ``R`` and ``Rt`` have the cut as their column index. Returns
    ``(P, Pt, truncation_error)`` where ``P`` attaches on the ``Rt`` side
    and ``Pt`` on the ``R`` side.
    """
    M = Rt @ R.T
    if config.truncation_scheme == "truncerr":
        chi = _adaptive_dimension(M, config)
    U, s, Vh = truncated_svd_ad(M, chi)
    U, Vh = fix_svd_signs(U, Vh)

    # Pseudo-inverse square root; the double where keeps gradients finite.
    keep = s > config.projector_cutoff * s[0]
    s_safe = jnp.where(keep, s, 1.0)
    s_inv_sqrt = jnp.where(keep, 1.0 / jnp.sqrt(s_safe), 0.0)

    P = (R.T @ Vh.T) * s_inv_sqrt[None, :]
    Pt = (Rt.T @ U) * s_inv_sqrt[None, :]

    norm2 = jnp.sum(M**2)
    discarded = jnp.maximum(norm2 - jnp.sum(s**2), 0.0)
    trunc_err = jax.lax.stop_gradient(jnp.sqrt(discarded / norm2))
    return P, Pt, trunc_err


# ---------------------------------------------------------------------------
# One CTMRG step
# ---------------------------------------------------------------------------


def _enlarged_corners(a: jax.Array, env: CTMRGEnv) -> tuple[jax.Array, ...]:
    """The four corners of the 2x2 cluster as matrices.

    Q1[(g, d), (c, r)]  Q2[(c, l), (m, d)]  Q3[(e, u), (j, l)]  Q4[(a, u), (k, r)]
    """
    C1, C2, C3, C4, T1, T2, T3, T4 = env
    Q1 = contract("ab,buc,alg,udlr->gdcr", C1, T1, T4, a)
    Q2 = contract("cue,ef,frm,udlr->clmd", T1, C2, T2, a)
    Q3 = contract("eri,ik,jdk,udlr->eujl", T2, C3, T3, a)
    Q4 = contract("alh,hj,jdk,udlr->aukr", T4, C4, T3, a)
    return tuple(_as_matrix(Q) for Q in (Q1, Q2, Q3, Q4))


def _ctmrg_step(
    a: jax.Array,
    env: CTMRGEnv,
    config: CTMRGConfig,
) -> tuple[CTMRGEnv, jax.Array]:
    C1, C2, C3, C4, T1, T2, T3, T4 = env
    D = a.shape[0]
    Q1, Q2, Q3, Q4 = _enlarged_corners(a, env)

    h_top = _normalize(Q1 @ Q2)       # (d1, d2)
    h_bot = _normalize(Q4 @ Q3.T)     # (d1, d2)
    h_left = _normalize(Q1.T @ Q4)    # (r1, l3)
    h_right = _normalize(Q2 @ Q3)     # (r1, l3)

    # P attaches to the bottom / right half, Pt to the top / left half.
    P_d1, Pt_d1, e_d1 = _projectors(h_top.T, h_bot.T, C1.shape[0], config)
    P_d2, Pt_d2, e_d2 = _projectors(h_top, h_bot, C2.shape[1], config)
    P_r1, Pt_r1, e_r1 = _projectors(h_left.T, h_right.T, C1.shape[1], config)
    P_l3, Pt_l3, e_l3 = _projectors(h_left, h_right, C3.shape[1], config)

    C1_new = Pt_d1.T @ Q1 @ Pt_r1
    C2_new = P_r1.T @ Q2 @ Pt_d2
    C3_new = P_d2.T @ Q3 @ P_l3
    C4_new = P_d1.T @ Q4 @ Pt_l3

    def split(P):
        return P.reshape(-1, D, P.shape[1])

    T1_new = contract("blk,buc,udlr,crn->kdn", split(P_r1), T1, a, split(Pt_r1))
    T2_new = contract("euk,erm,udlr,mdn->kln", split(P_d2), T2, a, split(Pt_d2))
    T3_new = contract("jlp,jdq,udlr,qrn->pun", split(P_l3), T3, a, split(Pt_l3))
    T4_new = contract("auk,alg,udlr,gdn->krn", split(P_d1), T4, a, split(Pt_d1))

    new_env = CTMRGEnv(*(
        _normalize(x)
        for x in (C1_new, C2_new, C3_new, C4_new, T1_new, T2_new, T3_new, T4_new)
    ))
    trunc_err = jnp.max(jnp.stack([e_d1, e_d2, e_r1, e_l3]))
    return new_env, trunc_err


_ctmrg_step_jit = jax.jit(_ctmrg_step, static_argnums=(2,))


def ctmrg_step(
    a: jax.Array,
    env: CTMRGEnv,
    config: CTMRGConfig,
) -> tuple[CTMRGEnv, jax.Array]:
    """One simultaneous CTMRG update.

    The ``"fixedspace"`` scheme is jit-compiled; ``"truncerr"`` chooses
    dimensions from the singular values and runs eagerly.

    Args:
        a:      Rank-4 network tensor ``a[u, d, l, r]``.
        env:    Current environment.
        config: CTMRGConfig.

    Returns:
        ``(new_env, truncation_error)`` with the largest truncation error
        over the four cuts.
    """
    if config.truncation_scheme == "fixedspace":
        return _ctmrg_step_jit(a, env, config)
    return _ctmrg_step(a, env, config)


# ---------------------------------------------------------------------------
# Convergence loop
# ---------------------------------------------------------------------------


def _corner_spectra(env: CTMRGEnv, cutoff: float = 0.0) -> tuple[np.ndarray, ...]:
    """Normalized corner spectra with values below ``cutoff * s_0`` set to zero."""
    spectra = []
    for C in env[:4]:
        s = np.linalg.svd(np.asarray(C), compute_uv=False)
        s = s / np.linalg.norm(s)
        spectra.append(np.where(s > cutoff * s[0], s, 0.0))
    return tuple(spectra)


def _spectrum_distance(new: tuple[np.ndarray, ...], old: tuple[np.ndarray, ...]) -> float:
    """Largest change of the normalized corner spectra (zero padded)."""
    dist = 0.0
    for s_new, s_old in zip(new, old):
        n = max(len(s_new), len(s_old))
        s_new = np.pad(s_new, (0, n - len(s_new)))
        s_old = np.pad(s_old, (0, n - len(s_old)))
        dist = max(dist, float(np.linalg.norm(s_new - s_old)))
    return dist


def _check_compatible(a: jax.Array, env: CTMRGEnv) -> None:
    if a.ndim != 4:
        raise ValueError(f"Network tensor must have 4 legs, got shape {a.shape}")
    for name, T in zip(("T1", "T2", "T3", "T4"), env[4:]):
        if T.shape[1] != a.shape[0]:
            raise ValueError(
                f"Environment edge {name} has middle dimension {T.shape[1]}, "
                f"but the network bond dimension is {a.shape[0]}"
            )


def converge_boundary(
    env: CTMRGEnv,
    network: Network,
    config: CTMRGConfig | None = None,
) -> tuple[CTMRGEnv, CTMRGInfo]:
    """Iterate CTMRG until the corner spectra stop changing.

    Non-convergence within ``config.max_iterations`` is not an error: the
    last environment is returned with ``converged=False`` in the
    diagnostics (and a message when ``verbosity >= 1``).

    Args:
        env:     Initial (or warm-start) environment.
        network: :class:`~pepsjax.core.states.InfinitePEPS` or
                 :class:`~pepsjax.core.states.InfinitePartitionFunction`.
        config:  CTMRGConfig (defaults used if ``None``).

    Returns:
        ``(env, info)`` -- the final environment and its diagnostics.
    """
    config = CTMRGConfig() if config is None else config
    a = jax.lax.stop_gradient(boundary_tensor(network))
    env = jax.lax.stop_gradient(env)
    _check_compatible(a, env)

    spectra = _corner_spectra(env, config.projector_cutoff)
    error = float("inf")
    trunc_err = 0.0
    converged = False
    iteration = 0
    for iteration in range(1, config.max_iterations + 1):
        env, trunc = ctmrg_step(a, env, config)
        trunc_err = float(trunc)
        new_spectra = _corner_spectra(env, config.projector_cutoff)
        error = _spectrum_distance(new_spectra, spectra)
        spectra = new_spectra

        if config.verbosity >= 3:
            print(
                f"CTMRG step {iteration}: conv_err={error:.3e}, "
                f"trunc_err={trunc_err:.3e}, chi={env.chi}"
            )
        if error < config.tolerance and iteration >= config.min_iterations:
            converged = True
            break

    if converged and config.verbosity >= 2:
        print(
            f"CTMRG converged in {iteration} steps: conv_err={error:.3e}, "
            f"trunc_err={trunc_err:.3e}"
        )
    elif not converged and config.verbosity >= 1:
        print(
            f"CTMRG not converged after {iteration} steps: conv_err={error:.3e} "
            f"(tolerance {config.tolerance:.1e})"
        )

    info = CTMRGInfo(
        truncation_error=trunc_err,
        convergence_error=error,
        iterations=iteration,
        converged=converged,
        singular_values=spectra,
    )
    return env, info
