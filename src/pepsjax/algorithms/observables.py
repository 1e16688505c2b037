"""Observables from a converged CTMRG environment.

Local operators are evaluated on a strip of sites sandwiched between the
environment. A horizontal strip of length ``n`` reads

.. code-block::

    C1 — T1 — ... — T1 — C2
    |     |          |    |
    T4 —  a_1 — ... — a_n — T2
    |     |          |    |
    C4 — T3 — ... — T3 — C3

and a vertical strip is its transpose. Sites carrying an operator use the
double-layer tensor with open physical legs, all other sites (and the
normalization) the closed one. Operators must therefore act on sites of one
row or one column; coordinates are identified modulo the unit cell.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from string import ascii_uppercase
from typing import NamedTuple, Union

import jax
import jax.numpy as jnp
import numpy as np
import scipy.sparse.linalg

from pepsjax.core.contraction import contract
from pepsjax.core.states import (
    CTMRGEnv,
    InfinitePartitionFunction,
    InfinitePEPS,
    Network,
    build_double_layer,
    build_double_layer_open,
)
from pepsjax.models.operators import Coordinate, LatticeModel, LocalOperator

Insertion = Union[tuple[Coordinate, jax.Array], Mapping[Coordinate, jax.Array]]

# Transfer matrices up to this dimension are diagonalized densely.
DENSE_EIGEN_LIMIT = 1024


# ---------------------------------------------------------------------------
# Strip contraction
# ---------------------------------------------------------------------------


def _strip_layout(sites: Sequence[Coordinate]) -> tuple[bool, list[int]]:
    """Orientation and strip positions of ``sites``.

    Returns ``(horizontal, positions)`` where ``positions[i]`` is the offset
    of ``sites[i]`` along the strip.
    """
    rows = [r for r, _ in sites]
    cols = [c for _, c in sites]
    if len(set(rows)) == 1:
        c0 = min(cols)
        return True, [c - c0 for c in cols]
    if len(set(cols)) == 1:
        r0 = min(rows)
        return False, [r - r0 for r in rows]
    raise ValueError(
        f"Operator sites {list(sites)} must lie in a single row or a single column"
    )


def _contract_strip(
    env: CTMRGEnv,
    columns: Sequence[jax.Array],
    horizontal: bool,
) -> jax.Array:
    """Contract a strip of rank-4 (closed) or rank-6 (open) site tensors.

    Open physical legs are kept in strip order as ``(ket, bra)`` pairs.
    """
    C1, C2, C3, C4, T1, T2, T3, T4 = env
    if horizontal:
        acc = contract("ab,alg,gj->blj", C1, T4, C4)
    else:
        acc = contract("ab,buc,ce->aue", C1, T1, C2)

    open_letters = ""
    letters = iter(ascii_uppercase)
    for site in columns:
        if site.ndim == 6:
            new = next(letters) + next(letters)
            site_sub = "udlr" + new
        else:
            new = ""
            site_sub = "udlr"
        if horizontal:
            subscripts = f"blj{open_letters},buc,{site_sub},jdk->crk{open_letters}{new}"
            acc = contract(subscripts, acc, T1, site, T3)
        else:
            subscripts = f"aue{open_letters},alg,{site_sub},erm->gdm{open_letters}{new}"
            acc = contract(subscripts, acc, T4, site, T2)
        open_letters += new

    if horizontal:
        closing = contract("ce,erm,mk->crk", C2, T2, C3)
        return contract(f"crk{open_letters},crk->{open_letters}", acc, closing)
    closing = contract("gj,jdk,mk->gdm", C4, T3, C3)
    return contract(f"gdm{open_letters},gdm->{open_letters}", acc, closing)


def _site_tensor(network: Network, site: Coordinate) -> jax.Array:
    # 1x1 unit cell: every coordinate maps onto the same tensor.
    return network.tensor


def reduced_density_matrix(
    peps: InfinitePEPS,
    env: CTMRGEnv,
    sites: Sequence[Coordinate],
) -> jax.Array:
    """Reduced density matrix on sites of one row or one column.

    Args:
        peps:  The ansatz.
        env:   Converged environment.
        sites: Distinct coordinates in a single row or column.

    Returns:
        ``rho`` of shape ``(d,) * 2n`` with ket legs in ``sites`` order
        followed by bra legs, normalized to unit trace.
    """
    sites = [tuple(s) for s in sites]
    if len(set(sites)) != len(sites):
        raise ValueError(f"Sites must be distinct, got {sites}")
    horizontal, positions = _strip_layout(sites)

    A = _site_tensor(peps, sites[0])
    a = build_double_layer(A)
    a_open = build_double_layer_open(A)
    length = max(positions) + 1
    columns = [a] * length
    for p in positions:
        columns[p] = a_open
    rho = _contract_strip(env, columns, horizontal)

    # Strip order -> sites order, kets first then bras.
    n = len(sites)
    strip_rank = {p: i for i, p in enumerate(sorted(positions))}
    order = [strip_rank[p] for p in positions]
    perm = [2 * i for i in order] + [2 * i + 1 for i in order]
    rho = jnp.transpose(rho, perm)

    d = A.shape[4]
    mat = rho.reshape(d**n, d**n)
    mat = 0.5 * (mat + mat.conj().T)
    mat = mat / jnp.trace(mat)
    return mat.reshape((d,) * (2 * n))


def _operator_expectation(peps: InfinitePEPS, env: CTMRGEnv, op: LocalOperator) -> jax.Array:
    rho = reduced_density_matrix(peps, env, op.sites)
    n = len(op.sites)
    # <O> = sum rho[s, t] O[t, s]
    O = jnp.transpose(op.tensor, list(range(n, 2 * n)) + list(range(n)))
    return jnp.sum(rho * O)


def _insertion_expectation(
    network: InfinitePartitionFunction,
    env: CTMRGEnv,
    insertion: Insertion,
) -> jax.Array:
    if isinstance(insertion, Mapping):
        items = [(tuple(site), tensor) for site, tensor in insertion.items()]
    else:
        site, tensor = insertion
        items = [(tuple(site), tensor)]
    sites = [site for site, _ in items]
    horizontal, positions = _strip_layout(sites)

    O = network.tensor
    length = max(positions) + 1
    bare = [O] * length
    inserted = list(bare)
    for p, (_, tensor) in zip(positions, items):
        inserted[p] = jnp.asarray(tensor)
    return _contract_strip(env, inserted, horizontal) / _contract_strip(env, bare, horizontal)


def expectation_value(
    network: Network,
    operator: LocalOperator | LatticeModel | Insertion,
    env: CTMRGEnv,
) -> jax.Array:
    """Expectation value of a local operator against a converged environment.

    Args:
        network:  :class:`InfinitePEPS` or :class:`InfinitePartitionFunction`.
        operator: For a PEPS, a :class:`LocalOperator` or a whole
                  :class:`LatticeModel` (sum over its terms). For a partition
                  function, an insertion ``(site, tensor)`` or a mapping
                  ``{site: tensor}`` replacing the site tensors at those
                  coordinates; the result is normalized by the bare network.
        env:      Converged environment.

    Returns:
        Scalar expectation value (per unit cell for a LatticeModel).
    """
    if isinstance(network, InfinitePEPS):
        if isinstance(operator, LatticeModel):
            return sum(_operator_expectation(network, env, term) for term in operator.terms)
        if isinstance(operator, LocalOperator):
            return _operator_expectation(network, env, operator)
        raise TypeError(
            f"A PEPS expectation value needs a LocalOperator or LatticeModel, "
            f"got {type(operator).__name__}"
        )
    if isinstance(network, InfinitePartitionFunction):
        if isinstance(operator, (LocalOperator, LatticeModel)):
            raise TypeError("Partition functions take site-tensor insertions, not operators")
        return _insertion_expectation(network, env, operator)
    raise TypeError(f"Unsupported network type: {type(network).__name__}")


def energy_per_site(peps: InfinitePEPS, env: CTMRGEnv, model: LatticeModel) -> jax.Array:
    """Real part of the model energy per site (differentiable)."""
    return jnp.real(expectation_value(peps, model, env)) / model.lattice.num_sites


# ---------------------------------------------------------------------------
# Partition-function value
# ---------------------------------------------------------------------------


def network_value(network: Network, env: CTMRGEnv) -> jax.Array:
    """Per-site value of the infinite network.

    ``Z_site * Z_corners / (Z_horizontal * Z_vertical)``: the 3x3 cluster
    with the site, the bare 2x2 corner loop and the two 2x3 / 3x2 clusters
    without the site. For a partition function this is ``exp(-beta f)``.
    """
    C1, C2, C3, C4, T1, T2, T3, T4 = env
    if isinstance(network, InfinitePEPS):
        a = build_double_layer(network.tensor)
    else:
        a = network.tensor
    z_site = contract("ab,buc,ce,alg,udlr,erm,gj,jdk,mk->", C1, T1, C2, T4, a, T2, C4, T3, C3)
    z_corners = contract("ab,be,ek,ak->", C1, C2, C3, C4)
    z_h = contract("ab,buc,ce,aj,juk,ek->", C1, T1, C2, C4, T3, C3)
    z_v = contract("ab,alg,gj,be,elm,mj->", C1, T4, C4, C2, T2, C3)
    return z_site * z_corners / (z_h * z_v)


# ---------------------------------------------------------------------------
# Correlation length
# ---------------------------------------------------------------------------


class CorrelationLength(NamedTuple):
    """Correlation lengths and normalized transfer-matrix spectra.

    Attributes:
        xi_h:       Horizontal correlation length. ``nan`` when the transfer
                    matrix has a single eigenvalue (``chi = 1``), ``0`` when
                    every subleading eigenvalue vanishes.
        xi_v:       Same for the vertical direction.
        spectrum_h: Leading eigenvalues of the horizontal transfer matrix,
                    sorted by descending magnitude, normalized to ``1``.
        spectrum_v: Same for the vertical transfer matrix.
    """

    xi_h: float
    xi_v: float
    spectrum_h: np.ndarray
    spectrum_v: np.ndarray


def _transfer_spectrum(
    T_a: np.ndarray,
    T_b: np.ndarray,
    subscripts: str,
    num_values: int,
    dense_limit: int = DENSE_EIGEN_LIMIT,
) -> np.ndarray:
    """Leading eigenvalues of ``E[(x, y), (x', y')] = sum_m T_a T_b``."""
    chi_a, chi_b = T_a.shape[0], T_b.shape[0]
    n = chi_a * chi_b
    if n <= dense_limit or num_values >= n - 1:
        E = np.einsum(subscripts, T_a, T_b).reshape(n, -1)
        vals = np.linalg.eigvals(E)
    else:
        def matvec(v):
            v = v.reshape(T_a.shape[2], T_b.shape[2])
            return np.einsum("xmy,amb,yb->xa", T_a, T_b, v).ravel()

        op = scipy.sparse.linalg.LinearOperator((n, n), matvec=matvec, dtype=T_a.dtype)
        vals = scipy.sparse.linalg.eigs(op, k=num_values, which="LM", return_eigenvectors=False)
    vals = vals[np.argsort(-np.abs(vals), kind="stable")][:num_values]
    return vals / vals[0]


def _xi(spectrum: np.ndarray) -> float:
    if len(spectrum) < 2:
        return float("nan")
    if abs(spectrum[1]) == 0:
        return 0.0
    ratio = abs(spectrum[1])
    if ratio >= 1.0:
        return float("inf")
    return float(-1.0 / np.log(ratio))


def correlation_length(
    network: Network,
    env: CTMRGEnv,
    num_values: int = 4,
) -> CorrelationLength:
    """Correlation lengths from the environment transfer matrices.

    The horizontal transfer matrix joins the top and bottom edges,
    ``E_h[(b, j), (c, k)] = sum_u T1[b, u, c] T3[j, u, k]``, the vertical one
    the left and right edges, ``E_v[(a, e), (g, m)] = sum_l T4[a, l, g] T2[e, l, m]``.
    With ``lambda_0, lambda_1`` the two leading eigenvalues,
    ``xi = -1 / log|lambda_1 / lambda_0|``.

    Args:
        network:    The contracted network (only its type is relevant).
        env:        Converged environment.
        num_values: Number of eigenvalues reported per direction.
    """
    if num_values < 2:
        raise ValueError(f"num_values must be >= 2, got {num_values}")
    _, _, _, _, T1, T2, T3, T4 = (np.asarray(x) for x in env)
    spectrum_h = _transfer_spectrum(T1, T3, "buc,juk->bjck", num_values)
    spectrum_v = _transfer_spectrum(T4, T2, "alg,elm->aegm", num_values)
    return CorrelationLength(_xi(spectrum_h), _xi(spectrum_v), spectrum_h, spectrum_v)
