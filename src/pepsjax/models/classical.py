"""Classical 2D Ising model as an infinite partition-function network.

The partition function ``Z = sum_{s} prod_<ij> exp(beta J s_i s_j)`` is
rewritten as a network of rank-4 site tensors by splitting each bond weight
``t = q q`` with the symmetric matrix square root ``q`` and contracting one
factor into each leg of a Kronecker delta on the site spin:

    ``O[u, d, l, r] = sum_s q[s, u] q[s, d] q[s, l] q[s, r]``

Neighbouring tensors then share ``sum_x q[s, x] q[s', x] = t[s, s']``.
"""

from __future__ import annotations

from typing import NamedTuple

import jax
import jax.numpy as jnp

from pepsjax.core.states import InfinitePartitionFunction

_SPINS = (1.0, -1.0)


class ClassicalIsing(NamedTuple):
    """Ising partition function and its observable insertions.

    Attributes:
        network:       Partition-function network with site tensor ``O``.
        magnetization: Site tensor with the spin ``s`` inserted.
        energy:        Site tensor with the bond energies of the right and
                       down bonds inserted (energy per site).
    """

    network: InfinitePartitionFunction
    magnetization: jax.Array
    energy: jax.Array


def _symmetric_sqrt(t: jax.Array) -> tuple[jax.Array, jax.Array]:
    """Matrix square root and its inverse via eigendecomposition.

    Negative eigenvalues (antiferromagnetic or negative-temperature weights)
    yield NaN entries, which propagate to every derived quantity.
    """
    w, V = jnp.linalg.eigh(t)
    sqrt_w = jnp.sqrt(w)
    q = (V * sqrt_w[None, :]) @ V.T
    q_inv = (V / sqrt_w[None, :]) @ V.T
    return q, q_inv


def classical_ising(beta: float, J: float = 1.0) -> ClassicalIsing:
    """Build the 2D Ising partition function network at inverse temperature beta.

    Args:
        beta: Inverse temperature.
        J:    Nearest-neighbour coupling (``J > 0`` ferromagnet).

    Returns:
        :class:`ClassicalIsing` with the bare network and the magnetization
        and energy insertions sharing its ``(u, d, l, r)`` leg convention.
    """
    spins = jnp.array(_SPINS)
    ss = jnp.outer(spins, spins)
    t = jnp.exp(beta * J * ss)
    q, q_inv = _symmetric_sqrt(t)

    O = jnp.einsum("su,sd,sl,sr->udlr", q, q, q, q)
    M = jnp.einsum("s,su,sd,sl,sr->udlr", spins, q, q, q, q)

    # Bond-energy insertion: X q^T = t * E_bond on the shared bond.
    E_bond = -J * ss
    X = (t * E_bond) @ q_inv
    E = jnp.einsum("su,sd,sl,sr->udlr", q, X, q, q) + jnp.einsum(
        "su,sd,sl,sr->udlr", q, q, q, X
    )
    return ClassicalIsing(InfinitePartitionFunction(O), M, E)
