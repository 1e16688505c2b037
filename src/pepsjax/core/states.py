"""Infinite tensor networks and their CTMRG boundary environment.

Two kinds of translation-invariant networks with a single-site unit cell are
supported:

- :class:`InfinitePEPS` -- a quantum ansatz with site tensor ``A[u, d, l, r, s]``
  (up, down, left, right virtual legs and one physical leg). Its norm network
  is built from the double-layer tensor ``a = sum_s A[..., s] * conj(A[..., s])``
  with ket/bra legs fused per direction.
- :class:`InfinitePartitionFunction` -- a classical network with site tensor
  ``O[u, d, l, r]`` and no physical leg.

Both are contracted by the same CTMRG machinery via :func:`boundary_tensor`.
"""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Integral
from typing import NamedTuple, Union

import jax
import jax.numpy as jnp


class CTMRGEnv(NamedTuple):
    """The 8 CTMRG environment tensors (4 corners + 4 edge tensors).

    Corner convention (looking at a single site):

    .. code-block::

        C1 --- T1 --- C2
        |      |      |
        T4 --- a  --- T2
        |      |      |
        C4 --- T3 --- C3

    Leg ordering:
        C1[t4, t1]  C2[t1, t2]  C3[t2, t3]  C4[t4, t3]

        T1[c1, u, c2]  T2[c2, r, c3]  T3[c4, d, c3]  T4[c1, l, c4]

    where ``tN`` / ``cN`` name the neighbouring environment tensor a leg
    connects to and ``u, r, d, l`` the site leg an edge tensor connects to.
    Being a NamedTuple, the environment is a JAX pytree.
    """

    C1: jax.Array  # shape (chi, chi)
    C2: jax.Array  # shape (chi, chi)
    C3: jax.Array  # shape (chi, chi)
    C4: jax.Array  # shape (chi, chi)
    T1: jax.Array  # shape (chi, D2, chi) -- top edge
    T2: jax.Array  # shape (chi, D2, chi) -- right edge
    T3: jax.Array  # shape (chi, D2, chi) -- bottom edge
    T4: jax.Array  # shape (chi, D2, chi) -- left edge

    @property
    def chi(self) -> int:
        """Environment bond dimension."""
        return self.C1.shape[0]


@dataclass(frozen=True)
class InfinitePEPS:
    """Translation-invariant PEPS with a 1x1 unit cell.

    Attributes:
        tensor: Site tensor ``A[u, d, l, r, s]`` of shape ``(D, D, D, D, d)``.
    """

    tensor: jax.Array

    def __post_init__(self) -> None:
        shape = tuple(self.tensor.shape)
        if len(shape) != 5:
            raise ValueError(
                f"PEPS site tensor must have 5 legs (u, d, l, r, s), got shape {shape}"
            )
        if len(set(shape[:4])) != 1:
            raise ValueError(
                f"PEPS virtual legs must share one bond dimension, got {shape[:4]}"
            )

    @property
    def bond_dimension(self) -> int:
        return self.tensor.shape[0]

    @property
    def physical_dimension(self) -> int:
        return self.tensor.shape[4]


@dataclass(frozen=True)
class InfinitePartitionFunction:
    """Translation-invariant classical network with a 1x1 unit cell.

    Attributes:
        tensor: Site tensor ``O[u, d, l, r]`` of shape ``(D, D, D, D)``.
    """

    tensor: jax.Array

    def __post_init__(self) -> None:
        shape = tuple(self.tensor.shape)
        if len(shape) != 4:
            raise ValueError(
                f"Partition function tensor must have 4 legs (u, d, l, r), got shape {shape}"
            )
        if len(set(shape)) != 1:
            raise ValueError(
                f"Partition function legs must share one bond dimension, got {shape}"
            )

    @property
    def bond_dimension(self) -> int:
        return self.tensor.shape[0]


Network = Union[InfinitePEPS, InfinitePartitionFunction]


def build_double_layer(A: jax.Array) -> jax.Array:
    """Build the double-layer tensor from a PEPS site tensor.

    ``a[uU, dD, lL, rR] = sum_s A[u, d, l, r, s] * conj(A[U, D, L, R, s])``
    with ket/bra pairs fused per spatial direction.

    Returns:
        Array of shape ``(D^2, D^2, D^2, D^2)``.
    """
    D = A.shape[0]
    a = jnp.einsum("udlrs,UDLRs->uUdDlLrR", A, jnp.conj(A))
    return a.reshape(D**2, D**2, D**2, D**2)


def build_double_layer_open(A: jax.Array) -> jax.Array:
    """Double-layer tensor with physical indices left open.

    Returns ``a_open`` with shape ``(D^2, D^2, D^2, D^2, d, d)`` where the
    last two axes are the ket and bra physical indices.
    """
    D = A.shape[0]
    d = A.shape[4]
    ao = jnp.einsum("udlrs,UDLRt->uUdDlLrRst", A, jnp.conj(A))
    return ao.reshape(D**2, D**2, D**2, D**2, d, d)


def boundary_tensor(network: Network) -> jax.Array:
    """The rank-4 tensor the boundary environment is contracted against."""
    if isinstance(network, InfinitePEPS):
        return build_double_layer(network.tensor)
    if isinstance(network, InfinitePartitionFunction):
        return network.tensor
    raise TypeError(f"Unsupported network type: {type(network).__name__}")


def _check_positive(name: str, value: int) -> None:
    if not isinstance(value, Integral) or value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")


def random_ansatz(
    key: jax.Array,
    local_dim: int,
    bond_dim: int,
    dtype=jnp.float64,
) -> InfinitePEPS:
    """Random PEPS with i.i.d. normal entries, normalized to unit norm.

    The same ``key`` always produces a bit-identical tensor.

    Args:
        key:       JAX PRNG key.
        local_dim: Physical (local Hilbert space) dimension ``d``.
        bond_dim:  Virtual bond dimension ``D``.
        dtype:     Element type of the site tensor.
    """
    _check_positive("local_dim", local_dim)
    _check_positive("bond_dim", bond_dim)
    D = bond_dim
    A = jax.random.normal(key, (D, D, D, D, local_dim), dtype=dtype)
    return InfinitePEPS(A / jnp.linalg.norm(A))


def random_environment(
    key: jax.Array,
    network: Network,
    environment_dim: int,
    dtype=jnp.float64,
) -> CTMRGEnv:
    """Random CTMRG environment of dimension ``environment_dim``.

    Only the virtual leg dimension of ``network`` is used; the entries are
    independent of the network tensor. Each tensor is normalized to unit
    Frobenius norm.

    Args:
        key:             JAX PRNG key.
        network:         Network the environment will be contracted against.
        environment_dim: Environment bond dimension ``chi``.
        dtype:           Element type of the environment tensors.
    """
    _check_positive("environment_dim", environment_dim)
    chi = environment_dim
    D2 = boundary_tensor(network).shape[0]
    keys = jax.random.split(key, 8)
    shapes = [(chi, chi)] * 4 + [(chi, D2, chi)] * 4
    tensors = []
    for k, shape in zip(keys, shapes):
        t = jax.random.normal(k, shape, dtype=dtype)
        tensors.append(t / jnp.linalg.norm(t))
    return CTMRGEnv(*tensors)
