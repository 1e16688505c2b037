"""Lattices, local operators and lattice models.

A :class:`LocalOperator` acts jointly on the physical legs of a set of
unit-cell coordinates. Its tensor carries the ket (output) legs first and the
bra (input) legs second, in the order of ``sites``:

    ``O[t_1, ..., t_n, s_1, ..., s_n] = <t_1 ... t_n| O |s_1 ... s_n>``

A :class:`LatticeModel` is an immutable sum of such terms per unit cell.
"""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Number

import jax
import jax.numpy as jnp
import numpy as np

Coordinate = tuple[int, int]


# ---------------------------------------------------------------------------
# Single-site spin operators
# ---------------------------------------------------------------------------


def spin_half_ops() -> dict[str, np.ndarray]:
    """Standard spin-1/2 single-site operators (d=2).

    Returns a dict with keys "Sz", "Sp", "Sm", "Id".
    """
    return {
        "Sz": np.array([[0.5, 0.0], [0.0, -0.5]], dtype=np.float64),
        "Sp": np.array([[0.0, 1.0], [0.0, 0.0]], dtype=np.float64),
        "Sm": np.array([[0.0, 0.0], [1.0, 0.0]], dtype=np.float64),
        "Id": np.eye(2, dtype=np.float64),
    }


def spin_one_ops() -> dict[str, np.ndarray]:
    """Standard spin-1 single-site operators (d=3).

    Basis ordering: |m=+1⟩, |m=0⟩, |m=-1⟩ → indices 0, 1, 2.
    Returns a dict with keys "Sz", "Sp", "Sm", "Id".
    """
    sq2 = np.sqrt(2.0)
    return {
        "Sz": np.diag([1.0, 0.0, -1.0]).astype(np.float64),
        "Sp": np.array(
            [[0.0, sq2, 0.0], [0.0, 0.0, sq2], [0.0, 0.0, 0.0]], dtype=np.float64
        ),
        "Sm": np.array(
            [[0.0, 0.0, 0.0], [sq2, 0.0, 0.0], [0.0, sq2, 0.0]], dtype=np.float64
        ),
        "Id": np.eye(3, dtype=np.float64),
    }


def spin_operators(spin: float = 0.5) -> dict[str, np.ndarray]:
    """Spin operators for ``spin`` in {1/2, 1}, keyed "Sz", "Sp", "Sm", "Id"."""
    if spin == 0.5:
        return spin_half_ops()
    if spin == 1:
        return spin_one_ops()
    raise ValueError(f"Unsupported spin {spin!r}; expected 0.5 or 1")


# ---------------------------------------------------------------------------
# Lattice
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InfiniteSquare:
    """Infinite square lattice with a single-site unit cell.

    Coordinates are ``(row, col)`` with rows increasing downwards and
    columns increasing to the right. All coordinates are identified modulo
    the unit cell.
    """

    unit_cell: tuple[int, int] = (1, 1)

    def __post_init__(self) -> None:
        if tuple(self.unit_cell) != (1, 1):
            raise ValueError(
                f"Only the 1x1 unit cell is supported, got {self.unit_cell}"
            )

    @property
    def num_sites(self) -> int:
        return self.unit_cell[0] * self.unit_cell[1]

    def sites(self) -> list[Coordinate]:
        rows, cols = self.unit_cell
        return [(r, c) for r in range(rows) for c in range(cols)]

    def nearest_neighbours(self) -> list[tuple[Coordinate, Coordinate]]:
        """Horizontal and vertical bonds emanating from each unit-cell site."""
        bonds = []
        for r, c in self.sites():
            bonds.append(((r, c), (r, c + 1)))
            bonds.append(((r, c), (r + 1, c)))
        return bonds

    def canonical(self, site: Coordinate) -> Coordinate:
        """Unit-cell representative of ``site``."""
        rows, cols = self.unit_cell
        return (site[0] % rows, site[1] % cols)


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _is_scalar(value) -> bool:
    if isinstance(value, Number):
        return True
    return isinstance(value, (jax.Array, np.ndarray)) and value.ndim == 0


@dataclass(frozen=True, eq=False)
class LocalOperator:
    """Operator acting on the physical legs at ``sites``.

    Attributes:
        sites:  Tuple of distinct ``(row, col)`` unit-cell coordinates.
        tensor: Array of shape ``(d,) * 2n`` -- ket legs in ``sites`` order,
                then bra legs in ``sites`` order.
    """

    sites: tuple[Coordinate, ...]
    tensor: jax.Array

    def __post_init__(self) -> None:
        sites = tuple((int(r), int(c)) for r, c in self.sites)
        if not sites:
            raise ValueError("LocalOperator needs at least one site")
        if len(set(sites)) != len(sites):
            raise ValueError(f"LocalOperator sites must be distinct, got {sites}")
        tensor = jnp.asarray(self.tensor)
        n = len(sites)
        if tensor.ndim != 2 * n:
            raise ValueError(
                f"Operator on {n} site(s) needs a rank-{2 * n} tensor, "
                f"got shape {tensor.shape}"
            )
        if len(set(tensor.shape)) != 1:
            raise ValueError(
                f"Operator legs must share one physical dimension, got {tensor.shape}"
            )
        object.__setattr__(self, "sites", sites)
        object.__setattr__(self, "tensor", tensor)

    @classmethod
    def from_matrix(cls, sites, matrix) -> LocalOperator:
        """Build from a ``(d^n, d^n)`` matrix in the Kronecker-product basis."""
        n = len(sites)
        matrix = jnp.asarray(matrix)
        d = round(matrix.shape[0] ** (1.0 / n))
        return cls(tuple(sites), matrix.reshape((d,) * (2 * n)))

    @property
    def physical_dimension(self) -> int:
        return self.tensor.shape[0]

    def permuted(self, sites) -> LocalOperator:
        """The same operator with its legs reordered to follow ``sites``."""
        sites = tuple(tuple(s) for s in sites)
        if set(sites) != set(self.sites) or len(sites) != len(self.sites):
            raise ValueError(f"Cannot permute operator on {self.sites} to {sites}")
        n = len(sites)
        order = [self.sites.index(s) for s in sites]
        perm = order + [n + i for i in order]
        return LocalOperator(sites, jnp.transpose(self.tensor, perm))

    def as_matrix(self) -> jax.Array:
        d = self.physical_dimension
        n = len(self.sites)
        return self.tensor.reshape(d**n, d**n)

    def __add__(self, other: LocalOperator) -> LocalOperator:
        if not isinstance(other, LocalOperator):
            return NotImplemented
        other = other.permuted(self.sites)
        return LocalOperator(self.sites, self.tensor + other.tensor)

    def __mul__(self, scalar: Number | jax.Array) -> LocalOperator:
        if not _is_scalar(scalar):
            return NotImplemented
        return LocalOperator(self.sites, scalar * self.tensor)

    __rmul__ = __mul__

    def __neg__(self) -> LocalOperator:
        return LocalOperator(self.sites, -self.tensor)


@dataclass(frozen=True, eq=False)
class LatticeModel:
    """Sum of local terms per unit cell.

    Attributes:
        lattice:            Lattice the terms live on.
        terms:              Tuple of :class:`LocalOperator`.
        physical_dimension: Local Hilbert space dimension shared by all terms.
    """

    lattice: InfiniteSquare
    terms: tuple[LocalOperator, ...]
    physical_dimension: int

    def __post_init__(self) -> None:
        terms = tuple(self.terms)
        if not terms:
            raise ValueError("LatticeModel needs at least one term")
        for term in terms:
            if term.physical_dimension != self.physical_dimension:
                raise ValueError(
                    f"Term on {term.sites} has physical dimension "
                    f"{term.physical_dimension}, expected {self.physical_dimension}"
                )
        object.__setattr__(self, "terms", terms)

    def __add__(self, other: LatticeModel) -> LatticeModel:
        if not isinstance(other, LatticeModel):
            return NotImplemented
        if other.physical_dimension != self.physical_dimension:
            raise ValueError("Cannot add models with different physical dimensions")
        return LatticeModel(self.lattice, self.terms + other.terms, self.physical_dimension)
