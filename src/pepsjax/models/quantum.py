"""Quantum lattice Hamiltonians on the infinite square lattice.

All operators are kept real: ``Sx Sx`` and ``Sy Sy`` are written through the
ladder operators,

    ``Sx Sx = (S+ + S-)(S+ + S-) / 4``,  ``Sy Sy = -(S+ - S-)(S+ - S-) / 4``,

so the iPEPS can be optimized over real tensors.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping

import numpy as np

from pepsjax.models.operators import (
    InfiniteSquare,
    LatticeModel,
    LocalOperator,
    spin_operators,
)


def _bond_matrix(ops: dict[str, np.ndarray], Jx: float, Jy: float, Jz: float) -> np.ndarray:
    Sp, Sm, Sz = ops["Sp"], ops["Sm"], ops["Sz"]
    Sx = Sp + Sm
    iSy = Sp - Sm  # i * 2 Sy, real
    SxSx = 0.25 * np.kron(Sx, Sx)
    SySy = -0.25 * np.kron(iSy, iSy)
    SzSz = np.kron(Sz, Sz)
    return Jx * SxSx + Jy * SySy + Jz * SzSz


def heisenberg_xyz(
    lattice: InfiniteSquare | None = None,
    Jx: float = -1.0,
    Jy: float = 1.0,
    Jz: float = -1.0,
    spin: float = 0.5,
) -> LatticeModel:
    """XYZ Heisenberg model ``H = sum_<ij> Jx SxSx + Jy SySy + Jz SzSz``.

    The default couplings ``(-1, 1, -1)`` are the isotropic antiferromagnet
    after rotating every other site by pi around the y axis. The rotated
    Neel state is translation invariant, so a 1x1 unit cell suffices.

    Args:
        lattice: Lattice; defaults to :class:`InfiniteSquare`.
        Jx, Jy, Jz: Exchange couplings.
        spin:    0.5 or 1.

    Returns:
        LatticeModel with one horizontal and one vertical bond term per site.
    """
    lattice = InfiniteSquare() if lattice is None else lattice
    ops = spin_operators(spin)
    h = _bond_matrix(ops, Jx, Jy, Jz)
    terms = tuple(
        LocalOperator.from_matrix(bond, h) for bond in lattice.nearest_neighbours()
    )
    return LatticeModel(lattice, terms, ops["Id"].shape[0])


def transverse_field_ising(
    lattice: InfiniteSquare | None = None,
    J: float = 1.0,
    g: float = 1.0,
) -> LatticeModel:
    """Transverse-field Ising model ``H = -J sum_<ij> Z_i Z_j - g sum_i X_i``.

    Uses Pauli matrices. The field term is a single-site operator, the
    coupling a two-site operator on each nearest-neighbour bond.
    """
    lattice = InfiniteSquare() if lattice is None else lattice
    Z = np.diag([1.0, -1.0])
    X = np.array([[0.0, 1.0], [1.0, 0.0]])
    zz = -J * np.kron(Z, Z)
    terms = [LocalOperator.from_matrix(bond, zz) for bond in lattice.nearest_neighbours()]
    terms += [LocalOperator.from_matrix((site,), -g * X) for site in lattice.sites()]
    return LatticeModel(lattice, tuple(terms), 2)


_MODELS: dict[str, Callable[..., LatticeModel]] = {
    "heisenberg": heisenberg_xyz,
    "heisenberg_xyz": heisenberg_xyz,
    "transverse_field_ising": transverse_field_ising,
}

_LATTICES: dict[str, Callable[[], InfiniteSquare]] = {
    "square": InfiniteSquare,
}


def construct_model(
    lattice_spec: InfiniteSquare | str,
    couplings: Mapping[str, float] | None = None,
    name: str = "heisenberg",
) -> LatticeModel:
    """Build a registered lattice model from named couplings.

    Args:
        lattice_spec: A lattice instance or a registered lattice name
                      (``"square"``).
        couplings:    Keyword couplings forwarded to the model constructor,
                      e.g. ``{"Jx": -1, "Jy": 1, "Jz": -1}``.
        name:         Registered model name.

    Raises:
        ValueError: Unknown lattice or model name, or unknown coupling.
    """
    if isinstance(lattice_spec, str):
        if lattice_spec not in _LATTICES:
            raise ValueError(
                f"Unknown lattice {lattice_spec!r}; available: {sorted(_LATTICES)}"
            )
        lattice = _LATTICES[lattice_spec]()
    else:
        lattice = lattice_spec
    if name not in _MODELS:
        raise ValueError(f"Unknown model {name!r}; available: {sorted(_MODELS)}")
    try:
        return _MODELS[name](lattice, **dict(couplings or {}))
    except TypeError as err:
        raise ValueError(f"Invalid couplings for model {name!r}: {err}") from err
