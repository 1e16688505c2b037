"""Lattice models and partition-function networks."""

from pepsjax.models.classical import ClassicalIsing, classical_ising
from pepsjax.models.operators import (
    InfiniteSquare,
    LatticeModel,
    LocalOperator,
    spin_half_ops,
    spin_one_ops,
    spin_operators,
)
from pepsjax.models.quantum import (
    construct_model,
    heisenberg_xyz,
    transverse_field_ising,
)

__all__ = [
    "ClassicalIsing",
    "classical_ising",
    "InfiniteSquare",
    "LatticeModel",
    "LocalOperator",
    "spin_half_ops",
    "spin_one_ops",
    "spin_operators",
    "construct_model",
    "heisenberg_xyz",
    "transverse_field_ising",
]
