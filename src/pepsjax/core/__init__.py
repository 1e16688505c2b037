"""Core data structures: ansatz, partition function, boundary environment."""

from pepsjax.core.contraction import contract
from pepsjax.core.states import (
    CTMRGEnv,
    InfinitePartitionFunction,
    InfinitePEPS,
    boundary_tensor,
    build_double_layer,
    build_double_layer_open,
    random_ansatz,
    random_environment,
)

__all__ = [
    "contract",
    "CTMRGEnv",
    "InfinitePEPS",
    "InfinitePartitionFunction",
    "boundary_tensor",
    "build_double_layer",
    "build_double_layer_open",
    "random_ansatz",
    "random_environment",
]
