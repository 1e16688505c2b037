"""Dense tensor contraction via opt_einsum with the JAX backend.

All multi-tensor contractions in pepsjax go through :func:`contract`. The
contraction path is computed once per (subscripts, shapes) pair at the Python
level and cached; the contraction itself is executed with ``backend="jax"``
so it can be traced, jitted and differentiated.
"""

from __future__ import annotations

from functools import lru_cache

import jax
import opt_einsum


@lru_cache(maxsize=512)
def _contraction_path(
    subscripts: str,
    shapes: tuple[tuple[int, ...], ...],
    optimize: str,
) -> list[tuple[int, ...]]:
    """Optimal pairwise contraction order for the given operand shapes."""
    path, _ = opt_einsum.contract_path(
        subscripts, *shapes, optimize=optimize, shapes=True
    )
    return path


def contract(subscripts: str, *operands: jax.Array, optimize: str = "auto") -> jax.Array:
    """Contract dense arrays according to an einsum subscript string.

    Args:
        subscripts: Einsum subscript string (e.g. ``"ab,buc->auc"``).
        *operands:  JAX arrays (or tracers) matching the subscripts.
        optimize:   opt_einsum path optimizer ('auto', 'greedy', 'dp', ...).

    Returns:
        The contracted array.
    """
    shapes = tuple(tuple(op.shape) for op in operands)
    path = _contraction_path(subscripts, shapes, optimize)
    return opt_einsum.contract(subscripts, *operands, optimize=path, backend="jax")
