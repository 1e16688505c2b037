"""Shared fixtures for the PEPS-Jax test suite."""

import jax
import jax.numpy as jnp
import pytest

import pepsjax  # noqa: F401  (enables float64)
from pepsjax.algorithms.ctmrg import CTMRGConfig, converge_boundary
from pepsjax.core.states import CTMRGEnv, InfinitePEPS, random_ansatz, random_environment
from pepsjax.models.classical import classical_ising

# ------------------------------------------------------------------ #
# Random key fixtures                                                  #
# ------------------------------------------------------------------ #

@pytest.fixture
def rng():
    return jax.random.PRNGKey(42)


@pytest.fixture
def rng2():
    return jax.random.PRNGKey(99)


# ------------------------------------------------------------------ #
# Networks and environments                                            #
# ------------------------------------------------------------------ #

@pytest.fixture
def up_state():
    """D=1 product state |up> on every site with a trivial chi=1 environment."""
    A = jnp.array([1.0, 0.0]).reshape(1, 1, 1, 1, 2)
    ones = jnp.ones((1, 1))
    edge = jnp.ones((1, 1, 1))
    env = CTMRGEnv(ones, ones, ones, ones, edge, edge, edge, edge)
    return InfinitePEPS(A), env


@pytest.fixture(scope="module")
def random_peps_env():
    """Random D=2 PEPS with a converged chi=8 environment."""
    key_peps, key_env = jax.random.split(jax.random.PRNGKey(7))
    peps = random_ansatz(key_peps, 2, 2)
    env0 = random_environment(key_env, peps, 8)
    env, _ = converge_boundary(env0, peps, CTMRGConfig(tolerance=1e-10, max_iterations=300))
    return peps, env


@pytest.fixture(scope="module")
def ising_env():
    """Classical Ising model at beta=0.6 with a converged chi=8 environment."""
    ising = classical_ising(0.6)
    env0 = random_environment(jax.random.PRNGKey(3), ising.network, 8)
    env, info = converge_boundary(
        env0, ising.network, CTMRGConfig(tolerance=1e-9, max_iterations=500)
    )
    return ising, env, info
