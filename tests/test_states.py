"""Tests for the network containers and the initial-guess constructors."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

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


class TestInfinitePEPS:
    def test_properties(self):
        peps = InfinitePEPS(jnp.zeros((3, 3, 3, 3, 2)))
        assert peps.bond_dimension == 3
        assert peps.physical_dimension == 2

    def test_wrong_rank_raises(self):
        with pytest.raises(ValueError, match="5 legs"):
            InfinitePEPS(jnp.zeros((2, 2, 2, 2)))

    def test_unequal_bonds_raise(self):
        with pytest.raises(ValueError, match="one bond dimension"):
            InfinitePEPS(jnp.zeros((2, 2, 3, 2, 2)))


class TestInfinitePartitionFunction:
    def test_bond_dimension(self):
        assert InfinitePartitionFunction(jnp.ones((2, 2, 2, 2))).bond_dimension == 2

    def test_wrong_rank_raises(self):
        with pytest.raises(ValueError, match="4 legs"):
            InfinitePartitionFunction(jnp.ones((2, 2, 2, 2, 2)))

    def test_unequal_legs_raise(self):
        with pytest.raises(ValueError):
            InfinitePartitionFunction(jnp.ones((2, 2, 3, 2)))


class TestCTMRGEnv:
    def test_named_tuple_fields(self):
        ones = jnp.ones((3, 3))
        edge = jnp.ones((3, 4, 3))
        env = CTMRGEnv(ones, ones, ones, ones, edge, edge, edge, edge)
        assert env._fields == ("C1", "C2", "C3", "C4", "T1", "T2", "T3", "T4")
        assert env.chi == 3

    def test_is_pytree(self):
        ones = jnp.ones((2, 2))
        edge = jnp.ones((2, 1, 2))
        env = CTMRGEnv(ones, ones, ones, ones, edge, edge, edge, edge)
        doubled = jax.tree_util.tree_map(lambda x: 2 * x, env)
        assert isinstance(doubled, CTMRGEnv)
        assert jnp.allclose(doubled.T3, 2.0)


class TestBuildDoubleLayer:
    def test_output_shape(self, rng):
        A = jax.random.normal(rng, (2, 2, 2, 2, 3))
        assert build_double_layer(A).shape == (4, 4, 4, 4)

    def test_open_shape(self, rng):
        A = jax.random.normal(rng, (2, 2, 2, 2, 3))
        assert build_double_layer_open(A).shape == (4, 4, 4, 4, 3, 3)

    def test_trace_of_open_equals_closed(self, rng):
        A = jax.random.normal(rng, (2, 2, 2, 2, 3))
        closed = build_double_layer(A)
        traced = jnp.einsum("udlrss->udlr", build_double_layer_open(A))
        assert jnp.allclose(closed, traced, atol=1e-12)

    def test_norm_network_is_nonnegative(self, rng):
        """Tracing all ket/bra pairs on a 1x1 torus gives <psi|psi> >= 0."""
        A = jax.random.normal(rng, (2, 2, 2, 2, 2))
        a = build_double_layer(A)
        assert float(jnp.einsum("uull->", a)) >= 0.0

    def test_boundary_tensor(self, rng):
        A = jax.random.normal(rng, (2, 2, 2, 2, 2))
        assert jnp.allclose(boundary_tensor(InfinitePEPS(A)), build_double_layer(A))
        O = jnp.ones((2, 2, 2, 2))
        assert boundary_tensor(InfinitePartitionFunction(O)) is O

    def test_boundary_tensor_rejects_other_types(self):
        with pytest.raises(TypeError):
            boundary_tensor(jnp.ones((2, 2, 2, 2)))


class TestRandomAnsatz:
    def test_shape_and_norm(self, rng):
        peps = random_ansatz(rng, 2, 3)
        assert peps.tensor.shape == (3, 3, 3, 3, 2)
        assert peps.tensor.dtype == jnp.float64
        assert float(jnp.linalg.norm(peps.tensor)) == pytest.approx(1.0)

    def test_same_key_is_bit_identical(self, rng):
        a = random_ansatz(rng, 2, 2)
        b = random_ansatz(rng, 2, 2)
        np.testing.assert_array_equal(np.asarray(a.tensor), np.asarray(b.tensor))

    def test_different_keys_differ(self, rng, rng2):
        a = random_ansatz(rng, 2, 2)
        b = random_ansatz(rng2, 2, 2)
        assert not jnp.allclose(a.tensor, b.tensor)

    def test_complex_dtype(self, rng):
        peps = random_ansatz(rng, 2, 2, dtype=jnp.complex128)
        assert jnp.iscomplexobj(peps.tensor)

    @pytest.mark.parametrize("local_dim, bond_dim", [(0, 2), (2, 0), (-1, 2), (2, 1.5)])
    def test_invalid_dimensions_raise(self, rng, local_dim, bond_dim):
        with pytest.raises(ValueError):
            random_ansatz(rng, local_dim, bond_dim)


class TestRandomEnvironment:
    def test_shapes_for_peps(self, rng):
        peps = random_ansatz(rng, 2, 2)
        env = random_environment(rng, peps, 5)
        for C in env[:4]:
            assert C.shape == (5, 5)
        for T in env[4:]:
            assert T.shape == (5, 4, 5)

    def test_shapes_for_partition_function(self, rng):
        network = InfinitePartitionFunction(jnp.ones((2, 2, 2, 2)))
        env = random_environment(rng, network, 3)
        assert env.T1.shape == (3, 2, 3)

    def test_tensors_normalized(self, rng):
        env = random_environment(rng, random_ansatz(rng, 2, 2), 4)
        for x in env:
            assert float(jnp.linalg.norm(x)) == pytest.approx(1.0)

    def test_same_key_is_bit_identical(self, rng):
        """Seeding once reproduces both the ansatz and the environment."""
        def build():
            key_peps, key_env = jax.random.split(jax.random.PRNGKey(123))
            peps = random_ansatz(key_peps, 2, 2)
            return peps, random_environment(key_env, peps, 6)

        (p1, e1), (p2, e2) = build(), build()
        np.testing.assert_array_equal(np.asarray(p1.tensor), np.asarray(p2.tensor))
        for x, y in zip(e1, e2):
            np.testing.assert_array_equal(np.asarray(x), np.asarray(y))

    def test_independent_of_network_entries(self, rng):
        a = random_environment(rng, InfinitePartitionFunction(jnp.ones((2, 2, 2, 2))), 3)
        b = random_environment(rng, InfinitePartitionFunction(jnp.zeros((2, 2, 2, 2))), 3)
        for x, y in zip(a, b):
            np.testing.assert_array_equal(np.asarray(x), np.asarray(y))

    def test_invalid_dimension_raises(self, rng):
        with pytest.raises(ValueError, match="environment_dim"):
            random_environment(rng, random_ansatz(rng, 2, 2), 0)
