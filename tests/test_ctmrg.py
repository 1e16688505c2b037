"""Tests for the CTMRG boundary contraction."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from pepsjax.algorithms.ctmrg import (
    CTMRGConfig,
    CTMRGInfo,
    _corner_spectra,
    _projectors,
    _spectrum_distance,
    converge_boundary,
    ctmrg_step,
)
from pepsjax.core.states import (
    CTMRGEnv,
    InfinitePartitionFunction,
    boundary_tensor,
    random_ansatz,
    random_environment,
)
from pepsjax.models.classical import classical_ising


class TestCTMRGConfig:
    def test_default_values(self):
        config = CTMRGConfig()
        assert config.tolerance == 1e-8
        assert config.max_iterations == 100
        assert config.truncation_scheme == "fixedspace"
        assert config.max_dimension is None
        assert config.verbosity == 1

    def test_hashable(self):
        assert hash(CTMRGConfig()) == hash(CTMRGConfig())

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"tolerance": 0.0},
            {"tolerance": -1e-8},
            {"max_iterations": 0},
            {"min_iterations": 0},
            {"min_iterations": 5, "max_iterations": 4},
            {"truncation_scheme": "adaptive"},
            {"truncation_tolerance": 0.0},
            {"max_dimension": 0},
            {"projector_cutoff": 1.0},
        ],
    )
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ValueError):
            CTMRGConfig(**kwargs)


class TestProjectors:
    def test_full_rank_projectors_resolve_identity(self):
        """Without truncation Pt P^T is the identity on the cut."""
        k1, k2 = jax.random.split(jax.random.PRNGKey(0))
        R = jax.random.normal(k1, (6, 6))
        Rt = jax.random.normal(k2, (6, 6))
        P, Pt, err = _projectors(R, Rt, 6, CTMRGConfig())
        assert jnp.allclose(Pt @ P.T, jnp.eye(6), atol=1e-8)
        assert float(err) == pytest.approx(0.0, abs=1e-7)

    def test_truncated_projectors_give_best_low_rank_product(self):
        """Inserting the pair on the cut yields the rank-chi SVD truncation."""
        k1, k2 = jax.random.split(jax.random.PRNGKey(1))
        R = jax.random.normal(k1, (8, 5))
        Rt = jax.random.normal(k2, (8, 5))
        P, Pt, err = _projectors(R, Rt, 3, CTMRGConfig())
        assert P.shape == (5, 3)
        assert Pt.shape == (5, 3)
        U, s, Vh = jnp.linalg.svd(Rt @ R.T, full_matrices=False)
        best = (U[:, :3] * s[None, :3]) @ Vh[:3]
        assert jnp.allclose(Rt @ P @ Pt.T @ R.T, best, atol=1e-8)
        assert 0.0 < float(err) < 1.0


class TestCTMRGStep:
    def test_fixedspace_preserves_shapes(self, rng):
        peps = random_ansatz(rng, 2, 2)
        env = random_environment(rng, peps, 5)
        new_env, trunc = ctmrg_step(boundary_tensor(peps), env, CTMRGConfig())
        for old, new in zip(env, new_env):
            assert old.shape == new.shape
        assert jnp.isfinite(trunc)

    def test_output_normalized(self, rng):
        peps = random_ansatz(rng, 2, 2)
        env = random_environment(rng, peps, 4)
        new_env, _ = ctmrg_step(boundary_tensor(peps), env, CTMRGConfig())
        for x in new_env:
            assert float(jnp.linalg.norm(x)) == pytest.approx(1.0)

    def test_truncerr_respects_max_dimension(self, rng):
        ising = classical_ising(0.6)
        env = random_environment(rng, ising.network, 4)
        config = CTMRGConfig(truncation_scheme="truncerr", max_dimension=6)
        new_env, _ = ctmrg_step(ising.network.tensor, env, config)
        for C in new_env[:4]:
            assert max(C.shape) <= 6


class TestConvergeBoundary:
    def test_returns_env_and_info(self, ising_env):
        _, env, info = ising_env
        assert isinstance(env, CTMRGEnv)
        assert isinstance(info, CTMRGInfo)
        assert info.converged
        assert info.convergence_error < 1e-9
        assert len(info.singular_values) == 4

    def test_fixed_point_idempotence(self, ising_env):
        """Re-running on a converged environment changes it by less than the tolerance."""
        ising, env, _ = ising_env
        config = CTMRGConfig(tolerance=1e-8, min_iterations=1)
        env2, info = converge_boundary(env, ising.network, config)
        assert info.converged
        assert info.iterations == 1
        assert info.convergence_error < config.tolerance

    def test_spectra_match_environment(self, ising_env):
        _, env, info = ising_env
        s = np.linalg.svd(np.asarray(env.C1), compute_uv=False)
        np.testing.assert_allclose(info.singular_values[0], s / np.linalg.norm(s), atol=1e-12)

    def test_non_convergence_is_reported(self, rng, capsys):
        ising = classical_ising(0.44)
        env = random_environment(rng, ising.network, 4)
        config = CTMRGConfig(tolerance=1e-14, max_iterations=2, min_iterations=1)
        _, info = converge_boundary(env, ising.network, config)
        assert not info.converged
        assert info.iterations == 2
        assert "not converged" in capsys.readouterr().out

    def test_silent_at_verbosity_zero(self, rng, capsys):
        ising = classical_ising(0.44)
        env = random_environment(rng, ising.network, 4)
        config = CTMRGConfig(tolerance=1e-14, max_iterations=2, min_iterations=1, verbosity=0)
        converge_boundary(env, ising.network, config)
        assert capsys.readouterr().out == ""

    def test_per_step_output(self, rng, capsys):
        ising = classical_ising(0.6)
        env = random_environment(rng, ising.network, 4)
        config = CTMRGConfig(max_iterations=3, min_iterations=3, verbosity=3)
        converge_boundary(env, ising.network, config)
        out = capsys.readouterr().out
        assert "CTMRG step 1" in out
        assert "CTMRG step 3" in out

    def test_truncerr_converges(self, rng):
        ising = classical_ising(0.6)
        env = random_environment(rng, ising.network, 2)
        config = CTMRGConfig(
            truncation_scheme="truncerr",
            truncation_tolerance=1e-8,
            max_dimension=12,
            tolerance=1e-6,
            max_iterations=400,
        )
        env, info = converge_boundary(env, ising.network, config)
        assert info.converged
        assert env.C1.shape[0] <= 12

    def test_incompatible_environment_raises(self, rng):
        network = InfinitePartitionFunction(jnp.ones((2, 2, 2, 2)))
        env = random_environment(rng, InfinitePartitionFunction(jnp.ones((3, 3, 3, 3))), 2)
        with pytest.raises(ValueError, match="middle dimension"):
            converge_boundary(env, network)

    def test_input_environment_unchanged(self, rng):
        ising = classical_ising(0.6)
        env = random_environment(rng, ising.network, 3)
        before = [np.asarray(x).copy() for x in env]
        converge_boundary(env, ising.network, CTMRGConfig(max_iterations=5, verbosity=0))
        for x, y in zip(before, env):
            np.testing.assert_array_equal(x, np.asarray(y))


class TestSpectrumDistance:
    def test_zero_padding(self):
        a = (np.array([1.0, 0.0]),) * 4
        b = (np.array([1.0]),) * 4
        assert _spectrum_distance(a, b) == 0.0

    def test_largest_change(self):
        a = (np.array([1.0]), np.array([0.6, 0.8]), np.array([1.0]), np.array([1.0]))
        b = (np.array([1.0]), np.array([0.8, 0.6]), np.array([1.0]), np.array([1.0]))
        assert _spectrum_distance(a, b) == pytest.approx(np.sqrt(0.08))

    def test_values_below_cutoff_are_ignored(self):
        C = np.diag([1.0, 0.5, 3e-14])
        noisy = np.diag([1.0, 0.5, 7e-14])
        env = CTMRGEnv(*([jnp.asarray(C)] * 4 + [jnp.ones((3, 1, 3))] * 4))
        env_noisy = CTMRGEnv(*([jnp.asarray(noisy)] * 4 + [jnp.ones((3, 1, 3))] * 4))

        spectra = _corner_spectra(env, 1e-12)
        assert spectra[0][2] == 0.0
        assert _spectrum_distance(spectra, _corner_spectra(env_noisy, 1e-12)) < 1e-15
        assert _spectrum_distance(_corner_spectra(env), _corner_spectra(env_noisy)) > 1e-14
