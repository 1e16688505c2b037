"""Tests for the exact reference values."""

import numpy as np
import pytest

from pepsjax.algorithms.references import (
    HEISENBERG_D2_ENERGY,
    HEISENBERG_EXACT_ENERGY,
    ISING_BETA_C,
    IsingExact,
    compare,
    ising_exact,
    onsager_energy,
    onsager_free_energy,
    onsager_magnetization,
    relative_deviation,
)


class TestOnsager:
    def test_critical_coupling(self):
        assert ISING_BETA_C == pytest.approx(0.44068679350977147)

    def test_free_energy_at_criticality(self):
        """ln Z per site at beta_c = 0.929695398341..."""
        minus_beta_f = -ISING_BETA_C * onsager_free_energy(ISING_BETA_C)
        assert minus_beta_f == pytest.approx(0.929695398341, abs=1e-10)

    def test_high_temperature_limit(self):
        """ln Z per site -> ln 2 as beta -> 0."""
        beta = 1e-4
        assert -beta * onsager_free_energy(beta) == pytest.approx(np.log(2.0), abs=1e-6)

    def test_low_temperature_limit(self):
        """f -> -2J deep in the ordered phase."""
        assert onsager_free_energy(10.0) == pytest.approx(-2.0, abs=1e-8)

    def test_magnetization_values(self):
        assert onsager_magnetization(0.6) == pytest.approx(0.97361, abs=1e-5)
        assert onsager_magnetization(0.3) == 0.0
        assert onsager_magnetization(ISING_BETA_C) == 0.0
        assert onsager_magnetization(5.0) == pytest.approx(1.0, abs=1e-12)

    def test_energy_limits(self):
        assert onsager_energy(5.0) == pytest.approx(-2.0, abs=1e-6)
        assert -0.5 < onsager_energy(0.01) < 0.0

    @pytest.mark.parametrize("beta", [0.3, 0.6, 0.8])
    def test_energy_is_derivative_of_free_energy(self, beta):
        h = 1e-4
        plus = (beta + h) * onsager_free_energy(beta + h)
        minus = (beta - h) * onsager_free_energy(beta - h)
        assert onsager_energy(beta) == pytest.approx((plus - minus) / (2 * h), rel=1e-5)

    def test_energy_at_criticality(self):
        """u(beta_c) = -sqrt(2) J, approached continuously from both sides."""
        assert onsager_energy(ISING_BETA_C) == pytest.approx(-np.sqrt(2.0), rel=1e-12)
        assert onsager_energy(ISING_BETA_C, J=0.5) == pytest.approx(-0.5 * np.sqrt(2.0))
        for shift in (-1e-6, 1e-6):
            u = onsager_energy(ISING_BETA_C * (1.0 + shift))
            assert np.isfinite(u)
            assert u == pytest.approx(-np.sqrt(2.0), abs=1e-4)

    def test_free_energy_is_finite_around_criticality(self):
        values = [
            onsager_free_energy(ISING_BETA_C * (1.0 + shift))
            for shift in (-1e-9, 0.0, 1e-9)
        ]
        assert np.all(np.isfinite(values))
        assert values[0] == pytest.approx(values[1], rel=1e-8)
        assert values[2] == pytest.approx(values[1], rel=1e-8)

    def test_coupling_scaling(self):
        """All quantities depend on beta J; f and u scale with J."""
        assert onsager_free_energy(0.3, J=2.0) == pytest.approx(2.0 * onsager_free_energy(0.6))
        assert onsager_energy(0.3, J=2.0) == pytest.approx(2.0 * onsager_energy(0.6))
        assert onsager_magnetization(0.3, J=2.0) == pytest.approx(onsager_magnetization(0.6))

    def test_ising_exact_bundle(self):
        exact = ising_exact(0.6)
        assert isinstance(exact, IsingExact)
        assert exact.free_energy == pytest.approx(onsager_free_energy(0.6))
        assert exact.magnetization == pytest.approx(onsager_magnetization(0.6))
        assert exact.energy == pytest.approx(onsager_energy(0.6))

    @pytest.mark.parametrize("beta", [0.0, -0.5])
    def test_nonpositive_beta_raises(self, beta):
        with pytest.raises(ValueError, match="beta"):
            ising_exact(beta)


class TestComparison:
    def test_heisenberg_references_bracket(self):
        assert HEISENBERG_EXACT_ENERGY < HEISENBERG_D2_ENERGY < -0.65

    def test_relative_deviation_is_signed(self):
        assert relative_deviation(1.1, 1.0) == pytest.approx(0.1)
        assert relative_deviation(-1.1, -1.0) == pytest.approx(0.1)
        assert relative_deviation(0.9, 1.0) == pytest.approx(-0.1)

    def test_relative_deviation_zero_reference(self):
        with pytest.raises(ValueError, match="zero reference"):
            relative_deviation(0.1, 0.0)

    def test_compare_shared_keys(self):
        computed = {"energy": -1.5, "magnetization": 0.9, "extra": 3.0}
        reference = {"energy": -1.4, "magnetization": 0.9, "free_energy": -2.0}
        deviations = compare(computed, reference)
        assert set(deviations) == {"energy", "magnetization"}
        assert deviations["energy"] == pytest.approx(0.1 / 1.4)
        assert deviations["magnetization"] == 0.0

    def test_compare_zero_reference_reports_difference(self):
        assert compare({"magnetization": 0.02}, {"magnetization": 0.0}) == {
            "magnetization": 0.02
        }
