#!/usr/bin/env python3
"""2D classical Ising model partition function via CTMRG.

Contracts the infinite partition-function network of the 2D Ising model with
CTMRG and evaluates the free energy, magnetization and energy per site from
the converged environment. Results are compared against the exact Onsager
solution, first at beta = 0.6 and chi = 20 and then across the critical
temperature Tc = 2 / ln(1 + sqrt(2)) ~ 2.269 (beta_c ~ 0.4407).

Usage::

    uv run python examples/classical_ising_ctmrg.py
"""

from __future__ import annotations

from pepsjax import ISING_BETA_C, CTMRGConfig, SimulationConfig, run_classical_ising


def main():
    chi = 20
    config = SimulationConfig(
        environment_dimension=chi,
        seed=123456789,
        boundary=CTMRGConfig(tolerance=1e-10, max_iterations=500),
        verbosity=2,
    )

    print("2D Classical Ising Model: CTMRG vs Onsager Exact Solution")
    print(f"CTMRG parameters: chi = {chi}")
    print(f"Critical temperature: Tc = {1.0 / ISING_BETA_C:.4f}, beta_c = {ISING_BETA_C:.4f}")
    print()

    result = run_classical_ising(beta=0.6, J=1.0, config=config)
    print(f"  CTMRG steps: {result.boundary.iterations}, "
          f"trunc_err = {result.boundary.truncation_error:.2e}")
    print(f"  xi_h = {result.correlation.xi_h:.4f}, xi_v = {result.correlation.xi_v:.4f}")
    print()

    temperatures = [
        ("High T  (T = 4.0)", 1.0 / 4.0),
        ("Above Tc (T = 2.5)", 1.0 / 2.5),
        ("Below Tc (T = 2.0)", 1.0 / 2.0),
        ("Low T   (T = 1.5)", 1.0 / 1.5),
    ]
    quiet = SimulationConfig(
        environment_dimension=chi,
        seed=123456789,
        boundary=CTMRGConfig(tolerance=1e-10, max_iterations=500, verbosity=0),
        verbosity=0,
    )

    print(
        f"{'Label':<20s} {'beta':>8s} {'f_CTMRG':>14s} {'f_exact':>14s} "
        f"{'|m|':>10s} {'m_exact':>10s}"
    )
    print("-" * 82)
    for label, beta in temperatures:
        r = run_classical_ising(beta=beta, J=1.0, config=quiet)
        print(
            f"{label:<20s} {beta:8.4f} {r.free_energy:14.8f} {r.exact.free_energy:14.8f} "
            f"{r.magnetization:10.6f} {r.exact.magnetization:10.6f}"
        )

    print()
    print("Note: CTMRG accuracy degrades near the critical point due to the")
    print("divergent correlation length. Increasing chi improves accuracy.")


if __name__ == "__main__":
    main()
