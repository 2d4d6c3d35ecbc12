"""
Pytest tests for a frozen two-species shock tube.

Closed tube with Euler walls at both ends, time-accurate explicit stepping.
With chemistry and vibrational relaxation off the translational-rotational
mode behaves as a perfect gas, so Sod's exact solution applies.

Tests verify:
1. Shock and rarefaction move in the right directions
2. Comparison with the exact solution
3. Species mass and total energy are conserved in the closed tube
"""

import numpy as np
import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from nemo.src import DualMesh, NEMOEulerSolver, SolverConfig, UserDefinedGas, prim_to_cons


P_LEFT = 1.0e5
P_RIGHT = 1.0e4
T_INIT = 300.0
Y_INIT = np.array([0.9, 0.1])
DELTA_T = 2.0e-6
N_STEPS = 100


def riemann_exact(x, t, rho_L, p_L, rho_R, p_R, gamma, x0=0.5):
    """
    Exact solution of a Riemann problem with both sides at rest,
    a left rarefaction and a right shock.

    Returns:
        Dictionary with exact solution: rho, u, p
    """
    a_L = np.sqrt(gamma * p_L / rho_L)
    a_R = np.sqrt(gamma * p_R / rho_R)
    gm1 = gamma - 1
    gp1 = gamma + 1
    A_R = 2 / (gp1 * rho_R)
    B_R = gm1 / gp1 * p_R

    # Newton iteration for pressure in star region
    p_star = 0.5 * (p_L + p_R)
    for _ in range(50):
        f_L = 2 * a_L / gm1 * ((p_star / p_L)**(gm1 / (2 * gamma)) - 1)
        df_L = a_L / (gamma * p_L) * (p_star / p_L)**(-(gp1) / (2 * gamma))
        root = np.sqrt(A_R / (p_star + B_R))
        f_R = (p_star - p_R) * root
        df_R = root * (1 - 0.5 * (p_star - p_R) / (p_star + B_R))

        p_new = max(1e-3 * p_R, p_star - (f_L + f_R) / (df_L + df_R))
        if abs(p_new - p_star) / p_star < 1e-12:
            p_star = p_new
            break
        p_star = p_new

    f_L = 2 * a_L / gm1 * ((p_star / p_L)**(gm1 / (2 * gamma)) - 1)
    f_R = (p_star - p_R) * np.sqrt(A_R / (p_star + B_R))
    u_star = 0.5 * (f_R - f_L)

    p_ratio = p_star / p_R
    rho_star_R = rho_R * (p_ratio + gm1 / gp1) / (gm1 / gp1 * p_ratio + 1)
    rho_star_L = rho_L * (p_star / p_L)**(1 / gamma)

    # Wave speeds: shock, contact, rarefaction head and tail
    S = a_R * np.sqrt(gp1 / (2 * gamma) * p_ratio + gm1 / (2 * gamma))
    C = u_star
    H = -a_L
    T = u_star - a_L * (p_star / p_L)**(gm1 / (2 * gamma))

    s = (x - x0) / t
    u_fan = 2 / gp1 * (a_L + s)
    a_fan = a_L - 0.5 * gm1 * u_fan
    regions = [s < H, s < T, s < C, s < S]

    rho = np.select(regions, [rho_L, rho_L * (a_fan / a_L)**(2 / gm1), rho_star_L, rho_star_R],
                    rho_R)
    u = np.select(regions, [0.0, u_fan, u_star, u_star], 0.0)
    p = np.select(regions, [p_L, p_L * (a_fan / a_L)**(2 * gamma / gm1), p_star, p_star], p_R)
    return {'rho': rho, 'u': u, 'p': p}


@pytest.fixture
def gas():
    return UserDefinedGas.from_preset('nitrogen2')


def create_shock_tube_solver(gas, n_points=101):
    """Solver with the diaphragm at x = 0.5 and walls everywhere."""
    mesh = DualMesh.line(0.0, 1.0, n_points)
    config = SolverConfig(
        frozen=True,
        monoatomic=True,
        time_marching='time_stepping',
        delta_unst_time=DELTA_T,
        free_stream={'mach': 0.0, 'pressure': P_RIGHT, 'temperature': T_INIT,
                     'temperature_ve': T_INIT, 'mass_fractions': tuple(Y_INIT)},
        markers={'left': {'kind': 'euler_wall'}, 'right': {'kind': 'euler_wall'},
                 'lower': {'kind': 'symmetry'}, 'upper': {'kind': 'symmetry'}},
        print_interval=N_STEPS,
    )
    solver = NEMOEulerSolver(mesh, gas, config)

    x = mesh.coords[0]
    P = np.where(x < 0.5, P_LEFT, P_RIGHT)
    T = np.full(mesh.n_points, T_INIT)
    gas_state = gas.set_state_ptt(P, Y_INIT[:, np.newaxis] * np.ones(mesh.n_points), T, T)
    solver.set_solution(prim_to_cons(gas_state.rhos, T, T, np.zeros((2, mesh.n_points)), gas))
    return solver


def translational_gamma(gas):
    """Ratio of specific heats of the translational-rotational mode."""
    state = gas.set_state(Y_INIT[:, np.newaxis], np.array([T_INIT]), np.array([T_INIT]))
    return float(1.0 + state.pressure[0] / (state.rho_cvtr[0] * T_INIT))


def exact_solution(gas, solver):
    """Exact solution at the solver's points and current time."""
    R_mix = float(np.sum(Y_INIT * gas.species_gas_constant))
    return riemann_exact(solver.mesh.coords[0], solver.time,
                         P_LEFT / (R_mix * T_INIT), P_LEFT,
                         P_RIGHT / (R_mix * T_INIT), P_RIGHT, translational_gamma(gas))


@pytest.fixture
def solved(gas):
    """Shock tube advanced by N_STEPS steps, with its result dictionary."""
    solver = create_shock_tube_solver(gas)
    totals_init = solver.nodes.solution @ solver.mesh.volumes
    result = solver.solve(max_iter=N_STEPS)
    return solver, result, totals_init


class TestShockTube:
    """Wave structure and accuracy."""

    def test_waves_move_apart(self, solved):
        solver, _, _ = solved
        state = solver.get_state()
        x = solver.mesh.coords[0]

        assert np.isclose(solver.time, N_STEPS * DELTA_T)
        assert state.P[np.argmin(np.abs(x - 0.55))] > 2.0 * P_RIGHT, "Shock did not move right"
        assert state.P[np.argmin(np.abs(x - 0.45))] < 0.95 * P_LEFT, \
            "Rarefaction did not move left"
        assert np.all(state.velocity[0] >= -5.0), "Gas should move to the right"

    def test_density_accuracy(self, gas, solved):
        """Mean density error within 5% of the left density."""
        solver, _, _ = solved
        exact = exact_solution(gas, solver)
        rho_L = np.max(exact['rho'])
        error = np.mean(np.abs(solver.get_state().rho - exact['rho'])) / rho_L
        assert error < 0.05, f"Density error {error:.4f}"

    def test_pressure_accuracy(self, gas, solved):
        solver, _, _ = solved
        exact = exact_solution(gas, solver)
        error = np.mean(np.abs(solver.get_state().P - exact['p'])) / P_LEFT
        assert error < 0.05, f"Pressure error {error:.4f}"

    def test_positive_state(self, solved):
        solver, result, _ = solved
        state = solver.get_state()
        assert np.all(state.rhos >= 0.0) and np.all(state.T > 0.0)
        assert result['counters']['nonphysical'] == 0


class TestConservation:
    """Closed tube: no mass or energy crosses the boundary."""

    def test_species_mass_and_energy_conserved(self, solved):
        solver, _, totals_init = solved
        lay = solver.layout
        totals = solver.nodes.solution @ solver.mesh.volumes

        conserved = list(range(lay.n_species)) + [lay.energy, lay.energy_ve]
        error = np.abs(totals[conserved] - totals_init[conserved]) / np.abs(totals_init[conserved])
        assert np.all(error < 1e-12), f"Conservation error {error}"

    def test_transverse_momentum_stays_zero(self, solved):
        solver, _, _ = solved
        assert np.allclose(solver.get_state().velocity[1], 0.0, atol=1e-9)


class TestGridConvergence:

    def test_error_decreases_with_resolution(self, gas):
        errors = []
        for n_points in (51, 101):
            solver = create_shock_tube_solver(gas, n_points)
            solver.solve(max_iter=N_STEPS)
            exact = exact_solution(gas, solver)
            errors.append(np.mean(np.abs(solver.get_state().rho - exact['rho'])))
        assert errors[1] < errors[0], f"Error did not decrease with refinement: {errors}"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
