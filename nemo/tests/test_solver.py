"""
Pytest tests for the NEMO Euler solver.

Tests verify:
1. A uniform free stream is an exact steady state
2. Zero-area edges leave the solution untouched
3. Non-finite edge fluxes are dropped and counted
4. Explicit, Runge-Kutta, implicit and dual-time iterations run and stay physical
5. Configuration errors are reported
"""

import dataclasses

import numpy as np
import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from nemo.src import (AUSMFlux, DualMesh, LaxCentered, NEMOEulerSolver, SolverConfig, SolverError,
                      UserDefinedGas, VibRelaxationSource, ViscousFlux, prim_to_cons)
from nemo.src.flux import inviscid_proj_flux


FREE_STREAM = {'mach': 0.5, 'pressure': 1.0e4, 'temperature': 400.0,
               'temperature_ve': 400.0, 'mass_fractions': (0.9, 0.1)}
PURE_N2 = dict(FREE_STREAM, mass_fractions=(1.0, 0.0))

CHANNEL_MARKERS = {
    'left': {'kind': 'far_field'},
    'right': {'kind': 'far_field'},
    'lower': {'kind': 'symmetry'},
    'upper': {'kind': 'symmetry'},
}


@pytest.fixture
def gas():
    """Two-species nitrogen."""
    return UserDefinedGas.from_preset('nitrogen2')


def channel_config(**kwargs):
    """Frozen nitrogen in a 1D channel with far-field ends."""
    options = dict(frozen=True, markers=CHANNEL_MARKERS, free_stream=dict(FREE_STREAM))
    options.update(kwargs)
    return SolverConfig(**options)


def flux_scale(solver):
    """Magnitude of the convective flux through a unit face."""
    fs = solver.free_stream.state
    normal = np.array([[1.0], [0.0]])
    return float(np.max(np.abs(inviscid_proj_flux(fs, normal))))


class NaNFlux(AUSMFlux):
    """AUSM flux with a NaN injected on the first edge."""

    def compute_flux(self, left, right, normal, **edge_data):
        flux = super().compute_flux(left, right, normal, **edge_data)
        flux[:, 0] = np.nan
        return flux


class NaNRelaxation(VibRelaxationSource):
    """Vibrational relaxation with a NaN injected at the first point."""

    def compute(self, state, coords, volumes, implicit=False):
        residual, jac = super().compute(state, coords, volumes, implicit)
        residual[:, 0] = np.nan
        return residual, jac


class RecordingViscousFlux(ViscousFlux):
    """Viscous flux that keeps the endpoint coordinates of every call."""

    def __init__(self, gas):
        super().__init__(gas)
        self.calls = []

    def compute_residual(self, state_i, state_j, grad_i, grad_j, transport_i, transport_j,
                         coords_i, coords_j, normal, implicit=False):
        self.calls.append((coords_i.copy(), coords_j.copy()))
        return super().compute_residual(state_i, state_j, grad_i, grad_j, transport_i,
                                        transport_j, coords_i, coords_j, normal, implicit)


class TestFreeStreamPreservation:
    """A uniform free stream must give a zero residual."""

    @pytest.mark.parametrize("options", [
        {},
        {'upwind_scheme': 'hllc'},
        {'upwind_scheme': 'rusanov', 'muscl': True},
        {'convective_scheme': 'centered'},
        {'viscous': True},
        {'time_integration': 'euler_implicit'},
    ], ids=['ausm', 'hllc', 'rusanov-muscl', 'lax', 'viscous', 'implicit'])
    def test_uniform_flow_residual_vanishes(self, gas, options):
        mesh = DualMesh.line(0.0, 1.0, 8)
        solver = NEMOEulerSolver(mesh, gas, channel_config(**options))
        solver.preprocessing()
        solver.compute_residual()
        scale = flux_scale(solver)
        assert np.max(np.abs(solver.residual)) < 1e-10 * scale, \
            f"Residual of uniform flow: {np.max(np.abs(solver.residual))} (scale {scale})"

    def test_uniform_flow_stays_uniform(self, gas):
        """Iterating on the free stream does not change it."""
        mesh = DualMesh.rectangle(5, 4)
        markers = {tag: {'kind': 'far_field'} for tag in mesh.markers}
        solver = NEMOEulerSolver(mesh, gas, channel_config(markers=markers))
        U0 = solver.nodes.solution.copy()
        for _ in range(3):
            solver.iterate()
        assert np.allclose(solver.nodes.solution, U0, rtol=1e-10)


class TestDegenerateEdges:
    """Zero-area dual faces."""

    def test_zero_normal_edge_leaves_solution_unchanged(self, gas):
        """Two points joined by a zero-area face keep their state exactly."""
        mesh = DualMesh(coords=[[0.0, 1.0], [0.0, 0.0]], edges=[[0, 1]],
                        normals=[[0.0], [0.0]], volumes=[1.0, 1.0])
        solver = NEMOEulerSolver(mesh, gas, SolverConfig(frozen=True, monoatomic=True))
        U = prim_to_cons(np.array([[0.1, 0.2], [0.9, 0.05]]), np.array([300.0, 300.0]),
                         np.array([300.0, 300.0]), np.zeros((2, 2)), gas)
        assert solver.set_solution(U) == 0

        solver.iterate()

        assert np.array_equal(solver.nodes.solution, U), "Zero-area face moved the solution"
        assert np.all(solver.residual == 0.0)


class TestNonFiniteContributions:
    """NaN screening during assembly."""

    def test_nan_edge_flux_is_dropped_and_counted(self, gas):
        mesh = DualMesh.line(0.0, 1.0, 5)
        solver = NEMOEulerSolver(mesh, gas, channel_config(), convective_scheme=NaNFlux())
        solver.preprocessing()
        solver.compute_residual()
        assert solver.counters['convective'] == 1
        assert np.all(np.isfinite(solver.residual)), "NaN leaked into the residual"

    def test_nan_source_counted_in_its_own_category(self, gas, caplog):
        mesh = DualMesh.line(0.0, 1.0, 5)
        solver = NEMOEulerSolver(mesh, gas, channel_config(
            frozen=False, axisymmetric=True, free_stream=dict(PURE_N2)))
        solver.sources = [source if source.name != 'vib_relaxation' else NaNRelaxation(gas)
                          for source in solver.sources]
        solver.preprocessing()
        with caplog.at_level('WARNING'):
            solver.compute_residual()

        assert solver.counters['vib_relaxation'] == 1
        assert solver.counters['chemistry'] == 0 and solver.counters['axisymmetric'] == 0
        assert np.all(np.isfinite(solver.residual)), "NaN leaked into the residual"
        assert "non-finite vib_relaxation" in caplog.text

    def test_nonphysical_point_reset_and_counted(self, gas):
        mesh = DualMesh.line(0.0, 1.0, 5)
        solver = NEMOEulerSolver(mesh, gas, channel_config())
        U_old = solver.nodes.solution.copy()
        solver.nodes.solution[0, 2] = -1.0
        n_bad = solver.set_primitive_variables()
        assert n_bad == 1 and solver.counters['nonphysical'] == 1
        assert np.array_equal(solver.nodes.solution, U_old)


class TestIterations:
    """Pseudo-time schemes on a perturbed channel."""

    def perturb(self, solver, gas):
        """Constant-pressure temperature bump (entropy wave) on top of the free stream."""
        fs = solver.free_stream.state
        x = solver.mesh.coords[0]
        n = solver.mesh.n_points
        T = fs.T[0] * (1.0 + 0.1 * np.exp(-((x - 0.5) / 0.1)**2))
        rhos = fs.rhos[:, [0]] * (fs.T[0] / T)
        vel = fs.velocity[:, [0]] * np.ones(n)
        solver.set_solution(prim_to_cons(rhos, T, T.copy(), vel, gas))

    @pytest.mark.parametrize("options, n_iter", [
        ({'time_integration': 'euler_explicit', 'cfl': 0.8}, 250),
        ({'time_integration': 'runge_kutta_explicit', 'cfl': 0.8}, 250),
        ({'time_integration': 'euler_implicit', 'cfl': 5.0}, 40),
        ({'time_integration': 'euler_implicit', 'cfl': 5.0,
          'linear_solver': {'method': 'gmres', 'preconditioner': 'ilu'}}, 40),
        ({'convective_scheme': 'centered', 'time_integration': 'euler_implicit', 'cfl': 5.0}, 40),
        ({'frozen': False, 'time_integration': 'euler_implicit', 'cfl': 5.0,
          'free_stream': dict(PURE_N2)}, 40),
    ], ids=['euler', 'rk', 'implicit', 'implicit-gmres', 'lax-implicit', 'reacting'])
    def test_iterations_reduce_residual(self, gas, options, n_iter):
        """The bump is convected out of the channel."""
        mesh = DualMesh.line(0.0, 1.0, 21)
        solver = NEMOEulerSolver(mesh, gas, channel_config(convergence_tol=-20.0, **options))
        self.perturb(solver, gas)

        result = solver.solve(max_iter=n_iter)

        history = np.array(solver.residual_history)
        assert history.shape == (n_iter, solver.layout.n_var)
        assert np.all(np.isfinite(history[:, 0]))
        assert history[-1, 0] < history[0, 0] - 1.0, "Density residual did not decrease"
        assert not np.any(solver.get_state().nonphysical)
        assert result['iterations'] == n_iter
        assert set(result) == {'converged', 'iterations', 'time', 'wall_time',
                               'final_residual', 'counters'}

    def test_steady_run_converges(self, gas):
        """The free stream is converged after the first iteration."""
        mesh = DualMesh.line(0.0, 1.0, 6)
        solver = NEMOEulerSolver(mesh, gas, channel_config(convergence_tol=-6.0))
        result = solver.solve(max_iter=20)
        assert result['converged'] and result['iterations'] < 20

    def test_time_stepping_advances_time(self, gas):
        mesh = DualMesh.line(0.0, 1.0, 11)
        solver = NEMOEulerSolver(mesh, gas, channel_config(time_marching='time_stepping',
                                                           delta_unst_time=1e-7))
        self.perturb(solver, gas)
        result = solver.solve(max_iter=5)
        assert np.isclose(result['time'], 5e-7)
        assert not result['converged']
        assert np.array_equal(solver.nodes.solution_time_n, solver.nodes.solution)

    @pytest.mark.parametrize("marching", ['dual_time_1st', 'dual_time_2nd'])
    def test_dual_time_stepping(self, gas, marching):
        mesh = DualMesh.line(0.0, 1.0, 11)
        solver = NEMOEulerSolver(mesh, gas, channel_config(
            time_marching=marching, time_integration='euler_implicit', cfl=10.0,
            unst_cfl=2.0, convergence_tol=-4.0))
        self.perturb(solver, gas)
        result = solver.solve(max_iter=30, n_time_steps=2)
        assert solver.delta_unst_time > 0.0
        assert result['time'] > solver.delta_unst_time, "Two physical steps expected"
        assert not np.any(solver.get_state().nonphysical)


class TestConfigurationErrors:
    """Invalid setups."""

    def test_reynolds_initialization_is_fatal(self, gas):
        mesh = DualMesh.line(0.0, 1.0, 4)
        with pytest.raises(SolverError):
            NEMOEulerSolver(mesh, gas, channel_config(init_option='reynolds'))

    def test_marker_without_boundary_condition(self, gas):
        mesh = DualMesh.line(0.0, 1.0, 4)
        markers = dict(CHANNEL_MARKERS)
        del markers['right']
        with pytest.raises(ValueError):
            NEMOEulerSolver(mesh, gas, channel_config(markers=markers))

    def test_wrong_number_of_mass_fractions(self, gas):
        mesh = DualMesh.line(0.0, 1.0, 4)
        config = channel_config(free_stream={'mass_fractions': (0.2, 0.3, 0.5)})
        with pytest.raises(ValueError):
            NEMOEulerSolver(mesh, gas, config)

    def test_unknown_configuration_key(self):
        with pytest.raises(ValueError):
            SolverConfig.from_dict({'cfl': 1.0, 'turbulence': 'sa'})

    def test_centered_scheme_from_config(self, gas):
        mesh = DualMesh.line(0.0, 1.0, 4)
        solver = NEMOEulerSolver(mesh, gas, channel_config(convective_scheme='centered',
                                                           lax_coeff=0.3))
        assert isinstance(solver.convective, LaxCentered)
        assert solver.convective.kappa0 == 0.3
        with pytest.raises(ValueError):
            channel_config(convective_scheme='centered', centered_scheme='jst')


class TestFreeStream:
    """The free-stream reference state is read-only."""

    def test_free_stream_cannot_be_modified(self, gas):
        mesh = DualMesh.line(0.0, 1.0, 4)
        solver = NEMOEulerSolver(mesh, gas, channel_config())
        with pytest.raises(dataclasses.FrozenInstanceError):
            solver.free_stream.mach = 2.0
        with pytest.raises(ValueError):
            solver.free_stream.state.U[0, 0] = 0.0

    def test_far_field_viscous_flux_uses_normal_neighbor(self, gas):
        """The far-field ghost sits at the interior neighbour of the end point."""
        mesh = DualMesh.line(0.0, 1.0, 6)
        viscous = RecordingViscousFlux(gas)
        solver = NEMOEulerSolver(mesh, gas, channel_config(viscous=True), viscous_flux=viscous)
        solver.preprocessing()
        solver.compute_residual()

        single = [(ci, cj) for ci, cj in viscous.calls if ci.shape[1] == 1]
        left = [(ci, cj) for ci, cj in single if ci[0, 0] == mesh.coords[0, 0]]
        assert left, "No far-field viscous call for the left end"
        assert np.allclose(left[0][1], mesh.coords[:, [1]]), \
            f"Ghost coordinates {left[0][1].ravel()} are not the normal neighbour"
