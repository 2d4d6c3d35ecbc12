"""
Pytest tests for gradients, limiters and MUSCL reconstruction.
"""

import numpy as np
import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from nemo.src import (DualMesh, NEMOEulerSolver, SolverConfig, UserDefinedGas, VariableLayout,
                      cons_to_prim, prim_to_cons)
from nemo.src.reconstruction import (compute_limiter, gradient_green_gauss,
                                     gradient_least_squares, reconstruct_muscl)


@pytest.fixture
def mesh():
    """7 x 5 Cartesian dual mesh."""
    return DualMesh.rectangle(7, 5, lx=2.0, ly=1.0)


@pytest.fixture
def gas():
    return UserDefinedGas.from_preset('nitrogen2')


def linear_field(mesh):
    """phi = 1 + 2x - 3y and a constant."""
    x, y = mesh.coords
    return np.vstack([1.0 + 2.0 * x - 3.0 * y, np.full(mesh.n_points, 5.0)])


def interior_points(mesh):
    boundary = np.unique(np.concatenate([m.vertices for m in mesh.markers.values()]))
    return np.setdiff1d(np.arange(mesh.n_points), boundary)


def node_states(mesh, gas, layout, perturb=True):
    """Smoothly varying valid states on every point."""
    x, y = mesh.coords
    n = mesh.n_points
    rho = 0.1 * (1.0 + (0.2 * np.sin(x) * np.cos(y) if perturb else 0.0))
    rhos = np.vstack([0.9 * rho, 0.1 * rho])
    T = np.full(n, 500.0) + (100.0 * x if perturb else 0.0)
    vel = np.vstack([np.full(n, 200.0), np.full(n, 10.0)])
    U = prim_to_cons(rhos, T, T.copy(), vel, gas)
    return cons_to_prim(U, gas, layout)


class TestGradients:
    """Green-Gauss and least-squares gradients."""

    def test_green_gauss_exact_for_linear_interior(self, mesh):
        """Green-Gauss reproduces linear gradients at interior points."""
        grad = gradient_green_gauss(linear_field(mesh), mesh)
        inner = interior_points(mesh)
        assert np.allclose(grad[0, 0, inner], 2.0), f"d/dx = {grad[0, 0, inner]}"
        assert np.allclose(grad[0, 1, inner], -3.0), f"d/dy = {grad[0, 1, inner]}"

    def test_constant_field_has_zero_gradient(self, mesh):
        """A constant field has zero gradient everywhere (closed dual cells)."""
        for method in (gradient_green_gauss, gradient_least_squares):
            grad = method(linear_field(mesh), mesh)
            assert np.allclose(grad[1], 0.0, atol=1e-10), f"{method.__name__}: {grad[1]}"

    def test_least_squares_exact_for_linear(self, mesh):
        """Least squares reproduces linear gradients at every point."""
        grad = gradient_least_squares(linear_field(mesh), mesh)
        assert np.allclose(grad[0, 0], 2.0) and np.allclose(grad[0, 1], -3.0)


class TestLimiters:
    """Slope limiters."""

    @pytest.mark.parametrize("method", ['venkatakrishnan', 'barth_jespersen'])
    def test_limiter_bounded(self, mesh, method):
        """Limiter values lie in [0, 1]."""
        x, y = mesh.coords
        phi = np.vstack([np.sin(3.0 * x) * np.cos(4.0 * y)])
        grad = gradient_green_gauss(phi, mesh)
        lim = compute_limiter(phi, grad, mesh, method)
        assert np.all((lim >= 0.0) & (lim <= 1.0)), f"Limiter out of range: {lim}"

    def test_constant_field_not_limited(self, mesh):
        """A constant field keeps limiter 1."""
        phi = linear_field(mesh)[1:]
        lim = compute_limiter(phi, gradient_green_gauss(phi, mesh), mesh, 'venkatakrishnan')
        assert np.allclose(lim, 1.0), f"Constant field limited: {lim}"

    def test_none_limiter(self, mesh):
        """'none' returns ones."""
        phi = linear_field(mesh)
        lim = compute_limiter(phi, gradient_green_gauss(phi, mesh), mesh, 'none')
        assert np.all(lim == 1.0)

    def test_unknown_limiter_raises(self, mesh):
        phi = linear_field(mesh)
        with pytest.raises(ValueError):
            compute_limiter(phi, np.zeros((2, 2, mesh.n_points)), mesh, 'minmod')


class TestMUSCL:
    """Edge reconstruction."""

    @pytest.mark.parametrize("use_limiter", [True, False])
    def test_zero_gradient_reproduces_node_states(self, mesh, gas, use_limiter):
        """With zero gradients the edge states equal the node states exactly."""
        layout = VariableLayout(gas.n_species, 2)
        nodes = node_states(mesh, gas, layout)
        grad = np.zeros((layout.n_var, 2, mesh.n_points))
        limiter = np.full((layout.n_var, mesh.n_points), 0.3)

        left, right, n_fallback = reconstruct_muscl(nodes, grad, limiter, mesh, gas,
                                                    use_limiter=use_limiter)

        i, j = mesh.edges[:, 0], mesh.edges[:, 1]
        assert n_fallback == 0
        assert np.array_equal(left.U, nodes.U[:, i]), "Left states changed"
        assert np.array_equal(right.U, nodes.U[:, j]), "Right states changed"
        assert np.array_equal(left.V, nodes.V[:, i]), "Left primitives changed"

    def test_reconstruction_moves_toward_face(self, mesh, gas):
        """A smooth conserved field is reconstructed closer to the face midpoint value."""
        layout = VariableLayout(gas.n_species, 2)
        nodes = node_states(mesh, gas, layout)
        grad = gradient_least_squares(nodes.U, mesh)
        limiter = np.ones((layout.n_var, mesh.n_points))

        left, right, _ = reconstruct_muscl(nodes, grad, limiter, mesh, gas, use_limiter=False)

        i, j = mesh.edges[:, 0], mesh.edges[:, 1]
        mid = 0.5 * (nodes.U[:, i] + nodes.U[:, j])
        err_rec = np.max(np.abs(left.U - mid) + np.abs(right.U - mid))
        err_first = np.max(np.abs(nodes.U[:, i] - mid) + np.abs(nodes.U[:, j] - mid))
        assert err_rec < err_first, "Reconstruction did not improve face values"

    def test_nonphysical_reconstruction_falls_back(self, mesh, gas):
        """A reconstruction producing negative densities falls back to first order."""
        layout = VariableLayout(gas.n_species, 2)
        nodes = node_states(mesh, gas, layout, perturb=False)
        grad = np.zeros((layout.n_var, 2, mesh.n_points))
        grad[0, 0] = -1e3
        limiter = np.ones((layout.n_var, mesh.n_points))

        left, right, n_fallback = reconstruct_muscl(nodes, grad, limiter, mesh, gas,
                                                    use_limiter=False)

        i = mesh.edges[:, 0]
        assert n_fallback > 0, "Expected fallback edges"
        assert not np.any(left.nonphysical | right.nonphysical)
        assert np.all(left.U[0] > 0.0), "Negative density leaked into edge states"
        assert np.array_equal(left.U, nodes.U[:, i]), "Fallback edges not first order"


class TestLimiterFreeze:
    """Limiters are recomputed up to and including ``limiter_iterations``."""

    def bumped_solver(self, gas, limiter_iterations):
        mesh = DualMesh.line(0.0, 1.0, 11)
        markers = {tag: {'kind': 'far_field'} for tag in mesh.markers}
        config = SolverConfig(frozen=True, muscl=True, slope_limiter='barth_jespersen',
                              limiter_iterations=limiter_iterations, markers=markers)
        solver = NEMOEulerSolver(mesh, gas, config)
        U = solver.nodes.solution.copy()
        U[:, 5] *= 1.5
        solver.set_solution(U)
        return solver

    @pytest.mark.parametrize("limiter_iterations", [0, 3])
    def test_limiter_computed_at_freeze_iteration(self, gas, limiter_iterations):
        """The bump flanks are limited on the last recomputing iteration."""
        solver = self.bumped_solver(gas, limiter_iterations)
        solver.preprocessing(limiter_iterations)
        limiter = solver.nodes.limiter
        assert np.min(limiter[0]) < 1.0, \
            f"Limiter not computed at iteration {limiter_iterations}: {limiter[0]}"

    def test_limiter_frozen_after_freeze_iteration(self, gas):
        solver = self.bumped_solver(gas, 0)
        solver.preprocessing(0)
        frozen = solver.nodes.limiter.copy()
        solver.nodes.solution[:, 2] *= 1.2
        solver.preprocessing(1)
        assert np.array_equal(solver.nodes.limiter, frozen), "Limiter changed after freezing"
