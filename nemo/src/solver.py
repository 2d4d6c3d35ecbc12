"""
Edge-based finite-volume solver for multi-species two-temperature Euler flow.

The solver assembles the residual R(U) (net outflow minus sources) and, for
the implicit scheme, its block Jacobian, then advances the conserved state
in pseudo time. Navier-Stokes behaviour is added by injecting a viscous
flux strategy; chemistry and axisymmetry follow the capability set.
"""

import logging
import time
from typing import Dict, List, Optional

import numpy as np

from .boundary import make_boundary_condition
from .config import (ConvectiveScheme, GradientMethod, SlopeLimiter, SolverConfig,
                     TimeIntegration, TimeMarching, UpwindScheme)
from .flux import FluxScheme, make_centered_scheme, make_upwind_scheme
from .freestream import FreeStream
from .gas import GasModel
from .linear_solver import BlockJacobian, LinearSolver
from .mesh import BoundaryMarker, DualMesh, scatter_add
from .parallel import ProcessContext, SerialContext
from .reconstruction import (compute_limiter, gradient_green_gauss, gradient_least_squares,
                             reconstruct_muscl)
from .sources import build_sources
from .state import FlowState, VariableLayout
from .timestepping import (ResidualNorms, TimeStepInfo, compute_time_step,
                           explicit_euler_update, explicit_rk_update, implicit_euler_update,
                           max_eigenvalue, set_residual_dual_time)
from .variables import NodeVariables
from .viscous import Transport, ViscousFlux, viscous_primitives

log = logging.getLogger(__name__)

GRADIENTS = {
    GradientMethod.GREEN_GAUSS: gradient_green_gauss,
    GradientMethod.WEIGHTED_LEAST_SQUARES: gradient_least_squares,
}

COUNTERS = ('nonphysical', 'reconstruction', 'convective', 'viscous',
            'axisymmetric', 'chemistry', 'vib_relaxation')


def _finite_columns(*arrays) -> np.ndarray:
    """Mask of columns (last axis of R, first axis of Jacobian blocks) that are finite."""
    residual = arrays[0]
    ok = np.all(np.isfinite(residual), axis=0)
    for jac in arrays[1:]:
        if jac is not None:
            ok &= np.all(np.isfinite(jac), axis=(1, 2))
    return ok


class NEMOEulerSolver:
    """
    Multi-species two-temperature Euler solver on a median-dual mesh.

    Usage:
        gas = UserDefinedGas.from_preset('nitrogen2')
        mesh = DualMesh.rectangle(21, 11)
        config = SolverConfig(markers={tag: {'kind': 'far_field'} for tag in mesh.markers})
        solver = NEMOEulerSolver(mesh, gas, config)
        result = solver.solve()
    """

    def __init__(self, mesh: DualMesh, gas: GasModel, config: SolverConfig = None,
                 context: ProcessContext = None, viscous_flux: Optional[ViscousFlux] = None,
                 convective_scheme: Optional[FluxScheme] = None):
        """
        Initialize the solver with every point at the free-stream state.

        Args:
            mesh: Dual mesh (owned points first)
            gas: Thermochemistry model
            config: Solver configuration
            context: Process context (default: serial)
            viscous_flux: Viscous strategy, used when the viscous capability is on
            convective_scheme: Edge flux scheme overriding the configured one
        """
        self.mesh = mesh
        self.gas = gas
        self.config = config if config is not None else SolverConfig()
        self.context = context if context is not None else SerialContext()
        self.layout = VariableLayout(gas.n_species, mesh.n_dim)
        self.capabilities = self.config.capabilities

        cfg = self.config
        self.viscous = None
        if self.capabilities.has_viscous_terms:
            self.viscous = viscous_flux if viscous_flux is not None else ViscousFlux(gas)

        if convective_scheme is not None:
            self.convective = convective_scheme
        elif cfg.convective_scheme == ConvectiveScheme.CENTERED:
            self.convective = make_centered_scheme(cfg.centered_scheme, cfg.lax_coeff)
        else:
            self.convective = make_upwind_scheme(cfg.upwind_scheme)
        # Boundary fluxes always use an upwind scheme
        if cfg.convective_scheme == ConvectiveScheme.UPWIND:
            self.boundary_scheme = make_upwind_scheme(cfg.upwind_scheme)
        else:
            self.boundary_scheme = make_upwind_scheme(UpwindScheme.AUSM)

        self.sources = build_sources(self.capabilities, gas, cfg.monoatomic or gas.monoatomic)

        self.boundaries = {}
        for tag in mesh.markers:
            if tag not in cfg.markers:
                raise ValueError(f"No boundary condition configured for marker '{tag}'")
            self.boundaries[tag] = make_boundary_condition(cfg.markers[tag])

        self.free_stream = FreeStream.from_config(cfg, gas, self.layout, self.context)

        U_init = np.tile(self.free_stream.U[:, np.newaxis], (1, mesh.n_points))
        self.nodes = NodeVariables(U_init, self.layout, gas,
                                   cfg.temperature_min, cfg.temperature_max)
        self.nodes.under_relaxation[:] = cfg.under_relaxation

        n_bad = self._reduce_count(np.count_nonzero(
            self.nodes.state.nonphysical[:mesh.n_point_domain]))
        if n_bad and self.context.is_root:
            log.warning(f"There are {n_bad} non-physical points in the initial solution.")

        n_var = self.layout.n_var
        self.residual = np.zeros((n_var, mesh.n_points))
        self.jacobian = None
        self.linear_solver = None
        if cfg.implicit:
            self.jacobian = BlockJacobian(mesh.n_points, n_var, mesh.edges)
            self.linear_solver = LinearSolver(cfg.linear_solver)

        self.transport: Optional[Transport] = None
        self.delta_unst_time = cfg.delta_unst_time
        self.time_step_info: Optional[TimeStepInfo] = None
        self.counters: Dict[str, int] = {name: 0 for name in COUNTERS}
        for source in self.sources:
            self.counters.setdefault(source.name, 0)
        self.residual_history: List[np.ndarray] = []
        self.linear_iterations = 0
        self.iteration = 0
        self.time = 0.0

    # ------------------------------------------------------------------
    # Helpers used by the boundary strategies
    # ------------------------------------------------------------------

    def _reduce_count(self, count: int) -> int:
        if self.config.comm_full:
            return int(self.context.allreduce(int(count), 'sum'))
        return int(count)

    def owned_vertices(self, marker: BoundaryMarker):
        owned = marker.vertices < self.mesh.n_point_domain
        return marker.vertices[owned], marker.normals[:, owned]

    def add_point_contribution(self, points: np.ndarray, residual: np.ndarray,
                               jac: Optional[np.ndarray], sign: float = 1.0,
                               category: str = 'convective') -> None:
        """
        Add ``sign * residual`` (and ``sign * jac``) at ``points``.

        Columns with a non-finite value are dropped and counted.
        """
        ok = _finite_columns(residual, jac)
        n_bad = np.count_nonzero(~ok)
        if n_bad:
            self.counters[category] = self.counters.get(category, 0) + int(n_bad)
            points, residual = points[ok], residual[:, ok]
            jac = jac[ok] if jac is not None else None
        scatter_add(self.residual, points, sign * residual)
        if self.jacobian is not None and jac is not None:
            self.jacobian.add_diag_blocks(points, jac, sign)

    def add_edge_contribution(self, edge_ids: np.ndarray, flux: np.ndarray,
                              J_i: Optional[np.ndarray], J_j: Optional[np.ndarray],
                              sign: float = 1.0, category: str = 'convective') -> None:
        """
        Add ``sign * flux`` to the first endpoint and subtract it from the second.

        Edges with a non-finite flux or Jacobian are dropped and counted.
        """
        ok = _finite_columns(flux, J_i, J_j)
        n_bad = np.count_nonzero(~ok)
        if n_bad:
            self.counters[category] = self.counters.get(category, 0) + int(n_bad)
            edge_ids, flux = edge_ids[ok], flux[:, ok]
            if J_i is not None:
                J_i, J_j = J_i[ok], J_j[ok]
        i, j = self.mesh.edges[edge_ids, 0], self.mesh.edges[edge_ids, 1]
        scatter_add(self.residual, i, sign * flux)
        scatter_add(self.residual, j, -sign * flux)
        if self.jacobian is not None and J_i is not None:
            self.jacobian.add_edge_blocks(edge_ids, J_i, J_j, sign)

    def add_boundary_flux(self, vertices: np.ndarray, interior: FlowState,
                          ghost: FlowState, normals: np.ndarray) -> None:
        """Convective boundary flux from interior to ghost through outward normals."""
        flux, J_i, _ = self.boundary_scheme.compute_residual(
            interior, ghost, normals, implicit=self.jacobian is not None)
        self.add_point_contribution(vertices, flux, J_i, sign=1.0, category='convective')

    def add_boundary_viscous_flux(self, vertices: np.ndarray, neighbors: np.ndarray,
                                  interior: FlowState, ghost: FlowState,
                                  normals: np.ndarray) -> None:
        """
        Viscous boundary flux using the interior gradient on both sides.

        The ghost state sits at the coordinates of each vertex's normal neighbour.
        """
        grad = self.nodes.primitive_gradient[:, :, vertices]
        transport_i = self.transport.take(vertices)
        transport_j = self.free_stream.transport.take(np.zeros(len(vertices), dtype=int))
        Fv, J_i, _ = self.viscous.compute_residual(
            interior, ghost, grad, grad, transport_i, transport_j,
            self.mesh.coords[:, vertices], self.mesh.coords[:, neighbors],
            normals, implicit=self.jacobian is not None)
        self.add_point_contribution(vertices, Fv, J_i, sign=-1.0, category='viscous')

    # ------------------------------------------------------------------
    # Preprocessing
    # ------------------------------------------------------------------

    def set_primitive_variables(self) -> int:
        """Convert U on every point; non-physical points are restored and counted."""
        n_bad = self.nodes.set_primitive_variables()
        n_bad = self._reduce_count(n_bad)
        if n_bad:
            self.counters['nonphysical'] += n_bad
            if self.context.is_root:
                log.warning(f"{n_bad} non-physical points reset to the previous iterate.")
        return n_bad

    def set_max_eigenvalue(self) -> None:
        """Spectral radius per point for the centered dissipation."""
        lam = max_eigenvalue(self.nodes.state, self.mesh)
        self.nodes.lambda_centered[:] = lam
        self.context.exchange(self.mesh, self.nodes.lambda_centered[np.newaxis])

    def compute_gradients(self, iteration: int = 0) -> None:
        """Conserved-variable gradients and, up to the freeze iteration, limiters."""
        cfg = self.config
        gradient = GRADIENTS[cfg.gradient_method]
        U = self.nodes.solution
        self.nodes.gradient = gradient(U, self.mesh)
        self.context.exchange(self.mesh, self.nodes.gradient.reshape(-1, self.mesh.n_points))

        if cfg.slope_limiter != SlopeLimiter.NONE and iteration <= cfg.limiter_iterations:
            self.nodes.limiter = compute_limiter(U, self.nodes.gradient, self.mesh,
                                                 cfg.slope_limiter, cfg.venkat_coeff,
                                                 cfg.ref_length)
            self.context.exchange(self.mesh, self.nodes.limiter)

    def compute_viscous_data(self) -> None:
        """Transport properties and gradients of the viscous primitives."""
        gradient = GRADIENTS[self.config.gradient_method]
        self.transport = Transport.from_state(self.gas, self.nodes.state)
        self.nodes.primitive_gradient = gradient(viscous_primitives(self.nodes.state), self.mesh)

    def preprocessing(self, iteration: int = 0) -> None:
        """Refresh primitives, gradients, spectral radii and clear the residual."""
        cfg = self.config
        self.set_primitive_variables()

        if cfg.convective_scheme == ConvectiveScheme.UPWIND and cfg.muscl:
            self.compute_gradients(iteration)
        if cfg.convective_scheme == ConvectiveScheme.CENTERED:
            self.set_max_eigenvalue()
        if self.viscous is not None:
            self.compute_viscous_data()

        self.residual[:] = 0.0
        if self.jacobian is not None:
            self.jacobian.set_zero()

    # ------------------------------------------------------------------
    # Residual assembly
    # ------------------------------------------------------------------

    def centered_residual(self) -> None:
        """Centered fluxes with scalar dissipation on every edge."""
        mesh = self.mesh
        i, j = mesh.edges[:, 0], mesh.edges[:, 1]
        state = self.nodes.state
        lam = self.nodes.lambda_centered
        flux, J_i, J_j = self.convective.compute_residual(
            state.take(i), state.take(j), mesh.normals,
            implicit=self.jacobian is not None,
            lambda_i=lam[i], lambda_j=lam[j],
            n_neighbors_i=mesh.n_neighbors[i], n_neighbors_j=mesh.n_neighbors[j])
        self.add_edge_contribution(np.arange(mesh.n_edges), flux, J_i, J_j)

    def upwind_residual(self) -> None:
        """Upwind fluxes, optionally on MUSCL-reconstructed edge states."""
        mesh = self.mesh
        cfg = self.config
        state = self.nodes.state
        if cfg.muscl:
            left, right, n_fallback = reconstruct_muscl(
                state, self.nodes.gradient, self.nodes.limiter, mesh, self.gas,
                use_limiter=cfg.slope_limiter != SlopeLimiter.NONE,
                T_min=cfg.temperature_min, T_max=cfg.temperature_max)
            self.counters['reconstruction'] += n_fallback
        else:
            left = state.take(mesh.edges[:, 0])
            right = state.take(mesh.edges[:, 1])

        flux, J_i, J_j = self.convective.compute_residual(
            left, right, mesh.normals, implicit=self.jacobian is not None)
        self.add_edge_contribution(np.arange(mesh.n_edges), flux, J_i, J_j)

    def viscous_residual(self) -> None:
        """Viscous edge fluxes, subtracted from the residual."""
        mesh = self.mesh
        i, j = mesh.edges[:, 0], mesh.edges[:, 1]
        state = self.nodes.state
        grad = self.nodes.primitive_gradient
        Fv, J_i, J_j = self.viscous.compute_residual(
            state.take(i), state.take(j), grad[:, :, i], grad[:, :, j],
            self.transport.take(i), self.transport.take(j),
            mesh.coords[:, i], mesh.coords[:, j], mesh.normals,
            implicit=self.jacobian is not None)
        self.add_edge_contribution(np.arange(mesh.n_edges), Fv, J_i, J_j,
                                   sign=-1.0, category='viscous')

    def source_residual(self) -> None:
        """Point sources on owned points."""
        n = self.mesh.n_point_domain
        points = np.arange(n)
        state = self.nodes.state.take(points)
        coords = self.mesh.coords[:, :n]
        volumes = self.mesh.volumes[:n]
        for source in self.sources:
            with np.errstate(all='ignore'):
                residual, jac = source.compute(state, coords, volumes,
                                               implicit=self.jacobian is not None)
            self.add_point_contribution(points, residual, jac, sign=source.sign,
                                        category=source.name)

    def boundary_residuals(self) -> None:
        for tag, marker in self.mesh.markers.items():
            self.boundaries[tag].apply(self, tag, marker)

    def compute_residual(self) -> None:
        """Assemble the full residual (and Jacobian) for the current state."""
        counts_before = dict(self.counters)
        if self.config.convective_scheme == ConvectiveScheme.CENTERED:
            self.centered_residual()
        else:
            self.upwind_residual()
        if self.viscous is not None:
            self.viscous_residual()
        self.source_residual()
        self.boundary_residuals()
        if self.config.dual_time:
            set_residual_dual_time(self.nodes, self.residual, self.mesh, self.config,
                                   self.delta_unst_time, self.jacobian)
        self._report_counters(counts_before)

    def _report_counters(self, before: Dict[str, int]) -> None:
        for name in self.counters:
            if name == 'nonphysical':
                continue
            delta = self._reduce_count(self.counters[name] - before.get(name, 0))
            if delta and self.context.is_root:
                log.warning(f"{delta} non-finite {name} contributions dropped.")

    # ------------------------------------------------------------------
    # Time integration
    # ------------------------------------------------------------------

    def set_time_step(self, iteration: int = 0) -> TimeStepInfo:
        lambda_visc = None
        if self.viscous is not None:
            mesh = self.mesh
            i, j = mesh.edges[:, 0], mesh.edges[:, 1]
            state = self.nodes.state
            radius = self.viscous.spectral_radius(state.take(i), state.take(j),
                                                  self.transport.take(i), self.transport.take(j),
                                                  mesh.edge_areas)
            lambda_visc = np.zeros(mesh.n_points)
            np.add.at(lambda_visc, i, radius)
            np.add.at(lambda_visc, j, radius)

        info = compute_time_step(self.nodes, self.mesh, self.config, self.context,
                                 iteration, lambda_visc, self.delta_unst_time)
        self.delta_unst_time = info.delta_unst_time
        self.time_step_info = info
        return info

    def _exchange_solution(self) -> None:
        self.context.exchange(self.mesh, self.nodes.solution)

    def iterate(self, iteration: int = None) -> ResidualNorms:
        """
        One pseudo-time iteration of the configured scheme.

        Returns:
            Residual norms (RMS and max per variable)
        """
        iteration = self.iteration if iteration is None else iteration
        cfg = self.config
        nodes = self.nodes

        if cfg.time_integration == TimeIntegration.RUNGE_KUTTA_EXPLICIT:
            norms = None
            for stage, alpha in enumerate(cfg.rk_alpha):
                self.preprocessing(iteration)
                if stage == 0:
                    nodes.set_old_solution()
                    self.set_time_step(iteration)
                self.compute_residual()
                stage_norms = explicit_rk_update(nodes, self.residual, self.mesh,
                                                 self.context, alpha)
                if norms is None:
                    norms = stage_norms
                self._exchange_solution()
        else:
            self.preprocessing(iteration)
            nodes.set_old_solution()
            self.set_time_step(iteration)
            self.compute_residual()
            if cfg.time_integration == TimeIntegration.EULER_IMPLICIT:
                norms, self.linear_iterations = implicit_euler_update(
                    nodes, self.residual, self.jacobian, self.linear_solver,
                    self.mesh, self.context)
            else:
                norms = explicit_euler_update(nodes, self.residual, self.mesh, self.context)
            self._exchange_solution()

        with np.errstate(divide='ignore'):
            self.residual_history.append(np.log10(norms.rms))
        self.iteration += 1
        return norms

    def species_residual(self) -> float:
        """log10 of the largest species-density RMS residual of the last iteration."""
        if not self.residual_history:
            return np.inf
        return float(np.max(self.residual_history[-1][:self.layout.n_species]))

    def set_initial_condition(self) -> None:
        """Initialize U^n and U^(n-1) from U before the first physical step."""
        self.nodes.solution_time_n[:] = self.nodes.solution
        self.nodes.solution_time_n1[:] = self.nodes.solution

    def push_time_levels(self) -> None:
        self.nodes.push_time_levels()
        self.mesh.volumes_nm1 = self.mesh.volumes_n.copy()
        self.mesh.volumes_n = self.mesh.volumes.copy()

    def solve(self, max_iter: int = None, n_time_steps: int = 1) -> Dict:
        """
        Iterate to convergence or ``max_iter``.

        Steady runs stop when the largest species-density residual drops
        below ``convergence_tol`` (log10). Time-accurate stepping treats
        each iteration as a physical step; dual time stepping runs the
        inner iterations for each of ``n_time_steps`` physical steps.

        Returns:
            Dictionary with convergence info
        """
        cfg = self.config
        max_iter = cfg.max_iter if max_iter is None else max_iter
        start = time.perf_counter()

        if self.context.is_root:
            log.info(f"NEMO Euler solver: {self.mesh.n_points} points, "
                     f"{self.layout.n_species} species ({', '.join(self.gas.species_names)}), "
                     f"{cfg.convective_scheme.value} / {cfg.time_integration.value}, CFL {cfg.cfl}")

        n_steps = n_time_steps if cfg.dual_time else 1
        if cfg.unsteady:
            self.set_initial_condition()

        converged = False
        for _ in range(n_steps):
            converged = False
            for inner in range(max_iter):
                self.iterate(inner if cfg.dual_time else self.iteration)

                if cfg.time_marching == TimeMarching.TIME_STEPPING:
                    self.time += self.delta_unst_time
                    self.push_time_levels()

                res = self.species_residual()
                if self.context.is_root and self.iteration % cfg.print_interval == 0:
                    info = self.time_step_info
                    log.info(f"Iter {self.iteration:6d}, res = {res:.4f}, "
                             f"dt = [{info.min_delta_time:.4e}, {info.max_delta_time:.4e}], "
                             f"M_max = {np.max(self.nodes.state.mach):.4f}")

                if res < cfg.convergence_tol and cfg.time_marching != TimeMarching.TIME_STEPPING:
                    converged = True
                    if self.context.is_root:
                        log.info(f"Converged at iteration {self.iteration}")
                    break

            if cfg.dual_time:
                self.time += self.delta_unst_time
                self.push_time_levels()

        self.set_primitive_variables()
        return {
            'converged': converged,
            'iterations': self.iteration,
            'time': self.time,
            'wall_time': time.perf_counter() - start,
            'final_residual': self.species_residual() if self.residual_history else None,
            'counters': dict(self.counters),
        }

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get_state(self) -> FlowState:
        """Current converted state of all points."""
        return self.nodes.state

    def set_solution(self, U: np.ndarray) -> int:
        """Overwrite the conserved state and convert it; returns the non-physical count."""
        self.nodes.solution[:] = U
        self.nodes.set_old_solution()
        return self.set_primitive_variables()
