"""
Local time steps, spectral radii and the pseudo-time updates.

The updates work on owned points only; halo columns are refreshed by the
caller's halo exchange afterwards.
"""

import logging
from typing import NamedTuple, Optional, Tuple

import numpy as np

from .config import SolverConfig, TimeMarching
from .linear_solver import BlockJacobian, LinearSolver
from .mesh import DualMesh, scatter_add
from .parallel import ProcessContext
from .state import FlowState
from .variables import NodeVariables

log = logging.getLogger(__name__)

# Viscous time-step constant
K_VISC = 0.5


class TimeStepInfo(NamedTuple):
    min_delta_time: float
    max_delta_time: float
    delta_unst_time: float


class ResidualNorms(NamedTuple):
    rms: np.ndarray     # (n_var,)
    max: np.ndarray     # (n_var,)


def _edge_lambda(state: FlowState, mesh: DualMesh) -> np.ndarray:
    """(|mean Vn| + mean a * Area) per edge, relative to the grid on moving meshes."""
    i, j = mesh.edges[:, 0], mesh.edges[:, 1]
    mean_vel = 0.5 * (state.velocity[:, i] + state.velocity[:, j])
    mean_vn = np.sum(mean_vel * mesh.normals, axis=0)
    if mesh.moving:
        grid = 0.5 * (mesh.grid_velocity[:, i] + mesh.grid_velocity[:, j])
        mean_vn -= np.sum(grid * mesh.normals, axis=0)
    mean_a = 0.5 * (state.a[i] + state.a[j])
    return np.abs(mean_vn) + mean_a * mesh.edge_areas


def _boundary_lambda(state: FlowState, mesh: DualMesh, target: np.ndarray) -> None:
    for marker in mesh.markers.values():
        v = marker.vertices
        vn = np.sum(state.velocity[:, v] * marker.normals, axis=0)
        if mesh.moving:
            vn -= np.sum(mesh.grid_velocity[:, v] * marker.normals, axis=0)
        np.add.at(target, v, np.abs(vn) + state.a[v] * marker.areas)


def max_eigenvalue(state: FlowState, mesh: DualMesh) -> np.ndarray:
    """
    Inviscid spectral radius per point, summed over edges and boundary faces.

    Returns:
        lambda: (n_points,)
    """
    i, j = mesh.edges[:, 0], mesh.edges[:, 1]
    lam = np.zeros(mesh.n_points)
    edge = _edge_lambda(state, mesh)
    np.add.at(lam, i, edge)
    np.add.at(lam, j, edge)
    _boundary_lambda(state, mesh, lam)
    return lam


def _local_time_step(volumes, lam_inv, lam_visc, cfl, max_dt, viscous):
    with np.errstate(divide='ignore', invalid='ignore'):
        dt = np.where(lam_inv > 0.0, cfl * volumes / lam_inv, np.inf)
        if viscous:
            dt_visc = np.where(lam_visc > 0.0, cfl * K_VISC * volumes**2 / lam_visc, np.inf)
            dt = np.minimum(dt, dt_visc)
    dt = np.minimum(dt, max_dt)
    return np.where(volumes > 0.0, dt, 0.0)


def compute_time_step(nodes: NodeVariables, mesh: DualMesh, config: SolverConfig,
                      context: ProcessContext, iteration: int = 0,
                      lambda_visc: Optional[np.ndarray] = None,
                      delta_unst_time: Optional[float] = None) -> TimeStepInfo:
    """
    Fill ``nodes.delta_time`` for every owned point.

    dt = min(CFL Vol / lambda_inv, K_v CFL Vol^2 / lambda_visc, max_delta_time),
    zero where Vol = 0. Time-accurate stepping uses a single global step;
    dual time stepping caps the pseudo step at 2/3 of the physical step.

    Args:
        nodes: Solution storage (its state must be current)
        mesh: Dual mesh
        config: Solver configuration
        context: Process context for the global min/max reductions
        iteration: Pseudo-time iteration counter
        lambda_visc: Viscous spectral radii per point, when viscous
        delta_unst_time: Current physical time step (dual time)

    Returns:
        TimeStepInfo with the global min/max step and the physical step
    """
    n = mesh.n_point_domain
    nodes.max_lambda_inv[:] = max_eigenvalue(nodes.state, mesh)
    viscous = lambda_visc is not None
    if viscous:
        nodes.max_lambda_visc[:] = lambda_visc

    volumes = mesh.volumes[:n]
    dt = _local_time_step(volumes, nodes.max_lambda_inv[:n], nodes.max_lambda_visc[:n],
                          config.cfl, config.max_delta_time, viscous)

    positive = dt[dt > 0.0]
    min_dt = context.allreduce(float(np.min(positive)) if positive.size else np.inf, 'min')
    max_dt = context.allreduce(float(np.max(dt)) if dt.size else 0.0, 'max')

    if delta_unst_time is None:
        delta_unst_time = config.delta_unst_time

    if config.time_marching == TimeMarching.TIME_STEPPING:
        if config.unst_cfl != 0.0:
            unst = _local_time_step(volumes, nodes.max_lambda_inv[:n], nodes.max_lambda_visc[:n],
                                    config.unst_cfl, config.max_delta_time, viscous)
            unst = unst[unst > 0.0]
            global_dt = context.allreduce(float(np.min(unst)) if unst.size else np.inf, 'min')
        else:
            global_dt = delta_unst_time
        dt = np.where(volumes > 0.0, global_dt, 0.0)
        min_dt = max_dt = delta_unst_time = global_dt

    elif config.dual_time:
        if iteration == 0 and config.unst_cfl != 0.0:
            unst = _local_time_step(volumes, nodes.max_lambda_inv[:n], nodes.max_lambda_visc[:n],
                                    config.unst_cfl, config.max_delta_time, viscous)
            unst = unst[unst > 0.0]
            delta_unst_time = min(context.allreduce(float(np.min(unst)) if unst.size else np.inf,
                                                    'min'), config.max_delta_time)
        if not config.implicit:
            dt = np.minimum(2.0 / 3.0 * delta_unst_time, dt)
        dt = np.where(volumes > 0.0, dt, 0.0)

    nodes.delta_time[:n] = dt
    return TimeStepInfo(min_dt, max_dt, delta_unst_time)


def residual_norms(residual: np.ndarray, context: ProcessContext) -> ResidualNorms:
    """
    Global RMS and max-norm of a residual restricted to owned points.

    Args:
        residual: (n_var, n_owned)
    """
    n_local = residual.shape[1]
    sq = context.allreduce(np.sum(residual**2, axis=1), 'sum')
    n_global = context.allreduce(n_local, 'sum')
    peak = context.allreduce(np.max(np.abs(residual), axis=1) if n_local else
                             np.zeros(residual.shape[0]), 'max')
    rms = np.sqrt(sq / max(n_global, 1))
    return ResidualNorms(rms, peak)


def _scaled_owned(nodes: NodeVariables, residual: np.ndarray, mesh: DualMesh):
    n = mesh.n_point_domain
    volumes = mesh.volumes[:n]
    with np.errstate(divide='ignore', invalid='ignore'):
        scale = np.where(volumes > 0.0, nodes.delta_time[:n] / volumes, 0.0)
    return scale, residual[:, :n] + nodes.res_trunc_error[:, :n]


def explicit_euler_update(nodes: NodeVariables, residual: np.ndarray, mesh: DualMesh,
                          context: ProcessContext) -> ResidualNorms:
    """U <- U - dt / Vol * (R + TE) on owned points."""
    n = mesh.n_point_domain
    scale, res = _scaled_owned(nodes, residual, mesh)
    nodes.solution[:, :n] -= scale * res
    return residual_norms(res, context)


def explicit_rk_update(nodes: NodeVariables, residual: np.ndarray, mesh: DualMesh,
                       context: ProcessContext, alpha: float) -> ResidualNorms:
    """Runge-Kutta stage: U <- U_old - alpha * dt / Vol * (R + TE)."""
    n = mesh.n_point_domain
    scale, res = _scaled_owned(nodes, residual, mesh)
    nodes.solution[:, :n] = nodes.solution_old[:, :n] - alpha * scale * res
    return residual_norms(res, context)


def implicit_euler_update(nodes: NodeVariables, residual: np.ndarray,
                          jacobian: BlockJacobian, linear_solver: LinearSolver,
                          mesh: DualMesh, context: ProcessContext
                          ) -> Tuple[ResidualNorms, int]:
    """
    Backward-Euler pseudo step.

    Solves (Vol/dt I + dR/dU) dU = -(R + TE) on owned points and applies
    U <- U + relax * dU. Points with dt = 0 get an identity row and a zero
    right-hand side, so their increment is exactly zero.

    Returns:
        Residual norms and the number of linear iterations
    """
    n = mesh.n_point_domain
    volumes = mesh.volumes[:n]
    dt = nodes.delta_time[:n]
    res = residual[:, :n] + nodes.res_trunc_error[:, :n]

    active = dt > 0.0
    points = np.arange(n)
    jacobian.add_to_diagonal(points[active], volumes[active] / dt[active])
    if not np.all(active):
        jacobian.set_identity_rows(points[~active])

    rhs = np.zeros_like(residual)
    rhs[:, :n] = np.where(active, -res, 0.0)

    dU, iterations = linear_solver.solve(jacobian, rhs, n)
    nodes.solution[:, :n] += nodes.under_relaxation[:n] * dU[:, :n]
    return residual_norms(res, context), iterations


def set_residual_dual_time(nodes: NodeVariables, residual: np.ndarray, mesh: DualMesh,
                           config: SolverConfig, delta_unst_time: float,
                           jacobian: Optional[BlockJacobian] = None) -> None:
    """
    Add the physical-time derivative of the dual time-stepping scheme.

        1st order: (U Vol_np1 - U_n Vol_n) / dt
        2nd order: (3 U Vol_np1 - 4 U_n Vol_n + U_nm1 Vol_nm1) / (2 dt)
    """
    n = mesh.n_point_domain
    U = nodes.solution[:, :n]
    Un = nodes.solution_time_n[:, :n]
    Unm1 = nodes.solution_time_n1[:, :n]
    vol = mesh.volumes[:n]
    vol_n = mesh.volumes_n[:n]
    vol_nm1 = mesh.volumes_nm1[:n]

    if config.time_marching == TimeMarching.DUAL_TIME_1ST:
        residual[:, :n] += (U * vol - Un * vol_n) / delta_unst_time
        diag = vol / delta_unst_time
    else:
        residual[:, :n] += (3.0 * U * vol - 4.0 * Un * vol_n + Unm1 * vol_nm1) \
            / (2.0 * delta_unst_time)
        diag = 3.0 * vol / (2.0 * delta_unst_time)

    if jacobian is not None:
        jacobian.add_to_diagonal(np.arange(n), diag)
