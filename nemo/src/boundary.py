"""
Boundary conditions for the NEMO solver.

Each boundary kind maps to a strategy class through ``BOUNDARY_CONDITIONS``.
Ghost-state builders are plain functions so they can be tested on their own;
the strategies feed the ghost states to the solver's boundary flux scheme,
except the symmetry plane, which imposes its pressure flux directly.
"""

import numpy as np
from abc import ABC, abstractmethod
from typing import Tuple

from .config import BoundaryKind, MarkerConfig
from .gas import GasModel
from .mesh import BoundaryMarker
from .state import FlowState


def _unit_normals(normals: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    area = np.sqrt(np.sum(normals**2, axis=0))
    return normals / np.where(area > 0.0, area, 1.0), area


def far_field_ghost(interior: FlowState, free_stream: FlowState) -> FlowState:
    """Far field: the free-stream state, unconditionally."""
    return free_stream.tile(interior.n_points)


def supersonic_outlet_ghost(interior: FlowState) -> FlowState:
    """Supersonic outlet: pure extrapolation of the interior state."""
    return interior.copy()


def outlet_ghost(interior: FlowState, normals: np.ndarray, gas: GasModel,
                 exit_pressure: float) -> FlowState:
    """
    Pressure outlet ghost state.

    Supersonic points (|u|/a >= 1) extrapolate the interior state. Subsonic
    points keep the entropy P / rho^gamma and the outgoing Riemann invariant
    Vn + 2a/(gamma-1), impose the back pressure, and extrapolate T, Tve and
    the mass fractions. gamma is the interior frozen value a^2 rho / P.

    Args:
        interior: Interior states at the boundary vertices
        normals: Outward area-weighted normals (n_dim, n_vertex)
        gas: Thermochemistry model
        exit_pressure: Back pressure [Pa]
    """
    lay = interior.layout
    unit, _ = _unit_normals(normals)

    rho = interior.rho
    P = interior.P
    a = interior.a
    vel = interior.velocity
    gamma = a**2 * rho / P
    gm1 = gamma - 1.0

    supersonic = np.sqrt(np.sum(vel**2, axis=0)) / a >= 1.0

    Vn = np.sum(vel * unit, axis=0)
    entropy = P * (1.0 / rho)**gamma
    riemann = Vn + 2.0 * a / gm1

    P_exit = np.full_like(P, exit_pressure)
    rho_exit = (P_exit / entropy)**(1.0 / gamma)
    a_exit = np.sqrt(gamma * P_exit / rho_exit)
    Vn_exit = riemann - 2.0 * a_exit / gm1
    vel_exit = vel + (Vn_exit - Vn) * unit
    rhos_exit = interior.Y * rho_exit

    T, Tve = interior.T, interior.Tve
    gas_state = gas.set_state(rhos_exit, T, Tve)
    e_total, e_ve = gas_state.mixture_energies

    U = np.empty_like(interior.U)
    U[:lay.n_species] = rhos_exit
    U[lay.momentum] = rho_exit * vel_exit
    U[lay.energy] = rho_exit * (e_total + 0.5 * np.sum(vel_exit**2, axis=0))
    U[lay.energy_ve] = rho_exit * e_ve

    V = np.empty_like(interior.V)
    V[lay.rhos] = rhos_exit
    V[lay.T] = T
    V[lay.TVE] = Tve
    V[lay.velocity] = vel_exit
    V[lay.P] = P_exit
    V[lay.RHO] = rho_exit
    V[lay.H] = (U[lay.energy] + P_exit) / rho_exit
    V[lay.A] = a_exit
    V[lay.RHOCVTR] = gas_state.rho_cvtr
    V[lay.RHOCVVE] = gas_state.rho_cvve

    ghost = FlowState(layout=lay, U=U, V=V,
                      dPdU=interior.dPdU.copy(), dTdU=interior.dTdU.copy(),
                      dTvedU=interior.dTvedU.copy(),
                      eve=gas_state.species_eve, cvve=gas_state.species_cvve,
                      nonphysical=np.zeros(interior.n_points, dtype=bool))
    return ghost.where(supersonic, interior)


def symmetry_flux(interior: FlowState, normals: np.ndarray, implicit: bool = False):
    """
    Pressure-only flux through an inviscid wall / symmetry plane.

    Residual: zero species and energy flux, momentum P * n.
    Jacobian: the convective flux Jacobian with zero normal velocity,
        J[mom, :] = n_hat (x) dP/dU
        J[:, mom] += [Y_s, u, (rhoE + P)/rho, rhoEve/rho] (x) n_hat
    scaled by the face area.

    Returns:
        residual (n_var, n_vertex), Jacobian blocks (n_vertex, n_var, n_var) or None
    """
    lay = interior.layout
    unit, area = _unit_normals(normals)

    residual = np.zeros_like(interior.U)
    residual[lay.momentum] = interior.P * unit * area

    if not implicit:
        return residual, None

    n_vertex = interior.n_points
    jac = np.zeros((n_vertex, lay.n_var, lay.n_var))
    jac[:, lay.momentum, :] = np.einsum('dp,bp->pdb', unit, interior.dPdU)

    carried = interior.U / interior.rho
    carried[lay.energy] = (interior.U[lay.energy] + interior.P) / interior.rho
    jac[:, :, lay.momentum] += np.einsum('ap,dp->pad', carried, unit)
    return residual, jac * area[:, None, None]


class BoundaryCondition(ABC):
    """Abstract base class for boundary conditions."""

    kind: BoundaryKind

    def __init__(self, marker_config: MarkerConfig = None):
        self.marker_config = marker_config if marker_config is not None else MarkerConfig(kind=self.kind)

    @abstractmethod
    def apply(self, solver, tag: str, marker: BoundaryMarker) -> None:
        """
        Add the boundary contribution of one marker to the solver residual.

        Args:
            solver: NEMOEulerSolver assembling the residual
            tag: Marker name
            marker: Boundary vertices and outward normals
        """
        pass


class FarFieldBC(BoundaryCondition):
    """Characteristic far field using the free-stream state as ghost."""

    kind = BoundaryKind.FAR_FIELD

    def apply(self, solver, tag, marker):
        vertices, normals = solver.owned_vertices(marker)
        interior = solver.nodes.state.take(vertices)
        ghost = far_field_ghost(interior, solver.free_stream.state)
        solver.add_boundary_flux(vertices, interior, ghost, normals)
        if solver.viscous is not None:
            neighbors = marker.normal_neighbors[marker.vertices < solver.mesh.n_point_domain]
            solver.add_boundary_viscous_flux(vertices, neighbors, interior, ghost, normals)


class SymmetryBC(BoundaryCondition):
    """Symmetry plane / inviscid wall."""

    kind = BoundaryKind.SYMMETRY

    def apply(self, solver, tag, marker):
        vertices, normals = solver.owned_vertices(marker)
        interior = solver.nodes.state.take(vertices)
        residual, jac = symmetry_flux(interior, normals, solver.config.implicit)
        solver.add_point_contribution(vertices, residual, jac, sign=1.0,
                                      category='convective')


class EulerWallBC(SymmetryBC):
    kind = BoundaryKind.EULER_WALL


class InletBC(BoundaryCondition):
    """
    Subsonic inlet (total conditions or mass flow).

    Not available: the species and vibrational closure of the inlet state
    is not defined, so applying it stops the run.
    """

    kind = BoundaryKind.INLET

    def apply(self, solver, tag, marker):
        solver.context.error(
            f"Inlet boundary ({self.marker_config.inlet_kind.value}) on marker '{tag}' "
            "is not operational in the NEMO solver.", "InletBC.apply")


class SupersonicInletBC(BoundaryCondition):
    """Fully prescribed supersonic inlet; not available, applying it stops the run."""

    kind = BoundaryKind.SUPERSONIC_INLET

    def apply(self, solver, tag, marker):
        solver.context.error(
            f"Supersonic inlet boundary on marker '{tag}' is not operational "
            "in the NEMO solver.", "SupersonicInletBC.apply")


class OutletBC(BoundaryCondition):
    """Subsonic pressure outlet, extrapolating when the flow is supersonic."""

    kind = BoundaryKind.OUTLET

    def apply(self, solver, tag, marker):
        vertices, normals = solver.owned_vertices(marker)
        interior = solver.nodes.state.take(vertices)
        ghost = outlet_ghost(interior, normals, solver.gas,
                             self.marker_config.outlet_pressure)
        solver.add_boundary_flux(vertices, interior, ghost, normals)


class SupersonicOutletBC(BoundaryCondition):
    """Supersonic outlet: ghost state equals the interior state."""

    kind = BoundaryKind.SUPERSONIC_OUTLET

    def apply(self, solver, tag, marker):
        vertices, normals = solver.owned_vertices(marker)
        interior = solver.nodes.state.take(vertices)
        ghost = supersonic_outlet_ghost(interior)
        solver.add_boundary_flux(vertices, interior, ghost, normals)


BOUNDARY_CONDITIONS = {
    BoundaryKind.FAR_FIELD: FarFieldBC,
    BoundaryKind.SYMMETRY: SymmetryBC,
    BoundaryKind.EULER_WALL: EulerWallBC,
    BoundaryKind.INLET: InletBC,
    BoundaryKind.OUTLET: OutletBC,
    BoundaryKind.SUPERSONIC_INLET: SupersonicInletBC,
    BoundaryKind.SUPERSONIC_OUTLET: SupersonicOutletBC,
}


def make_boundary_condition(marker_config: MarkerConfig) -> BoundaryCondition:
    return BOUNDARY_CONDITIONS[marker_config.kind](marker_config)
