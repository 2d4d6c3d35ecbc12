"""
Flow state representation and conserved <-> primitive conversion.

Conserved variables U (n_var = n_species + n_dim + 2):
    rho_s   - species partial densities [kg/m³]
    rhoU    - momentum per volume [kg/(m²·s)]
    rhoE    - total energy per volume [J/m³]
    rhoEve  - vibrational-electronic energy per volume [J/m³]

Primitive variables V (n_prim = n_species + n_dim + 8):
    [rho_s.., T, Tve, u.., P, rho, h, a, rhoCvtr, rhoCvve]

All arrays are variables-first: (n_var, n_points).
"""

import numpy as np
from dataclasses import dataclass, replace
from typing import Optional

from .gas import GasModel


@dataclass(frozen=True)
class VariableLayout:
    """Index layout of the conserved and primitive vectors."""
    n_species: int
    n_dim: int

    @property
    def n_var(self) -> int:
        return self.n_species + self.n_dim + 2

    @property
    def n_prim(self) -> int:
        return self.n_species + self.n_dim + 8

    # Conserved indices
    @property
    def momentum(self) -> slice:
        return slice(self.n_species, self.n_species + self.n_dim)

    @property
    def energy(self) -> int:
        return self.n_species + self.n_dim

    @property
    def energy_ve(self) -> int:
        return self.n_species + self.n_dim + 1

    # Primitive indices
    @property
    def rhos(self) -> slice:
        return slice(0, self.n_species)

    @property
    def T(self) -> int:
        return self.n_species

    @property
    def TVE(self) -> int:
        return self.n_species + 1

    @property
    def VEL(self) -> int:
        return self.n_species + 2

    @property
    def velocity(self) -> slice:
        return slice(self.VEL, self.VEL + self.n_dim)

    @property
    def P(self) -> int:
        return self.n_species + self.n_dim + 2

    @property
    def RHO(self) -> int:
        return self.n_species + self.n_dim + 3

    @property
    def H(self) -> int:
        return self.n_species + self.n_dim + 4

    @property
    def A(self) -> int:
        return self.n_species + self.n_dim + 5

    @property
    def RHOCVTR(self) -> int:
        return self.n_species + self.n_dim + 6

    @property
    def RHOCVVE(self) -> int:
        return self.n_species + self.n_dim + 7


@dataclass
class FlowState:
    """
    Converted state at a set of points (mesh nodes, edge ends or ghosts).

    Holds U and V together with the derivative data needed for
    linearisation. Primitive variables are exposed as properties.
    """
    layout: VariableLayout
    U: np.ndarray           # (n_var, n)
    V: np.ndarray           # (n_prim, n)
    dPdU: np.ndarray        # (n_var, n)
    dTdU: np.ndarray        # (n_var, n)
    dTvedU: np.ndarray      # (n_var, n)
    eve: np.ndarray         # (n_species, n)
    cvve: np.ndarray        # (n_species, n)
    nonphysical: np.ndarray  # (n,) bool

    # --- Primitive variables as properties ---

    @property
    def n_points(self) -> int:
        return self.U.shape[1]

    @property
    def rhos(self) -> np.ndarray:
        return self.V[self.layout.rhos]

    @property
    def T(self) -> np.ndarray:
        return self.V[self.layout.T]

    @property
    def Tve(self) -> np.ndarray:
        return self.V[self.layout.TVE]

    @property
    def velocity(self) -> np.ndarray:
        return self.V[self.layout.velocity]

    @property
    def P(self) -> np.ndarray:
        return self.V[self.layout.P]

    @property
    def rho(self) -> np.ndarray:
        return self.V[self.layout.RHO]

    @property
    def h(self) -> np.ndarray:
        """Total specific enthalpy [J/kg]."""
        return self.V[self.layout.H]

    @property
    def a(self) -> np.ndarray:
        return self.V[self.layout.A]

    @property
    def rho_cvtr(self) -> np.ndarray:
        return self.V[self.layout.RHOCVTR]

    @property
    def rho_cvve(self) -> np.ndarray:
        return self.V[self.layout.RHOCVVE]

    @property
    def Y(self) -> np.ndarray:
        return self.rhos / self.rho

    @property
    def mach(self) -> np.ndarray:
        return np.sqrt(np.sum(self.velocity**2, axis=0)) / self.a

    # --- Selection ---

    def take(self, index) -> 'FlowState':
        """State restricted to the given point/column indices."""
        return FlowState(
            layout=self.layout,
            U=self.U[:, index], V=self.V[:, index],
            dPdU=self.dPdU[:, index], dTdU=self.dTdU[:, index],
            dTvedU=self.dTvedU[:, index],
            eve=self.eve[:, index], cvve=self.cvve[:, index],
            nonphysical=self.nonphysical[index],
        )

    def where(self, mask: np.ndarray, other: 'FlowState') -> 'FlowState':
        """Columns from ``other`` where ``mask`` is set, from self elsewhere."""
        def pick(a, b):
            return np.where(mask, b, a)
        return FlowState(
            layout=self.layout,
            U=pick(self.U, other.U), V=pick(self.V, other.V),
            dPdU=pick(self.dPdU, other.dPdU), dTdU=pick(self.dTdU, other.dTdU),
            dTvedU=pick(self.dTvedU, other.dTvedU),
            eve=pick(self.eve, other.eve), cvve=pick(self.cvve, other.cvve),
            nonphysical=pick(self.nonphysical, other.nonphysical),
        )

    def tile(self, n: int) -> 'FlowState':
        """Repeat a single-point state ``n`` times."""
        return self.take(np.zeros(n, dtype=int))

    def copy(self) -> 'FlowState':
        return replace(self, U=self.U.copy(), V=self.V.copy(), dPdU=self.dPdU.copy(),
                       dTdU=self.dTdU.copy(), dTvedU=self.dTvedU.copy(),
                       eve=self.eve.copy(), cvve=self.cvve.copy(),
                       nonphysical=self.nonphysical.copy())


def cons_to_prim(U: np.ndarray, gas: GasModel, layout: VariableLayout,
                 T_min: float = 50.0, T_max: float = 8.0e4,
                 T_guess: Optional[np.ndarray] = None) -> FlowState:
    """
    Convert conserved variables to primitives plus derivative data.

    A point is flagged non-physical when a species density is negative,
    the temperature inversion fails, a temperature leaves [T_min, T_max]
    or any derived quantity is not finite. Values at flagged points are
    still returned (possibly NaN) and the caller decides how to recover.

    Args:
        U: Conserved variables (n_var, n_points)
        gas: Thermochemistry model
        layout: Variable layout
        T_min, T_max: Admissible temperature range [K]
        T_guess: Optional starting values for the Tve inversion

    Returns:
        FlowState with V, dP/dU, dT/dU, dTve/dU, Eve, Cvve
    """
    U = np.asarray(U, dtype=float)
    ns, nd = layout.n_species, layout.n_dim
    n = U.shape[1]

    rhos = U[:ns]
    nonphys = np.any(rhos < 0.0, axis=0)

    rho = np.sum(rhos, axis=0)
    with np.errstate(divide='ignore', invalid='ignore'):
        vel = U[layout.momentum] / rho
    sqvel = np.sum(vel**2, axis=0)
    rhoE = U[layout.energy]
    rhoEve = U[layout.energy_ve]

    with np.errstate(all='ignore'):
        T, Tve, converged = gas.temperatures(rhos, rhoE - 0.5 * rho * sqvel, rhoEve,
                                             T_guess=T_guess)
        state = gas.set_state(rhos, T, Tve)
        P = state.pressure
        a = state.sound_speed
        rho_cvtr = state.rho_cvtr
        rho_cvve = state.rho_cvve
        eve = state.species_eve
        cvve = state.species_cvve
        h = (rhoE + P) / rho

    nonphys |= ~converged
    nonphys |= (T < T_min) | (T > T_max) | (Tve < T_min) | (Tve > T_max)

    V = np.empty((layout.n_prim, n))
    V[layout.rhos] = rhos
    V[layout.T] = T
    V[layout.TVE] = Tve
    V[layout.velocity] = vel
    V[layout.P] = P
    V[layout.RHO] = rho
    V[layout.H] = h
    V[layout.A] = a
    V[layout.RHOCVTR] = rho_cvtr
    V[layout.RHOCVVE] = rho_cvve

    dTdU, dTvedU, dPdU = _derivatives(gas, layout, rhos, vel, sqvel, T, eve,
                                      rho_cvtr, rho_cvve)

    nonphys |= ~np.all(np.isfinite(V), axis=0)
    nonphys |= ~np.all(np.isfinite(dPdU), axis=0)

    return FlowState(layout=layout, U=U.copy(), V=V, dPdU=dPdU, dTdU=dTdU,
                     dTvedU=dTvedU, eve=eve, cvve=cvve, nonphysical=nonphys)


def _derivatives(gas, layout, rhos, vel, sqvel, T, eve, rho_cvtr, rho_cvve):
    """Partial derivatives of T, Tve and P with respect to U."""
    ns = layout.n_species
    n = rhos.shape[1]
    R_s = gas.species_gas_constant[:, np.newaxis]
    cv_tr = gas.cv_tr[:, np.newaxis]
    ef = gas.formation_energy[:, np.newaxis]

    dTdU = np.zeros((layout.n_var, n))
    dTvedU = np.zeros((layout.n_var, n))

    with np.errstate(divide='ignore', invalid='ignore'):
        dTdU[:ns] = (-ef + 0.5 * sqvel - cv_tr * T) / rho_cvtr
        dTdU[layout.momentum] = -vel / rho_cvtr
        dTdU[layout.energy] = 1.0 / rho_cvtr
        dTdU[layout.energy_ve] = -1.0 / rho_cvtr

        has_ve = rho_cvve > 0.0
        safe_cvve = np.where(has_ve, rho_cvve, 1.0)
        dTvedU[:ns] = np.where(has_ve, -eve / safe_cvve, 0.0)
        dTvedU[layout.energy_ve] = np.where(has_ve, 1.0 / safe_cvve, 0.0)

    # P = T * sum(rho_s R_s)
    rho_R = np.sum(rhos * R_s, axis=0)
    dPdU = rho_R * dTdU
    dPdU[:ns] += R_s * T

    return dTdU, dTvedU, dPdU


def prim_to_cons(rhos: np.ndarray, T: np.ndarray, Tve: np.ndarray,
                 velocity: np.ndarray, gas: GasModel) -> np.ndarray:
    """
    Conserved variables from species densities, temperatures and velocity.

    Returns:
        U: (n_species + n_dim + 2, n_points)
    """
    rhos = np.asarray(rhos, dtype=float)
    velocity = np.asarray(velocity, dtype=float)
    state = gas.set_state(rhos, T, Tve)
    rho = state.density
    e_total, e_ve = state.mixture_energies

    ns, nd = rhos.shape[0], velocity.shape[0]
    U = np.empty((ns + nd + 2, rhos.shape[1]))
    U[:ns] = rhos
    U[ns:ns + nd] = rho * velocity
    U[ns + nd] = rho * (e_total + 0.5 * np.sum(velocity**2, axis=0))
    U[ns + nd + 1] = rho * e_ve
    return U
