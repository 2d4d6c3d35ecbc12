"""
Point source terms for the NEMO solver.

Each source returns its volume-integrated contribution and, in implicit
mode, the diagonal Jacobian block at every point. The assembler applies
the contribution with the source's ``sign``:
    +1  added to the residual (geometric terms written as fluxes)
    -1  subtracted (physical sources moved to the right-hand side)

Notation:
    U   - conservative variable array [rho_s, rhoU, rhoE, rhoEve]
    S   - source rate array (same shape as U)
"""

import numpy as np
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from .config import Capabilities
from .flux import inviscid_proj_flux, inviscid_proj_jacobian
from .gas import GasModel
from .state import FlowState


class SourceTerm(ABC):
    """Abstract base class for point source terms."""

    name: str = 'source'
    sign: float = -1.0

    @abstractmethod
    def compute(self, state: FlowState, coords: np.ndarray, volumes: np.ndarray,
                implicit: bool = False) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        Compute the source contribution.

        Args:
            state: Point states (n_var, n_points)
            coords: Point coordinates (n_dim, n_points)
            volumes: Dual volumes (n_points)
            implicit: Also return Jacobian blocks

        Returns:
            S * Vol: (n_var, n_points)
            dS/dU * Vol: (n_points, n_var, n_var), or None
        """
        pass


def linearize(rate: Callable[[np.ndarray, np.ndarray, np.ndarray], np.ndarray],
              state: FlowState, rel_step: float = 1e-6) -> np.ndarray:
    """
    Jacobian of a rate S(rho_s, T, Tve) with respect to U.

    Partials in (rho_s, T, Tve) are forward differences; the temperature
    partials are chained through dT/dU and dTve/dU:
        dS/dU_k = dS/drho_k [k species] + dS/dT dT/dU_k + dS/dTve dTve/dU_k

    Args:
        rate: Function returning S with shape (n_var, n_points)
        state: Point states

    Returns:
        Jacobian blocks (n_points, n_var, n_var)
    """
    lay = state.layout
    rhos, T, Tve = state.rhos, state.T, state.Tve
    S0 = rate(rhos, T, Tve)
    jac = np.zeros((state.n_points, lay.n_var, lay.n_var))

    rho_floor = 1e-10 * state.rho
    for s in range(lay.n_species):
        h = rel_step * np.maximum(np.abs(rhos[s]), rho_floor)
        pert = rhos.copy()
        pert[s] += h
        jac[:, :, s] += ((rate(pert, T, Tve) - S0) / h).T

    hT = rel_step * T
    dS_dT = (rate(rhos, T + hT, Tve) - S0) / hT
    hTve = rel_step * Tve
    dS_dTve = (rate(rhos, T, Tve + hTve) - S0) / hTve

    jac += np.einsum('ap,bp->pab', dS_dT, state.dTdU)
    jac += np.einsum('ap,bp->pab', dS_dTve, state.dTvedU)
    return jac


class AxisymmetricSource(SourceTerm):
    """
    Geometric source for 2D axisymmetric flow about the x axis (y = radius).

    S = (1/y) * (F_y - P e_y): the radial flux without its pressure part.
    Points on the axis (y <= 0) receive no contribution.
    """

    name = 'axisymmetric'
    sign = 1.0

    def compute(self, state, coords, volumes, implicit=False):
        lay = state.layout
        y = coords[1]
        positive = y > 0.0
        yinv = np.where(positive, 1.0 / np.where(positive, y, 1.0), 0.0)
        scale = yinv * volumes

        e_y = np.zeros((lay.n_dim, state.n_points))
        e_y[1] = 1.0
        F = inviscid_proj_flux(state, e_y)
        F[lay.n_species + 1] -= state.P
        residual = F * scale

        if not implicit:
            return residual, None
        A = inviscid_proj_jacobian(state, e_y)
        A[:, lay.n_species + 1, :] -= state.dPdU.T
        return residual, A * scale[:, None, None]


class ChemistrySource(SourceTerm):
    """
    Finite-rate chemistry.

    Species equations receive the net mass production rates; the
    vibrational energy equation receives the vibrational energy carried
    by created and destroyed molecules, sum(omega_s * Eve_s).
    """

    name = 'chemistry'
    sign = -1.0

    def __init__(self, gas: GasModel):
        self.gas = gas

    def _rate(self, state: FlowState):
        lay = state.layout

        def rate(rhos, T, Tve):
            gas_state = self.gas.set_state(rhos, T, Tve)
            omega = gas_state.net_production_rates
            S = np.zeros((lay.n_var, rhos.shape[1]))
            S[:lay.n_species] = omega
            S[lay.energy_ve] = np.sum(omega * gas_state.species_eve, axis=0)
            return S
        return rate

    def compute(self, state, coords, volumes, implicit=False):
        rate = self._rate(state)
        residual = rate(state.rhos, state.T, state.Tve) * volumes
        if not implicit:
            return residual, None
        return residual, linearize(rate, state) * volumes[:, None, None]


class VibRelaxationSource(SourceTerm):
    """Translational-vibrational (Landau-Teller) energy exchange."""

    name = 'vib_relaxation'
    sign = -1.0

    def __init__(self, gas: GasModel):
        self.gas = gas

    def _rate(self, state: FlowState):
        lay = state.layout

        def rate(rhos, T, Tve):
            S = np.zeros((lay.n_var, rhos.shape[1]))
            S[lay.energy_ve] = self.gas.set_state(rhos, T, Tve).eve_source_term
            return S
        return rate

    def compute(self, state, coords, volumes, implicit=False):
        rate = self._rate(state)
        residual = rate(state.rhos, state.T, state.Tve) * volumes
        if not implicit:
            return residual, None
        return residual, linearize(rate, state) * volumes[:, None, None]


def build_sources(capabilities: Capabilities, gas: GasModel,
                  monoatomic: bool = False) -> List[SourceTerm]:
    """Source terms active for the given capability set."""
    sources: List[SourceTerm] = []
    if capabilities.has_axisymmetry:
        sources.append(AxisymmetricSource())
    if capabilities.has_chemistry:
        sources.append(ChemistrySource(gas))
    if not monoatomic:
        sources.append(VibRelaxationSource(gas))
    return sources
