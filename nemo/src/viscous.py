"""
Optional viscous flux strategy for Navier-Stokes runs.

The Euler core calls this object, when one is injected, for edge viscous
fluxes, the far-field viscous correction and viscous time-step bounds.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple

from .gas import GasModel
from .state import FlowState


@dataclass
class Transport:
    """Transport properties at a set of points."""
    viscosity: np.ndarray           # (n,)
    conductivity: np.ndarray        # (n,) translational-rotational
    conductivity_ve: np.ndarray     # (n,) vibrational-electronic
    diffusion: np.ndarray           # (n_species, n)

    def take(self, index) -> 'Transport':
        return Transport(self.viscosity[index], self.conductivity[index],
                         self.conductivity_ve[index], self.diffusion[:, index])

    @classmethod
    def from_state(cls, gas: GasModel, state: FlowState) -> 'Transport':
        gas_state = gas.set_state(state.rhos, state.T, state.Tve)
        k_tr, k_ve = gas_state.thermal_conductivities
        return cls(gas_state.viscosity, k_tr, k_ve, gas_state.diffusion_coefficients)


def viscous_primitives(state: FlowState) -> np.ndarray:
    """Variables whose gradients drive the viscous fluxes: [Y_s, T, Tve, u..]."""
    return np.vstack([state.Y, state.T[np.newaxis], state.Tve[np.newaxis], state.velocity])


class ViscousFlux:
    """
    Averaged-gradient viscous flux with edge-normal correction.

    Fluxes (projected on the area-weighted normal n):
        species:  J_s . n                       J_s = rho D_s grad(Y_s), mass-corrected
        momentum: tau . n
        energy:   (tau . n) . u + k grad(T) . n + k_ve grad(Tve) . n + sum(h_s J_s) . n
        Eve:      k_ve grad(Tve) . n + sum(Eve_s J_s) . n
    """

    def __init__(self, gas: GasModel):
        self.gas = gas

    def compute_residual(self, state_i: FlowState, state_j: FlowState,
                         grad_i: np.ndarray, grad_j: np.ndarray,
                         transport_i: Transport, transport_j: Transport,
                         coords_i: np.ndarray, coords_j: np.ndarray,
                         normal: np.ndarray, implicit: bool = False
                         ) -> Tuple[np.ndarray, Optional[np.ndarray], Optional[np.ndarray]]:
        """
        Viscous flux from i to j and its approximate Jacobians.

        Args:
            state_i, state_j: Endpoint states (n_var, n_edges)
            grad_i, grad_j: Gradients of ``viscous_primitives`` (n_w, n_dim, n_edges)
            transport_i, transport_j: Endpoint transport properties
            coords_i, coords_j: Endpoint coordinates (n_dim, n_edges)
            normal: Area-weighted normals (n_dim, n_edges)

        Returns:
            Fv (n_var, n_edges), dFv/dU_i, dFv/dU_j (n_edges, n_var, n_var) or None
        """
        lay = state_i.layout
        ns, nd = lay.n_species, lay.n_dim

        W_i = viscous_primitives(state_i)
        W_j = viscous_primitives(state_j)
        grad = 0.5 * (grad_i + grad_j)

        d = coords_j - coords_i
        dist2 = np.sum(d**2, axis=0)
        has_dist = dist2 > 0.0
        safe2 = np.where(has_dist, dist2, 1.0)
        jump = W_j - W_i - np.einsum('wde,de->we', grad, d)
        grad = grad + np.where(has_dist, jump / safe2, 0.0)[:, np.newaxis, :] * d[np.newaxis]

        grad_Y = grad[:ns]
        grad_T = grad[ns]
        grad_Tve = grad[ns + 1]
        grad_u = grad[ns + 2:]                      # (nd, nd, ne): du_a/dx_b

        rho = 0.5 * (state_i.rho + state_j.rho)
        Y = 0.5 * (state_i.Y + state_j.Y)
        u = 0.5 * (state_i.velocity + state_j.velocity)
        mu = 0.5 * (transport_i.viscosity + transport_j.viscosity)
        k_tr = 0.5 * (transport_i.conductivity + transport_j.conductivity)
        k_ve = 0.5 * (transport_i.conductivity_ve + transport_j.conductivity_ve)
        D = 0.5 * (transport_i.diffusion + transport_j.diffusion)

        gs_i = self.gas.set_state(state_i.rhos, state_i.T, state_i.Tve)
        gs_j = self.gas.set_state(state_j.rhos, state_j.T, state_j.Tve)
        h_s = 0.5 * (gs_i.species_enthalpies + gs_j.species_enthalpies)
        eve_s = 0.5 * (state_i.eve + state_j.eve)

        div = np.einsum('aae->e', grad_u)
        tau = mu * (grad_u + np.swapaxes(grad_u, 0, 1))
        diag = np.arange(nd)
        tau[diag, diag] -= 2.0 / 3.0 * mu * div

        J = rho * D[:, np.newaxis, :] * grad_Y      # (ns, nd, ne)
        J -= Y[:, np.newaxis, :] * np.sum(J, axis=0)[np.newaxis]
        Jn = np.einsum('sde,de->se', J, normal)

        tau_n = np.einsum('abe,be->ae', tau, normal)
        heat = k_tr * np.sum(grad_T * normal, axis=0)
        heat_ve = k_ve * np.sum(grad_Tve * normal, axis=0)

        Fv = np.zeros((lay.n_var, normal.shape[1]))
        Fv[:ns] = Jn
        Fv[lay.momentum] = tau_n
        Fv[lay.energy] = np.sum(tau_n * u, axis=0) + heat + heat_ve + np.sum(h_s * Jn, axis=0)
        Fv[lay.energy_ve] = heat_ve + np.sum(eve_s * Jn, axis=0)

        if not implicit:
            return Fv, None, None

        area = np.sqrt(np.sum(normal**2, axis=0))
        rho_cv = 0.5 * (state_i.rho_cvtr + state_j.rho_cvtr
                        + state_i.rho_cvve + state_j.rho_cvve)
        nu = np.maximum(4.0 / 3.0 * mu / rho,
                        np.maximum((k_tr + k_ve) / rho_cv, np.max(D, axis=0)))
        coeff = np.where(has_dist, nu * area / np.sqrt(safe2), 0.0)
        eye = np.eye(lay.n_var)
        J_i = -coeff[:, None, None] * eye
        J_j = coeff[:, None, None] * eye
        return Fv, J_i, J_j

    def spectral_radius(self, state_i: FlowState, state_j: FlowState,
                        transport_i: Transport, transport_j: Transport,
                        area: np.ndarray) -> np.ndarray:
        """
        Viscous spectral radius per edge:
            ((4/3) mu + (k + k_ve) / cv) * Area^2 / rho
        """
        mu = 0.5 * (transport_i.viscosity + transport_j.viscosity)
        k = 0.5 * (transport_i.conductivity + transport_j.conductivity
                   + transport_i.conductivity_ve + transport_j.conductivity_ve)
        rho = 0.5 * (state_i.rho + state_j.rho)
        cv = 0.5 * (state_i.rho_cvtr + state_j.rho_cvtr
                    + state_i.rho_cvve + state_j.rho_cvve) / rho
        return (4.0 / 3.0 * mu + k / cv) * area**2 / rho
