"""
Free-stream state used for initialization and far-field boundaries.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import InitOption, SolverConfig
from .gas import GasModel
from .parallel import ProcessContext
from .state import FlowState, VariableLayout, cons_to_prim, prim_to_cons
from .viscous import Transport

log = logging.getLogger(__name__)


def free_stream_velocity(mach: float, sound_speed: float, aoa: float, aos: float,
                         n_dim: int) -> np.ndarray:
    """
    Velocity vector from Mach number and flow angles (degrees).

    2D: M a (cos aoa, sin aoa)
    3D: M a (cos aoa cos aos, sin aos, sin aoa cos aos)
    """
    alpha = np.radians(aoa)
    beta = np.radians(aos)
    speed = mach * sound_speed
    if n_dim == 2:
        return speed * np.array([np.cos(alpha), np.sin(alpha)])
    if n_dim == 3:
        return speed * np.array([np.cos(alpha) * np.cos(beta), np.sin(beta),
                                 np.sin(alpha) * np.cos(beta)])
    return np.array([speed])


@dataclass(frozen=True)
class FreeStream:
    """Single-point free-stream state plus derived reference quantities. Immutable."""
    state: FlowState
    mach: float
    reynolds: Optional[float] = None
    transport: Optional[Transport] = None

    def __post_init__(self):
        for array in (self.state.U, self.state.V, self.state.dPdU, self.state.dTdU,
                      self.state.dTvedU, self.state.eve, self.state.cvve,
                      self.state.nonphysical):
            array.flags.writeable = False

    @property
    def U(self) -> np.ndarray:
        """Conserved free-stream vector (n_var,)."""
        return self.state.U[:, 0]

    @property
    def velocity(self) -> np.ndarray:
        return self.state.velocity[:, 0]

    @classmethod
    def from_config(cls, config: SolverConfig, gas: GasModel, layout: VariableLayout,
                    context: ProcessContext) -> 'FreeStream':
        """
        Build the free stream from (P, Y, T, Tve), Mach and flow angles.

        Args:
            config: Solver configuration
            gas: Thermochemistry model
            layout: Variable layout
            context: Process context (fatal errors, root logging)
        """
        fs = config.free_stream
        if config.init_option == InitOption.REYNOLDS:
            context.error("Reynolds-number initialization is not supported for the "
                          "two-temperature gas model; use td_conditions.",
                          "FreeStream.from_config")

        Y = np.asarray(fs.mass_fractions, dtype=float)
        if Y.shape[0] != layout.n_species:
            raise ValueError(f"Expected {layout.n_species} free-stream mass fractions, "
                             f"got {Y.shape[0]}")

        gas_state = gas.set_state_ptt(np.array([fs.pressure]), Y[:, np.newaxis],
                                      np.array([fs.temperature]), np.array([fs.temperature_ve]))
        a = float(gas_state.sound_speed[0])
        velocity = free_stream_velocity(fs.mach, a, fs.aoa, fs.aos, layout.n_dim)

        U = prim_to_cons(gas_state.rhos, gas_state.T, gas_state.Tve,
                         velocity[:, np.newaxis], gas)
        state = cons_to_prim(U, gas, layout, config.temperature_min, config.temperature_max,
                             T_guess=np.array([fs.temperature_ve]))
        if state.nonphysical[0]:
            context.error("Free-stream state is non-physical.", "FreeStream.from_config")

        reynolds = None
        transport = None
        if config.viscous:
            transport = Transport.from_state(gas, state)
            speed = float(np.sqrt(np.sum(velocity**2)))
            reynolds = float(state.rho[0] * speed * config.length_reynolds
                             / transport.viscosity[0])

        if context.is_root:
            log.info(f"Free stream: M={fs.mach:.3f}, P={fs.pressure:.1f} Pa, "
                     f"T={fs.temperature:.1f} K, Tve={fs.temperature_ve:.1f} K, "
                     f"rho={state.rho[0]:.4e} kg/m3, a={a:.2f} m/s")
            if reynolds is not None:
                log.info(f"Reynolds number (L={config.length_reynolds} m): {reynolds:.4e}")

        return cls(state=state, mach=fs.mach, reynolds=reynolds, transport=transport)
