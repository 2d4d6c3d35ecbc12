"""
Two-temperature thermochemistry for multi-species gas mixtures.

Species thermodynamics follow a rigid-rotor / harmonic-oscillator model:
    e_s(T, Tve) = Cv_tr,s * (T - T_ref) + e_ve,s(Tve) + h_f,s

Arrays are laid out species-first: species quantities have shape
(n_species, n_points), point quantities have shape (n_points,).

Units are SI with molar quantities per kmol.
"""

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import cached_property
from typing import Optional, Sequence, Tuple

RU = 8314.462618        # Universal gas constant [J/(kmol·K)]
AVOGADRO = 6.02214076e26  # [1/kmol]
T_REF = 298.15          # Formation enthalpy reference temperature [K]
P_ATM = 101325.0        # [Pa]


@dataclass(frozen=True)
class Species:
    """Thermodynamic and transport data for one species."""
    name: str
    molar_mass: float           # [kg/kmol]
    theta_v: float              # Characteristic vibrational temperature [K], 0 for atoms
    formation_enthalpy: float   # [J/kg] at T_REF
    rotational_dof: float       # 2 for linear molecules, 0 for atoms
    blottner: Tuple[float, float, float]  # Blottner viscosity curve fit (A, B, C)

    @property
    def R(self) -> float:
        """Specific gas constant [J/(kg·K)]."""
        return RU / self.molar_mass

    @property
    def cv_tr(self) -> float:
        """Translational-rotational specific heat [J/(kg·K)]."""
        return (1.5 + 0.5 * self.rotational_dof) * self.R


@dataclass(frozen=True)
class Reaction:
    """
    Elementary reaction with Park two-temperature Arrhenius rates.

    Reactants and products are species indices, repeated for stoichiometry;
    a collision partner appears on both sides.

    Forward rate  kf = A * Tc^eta * exp(-theta / Tc),  Tc = T^a * Tve^(1-a)
    Backward rate kb = kf(T) / Keq(T), with the Park (1990) curve fit
        Keq = exp(A0*Z' + A1 + A2*ln(Z) + A3*Z + A4*Z^2),  Z = 1e4/T, Z' = 1/Z
    """
    reactants: Tuple[int, ...]
    products: Tuple[int, ...]
    A: float                    # [cm^3/(mol·s)] per order, converted internally
    eta: float
    theta: float                # Activation temperature [K]
    keq: Tuple[float, float, float, float, float]
    t_exponent: float = 1.0     # a in Tc = T^a Tve^(1-a)

    @property
    def delta_moles(self) -> int:
        return len(self.products) - len(self.reactants)


def _harmonic_energy(R_s: np.ndarray, theta_v: np.ndarray, T: np.ndarray) -> np.ndarray:
    """Vibrational energy per unit mass of harmonic oscillators, (n_species, n_points)."""
    molecule = theta_v > 0.0
    theta = np.where(molecule, theta_v, 1.0)[:, np.newaxis]
    x = theta / T[np.newaxis]
    with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
        ex = np.exp(-x)
        eve = R_s[:, np.newaxis] * theta * ex / (1.0 - ex)
    return np.where(molecule[:, np.newaxis], eve, 0.0)


def _harmonic_cv(R_s: np.ndarray, theta_v: np.ndarray, T: np.ndarray) -> np.ndarray:
    """Vibrational specific heat of harmonic oscillators, (n_species, n_points)."""
    molecule = theta_v > 0.0
    theta = np.where(molecule, theta_v, 1.0)[:, np.newaxis]
    x = theta / T[np.newaxis]
    with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
        ex = np.exp(-x)
        cv = R_s[:, np.newaxis] * x**2 * ex / (1.0 - ex)**2
    return np.where(molecule[:, np.newaxis], cv, 0.0)


class GasModel(ABC):
    """
    Interface between the flow solver and a thermochemistry backend.

    ``set_state`` returns an independent ``GasState`` so that several states
    can be evaluated side by side without shared scratch storage.
    """

    species: Tuple[Species, ...]

    @property
    def n_species(self) -> int:
        return len(self.species)

    @property
    def species_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.species)

    @cached_property
    def molar_mass(self) -> np.ndarray:
        return np.array([s.molar_mass for s in self.species])

    @cached_property
    def species_gas_constant(self) -> np.ndarray:
        return RU / self.molar_mass

    @cached_property
    def formation_enthalpy(self) -> np.ndarray:
        return np.array([s.formation_enthalpy for s in self.species])

    @cached_property
    def cv_tr(self) -> np.ndarray:
        return np.array([s.cv_tr for s in self.species])

    @cached_property
    def formation_energy(self) -> np.ndarray:
        """Constant part of e_s: h_f,s - Cv_tr,s * T_REF."""
        return self.formation_enthalpy - self.cv_tr * T_REF

    @cached_property
    def theta_v(self) -> np.ndarray:
        return np.array([s.theta_v for s in self.species])

    @property
    def monoatomic(self) -> bool:
        return not np.any(self.theta_v > 0.0)

    def species_eve(self, Tve: np.ndarray) -> np.ndarray:
        return _harmonic_energy(self.species_gas_constant, self.theta_v, Tve)

    def species_cvve(self, Tve: np.ndarray) -> np.ndarray:
        return _harmonic_cv(self.species_gas_constant, self.theta_v, Tve)

    def set_state(self, rhos: np.ndarray, T: np.ndarray, Tve: np.ndarray) -> 'GasState':
        """Thermodynamic state from species densities and both temperatures."""
        return GasState(self, np.asarray(rhos, dtype=float),
                        np.asarray(T, dtype=float), np.asarray(Tve, dtype=float))

    def set_state_ptt(self, P: np.ndarray, Y: np.ndarray, T: np.ndarray,
                      Tve: np.ndarray) -> 'GasState':
        """Thermodynamic state from pressure, mass fractions and temperatures."""
        P = np.asarray(P, dtype=float)
        T = np.asarray(T, dtype=float)
        Y = np.asarray(Y, dtype=float)
        R_mix = np.sum(Y * self.species_gas_constant[:, np.newaxis], axis=0)
        rho = P / (R_mix * T)
        return self.set_state(Y * rho, T, Tve)

    def temperatures(self, rhos: np.ndarray, rho_e: np.ndarray, rho_eve: np.ndarray,
                     T_guess: Optional[np.ndarray] = None,
                     tol: float = 1e-10, max_iter: int = 100
                     ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Invert the energy relations for T and Tve.

        Args:
            rhos: Species densities (n_species, n_points)
            rho_e: Internal energy per volume, kinetic energy removed (n_points,)
            rho_eve: Vibrational-electronic energy per volume (n_points,)
            T_guess: Optional starting value for the Tve iteration

        Returns:
            T, Tve, converged mask
        """
        rho_cvtr = np.sum(rhos * self.cv_tr[:, np.newaxis], axis=0)
        rho_ef = np.sum(rhos * self.formation_energy[:, np.newaxis], axis=0)
        with np.errstate(divide='ignore', invalid='ignore'):
            T = (rho_e - rho_eve - rho_ef) / rho_cvtr

        if self.monoatomic:
            return T, T.copy(), np.isfinite(T)

        # Safeguarded Newton on sum(rho_s * eve_s(Tve)) = rho_eve.
        # eve is monotonic in Tve so a bracket is maintained for bisection.
        lo = np.full_like(rho_eve, 1.0)
        hi = np.full_like(rho_eve, 1.0e6)
        Tve = np.clip(np.nan_to_num(T if T_guess is None else T_guess, nan=1000.0),
                      lo, hi)
        converged = np.zeros(rho_eve.shape, dtype=bool)
        scale = np.maximum(np.abs(rho_eve), 1e-30)

        for _ in range(max_iter):
            f = np.sum(rhos * self.species_eve(Tve), axis=0) - rho_eve
            df = np.sum(rhos * self.species_cvve(Tve), axis=0)
            converged = np.abs(f) <= tol * scale
            if np.all(converged):
                break
            lo = np.where(f < 0.0, Tve, lo)
            hi = np.where(f > 0.0, Tve, hi)
            with np.errstate(divide='ignore', invalid='ignore'):
                step = Tve - f / df
            bisect = ~np.isfinite(step) | (step <= lo) | (step >= hi)
            Tve = np.where(converged, Tve, np.where(bisect, 0.5 * (lo + hi), step))

        converged &= np.isfinite(T) & (rho_eve >= 0.0)
        return T, Tve, converged

    @abstractmethod
    def net_production_rates(self, state: 'GasState') -> np.ndarray:
        """Species mass production rates [kg/(m³·s)], (n_species, n_points)."""

    @abstractmethod
    def eve_source_term(self, state: 'GasState') -> np.ndarray:
        """Translational-vibrational energy exchange rate [W/m³], (n_points,)."""

    @abstractmethod
    def species_viscosity(self, state: 'GasState') -> np.ndarray:
        """Species viscosities [Pa·s], (n_species, n_points)."""

    @abstractmethod
    def diffusion_coefficients(self, state: 'GasState') -> np.ndarray:
        """Effective species diffusion coefficients [m²/s], (n_species, n_points)."""


class GasState:
    """
    Thermodynamic state of the mixture at a set of points.

    Derived quantities are computed on first access.
    """

    def __init__(self, gas: GasModel, rhos: np.ndarray, T: np.ndarray, Tve: np.ndarray):
        self.gas = gas
        self.rhos = rhos
        self.T = T
        self.Tve = Tve

    @cached_property
    def density(self) -> np.ndarray:
        return np.sum(self.rhos, axis=0)

    @cached_property
    def mass_fractions(self) -> np.ndarray:
        return self.rhos / self.density

    @cached_property
    def concentrations(self) -> np.ndarray:
        """Molar concentrations [kmol/m³]."""
        return self.rhos / self.gas.molar_mass[:, np.newaxis]

    @cached_property
    def mole_fractions(self) -> np.ndarray:
        c = self.concentrations
        return c / np.sum(c, axis=0)

    @cached_property
    def gas_constant(self) -> np.ndarray:
        """Mixture specific gas constant [J/(kg·K)]."""
        return np.sum(self.mass_fractions * self.gas.species_gas_constant[:, np.newaxis], axis=0)

    @cached_property
    def pressure(self) -> np.ndarray:
        return np.sum(self.rhos * self.gas.species_gas_constant[:, np.newaxis], axis=0) * self.T

    @cached_property
    def rho_cvtr(self) -> np.ndarray:
        return np.sum(self.rhos * self.gas.cv_tr[:, np.newaxis], axis=0)

    @cached_property
    def species_eve(self) -> np.ndarray:
        return self.gas.species_eve(self.Tve)

    @cached_property
    def species_cvve(self) -> np.ndarray:
        return self.gas.species_cvve(self.Tve)

    @cached_property
    def rho_cvve(self) -> np.ndarray:
        return np.sum(self.rhos * self.species_cvve, axis=0)

    @cached_property
    def mixture_energies(self) -> Tuple[np.ndarray, np.ndarray]:
        """Specific energies (e_total_internal, e_ve) [J/kg]."""
        Y = self.mass_fractions
        e_ve = np.sum(Y * self.species_eve, axis=0)
        e_tr = np.sum(Y * (self.gas.cv_tr[:, np.newaxis] * self.T[np.newaxis]
                           + self.gas.formation_energy[:, np.newaxis]), axis=0)
        return e_tr + e_ve, e_ve

    @cached_property
    def species_enthalpies(self) -> np.ndarray:
        """Species specific enthalpies [J/kg], (n_species, n_points)."""
        gas = self.gas
        return ((gas.cv_tr + gas.species_gas_constant)[:, np.newaxis] * self.T[np.newaxis]
                + self.species_eve + gas.formation_energy[:, np.newaxis])

    @cached_property
    def sound_speed(self) -> np.ndarray:
        """Frozen sound speed: a² = (1 + sum(rho_s R_s) / rhoCv_tr) * P / rho."""
        rho_R = np.sum(self.rhos * self.gas.species_gas_constant[:, np.newaxis], axis=0)
        gamma = 1.0 + rho_R / self.rho_cvtr
        return np.sqrt(gamma * self.pressure / self.density)

    @cached_property
    def net_production_rates(self) -> np.ndarray:
        return self.gas.net_production_rates(self)

    @cached_property
    def eve_source_term(self) -> np.ndarray:
        return self.gas.eve_source_term(self)

    @cached_property
    def species_viscosity(self) -> np.ndarray:
        return self.gas.species_viscosity(self)

    @cached_property
    def wilke_phi(self) -> np.ndarray:
        """Wilke mixing factors, (n_species, n_points)."""
        M = self.gas.molar_mass
        mu = self.species_viscosity
        X = self.mole_fractions
        ratio_mu = np.sqrt(mu[:, np.newaxis, :] / mu[np.newaxis, :, :])
        ratio_M = (M[np.newaxis, :] / M[:, np.newaxis]) ** 0.25
        denom = np.sqrt(8.0 * (1.0 + M[:, np.newaxis] / M[np.newaxis, :]))
        terms = (1.0 + ratio_mu * ratio_M[:, :, np.newaxis])**2 / denom[:, :, np.newaxis]
        return np.sum(X[np.newaxis, :, :] * terms, axis=1)

    @cached_property
    def viscosity(self) -> np.ndarray:
        return np.sum(self.mole_fractions * self.species_viscosity / self.wilke_phi, axis=0)

    @cached_property
    def thermal_conductivities(self) -> Tuple[np.ndarray, np.ndarray]:
        """Eucken conductivities (k_tr, k_ve) with Wilke mixing [W/(m·K)]."""
        gas = self.gas
        R_s = gas.species_gas_constant[:, np.newaxis]
        rot = np.array([s.rotational_dof for s in gas.species])[:, np.newaxis]
        mu = self.species_viscosity
        k_tr_s = mu * (2.5 * 1.5 * R_s + 0.5 * rot * R_s)
        k_ve_s = mu * self.species_cvve
        weight = self.mole_fractions / self.wilke_phi
        return np.sum(weight * k_tr_s, axis=0), np.sum(weight * k_ve_s, axis=0)

    @cached_property
    def diffusion_coefficients(self) -> np.ndarray:
        return self.gas.diffusion_coefficients(self)


class UserDefinedGas(GasModel):
    """
    Built-in two-temperature mixture.

    - Park two-temperature Arrhenius chemistry with curve-fit equilibrium constants
    - Landau-Teller relaxation with Millikan-White and Park collision-limited times
    - Blottner/Wilke viscosity, Eucken conductivity, constant Lewis number diffusion
    """

    def __init__(self, species: Sequence[Species], reactions: Sequence[Reaction] = (),
                 lewis_number: float = 1.4):
        self.species = tuple(species)
        self.reactions = tuple(reactions)
        self.lewis_number = lewis_number

    @classmethod
    def from_preset(cls, name: str) -> 'UserDefinedGas':
        """Build one of the bundled mixtures: 'nitrogen2' or 'air5'."""
        try:
            species, reactions = PRESETS[name]()
        except KeyError:
            raise ValueError(f"Unknown gas preset: {name}. Options: {list(PRESETS)}")
        return cls(species, reactions)

    def forward_rate(self, reaction: Reaction, T: np.ndarray, Tve: np.ndarray) -> np.ndarray:
        Tc = T**reaction.t_exponent * Tve**(1.0 - reaction.t_exponent)
        # cm^3/(mol·s) -> m^3/(kmol·s) for every order beyond the first
        unit = 1e-3 ** (len(reaction.reactants) - 1)
        return unit * reaction.A * Tc**reaction.eta * np.exp(-reaction.theta / Tc)

    def equilibrium_constant(self, reaction: Reaction, T: np.ndarray) -> np.ndarray:
        A = reaction.keq
        Z = 1e4 / T
        keq = np.exp(A[0] / Z + A[1] + A[2] * np.log(Z) + A[3] * Z + A[4] * Z**2)
        # mol/cm^3 -> kmol/m^3
        return keq * 1e3 ** reaction.delta_moles

    def net_production_rates(self, state: GasState) -> np.ndarray:
        omega = np.zeros_like(state.rhos)
        c = state.concentrations
        for rxn in self.reactions:
            kf = self.forward_rate(rxn, state.T, state.Tve)
            kb_num = self.forward_rate(rxn, state.T, state.T)
            kb = kb_num / self.equilibrium_constant(rxn, state.T)
            progress = kf * np.prod(c[list(rxn.reactants)], axis=0) \
                - kb * np.prod(c[list(rxn.products)], axis=0)
            for s in rxn.reactants:
                omega[s] -= progress
            for s in rxn.products:
                omega[s] += progress
        return omega * self.molar_mass[:, np.newaxis]

    def relaxation_time(self, state: GasState) -> np.ndarray:
        """Millikan-White plus Park vibrational relaxation times [s]."""
        M = self.molar_mass
        X = state.mole_fractions
        T = state.T
        P_atm = state.pressure / P_ATM

        mu_sr = M[:, np.newaxis] * M[np.newaxis, :] / (M[:, np.newaxis] + M[np.newaxis, :])
        A_sr = 1.16e-3 * np.sqrt(mu_sr) * self.theta_v[:, np.newaxis]**(4.0 / 3.0)
        B_sr = 0.015 * mu_sr**0.25
        tau_sr = np.exp(A_sr[:, :, np.newaxis] * (T**(-1.0 / 3.0) - B_sr[:, :, np.newaxis])
                        - 18.42) / P_atm
        tau_mw = np.sum(X, axis=0) / np.sum(X[np.newaxis] / tau_sr, axis=1)

        n_total = np.sum(state.concentrations, axis=0) * AVOGADRO
        sigma = 1e-21 * (5e4 / T)**2
        c_bar = np.sqrt(8.0 * RU * T / (np.pi * M[:, np.newaxis]))
        tau_park = 1.0 / (sigma * c_bar * n_total)
        return tau_mw + tau_park

    def eve_source_term(self, state: GasState) -> np.ndarray:
        molecule = (self.theta_v > 0.0)[:, np.newaxis]
        tau = self.relaxation_time(state)
        eve_T = self.species_eve(state.T)
        q = np.where(molecule, state.rhos * (eve_T - state.species_eve) / tau, 0.0)
        return np.sum(q, axis=0)

    def species_viscosity(self, state: GasState) -> np.ndarray:
        coeffs = np.array([s.blottner for s in self.species])
        lnT = np.log(state.T)[np.newaxis]
        return 0.1 * np.exp((coeffs[:, 0:1] * lnT + coeffs[:, 1:2]) * lnT + coeffs[:, 2:3])

    def diffusion_coefficients(self, state: GasState) -> np.ndarray:
        k_tr, _ = state.thermal_conductivities
        rho_R = np.sum(state.rhos * self.species_gas_constant[:, np.newaxis], axis=0)
        rho_cp = state.rho_cvtr + rho_R
        D = self.lewis_number * k_tr / rho_cp
        return np.broadcast_to(D, state.rhos.shape).copy()


def _nitrogen2():
    species = (
        Species('N2', 28.0134, 3395.0, 0.0, 2.0, (0.0268142, 0.3177838, -11.3155513)),
        Species('N', 14.0067, 0.0, 3.36e7, 0.0, (0.0115572, 0.6031679, -12.4327495)),
    )
    keq_n2 = (1.5351, 1.6061, 1.2993, -11.494, -0.00698)
    reactions = (
        Reaction((0, 0), (1, 1, 0), 7.0e21, -1.6, 113200.0, keq_n2, 0.5),
        Reaction((0, 1), (1, 1, 1), 3.0e22, -1.6, 113200.0, keq_n2, 0.5),
    )
    return species, reactions


def _air5():
    N2, O2, NO, N, O = range(5)
    species = (
        Species('N2', 28.0134, 3395.0, 0.0, 2.0, (0.0268142, 0.3177838, -11.3155513)),
        Species('O2', 31.9988, 2239.0, 0.0, 2.0, (0.0449290, -0.0826158, -9.2019475)),
        Species('NO', 30.0061, 2817.0, 3.0091e6, 2.0, (0.0436378, -0.0335511, -9.5767430)),
        Species('N', 14.0067, 0.0, 3.36e7, 0.0, (0.0115572, 0.6031679, -12.4327495)),
        Species('O', 15.9994, 0.0, 1.5574e7, 0.0, (0.0203144, 0.4294404, -11.6031403)),
    )
    keq_n2 = (1.5351, 1.6061, 1.2993, -11.494, -0.00698)
    keq_o2 = (0.48445, 2.8245, 1.4089, -5.9613, 0.018098)
    keq_no = (0.50765, 0.73575, 0.48042, -7.4979, -0.016247)
    keq_n2o = (0.96921, -0.97252, -0.84521, -3.0612, -0.094893)
    keq_noo = (-0.0033, -1.6591, -0.70566, -1.5366, -0.000297)
    molecules = (N2, O2, NO)
    atoms = (N, O)
    reactions = []
    for m in molecules:
        reactions.append(Reaction((N2, m), (N, N, m), 7.0e21, -1.6, 113200.0, keq_n2, 0.5))
    for m in atoms:
        reactions.append(Reaction((N2, m), (N, N, m), 3.0e22, -1.6, 113200.0, keq_n2, 0.5))
    for m in molecules:
        reactions.append(Reaction((O2, m), (O, O, m), 2.0e21, -1.5, 59500.0, keq_o2, 0.5))
    for m in atoms:
        reactions.append(Reaction((O2, m), (O, O, m), 1.0e22, -1.5, 59500.0, keq_o2, 0.5))
    for m in molecules:
        reactions.append(Reaction((NO, m), (N, O, m), 5.0e15, 0.0, 75500.0, keq_no, 0.5))
    for m in atoms:
        reactions.append(Reaction((NO, m), (N, O, m), 1.1e17, 0.0, 75500.0, keq_no, 0.5))
    reactions.append(Reaction((N2, O), (NO, N), 6.4e17, -1.0, 38400.0, keq_n2o))
    reactions.append(Reaction((NO, O), (O2, N), 8.4e12, 0.0, 19450.0, keq_noo))
    return species, tuple(reactions)


PRESETS = {
    'nitrogen2': _nitrogen2,
    'air5': _air5,
}
